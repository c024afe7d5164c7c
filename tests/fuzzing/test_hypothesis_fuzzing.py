"""
Hypothesis-based fuzzing of the pure engines.

Properties checked here:
- Line amounts: ttc = ht + vat, discount never raises ht, exempt lines carry no VAT
- Document net: net + withholding = ttc + stamp, withholding on TTC only
- Stock aggregation: one movement per product, quantities conserved
- Sale caps: never below 1, clamped quantities stay inside [1, cap]
- Sale price: HT to TTC and back within 0.001, nothing without a VAT rate
- Matcher: ranking does not depend on catalog order

Boundaries covered by explicit tests instead:
- Rounding of presentation amounts (tests/engines/test_money_math.py)
- Compare-and-set stock writes (tests/services/test_stock_reconciler.py)
"""

from decimal import Decimal
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from intake_engines.matching import match_product
from intake_engines.money_math import line_total, net_payable, withholding_amount
from intake_engines.pricing import SalePriceField, derive_sale_price
from intake_engines.stock import (
    LineQuantity,
    aggregate_movements,
    clamp_quantity,
    max_quantities,
)
from intake_kernel.domain.amounts import SalePrice
from intake_kernel.domain.product import MovementType, ProductRecord

amounts = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("100000"),
    places=3, allow_nan=False, allow_infinity=False,
)
quantities = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("1000"),
    places=0, allow_nan=False, allow_infinity=False,
)
percents = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("100"),
    places=2, allow_nan=False, allow_infinity=False,
)
vat_rates = st.sampled_from([Decimal("0"), Decimal("7"), Decimal("13"), Decimal("19")])

PRODUCT_IDS = [uuid4() for _ in range(4)]


class TestLineAmountProperties:

    @given(quantity=quantities, price=amounts, vat_rate=vat_rates, discount=percents)
    @settings(max_examples=200)
    def test_ttc_is_ht_plus_vat(self, quantity, price, vat_rate, discount):
        amounts_ = line_total(quantity, price, vat_rate, discount)

        assert amounts_.ttc == amounts_.ht + amounts_.vat
        assert Decimal("0") <= amounts_.ht <= quantity * price
        assert amounts_.vat >= 0

    @given(quantity=quantities, price=amounts, vat_rate=vat_rates)
    def test_exempt_line_has_no_vat(self, quantity, price, vat_rate):
        amounts_ = line_total(quantity, price, vat_rate, is_exempt=True)

        assert amounts_.vat == 0
        assert amounts_.ttc == amounts_.ht


class TestNetPayableProperties:

    @given(ttc=amounts, rate=percents, stamp=st.sampled_from([Decimal("0"), Decimal("1.000")]))
    @settings(max_examples=200)
    def test_net_balances(self, ttc, rate, stamp):
        withheld = withholding_amount(ttc, rate)
        net = net_payable(ttc, stamp, withheld)

        assert net + withheld == ttc + stamp
        assert withheld <= ttc


class TestStockProperties:

    @given(st.lists(
        st.tuples(st.sampled_from(PRODUCT_IDS), quantities, st.booleans()),
        max_size=12,
    ))
    @settings(max_examples=200)
    def test_aggregation_conserves_quantity(self, rows):
        lines = [LineQuantity(pid, qty, unlimited) for pid, qty, unlimited in rows]

        movements = aggregate_movements(lines=lines, movement_type=MovementType.ADD)

        assert len({m.product_id for m in movements}) == len(movements)
        expected = sum((l.quantity for l in lines if not l.unlimited_stock), Decimal("0"))
        assert sum((m.quantity for m in movements), Decimal("0")) == expected
        assert all(m.quantity > 0 for m in movements)

    @given(
        stock=quantities,
        requested=st.lists(
            st.decimals(min_value=Decimal("1"), max_value=Decimal("50"), places=0,
                        allow_nan=False, allow_infinity=False),
            min_size=1, max_size=5,
        ),
    )
    @settings(max_examples=200)
    def test_caps_never_below_one(self, stock, requested):
        product = ProductRecord(id=PRODUCT_IDS[0], name="Câble HDMI", current_stock=stock)
        lines = [(product.id, qty) for qty in requested]

        caps = max_quantities(lines, {product.id: product})

        for (_, quantity), cap in zip(lines, caps):
            assert cap >= 1
            clamped = clamp_quantity(quantity, cap)
            assert Decimal("1") <= clamped <= cap


class TestSalePriceProperties:

    @given(price_ht=amounts, vat_rate=vat_rates, unit_cost=amounts)
    @settings(max_examples=200)
    def test_ht_ttc_round_trip(self, price_ht, vat_rate, unit_cost):
        from_ht = derive_sale_price(
            current=SalePrice(vat_rate=vat_rate),
            field=SalePriceField.PRICE_HT,
            value=price_ht,
            unit_cost=unit_cost,
        )
        back = derive_sale_price(
            current=SalePrice(vat_rate=vat_rate),
            field=SalePriceField.PRICE_TTC,
            value=from_ht.price_ttc,
            unit_cost=unit_cost,
        )

        assert abs(back.price_ht - price_ht) <= Decimal("0.001")

    @given(field=st.sampled_from(list(SalePriceField)), value=amounts)
    def test_no_vat_rate_no_price(self, field, value):
        if field is SalePriceField.VAT_RATE:
            value = None

        derived = derive_sale_price(
            current=SalePrice(), field=field, value=value, unit_cost=Decimal("10"),
        )

        assert derived == SalePrice()


CATALOG = [
    ProductRecord(id=PRODUCT_IDS[0], name="Câble HDMI", reference="HDMI-2M"),
    ProductRecord(id=PRODUCT_IDS[1], name="Câble HDMI 5m", reference="HDMI-5M"),
    ProductRecord(id=PRODUCT_IDS[2], name="Souris optique", reference="MOUSE-01", ean="6191234567890"),
    ProductRecord(id=PRODUCT_IDS[3], name="souris optique", reference=None),
]


class TestMatcherProperties:

    @given(
        catalog=st.permutations(CATALOG),
        name=st.sampled_from(["Câble HDMI", "SOURIS OPTIQUE", "Clavier", None]),
        reference=st.sampled_from(["HDMI-2M", "mouse-01", "X-1", None]),
        ean=st.sampled_from(["6191234567890", None]),
    )
    @settings(max_examples=100)
    def test_ranking_independent_of_catalog_order(self, catalog, name, reference, ean):
        first = match_product(name=name, reference=reference, ean=ean, catalog=CATALOG)
        second = match_product(name=name, reference=reference, ean=ean, catalog=catalog)

        assert first == second
