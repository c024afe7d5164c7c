"""
Workflow context (``intake_kernel.domain.context``).

Responsibility
--------------
The state one intake workflow instance accumulates between steps: the
untrusted extraction, the confirmed counterpart, currency and rate, the
ordered line items, the computed totals and the classification tags.  Also
the step vocabulary, the declarative step definitions and the ``StepPlan``
fixed once the counterpart is identified.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Mutated only by
``intake_services.workflow_engine``.

Invariants enforced
-------------------
* One context, one owner: a context is never shared between workflow
  instances; it is discarded on cancel and folded into a document on commit.
* ``step_plan`` is computed once, when counterpart identification first
  completes, and never recomputed.
* Every ``LineItem`` carries amounts consistent with its inputs
  (``amounts.ttc == amounts.ht + amounts.vat``); the engine replaces the
  whole line on every edit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from intake_kernel.domain.amounts import LineAmounts, SalePrice, Totals
from intake_kernel.domain.counterpart import CounterpartResolution, RankedCounterpart
from intake_kernel.domain.documents import CreationMode, DocumentKind
from intake_kernel.domain.extraction import ExtractionResult
from intake_kernel.domain.product import (
    CreateNew,
    LineDecision,
    ProductDraft,
    ProductType,
    RankedProduct,
)
from intake_kernel.domain.workflow import Guard


class IntakeStep(str, Enum):
    INTAKE = "intake"
    COUNTERPART_IDENTIFICATION = "counterpart_identification"
    CURRENCY_SELECTION = "currency_selection"
    LINE_ANALYSIS = "line_analysis"
    LINE_DETAIL_COMPLETION = "line_detail_completion"
    LINE_VERIFICATION = "line_verification"
    TOTALS_CONFIRMATION = "totals_confirmation"
    COMMIT = "commit"


@dataclass(frozen=True)
class StepDefinition:
    """One entry of a workflow's declarative step list.

    ``include_when`` is evaluated once, at the branch point; ``None`` means
    the step is always part of the plan.
    """
    step: IntakeStep
    include_when: Guard | None = None


@dataclass(frozen=True)
class IntakeWorkflowDefinition:
    """Declarative description of an intake workflow."""
    name: str
    document_kind: DocumentKind
    steps: tuple[StepDefinition, ...]
    branch_point: IntakeStep = IntakeStep.COUNTERPART_IDENTIFICATION

    def __post_init__(self) -> None:
        order = [d.step for d in self.steps]
        if order[0] is not IntakeStep.INTAKE or order[-1] is not IntakeStep.COMMIT:
            raise ValueError(f"Workflow {self.name} must start at intake and end at commit")
        if self.branch_point not in order:
            raise ValueError(f"Workflow {self.name}: branch point not in steps")
        branch_index = order.index(self.branch_point)
        for d in self.steps[: branch_index + 1]:
            if d.include_when is not None:
                raise ValueError(
                    f"Workflow {self.name}: conditional step {d.step.value} "
                    "precedes the branch point"
                )

    @property
    def fixed_prefix(self) -> tuple[IntakeStep, ...]:
        """Steps known before the plan is fixed (intake .. branch point)."""
        order = [d.step for d in self.steps]
        return tuple(order[: order.index(self.branch_point) + 1])


@dataclass(frozen=True)
class StepPlan:
    """
    Ordered steps of one workflow instance, fixed at the branch point.

    ``counterpart_foreign`` records the locality the plan was computed for.
    """
    steps: tuple[IntakeStep, ...]
    counterpart_foreign: bool

    def includes(self, step: IntakeStep) -> bool:
        return step in self.steps

    def index(self, step: IntakeStep) -> int:
        return self.steps.index(step)

    def next_after(self, step: IntakeStep) -> IntakeStep | None:
        i = self.index(step)
        return self.steps[i + 1] if i + 1 < len(self.steps) else None

    def previous_before(self, step: IntakeStep) -> IntakeStep | None:
        i = self.index(step)
        return self.steps[i - 1] if i > 0 else None


class WorkflowStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    COMMITTED = "committed"


@dataclass(frozen=True)
class LineItem:
    """
    One product or service entry of the document.

    ``amounts`` are in the document currency; ``settlement_amounts`` are set
    only for foreign documents.  ``sale_price`` is the parallel sale block
    (new products on purchases, the invoiced price on invoices).
    """
    index: int
    name: str
    reference: str | None
    ean: str | None
    unit: str
    quantity: Decimal
    unit_price_ht: Decimal
    vat_rate: Decimal
    discount_percent: Decimal
    amounts: LineAmounts
    is_exempt: bool = False
    settlement_amounts: LineAmounts | None = None
    max_discount: Decimal = Decimal("100")
    product_type: ProductType = ProductType.PHYSICAL
    purchase_year: int | None = None
    opening_stock: Decimal = Decimal("0")
    unlimited_stock: bool = False
    allow_out_of_stock_sale: bool = False
    sale_price: SalePrice = SalePrice()
    decision: LineDecision | None = None
    candidates: tuple[RankedProduct, ...] = ()
    product_hint: UUID | None = None

    @property
    def product_id(self) -> UUID | None:
        if self.decision is None:
            return None
        return self.decision.product_id

    @property
    def is_new_product(self) -> bool:
        return isinstance(self.decision, CreateNew)

    def to_draft(self) -> ProductDraft:
        return ProductDraft(
            name=self.name,
            reference=self.reference,
            ean=self.ean,
            unit=self.unit,
            product_type=self.product_type,
            purchase_year=self.purchase_year,
            opening_stock=self.opening_stock,
            unlimited_stock=self.unlimited_stock,
            allow_out_of_stock_sale=self.allow_out_of_stock_sale,
            max_discount=self.max_discount,
        )


@dataclass
class WorkflowContext:
    """Mutable accumulator owned by exactly one in-progress workflow instance."""

    definition: IntakeWorkflowDefinition
    organization_id: UUID
    actor_id: UUID
    extraction: ExtractionResult
    settlement_currency: str
    workflow_id: UUID = field(default_factory=uuid4)
    creation_mode: CreationMode = CreationMode.EXTRACTION
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    current_step: IntakeStep = IntakeStep.INTAKE
    completed_steps: set[IntakeStep] = field(default_factory=set)
    step_plan: StepPlan | None = None

    # Document identity
    invoice_number: str | None = None
    invoice_date: date | None = None
    source_reference: str | None = None
    origin_request_id: UUID | None = None
    duplicate_acknowledged: bool = False

    # Counterpart
    counterpart_candidates: tuple[RankedCounterpart, ...] = ()
    counterpart: CounterpartResolution | None = None

    # Currency
    currency: str = "TND"
    exchange_rate: Decimal = Decimal("1")

    # Lines and totals
    lines: list[LineItem] = field(default_factory=list)
    lines_edited: bool = False
    stamp_duty_override: Decimal | None = None
    totals: Totals | None = None
    target_amount: Decimal | None = None
    requested_quantities: dict[UUID, Decimal] = field(default_factory=dict)

    # Classification tags
    document_family: str | None = None
    tags: dict[str, str] = field(default_factory=dict)

    committed_document_id: UUID | None = None

    @property
    def document_kind(self) -> DocumentKind:
        return self.definition.document_kind

    @property
    def is_foreign(self) -> bool:
        if self.step_plan is not None:
            return self.step_plan.counterpart_foreign
        if self.counterpart is None or self.counterpart.counterpart_type is None:
            return False
        return self.counterpart.counterpart_type.is_foreign

    @property
    def counterpart_id(self) -> UUID | None:
        return self.counterpart.counterpart_id if self.counterpart else None

    @property
    def steps(self) -> tuple[IntakeStep, ...]:
        """The fixed plan, or the known prefix while the plan is still open."""
        if self.step_plan is not None:
            return self.step_plan.steps
        return self.definition.fixed_prefix

    @property
    def has_local_state(self) -> bool:
        """True once any step beyond intake produced state a cancel would lose."""
        return self.current_step is not IntakeStep.INTAKE or bool(
            self.completed_steps - {IntakeStep.INTAKE}
        )

    @property
    def is_open(self) -> bool:
        return self.status is WorkflowStatus.ACTIVE
