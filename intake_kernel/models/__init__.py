"""ORM models; importing this package registers every table on Base.metadata."""

from intake_kernel.models.counterpart import Counterpart
from intake_kernel.models.document_counter import DocumentCounter
from intake_kernel.models.exchange_rate import ExchangeRate
from intake_kernel.models.invoice import (
    Invoice,
    InvoiceLine,
    InvoiceRequest,
    InvoiceRequestLine,
)
from intake_kernel.models.payment import PaymentRequest, PurchasePayment
from intake_kernel.models.product import Product
from intake_kernel.models.purchase import PurchaseDocument, PurchaseLine
from intake_kernel.models.stock_movement import StockMovement

__all__ = [
    "Counterpart",
    "DocumentCounter",
    "ExchangeRate",
    "Invoice",
    "InvoiceLine",
    "InvoiceRequest",
    "InvoiceRequestLine",
    "PaymentRequest",
    "Product",
    "PurchaseDocument",
    "PurchaseLine",
    "PurchasePayment",
    "StockMovement",
]
