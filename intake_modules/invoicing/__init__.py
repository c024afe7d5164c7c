"""
Invoicing Module (``intake_modules.invoicing``).

Client invoices: invoice requests submitted by clients, the invoice intake
seeded from a request (its total becomes the target net payable) or
entered by hand, and the numbered invoice with its stock removals.
"""

from intake_modules.invoicing.models import (
    ClientIdentity,
    InvoiceLineSummary,
    InvoiceRequestSummary,
    InvoiceSummary,
    RequestLineInput,
)
from intake_modules.invoicing.service import InvoicingService
from intake_modules.invoicing.workflows import (
    INVOICE_GENERATED,
    INVOICE_INTAKE_WORKFLOW,
    INVOICE_REQUEST_WORKFLOW,
    REJECTION_REASON_GIVEN,
)
from intake_modules.invoicing.writer import InvoiceWriter

__all__ = [
    "ClientIdentity",
    "INVOICE_GENERATED",
    "INVOICE_INTAKE_WORKFLOW",
    "INVOICE_REQUEST_WORKFLOW",
    "InvoiceLineSummary",
    "InvoiceRequestSummary",
    "InvoiceSummary",
    "InvoiceWriter",
    "InvoicingService",
    "REJECTION_REASON_GIVEN",
    "RequestLineInput",
]
