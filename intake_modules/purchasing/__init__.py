"""
Purchasing Module (``intake_modules.purchasing``).

Supplier invoice intake: extraction result in, committed purchase document
with stock receipts out.  The currency step joins the plan only for
foreign suppliers.
"""

from intake_modules.purchasing.models import PurchaseDocumentSummary, PurchaseLineSummary
from intake_modules.purchasing.service import PurchasingService
from intake_modules.purchasing.workflows import COUNTERPART_IS_FOREIGN, PURCHASE_INTAKE_WORKFLOW
from intake_modules.purchasing.writer import PurchaseDocumentWriter

__all__ = [
    "COUNTERPART_IS_FOREIGN",
    "PURCHASE_INTAKE_WORKFLOW",
    "PurchaseDocumentSummary",
    "PurchaseDocumentWriter",
    "PurchaseLineSummary",
    "PurchasingService",
]
