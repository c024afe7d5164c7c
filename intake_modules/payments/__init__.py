"""
Payments Module (``intake_modules.payments``).

Settlement of purchase documents: withholding, direct payments and the
supplier payment request lifecycle.
"""

from intake_modules.payments.models import DocumentBalance, PaymentRequestSummary, PaymentSummary
from intake_modules.payments.service import PaymentsService, payment_status_for
from intake_modules.payments.workflows import PAYMENT_REQUEST_WORKFLOW

__all__ = [
    "DocumentBalance",
    "PAYMENT_REQUEST_WORKFLOW",
    "PaymentRequestSummary",
    "PaymentSummary",
    "PaymentsService",
    "payment_status_for",
]
