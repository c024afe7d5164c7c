"""
Intake Modules.

Thin orchestration layers over the intake kernel, engines and services.
Each module contains:
- Domain models (frozen summaries returned to callers)
- Workflows (step plans and status lifecycles)
- A service owning the transaction boundary

Modules:
- Purchasing: supplier invoice intake, stock receipts
- Invoicing: client invoice requests, client invoices, stock removals
- Payments: withholding, payments, supplier payment requests
"""

from intake_modules import invoicing, payments, purchasing

__all__ = [
    "invoicing",
    "payments",
    "purchasing",
]
