"""
intake_services -- Package init and public API.

Responsibility:
    Stateful services that compose the pure engines (intake_engines/) with
    a database session: catalog reads and inserts, the stock ledger, the
    exchange rate store, the intake step machine and the terminal commit.
    This is the only layer besides the modules that holds sessions.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        intake_services/ -> intake_engines/  (allowed)
        intake_services/ -> intake_kernel/   (allowed)
        intake_engines/  -> intake_services/ (FORBIDDEN)
        intake_kernel/   -> intake_services/ (FORBIDDEN)

Invariants enforced:
    - Services flush; only ReconciliationCommitter and the module services
      commit or roll back.
"""

from intake_kernel.logging_config import get_logger

logger = get_logger("services")

from intake_services.catalog_service import CatalogService
from intake_services.committer import DocumentWriter, ReconciliationCommitter
from intake_services.exchange_rate_service import ExchangeRateService
from intake_services.stock_reconciler import StockReconciler
from intake_services.workflow_engine import IntakeWorkflowEngine
from intake_services.workflow_executor import WorkflowExecutor, default_guard_executor

__all__ = [
    "CatalogService",
    "DocumentWriter",
    "ExchangeRateService",
    "IntakeWorkflowEngine",
    "ReconciliationCommitter",
    "StockReconciler",
    "WorkflowExecutor",
    "default_guard_executor",
]
