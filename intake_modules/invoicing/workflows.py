"""
Invoicing Workflows (``intake_modules.invoicing.workflows``).

Responsibility
--------------
Declares the step list of the client invoice intake (no currency step:
invoices are always issued in the settlement currency) and the status
lifecycle of invoice requests.

Architecture position
---------------------
**Modules layer** -- declarative definitions consumed by
``IntakeWorkflowEngine`` (steps) and ``WorkflowExecutor`` (request
statuses).

Invariants enforced
-------------------
* ``processed`` is reachable only once the generated invoice and the
  linked client are recorded on the request.
* ``rejected`` requires a reason.
"""

from intake_kernel.domain.context import IntakeStep, IntakeWorkflowDefinition, StepDefinition
from intake_kernel.domain.documents import DocumentKind, InvoiceRequestStatus
from intake_kernel.domain.workflow import Guard, Transition, Workflow
from intake_kernel.logging_config import get_logger

logger = get_logger("modules.invoicing.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

INVOICE_GENERATED = Guard(
    name="invoice_generated",
    description="Request carries the generated invoice id and the linked client id",
)

REJECTION_REASON_GIVEN = Guard(
    name="rejection_reason_given",
    description="A non-blank rejection reason was entered",
)

logger.info(
    "invoicing_workflow_guards_defined",
    extra={"guards": [INVOICE_GENERATED.name, REJECTION_REASON_GIVEN.name]},
)


# -----------------------------------------------------------------------------
# Client invoice intake
# -----------------------------------------------------------------------------

INVOICE_INTAKE_WORKFLOW = IntakeWorkflowDefinition(
    name="invoice_intake",
    document_kind=DocumentKind.INVOICE,
    steps=(
        StepDefinition(IntakeStep.INTAKE),
        StepDefinition(IntakeStep.COUNTERPART_IDENTIFICATION),
        StepDefinition(IntakeStep.LINE_ANALYSIS),
        StepDefinition(IntakeStep.LINE_DETAIL_COMPLETION),
        StepDefinition(IntakeStep.LINE_VERIFICATION),
        StepDefinition(IntakeStep.TOTALS_CONFIRMATION),
        StepDefinition(IntakeStep.COMMIT),
    ),
)


# -----------------------------------------------------------------------------
# Invoice request lifecycle
# -----------------------------------------------------------------------------

_PENDING = InvoiceRequestStatus.PENDING.value
_PROCESSED = InvoiceRequestStatus.PROCESSED.value
_REJECTED = InvoiceRequestStatus.REJECTED.value
_CONVERTED = InvoiceRequestStatus.CONVERTED.value

INVOICE_REQUEST_WORKFLOW = Workflow(
    name="invoice_request",
    description="Client invoice request handling",
    initial_state=_PENDING,
    states=(_PENDING, _PROCESSED, _REJECTED, _CONVERTED),
    terminal_states=(_REJECTED, _CONVERTED),
    transitions=(
        Transition(_PENDING, _PROCESSED, action="process", guard=INVOICE_GENERATED),
        Transition(_PENDING, _REJECTED, action="reject", guard=REJECTION_REASON_GIVEN),
        Transition(_PENDING, _CONVERTED, action="convert"),
        Transition(_PROCESSED, _CONVERTED, action="convert"),
    ),
)

logger.info(
    "invoice_request_workflow_registered",
    extra={
        "workflow_name": INVOICE_REQUEST_WORKFLOW.name,
        "state_count": len(INVOICE_REQUEST_WORKFLOW.states),
        "transition_count": len(INVOICE_REQUEST_WORKFLOW.transitions),
        "initial_state": INVOICE_REQUEST_WORKFLOW.initial_state,
    },
)
