"""
Payments Workflows (``intake_modules.payments.workflows``).

Responsibility
--------------
Status lifecycle of payment requests sent to suppliers.  Guards express
the preconditions of each move; ``records_payment=True`` marks the only
transition that creates a ledger payment (approval).

Architecture position
---------------------
**Modules layer** -- declarative workflow definitions consumed by
``WorkflowExecutor``.
"""

from intake_kernel.domain.documents import PaymentRequestStatus
from intake_kernel.domain.workflow import Guard, Transition, Workflow
from intake_kernel.logging_config import get_logger

logger = get_logger("modules.payments.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

RESPONSE_COMPLETE = Guard(
    name="response_complete",
    description="Paid amount, payment method and (when required) reference given",
)

PAID_WITHIN_REQUEST = Guard(
    name="paid_within_request",
    description="Reported paid amount within the net requested amount and the remaining balance",
)

REJECTION_REASON_GIVEN = Guard(
    name="rejection_reason_given",
    description="A non-blank rejection reason was entered",
)

logger.info(
    "payments_workflow_guards_defined",
    extra={
        "guards": [
            RESPONSE_COMPLETE.name,
            PAID_WITHIN_REQUEST.name,
            REJECTION_REASON_GIVEN.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Payment request lifecycle
# -----------------------------------------------------------------------------

_PENDING = PaymentRequestStatus.PENDING.value
_AWAITING = PaymentRequestStatus.AWAITING_APPROVAL.value
_APPROVED = PaymentRequestStatus.APPROVED.value
_REJECTED = PaymentRequestStatus.REJECTED.value
_CANCELLED = PaymentRequestStatus.CANCELLED.value

PAYMENT_REQUEST_WORKFLOW = Workflow(
    name="payment_request",
    description="Supplier payment request approval",
    initial_state=_PENDING,
    states=(_PENDING, _AWAITING, _APPROVED, _REJECTED, _CANCELLED),
    terminal_states=(_APPROVED, _REJECTED, _CANCELLED),
    transitions=(
        Transition(_PENDING, _AWAITING, action="submit_response", guard=RESPONSE_COMPLETE),
        Transition(_PENDING, _CANCELLED, action="cancel"),
        Transition(
            _AWAITING,
            _APPROVED,
            action="approve",
            guard=PAID_WITHIN_REQUEST,
            records_payment=True,
        ),
        Transition(_AWAITING, _REJECTED, action="reject", guard=REJECTION_REASON_GIVEN),
        Transition(_AWAITING, _CANCELLED, action="cancel"),
    ),
)

logger.info(
    "payment_request_workflow_registered",
    extra={
        "workflow_name": PAYMENT_REQUEST_WORKFLOW.name,
        "state_count": len(PAYMENT_REQUEST_WORKFLOW.states),
        "transition_count": len(PAYMENT_REQUEST_WORKFLOW.transitions),
        "initial_state": PAYMENT_REQUEST_WORKFLOW.initial_state,
    },
)
