"""
intake_services.workflow_executor -- Status transition execution.

Responsibility:
    Executes state transitions of the request lifecycles (invoice requests,
    payment requests) with guard evaluation.  Thin coordinator: the
    transition table is declared by each module's ``workflows.py``, guard
    logic lives in GuardExecutor, persistence stays with the module service.

Architecture position:
    Services layer.  May import from intake_kernel (domain, logging).

Invariants enforced:
    - A state changes only through a declared transition whose guard passes.
    - Every attempt, successful or not, emits one ``workflow_transition``
      trace record.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from intake_kernel.domain.documents import PaymentMethod
from intake_kernel.domain.workflow import Guard, Transition, TransitionResult, Workflow
from intake_kernel.exceptions import InvalidStatusTransitionError
from intake_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.workflow_executor")

TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_GUARD_FAILED = "guard_failed"
OUTCOME_NO_TRANSITION = "no_transition"


def _emit_workflow_trace(
    workflow_name: str,
    action: str,
    entity_type: str,
    entity_id: UUID,
    from_state: str,
    outcome: str,
    reason: str,
    duration_ms: float,
    to_state: str | None = None,
    records_payment: bool = False,
    outcome_sink: Callable[[dict], None] | None = None,
) -> None:
    """Emit a structured status transition record."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "ts": datetime.now(UTC).isoformat(),
        "workflow": workflow_name,
        "action": action,
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "from_state": from_state,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
        "records_payment": records_payment,
    }
    if to_state is not None:
        record["to_state"] = to_state
    record.update(LogContext.get_all())
    logger.info("workflow_transition", extra=record)
    if outcome_sink is not None:
        outcome_sink(dict(record, message="workflow_transition"))


# ---------------------------------------------------------------------------
# Guard evaluation
# ---------------------------------------------------------------------------


def _get_attr(context: Any, key: str, default: Any = None) -> Any:
    """Get attribute from context (object or dict)."""
    if context is None:
        return default
    if hasattr(context, "get") and callable(getattr(context, "get")):
        return context.get(key, default)
    return getattr(context, key, default)


def _as_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _response_complete(context: Any) -> bool:
    """Payment request response: positive paid amount, method, reference when required."""
    paid = _as_decimal(_get_attr(context, "paid_amount"))
    method = _get_attr(context, "payment_method")
    if paid is None or paid <= 0 or method is None:
        return False
    if PaymentMethod(method).requires_reference:
        return bool((_get_attr(context, "reference_number") or "").strip())
    return True


def _paid_within_request(context: Any) -> bool:
    """Payment request approval: paid amount within the net requested and the remaining balance."""
    paid = _as_decimal(_get_attr(context, "paid_amount"))
    requested = _as_decimal(_get_attr(context, "net_requested_amount"))
    remaining = _as_decimal(_get_attr(context, "remaining_balance"))
    if paid is None or requested is None:
        return False
    if remaining is not None and paid > remaining:
        return False
    return Decimal("0") < paid <= requested


def _rejection_reason_given(context: Any) -> bool:
    return bool((_get_attr(context, "rejection_reason") or "").strip())


def _invoice_generated(context: Any) -> bool:
    return (
        _get_attr(context, "generated_invoice_id") is not None
        and _get_attr(context, "linked_client_id") is not None
    )


class GuardExecutor:
    """Evaluates transition guards against a context.

    Guards are declared on transitions (name + description).  This executor
    holds the evaluation logic per guard name.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, Callable[[Any], bool]] = {}

    def register(self, guard_name: str, evaluator: Callable[[Any], bool]) -> None:
        self._evaluators[guard_name] = evaluator

    def evaluate(self, guard: Guard, context: Any = None) -> bool:
        """True if the guard passes; a missing or failing evaluator counts as not passing."""
        fn = self._evaluators.get(guard.name)
        if fn is None:
            logger.warning("guard_no_evaluator", extra={"guard_name": guard.name})
            return False
        try:
            return bool(fn(context))
        except (ArithmeticError, TypeError, ValueError) as e:
            logger.warning(
                "guard_evaluation_error",
                extra={"guard_name": guard.name, "error": str(e)},
            )
            return False


def default_guard_executor() -> GuardExecutor:
    """GuardExecutor with the request lifecycle guards registered."""
    ex = GuardExecutor()
    ex.register("response_complete", _response_complete)
    ex.register("paid_within_request", _paid_within_request)
    ex.register("rejection_reason_given", _rejection_reason_given)
    ex.register("invoice_generated", _invoice_generated)
    return ex


# ---------------------------------------------------------------------------
# WorkflowExecutor
# ---------------------------------------------------------------------------


class WorkflowExecutor:
    """Executes status transitions with guard evaluation."""

    def __init__(self, guard_executor: GuardExecutor | None = None) -> None:
        self._guard_executor = guard_executor or default_guard_executor()

    def execute_transition(
        self,
        workflow: Workflow,
        entity_type: str,
        entity_id: UUID,
        current_state: str,
        action: str,
        context: dict[str, Any] | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
    ) -> TransitionResult:
        """Attempt ``action`` from ``current_state``; never raises on a refused transition."""
        t0 = time.monotonic()

        transition = self._find_transition(workflow, current_state, action)
        if transition is None:
            reason = (
                f"No transition from '{current_state}' via action '{action}' "
                f"in workflow '{workflow.name}'"
            )
            _emit_workflow_trace(
                workflow_name=workflow.name,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                from_state=current_state,
                outcome=OUTCOME_NO_TRANSITION,
                reason=reason,
                duration_ms=(time.monotonic() - t0) * 1000,
                outcome_sink=outcome_sink,
            )
            return TransitionResult(success=False, reason=reason)

        if transition.guard is not None:
            if not self._guard_executor.evaluate(transition.guard, context or {}):
                reason = f"Guard not satisfied: {transition.guard.name}"
                _emit_workflow_trace(
                    workflow_name=workflow.name,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    from_state=current_state,
                    outcome=OUTCOME_GUARD_FAILED,
                    reason=reason,
                    duration_ms=(time.monotonic() - t0) * 1000,
                    outcome_sink=outcome_sink,
                )
                return TransitionResult(success=False, reason=reason)

        _emit_workflow_trace(
            workflow_name=workflow.name,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            from_state=current_state,
            to_state=transition.to_state,
            outcome=OUTCOME_SUCCESS,
            reason="",
            duration_ms=(time.monotonic() - t0) * 1000,
            records_payment=transition.records_payment,
            outcome_sink=outcome_sink,
        )
        return TransitionResult(
            success=True,
            new_state=transition.to_state,
            records_payment=transition.records_payment,
        )

    def require_transition(
        self,
        workflow: Workflow,
        entity_type: str,
        entity_id: UUID,
        current_state: str,
        action: str,
        context: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Like execute_transition, but a refused transition raises InvalidStatusTransitionError."""
        result = self.execute_transition(
            workflow, entity_type, entity_id, current_state, action, context,
        )
        if not result.success:
            raise InvalidStatusTransitionError(
                workflow.name, current_state, action, result.reason,
            )
        return result

    @staticmethod
    def _find_transition(
        workflow: Workflow,
        current_state: str,
        action: str,
    ) -> Transition | None:
        for t in workflow.transitions:
            if t.from_state == current_state and t.action == action:
                return t
        return None
