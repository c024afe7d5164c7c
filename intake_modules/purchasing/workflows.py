"""
Purchasing Workflows (``intake_modules.purchasing.workflows``).

Responsibility
--------------
Declares the step list of the supplier invoice intake.  The currency step
is guarded: it joins the plan only when the identified supplier is
foreign, and the plan is fixed when counterpart identification completes.

Architecture position
---------------------
**Modules layer** -- declarative workflow definitions.  Imports Guard from
``intake_kernel.domain.workflow`` and the step types from
``intake_kernel.domain.context``.  Consumed by ``IntakeWorkflowEngine``.
"""

from intake_kernel.domain.context import IntakeStep, IntakeWorkflowDefinition, StepDefinition
from intake_kernel.domain.documents import DocumentKind
from intake_kernel.domain.workflow import Guard
from intake_kernel.logging_config import get_logger

logger = get_logger("modules.purchasing.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

COUNTERPART_IS_FOREIGN = Guard(
    name="counterpart_is_foreign",
    description="Identified supplier is established abroad",
)

logger.info(
    "purchasing_workflow_guards_defined",
    extra={"guards": [COUNTERPART_IS_FOREIGN.name]},
)


# -----------------------------------------------------------------------------
# Supplier invoice intake
# -----------------------------------------------------------------------------

PURCHASE_INTAKE_WORKFLOW = IntakeWorkflowDefinition(
    name="purchase_intake",
    document_kind=DocumentKind.PURCHASE,
    steps=(
        StepDefinition(IntakeStep.INTAKE),
        StepDefinition(IntakeStep.COUNTERPART_IDENTIFICATION),
        StepDefinition(IntakeStep.CURRENCY_SELECTION, include_when=COUNTERPART_IS_FOREIGN),
        StepDefinition(IntakeStep.LINE_ANALYSIS),
        StepDefinition(IntakeStep.LINE_DETAIL_COMPLETION),
        StepDefinition(IntakeStep.LINE_VERIFICATION),
        StepDefinition(IntakeStep.TOTALS_CONFIRMATION),
        StepDefinition(IntakeStep.COMMIT),
    ),
)

logger.info(
    "purchase_intake_workflow_registered",
    extra={
        "workflow_name": PURCHASE_INTAKE_WORKFLOW.name,
        "step_count": len(PURCHASE_INTAKE_WORKFLOW.steps),
        "conditional_steps": [
            d.step.value for d in PURCHASE_INTAKE_WORKFLOW.steps if d.include_when is not None
        ],
    },
)
