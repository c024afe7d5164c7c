"""
Pure domain layer.

Value objects and vocabularies of the intake pipeline with NO dependencies
on the ORM, the database or I/O.  The workflow context is the only mutable
object and is owned by exactly one workflow instance.
"""

from intake_kernel.domain.amounts import LineAmounts, SalePrice, Totals, TotalsSource
from intake_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from intake_kernel.domain.context import (
    IntakeStep,
    IntakeWorkflowDefinition,
    LineItem,
    StepDefinition,
    StepPlan,
    WorkflowContext,
    WorkflowStatus,
)
from intake_kernel.domain.counterpart import (
    CounterpartDraft,
    CounterpartRecord,
    CounterpartRole,
    CounterpartType,
    MatchedCounterpart,
    NewCounterpart,
    SelectedCounterpart,
)
from intake_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from intake_kernel.domain.documents import CreationMode, DocumentKind
from intake_kernel.domain.extraction import ExtractionResult
from intake_kernel.domain.product import (
    CreateNew,
    MovementType,
    ProductDraft,
    ProductRecord,
    SelectOther,
    UseExisting,
)
from intake_kernel.domain.workflow import Guard, Transition, TransitionResult, Workflow

__all__ = [
    "Clock",
    "CounterpartDraft",
    "CounterpartRecord",
    "CounterpartRole",
    "CounterpartType",
    "CreateNew",
    "CreationMode",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "DocumentKind",
    "ExtractionResult",
    "Guard",
    "IntakeStep",
    "IntakeWorkflowDefinition",
    "LineAmounts",
    "LineItem",
    "MatchedCounterpart",
    "MovementType",
    "NewCounterpart",
    "ProductDraft",
    "ProductRecord",
    "SalePrice",
    "SelectOther",
    "SelectedCounterpart",
    "StepDefinition",
    "StepPlan",
    "SystemClock",
    "Totals",
    "TotalsSource",
    "Transition",
    "TransitionResult",
    "UseExisting",
    "Workflow",
    "WorkflowContext",
    "WorkflowStatus",
]
