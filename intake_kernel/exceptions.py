"""
Typed exception hierarchy for the intake kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A reconciliation form has to tell a missing field apart from a duplicate
product, and both apart from a lost database connection.  Callers catch by
type, read the machine-readable ``code``, and render the structured fields;
they never parse message strings.

    try:
        engine.confirm(ctx)
    except StepValidationError as e:          # field-scoped, recoverable
        show_field_errors(e.errors)
    except ExternalStoreError as e:           # blocking, retry the step
        show_retry_banner(e.operation)
    except InconsistentStateError as e:       # fatal, escalate
        page_operator(e.document_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    IntakeError (base)
    |
    +-- ValidationError                (field-scoped, recoverable)
    |   +-- RequiredFieldError
    |   +-- ValueOutOfRangeError
    |   +-- InvalidBarcodeError
    |   +-- InvalidIdentifierError
    |   +-- InvalidEmailError
    |   +-- InvalidExchangeRateError
    |   +-- InvalidCurrencyError
    |   +-- TotalsMismatchError
    |   +-- PaymentAmountError
    |   +-- PaymentReferenceRequiredError
    |   +-- StepValidationError       (aggregate of one step's field errors)
    |
    +-- ConflictError                  (catalog uniqueness)
    |   +-- DuplicateProductError
    |   +-- DuplicateCounterpartError
    |
    +-- WorkflowError
    |   +-- InvalidStepTransitionError
    |   +-- WorkflowClosedError
    |   +-- StepPlanLockedError
    |   +-- InvalidStatusTransitionError
    |
    +-- NotFoundError
    |   +-- CounterpartNotFoundError
    |   +-- ProductNotFoundError
    |   +-- DocumentNotFoundError
    |   +-- InvoiceRequestNotFoundError
    |   +-- PaymentRequestNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- StockMovementNotFoundError
    |
    +-- ConcurrencyError
    |   +-- StockConflictError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- MovementAlreadyReversedError
    |
    +-- PaymentError
    |   +-- WithholdingLockedError
    |   +-- ExchangeRateLockedError
    |   +-- DocumentAlreadyPaidError
    |
    +-- ImmutabilityViolationError
    |
    +-- ExternalStoreError             (persistence failure, not retried)
    |
    +-- InconsistentStateError         (partial commit, fatal)
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class IntakeError(Exception):
    """Base exception for all intake kernel errors."""

    code: str = "INTAKE_ERROR"


# Validation errors


class ValidationError(IntakeError):
    """A step's confirm precondition failed; nothing was written."""

    code: str = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        line_index: int | None = None,
    ):
        self.field = field
        self.line_index = line_index
        super().__init__(message)


class RequiredFieldError(ValidationError):
    """A mandatory field is missing or blank."""

    code: str = "REQUIRED_FIELD"

    def __init__(self, field: str, line_index: int | None = None):
        where = f" on line {line_index}" if line_index is not None else ""
        super().__init__(f"Field '{field}' is required{where}", field, line_index)


class ValueOutOfRangeError(ValidationError):
    """A numeric field falls outside its allowed bounds."""

    code: str = "VALUE_OUT_OF_RANGE"

    def __init__(
        self,
        field: str,
        value: Any,
        minimum: Any = None,
        maximum: Any = None,
        line_index: int | None = None,
    ):
        self.value = value
        self.minimum = minimum
        self.maximum = maximum
        bounds = f"[{minimum if minimum is not None else '-inf'}, " \
                 f"{maximum if maximum is not None else '+inf'}]"
        super().__init__(
            f"Field '{field}' value {value} is outside {bounds}",
            field,
            line_index,
        )


class InvalidBarcodeError(ValidationError):
    """Non-empty barcode that matches no recognized format."""

    code: str = "INVALID_BARCODE"

    def __init__(self, value: str, line_index: int | None = None):
        self.value = value
        super().__init__(
            f"Barcode '{value}' matches no recognized format",
            "ean",
            line_index,
        )


class InvalidIdentifierError(ValidationError):
    """Government identifier type or value is not acceptable."""

    code: str = "INVALID_IDENTIFIER"

    def __init__(self, identifier_type: str | None, value: str | None, reason: str):
        self.identifier_type = identifier_type
        self.value = value
        self.reason = reason
        super().__init__(
            f"Invalid identifier {identifier_type}={value!r}: {reason}",
            "identifier_value",
        )


class InvalidEmailError(ValidationError):
    """Email address does not have a valid shape."""

    code: str = "INVALID_EMAIL"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid email address: {value!r}", "email")


class InvalidExchangeRateError(ValidationError):
    """Exchange rate is missing, zero or negative."""

    code: str = "INVALID_EXCHANGE_RATE"

    def __init__(self, rate: Any, currency: str | None = None):
        self.rate = rate
        self.currency = currency
        super().__init__(
            f"Exchange rate must be a decimal > 0, got {rate!r}"
            + (f" for {currency}" if currency else ""),
            "exchange_rate",
        )


class InvalidCurrencyError(ValidationError):
    """Currency code is not a supported ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Unsupported currency code: {currency!r}", "currency")


class TotalsMismatchError(ValidationError):
    """Recomputed net payable differs from an externally imposed target."""

    code: str = "TOTALS_MISMATCH"

    def __init__(self, target: Decimal, computed: Decimal, tolerance: Decimal):
        self.target = target
        self.computed = computed
        self.difference = abs(target - computed)
        self.tolerance = tolerance
        super().__init__(
            f"Net payable {computed} does not match target {target} "
            f"(difference {self.difference}, tolerance {tolerance})",
            "net_payable",
        )


class PaymentAmountError(ValidationError):
    """Payment amount must satisfy 0 < amount <= remaining balance."""

    code: str = "PAYMENT_AMOUNT_INVALID"

    def __init__(self, amount: Decimal, remaining: Decimal):
        self.amount = amount
        self.remaining = remaining
        super().__init__(
            f"Payment amount {amount} must be > 0 and <= remaining {remaining}",
            "amount",
        )


class PaymentReferenceRequiredError(ValidationError):
    """The chosen payment method needs a reference number."""

    code: str = "PAYMENT_REFERENCE_REQUIRED"

    def __init__(self, method: str):
        self.method = method
        super().__init__(
            f"Payment method '{method}' requires a reference number",
            "reference_number",
        )


class StepValidationError(ValidationError):
    """
    All field errors raised while validating one workflow step.

    Conflict errors (duplicate catalog values) are collected alongside
    validation errors so every failing field is reported at once.

    The form renders each entry of ``errors`` next to its field; the
    workflow stays on ``step``.
    """

    code: str = "STEP_VALIDATION_FAILED"

    def __init__(self, step: str, errors: list[ValidationError | ConflictError]):
        self.step = step
        self.errors = tuple(errors)
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(f"Step '{step}' failed validation: {details}")

    @property
    def fields(self) -> tuple[str | None, ...]:
        return tuple(e.field for e in self.errors)


# Conflict errors


class ConflictError(IntakeError):
    """Creating an entity would collide with an existing catalog record."""

    code: str = "CONFLICT"

    def __init__(self, message: str, field: str, value: str, existing_id: Any = None):
        self.field = field
        self.value = value
        self.existing_id = existing_id
        super().__init__(message)


class DuplicateProductError(ConflictError):
    """A product with the same name, reference or EAN already exists."""

    code: str = "DUPLICATE_PRODUCT"

    def __init__(
        self,
        field: str,
        value: str,
        existing_id: Any = None,
        line_index: int | None = None,
    ):
        self.line_index = line_index
        super().__init__(
            f"A product with {field} '{value}' already exists",
            field,
            value,
            existing_id,
        )


class DuplicateCounterpartError(ConflictError):
    """A counterpart with the same identifier already exists."""

    code: str = "DUPLICATE_COUNTERPART"

    def __init__(self, field: str, value: str, existing_id: Any = None):
        super().__init__(
            f"A counterpart with {field} '{value}' already exists",
            field,
            value,
            existing_id,
        )


# Workflow errors


class WorkflowError(IntakeError):
    """Base exception for workflow navigation errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidStepTransitionError(WorkflowError):
    """Requested move between steps is not allowed."""

    code: str = "INVALID_STEP_TRANSITION"

    def __init__(self, from_step: str, to_step: str, reason: str):
        self.from_step = from_step
        self.to_step = to_step
        self.reason = reason
        super().__init__(f"Cannot move from {from_step} to {to_step}: {reason}")


class WorkflowClosedError(WorkflowError):
    """The workflow instance was committed or cancelled and cannot be reused."""

    code: str = "WORKFLOW_CLOSED"

    def __init__(self, workflow_id: Any, state: str):
        self.workflow_id = workflow_id
        self.state = state
        super().__init__(
            f"Workflow {workflow_id} is {state}; start a new instance"
        )


class StepPlanLockedError(WorkflowError):
    """Counterpart locality changed after the step plan was fixed."""

    code: str = "STEP_PLAN_LOCKED"

    def __init__(self, workflow_id: Any, planned_foreign: bool):
        self.workflow_id = workflow_id
        self.planned_foreign = planned_foreign
        kind = "foreign" if planned_foreign else "local"
        super().__init__(
            f"Workflow {workflow_id} was planned for a {kind} counterpart; "
            "cancel and restart to change counterpart locality"
        )


class InvalidStatusTransitionError(WorkflowError):
    """No transition for the action from the entity's current status."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, workflow: str, current_state: str, action: str, reason: str = ""):
        self.workflow = workflow
        self.current_state = current_state
        self.action = action
        self.reason = reason
        super().__init__(
            f"Workflow '{workflow}' cannot '{action}' from '{current_state}'"
            + (f": {reason}" if reason else "")
        )


# Not-found errors


class NotFoundError(IntakeError):
    """Referenced record does not exist for the organization."""

    code: str = "NOT_FOUND"
    entity: str = "record"

    def __init__(self, entity_id: Any):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} {entity_id} not found")


class CounterpartNotFoundError(NotFoundError):
    code: str = "COUNTERPART_NOT_FOUND"
    entity: str = "Counterpart"


class ProductNotFoundError(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"
    entity: str = "Product"


class DocumentNotFoundError(NotFoundError):
    code: str = "DOCUMENT_NOT_FOUND"
    entity: str = "Document"


class InvoiceRequestNotFoundError(NotFoundError):
    code: str = "INVOICE_REQUEST_NOT_FOUND"
    entity: str = "Invoice request"


class PaymentRequestNotFoundError(NotFoundError):
    code: str = "PAYMENT_REQUEST_NOT_FOUND"
    entity: str = "Payment request"


class PaymentNotFoundError(NotFoundError):
    code: str = "PAYMENT_NOT_FOUND"
    entity: str = "Payment"


class StockMovementNotFoundError(NotFoundError):
    code: str = "STOCK_MOVEMENT_NOT_FOUND"
    entity: str = "Stock movement"


# Concurrency errors


class ConcurrencyError(IntakeError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class StockConflictError(ConcurrencyError):
    """Product stock changed between the read and the compare-and-set write."""

    code: str = "STOCK_CONFLICT"

    def __init__(self, product_id: Any, expected_stock: Decimal):
        self.product_id = product_id
        self.expected_stock = expected_stock
        super().__init__(
            f"Stock of product {product_id} changed concurrently "
            f"(expected {expected_stock}); the movement was not applied"
        )


# Stock errors


class StockError(IntakeError):
    """Base exception for stock ledger errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Removal would take stock below zero for a product that forbids it."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: Any, available: Decimal, requested: Decimal):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Product {product_id} has {available} in stock, {requested} requested"
        )


class MovementAlreadyReversedError(StockError):
    """A ledger entry may be reversed at most once."""

    code: str = "MOVEMENT_ALREADY_REVERSED"

    def __init__(self, movement_id: Any, reversal_id: Any):
        self.movement_id = movement_id
        self.reversal_id = reversal_id
        super().__init__(
            f"Stock movement {movement_id} was already reversed by {reversal_id}"
        )


# Payment errors


class PaymentError(IntakeError):
    """Base exception for payment bookkeeping errors."""

    code: str = "PAYMENT_ERROR"


class WithholdingLockedError(PaymentError):
    """Withholding can only change while the document has no payments."""

    code: str = "WITHHOLDING_LOCKED"

    def __init__(self, document_id: Any):
        self.document_id = document_id
        super().__init__(
            f"Document {document_id} already has payments; withholding is locked"
        )


class ExchangeRateLockedError(PaymentError):
    """Document-level rate is frozen once a payment exists."""

    code: str = "EXCHANGE_RATE_LOCKED"

    def __init__(self, document_id: Any):
        self.document_id = document_id
        super().__init__(
            f"Document {document_id} already has payments; its exchange rate is locked"
        )


class DocumentAlreadyPaidError(PaymentError):
    """Nothing remains to be paid on the document."""

    code: str = "DOCUMENT_ALREADY_PAID"

    def __init__(self, document_id: Any):
        self.document_id = document_id
        super().__init__(f"Document {document_id} is fully paid")


# Immutability


class ImmutabilityViolationError(IntakeError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Store failures


class ExternalStoreError(IntakeError):
    """
    A catalog, ledger or document store read/write failed.

    Never retried inside the core.  The workflow context keeps the state of
    its last successful step so the caller may retry the same step.
    """

    code: str = "EXTERNAL_STORE_FAILURE"

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause_type = type(cause).__name__
        super().__init__(f"Store operation '{operation}' failed: {cause}")


class InconsistentStateError(IntakeError):
    """
    A multi-step commit failed and could not be rolled back.

    Distinct from every other error: steps that already ran may be visible
    to readers and require operator reconciliation.
    """

    code: str = "INCONSISTENT_STATE"

    def __init__(
        self,
        document_id: Any,
        failed_step: str,
        completed_steps: tuple[str, ...],
    ):
        self.document_id = document_id
        self.failed_step = failed_step
        self.completed_steps = completed_steps
        super().__init__(
            f"Commit of document {document_id} failed at '{failed_step}' after "
            f"{list(completed_steps)} and rollback did not complete"
        )
