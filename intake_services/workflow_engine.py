"""
IntakeWorkflowEngine -- the step state machine of one intake workflow.

Responsibility:
    Drives a WorkflowContext through the ordered steps of its definition:
    intake, counterpart identification, currency selection (foreign
    counterparts only), line analysis, line detail completion, line
    verification, totals confirmation and commit.  Owns every edit of the
    context and the validation that gates each forward move.

Architecture position:
    Services -- session-bound for catalog reads (matching, conflicts) and
    the exchange rate store.  Writes nothing except an explicitly saved
    exchange rate (flushed; the module service commits it).  The terminal
    write is delegated to ReconciliationCommitter.

Invariants enforced:
    - Forward moves require the current step's validation to pass; a failed
      validation leaves the context exactly as it was.
    - The StepPlan is computed once, when counterpart identification first
      completes, from the definition's ``include_when`` guards.  A later
      counterpart of the other locality raises StepPlanLockedError.
    - Going back never discards data; it only makes earlier steps editable
      again and forces the steps after them to be re-validated.
    - Every line edit replaces the whole LineItem with recomputed amounts.
    - A committed or cancelled context refuses every operation.

Failure modes:
    - StepValidationError with all field errors of the step.
    - TotalsMismatchError when the net payable misses the imposed target.
    - InvalidStepTransitionError for a step move or an edit the current
      step does not own.
    - WorkflowClosedError / StepPlanLockedError.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from intake_config.schema import IntakePolicy
from intake_engines.currency import validate_currency, validate_rate
from intake_engines.identifiers import (
    normalize_barcode,
    normalize_identifier_type,
    validate_barcode,
    validate_counterpart_draft,
)
from intake_engines.matching import match_counterpart, match_product
from intake_engines.money_math import authoritative_totals, stamp_duty_for
from intake_engines.normalization import LineDefaults, normalize_line, normalize_lines, recompute_line
from intake_engines.pricing import (
    SalePriceField,
    derive_sale_price,
    reprice_for_cost,
    sale_price_from_catalog,
    unit_purchase_cost,
)
from intake_engines.stock import max_quantities
from intake_kernel.db.types import HUNDRED, ZERO, amounts_match, round_amount
from intake_kernel.domain.amounts import SalePrice, Totals
from intake_kernel.domain.clock import Clock, SystemClock
from intake_kernel.domain.context import (
    IntakeStep,
    IntakeWorkflowDefinition,
    LineItem,
    StepPlan,
    WorkflowContext,
    WorkflowStatus,
)
from intake_kernel.domain.counterpart import (
    CounterpartDecision,
    CounterpartDraft,
    CounterpartResolution,
    CounterpartRole,
    CounterpartType,
    MatchedCounterpart,
    NewCounterpart,
    SelectedCounterpart,
)
from intake_kernel.domain.documents import CreationMode, DocumentKind
from intake_kernel.domain.extraction import ExtractedCounterpart, ExtractedLine, ExtractionResult
from intake_kernel.domain.product import (
    UNITS,
    CreateNew,
    LineDecision,
    ProductDecision,
    ProductType,
    RankedProduct,
    SelectOther,
    UseExisting,
)
from intake_kernel.domain.workflow import Guard
from intake_kernel.exceptions import (
    ConflictError,
    CounterpartNotFoundError,
    DuplicateProductError,
    InvalidStepTransitionError,
    RequiredFieldError,
    StepPlanLockedError,
    StepValidationError,
    TotalsMismatchError,
    ValidationError,
    ValueOutOfRangeError,
    WorkflowClosedError,
)
from intake_kernel.logging_config import LogContext, get_logger
from intake_services.catalog_service import CatalogService, product_record
from intake_services.exchange_rate_service import ExchangeRateService

logger = get_logger("services.workflow_engine")

# Line fields and the steps allowed to edit them
_AMOUNT_FIELDS = frozenset({"quantity", "unit_price_ht", "vat_rate", "discount_percent"})
_DETAIL_FIELDS = frozenset({
    "name",
    "reference",
    "ean",
    "unit",
    "product_type",
    "purchase_year",
    "opening_stock",
    "unlimited_stock",
    "allow_out_of_stock_sale",
    "max_discount",
})
_AMOUNT_STEPS = (IntakeStep.LINE_ANALYSIS,)
_DETAIL_STEPS = (IntakeStep.LINE_ANALYSIS, IntakeStep.LINE_DETAIL_COMPLETION)

_ROLE_FOR_KIND = {
    DocumentKind.PURCHASE: CounterpartRole.SUPPLIER,
    DocumentKind.INVOICE: CounterpartRole.CLIENT,
}


def _counterpart_is_foreign(ctx: WorkflowContext) -> bool:
    resolution = ctx.counterpart
    if resolution is None or resolution.counterpart_type is None:
        return False
    return CounterpartType(resolution.counterpart_type).is_foreign


def _counterpart_is_local(ctx: WorkflowContext) -> bool:
    return not _counterpart_is_foreign(ctx)


PLAN_GUARDS: dict[str, Callable[[WorkflowContext], bool]] = {
    "counterpart_is_foreign": _counterpart_is_foreign,
    "counterpart_is_local": _counterpart_is_local,
}


def draft_from_extraction(extracted: ExtractedCounterpart) -> CounterpartDraft:
    """Best-effort counterpart draft from extracted fields; validated on confirm."""
    try:
        counterpart_type = CounterpartType(extracted.counterpart_type)
    except ValueError:
        if extracted.company_name:
            counterpart_type = CounterpartType.BUSINESS_LOCAL
        else:
            counterpart_type = CounterpartType.INDIVIDUAL_LOCAL

    company_name = extracted.company_name
    if company_name is None and counterpart_type is not CounterpartType.INDIVIDUAL_LOCAL:
        if not (extracted.first_name and extracted.last_name):
            company_name = extracted.name

    identifier_type = extracted.identifier_type
    if extracted.identifier_value or not counterpart_type.is_foreign:
        identifier_type = normalize_identifier_type(extracted.identifier_type, counterpart_type)

    return CounterpartDraft(
        counterpart_type=counterpart_type,
        first_name=extracted.first_name,
        last_name=extracted.last_name,
        company_name=company_name,
        identifier_type=identifier_type,
        identifier_value=extracted.identifier_value,
        country=extracted.country,
        governorate=extracted.governorate,
        address=extracted.address,
        phone=extracted.phone,
        email=extracted.email,
    )


class IntakeWorkflowEngine:
    """
    Step state machine for intake workflows.

    One engine may drive many contexts; it keeps no per-workflow state.

    Usage:
        engine = IntakeWorkflowEngine(session, policy, clock)
        ctx = engine.start(
            definition=PURCHASE_INTAKE_WORKFLOW,
            organization_id=org_id,
            actor_id=user_id,
            extraction=ExtractionResult.from_dict(payload),
        )
        engine.confirm(ctx)          # intake -> counterpart_identification
        ...
        engine.commit(ctx, committer)
    """

    def __init__(
        self,
        session: Session,
        policy: IntakePolicy,
        clock: Clock | None = None,
        plan_guards: dict[str, Callable[[WorkflowContext], bool]] | None = None,
    ):
        self._session = session
        self._policy = policy
        self._clock = clock or SystemClock()
        self._catalog = CatalogService(session)
        self._rates = ExchangeRateService(session)
        self._plan_guards = dict(PLAN_GUARDS)
        if plan_guards:
            self._plan_guards.update(plan_guards)

    @property
    def catalog(self) -> CatalogService:
        return self._catalog

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _bound(self, ctx: WorkflowContext) -> Iterator[None]:
        with LogContext.bind(
            workflow_id=ctx.workflow_id,
            organization_id=ctx.organization_id,
            actor_id=ctx.actor_id,
        ):
            yield

    @staticmethod
    def _require_open(ctx: WorkflowContext) -> None:
        if not ctx.is_open:
            raise WorkflowClosedError(ctx.workflow_id, ctx.status.value)

    def _require_step(self, ctx: WorkflowContext, what: str, *steps: IntakeStep) -> None:
        self._require_open(ctx)
        if ctx.current_step not in steps:
            raise InvalidStepTransitionError(
                ctx.current_step.value,
                steps[0].value,
                f"{what} can only be edited during {', '.join(s.value for s in steps)}",
            )

    def _role(self, ctx: WorkflowContext) -> CounterpartRole:
        return _ROLE_FOR_KIND[ctx.document_kind]

    def _vat_rule(self, ctx: WorkflowContext, foreign: bool):
        return self._policy.vat.rule_for(ctx.document_kind, foreign)

    def _line_defaults(self, ctx: WorkflowContext) -> LineDefaults:
        ref = self._policy.reference
        return LineDefaults(
            vat_rate=self._policy.vat.default_rate,
            is_exempt=False,
            unit=ref.default_unit,
            name_template=ref.default_name_template,
            reference_prefix=ref.prefix,
            min_purchase_year=ref.min_purchase_year,
            max_purchase_year=ref.max_purchase_year,
        )

    def _settlement_rate(self, ctx: WorkflowContext) -> Decimal | None:
        """Rate used for settlement line amounts; None for local documents."""
        if not ctx.is_foreign or ctx.currency == ctx.settlement_currency:
            return None
        return ctx.exchange_rate

    def _unit_cost(self, line: LineItem) -> Decimal:
        amounts = line.settlement_amounts or line.amounts
        return unit_purchase_cost(amounts.ttc, line.quantity)

    def _set_line(self, ctx: WorkflowContext, line: LineItem) -> LineItem:
        ctx.lines[line.index] = line
        return line

    def _line(self, ctx: WorkflowContext, index: int) -> LineItem:
        if not 0 <= index < len(ctx.lines):
            raise ValueOutOfRangeError("line_index", index, 0, len(ctx.lines) - 1)
        return ctx.lines[index]

    def _recompute_all(self, ctx: WorkflowContext, **changes: Any) -> None:
        rate = self._settlement_rate(ctx)
        ctx.lines = [recompute_line(line, rate, **changes) for line in ctx.lines]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        *,
        definition: IntakeWorkflowDefinition,
        organization_id: UUID,
        actor_id: UUID,
        extraction: ExtractionResult,
        creation_mode: CreationMode = CreationMode.EXTRACTION,
        origin_request_id: UUID | None = None,
        target_amount: Decimal | None = None,
        source_reference: str | None = None,
        requested_quantities: dict[UUID, Decimal] | None = None,
    ) -> WorkflowContext:
        """Create a context from an extraction draft and run the intake step."""
        t0 = time.monotonic()
        ctx = WorkflowContext(
            definition=definition,
            organization_id=organization_id,
            actor_id=actor_id,
            extraction=extraction,
            settlement_currency=self._policy.currency.settlement_currency,
            creation_mode=CreationMode(creation_mode),
            invoice_number=extraction.invoice_number,
            invoice_date=extraction.invoice_date,
            source_reference=source_reference or extraction.pdf_url,
            origin_request_id=origin_request_id,
            target_amount=target_amount,
            requested_quantities=dict(requested_quantities or {}),
        )
        ctx.currency = ctx.settlement_currency

        with self._bound(ctx):
            ctx.lines = normalize_lines(
                lines=extraction.lines,
                defaults=self._line_defaults(ctx),
                invoice_date=extraction.invoice_date,
                today=self._clock.today(),
            )
            self._resolve_counterpart(ctx)

            logger.info(
                "workflow_started",
                extra={
                    "workflow": definition.name,
                    "document_kind": ctx.document_kind.value,
                    "creation_mode": ctx.creation_mode.value,
                    "line_count": len(ctx.lines),
                    "counterpart_decision": (
                        ctx.counterpart.decision.value if ctx.counterpart else None
                    ),
                    "is_duplicate": extraction.is_duplicate,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        return ctx

    def confirm(self, ctx: WorkflowContext) -> IntakeStep:
        """Validate the current step and advance; returns the new current step."""
        self._require_open(ctx)
        step = ctx.current_step
        if step is IntakeStep.COMMIT:
            raise InvalidStepTransitionError(
                step.value, step.value, "the commit step is completed by commit()",
            )

        with self._bound(ctx):
            t0 = time.monotonic()
            try:
                self._validate_step(ctx, step)
            except (ValidationError, ConflictError) as exc:
                logger.info(
                    "step_validation_failed",
                    extra={
                        "step": step.value,
                        "error_code": exc.code,
                        "fields": list(getattr(exc, "fields", (getattr(exc, "field", None),))),
                    },
                )
                raise

            self._on_confirmed(ctx, step)
            ctx.completed_steps.add(step)

            steps = ctx.steps
            next_step = steps[steps.index(step) + 1]
            ctx.current_step = next_step
            self._on_entered(ctx, next_step)

            logger.info(
                "step_confirmed",
                extra={
                    "step": step.value,
                    "next_step": next_step.value,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        return next_step

    def go_back(self, ctx: WorkflowContext, to_step: IntakeStep | None = None) -> IntakeStep:
        """
        Revisit an earlier step.

        Data entered in later steps is kept; those steps must be confirmed
        again on the way forward.  Not allowed once at the commit step.
        """
        self._require_open(ctx)
        current = ctx.current_step
        if current is IntakeStep.COMMIT:
            raise InvalidStepTransitionError(
                current.value,
                (to_step or current).value,
                "cannot go back from the commit step",
            )
        steps = ctx.steps
        position = steps.index(current)
        if to_step is None:
            if position == 0:
                raise InvalidStepTransitionError(current.value, current.value, "already at the first step")
            to_step = steps[position - 1]
        to_step = IntakeStep(to_step)
        if to_step not in steps or steps.index(to_step) >= position:
            raise InvalidStepTransitionError(
                current.value, to_step.value, "target is not an earlier step of this workflow",
            )

        target_position = steps.index(to_step)
        for step in steps[target_position:]:
            ctx.completed_steps.discard(step)
        ctx.current_step = to_step

        with self._bound(ctx):
            logger.info(
                "workflow_step_back",
                extra={"from_step": current.value, "to_step": to_step.value},
            )
        return to_step

    def cancel(self, ctx: WorkflowContext) -> bool:
        """
        Discard the workflow.  Nothing was persisted, so nothing is undone.

        Returns True when the context held state beyond intake; the caller
        is expected to have asked the user to confirm in that case.
        """
        self._require_open(ctx)
        had_state = ctx.has_local_state
        ctx.status = WorkflowStatus.CANCELLED
        with self._bound(ctx):
            logger.info(
                "workflow_cancelled",
                extra={"step": ctx.current_step.value, "had_local_state": had_state},
            )
        return had_state

    def commit(self, ctx: WorkflowContext, committer) -> UUID:
        """
        Hand a fully verified context to the committer.

        On failure the context stays on the commit step, unchanged, so the
        same commit may be retried.
        """
        self._require_open(ctx)
        if ctx.current_step is not IntakeStep.COMMIT:
            raise InvalidStepTransitionError(
                ctx.current_step.value, IntakeStep.COMMIT.value,
                "every step before commit must be confirmed first",
            )
        with self._bound(ctx):
            document_id = committer.commit(ctx)
            ctx.committed_document_id = document_id
            ctx.completed_steps.add(IntakeStep.COMMIT)
            ctx.status = WorkflowStatus.COMMITTED
            logger.info(
                "workflow_committed",
                extra={"document_id": str(document_id), "workflow": ctx.definition.name},
            )
        return document_id

    # ------------------------------------------------------------------
    # Step validation
    # ------------------------------------------------------------------

    def _validate_step(self, ctx: WorkflowContext, step: IntakeStep) -> None:
        validator = {
            IntakeStep.INTAKE: self._validate_intake,
            IntakeStep.COUNTERPART_IDENTIFICATION: self._validate_counterpart,
            IntakeStep.CURRENCY_SELECTION: self._validate_currency,
            IntakeStep.LINE_ANALYSIS: self._validate_line_analysis,
            IntakeStep.LINE_DETAIL_COMPLETION: self._validate_line_details,
            IntakeStep.LINE_VERIFICATION: self._validate_line_verification,
            IntakeStep.TOTALS_CONFIRMATION: self._validate_totals,
        }[step]
        validator(ctx)

    def _validate_intake(self, ctx: WorkflowContext) -> None:
        if ctx.extraction.is_duplicate and not ctx.duplicate_acknowledged:
            raise StepValidationError(IntakeStep.INTAKE.value, [
                ValidationError(
                    "Document looks like a duplicate"
                    + (f" ({ctx.extraction.duplicate_reason})" if ctx.extraction.duplicate_reason else "")
                    + "; acknowledge it to continue",
                    field="is_duplicate",
                ),
            ])

    def _validate_counterpart(self, ctx: WorkflowContext) -> None:
        step = IntakeStep.COUNTERPART_IDENTIFICATION.value
        resolution = ctx.counterpart
        if resolution is None or resolution.counterpart_id is None:
            raise StepValidationError(step, [RequiredFieldError("counterpart_id")])

        if isinstance(resolution, NewCounterpart):
            draft = validate_counterpart_draft(resolution.draft, step)
            try:
                self._catalog.check_counterpart_conflict(
                    ctx.organization_id, self._role(ctx), draft,
                )
            except ConflictError as exc:
                raise StepValidationError(step, [exc]) from exc
            ctx.counterpart = NewCounterpart(draft=draft, counterpart_id=resolution.counterpart_id)

        if ctx.step_plan is not None:
            foreign = _counterpart_is_foreign(ctx)
            if foreign != ctx.step_plan.counterpart_foreign:
                raise StepPlanLockedError(ctx.workflow_id, ctx.step_plan.counterpart_foreign)

    def _validate_currency(self, ctx: WorkflowContext) -> None:
        errors: list[ValidationError] = []
        try:
            validate_currency(ctx.currency)
        except ValidationError as exc:
            errors.append(exc)
        try:
            validate_rate(ctx.exchange_rate, ctx.currency)
        except ValidationError as exc:
            errors.append(exc)
        if errors:
            raise StepValidationError(IntakeStep.CURRENCY_SELECTION.value, errors)

    def _validate_line_analysis(self, ctx: WorkflowContext) -> None:
        if not ctx.lines:
            raise StepValidationError(
                IntakeStep.LINE_ANALYSIS.value, [RequiredFieldError("lines")],
            )

    def _validate_line_details(self, ctx: WorkflowContext) -> None:
        ref = self._policy.reference
        errors: list[ValidationError] = []
        for line in ctx.lines:
            for field_name in ("name", "reference", "unit"):
                value = getattr(line, field_name)
                if value is None or not str(value).strip():
                    errors.append(RequiredFieldError(field_name, line.index))
            year = line.purchase_year
            if year is None or not ref.min_purchase_year <= year <= ref.max_purchase_year:
                errors.append(ValueOutOfRangeError(
                    "purchase_year", year, ref.min_purchase_year, ref.max_purchase_year,
                    line.index,
                ))
            if line.opening_stock < ZERO:
                errors.append(ValueOutOfRangeError(
                    "opening_stock", line.opening_stock, ZERO, None, line.index,
                ))
        if errors:
            raise StepValidationError(IntakeStep.LINE_DETAIL_COMPLETION.value, errors)

    def _validate_line_verification(self, ctx: WorkflowContext) -> None:
        errors: list[ValidationError | ConflictError] = []
        seen: dict[tuple[str, str], tuple[UUID, int]] = {}

        for line in ctx.lines:
            decision = line.decision
            if decision is None or line.product_id is None:
                errors.append(RequiredFieldError("product_id", line.index))
                continue
            if not isinstance(decision, CreateNew):
                continue

            errors.extend(self._new_product_errors(ctx, line))
            for field_name, value in (
                ("name", line.name),
                ("reference", line.reference),
                ("ean", normalize_barcode(line.ean)),
            ):
                if not value:
                    continue
                key = (field_name, value.strip().lower())
                other = seen.get(key)
                if other is not None and other[0] != line.product_id:
                    errors.append(DuplicateProductError(field_name, value, None, line.index))
                else:
                    seen[key] = (line.product_id, line.index)

        if ctx.document_kind is DocumentKind.INVOICE:
            caps = self.max_quantities(ctx)
            for line, cap in zip(ctx.lines, caps):
                if cap is not None and line.quantity > cap:
                    errors.append(ValueOutOfRangeError(
                        "quantity", line.quantity, Decimal("1"), cap, line.index,
                    ))

        if errors:
            raise StepValidationError(IntakeStep.LINE_VERIFICATION.value, errors)

    def _new_product_errors(
        self,
        ctx: WorkflowContext,
        line: LineItem,
    ) -> list[ValidationError | ConflictError]:
        errors: list[ValidationError | ConflictError] = []
        for conflict in self._catalog.product_conflicts(
            ctx.organization_id, line.name, line.reference, line.ean,
        ):
            errors.append(DuplicateProductError(
                conflict.field, conflict.value, conflict.existing_id, line.index,
            ))
        try:
            validate_barcode(line.ean, line.index)
        except ValidationError as exc:
            errors.append(exc)
        if line.sale_price.vat_rate is None:
            errors.append(RequiredFieldError("sale_vat_rate", line.index))
        elif line.sale_price.price_ht is None or line.sale_price.price_ht <= ZERO:
            errors.append(ValueOutOfRangeError(
                "sale_price_ht", line.sale_price.price_ht, Decimal("0.001"), None, line.index,
            ))
        return errors

    def _validate_totals(self, ctx: WorkflowContext) -> None:
        totals = self.compute_totals(ctx)
        if ctx.target_amount is None:
            return
        computed = round_amount(totals.net_payable)
        if not amounts_match(ctx.target_amount, computed):
            raise TotalsMismatchError(ctx.target_amount, computed, Decimal("0.001"))

    # ------------------------------------------------------------------
    # Step effects
    # ------------------------------------------------------------------

    def _on_confirmed(self, ctx: WorkflowContext, step: IntakeStep) -> None:
        if step is IntakeStep.COUNTERPART_IDENTIFICATION:
            first_time = ctx.step_plan is None
            if first_time:
                self._fix_plan(ctx)
            self._apply_vat_policy(ctx)
            if first_time:
                self._initial_currency(ctx)
        elif step is IntakeStep.CURRENCY_SELECTION:
            ctx.currency = validate_currency(ctx.currency)
            self._recompute_all(ctx)

    def _on_entered(self, ctx: WorkflowContext, step: IntakeStep) -> None:
        if step is IntakeStep.LINE_ANALYSIS:
            self._match_lines(ctx)
        elif step is IntakeStep.TOTALS_CONFIRMATION:
            self.compute_totals(ctx)

    def _evaluate_plan_guard(self, guard: Guard, ctx: WorkflowContext) -> bool:
        fn = self._plan_guards.get(guard.name)
        if fn is None:
            logger.warning("plan_guard_no_evaluator", extra={"guard_name": guard.name})
            return False
        return fn(ctx)

    def _fix_plan(self, ctx: WorkflowContext) -> None:
        foreign = _counterpart_is_foreign(ctx)
        steps = tuple(
            d.step
            for d in ctx.definition.steps
            if d.include_when is None or self._evaluate_plan_guard(d.include_when, ctx)
        )
        ctx.step_plan = StepPlan(steps=steps, counterpart_foreign=foreign)
        logger.info(
            "step_plan_fixed",
            extra={
                "steps": [s.value for s in steps],
                "counterpart_foreign": foreign,
            },
        )

    def _apply_vat_policy(self, ctx: WorkflowContext) -> None:
        rule = self._vat_rule(ctx, ctx.is_foreign)
        self._recompute_all(ctx, is_exempt=rule.exempt)
        if rule.pending_confirmation:
            logger.warning(
                "vat_rule_pending_confirmation",
                extra={
                    "document_kind": ctx.document_kind.value,
                    "locality": rule.locality,
                    "default_rate": str(rule.default_rate),
                },
            )

    def _initial_currency(self, ctx: WorkflowContext) -> None:
        """Currency and rate proposed once the locality is known."""
        settlement = ctx.settlement_currency
        if not ctx.is_foreign or not ctx.step_plan.includes(IntakeStep.CURRENCY_SELECTION):
            ctx.currency = settlement
            ctx.exchange_rate = Decimal("1")
            return
        extracted = ctx.extraction.totals.currency
        currency = extracted if extracted and extracted != settlement else (
            self._policy.currency.default_foreign_currency
        )
        try:
            currency = validate_currency(currency)
        except ValidationError:
            currency = self._policy.currency.default_foreign_currency
        quote = self._rates.quote(ctx.organization_id, currency, self._policy.currency)
        ctx.currency = quote.from_currency
        ctx.exchange_rate = quote.rate
        self._recompute_all(ctx)

    def _resolve_counterpart(self, ctx: WorkflowContext) -> None:
        extracted = ctx.extraction.counterpart
        result = match_counterpart(
            extracted=extracted,
            catalog=self._catalog.counterpart_records(ctx.organization_id, self._role(ctx)),
        )
        ctx.counterpart_candidates = result.candidates
        if result.decision is CounterpartDecision.MATCHED:
            best = result.best
            ctx.counterpart = MatchedCounterpart(
                counterpart=best.counterpart,
                reason=best.reason,
                confidence=(extracted.match_confidence if extracted else None)
                or best.match_type.value,
            )
        elif result.decision is CounterpartDecision.CREATE_NEW:
            ctx.counterpart = NewCounterpart(
                draft=draft_from_extraction(extracted),
                counterpart_id=uuid4(),
            )
        else:
            ctx.counterpart = SelectedCounterpart()

    def _match_lines(self, ctx: WorkflowContext) -> None:
        """Propose a product for every line that has no decision yet."""
        pending = [line for line in ctx.lines if line.decision is None]
        if not pending:
            return
        t0 = time.monotonic()
        catalog = self._catalog.product_records(ctx.organization_id)
        by_id = {p.id: p for p in catalog}

        for line in pending:
            hinted = by_id.get(line.product_hint) if line.product_hint else None
            if hinted is not None:
                self._bind(ctx, line.index, UseExisting(hinted), candidates=())
                continue
            result = match_product(
                name=line.name, reference=line.reference, ean=line.ean, catalog=catalog,
            )
            if result.decision is ProductDecision.USE_EXISTING:
                self._bind(ctx, line.index, UseExisting(result.best.product), result.candidates)
            else:
                self._bind(ctx, line.index, CreateNew(uuid4()), result.candidates)

        logger.info(
            "product_match_completed",
            extra={
                "line_count": len(pending),
                "matched": sum(1 for l in ctx.lines if isinstance(l.decision, UseExisting)),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )

    def _bind(
        self,
        ctx: WorkflowContext,
        index: int,
        decision: LineDecision,
        candidates: tuple[RankedProduct, ...] | None = None,
    ) -> LineItem:
        line = self._line(ctx, index)
        changes: dict[str, Any] = {"decision": decision}
        if candidates is not None:
            changes["candidates"] = candidates

        product_id = decision.product_id
        if product_id is not None and not isinstance(decision, CreateNew):
            row = self._catalog.get_product(ctx.organization_id, product_id)
            changes["unlimited_stock"] = row.unlimited_stock
            changes["allow_out_of_stock_sale"] = row.allow_out_of_stock_sale
            if ctx.document_kind is DocumentKind.INVOICE:
                changes.update(self._catalog_sale_changes(row, line))

        line = recompute_line(line, self._settlement_rate(ctx), **changes)
        if isinstance(decision, CreateNew) and ctx.document_kind is DocumentKind.INVOICE:
            line = self._sale_price_from_line(line)
        return self._set_line(ctx, line)

    @staticmethod
    def _catalog_sale_changes(row, line: LineItem) -> dict[str, Any]:
        """
        Sale block of an existing product for an invoice line.

        Lines that already carry a price (request lines, extracted lines)
        keep it; only unpriced lines take the catalog price.
        """
        changes: dict[str, Any] = {
            "sale_price": sale_price_from_catalog(
                row.sale_vat_rate, row.sale_price_ht, row.sale_price_ttc, row.gain_rate,
            ),
            "max_discount": max(row.max_discount, line.discount_percent),
        }
        if line.unit_price_ht <= ZERO and row.sale_price_ht is not None:
            changes["unit_price_ht"] = row.sale_price_ht
            if row.sale_vat_rate is not None:
                changes["vat_rate"] = row.sale_vat_rate
        return changes

    def _sale_price_from_line(self, line: LineItem) -> LineItem:
        if line.unit_price_ht <= ZERO:
            return line
        price = derive_sale_price(
            current=SalePrice(vat_rate=line.vat_rate),
            field=SalePriceField.PRICE_HT,
            value=line.unit_price_ht,
            unit_cost=ZERO,
        )
        return replace(line, sale_price=price)

    # ------------------------------------------------------------------
    # Intake edits
    # ------------------------------------------------------------------

    def set_document_identity(
        self,
        ctx: WorkflowContext,
        invoice_number: str | None = None,
        invoice_date: date | None = None,
    ) -> None:
        self._require_step(ctx, "document identity", IntakeStep.INTAKE)
        if invoice_number is not None:
            ctx.invoice_number = invoice_number.strip() or None
        if invoice_date is not None:
            ctx.invoice_date = invoice_date

    def acknowledge_duplicate(self, ctx: WorkflowContext) -> None:
        self._require_step(ctx, "duplicate acknowledgement", IntakeStep.INTAKE)
        ctx.duplicate_acknowledged = True
        with self._bound(ctx):
            logger.info(
                "duplicate_acknowledged",
                extra={"duplicate_reason": ctx.extraction.duplicate_reason},
            )

    def set_classification(
        self,
        ctx: WorkflowContext,
        document_family: str | None = None,
        **tags: str,
    ) -> None:
        self._require_open(ctx)
        if ctx.current_step is IntakeStep.COMMIT:
            raise InvalidStepTransitionError(
                ctx.current_step.value, ctx.current_step.value,
                "classification is fixed at the commit step",
            )
        if document_family is not None:
            ctx.document_family = document_family
        ctx.tags.update(tags)

    # ------------------------------------------------------------------
    # Counterpart edits
    # ------------------------------------------------------------------

    def set_counterpart_resolution(
        self,
        ctx: WorkflowContext,
        resolution: CounterpartResolution,
    ) -> None:
        """Replace the counterpart decision; locality may not change once planned."""
        self._require_step(ctx, "counterpart", IntakeStep.COUNTERPART_IDENTIFICATION)
        if ctx.step_plan is not None and resolution.counterpart_type is not None:
            if CounterpartType(resolution.counterpart_type).is_foreign != ctx.step_plan.counterpart_foreign:
                raise StepPlanLockedError(ctx.workflow_id, ctx.step_plan.counterpart_foreign)
        ctx.counterpart = resolution
        with self._bound(ctx):
            logger.info(
                "counterpart_resolution_set",
                extra={
                    "decision": resolution.decision.value,
                    "counterpart_id": (
                        str(resolution.counterpart_id) if resolution.counterpart_id else None
                    ),
                },
            )

    def select_counterpart(self, ctx: WorkflowContext, counterpart_id: UUID) -> None:
        """Bind a counterpart the user picked from the catalog."""
        records = self._catalog.counterpart_records(ctx.organization_id, self._role(ctx))
        for record in records:
            if record.id == counterpart_id:
                self.set_counterpart_resolution(ctx, SelectedCounterpart(record))
                return
        raise CounterpartNotFoundError(counterpart_id)

    def search_counterparts(self, ctx: WorkflowContext, query: str):
        """Active counterparts of the workflow's role whose name or identifier contains ``query``."""
        needle = (query or "").strip().lower()
        if len(needle) < 2:
            return ()
        return tuple(
            r for r in self._catalog.counterpart_records(ctx.organization_id, self._role(ctx))
            if needle in r.comparison_name or needle in (r.identifier_value or "").lower()
        )

    def use_new_counterpart(self, ctx: WorkflowContext, draft: CounterpartDraft) -> NewCounterpart:
        """Create-new decision; the id reserved earlier is kept across edits."""
        reserved = ctx.counterpart.counterpart_id if isinstance(ctx.counterpart, NewCounterpart) else None
        resolution = NewCounterpart(draft=draft, counterpart_id=reserved or uuid4())
        self.set_counterpart_resolution(ctx, resolution)
        return resolution

    # ------------------------------------------------------------------
    # Currency edits
    # ------------------------------------------------------------------

    def select_currency(self, ctx: WorkflowContext, currency: str) -> Decimal:
        """Switch the document currency and load its starting rate."""
        self._require_step(ctx, "currency", IntakeStep.CURRENCY_SELECTION)
        quote = self._rates.quote(ctx.organization_id, currency, self._policy.currency)
        ctx.currency = quote.from_currency
        ctx.exchange_rate = quote.rate
        self._recompute_all(ctx)
        return quote.rate

    def set_exchange_rate(self, ctx: WorkflowContext, rate: Decimal) -> None:
        self._require_step(ctx, "exchange rate", IntakeStep.CURRENCY_SELECTION)
        ctx.exchange_rate = validate_rate(rate, ctx.currency)
        self._recompute_all(ctx)

    def save_exchange_rate(self, ctx: WorkflowContext) -> None:
        """Store the current rate for the currency pair (flushed, not committed)."""
        self._require_step(ctx, "exchange rate", IntakeStep.CURRENCY_SELECTION)
        with self._bound(ctx):
            self._rates.save_rate(
                organization_id=ctx.organization_id,
                actor_id=ctx.actor_id,
                from_currency=ctx.currency,
                to_currency=ctx.settlement_currency,
                rate=ctx.exchange_rate,
            )

    # ------------------------------------------------------------------
    # Line edits
    # ------------------------------------------------------------------

    def update_line(self, ctx: WorkflowContext, index: int, **changes: Any) -> LineItem:
        """
        Edit fields of one line and recompute its amounts.

        Amount fields belong to line analysis; descriptive fields to line
        analysis and detail completion.
        """
        unknown = set(changes) - _AMOUNT_FIELDS - _DETAIL_FIELDS
        if unknown:
            raise ValueError(f"Unknown line fields: {sorted(unknown)}")
        if changes.keys() & _AMOUNT_FIELDS:
            self._require_step(ctx, "line amounts", *_AMOUNT_STEPS)
        else:
            self._require_step(ctx, "line details", *_DETAIL_STEPS)

        line = self._line(ctx, index)
        changes = self._clean_line_changes(ctx, line, changes)
        updated = recompute_line(line, self._settlement_rate(ctx), **changes)

        if changes.keys() & _AMOUNT_FIELDS:
            ctx.lines_edited = True
            if ctx.document_kind is DocumentKind.PURCHASE and updated.sale_price.is_set:
                updated = replace(
                    updated,
                    sale_price=reprice_for_cost(updated.sale_price, self._unit_cost(updated)),
                )
        self._set_line(ctx, updated)

        with self._bound(ctx):
            logger.debug(
                "line_updated",
                extra={"line_index": index, "fields": sorted(changes)},
            )
        return updated

    def _clean_line_changes(
        self,
        ctx: WorkflowContext,
        line: LineItem,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        cleaned = dict(changes)
        if "ean" in cleaned:
            ean = normalize_barcode(cleaned["ean"])
            validate_barcode(ean, line.index)
            cleaned["ean"] = ean
        if "unit" in cleaned and cleaned["unit"] not in UNITS:
            raise ValidationError(f"Unknown unit: {cleaned['unit']}", field="unit", line_index=line.index)
        if "product_type" in cleaned:
            cleaned["product_type"] = ProductType(cleaned["product_type"])
        if "max_discount" in cleaned:
            value = cleaned["max_discount"]
            if value < ZERO or value > HUNDRED:
                raise ValueOutOfRangeError("max_discount", value, ZERO, HUNDRED, line.index)
        if "quantity" in cleaned and ctx.document_kind is DocumentKind.INVOICE:
            requested = cleaned["quantity"]
            if requested >= ZERO and line.product_id is not None:
                caps = self.max_quantities(ctx)
                cap = caps[line.index]
                if cap is not None and requested > cap:
                    logger.info(
                        "line_quantity_clamped",
                        extra={"line_index": line.index, "requested": str(requested), "cap": str(cap)},
                    )
                    cleaned["quantity"] = cap
        return cleaned

    def add_line(self, ctx: WorkflowContext, **fields: Any) -> LineItem:
        """Append a line built from the same defaults as extracted lines."""
        self._require_step(ctx, "lines", IntakeStep.LINE_ANALYSIS)
        index = len(ctx.lines)
        raw = ExtractedLine(**fields)
        rule_exempt = (
            self._vat_rule(ctx, ctx.is_foreign).exempt if ctx.step_plan is not None else False
        )
        defaults = replace(self._line_defaults(ctx), is_exempt=rule_exempt)
        line = normalize_line(
            raw, index, defaults, ctx.invoice_date, self._clock.today(),
        )
        line = recompute_line(line, self._settlement_rate(ctx))
        ctx.lines.append(line)
        ctx.lines_edited = True
        self._match_lines(ctx)
        return ctx.lines[index]

    def remove_line(self, ctx: WorkflowContext, index: int) -> None:
        self._require_step(ctx, "lines", IntakeStep.LINE_ANALYSIS)
        self._line(ctx, index)
        del ctx.lines[index]
        ctx.lines = [replace(line, index=i) for i, line in enumerate(ctx.lines)]
        ctx.lines_edited = True

    # ------------------------------------------------------------------
    # Product decisions and sale prices
    # ------------------------------------------------------------------

    def set_line_decision(self, ctx: WorkflowContext, index: int, decision: LineDecision) -> LineItem:
        self._require_step(ctx, "product decision", IntakeStep.LINE_VERIFICATION)
        return self._bind(ctx, index, decision)

    def use_suggested_product(self, ctx: WorkflowContext, index: int) -> LineItem:
        line = self._line(ctx, index)
        if not line.candidates:
            raise RequiredFieldError("product_id", index)
        return self.set_line_decision(ctx, index, UseExisting(line.candidates[0].product))

    def select_product(self, ctx: WorkflowContext, index: int, product_id: UUID) -> LineItem:
        """Bind a product picked by manual search (archived products excluded)."""
        record = product_record(self._catalog.get_product(ctx.organization_id, product_id))
        if record.status.value != "active":
            raise ValidationError(
                f"Product {product_id} is archived", field="product_id", line_index=index,
            )
        return self.set_line_decision(ctx, index, SelectOther(record))

    def create_new_product(self, ctx: WorkflowContext, index: int) -> LineItem:
        line = self._line(ctx, index)
        product_id = line.product_id if isinstance(line.decision, CreateNew) else uuid4()
        return self.set_line_decision(ctx, index, CreateNew(product_id))

    def search_products(self, ctx: WorkflowContext, query: str) -> tuple[RankedProduct, ...]:
        self._require_open(ctx)
        return self._catalog.search_products(ctx.organization_id, query)

    def set_sale_price(
        self,
        ctx: WorkflowContext,
        index: int,
        field: SalePriceField,
        value: Decimal | None,
    ) -> SalePrice:
        """Edit one field of a line's sale price block; the others are derived."""
        self._require_step(
            ctx, "sale price", IntakeStep.LINE_DETAIL_COMPLETION, IntakeStep.LINE_VERIFICATION,
        )
        line = self._line(ctx, index)
        price = derive_sale_price(
            current=line.sale_price,
            field=SalePriceField(field),
            value=value,
            unit_cost=self._unit_cost(line),
        )
        self._set_line(ctx, replace(line, sale_price=price))
        return price

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    def set_stamp_duty(self, ctx: WorkflowContext, amount: Decimal | None) -> None:
        """Override the stamp duty of a local document; None restores the policy amount."""
        self._require_step(ctx, "stamp duty", IntakeStep.TOTALS_CONFIRMATION)
        if amount is not None:
            if ctx.is_foreign:
                raise ValidationError(
                    "Stamp duty does not apply to foreign counterparts", field="stamp_duty",
                )
            if amount < ZERO:
                raise ValueOutOfRangeError("stamp_duty", amount, ZERO, None)
        ctx.stamp_duty_override = amount
        self.compute_totals(ctx)

    def stamp_duty(self, ctx: WorkflowContext) -> Decimal:
        if ctx.is_foreign:
            return ZERO
        if ctx.stamp_duty_override is not None:
            return ctx.stamp_duty_override
        policy = self._policy.stamp_duty
        return stamp_duty_for(False, policy.amount, policy.enabled)

    def compute_totals(self, ctx: WorkflowContext) -> Totals:
        """Recompute and store the document totals."""
        self._require_open(ctx)
        foreign = ctx.is_foreign
        rule = self._vat_rule(ctx, foreign)
        totals = authoritative_totals(
            lines=ctx.lines,
            extracted=ctx.extraction.totals,
            lines_edited=ctx.lines_edited,
            currency=ctx.currency,
            stamp_duty=self.stamp_duty(ctx),
            withholding_rate=ZERO,
            exempt=rule.exempt,
            settlement_currency=ctx.settlement_currency if foreign else None,
            exchange_rate=ctx.exchange_rate,
        )
        ctx.totals = totals
        return totals

    def max_quantities(self, ctx: WorkflowContext) -> list[Decimal | None]:
        """Per-line quantity caps of a sale; None means unbounded."""
        product_ids = [line.product_id for line in ctx.lines if line.product_id is not None]
        products = self._catalog.products_by_id(ctx.organization_id, product_ids)
        return max_quantities(
            [(line.product_id, line.quantity) for line in ctx.lines],
            products,
            ctx.requested_quantities,
        )
