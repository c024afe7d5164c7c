"""
ORM-level immutability enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below intercept them and raise
ImmutabilityViolationError, aborting the flush before anything is written:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities
------------------

Entity          | When immutable                         | Allowed changes
----------------|----------------------------------------|------------------------------
StockMovement   | always                                 | none (reverse with a new row)
PurchaseLine    | always                                 | updated_at / updated_by_id
InvoiceLine     | always                                 | updated_at / updated_by_id
Counterpart     | identity fields, once referenced by a  | contact fields (address,
                | committed purchase document or invoice | phone, email, is_active)

Usage
-----
``create_tables()`` registers the listeners.  Registration is idempotent, so
tests may call it once per fresh database.

To temporarily disable (TESTS ONLY)::

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event, exists, inspect, select

from intake_kernel.exceptions import ImmutabilityViolationError
from intake_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})

COUNTERPART_IDENTITY_FIELDS = frozenset({
    "role",
    "counterpart_type",
    "first_name",
    "last_name",
    "company_name",
    "identifier_type",
    "identifier_value",
    "country",
})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


def _check_stock_movement_update(mapper, connection, target):
    """Ledger entries are append-only."""
    changed = _changed_fields(target)
    if changed:
        raise _blocked(
            "StockMovement", target.id, "UPDATE",
            "Stock movements are immutable; record a reversing movement instead",
            field=changed[0],
        )


def _check_stock_movement_delete(mapper, connection, target):
    raise _blocked(
        "StockMovement", target.id, "DELETE",
        "Stock movements cannot be deleted; record a reversing movement instead",
    )


def _check_document_line_update(mapper, connection, target):
    """Committed document lines never change after insert."""
    changed = _changed_fields(target)
    if changed:
        entity_type = type(target).__name__
        raise _blocked(
            entity_type, target.id, "UPDATE",
            f"Cannot modify field '{changed[0]}' on a committed document line",
            field=changed[0],
        )


def _check_document_line_delete(mapper, connection, target):
    raise _blocked(
        type(target).__name__, target.id, "DELETE",
        "Committed document lines cannot be deleted",
    )


def _counterpart_is_referenced(connection, counterpart_id) -> bool:
    from intake_kernel.models.invoice import Invoice
    from intake_kernel.models.purchase import PurchaseDocument

    purchase_ref = connection.execute(
        select(exists().where(PurchaseDocument.supplier_id == counterpart_id))
    ).scalar()
    if purchase_ref:
        return True
    return bool(connection.execute(
        select(exists().where(Invoice.client_id == counterpart_id))
    ).scalar())


def _check_counterpart_identity(mapper, connection, target):
    """
    Identity fields freeze once a committed document references the counterpart.

    Contact fields (address, phone, email) remain editable.
    """
    changed = [f for f in _changed_fields(target) if f in COUNTERPART_IDENTITY_FIELDS]
    if not changed:
        return
    if _counterpart_is_referenced(connection, target.id):
        raise _blocked(
            "Counterpart", target.id, "UPDATE",
            f"Cannot modify identity field '{changed[0]}' of a counterpart "
            "referenced by a committed document",
            field=changed[0],
        )


def _check_counterpart_delete(mapper, connection, target):
    if _counterpart_is_referenced(connection, target.id):
        raise _blocked(
            "Counterpart", target.id, "DELETE",
            "Counterparts referenced by committed documents cannot be deleted",
        )


def _listeners():
    from intake_kernel.models.counterpart import Counterpart
    from intake_kernel.models.invoice import InvoiceLine
    from intake_kernel.models.purchase import PurchaseLine
    from intake_kernel.models.stock_movement import StockMovement

    return (
        (StockMovement, "before_update", _check_stock_movement_update),
        (StockMovement, "before_delete", _check_stock_movement_delete),
        (PurchaseLine, "before_update", _check_document_line_update),
        (PurchaseLine, "before_delete", _check_document_line_delete),
        (InvoiceLine, "before_update", _check_document_line_update),
        (InvoiceLine, "before_delete", _check_document_line_delete),
        (Counterpart, "before_update", _check_counterpart_identity),
        (Counterpart, "before_delete", _check_counterpart_delete),
    )


def register_immutability_listeners() -> None:
    """Register every immutability listener; safe to call more than once."""
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """Remove every immutability listener.  TESTS ONLY."""
    for target, event_name, fn in _listeners():
        _safe_remove_listener(target, event_name, fn)
