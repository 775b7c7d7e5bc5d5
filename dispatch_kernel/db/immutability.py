"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

A finalized liquidation is the record of what cash, credit and stock came
back from a route.  Once written it must never change: corrections are new
documents (credit notes, new allocation sets), never edits.

SQLAlchemy fires events before UPDATE/DELETE statements reach the database.
The listeners below check each protected entity and raise
ImmutabilityViolationError, which aborts the flush and the surrounding
transaction:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() -----------^
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                      | Rule
----------------------------|------------------------------------------------
DispatchLiquidation         | No column update, no delete
LiquidationDocument         | No update, no delete
ReturnedItem                | No update, no delete
BatchAllocation             | No update, no delete
AllocationSet               | released_at may go NULL -> timestamp once; no delete
Batch                       | Only quantity_current may change; no delete
StockMovement (kardex)      | No update, no delete
CashMovement                | No update, no delete

updated_at is audit metadata and is ignored by the column checks.

===============================================================================
USAGE
===============================================================================

    from dispatch_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from dispatch_kernel.exceptions import ImmutabilityViolationError
from dispatch_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at"})

BATCH_MUTABLE_FIELDS = frozenset({"quantity_current"})
ALLOCATION_SET_MUTABLE_FIELDS = frozenset({"released_at", "release_reason"})


def _changed_columns(target) -> set[str]:
    """Column attributes with pending changes, excluding audit metadata."""
    state = inspect(target)
    changed = set()
    for attr in state.mapper.column_attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if state.attrs[attr.key].history.has_changes():
            changed.add(attr.key)
    return changed


def _violation(target, operation: str, reason: str) -> ImmutabilityViolationError:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "invariant": "liquidation_immutability",
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_frozen_update(mapper, connection, target):
    """
    Block column updates on always-frozen records.

    Collection-only changes (e.g. appending a document before the first
    flush completes the graph) carry no column history and pass.
    """
    changed = _changed_columns(target)
    if changed:
        raise _violation(
            target,
            "UPDATE",
            f"record is immutable (attempted to change {sorted(changed)})",
        )


def _check_frozen_delete(mapper, connection, target):
    """Block deletion of always-frozen records."""
    raise _violation(target, "DELETE", "record is immutable and cannot be deleted")


def _check_batch_update(mapper, connection, target):
    """Only quantity_current of a batch changes after receipt."""
    changed = _changed_columns(target) - BATCH_MUTABLE_FIELDS
    if changed:
        raise _violation(
            target,
            "UPDATE",
            f"batch fields {sorted(changed)} are fixed at receipt",
        )


def _check_allocation_set_update(mapper, connection, target):
    """
    An allocation set is released at most once.

    released_at may be set when it was NULL; clearing it or setting it a
    second time would allow a double release.
    """
    changed = _changed_columns(target)
    frozen = changed - ALLOCATION_SET_MUTABLE_FIELDS
    if frozen:
        raise _violation(
            target,
            "UPDATE",
            f"allocation set fields {sorted(frozen)} are immutable",
        )
    if "released_at" in changed:
        history = inspect(target).attrs["released_at"].history
        previous = [value for value in history.deleted if value is not None]
        if previous:
            raise _violation(
                target,
                "UPDATE",
                "allocation set was already released",
            )


def _frozen_models():
    from dispatch_kernel.models.allocation import BatchAllocationModel
    from dispatch_kernel.models.liquidation import (
        DispatchLiquidationModel,
        LiquidationDocumentModel,
        ReturnedItemModel,
    )
    from dispatch_kernel.models.movements import CashMovementModel, StockMovementModel

    return (
        DispatchLiquidationModel,
        LiquidationDocumentModel,
        ReturnedItemModel,
        BatchAllocationModel,
        StockMovementModel,
        CashMovementModel,
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Calling it twice does not register duplicates.
    """
    from dispatch_kernel.models.allocation import AllocationSetModel
    from dispatch_kernel.models.batch import BatchModel

    for model in _frozen_models():
        _safe_add_listener(model, "before_update", _check_frozen_update)
        _safe_add_listener(model, "before_delete", _check_frozen_delete)

    _safe_add_listener(BatchModel, "before_update", _check_batch_update)
    _safe_add_listener(BatchModel, "before_delete", _check_frozen_delete)

    _safe_add_listener(AllocationSetModel, "before_update", _check_allocation_set_update)
    _safe_add_listener(AllocationSetModel, "before_delete", _check_frozen_delete)


def _safe_add_listener(target, event_name, listener_fn):
    if not event.contains(target, event_name, listener_fn):
        event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to violate immutability on
    purpose.
    """
    from dispatch_kernel.models.allocation import AllocationSetModel
    from dispatch_kernel.models.batch import BatchModel

    for model in _frozen_models():
        _safe_remove_listener(model, "before_update", _check_frozen_update)
        _safe_remove_listener(model, "before_delete", _check_frozen_delete)

    _safe_remove_listener(BatchModel, "before_update", _check_batch_update)
    _safe_remove_listener(BatchModel, "before_delete", _check_frozen_delete)

    _safe_remove_listener(AllocationSetModel, "before_update", _check_allocation_set_update)
    _safe_remove_listener(AllocationSetModel, "before_delete", _check_frozen_delete)
