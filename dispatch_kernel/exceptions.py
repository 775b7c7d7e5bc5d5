"""
Typed Exception Hierarchy for the Dispatch Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Operators correct most errors themselves (a missing void reason, a return
that exceeds what was sold).  Callers must be able to tell those apart from
broken references and from internal failures without parsing messages:

    try:
        session.partial_return(sale_id, entries, balance_method)
    except ReturnQuantityExceededError as e:
        show_field_error(e.product_name, e.requested, e.sold)
    except ValidationError as e:
        show_banner(e.code, str(e))

Every exception has a CODE class attribute (machine-readable) and carries
its context as attributes, never only inside the message string.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    DispatchKernelError (base)
    |
    +-- ValidationError                      user-correctable, nothing mutated
    |   +-- VoidReasonRequiredError
    |   +-- ReturnQuantityExceededError
    |   +-- EmptyReturnError
    |   +-- DuplicateReturnEntryError
    |   +-- ReturnExceedsSaleTotalError
    |   +-- InvalidPaymentAmountError
    |   +-- NoDispositionsError
    |   +-- DispatchAlreadyLiquidatedError
    |   +-- OrderNotPendingError
    |   +-- SaleNotDispatchableError
    |   +-- SaleNotCollectibleError
    |   +-- InsufficientStockError
    |
    +-- NotFoundError                        data integrity
    |   +-- ProductNotFoundError
    |   +-- ComboNotFoundError
    |   +-- ClientNotFoundError
    |   +-- SaleNotFoundError
    |   +-- SaleItemNotFoundError
    |   +-- OrderNotFoundError
    |   +-- BatchNotFoundError
    |   +-- DispatchSheetNotFoundError
    |   +-- CollectionRecordNotFoundError
    |
    +-- StockError
    |   +-- AllocationAlreadyReleasedError
    |
    +-- ImmutabilityViolationError
    +-- InvariantViolationError
    +-- FatalError                           unexpected, transaction rolled back

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                          | When Raised
------------|-------------------------------|------------------------------------
Validation  | VOID_REASON_REQUIRED          | Void reason shorter than minimum
            | RETURN_QUANTITY_EXCEEDED      | Returned base units > sold
            | EMPTY_RETURN                  | Partial return with nothing selected
            | RETURN_EXCEEDS_SALE_TOTAL     | Refund >= sale total (use VOID)
            | INVALID_PAYMENT_AMOUNT        | Payment <= 0 or above balance
            | NO_DISPOSITIONS               | Finalize with no documents
            | DISPATCH_ALREADY_LIQUIDATED   | Sheet is already completed
            | ORDER_NOT_PENDING             | Revise/reject/process non-pending
            | SALE_NOT_DISPATCHABLE         | Sale already assigned to a route
            | INSUFFICIENT_STOCK            | Strict allocation with shortfall
------------|-------------------------------|------------------------------------
Not found   | PRODUCT_NOT_FOUND ...         | Unknown id referenced by an action
------------|-------------------------------|------------------------------------
Stock       | ALLOCATION_ALREADY_RELEASED   | Second release of one allocation set
------------|-------------------------------|------------------------------------
Integrity   | IMMUTABILITY_VIOLATION        | Update/delete of a frozen record
            | INVARIANT_VIOLATION           | Conservation check failed
            | FATAL_ERROR                   | Unexpected failure, rolled back
"""

from decimal import Decimal


class DispatchKernelError(Exception):
    """
    Base exception for all dispatch kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "DISPATCH_KERNEL_ERROR"


# Validation exceptions


class ValidationError(DispatchKernelError):
    """User-correctable input error.  Raised before any state mutation."""

    code: str = "VALIDATION_ERROR"


class VoidReasonRequiredError(ValidationError):
    """A void was requested without a sufficiently descriptive reason."""

    code: str = "VOID_REASON_REQUIRED"

    def __init__(self, sale_id: str, min_length: int):
        self.sale_id = sale_id
        self.min_length = min_length
        super().__init__(
            f"A void reason of at least {min_length} characters is required "
            f"for sale {sale_id}"
        )


class ReturnQuantityExceededError(ValidationError):
    """More base units were returned than were sold on the line."""

    code: str = "RETURN_QUANTITY_EXCEEDED"

    def __init__(self, product_name: str, requested: int, sold: int):
        self.product_name = product_name
        self.requested = requested
        self.sold = sold
        super().__init__(
            f"Error in {product_name}: returning {requested} units, "
            f"but only {sold} were sold"
        )


class EmptyReturnError(ValidationError):
    """A partial return was submitted with nothing selected."""

    code: str = "EMPTY_RETURN"

    def __init__(self, sale_id: str):
        self.sale_id = sale_id
        super().__init__(f"No returned quantities were entered for sale {sale_id}")


class DuplicateReturnEntryError(ValidationError):
    """The same sale line appears more than once in a partial return."""

    code: str = "DUPLICATE_RETURN_ENTRY"

    def __init__(self, sale_id: str, sale_item_id: str):
        self.sale_id = sale_id
        self.sale_item_id = sale_item_id
        super().__init__(
            f"Sale item {sale_item_id} is listed more than once in the return "
            f"for sale {sale_id}"
        )


class ReturnExceedsSaleTotalError(ValidationError):
    """The refund equals or exceeds the sale total; a full void is required."""

    code: str = "RETURN_EXCEEDS_SALE_TOTAL"

    def __init__(self, sale_id: str, refund: Decimal, sale_total: Decimal):
        self.sale_id = sale_id
        self.refund = refund
        self.sale_total = sale_total
        super().__init__(
            f"Refund {refund} equals or exceeds sale total {sale_total} "
            f"for sale {sale_id}; use VOID instead"
        )


class InvalidPaymentAmountError(ValidationError):
    """Payment amount is not positive or exceeds the outstanding balance."""

    code: str = "INVALID_PAYMENT_AMOUNT"

    def __init__(self, sale_id: str, amount: Decimal, balance: Decimal):
        self.sale_id = sale_id
        self.amount = amount
        self.balance = balance
        super().__init__(
            f"Invalid payment {amount} for sale {sale_id} "
            f"(outstanding balance {balance})"
        )


class NoDispositionsError(ValidationError):
    """Finalize was requested without any per-sale disposition."""

    code: str = "NO_DISPOSITIONS"

    def __init__(self, dispatch_sheet_id: str):
        self.dispatch_sheet_id = dispatch_sheet_id
        super().__init__(
            f"Dispatch sheet {dispatch_sheet_id} has no processed documents"
        )


class DispatchAlreadyLiquidatedError(ValidationError):
    """The dispatch sheet is completed; liquidation is terminal."""

    code: str = "DISPATCH_ALREADY_LIQUIDATED"

    def __init__(self, dispatch_sheet_id: str, code: str | None = None):
        self.dispatch_sheet_id = dispatch_sheet_id
        self.sheet_code = code
        super().__init__(
            f"Dispatch sheet {code or dispatch_sheet_id} was already liquidated"
        )


class OrderNotPendingError(ValidationError):
    """Only pending orders can be revised, rejected or processed."""

    code: str = "ORDER_NOT_PENDING"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status}, expected pending")


class SaleNotDispatchableError(ValidationError):
    """Sale cannot be assigned to a dispatch sheet in its current state."""

    code: str = "SALE_NOT_DISPATCHABLE"

    def __init__(self, sale_id: str, dispatch_status: str, reason: str | None = None):
        self.sale_id = sale_id
        self.dispatch_status = dispatch_status
        self.reason = reason or f"dispatch status {dispatch_status}, expected pending"
        super().__init__(f"Sale {sale_id} cannot be dispatched: {self.reason}")


class SaleNotCollectibleError(ValidationError):
    """Collections are not accepted while the sale is out on a dispatch sheet."""

    code: str = "SALE_NOT_COLLECTIBLE"

    def __init__(self, sale_id: str, dispatch_status: str):
        self.sale_id = sale_id
        self.dispatch_status = dispatch_status
        super().__init__(
            f"Sale {sale_id} is {dispatch_status} on an open dispatch sheet; "
            "collect after liquidation"
        )


class InsufficientStockError(ValidationError):
    """Strict allocation could not cover the requested base units."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


# Not-found exceptions


class NotFoundError(DispatchKernelError):
    """An action referenced an id that does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class ProductNotFoundError(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"
    entity_type = "Product"


class ComboNotFoundError(NotFoundError):
    code: str = "COMBO_NOT_FOUND"
    entity_type = "Combo"


class ClientNotFoundError(NotFoundError):
    code: str = "CLIENT_NOT_FOUND"
    entity_type = "Client"


class SaleNotFoundError(NotFoundError):
    code: str = "SALE_NOT_FOUND"
    entity_type = "Sale"


class SaleItemNotFoundError(NotFoundError):
    code: str = "SALE_ITEM_NOT_FOUND"
    entity_type = "Sale item"


class OrderNotFoundError(NotFoundError):
    code: str = "ORDER_NOT_FOUND"
    entity_type = "Order"


class BatchNotFoundError(NotFoundError):
    code: str = "BATCH_NOT_FOUND"
    entity_type = "Batch"


class DispatchSheetNotFoundError(NotFoundError):
    code: str = "DISPATCH_SHEET_NOT_FOUND"
    entity_type = "Dispatch sheet"


class CollectionRecordNotFoundError(NotFoundError):
    code: str = "COLLECTION_RECORD_NOT_FOUND"
    entity_type = "Collection record"


# Stock exceptions


class StockError(DispatchKernelError):
    """Base exception for stock ledger errors."""

    code: str = "STOCK_ERROR"


class AllocationAlreadyReleasedError(StockError):
    """The allocation set was already returned to the ledger."""

    code: str = "ALLOCATION_ALREADY_RELEASED"

    def __init__(self, allocation_set_id: str):
        self.allocation_set_id = allocation_set_id
        super().__init__(f"Allocation set {allocation_set_id} was already released")


# Integrity exceptions


class ImmutabilityViolationError(DispatchKernelError):
    """Attempt to modify or delete a frozen record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )


class InvariantViolationError(DispatchKernelError):
    """A structural invariant failed its runtime check."""

    code: str = "INVARIANT_VIOLATION"

    def __init__(self, invariant: str, detail: str):
        self.invariant = invariant
        self.detail = detail
        super().__init__(f"Invariant {invariant} violated: {detail}")


class FatalError(DispatchKernelError):
    """
    Unexpected failure inside an irreversible operation.

    The surrounding transaction has been rolled back in full; the original
    exception is available as ``__cause__``.
    """

    code: str = "FATAL_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed and was rolled back: {detail}")
