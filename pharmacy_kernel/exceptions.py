"""
Typed Exception Hierarchy for the Pharmacy Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (a web layer, a CLI, a batch job) must tell apart
three very different situations without parsing message strings:

  - "your input was invalid"                  -> ValidationError
  - "someone else changed this first, retry"  -> ConflictError
  - "system integrity issue, contact support" -> CorruptionError

Every exception therefore has:
  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured attributes carrying the context (stock_id, transfer_id, ...)

Example:
    try:
        inventory.deliver_transfer(transfer_id, receiver_id)
    except InsufficientStockError as e:
        api_response(code=e.code, stock=e.stock_id, available=e.available)
    except ConflictError as e:
        reload_and_retry(e)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PharmacyKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- InsufficientStockError
    |   +-- QuantityChainError
    |   +-- MissingBatchInfoError
    |   +-- InvalidMinimumStockError
    |   +-- EmptyTransferError
    |   +-- DepartmentMismatchError
    |   +-- SameDepartmentTransferError
    |   +-- DuplicateTransferLineError
    |   +-- MissingReasonError
    |
    +-- ConflictError
    |   +-- InvalidTransferTransitionError
    |   +-- StaleTransferVersionError
    |   +-- DuplicateRequisitionError
    |   +-- ConcurrencyConflictError
    |
    +-- NotFoundError
    |   +-- StockNotFoundError
    |   +-- TransferNotFoundError
    |   +-- TransferItemNotFoundError
    |   +-- DrugNotFoundError
    |
    +-- CorruptionError
    |   +-- StockOnHoldError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                         | When Raised
-------------|------------------------------|---------------------------------------
Validation   | INVALID_QUANTITY             | Sign/zero/null quantity for the type
             | INSUFFICIENT_STOCK           | available_stock would go negative
             | QUANTITY_CHAIN_VIOLATION     | later stage exceeds earlier stage
             | MISSING_BATCH_INFO           | dispensed > 0 without lot/expiry
             | INVALID_MINIMUM_STOCK        | minimum stock target below zero
             | EMPTY_TRANSFER               | transfer without usable lines
             | DEPARTMENT_MISMATCH          | department does not match the row
             | SAME_DEPARTMENT_TRANSFER     | transfer source equals destination
             | DUPLICATE_TRANSFER_LINE      | same drug requested twice
             | REASON_REQUIRED              | blank reason on an adjustment
-------------|------------------------------|---------------------------------------
Conflict     | INVALID_TRANSFER_TRANSITION  | transition from the wrong status
             | STALE_TRANSFER_VERSION       | caller's version is out of date
             | DUPLICATE_REQUISITION        | requisition number already used
             | CONCURRENCY_CONFLICT         | retries exhausted on contention
-------------|------------------------------|---------------------------------------
Not found    | STOCK_NOT_FOUND              | stock row does not exist
             | TRANSFER_NOT_FOUND           | transfer does not exist
             | TRANSFER_ITEM_NOT_FOUND      | item not part of the transfer
             | DRUG_NOT_FOUND               | drug missing or inactive
-------------|------------------------------|---------------------------------------
Corruption   | LEDGER_CORRUPTION            | ledger replay != cached balance
             | STOCK_ON_HOLD                | write against a quarantined row
-------------|------------------------------|---------------------------------------
Immutability | IMMUTABILITY_VIOLATION       | update/delete of an append-only row

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Only ConflictError is worth retrying, and only after re-reading state.
2. CorruptionError halts automated writes to the affected stock row until
   an operator runs the explicit reconciliation action (release_hold).
3. Exceptions are logged with their structured attributes by
   logging_config.StructuredFormatter -- keep attributes JSON-friendly.

===============================================================================
"""


class PharmacyKernelError(Exception):
    """
    Base exception for all pharmacy kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PHARMACY_KERNEL_ERROR"


# Validation errors


class ValidationError(PharmacyKernelError):
    """A requested write violates a stated invariant. Never partially applied."""

    code: str = "VALIDATION_FAILED"


class InvalidQuantityError(ValidationError):
    """Quantity is missing, zero, or has the wrong sign for its transaction type."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, transaction_type: str, quantity: int | None, reason: str):
        self.transaction_type = transaction_type
        self.quantity = quantity
        self.reason = reason
        super().__init__(
            f"Invalid quantity {quantity!r} for {transaction_type}: {reason}"
        )


class InsufficientStockError(ValidationError):
    """The write would drive available (or reserved) stock negative."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, stock_id: str, requested: int, available: int):
        self.stock_id = stock_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock on {stock_id}: requested {requested}, "
            f"available {available}"
        )


class QuantityChainError(ValidationError):
    """A transfer item stage quantity exceeds the previous stage."""

    code: str = "QUANTITY_CHAIN_VIOLATION"

    def __init__(self, stage: str, quantity: int, limit: int, item_id: str | None = None):
        self.stage = stage
        self.quantity = quantity
        self.limit = limit
        self.item_id = item_id
        where = f" on item {item_id}" if item_id else ""
        super().__init__(
            f"{stage} quantity {quantity} exceeds previous stage quantity {limit}{where}"
        )


class MissingBatchInfoError(ValidationError):
    """Dispensed quantity recorded without lot number or expiry date."""

    code: str = "MISSING_BATCH_INFO"

    def __init__(self, missing_fields: list[str], item_id: str | None = None):
        self.missing_fields = missing_fields
        self.item_id = item_id
        where = f" on item {item_id}" if item_id else ""
        super().__init__(
            f"Batch information required when dispensing{where}: "
            f"missing {', '.join(missing_fields)}"
        )


class InvalidMinimumStockError(ValidationError):
    """Minimum stock adjustment would produce an invalid threshold."""

    code: str = "INVALID_MINIMUM_STOCK"

    def __init__(self, stock_id: str, current: int, target: int, reason: str):
        self.stock_id = stock_id
        self.current = current
        self.target = target
        self.reason = reason
        super().__init__(
            f"Invalid minimum stock for {stock_id}: {current} -> {target} ({reason})"
        )


class EmptyTransferError(ValidationError):
    """Transfer request does not carry any valid line."""

    code: str = "EMPTY_TRANSFER"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Transfer request rejected: {reason}")


class DepartmentMismatchError(ValidationError):
    """The caller's department does not match the stock row or transfer."""

    code: str = "DEPARTMENT_MISMATCH"

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Department mismatch: expected {expected}, got {actual}")


class SameDepartmentTransferError(ValidationError):
    """Transfer source and destination are the same department."""

    code: str = "SAME_DEPARTMENT_TRANSFER"

    def __init__(self, department: str):
        self.department = department
        super().__init__(f"Transfer source and destination are both {department}")


class DuplicateTransferLineError(ValidationError):
    """The same drug appears on more than one line of a transfer request."""

    code: str = "DUPLICATE_TRANSFER_LINE"

    def __init__(self, drug_id: str):
        self.drug_id = drug_id
        super().__init__(f"Drug {drug_id} is requested on more than one line")


class MissingReasonError(ValidationError):
    """An adjustment was submitted without a reason."""

    code: str = "REASON_REQUIRED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"A reason is required for {operation}")


# Conflict errors


class ConflictError(PharmacyKernelError):
    """
    The entity was not in the expected state/version when the write was attempted.

    The caller should re-read and retry with the new state.
    """

    code: str = "CONFLICT"


class InvalidTransferTransitionError(ConflictError):
    """Workflow transition attempted from a status that does not allow it."""

    code: str = "INVALID_TRANSFER_TRANSITION"

    def __init__(self, transfer_id: str, current_status: str, action: str):
        self.transfer_id = transfer_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} transfer {transfer_id} in status {current_status}"
        )


class StaleTransferVersionError(ConflictError):
    """Caller's expected version does not match the stored transfer version."""

    code: str = "STALE_TRANSFER_VERSION"

    def __init__(self, transfer_id: str, expected_version: int, actual_version: int):
        self.transfer_id = transfer_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Transfer {transfer_id} is at version {actual_version}, "
            f"caller expected {expected_version}"
        )


class DuplicateRequisitionError(ConflictError):
    """Requisition number is already taken by another transfer."""

    code: str = "DUPLICATE_REQUISITION"

    def __init__(self, requisition_number: str):
        self.requisition_number = requisition_number
        super().__init__(f"Requisition number already exists: {requisition_number}")


class ConcurrencyConflictError(ConflictError):
    """Concurrent writers kept colliding and the bounded retry gave up."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"Operation {operation} failed after {attempts} attempt(s) "
            "due to concurrent modification"
        )


# Not-found errors


class NotFoundError(PharmacyKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"


class StockNotFoundError(NotFoundError):
    """Stock row not found, by id or by (drug, department)."""

    code: str = "STOCK_NOT_FOUND"

    def __init__(self, stock_ref: str):
        self.stock_ref = stock_ref
        super().__init__(f"Stock not found: {stock_ref}")


class TransferNotFoundError(NotFoundError):
    """Transfer not found."""

    code: str = "TRANSFER_NOT_FOUND"

    def __init__(self, transfer_ref: str):
        self.transfer_ref = transfer_ref
        super().__init__(f"Transfer not found: {transfer_ref}")


class TransferItemNotFoundError(NotFoundError):
    """Item id is not a line of the given transfer."""

    code: str = "TRANSFER_ITEM_NOT_FOUND"

    def __init__(self, transfer_id: str, item_id: str):
        self.transfer_id = transfer_id
        self.item_id = item_id
        super().__init__(f"Item {item_id} is not part of transfer {transfer_id}")


class DrugNotFoundError(NotFoundError):
    """Drug missing from the catalog (or inactive)."""

    code: str = "DRUG_NOT_FOUND"

    def __init__(self, drug_id: str):
        self.drug_id = drug_id
        super().__init__(f"Drug not found: {drug_id}")


# Corruption errors


class CorruptionError(PharmacyKernelError):
    """
    Ledger-computed balance disagrees with the cached Stock balance.

    Fatal for the stock row: automated writes are halted until an explicit
    reconciliation action releases the hold. Never auto-corrected.
    """

    code: str = "LEDGER_CORRUPTION"

    def __init__(self, stock_id: str, field: str, ledger_value, cached_value):
        self.stock_id = stock_id
        self.field = field
        self.ledger_value = ledger_value
        self.cached_value = cached_value
        super().__init__(
            f"Ledger divergence on stock {stock_id}: {field} ledger={ledger_value} "
            f"cached={cached_value}"
        )


class StockOnHoldError(CorruptionError):
    """Write attempted against a stock row quarantined for reconciliation."""

    code: str = "STOCK_ON_HOLD"

    def __init__(self, stock_id: str, hold_reason: str | None):
        self.stock_id = stock_id
        self.hold_reason = hold_reason
        self.field = "integrity_hold"
        self.ledger_value = None
        self.cached_value = None
        PharmacyKernelError.__init__(
            self,
            f"Stock {stock_id} is on integrity hold pending reconciliation: "
            f"{hold_reason or 'no reason recorded'}",
        )


# Immutability errors


class ImmutabilityViolationError(PharmacyKernelError):
    """Attempted to modify or delete an append-only / write-once record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
