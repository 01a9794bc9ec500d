"""
Typed exceptions for the inventory core.

Every error carries a ``code`` class attribute (machine-readable, API-safe)
and keeps its context as attributes instead of burying it in the message.

    InventoryError
    |
    +-- ValidationError
    |   +-- InvalidQuantityError       INVALID_QUANTITY
    |   +-- SelfTransferError          SELF_TRANSFER
    |   +-- InvalidAdjustmentError     INVALID_ADJUSTMENT
    |   +-- OwnerVariantMismatchError  OWNER_VARIANT_MISMATCH
    |
    +-- ConflictError
    |   +-- InsufficientQuantityError  INSUFFICIENT_QUANTITY
    |   +-- OwnerHasInventoryError     OWNER_HAS_INVENTORY
    |
    +-- NotFoundError
    |   +-- ItemNotFoundError          ITEM_NOT_FOUND
    |   +-- OwnerNotFoundError         OWNER_NOT_FOUND
    |
    +-- ImmutabilityViolationError     IMMUTABILITY_VIOLATION
    |
    +-- StorageError
        +-- StorageContentionError     STORAGE_CONTENTION
        |   +-- DeadlineExceededError  DEADLINE_EXCEEDED
        +-- StorageFailureError        STORAGE_FAILURE

Domain errors are raised before or during the transaction and always cause a
full rollback. Nothing here is retried by the engine; StorageContentionError
is the only class a caller may retry verbatim.
"""


from typing import Optional


class InventoryError(Exception):
    """Base exception for all inventory errors."""

    code: str = "INVENTORY_ERROR"


# Validation


class ValidationError(InventoryError):
    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Quantity outside the storable positive range."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: int, reason: str = "must be positive"):
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Quantity {reason}, got {quantity}")


class SelfTransferError(ValidationError):
    code: str = "SELF_TRANSFER"

    def __init__(self, owner_id: int):
        self.owner_id = owner_id
        super().__init__("Cannot transfer to the same owner")


class InvalidAdjustmentError(ValidationError):
    """Adjustment is zero or would drive a holding negative."""

    code: str = "INVALID_ADJUSTMENT"

    def __init__(self, current: Optional[int], delta: int):
        self.current = current
        self.delta = delta
        if delta == 0:
            message = "Adjustment delta must be non-zero"
        else:
            message = (
                f"Adjustment would result in negative quantity: "
                f"{current} + {delta} = {current + delta}"
            )
        super().__init__(message)


class OwnerVariantMismatchError(ValidationError):
    """Stock addition targeted at an owner that is not a location."""

    code: str = "OWNER_VARIANT_MISMATCH"

    def __init__(self, owner_id: int, owner_type: str, expected: str = "location"):
        self.owner_id = owner_id
        self.owner_type = owner_type
        self.expected = expected
        super().__init__(f"Stock can only be added to a {expected}, owner {owner_id} is a {owner_type}")


# Conflicts with current state


class ConflictError(InventoryError):
    code: str = "CONFLICT"


class InsufficientQuantityError(ConflictError):
    code: str = "INSUFFICIENT_QUANTITY"

    def __init__(self, item_id: int, owner_id: int, available: int, requested: int):
        self.item_id = item_id
        self.owner_id = owner_id
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient quantity: have {available}, need {requested}")


class OwnerHasInventoryError(ConflictError):
    code: str = "OWNER_HAS_INVENTORY"

    def __init__(self, owner_id: int, entries: int):
        self.owner_id = owner_id
        self.entries = entries
        super().__init__(f"Cannot delete owner: still holds {entries} inventory entries")


# Lookups


class NotFoundError(InventoryError):
    code: str = "NOT_FOUND"


class ItemNotFoundError(NotFoundError):
    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")


class OwnerNotFoundError(NotFoundError):
    code: str = "OWNER_NOT_FOUND"

    def __init__(self, owner_id: int):
        self.owner_id = owner_id
        super().__init__(f"Owner not found: {owner_id}")


class ImmutabilityViolationError(InventoryError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity_type} {entity_id}: {reason}")


# Storage


class StorageError(InventoryError):
    code: str = "STORAGE_ERROR"


class StorageContentionError(StorageError):
    """The write lock could not be acquired in time. Safe to retry."""

    code: str = "STORAGE_CONTENTION"

    def __init__(self, operation: str, detail: str = "database is busy"):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation}: {detail}")


class DeadlineExceededError(StorageContentionError):
    code: str = "DEADLINE_EXCEEDED"

    def __init__(self, operation: str, timeout: float):
        self.timeout = timeout
        super().__init__(operation, f"deadline of {timeout}s exceeded")


class StorageFailureError(StorageError):
    code: str = "STORAGE_FAILURE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")
