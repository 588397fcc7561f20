"""
Typed exceptions for the customer record engine.

Every exception carries a class-level `code` so callers and the HTTP layer
branch on type or code, never on message text.

    CustomerCoreError
    |
    +-- ValidationFailedError          VALIDATION_ERROR
    +-- RecordNotFoundError            NOT_FOUND
    +-- ConflictError
    |   +-- OptimisticLockError        OPTIMISTIC_LOCK_CONFLICT
    |   +-- DuplicateRecordError       UNIQUE_VIOLATION
    +-- InvalidStatusTransitionError   INVALID_STATUS_TRANSITION
    +-- PersistenceError               DATABASE_ERROR
        +-- NestedTransactionError     NESTED_TRANSACTION

Encryption failures are raised as `utils.encryption.EncryptionError` and are
treated as internal errors alongside `PersistenceError`.
"""

from dataclasses import dataclass
from typing import List, Dict, Any


@dataclass(frozen=True)
class FieldError:
    """One violated field rule."""
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


class CustomerCoreError(Exception):
    """Base exception for all customer engine errors."""

    code: str = "CUSTOMER_CORE_ERROR"


class ValidationFailedError(CustomerCoreError):
    """One or more field rules failed; lists every violation."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        super().__init__(
            "validation failed: " + ", ".join(str(e) for e in self.errors)
        )


class RecordNotFoundError(CustomerCoreError):
    """Requested customer, address or document does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


class ConflictError(CustomerCoreError):
    """Base exception for write conflicts."""

    code: str = "CONFLICT"


class OptimisticLockError(ConflictError):
    """Update carried a stale version; reload and retry."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: Any, expected_version: int):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.expected_version = expected_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"version {expected_version} is no longer current"
        )


class DuplicateRecordError(ConflictError):
    """Insert violated a uniqueness constraint."""

    code: str = "UNIQUE_VIOLATION"

    def __init__(self, entity_type: str, detail: str):
        self.entity_type = entity_type
        self.detail = detail
        super().__init__(f"Duplicate {entity_type}: {detail}")


class InvalidStatusTransitionError(CustomerCoreError):
    """Requested status is not reachable from the current status."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, current_status: str, requested_status: str):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"invalid status transition from {current_status} to {requested_status}"
        )


class PersistenceError(CustomerCoreError):
    """Database connectivity or query failure."""

    code: str = "DATABASE_ERROR"


class NestedTransactionError(PersistenceError):
    """A transaction was requested from inside a transaction."""

    code: str = "NESTED_TRANSACTION"

    def __init__(self):
        super().__init__("nested transactions are not supported")
