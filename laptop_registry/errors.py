"""
Registry Errors

Stable numeric error codes and the exception hierarchy raised by the
precondition checks of every registry operation.

Error hierarchy:
    RegistryError (base)
    ├── AuthorizationError       100 not owner, 103 not admin
    ├── StateError               101 unknown id, 104 paused
    ├── RegistryValidationError  105 field bounds / forbidden identity
    └── CapacityError            106 repair-log list full

Precondition checks raise these before any store is touched. The registry
facade converts them into failure responses carrying the numeric code; they
never escape an operation as unhandled faults.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Dict, Optional


class ErrorCode(IntEnum):
    """Numeric error codes. Values are part of the public contract."""
    NOT_OWNER = 100
    INVALID_ID = 101
    ALREADY_MINTED = 102  # reserved
    NOT_AUTHORIZED = 103
    PAUSED = 104
    INVALID_METADATA = 105
    MAX_LOGS_REACHED = 106
    NOT_REGISTERED = 107  # reserved, enforced outside the registry


class RegistryError(Exception):
    """Base error for all registry precondition failures."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(f"[{int(code)}] {message}")
        self.code = ErrorCode(code)
        self.message = message
        self.details = details or {}


class AuthorizationError(RegistryError):
    """
    Caller is not allowed to perform the operation.

    Examples:
    - Transferring, burning or describing a token the caller does not own
    - Pausing the registry without being its admin
    """


class StateError(RegistryError):
    """
    Registry state forbids the operation.

    Raised when the registry is paused or a referenced id does not exist.
    """


class RegistryValidationError(RegistryError):
    """
    A field failed validation.

    Covers length bounds on serials and descriptions as well as the
    registry's own system identity used as owner, recipient, shop or admin.
    """

    def __init__(
        self,
        field: str,
        message: str,
        value: Any = None,
    ):
        super().__init__(ErrorCode.INVALID_METADATA, f"{field}: {message}", {"field": field})
        self.field = field
        self.value = value


class CapacityError(RegistryError):
    """A token's repair-log list is full."""

    def __init__(self, token_id: int, capacity: int):
        super().__init__(
            ErrorCode.MAX_LOGS_REACHED,
            f"token {token_id} already holds {capacity} repair logs",
            {"token_id": token_id, "capacity": capacity},
        )
        self.token_id = token_id
        self.capacity = capacity
