"""
Registry Validation and Hardening

Validation gate and thread-safety primitives used by every registry operation:

1. Field validators (serials, descriptions, identities)
2. Monotonic counters for token and repair-log identifiers
3. A wall clock that never runs backwards
4. Invariant checks applied when state is restored from disk

Security Model:
    - All inputs are untrusted until validated
    - Validators are pure and total: they answer True/False, never raise
    - Identifier counters only move forward
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Iterable, Optional

from laptop_registry.config import RegistryConfig, get_config


# =============================================================================
# ERROR TYPES
# =============================================================================

class InvariantViolation(Exception):
    """Registry state invariant violated."""
    pass


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

MAX_SERIAL_LENGTH = 50
MAX_DESCRIPTION_LENGTH = 256
MAX_LOG_DESCRIPTION_LENGTH = 512
MAX_REPAIR_LOGS = 100
SYSTEM_IDENTITY = "contract"


class Validators:
    """
    The validation gate.

    Each predicate is side-effect free and returns a boolean consumed by the
    registry facade, which maps a False answer to the INVALID_METADATA code.
    """

    def __init__(
        self,
        max_serial_length: int = MAX_SERIAL_LENGTH,
        max_description_length: int = MAX_DESCRIPTION_LENGTH,
        max_log_description_length: int = MAX_LOG_DESCRIPTION_LENGTH,
        system_identity: str = SYSTEM_IDENTITY,
    ):
        self.max_serial_length = max_serial_length
        self.max_description_length = max_description_length
        self.max_log_description_length = max_log_description_length
        self.system_identity = system_identity

    @classmethod
    def from_config(cls, config: Optional[RegistryConfig] = None) -> "Validators":
        config = config or get_config()
        return cls(
            max_serial_length=config.limits.max_serial_length.get(),
            max_description_length=config.limits.max_description_length.get(),
            max_log_description_length=config.limits.max_log_description_length.get(),
            system_identity=config.identity.system_identity.get(),
        )

    def valid_serial(self, serial: Any) -> bool:
        """True iff 0 < len(serial) <= max_serial_length."""
        return isinstance(serial, str) and 0 < len(serial) <= self.max_serial_length

    def valid_description(self, description: Any) -> bool:
        """True iff len(description) <= max_description_length."""
        return isinstance(description, str) and len(description) <= self.max_description_length

    def valid_log_description(self, description: Any) -> bool:
        """True iff len(description) <= max_log_description_length."""
        return isinstance(description, str) and len(description) <= self.max_log_description_length

    def valid_identity(self, identity: Any) -> bool:
        """True iff identity is a string other than the registry's own identity."""
        return isinstance(identity, str) and identity != self.system_identity


# =============================================================================
# THREAD SAFETY
# =============================================================================

class AtomicCounter:
    """Thread-safe counter that only moves forward."""

    def __init__(self, initial: int = 0):
        if initial < 0:
            raise ValueError(f"counter cannot start below zero: {initial}")
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        if delta < 1:
            raise ValueError(f"counter increment must be positive: {delta}")
        with self._lock:
            self._value += delta
            return self._value

    def get(self) -> int:
        """Get current value."""
        with self._lock:
            return self._value

    def advance_to(self, value: int) -> None:
        """Atomically move the counter forward to ``value``."""
        with self._lock:
            InvariantChecker.check_monotonic_increase("counter", self._value, value)
            self._value = value


def _wall_clock_ms() -> int:
    return time.time_ns() // 1_000_000


class MonotonicClock:
    """
    Epoch-millisecond clock for record timestamps.

    Readings never decrease, even if the underlying source steps backwards
    (NTP adjustments, a restored snapshot written on a faster clock).
    """

    def __init__(self, source: Optional[Callable[[], int]] = None):
        self._source = source or _wall_clock_ms
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            reading = max(int(self._source()), self._last)
            self._last = reading
            return reading

    def observe(self, timestamp: int) -> None:
        """Ensure later readings are not earlier than ``timestamp``."""
        with self._lock:
            self._last = max(self._last, int(timestamp))


# =============================================================================
# STATE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces registry invariants on restored state."""

    @staticmethod
    def check_monotonic_increase(
        field_name: str,
        old_value: int,
        new_value: int,
    ) -> None:
        """Ensure value only increases."""
        if new_value < old_value:
            raise InvariantViolation(
                f"{field_name} must be monotonically increasing: "
                f"cannot go from {old_value} to {new_value}"
            )

    @staticmethod
    def check_ids_allocated(
        field_name: str,
        ids: Iterable[int],
        counter_value: int,
    ) -> None:
        """Ensure every stored id was issued by a counter now at ``counter_value``."""
        for value in ids:
            if not isinstance(value, int) or value < 1 or value > counter_value:
                raise InvariantViolation(
                    f"{field_name} {value!r} was never allocated (counter is at {counter_value})"
                )

    @staticmethod
    def check_capacity(field_name: str, size: int, capacity: int) -> None:
        """Ensure a bounded collection is within its capacity."""
        if size > capacity:
            raise InvariantViolation(f"{field_name} holds {size} entries, capacity is {capacity}")
