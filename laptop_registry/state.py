"""Registry-wide mutable state: admin, pause flag and identifier counters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from laptop_registry.hardening import AtomicCounter


@dataclass
class RegistryState:
    """
    State owned by exactly one registry instance.

    Constructed with the registry and only mutated through its operations.
    """
    admin: str
    paused: bool = False
    token_counter: AtomicCounter = field(default_factory=AtomicCounter, repr=False)
    log_counter: AtomicCounter = field(default_factory=AtomicCounter, repr=False)

    @property
    def last_token_id(self) -> int:
        return self.token_counter.get()

    @property
    def last_log_id(self) -> int:
        return self.log_counter.get()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "admin": self.admin,
            "paused": self.paused,
            "last_token_id": self.last_token_id,
            "last_log_id": self.last_log_id,
        }
