"""
Registry Audit Trail

Tamper-evident record of every mutating registry operation, allowed or denied.
Each event carries the digest of its predecessor, so rewriting or removing an
earlier event breaks every later link and is caught by verify_chain().

Events also carry the registry state root as it stood after the event, so a
snapshot whose state disagrees with the head of its own trail can be refused.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from laptop_registry.core import digest_of
from laptop_registry.hardening import AtomicCounter, InvariantViolation


class AuditEventType(Enum):
    """Types of audit events."""
    TOKEN_MINTED = "token_minted"
    TOKEN_TRANSFERRED = "token_transferred"
    TOKEN_BURNED = "token_burned"
    DESCRIPTION_UPDATED = "description_updated"
    REPAIR_LOGGED = "repair_logged"
    REGISTRY_PAUSED = "registry_paused"
    REGISTRY_UNPAUSED = "registry_unpaused"
    ADMIN_CHANGED = "admin_changed"
    OPERATION_DENIED = "operation_denied"


@dataclass
class AuditEvent:
    """An audit log entry."""
    sequence: int
    event_type: AuditEventType
    timestamp: int  # epoch milliseconds
    actor: str
    resource_type: str
    resource_id: str
    action: str
    outcome: str  # success, denied
    details: Dict[str, Any] = field(default_factory=dict)
    correlation_id: str = ""
    state_root_sha256: Optional[str] = None  # registry state after the event

    # Tamper evidence
    previous_event_digest: Optional[str] = None
    event_digest: str = ""

    def __post_init__(self):
        if not self.event_digest:
            self.event_digest = self.compute_digest()

    def compute_digest(self) -> str:
        """Digest over every field except the digest itself."""
        content = self.to_dict()
        content.pop("event_digest")
        return digest_of(content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "action": self.action,
            "outcome": self.outcome,
            "details": self.details,
            "correlation_id": self.correlation_id,
            "state_root_sha256": self.state_root_sha256,
            "previous_event_digest": self.previous_event_digest,
            "event_digest": self.event_digest,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEvent":
        return cls(
            sequence=int(data["sequence"]),
            event_type=AuditEventType(data["event_type"]),
            timestamp=int(data["timestamp"]),
            actor=str(data["actor"]),
            resource_type=str(data["resource_type"]),
            resource_id=str(data["resource_id"]),
            action=str(data["action"]),
            outcome=str(data["outcome"]),
            details=dict(data.get("details") or {}),
            correlation_id=str(data.get("correlation_id") or ""),
            state_root_sha256=data.get("state_root_sha256"),
            previous_event_digest=data.get("previous_event_digest"),
            event_digest=str(data.get("event_digest") or ""),
        )


class AuditLogger:
    """
    Tamper-evident audit logger.

    Each event includes a hash chain linking to the previous event,
    making it possible to detect log tampering.
    """

    def __init__(self):
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()
        self._event_counter = AtomicCounter(0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def head(self) -> Optional[str]:
        """Digest of the most recent event."""
        with self._lock:
            return self._events[-1].event_digest if self._events else None

    def log(
        self,
        event_type: AuditEventType,
        actor: str,
        resource_type: str,
        resource_id: Any,
        action: str,
        outcome: str,
        timestamp: int,
        details: Optional[Dict[str, Any]] = None,
        correlation_id: str = "",
        state_root_sha256: Optional[str] = None,
    ) -> AuditEvent:
        """Append an audit event."""
        with self._lock:
            sequence = self._event_counter.increment()
            previous_digest = self._events[-1].event_digest if self._events else None

            event = AuditEvent(
                sequence=sequence,
                event_type=event_type,
                timestamp=timestamp,
                actor=actor,
                resource_type=resource_type,
                resource_id="" if resource_id is None else str(resource_id),
                action=action,
                outcome=outcome,
                details=details or {},
                correlation_id=correlation_id,
                state_root_sha256=state_root_sha256,
                previous_event_digest=previous_digest,
            )

            self._events.append(event)
            return event

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """
        Verify the audit log chain integrity.

        Returns (valid, first_invalid_index).
        """
        with self._lock:
            return _verify(self._events)

    def get_events(
        self,
        actor: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
        resource_id: Optional[Any] = None,
        outcome: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEvent]:
        """Query audit events, oldest first."""
        with self._lock:
            events = list(self._events)

        if actor is not None:
            events = [e for e in events if e.actor == actor]
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        if resource_id is not None:
            events = [e for e in events if e.resource_id == str(resource_id)]
        if outcome is not None:
            events = [e for e in events if e.outcome == outcome]

        return events[-limit:] if limit else events

    def export(self) -> List[Dict[str, Any]]:
        """Export all events as dicts."""
        with self._lock:
            return [e.to_dict() for e in self._events]

    def restore(self, events: Iterable[AuditEvent]) -> None:
        """Replace the log with persisted events after verifying their chain."""
        restored = list(events)
        valid, index = _verify(restored)
        if not valid:
            raise InvariantViolation(f"audit chain broken at event index {index}")
        with self._lock:
            self._events = restored
            self._event_counter = AtomicCounter(restored[-1].sequence if restored else 0)


def _verify(events: List[AuditEvent]) -> Tuple[bool, Optional[int]]:
    for i, event in enumerate(events):
        if event.compute_digest() != event.event_digest:
            return (False, i)

        expected_prev = events[i - 1].event_digest if i > 0 else None
        if event.previous_event_digest != expected_prev:
            return (False, i)

        if i > 0 and event.sequence != events[i - 1].sequence + 1:
            return (False, i)

    return (True, None)
