"""
Repair Log Store

Independent, append-only table of repair events. Log ids come from their own
counter (separate from token ids) and are globally unique across tokens.
Records are immutable once created and are never deleted: burning a token
leaves its repair history retrievable by log id.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional

from laptop_registry.hardening import AtomicCounter, InvariantChecker, InvariantViolation


@dataclass(frozen=True)
class RepairLog:
    """One repair event reported by a shop."""
    log_id: int
    description: str
    timestamp: int  # epoch milliseconds
    shop: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "log_id": self.log_id,
            "description": self.description,
            "timestamp": self.timestamp,
            "shop": self.shop,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepairLog":
        return cls(
            log_id=int(data["log_id"]),
            description=str(data["description"]),
            timestamp=int(data["timestamp"]),
            shop=str(data["shop"]),
        )


class RepairLogStore:
    """Log id -> RepairLog table. Exposes no update or delete."""

    def __init__(self, counter: Optional[AtomicCounter] = None):
        self._logs: Dict[int, RepairLog] = {}
        self._counter = counter or AtomicCounter()

    @property
    def last_log_id(self) -> int:
        return self._counter.get()

    def __contains__(self, log_id: object) -> bool:
        return log_id in self._logs

    def __len__(self) -> int:
        return len(self._logs)

    def __iter__(self) -> Iterator[RepairLog]:
        return iter(self.values())

    def get(self, log_id: int) -> Optional[RepairLog]:
        return self._logs.get(log_id)

    def values(self) -> List[RepairLog]:
        return [self._logs[k] for k in sorted(self._logs)]

    def record(self, description: str, shop: str, timestamp: int) -> RepairLog:
        """Create the next log record."""
        log_id = self._counter.increment()
        entry = RepairLog(log_id=log_id, description=description, timestamp=timestamp, shop=shop)
        self._logs[log_id] = entry
        return entry

    def restore(self, logs: Iterable[RepairLog], last_log_id: int) -> None:
        """Replace the table with previously persisted contents."""
        restored: Dict[int, RepairLog] = {}
        for entry in logs:
            if entry.log_id in restored:
                raise InvariantViolation(f"duplicate repair log id {entry.log_id}")
            restored[entry.log_id] = entry
        InvariantChecker.check_ids_allocated("repair log id", restored.keys(), last_log_id)
        self._logs = restored
        self._counter.advance_to(last_log_id)
