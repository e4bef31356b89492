"""
Metadata Store

Descriptive record attached to each live token: serial, optional description,
the ordered list of repair-log ids linked to the device, and mint/update
timestamps. A record exists iff its token exists; it is created and destroyed
together with the token.

The repair-log list is append-only and bounded. Appending past capacity
raises CapacityError; the list is never truncated or overwritten.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, overload

from laptop_registry.errors import CapacityError, ErrorCode, StateError
from laptop_registry.hardening import MAX_REPAIR_LOGS, InvariantChecker


class RepairLogList:
    """Fixed-capacity, append-only sequence of repair-log ids."""

    __slots__ = ("_ids", "_capacity", "_token_id")

    def __init__(
        self,
        capacity: int = MAX_REPAIR_LOGS,
        ids: Iterable[int] = (),
        token_id: int = 0,
    ):
        self._capacity = capacity
        self._token_id = token_id
        self._ids: List[int] = list(ids)
        InvariantChecker.check_capacity(f"repair log list of token {token_id}", len(self._ids), capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def is_full(self) -> bool:
        return len(self._ids) >= self._capacity

    def append(self, log_id: int) -> None:
        if self.is_full:
            raise CapacityError(self._token_id, self._capacity)
        self._ids.append(log_id)

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[int]:
        return iter(self._ids)

    @overload
    def __getitem__(self, index: int) -> int: ...

    @overload
    def __getitem__(self, index: slice) -> List[int]: ...

    def __getitem__(self, index):
        return self._ids[index]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RepairLogList):
            return self._ids == other._ids
        if isinstance(other, (list, tuple)):
            return self._ids == list(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"RepairLogList({self._ids!r}, capacity={self._capacity})"

    def to_list(self) -> List[int]:
        return list(self._ids)

    def copy(self) -> "RepairLogList":
        return RepairLogList(self._capacity, self._ids, self._token_id)


@dataclass
class LaptopMetadata:
    """Descriptive record of one laptop token."""
    serial: str
    description: Optional[str]
    repair_logs: RepairLogList
    minted_at: int  # epoch milliseconds
    last_updated: int  # epoch milliseconds

    def copy(self) -> "LaptopMetadata":
        """Detached copy; mutating it never touches the store."""
        return LaptopMetadata(
            serial=self.serial,
            description=self.description,
            repair_logs=self.repair_logs.copy(),
            minted_at=self.minted_at,
            last_updated=self.last_updated,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serial": self.serial,
            "description": self.description,
            "repair_logs": self.repair_logs.to_list(),
            "minted_at": self.minted_at,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        capacity: int = MAX_REPAIR_LOGS,
        token_id: int = 0,
    ) -> "LaptopMetadata":
        description = data.get("description")
        return cls(
            serial=str(data["serial"]),
            description=None if description is None else str(description),
            repair_logs=RepairLogList(capacity, (int(i) for i in data.get("repair_logs", [])), token_id),
            minted_at=int(data["minted_at"]),
            last_updated=int(data["last_updated"]),
        )


class MetadataStore:
    """Token id -> LaptopMetadata table."""

    def __init__(self, log_capacity: int = MAX_REPAIR_LOGS):
        self._records: Dict[int, LaptopMetadata] = {}
        self._log_capacity = log_capacity

    @property
    def log_capacity(self) -> int:
        return self._log_capacity

    def __contains__(self, token_id: object) -> bool:
        return token_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, token_id: int) -> Optional[LaptopMetadata]:
        """Live record, or None. Callers outside the registry should copy() it."""
        return self._records.get(token_id)

    def items(self) -> List[Tuple[int, LaptopMetadata]]:
        return sorted(self._records.items())

    def create(
        self,
        token_id: int,
        serial: str,
        description: Optional[str],
        now: int,
    ) -> LaptopMetadata:
        record = LaptopMetadata(
            serial=serial,
            description=description,
            repair_logs=RepairLogList(self._log_capacity, token_id=token_id),
            minted_at=now,
            last_updated=now,
        )
        self._records[token_id] = record
        return record

    def remove(self, token_id: int) -> LaptopMetadata:
        try:
            return self._records.pop(token_id)
        except KeyError:
            raise StateError(ErrorCode.INVALID_ID, f"no metadata for token {token_id}") from None

    def _require(self, token_id: int) -> LaptopMetadata:
        record = self._records.get(token_id)
        if record is None:
            raise StateError(ErrorCode.INVALID_ID, f"no metadata for token {token_id}")
        return record

    def set_description(self, token_id: int, description: str, now: int) -> None:
        record = self._require(token_id)
        record.description = description
        record.last_updated = now

    def link_repair_log(self, token_id: int, log_id: int, now: int) -> None:
        record = self._require(token_id)
        record.repair_logs.append(log_id)
        record.last_updated = now

    def restore(self, records: Dict[int, LaptopMetadata]) -> None:
        self._records = dict(records)
