"""
Token Store

Maps token identifiers to their single owning identity and allocates new
identifiers from a counter that never goes backwards. A token id is present
iff it has been minted and not burned; burned ids are never reissued.
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from laptop_registry.errors import ErrorCode, StateError
from laptop_registry.hardening import AtomicCounter, InvariantChecker


class TokenStore:
    """Token id -> owner table with monotonic id allocation."""

    def __init__(self, counter: Optional[AtomicCounter] = None):
        self._owners: Dict[int, str] = {}
        self._counter = counter or AtomicCounter()

    @property
    def last_token_id(self) -> int:
        return self._counter.get()

    def __contains__(self, token_id: object) -> bool:
        return token_id in self._owners

    def __len__(self) -> int:
        return len(self._owners)

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._owners))

    def owner_of(self, token_id: int) -> Optional[str]:
        return self._owners.get(token_id)

    def tokens_of(self, owner: str) -> List[int]:
        return sorted(tid for tid, who in self._owners.items() if who == owner)

    def items(self) -> List[Tuple[int, str]]:
        return sorted(self._owners.items())

    def mint(self, owner: str) -> int:
        """Allocate the next id and assign it to ``owner``."""
        token_id = self._counter.increment()
        self._owners[token_id] = owner
        return token_id

    def transfer(self, token_id: int, recipient: str) -> None:
        if token_id not in self._owners:
            raise StateError(ErrorCode.INVALID_ID, f"token {token_id} does not exist")
        self._owners[token_id] = recipient

    def burn(self, token_id: int) -> str:
        """Remove the token, returning its last owner."""
        try:
            return self._owners.pop(token_id)
        except KeyError:
            raise StateError(ErrorCode.INVALID_ID, f"token {token_id} does not exist") from None

    def restore(self, owners: Mapping[int, str], last_token_id: int) -> None:
        """Replace the table with previously persisted contents."""
        InvariantChecker.check_ids_allocated("token id", owners.keys(), last_token_id)
        self._owners = dict(owners)
        self._counter.advance_to(last_token_id)
