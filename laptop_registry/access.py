"""
Access Control

Answers "is this caller the admin?" and "does this caller own this token?"
against live registry state. Nothing is cached between operations.
"""

from __future__ import annotations

from laptop_registry.errors import AuthorizationError, ErrorCode
from laptop_registry.state import RegistryState
from laptop_registry.tokens import TokenStore


class AccessControl:
    """Caller checks against the registry admin and the token store."""

    def __init__(self, state: RegistryState, tokens: TokenStore):
        self._state = state
        self._tokens = tokens

    def is_admin(self, caller: str) -> bool:
        return caller == self._state.admin

    def is_owner(self, token_id: int, caller: str) -> bool:
        owner = self._tokens.owner_of(token_id)
        return owner is not None and owner == caller

    def require_admin(self, caller: str) -> None:
        if not self.is_admin(caller):
            raise AuthorizationError(
                ErrorCode.NOT_AUTHORIZED,
                f"{caller!r} is not the registry admin",
                {"caller": caller},
            )

    def require_owner(self, token_id: int, caller: str) -> None:
        if not self.is_owner(token_id, caller):
            raise AuthorizationError(
                ErrorCode.NOT_OWNER,
                f"{caller!r} does not own token {token_id}",
                {"caller": caller, "token_id": token_id},
            )
