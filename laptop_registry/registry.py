"""
Laptop Registry Facade

The public operation set of the registry. Every mutating call runs the same
pipeline under a single per-instance lock:

    1. Pause gate (all operations except pause/unpause/set_admin)
    2. Validation gate and access control, in the documented order
    3. Store mutation, applied as one unit
    4. Audit event + structured log

Any failed check raises a RegistryError before step 3. The operation wrapper
turns it into ``Response(ok=False, value=<code>)``, so callers never observe a
partially applied operation.

Usage:
    registry = LaptopRegistry(admin="deployer")

    result = registry.mint("alice", "SERIAL123", "Test Laptop")
    if result.ok:
        token_id = result.value
    else:
        print("rejected with code", result.value)

Known asymmetry: get_owner / get_laptop_details / get_repair_log answer
``ok=True, value=None`` for unknown ids, while get_all_repair_logs fails with
INVALID_ID (101). Both behaviours are relied upon by existing clients.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

from laptop_registry.access import AccessControl
from laptop_registry.audit import AuditEvent, AuditEventType, AuditLogger
from laptop_registry.config import RegistryConfig, get_config
from laptop_registry.core import digest_of
from laptop_registry.errors import (
    AuthorizationError,
    CapacityError,
    ErrorCode,
    RegistryError,
    RegistryValidationError,
    StateError,
)
from laptop_registry.hardening import (
    InvariantChecker,
    InvariantViolation,
    MonotonicClock,
    Validators,
)
from laptop_registry.metadata import LaptopMetadata, MetadataStore
from laptop_registry.observability import RegistryLayer, get_correlation_id, get_logger
from laptop_registry.repair_log import RepairLog, RepairLogStore
from laptop_registry.state import RegistryState
from laptop_registry.tokens import TokenStore

logger = get_logger("facade", RegistryLayer.REGISTRY)

DOCUMENT_FORMAT = "laptop-registry-snapshot"
DOCUMENT_VERSION = 1


# =============================================================================
# RESPONSE
# =============================================================================

@dataclass
class Response:
    """
    Two-part operation result.

    ``value`` holds the payload on success and the numeric error code on
    failure. ``error`` keeps the originating exception for diagnostics and is
    ignored by equality.
    """
    ok: bool
    value: Any = None
    error: Optional[RegistryError] = field(default=None, compare=False, repr=False)

    @classmethod
    def success(cls, value: Any = True) -> "Response":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: RegistryError) -> "Response":
        return cls(ok=False, value=int(error.code), error=error)

    @property
    def code(self) -> Optional[ErrorCode]:
        return None if self.ok else ErrorCode(self.value)

    def unwrap(self) -> Any:
        """Return the payload or raise the registry error."""
        if self.ok:
            return self.value
        if self.error is not None:
            raise self.error
        raise RegistryError(ErrorCode(self.value), "operation failed")


# =============================================================================
# OPERATION WRAPPER
# =============================================================================

def registry_operation(
    action: str,
    resource_type: str = "token",
    token_arg: bool = True,
) -> Callable[[Callable[..., Any]], Callable[..., Response]]:
    """
    Run a mutating operation atomically.

    The wrapped method receives ``caller`` first; when ``token_arg`` is set the
    next positional argument (or ``token_id`` keyword) names the token, which
    is recorded on denial. The method must complete every check before it
    mutates a store.
    """
    def decorator(func: Callable[..., Any]) -> Callable[..., Response]:
        @wraps(func)
        def wrapper(self: "LaptopRegistry", caller: str, *args: Any, **kwargs: Any) -> Response:
            resource_id = None
            if token_arg:
                resource_id = args[0] if args else kwargs.get("token_id")

            with self._lock:
                start = time.monotonic()
                try:
                    value = func(self, caller, *args, **kwargs)
                except RegistryError as err:
                    self._record_denial(action, caller, resource_type, resource_id, err)
                    logger.operation(action, (time.monotonic() - start) * 1000, success=False)
                    return Response.failure(err)
                logger.operation(action, (time.monotonic() - start) * 1000, success=True)
                return Response.success(value)
        return wrapper
    return decorator


# =============================================================================
# REGISTRY
# =============================================================================

class LaptopRegistry:
    """
    Registry of laptop tokens, their metadata and repair history.

    One instance is one authoritative registry. All operations, reads
    included, are serialized through ``self._lock``.
    """

    def __init__(
        self,
        admin: Optional[str] = None,
        *,
        config: Optional[RegistryConfig] = None,
        clock: Optional[MonotonicClock] = None,
    ) -> None:
        self._config = config or get_config()
        self._validators = Validators.from_config(self._config)

        admin = admin if admin is not None else self._config.identity.initial_admin.get()
        if not self._validators.valid_identity(admin):
            raise ValueError(f"invalid registry admin: {admin!r}")

        self._state = RegistryState(admin=admin)
        self._tokens = TokenStore(self._state.token_counter)
        self._metadata = MetadataStore(self._config.limits.max_repair_logs.get())
        self._repair_logs = RepairLogStore(self._state.log_counter)
        self._access = AccessControl(self._state, self._tokens)
        self._audit = AuditLogger()
        self._clock = clock or MonotonicClock()
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Component access
    # -------------------------------------------------------------------------

    @property
    def lock(self) -> threading.RLock:
        """Hold this to read several components as one consistent view."""
        return self._lock

    @property
    def config(self) -> RegistryConfig:
        return self._config

    @property
    def validators(self) -> Validators:
        return self._validators

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def tokens(self) -> TokenStore:
        return self._tokens

    @property
    def metadata(self) -> MetadataStore:
        return self._metadata

    @property
    def repair_logs(self) -> RepairLogStore:
        return self._repair_logs

    @property
    def access(self) -> AccessControl:
        return self._access

    @property
    def audit_log(self) -> AuditLogger:
        return self._audit

    def state_document(self) -> Dict[str, Any]:
        """Counters, tokens with their metadata, and repair logs, in id order."""
        with self._lock:
            return {
                "format": DOCUMENT_FORMAT,
                "version": DOCUMENT_VERSION,
                "state": self._state.to_dict(),
                "tokens": [
                    {
                        "token_id": token_id,
                        "owner": owner,
                        "metadata": self._metadata.get(token_id).to_dict(),
                    }
                    for token_id, owner in self._tokens.items()
                ],
                "repair_logs": [entry.to_dict() for entry in self._repair_logs.values()],
            }

    def state_root(self) -> str:
        """sha256 of the canonical state document."""
        return digest_of(self.state_document())

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def _require_not_paused(self) -> None:
        if self._state.paused:
            raise StateError(ErrorCode.PAUSED, "registry is paused")

    def _require_metadata(self, token_id: int) -> LaptopMetadata:
        record = self._metadata.get(token_id)
        if record is None:
            raise StateError(ErrorCode.INVALID_ID, f"no metadata for token {token_id}")
        return record

    def _require_identity(self, field_name: str, identity: Any) -> None:
        if not self._validators.valid_identity(identity):
            raise RegistryValidationError(field_name, "identity is not allowed", identity)

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    def _record(
        self,
        event_type: AuditEventType,
        caller: str,
        resource_type: str,
        resource_id: Any,
        action: str,
        **details: Any,
    ) -> AuditEvent:
        event = self._audit.log(
            event_type=event_type,
            actor=caller,
            resource_type=resource_type,
            resource_id=resource_id,
            action=action,
            outcome="success",
            timestamp=self._clock.now(),
            details=details,
            correlation_id=get_correlation_id(),
            state_root_sha256=self.state_root(),
        )
        logger.info(
            f"{action} succeeded",
            operation=action,
            caller=caller,
            resource_id=event.resource_id,
            **details,
        )
        return event

    def _record_denial(
        self,
        action: str,
        caller: str,
        resource_type: str,
        resource_id: Any,
        err: RegistryError,
    ) -> None:
        self._audit.log(
            event_type=AuditEventType.OPERATION_DENIED,
            actor=caller if isinstance(caller, str) else repr(caller),
            resource_type=resource_type,
            resource_id=resource_id if isinstance(resource_id, (int, str)) else None,
            action=action,
            outcome="denied",
            timestamp=self._clock.now(),
            details={"error_code": int(err.code), "reason": err.message},
            correlation_id=get_correlation_id(),
            state_root_sha256=self.state_root(),
        )
        logger.warning(
            f"{action} denied: {err.message}",
            operation=action,
            error_code=str(int(err.code)),
            caller=caller,
        )

    # -------------------------------------------------------------------------
    # Administrative operations
    # -------------------------------------------------------------------------

    @registry_operation("pause", resource_type="registry", token_arg=False)
    def pause(self, caller: str) -> bool:
        self._access.require_admin(caller)
        self._state.paused = True
        self._record(AuditEventType.REGISTRY_PAUSED, caller, "registry", "", "pause")
        return True

    @registry_operation("unpause", resource_type="registry", token_arg=False)
    def unpause(self, caller: str) -> bool:
        self._access.require_admin(caller)
        self._state.paused = False
        self._record(AuditEventType.REGISTRY_UNPAUSED, caller, "registry", "", "unpause")
        return True

    @registry_operation("set_admin", resource_type="registry", token_arg=False)
    def set_admin(self, caller: str, new_admin: str) -> bool:
        self._access.require_admin(caller)
        self._require_identity("new_admin", new_admin)
        previous = self._state.admin
        self._state.admin = new_admin
        self._record(
            AuditEventType.ADMIN_CHANGED, caller, "registry", "", "set_admin",
            previous_admin=previous, new_admin=new_admin,
        )
        return True

    # -------------------------------------------------------------------------
    # Token operations
    # -------------------------------------------------------------------------

    @registry_operation("mint", token_arg=False)
    def mint(self, caller: str, serial: str, description: Optional[str] = None) -> int:
        """Mint a token owned by ``caller``; returns the new token id."""
        self._require_not_paused()
        if not self._validators.valid_serial(serial):
            raise RegistryValidationError(
                "serial",
                f"must be 1-{self._validators.max_serial_length} characters",
                serial,
            )
        if description is not None and not self._validators.valid_description(description):
            raise RegistryValidationError(
                "description",
                f"must be at most {self._validators.max_description_length} characters",
                description,
            )

        now = self._clock.now()
        token_id = self._tokens.mint(caller)
        self._metadata.create(token_id, serial, description, now)
        self._record(AuditEventType.TOKEN_MINTED, caller, "token", token_id, "mint", serial=serial)
        return token_id

    @registry_operation("transfer")
    def transfer(self, caller: str, token_id: int, sender: str, recipient: str) -> bool:
        self._require_not_paused()
        if caller != sender or not self._access.is_owner(token_id, sender):
            raise AuthorizationError(
                ErrorCode.NOT_OWNER,
                f"{caller!r} cannot transfer token {token_id} on behalf of {sender!r}",
                {"caller": caller, "sender": sender, "token_id": token_id},
            )
        self._require_identity("recipient", recipient)

        self._tokens.transfer(token_id, recipient)
        self._record(
            AuditEventType.TOKEN_TRANSFERRED, caller, "token", token_id, "transfer",
            sender=sender, recipient=recipient,
        )
        return True

    @registry_operation("burn")
    def burn(self, caller: str, token_id: int) -> bool:
        """Destroy a token and its metadata. Its repair logs stay in the log store."""
        self._require_not_paused()
        self._access.require_owner(token_id, caller)
        self._require_metadata(token_id)

        self._tokens.burn(token_id)
        removed = self._metadata.remove(token_id)
        self._record(
            AuditEventType.TOKEN_BURNED, caller, "token", token_id, "burn",
            serial=removed.serial, repair_logs=removed.repair_logs.to_list(),
        )
        return True

    @registry_operation("update_description")
    def update_description(self, caller: str, token_id: int, new_description: str) -> bool:
        self._require_not_paused()
        self._access.require_owner(token_id, caller)
        self._require_metadata(token_id)
        if not self._validators.valid_description(new_description):
            raise RegistryValidationError(
                "description",
                f"must be at most {self._validators.max_description_length} characters",
                new_description,
            )

        self._metadata.set_description(token_id, new_description, self._clock.now())
        self._record(AuditEventType.DESCRIPTION_UPDATED, caller, "token", token_id, "update_description")
        return True

    @registry_operation("append_repair_log")
    def append_repair_log(self, caller: str, token_id: int, log_description: str, shop: str) -> int:
        """Record a repair against ``token_id``; returns the new log id."""
        self._require_not_paused()
        self._require_identity("shop", shop)
        self._access.require_owner(token_id, caller)
        record = self._require_metadata(token_id)
        if record.repair_logs.is_full:
            raise CapacityError(token_id, record.repair_logs.capacity)
        if not self._validators.valid_log_description(log_description):
            raise RegistryValidationError(
                "log_description",
                f"must be at most {self._validators.max_log_description_length} characters",
                log_description,
            )

        now = self._clock.now()
        entry = self._repair_logs.record(log_description, shop, now)
        self._metadata.link_repair_log(token_id, entry.log_id, now)
        self._record(
            AuditEventType.REPAIR_LOGGED, caller, "token", token_id, "append_repair_log",
            log_id=entry.log_id, shop=shop,
        )
        return entry.log_id

    # -------------------------------------------------------------------------
    # Read-only accessors
    # -------------------------------------------------------------------------

    def get_last_token_id(self) -> Response:
        with self._lock:
            return Response.success(self._state.last_token_id)

    def get_token_uri(self, token_id: int) -> Response:
        """Tokens carry no external URI."""
        return Response.success(None)

    def get_owner(self, token_id: int) -> Response:
        with self._lock:
            return Response.success(self._tokens.owner_of(token_id))

    def get_laptop_details(self, token_id: int) -> Response:
        with self._lock:
            record = self._metadata.get(token_id)
            return Response.success(record.copy() if record is not None else None)

    def get_repair_log(self, log_id: int) -> Response:
        with self._lock:
            return Response.success(self._repair_logs.get(log_id))

    def get_all_repair_logs(self, token_id: int) -> Response:
        with self._lock:
            record = self._metadata.get(token_id)
            if record is None:
                return Response.failure(
                    StateError(ErrorCode.INVALID_ID, f"token {token_id} does not exist")
                )
            return Response.success(record.repair_logs.to_list())

    def is_paused(self) -> Response:
        with self._lock:
            return Response.success(self._state.paused)

    def get_admin(self) -> Response:
        with self._lock:
            return Response.success(self._state.admin)

    def verify_ownership(self, token_id: int, identity: str) -> Response:
        with self._lock:
            return Response.success(self._access.is_owner(token_id, identity))

    # -------------------------------------------------------------------------
    # Restoring persisted state
    # -------------------------------------------------------------------------

    def load_state(
        self,
        *,
        admin: str,
        paused: bool,
        last_token_id: int,
        last_log_id: int,
        owners: Dict[int, str],
        metadata: Dict[int, LaptopMetadata],
        logs: List[RepairLog],
        audit_events: Optional[List[AuditEvent]] = None,
    ) -> None:
        """
        Populate an empty registry from persisted state.

        Every invariant is checked before anything is applied; a violation
        raises InvariantViolation and leaves the registry empty.
        """
        with self._lock:
            if self._state.last_token_id or self._state.last_log_id or len(self._audit):
                raise InvariantViolation("state can only be loaded into an empty registry")
            if not self._validators.valid_identity(admin):
                raise InvariantViolation(f"invalid registry admin: {admin!r}")
            if set(owners) != set(metadata):
                raise InvariantViolation("token and metadata tables disagree on live token ids")

            InvariantChecker.check_ids_allocated("token id", owners.keys(), last_token_id)
            log_ids = {entry.log_id for entry in logs}
            InvariantChecker.check_ids_allocated("repair log id", log_ids, last_log_id)
            capacity = self._metadata.log_capacity
            for token_id, record in metadata.items():
                InvariantChecker.check_capacity(f"repair logs of token {token_id}", len(record.repair_logs), capacity)
                missing = [i for i in record.repair_logs if i not in log_ids]
                if missing:
                    raise InvariantViolation(f"token {token_id} links unknown repair logs {missing}")

            events = list(audit_events or [])
            self._audit.restore(events)
            self._tokens.restore(owners, last_token_id)
            self._repair_logs.restore(logs, last_log_id)
            self._metadata.restore(metadata)
            self._state.admin = admin
            self._state.paused = paused

            timestamps = [r.last_updated for r in metadata.values()]
            timestamps += [entry.timestamp for entry in logs]
            timestamps += [event.timestamp for event in events]
            if timestamps:
                self._clock.observe(max(timestamps))

            logger.info(
                "Registry state loaded",
                operation="load_state",
                tokens=len(owners),
                repair_logs=len(logs),
                audit_events=len(events),
            )
