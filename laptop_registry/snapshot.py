"""Registry snapshots.

Persists a complete registry (state, tokens, repair logs, audit trail) as a
single JSON document and restores it with full validation:

- JSON Schema validation (Draft 2020-12) against
  ``schemas/registry.snapshot.schema.json``
- Registry invariants re-checked before any state is applied
- Audit hash chain verified on restore, and the restored state checked
  against the state root recorded by the last audit event

The state root commits to everything except the audit trail:

    state_root_sha256 = sha256(JCS(snapshot - audit))
"""

from __future__ import annotations

import fcntl
import json
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from laptop_registry.audit import AuditEvent
from laptop_registry.config import RegistryConfig, get_config
from laptop_registry.core import digest_of, load_json, write_canonical_json, write_pretty_json
from laptop_registry.hardening import InvariantViolation, MonotonicClock
from laptop_registry.metadata import LaptopMetadata
from laptop_registry.observability import RegistryLayer, get_logger, timed_operation
from laptop_registry.registry import LaptopRegistry
from laptop_registry.repair_log import RepairLog

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"
SNAPSHOT_SCHEMA = "registry.snapshot.schema.json"

logger = get_logger("snapshot", RegistryLayer.STORAGE)


class SnapshotError(Exception):
    """A snapshot could not be read, validated or restored."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: " + "; ".join(self.errors)
        super().__init__(message)


# =============================================================================
# SCHEMA VALIDATION
# =============================================================================

@lru_cache(maxsize=1)
def _schema_registry() -> Registry:
    """Registry of every packaged schema, keyed by its $id."""
    resources = []
    for schema_path in sorted(SCHEMAS_DIR.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or schema_path.name
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(schema_name: str = SNAPSHOT_SCHEMA) -> Draft202012Validator:
    """Cached validator for a packaged schema file."""
    schema = load_json(SCHEMAS_DIR / schema_name)
    return Draft202012Validator(schema, registry=_schema_registry())


def validate_snapshot(data: Any) -> List[str]:
    """Validate a snapshot document.

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = schema_validator(SNAPSHOT_SCHEMA)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(data), key=lambda e: e.json_path)
    ]


# =============================================================================
# SERIALIZATION
# =============================================================================

def registry_to_dict(registry: LaptopRegistry, include_audit: bool = True) -> Dict[str, Any]:
    """Serialize the registry as one consistent document."""
    with registry.lock:
        doc = registry.state_document()
        if include_audit:
            doc["audit"] = registry.audit_log.export()
    return doc


def state_root(source: Union[LaptopRegistry, Dict[str, Any]]) -> str:
    """sha256 over the canonical snapshot, excluding the audit trail."""
    if isinstance(source, LaptopRegistry):
        return source.state_root()
    doc = dict(source)
    doc.pop("audit", None)
    return digest_of(doc)


def _check_audit_anchor(registry: LaptopRegistry, config: RegistryConfig) -> None:
    """The restored state must be the state the audit trail last recorded.

    A registry with an empty trail has never been touched, so its state must
    equal that of a new registry with the same admin.
    """
    actual = registry.state_root()
    events = registry.audit_log.get_events()
    if events:
        expected = events[-1].state_root_sha256
        if expected is None:
            raise SnapshotError("last audit event does not record a state root")
        source = f"audit event {events[-1].sequence}"
    else:
        expected = LaptopRegistry(registry.state.admin, config=config).state_root()
        source = "an empty audit trail"
    if actual != expected:
        raise SnapshotError(
            f"snapshot state root {actual} does not match {source} (expected {expected})"
        )


def registry_from_dict(
    data: Any,
    *,
    config: Optional[RegistryConfig] = None,
    clock: Optional[MonotonicClock] = None,
) -> LaptopRegistry:
    """Rebuild a registry from a snapshot document.

    Raises:
        SnapshotError: on schema errors or violated registry invariants
    """
    errors = validate_snapshot(data)
    if errors:
        raise SnapshotError("snapshot failed schema validation", errors)

    config = config or get_config()
    capacity = config.limits.max_repair_logs.get()
    state = data["state"]

    try:
        owners: Dict[int, str] = {}
        metadata: Dict[int, LaptopMetadata] = {}
        for entry in data["tokens"]:
            token_id = entry["token_id"]
            if token_id in owners:
                raise InvariantViolation(f"duplicate token id {token_id}")
            owners[token_id] = entry["owner"]
            metadata[token_id] = LaptopMetadata.from_dict(entry["metadata"], capacity, token_id)

        logs = [RepairLog.from_dict(entry) for entry in data["repair_logs"]]
        events = [AuditEvent.from_dict(entry) for entry in data.get("audit", [])]

        registry = LaptopRegistry(state["admin"], config=config, clock=clock)
        registry.load_state(
            admin=state["admin"],
            paused=state["paused"],
            last_token_id=state["last_token_id"],
            last_log_id=state["last_log_id"],
            owners=owners,
            metadata=metadata,
            logs=logs,
            audit_events=events,
        )
    except (InvariantViolation, ValueError) as ex:
        raise SnapshotError(f"snapshot violates registry invariants: {ex}") from ex

    _check_audit_anchor(registry, config)
    return registry


# =============================================================================
# FILES
# =============================================================================

LOCK_SUFFIX = ".lock"


@contextmanager
def registry_lock(path: Union[str, Path]) -> Iterator[None]:
    """Hold an exclusive lock on the snapshot at ``path`` across processes.

    The lock lives on a ``<snapshot>.lock`` sidecar so the snapshot itself can
    be replaced atomically while the lock is held.
    """
    path = Path(path)
    lock_path = path.with_name(path.name + LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


@timed_operation(logger, "save_registry")
def save_registry(
    registry: LaptopRegistry,
    path: Union[str, Path],
    pretty: Optional[bool] = None,
) -> str:
    """Write a snapshot to ``path``; returns the sha256 of its canonical form."""
    if pretty is None:
        pretty = registry.config.storage.pretty.get()
    doc = registry_to_dict(registry)
    path = Path(path)
    digest = write_pretty_json(path, doc) if pretty else write_canonical_json(path, doc)
    logger.info(
        "Registry saved",
        operation="save_registry",
        path=str(path),
        digest=digest,
        tokens=len(doc["tokens"]),
    )
    return digest


@timed_operation(logger, "load_registry")
def load_registry(
    path: Union[str, Path],
    *,
    config: Optional[RegistryConfig] = None,
    clock: Optional[MonotonicClock] = None,
) -> LaptopRegistry:
    """Read and restore a snapshot file."""
    path = Path(path)
    if not path.is_file():
        raise SnapshotError(f"snapshot not found: {path}")
    try:
        data = load_json(path)
    except (json.JSONDecodeError, UnicodeDecodeError) as ex:
        raise SnapshotError(f"snapshot is not valid JSON: {path}") from ex

    registry = registry_from_dict(data, config=config, clock=clock)
    logger.info("Registry loaded", operation="load_registry", path=str(path))
    return registry
