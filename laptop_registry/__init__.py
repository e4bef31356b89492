"""
Laptop Registry

Ownership and repair-history registry for laptops. Each physical device is a
non-fungible token with exactly one owner, a descriptive metadata record and
an append-only list of repair logs reported by repair shops.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                           LAPTOP REGISTRY                                │
    │                                                                          │
    │  INTERFACES                                                             │
    │    cli.py           lapreg command over a file-backed registry          │
    │    snapshot.py      Schema-validated persistence, state root            │
    │    proofs.py        Ed25519 did:key signed checkpoints                  │
    │                                                                          │
    │  FACADE                                                                 │
    │    registry.py      Operation set, atomic under one lock, Response      │
    │    audit.py         Hash-chained audit trail of every mutation          │
    │                                                                          │
    │  STORES                                                                 │
    │    tokens.py        Token id -> owner, monotonic id allocation          │
    │    metadata.py      Token id -> serial, description, repair-log ids     │
    │    repair_log.py    Log id -> immutable repair record                   │
    │    access.py        Admin / owner checks over live state                │
    │                                                                          │
    │  FOUNDATION                                                             │
    │    errors.py        Numeric error codes and exception hierarchy         │
    │    hardening.py     Validators, counters, clock, invariant checks       │
    │    config.py        YAML + LAPREG_* environment configuration           │
    │    observability.py Structured logging with correlation IDs             │
    │    core.py          Canonical JSON and hashing                          │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Core Concepts
─────────────

    Token: A laptop, identified by an id that is never reused. Minting assigns
    it to the caller; burning removes it and its metadata.

    Repair log: An immutable record of one repair (description, shop,
    timestamp). Log ids come from their own counter. Logs outlive the token
    they were recorded against.

    Response: Every operation returns ``Response(ok, value)``. On failure the
    value is a stable numeric code (100-107) and no state has changed.
"""

__version__ = "0.1.0"


# Lazy imports keep `import laptop_registry` light and avoid import cycles
def __getattr__(name):
    """Lazy import registry modules on first access."""

    if name in ("LaptopRegistry", "Response"):
        from laptop_registry import registry
        return getattr(registry, name)

    if name in ("ErrorCode", "RegistryError", "AuthorizationError", "StateError",
                "RegistryValidationError", "CapacityError"):
        from laptop_registry import errors
        return getattr(errors, name)

    if name in ("LaptopMetadata", "RepairLogList"):
        from laptop_registry import metadata
        return getattr(metadata, name)

    if name == "RepairLog":
        from laptop_registry import repair_log
        return repair_log.RepairLog

    if name in ("AuditEvent", "AuditEventType", "AuditLogger"):
        from laptop_registry import audit
        return getattr(audit, name)

    if name in ("save_registry", "load_registry", "registry_lock", "state_root", "SnapshotError"):
        from laptop_registry import snapshot
        return getattr(snapshot, name)

    if name in ("build_checkpoint", "verify_checkpoint", "add_ed25519_proof"):
        from laptop_registry import proofs
        return getattr(proofs, name)

    if name in ("RegistryConfig", "get_config", "get_config_manager"):
        from laptop_registry import config
        return getattr(config, name)

    raise AttributeError(f"module 'laptop_registry' has no attribute '{name}'")
