"""
Integration Test: Laptop Repair History Flow

End-to-end workflow across the registry, snapshot persistence, audit trail
and signed checkpoints: a laptop changes hands, is repaired by several shops,
the registry is persisted and reloaded between steps, and the final state is
attested by a signed checkpoint.
"""

import pytest

from laptop_registry.audit import AuditEventType
from laptop_registry.proofs import (
    add_ed25519_proof,
    build_checkpoint,
    generate_ed25519_jwk,
    load_ed25519_private_key_from_jwk,
    verify_checkpoint,
)
from laptop_registry.registry import LaptopRegistry
from laptop_registry.snapshot import load_registry, save_registry, state_root


class TestRepairHistoryAcrossOwners:
    """A device's repair history follows it through transfers and restarts."""

    def test_history_survives_transfers_and_reloads(self, tmp_path):
        path = tmp_path / "registry.json"
        registry = LaptopRegistry("deployer")

        token_id = registry.mint("alice", "C02XK0AAJGH5", "13in ultrabook").value
        registry.append_repair_log("alice", token_id, "Battery replaced", "shop-north")
        save_registry(registry, path)

        registry = load_registry(path)
        assert registry.transfer("alice", token_id, "alice", "bob").ok
        registry.append_repair_log("bob", token_id, "Keyboard replaced", "shop-south")
        save_registry(registry, path)

        registry = load_registry(path)
        log_ids = registry.get_all_repair_logs(token_id).value
        shops = [registry.get_repair_log(i).value.shop for i in log_ids]

        assert registry.get_owner(token_id).value == "bob"
        assert log_ids == [1, 2]
        assert shops == ["shop-north", "shop-south"]

        # The previous owner can no longer add history.
        assert registry.append_repair_log("alice", token_id, "fake", "shop-x").value == 100

    def test_burned_device_history_remains_addressable(self, tmp_path):
        registry = LaptopRegistry("deployer")
        registry.mint("alice", "SN-1")
        registry.append_repair_log("alice", 1, "Logic board", "shop-north")
        registry.burn("alice", 1)

        path = tmp_path / "registry.json"
        save_registry(registry, path)
        reloaded = load_registry(path)

        assert reloaded.get_owner(1).value is None
        assert reloaded.get_repair_log(1).value.description == "Logic board"
        assert reloaded.mint("carol", "SN-2").value == 2


class TestAttestedState:
    """Checkpoints bind the persisted state and the audit head."""

    def test_checkpoint_matches_reloaded_registry(self, tmp_path):
        registry = LaptopRegistry("deployer")
        registry.mint("alice", "SN-1", "desk unit")
        registry.append_repair_log("alice", 1, "Fan cleaned", "shop-north")
        registry.transfer("bob", 1, "bob", "bob")  # denied

        jwk = generate_ed25519_jwk(kid="registry-ops")
        priv, did = load_ed25519_private_key_from_jwk(jwk)
        checkpoint = add_ed25519_proof(build_checkpoint(registry), priv, f"{did}#registry-ops")

        path = tmp_path / "registry.json"
        save_registry(registry, path)
        reloaded = load_registry(path)

        assert verify_checkpoint(checkpoint, reloaded) == []
        assert checkpoint["audit_head"] == reloaded.audit_log.head
        assert checkpoint["audit_length"] == 3

    def test_audit_trail_is_complete(self):
        registry = LaptopRegistry("deployer")
        registry.mint("alice", "SN-1")
        registry.pause("deployer")
        registry.mint("alice", "SN-2")
        registry.unpause("deployer")
        registry.set_admin("alice", "alice")

        events = registry.audit_log.get_events()
        assert [(e.action, e.outcome) for e in events] == [
            ("mint", "success"),
            ("pause", "success"),
            ("mint", "denied"),
            ("unpause", "success"),
            ("set_admin", "denied"),
        ]
        assert events[2].details["error_code"] == 104
        assert registry.audit_log.get_events(event_type=AuditEventType.OPERATION_DENIED)[-1].actor == "alice"


@pytest.mark.slow
class TestCapacityAtScale:
    """Many tokens filled to capacity, persisted and restored."""

    def test_full_registry_round_trip(self, tmp_path):
        registry = LaptopRegistry("deployer")
        for t in range(1, 51):
            registry.mint(f"owner{t}", f"SN-{t}")
            for r in range(100):
                assert registry.append_repair_log(f"owner{t}", t, f"repair {r}", "shop").ok
            assert registry.append_repair_log(f"owner{t}", t, "overflow", "shop").value == 106

        path = tmp_path / "registry.json"
        save_registry(registry, path)
        reloaded = load_registry(path)

        assert reloaded.state.last_log_id == 5000
        assert state_root(reloaded) == state_root(registry)
        assert reloaded.audit_log.verify_chain() == (True, None)
