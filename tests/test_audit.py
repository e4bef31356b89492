"""
Hash-chained audit trail of registry operations.
"""

import pytest

from laptop_registry.audit import AuditEvent, AuditEventType, AuditLogger
from laptop_registry.hardening import InvariantViolation


def _log(logger, i, outcome="success"):
    return logger.log(
        event_type=AuditEventType.TOKEN_MINTED,
        actor=f"actor{i}",
        resource_type="token",
        resource_id=i,
        action="mint",
        outcome=outcome,
        timestamp=1000 + i,
        details={"serial": f"SN-{i}"},
    )


class TestAuditLogger:
    """Chain construction and verification."""

    def test_chain_integrity(self):
        logger = AuditLogger()
        for i in range(5):
            _log(logger, i)

        valid, idx = logger.verify_chain()
        assert valid
        assert idx is None
        assert len(logger) == 5

    def test_events_link_to_predecessor(self):
        logger = AuditLogger()
        first = _log(logger, 1)
        second = _log(logger, 2)

        assert first.previous_event_digest is None
        assert second.previous_event_digest == first.event_digest
        assert (first.sequence, second.sequence) == (1, 2)
        assert logger.head == second.event_digest

    def test_empty_log(self):
        logger = AuditLogger()
        assert logger.head is None
        assert logger.verify_chain() == (True, None)

    def test_tampered_event_detected(self):
        logger = AuditLogger()
        for i in range(4):
            _log(logger, i)

        logger.get_events()[2].actor = "mallory"

        assert logger.verify_chain() == (False, 2)

    def test_resource_id_stored_as_string(self):
        event = _log(AuditLogger(), 7)
        assert event.resource_id == "7"

    def test_query_filters(self):
        logger = AuditLogger()
        for i in range(3):
            _log(logger, i)
        _log(logger, 1, outcome="denied")

        assert len(logger.get_events(actor="actor1")) == 2
        assert len(logger.get_events(outcome="denied")) == 1
        assert len(logger.get_events(resource_id=2)) == 1
        assert len(logger.get_events(event_type=AuditEventType.TOKEN_BURNED)) == 0
        assert [e.sequence for e in logger.get_events(limit=2)] == [3, 4]

    def test_export_restore(self):
        logger = AuditLogger()
        for i in range(3):
            _log(logger, i)

        restored = AuditLogger()
        restored.restore(AuditEvent.from_dict(d) for d in logger.export())

        assert restored.head == logger.head
        assert _log(restored, 9).sequence == 4
        assert restored.verify_chain() == (True, None)

    def test_restore_rejects_broken_chain(self):
        logger = AuditLogger()
        for i in range(3):
            _log(logger, i)
        exported = logger.export()
        del exported[1]

        with pytest.raises(InvariantViolation, match="audit chain broken"):
            AuditLogger().restore(AuditEvent.from_dict(d) for d in exported)


class TestRegistryAuditTrail:
    """Every mutating registry call leaves exactly one audit event."""

    def test_successful_operations_recorded(self, minted):
        minted.append_repair_log("alice", 1, "screen", "shopX")
        minted.transfer("alice", 1, "alice", "bob")
        minted.update_description("bob", 1, "refurb")
        minted.burn("bob", 1)
        minted.pause("deployer")
        minted.unpause("deployer")
        minted.set_admin("deployer", "ops")

        types = [e.event_type for e in minted.audit_log.get_events()]
        assert types == [
            AuditEventType.TOKEN_MINTED,
            AuditEventType.REPAIR_LOGGED,
            AuditEventType.TOKEN_TRANSFERRED,
            AuditEventType.DESCRIPTION_UPDATED,
            AuditEventType.TOKEN_BURNED,
            AuditEventType.REGISTRY_PAUSED,
            AuditEventType.REGISTRY_UNPAUSED,
            AuditEventType.ADMIN_CHANGED,
        ]
        assert minted.audit_log.verify_chain() == (True, None)

    def test_denials_recorded_with_code(self, minted):
        minted.transfer("bob", 1, "bob", "carol")

        denied = minted.audit_log.get_events(outcome="denied")
        assert len(denied) == 1
        event = denied[0]
        assert event.event_type is AuditEventType.OPERATION_DENIED
        assert event.actor == "bob"
        assert event.action == "transfer"
        assert event.resource_id == "1"
        assert event.details["error_code"] == 100

    def test_read_accessors_not_recorded(self, minted):
        before = len(minted.audit_log)
        minted.get_owner(1)
        minted.get_laptop_details(1)
        minted.get_all_repair_logs(999)
        assert len(minted.audit_log) == before

    def test_repair_event_details(self, minted):
        minted.append_repair_log("alice", 1, "screen", "shopX")
        event = minted.audit_log.get_events(event_type=AuditEventType.REPAIR_LOGGED)[0]
        assert event.details == {"log_id": 1, "shop": "shopX"}
        assert event.correlation_id.startswith("corr-")
