"""
Laptop registry facade: operation table, error codes and read accessors.
"""

import pytest

from laptop_registry.errors import ErrorCode, RegistryValidationError
from laptop_registry.hardening import MonotonicClock
from laptop_registry.metadata import LaptopMetadata
from laptop_registry.registry import LaptopRegistry, Response


# =============================================================================
# REFERENCE SCENARIOS
# =============================================================================

class TestReferenceScenarios:
    """End-to-end behaviour of the documented reference scenarios."""

    def test_mint_returns_first_id_and_assigns_caller(self, registry):
        result = registry.mint("alice", "SERIAL123", "Test Laptop")

        assert result == Response(ok=True, value=1)
        assert registry.get_owner(1).value == "alice"
        details = registry.get_laptop_details(1).value
        assert details.serial == "SERIAL123"
        assert details.description == "Test Laptop"
        assert details.repair_logs == []

    def test_mint_with_overlong_serial_fails_and_creates_nothing(self, registry):
        result = registry.mint("alice", "S" * 51, "Test Laptop")

        assert result.ok is False
        assert result.value == 105
        assert registry.get_last_token_id().value == 0
        assert registry.get_owner(1).value is None

    def test_transfer_by_non_owner_fails(self, minted):
        result = minted.transfer("bob", 1, "bob", "carol")

        assert result.ok is False
        assert result.value == 100
        assert minted.get_owner(1).value == "alice"

    def test_owner_appends_repair_log(self, minted):
        result = minted.append_repair_log("alice", 1, "Screen repaired", "shopX")

        assert result == Response(ok=True, value=1)
        assert minted.get_all_repair_logs(1).value == [1]
        assert minted.get_repair_log(1).value.shop == "shopX"
        assert minted.get_repair_log(1).value.description == "Screen repaired"

    def test_hundred_and_first_repair_log_is_rejected(self, minted):
        for i in range(100):
            assert minted.append_repair_log("alice", 1, f"repair {i}", "shopX").ok

        result = minted.append_repair_log("alice", 1, "one too many", "shopX")

        assert result.ok is False
        assert result.value == 106
        assert len(minted.get_all_repair_logs(1).value) == 100
        assert minted.state.last_log_id == 100

    def test_missing_token_read_asymmetry(self, registry):
        logs = registry.get_all_repair_logs(999)
        owner = registry.get_owner(999)

        assert logs.ok is False
        assert logs.value == 101
        assert owner == Response(ok=True, value=None)


# =============================================================================
# RESPONSE
# =============================================================================

class TestResponse:
    """Two-part result type."""

    def test_failure_carries_numeric_code_and_error(self, registry):
        result = registry.mint("alice", "")

        assert result.code is ErrorCode.INVALID_METADATA
        assert isinstance(result.error, RegistryValidationError)
        assert result.error.field == "serial"

    def test_unwrap(self, registry):
        assert registry.mint("alice", "SN-1").unwrap() == 1

        with pytest.raises(RegistryValidationError):
            registry.mint("alice", "").unwrap()

    def test_equality_ignores_error_object(self):
        from laptop_registry.errors import StateError

        failure = Response.failure(StateError(ErrorCode.PAUSED, "registry is paused"))
        assert failure == Response(ok=False, value=104)
        assert Response.success().value is True


# =============================================================================
# ADMIN OPERATIONS
# =============================================================================

class TestAdminOperations:
    """pause, unpause and set_admin."""

    def test_only_admin_can_pause(self, registry):
        assert registry.pause("alice").value == 103
        assert registry.is_paused().value is False

        assert registry.pause("deployer").ok
        assert registry.is_paused().value is True

    def test_only_admin_can_unpause(self, registry):
        registry.pause("deployer")

        assert registry.unpause("alice").value == 103
        assert registry.is_paused().value is True
        assert registry.unpause("deployer").ok
        assert registry.is_paused().value is False

    def test_set_admin_hands_over_role(self, registry):
        assert registry.set_admin("deployer", "ops").ok
        assert registry.get_admin().value == "ops"

        assert registry.pause("deployer").value == 103
        assert registry.pause("ops").ok

    def test_set_admin_rejects_system_identity(self, registry):
        result = registry.set_admin("deployer", "contract")

        assert result.value == 105
        assert registry.get_admin().value == "deployer"

    def test_set_admin_checks_authority_before_identity(self, registry):
        assert registry.set_admin("mallory", "contract").value == 103

    def test_admin_operations_allowed_while_paused(self, registry):
        registry.pause("deployer")

        assert registry.set_admin("deployer", "ops").ok
        assert registry.unpause("ops").ok

    def test_constructor_rejects_system_identity_admin(self):
        with pytest.raises(ValueError):
            LaptopRegistry("contract")

    def test_default_admin_from_config(self):
        from laptop_registry.config import get_config_manager

        get_config_manager().set("identity.initial_admin", "founder")
        assert LaptopRegistry().get_admin().value == "founder"


# =============================================================================
# MINT
# =============================================================================

class TestMint:
    """mint preconditions and effects."""

    def test_ids_are_sequential(self, registry):
        ids = [registry.mint("alice", f"SN-{i}").value for i in range(5)]
        assert ids == [1, 2, 3, 4, 5]
        assert registry.get_last_token_id().value == 5

    def test_description_is_optional(self, registry):
        registry.mint("alice", "SN-1")
        assert registry.get_laptop_details(1).value.description is None

    @pytest.mark.parametrize("serial", ["S", "S" * 50])
    def test_serial_bounds_accepted(self, registry, serial):
        assert registry.mint("alice", serial).ok

    @pytest.mark.parametrize("serial", ["", "S" * 51, None, 12345])
    def test_serial_bounds_rejected(self, registry, serial):
        assert registry.mint("alice", serial).value == 105

    def test_description_bound(self, registry):
        assert registry.mint("alice", "SN-1", "d" * 256).ok
        assert registry.mint("alice", "SN-2", "d" * 257).value == 105
        assert registry.get_last_token_id().value == 1

    def test_timestamps_set_at_mint(self, registry, step_clock):
        registry.mint("alice", "SN-1")
        details = registry.get_laptop_details(1).value

        assert details.minted_at == details.last_updated
        assert details.minted_at >= 1_700_000_000_000

    def test_pause_checked_before_serial(self, registry):
        registry.pause("deployer")
        assert registry.mint("alice", "").value == 104


# =============================================================================
# TRANSFER
# =============================================================================

class TestTransfer:
    """transfer preconditions and effects."""

    def test_owner_transfers(self, minted):
        assert minted.transfer("alice", 1, "alice", "bob").ok
        assert minted.get_owner(1).value == "bob"
        assert minted.verify_ownership(1, "bob").value is True
        assert minted.verify_ownership(1, "alice").value is False

    def test_caller_must_equal_sender(self, minted):
        # bob claims to send on alice's behalf
        assert minted.transfer("bob", 1, "alice", "bob").value == 100
        assert minted.get_owner(1).value == "alice"

    def test_sender_must_be_owner(self, minted):
        assert minted.transfer("bob", 1, "bob", "bob").value == 100

    def test_recipient_cannot_be_system_identity(self, minted):
        assert minted.transfer("alice", 1, "alice", "contract").value == 105
        assert minted.get_owner(1).value == "alice"

    def test_missing_token_reports_not_owner(self, registry):
        assert registry.transfer("alice", 42, "alice", "bob").value == 100

    def test_ownership_check_before_recipient_check(self, minted):
        assert minted.transfer("bob", 1, "bob", "contract").value == 100

    def test_metadata_survives_transfer(self, minted):
        minted.append_repair_log("alice", 1, "battery", "shopX")
        minted.transfer("alice", 1, "alice", "bob")

        details = minted.get_laptop_details(1).value
        assert details.serial == "SERIAL123"
        assert details.repair_logs == [1]


# =============================================================================
# BURN
# =============================================================================

class TestBurn:
    """burn preconditions and effects."""

    def test_owner_burns(self, minted):
        assert minted.burn("alice", 1).ok
        assert minted.get_owner(1).value is None
        assert minted.get_laptop_details(1).value is None
        assert minted.get_all_repair_logs(1).value == 101

    def test_non_owner_cannot_burn(self, minted):
        assert minted.burn("bob", 1).value == 100
        assert minted.get_owner(1).value == "alice"

    def test_burn_missing_token(self, registry):
        assert registry.burn("alice", 7).value == 100

    def test_burned_id_never_reissued(self, minted):
        minted.burn("alice", 1)
        assert minted.mint("alice", "SN-2").value == 2
        assert minted.get_last_token_id().value == 2

    def test_repair_logs_outlive_burn(self, minted):
        minted.append_repair_log("alice", 1, "keyboard", "shopX")
        minted.burn("alice", 1)

        entry = minted.get_repair_log(1).value
        assert entry is not None
        assert entry.description == "keyboard"


# =============================================================================
# UPDATE DESCRIPTION
# =============================================================================

class TestUpdateDescription:
    """update_description preconditions and effects."""

    def test_owner_updates(self, minted):
        before = minted.get_laptop_details(1).value.last_updated
        assert minted.update_description("alice", 1, "Refurbished").ok

        details = minted.get_laptop_details(1).value
        assert details.description == "Refurbished"
        assert details.last_updated > before

    def test_non_owner_rejected(self, minted):
        assert minted.update_description("bob", 1, "mine now").value == 100
        assert minted.get_laptop_details(1).value.description == "Test Laptop"

    def test_missing_token_reports_not_owner(self, registry):
        assert registry.update_description("alice", 3, "x").value == 100

    def test_length_bound(self, minted):
        assert minted.update_description("alice", 1, "d" * 256).ok
        assert minted.update_description("alice", 1, "d" * 257).value == 105
        assert minted.get_laptop_details(1).value.description == "d" * 256

    def test_empty_description_allowed(self, minted):
        assert minted.update_description("alice", 1, "").ok
        assert minted.get_laptop_details(1).value.description == ""


# =============================================================================
# APPEND REPAIR LOG
# =============================================================================

class TestAppendRepairLog:
    """append_repair_log preconditions, in order."""

    def test_shop_identity_checked_before_ownership(self, minted):
        assert minted.append_repair_log("bob", 1, "x", "contract").value == 105

    def test_non_owner_rejected(self, minted):
        assert minted.append_repair_log("bob", 1, "x", "shopX").value == 100

    def test_missing_token_reports_not_owner(self, registry):
        assert registry.append_repair_log("alice", 9, "x", "shopX").value == 100

    def test_log_description_bound(self, minted):
        assert minted.append_repair_log("alice", 1, "d" * 512, "shopX").ok
        assert minted.append_repair_log("alice", 1, "d" * 513, "shopX").value == 105
        assert minted.get_all_repair_logs(1).value == [1]

    def test_capacity_checked_before_description(self):
        from laptop_registry.config import get_config_manager

        get_config_manager().set("limits.max_repair_logs", 2)
        small = LaptopRegistry("deployer")
        small.mint("alice", "SN-1")
        small.append_repair_log("alice", 1, "a", "shopX")
        small.append_repair_log("alice", 1, "b", "shopX")

        assert small.append_repair_log("alice", 1, "d" * 513, "shopX").value == 106

    def test_log_ids_are_global_across_tokens(self, registry):
        registry.mint("alice", "SN-1")
        registry.mint("bob", "SN-2")

        assert registry.append_repair_log("alice", 1, "a", "shopX").value == 1
        assert registry.append_repair_log("bob", 2, "b", "shopY").value == 2
        assert registry.append_repair_log("alice", 1, "c", "shopX").value == 3

        assert registry.get_all_repair_logs(1).value == [1, 3]
        assert registry.get_all_repair_logs(2).value == [2]

    def test_log_ids_independent_of_token_ids(self, registry):
        for i in range(3):
            registry.mint("alice", f"SN-{i}")
        assert registry.append_repair_log("alice", 3, "x", "shopX").value == 1

    def test_timestamp_and_last_updated(self, minted):
        log_id = minted.append_repair_log("alice", 1, "fan", "shopX").value
        entry = minted.get_repair_log(log_id).value
        details = minted.get_laptop_details(1).value

        assert details.last_updated == entry.timestamp
        assert entry.timestamp > details.minted_at


# =============================================================================
# READ ACCESSORS
# =============================================================================

class TestReadAccessors:
    """Read-only accessors never mutate and never fail on access control."""

    def test_absent_values_are_success(self, registry):
        assert registry.get_owner(1) == Response(ok=True, value=None)
        assert registry.get_laptop_details(1) == Response(ok=True, value=None)
        assert registry.get_repair_log(1) == Response(ok=True, value=None)
        assert registry.verify_ownership(1, "alice") == Response(ok=True, value=False)

    def test_token_uri_is_absent(self, minted):
        assert minted.get_token_uri(1) == Response(ok=True, value=None)

    def test_details_are_a_detached_copy(self, minted):
        details = minted.get_laptop_details(1).value
        assert isinstance(details, LaptopMetadata)

        details.description = "tampered"
        details.repair_logs.append(99)

        fresh = minted.get_laptop_details(1).value
        assert fresh.description == "Test Laptop"
        assert fresh.repair_logs == []

    def test_repair_log_list_is_a_copy(self, minted):
        minted.append_repair_log("alice", 1, "x", "shopX")
        logs = minted.get_all_repair_logs(1).value
        logs.append(42)
        assert minted.get_all_repair_logs(1).value == [1]

    def test_reads_work_while_paused(self, minted):
        minted.pause("deployer")
        assert minted.get_owner(1).value == "alice"
        assert minted.get_last_token_id().value == 1


class TestClock:
    """Record timestamps never run backwards."""

    def test_backwards_source_is_clamped(self):
        readings = iter([5_000, 4_000, 3_000, 6_000])
        registry = LaptopRegistry("deployer", clock=MonotonicClock(lambda: next(readings)))

        registry.mint("alice", "SN-1")
        registry.append_repair_log("alice", 1, "a", "shopX")

        details = registry.get_laptop_details(1).value
        assert details.minted_at == 5_000
        assert registry.get_repair_log(1).value.timestamp == 5_000
