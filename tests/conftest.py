import logging
import os
import pathlib
import sys

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports.
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

_LAPREG_ENV_VARS = (
    "LAPREG_MAX_SERIAL_LEN",
    "LAPREG_MAX_DESCRIPTION_LEN",
    "LAPREG_MAX_LOG_DESCRIPTION_LEN",
    "LAPREG_MAX_REPAIR_LOGS",
    "LAPREG_SYSTEM_IDENTITY",
    "LAPREG_INITIAL_ADMIN",
    "LAPREG_LOG_LEVEL",
    "LAPREG_LOG_FORMAT",
    "LAPREG_REGISTRY_PATH",
    "LAPREG_PRETTY_SNAPSHOTS",
)


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless LAPREG_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('LAPREG_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set LAPREG_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    """Every test starts from default configuration and no LAPREG_* overrides."""
    from laptop_registry.config import get_config_manager

    for name in _LAPREG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_config_manager().reset()
    yield
    get_config_manager().reset()


@pytest.fixture(autouse=True)
def _isolated_logging():
    """Drop handlers installed by configure_logging (e.g. by CLI runs)."""
    root = logging.getLogger("laptop_registry")
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.NOTSET)
    root.propagate = True


class StepClock:
    """Deterministic time source: starts at ``start`` and advances ``step`` per reading."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 1000):
        self.value = start
        self.step = step

    def __call__(self) -> int:
        current = self.value
        self.value += self.step
        return current


@pytest.fixture
def step_clock():
    return StepClock()


@pytest.fixture
def registry(step_clock):
    from laptop_registry.hardening import MonotonicClock
    from laptop_registry.registry import LaptopRegistry

    return LaptopRegistry("deployer", clock=MonotonicClock(step_clock))


@pytest.fixture
def minted(registry):
    """Registry with token 1 owned by alice."""
    assert registry.mint("alice", "SERIAL123", "Test Laptop").value == 1
    return registry
