"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors).
"""
import sys
from pathlib import Path

import pytest

# Ensure the repo root and the tests dir are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
TESTS_DIR = REPO_ROOT / "backend" / "tests"
for p in (str(REPO_ROOT), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_archive_state(monkeypatch: pytest.MonkeyPatch):
    """Reset telemetry, web store wiring and env toggles per test.

    Why:
        Telemetry counters and the web layer's store pair are process-wide
        singletons; without a reset, counts and records leak across tests.

    Behavior:
        - Clears counters/gauges before the test runs.
        - Drops the web store pair so `get_stores()` rebuilds it.
        - Removes env toggles that switch the web layer to live services.
    """
    from backend.archive.workers import telemetry
    from backend.web import storage_wiring

    for var in (
        "ARCHIVE_DATABASE_URL",
        "DATABASE_URL",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "ARCHIVE_TRUST_PROXY",
        "IDENTITY_HEADER",
        "ARCHIVE_ENV",
    ):
        monkeypatch.delenv(var, raising=False)
    telemetry.reset_for_tests()
    storage_wiring.reset_stores()
    yield
    storage_wiring.reset_stores()


@pytest.fixture
def documents():
    from backend.storage.memory import InMemoryDocumentStore

    return InMemoryDocumentStore()


@pytest.fixture
def blobs():
    from backend.storage.memory import InMemoryBlobStore

    return InMemoryBlobStore()

