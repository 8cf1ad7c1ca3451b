"""Pytest fixtures for the access control plane.

Every test runs against a fresh in-memory SQLite database. Outbound HTTP
(provisioning agent, CLI callbacks) goes through httpx.MockTransport, so no
test touches the network.
"""

import os
import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Runtime env for the application (must be set before `config` is imported)
# ---------------------------------------------------------------------------

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_SECRET"] = "test-admin-secret"
os.environ["CONTROL_PLANE_URL"] = "https://cp.test"
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Ensure control-plane on PYTHONPATH so `import main` works from any cwd
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fastapi.testclient import TestClient  # noqa: E402

from database.session import SessionLocal, db_manager, init_db  # noqa: E402
from core.route_cache import route_cache  # noqa: E402
from core.agent_client import agent_client  # noqa: E402
from main import app  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-secret"}


def principal_headers(user_id: str, groups=(), email=None) -> dict:
    headers = {"X-User-Id": user_id}
    if groups:
        headers["X-User-Groups"] = ",".join(groups)
    if email:
        headers["X-User-Email"] = email
    return headers


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _fresh_state():
    db_manager.drop_all_tables()
    init_db()
    route_cache.invalidate("test setup")
    agent_client.transport = None
    yield
    agent_client.transport = None


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def api_client() -> TestClient:
    return TestClient(app)
