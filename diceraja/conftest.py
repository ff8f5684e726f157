# diceraja/conftest.py
import os

# Settings are read at import time; pin the test environment first
os.environ.setdefault("ENV", "test")
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest  # noqa: E402

from diceraja.api.rewards import get_reward_engine  # noqa: E402
from diceraja.core.database import create_all_tables, init_engine  # noqa: E402
from diceraja.core.metrics import METRICS  # noqa: E402
from diceraja.main import app  # noqa: E402


@pytest.fixture(scope="function", autouse=True)
def sqlite_db(tmp_path):
    """
    Point the app at a fresh SQLite file for every test.

    Each test gets empty tables, a fresh reward engine (and lock registry),
    zeroed counters and no leftover dependency overrides.
    """
    url = f"sqlite:///{tmp_path / 'diceraja-test.db'}"
    init_engine(url)
    create_all_tables()
    METRICS.reset()
    get_reward_engine.cache_clear()
    yield url
    app.dependency_overrides.clear()
    get_reward_engine.cache_clear()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    return TestClient(app)


@pytest.fixture
def register_account():
    """Factory creating a standard user or a gamer straight through the service layer."""
    from diceraja.features.accounts import service as accounts

    counter = {"n": 0}

    def _register(role: str = "user", *, email=None, password: str = "secret123", **overrides):
        counter["n"] += 1
        fields = dict(
            name=f"Player {counter['n']}",
            email=email or f"player{counter['n']}@example.com",
            phone="9876543210",
            password=password,
            state="Maharashtra",
            city="Pune",
        )
        fields.update(overrides)
        if role == "gamer":
            fields.setdefault("group", "groupA")
            fields.setdefault("terms_accepted", True)
            fields.setdefault("policy_accepted", True)
            return accounts.register_gamer(**fields)
        return accounts.register_user(**fields)

    return _register


@pytest.fixture
def auth_headers():
    from diceraja.core.auth import create_access_token

    def _headers(account):
        return {"Authorization": f"Bearer {create_access_token(account)}"}

    return _headers


@pytest.fixture
def freeze_now():
    """Pin the claim instant seen by the reward endpoints; call again to move the clock."""
    from diceraja.api.rewards import get_now

    def _freeze(moment):
        app.dependency_overrides[get_now] = lambda: moment
        return moment

    return _freeze
