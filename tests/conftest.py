import pytest
from datetime import timedelta
from unittest.mock import patch

import config.settings as settings_module
from config.settings import Settings
from data.repositories.memory_repository import InMemorySyncRepository
from data.repositories.repository_factory import get_repository_container
from utils.timezone_utils import utc_now

SERVICE_KEY = "test-service-role-key"
ANON_KEY = "test-anon-key"


@pytest.fixture(autouse=True)
def test_environment(monkeypatch):
    """Memory backend, no pacing delays, known API keys and a fresh global Settings."""
    for var in ("SUPABASE_URL", "FUNCTIONS_BASE_URL", "SUPABASE_SERVICE_ROLE_KEY",
                "SUPABASE_ANON_KEY", "DISPATCH_INVOKE_MODE", "TRADER_SYNC_DEV"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("TRADER_SYNC_REPOSITORY", "memory")
    monkeypatch.setenv("DISPATCH_DELAY_SECONDS", "0")
    monkeypatch.setenv("SUPABASE_SECRET_KEY", SERVICE_KEY)
    monkeypatch.setenv("SUPABASE_PUBLISHABLE_KEY", ANON_KEY)
    monkeypatch.setenv("BULLAWARE_API_KEY", "test-bullaware-key")

    monkeypatch.setattr(settings_module, "_settings", Settings())

    container = get_repository_container()
    container.configure({'type': 'memory'})
    yield
    container.clear()


@pytest.fixture
def repo():
    """In-memory repository seeded with three traders and some activity.

    - alice: stale (never updated), has an eToro cid
    - bob: updated recently, posted recently
    - carol: updated recently, no posts
    """
    repository = InMemorySyncRepository()
    recent = (utc_now() - timedelta(hours=1)).isoformat()
    repository.add_trader('t-alice', etoro_username='alice', etoro_cid='1001')
    repository.add_trader('t-bob', etoro_username='bob', etoro_cid='1002', updated_at=recent)
    repository.add_trader('t-carol', etoro_username='carol', updated_at=recent)
    repository.add_post('t-bob', created_at=recent)
    get_repository_container().set_repository(repository)
    return repository


@pytest.fixture
def app(repo):
    """Create and configure a new app instance for each test."""
    with patch('sync_dashboard.app.setup_logging'):
        from sync_dashboard.app import create_app

        app = create_app(config_overrides={
            "TESTING": True,
            "CACHE_TYPE": "NullCache",
            "DEBUG": False
        })

        yield app


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {SERVICE_KEY}"}
