"""
Test fixtures for the unified inbox core.

Every test gets its own SQLite *file* database so that thread-based tests
exercise real cross-connection locking, plus an ``AppConfig`` installed as
the global configuration. Only provider clients are faked.
"""

import pytest
from sqlalchemy.orm import Session

from tests.fixtures.factories import ALL_FACTORIES
from tests.fixtures.fake_provider import FakeProviderClient
from unified_inbox_core.config import (
    AppConfig,
    AuthorizationConfig,
    ProvidersConfig,
    SecurityConfig,
    reset_config,
    set_config,
)
from unified_inbox_core.db import (
    DatabaseConfig,
    DatabaseManager,
    import_all_models,
    set_db_manager,
)
from unified_inbox_core.providers import ProviderRegistry
from unified_inbox_core.services import (
    AuthorizationService,
    ConnectionLockRegistry,
    CredentialStore,
    IngestionService,
    TenantGuard,
    TokenRefreshService,
)

# ==================== CONFIGURATION ====================


@pytest.fixture(scope="function")
def app_config() -> AppConfig:
    """Global configuration with deterministic timings and no env providers."""
    config = AppConfig(
        authorization=AuthorizationConfig(
            handshake_ttl_seconds=600,
            refresh_threshold_seconds=300,
            success_redirect_url="https://app.example.com/settings/connections",
            error_redirect_url="https://app.example.com/settings/connections/error",
        ),
        security=SecurityConfig(encryption_key="test-key"),
        providers=ProvidersConfig(request_timeout_seconds=5, providers={}),
    )
    set_config(config)
    yield config
    reset_config()


# ==================== DATABASE ====================


@pytest.fixture(scope="function")
def db_config(tmp_path) -> DatabaseConfig:
    return DatabaseConfig(
        db_type="sqlite",
        database=str(tmp_path / "unified_inbox_test.db"),
        busy_timeout_seconds=30,
        echo=False,
        development_mode=True,
    )


@pytest.fixture(scope="function")
def db_manager(db_config: DatabaseConfig, app_config: AppConfig) -> DatabaseManager:
    """Fresh schema per test, installed as the global manager."""
    import_all_models()
    manager = DatabaseManager(db_config)
    manager.create_tables()
    set_db_manager(manager)

    yield manager

    set_db_manager(None)
    manager.drop_tables()
    manager.close()


@pytest.fixture(scope="function")
def db_session(db_manager: DatabaseManager) -> Session:
    """Session for arranging data and asserting on stored rows."""
    session = db_manager.new_session()
    for factory_class in ALL_FACTORIES:
        factory_class._meta.sqlalchemy_session = session

    yield session

    session.rollback()
    session.close()


# ==================== SCOPE ====================


@pytest.fixture
def tenant_id() -> str:
    return "tenant-a"


@pytest.fixture
def user_id() -> str:
    return "user-1"


@pytest.fixture
def other_tenant_id() -> str:
    return "tenant-b"


# ==================== PROVIDERS ====================


@pytest.fixture(scope="function")
def fake_provider() -> FakeProviderClient:
    return FakeProviderClient("slack", label="Slack", account_name_key="team_name")


@pytest.fixture(scope="function")
def unconfigured_provider() -> FakeProviderClient:
    return FakeProviderClient("hubspot", label="HubSpot", configured=False)


@pytest.fixture(scope="function")
def registry(fake_provider, unconfigured_provider) -> ProviderRegistry:
    return ProviderRegistry([fake_provider, unconfigured_provider])


# ==================== SERVICES ====================


@pytest.fixture(scope="function")
def store(db_manager, app_config) -> CredentialStore:
    return CredentialStore(db_manager=db_manager, config=app_config)


@pytest.fixture(scope="function")
def authorization_service(store, registry, db_manager, app_config) -> AuthorizationService:
    return AuthorizationService(store, registry, db_manager=db_manager, config=app_config)


@pytest.fixture(scope="function")
def refresh_service(store, registry, db_manager, app_config) -> TokenRefreshService:
    return TokenRefreshService(
        store, registry, locks=ConnectionLockRegistry(), db_manager=db_manager, config=app_config
    )


@pytest.fixture(scope="function")
def ingestion_service(store, refresh_service, registry, db_manager, app_config) -> IngestionService:
    return IngestionService(
        store, refresh_service, registry, db_manager=db_manager, config=app_config
    )


@pytest.fixture(scope="function")
def guard(registry, db_manager, app_config) -> TenantGuard:
    return TenantGuard(
        registry=registry, locks=ConnectionLockRegistry(), db_manager=db_manager, config=app_config
    )
