"""Fixtures for HTTP API tests.

The app is built with ``create_app()`` but its lifespan is never entered:
the service container is assembled from in-memory fakes and placed on
``app.state.services`` directly.
"""

from __future__ import annotations

import os
from datetime import timezone

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")

from src.config import Settings, get_settings  # noqa: E402
from src.container import ServiceContainer  # noqa: E402
from src.location.config_loader import load_categorizer_config  # noqa: E402
from src.location.ingest import LocationIngestor  # noqa: E402
from src.main import create_app  # noqa: E402
from src.services.local_store import SQLiteLocalStore  # noqa: E402
from src.services.state_store import StateStore  # noqa: E402
from src.sync.identity import IdentityResolver  # noqa: E402
from src.sync.orchestrator import SyncOrchestrator  # noqa: E402
from src.sync.scheduler import DailySyncScheduler  # noqa: E402
from src.sync.tests.conftest import FakeRemote, FixedClock, StepClock  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_anon_key="test-anon-key",
        environment="test",
        geocoder_enabled=False,
    )


@pytest.fixture
def services(settings: Settings) -> ServiceContainer:
    store = SQLiteLocalStore(":memory:", clock=FixedClock())
    state = StateStore()
    remote = FakeRemote()
    identity = IdentityResolver(remote, state)
    orchestrator = SyncOrchestrator(store, remote, identity, state, clock=StepClock())
    scheduler = DailySyncScheduler(orchestrator, tz=timezone.utc)
    scheduler.register_recurring()
    ingestor = LocationIngestor(store, state, config=load_categorizer_config())
    container = ServiceContainer(
        settings=settings,
        store=store,
        state=state,
        remote=remote,
        identity=identity,
        orchestrator=orchestrator,
        scheduler=scheduler,
        ingestor=ingestor,
    )
    yield container
    store.close()


@pytest.fixture
def client(settings: Settings, services: ServiceContainer) -> TestClient:
    app = create_app()
    app.state.services = services
    app.dependency_overrides[get_settings] = lambda: settings
    return TestClient(app)
