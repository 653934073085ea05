"""Service wiring: every long-lived object is built once here and passed down.

``build_container(settings)`` is called from the FastAPI lifespan; the result
is stored on ``app.state.services`` and reached from routes through
``src.dependencies``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from zoneinfo import ZoneInfo

from src.config import Settings
from src.location.config_loader import get_categorizer_config
from src.location.geocoder import NominatimGeocoder, ReverseGeocoder
from src.location.ingest import LocationIngestor
from src.services.local_store import SQLiteLocalStore
from src.services.state_store import StateStore
from src.services.supabase import SupabaseRestClient
from src.sync.identity import IdentityResolver
from src.sync.orchestrator import SyncOrchestrator
from src.sync.retry import RetryExecutor, RetryPolicy
from src.sync.scheduler import DailySyncScheduler

logger = logging.getLogger("qolmonitor.container")


@dataclass
class ServiceContainer:
    settings: Settings
    store: SQLiteLocalStore
    state: StateStore
    remote: SupabaseRestClient
    identity: IdentityResolver
    orchestrator: SyncOrchestrator
    scheduler: DailySyncScheduler
    ingestor: LocationIngestor
    geocoder: ReverseGeocoder | None = None

    async def aclose(self) -> None:
        """Stop background work and release network and file handles."""
        await self.scheduler.stop()
        await self.remote.aclose()
        if self.geocoder is not None:
            await self.geocoder.aclose()
        self.store.close()
        logger.info("Services shut down")


def build_container(settings: Settings) -> ServiceContainer:
    """Construct the service graph from settings.  Nothing is started."""
    tz = ZoneInfo(settings.timezone)

    store = SQLiteLocalStore(settings.local_db_path)
    state = StateStore(settings.state_file_path or None)

    policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        factor=settings.retry_backoff_factor,
        retryable_statuses=frozenset(settings.retry_statuses),
    )
    access_token = settings.supabase_access_token
    remote = SupabaseRestClient(
        settings.supabase_url,
        settings.supabase_anon_key,
        token_provider=lambda: access_token or None,
        executor=RetryExecutor(policy),
        timeout=settings.request_timeout_seconds,
    )
    identity = IdentityResolver(remote, state)
    orchestrator = SyncOrchestrator(
        store, remote, identity, state, batch_size=settings.sync_batch_size
    )
    scheduler = DailySyncScheduler(
        orchestrator,
        tz=tz,
        task_identifier=settings.sync_task_identifier,
        hour=settings.sync_hour,
        execution_budget=settings.sync_execution_budget_seconds,
        poll_interval=settings.scheduler_poll_seconds,
        connectivity_probe=remote.ping,
    )

    geocoder: ReverseGeocoder | None = None
    if settings.geocoder_enabled:
        geocoder = NominatimGeocoder(
            url=settings.geocoder_url,
            user_agent=settings.geocoder_user_agent,
            timeout=settings.request_timeout_seconds,
        )
    ingestor = LocationIngestor(
        store, state, geocoder=geocoder, tz=tz, config=get_categorizer_config()
    )

    logger.info(
        "Services built (db=%s, tz=%s, geocoder=%s)",
        settings.local_db_path, settings.timezone, "on" if geocoder else "off",
    )
    return ServiceContainer(
        settings=settings,
        store=store,
        state=state,
        remote=remote,
        identity=identity,
        orchestrator=orchestrator,
        scheduler=scheduler,
        ingestor=ingestor,
        geocoder=geocoder,
    )
