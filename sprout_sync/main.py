"""Sprout Sync - offline-first transaction sync client.

Builds one local store per process and wires the change tracker, remote
client, sync engine and scheduler around it.
"""
from dataclasses import dataclass
import logging
import signal
import threading

import httpx

from sprout_sync.config import Settings, get_settings
from sprout_sync.database import create_local_engine, create_session_factory, init_schema
from sprout_sync.services.change_tracker import ChangeTracker
from sprout_sync.services.connectivity import ConnectivityChecker
from sprout_sync.services.credentials import CredentialProvider, TokenFileCredentialProvider
from sprout_sync.services.local_store import LocalStore
from sprout_sync.services.remote_client import RemoteClient
from sprout_sync.services.scheduler import SyncScheduler
from sprout_sync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stderr in a single line format."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    if root_logger.handlers:
        root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)

    # Request lines from httpx are noise at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@dataclass
class SyncRuntime:
    """Components sharing one local store."""

    store: LocalStore
    tracker: ChangeTracker
    remote: RemoteClient
    engine: SyncEngine
    scheduler: SyncScheduler

    def close(self) -> None:
        self.scheduler.stop()
        self.remote.close()


def build_runtime(
    settings: Settings | None = None,
    credentials: CredentialProvider | None = None,
    http_client: httpx.Client | None = None,
    connectivity: ConnectivityChecker | None = None,
) -> SyncRuntime:
    """Construct the sync components for this process."""
    settings = settings or get_settings()
    credentials = credentials or TokenFileCredentialProvider(settings.token_store_path)

    engine = create_local_engine(settings.database_url, settings.database_key, echo=settings.debug)
    init_schema(engine)
    store = LocalStore(create_session_factory(engine))

    # Uploads interrupted by a previous process are retried from scratch
    store.recover_interrupted_uploads()

    remote = RemoteClient(
        settings.api_base_url,
        credentials,
        http_client=http_client,
        timeout=settings.request_timeout_seconds,
    )
    sync_engine = SyncEngine(
        store,
        remote,
        page_size=settings.sync_page_size,
        max_record_rejections=settings.max_record_rejections,
    )
    scheduler = SyncScheduler(
        sync_engine,
        connectivity
        or ConnectivityChecker.from_url(settings.api_base_url, timeout=settings.connectivity_timeout_seconds),
        credentials,
        interval_seconds=settings.sync_interval_minutes * 60,
        max_attempts=settings.max_run_attempts,
        retry_backoff_seconds=settings.retry_backoff_seconds,
        offline_retry_seconds=settings.offline_retry_seconds,
    )
    tracker = ChangeTracker(store, on_change=lambda: scheduler.request_sync("local_change"))
    scheduler.tracker = tracker

    return SyncRuntime(
        store=store,
        tracker=tracker,
        remote=remote,
        engine=sync_engine,
        scheduler=scheduler,
    )


def main() -> None:
    """Run the background sync loop until interrupted."""
    settings = get_settings()
    configure_logging(settings.log_level)

    runtime = build_runtime(settings)
    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: stop.set())

    runtime.scheduler.start()
    logger.info(f"{settings.app_name} running against {settings.api_base_url}")
    try:
        stop.wait()
    except KeyboardInterrupt:
        pass
    finally:
        runtime.close()


if __name__ == "__main__":
    main()
