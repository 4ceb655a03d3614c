"""Scheduler: decides when the sync engine runs.

Periodic trigger plus on-demand triggers (pull-to-refresh, local edits).
Runs are gated on network reachability and on the user being signed in, and
a failing run is retried a bounded number of times before the failure is
handed back to the host.
"""
from collections.abc import Callable
import enum
import logging
import threading
import time

from sprout_sync.exceptions import AuthenticationError, SyncRunFailedError
from sprout_sync.services.change_tracker import ChangeTracker
from sprout_sync.services.connectivity import ConnectivityChecker
from sprout_sync.services.credentials import CredentialProvider
from sprout_sync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncOutcome(str, enum.Enum):
    COMPLETED = "completed"
    DEFERRED_OFFLINE = "deferred_offline"
    SKIPPED_UNAUTHENTICATED = "skipped_unauthenticated"
    SKIPPED_BUSY = "skipped_busy"


class SyncScheduler:
    """Triggers sync runs periodically and on demand."""

    def __init__(
        self,
        engine: SyncEngine,
        connectivity: ConnectivityChecker,
        credentials: CredentialProvider,
        tracker: ChangeTracker | None = None,
        interval_seconds: float = 15 * 60,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 5.0,
        offline_retry_seconds: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._engine = engine
        self._connectivity = connectivity
        self._credentials = credentials
        self.tracker = tracker
        self._interval_seconds = interval_seconds
        self._max_attempts = max_attempts
        self._retry_backoff_seconds = retry_backoff_seconds
        self._offline_retry_seconds = offline_retry_seconds
        self._sleep = sleep

        self._wake = threading.Event()
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None
        self.last_outcome: SyncOutcome | None = None
        self.last_error: Exception | None = None

    # ------------------------------------------------------------------
    # Single run
    # ------------------------------------------------------------------

    def run_once(self, reason: str = "manual") -> SyncOutcome:
        """Run the engine now, subject to connectivity and credentials.

        Raises ``SyncRunFailedError`` once every attempt has failed.
        """
        attempt = 0
        while True:
            if not self._connectivity.is_reachable():
                logger.info(f"Sync ({reason}) deferred: API unreachable")
                return self._finish(SyncOutcome.DEFERRED_OFFLINE)

            if not self._credentials.get_access_token():
                logger.debug(f"Sync ({reason}) skipped: not signed in")
                return self._finish(SyncOutcome.SKIPPED_UNAUTHENTICATED)

            attempt += 1
            try:
                if self.tracker is not None:
                    self.tracker.apply_chosen_resolutions()
                report = self._engine.run()
            except AuthenticationError as e:
                logger.info(f"Sync ({reason}) skipped: credentials rejected ({e})")
                return self._finish(SyncOutcome.SKIPPED_UNAUTHENTICATED)
            except Exception as e:
                self.last_error = e
                if attempt >= self._max_attempts:
                    logger.error(f"Sync ({reason}) failed after {attempt} attempts: {e}")
                    raise SyncRunFailedError(attempt, e) from e
                logger.warning(f"Sync ({reason}) attempt {attempt} failed: {e}; retrying")
                self._sleep(self._retry_backoff_seconds * attempt)
                continue

            if report is None:
                return self._finish(SyncOutcome.SKIPPED_BUSY)
            self.last_error = None
            return self._finish(SyncOutcome.COMPLETED)

    def _finish(self, outcome: SyncOutcome) -> SyncOutcome:
        self.last_outcome = outcome
        return outcome

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def request_sync(self, reason: str = "on_demand") -> None:
        """Wake the background loop for an immediate run."""
        logger.debug(f"Sync requested: {reason}")
        self._wake.set()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._loop, name="sprout-sync", daemon=True)
        self._thread.start()
        logger.info(f"Sync scheduler started (every {self._interval_seconds:.0f}s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stopped.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Sync scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _next_wait(self, outcome: SyncOutcome | None, offline_wait: float | None) -> float | None:
        """Offline re-check delay, doubling up to the periodic interval; ``None`` once online."""
        if outcome != SyncOutcome.DEFERRED_OFFLINE:
            return None
        if offline_wait is None:
            return min(self._offline_retry_seconds, self._interval_seconds)
        return min(offline_wait * 2, self._interval_seconds)

    def _loop(self) -> None:
        reason = "startup"
        offline_wait = None
        while not self._stopped.is_set():
            outcome = None
            try:
                outcome = self.run_once(reason)
            except SyncRunFailedError as e:
                # Deferred to the next trigger
                logger.error(f"Scheduled sync gave up: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error in sync loop: {e}")

            offline_wait = self._next_wait(outcome, offline_wait)
            if offline_wait is not None:
                logger.debug(f"Offline; checking again in {offline_wait:.0f}s")

            woken = self._wake.wait(timeout=offline_wait or self._interval_seconds)
            self._wake.clear()
            if woken:
                reason = "on_demand"
            else:
                reason = "reconnect_check" if offline_wait is not None else "periodic"
