"""Sync engine: upload local changes, download remote deltas, clean up.

One run = upload phase + download phase + cleanup. Runs never overlap; a
trigger that arrives while a run is active is ignored.

Conflict policy: when a record has unsynced local changes that are newer than
an incoming remote version, the local record is flagged CONFLICT and the
remote version is kept aside instead of being applied. Resolution happens
later through the change tracker.
"""
from collections.abc import Callable
from datetime import datetime
import logging
import threading

from sprout_sync.exceptions import (
    AuthenticationError,
    InvalidResponseError,
    LocalStoreError,
    RejectedError,
)
from sprout_sync.models.transaction import SyncStatus, Transaction
from sprout_sync.schemas.sync import SyncReport
from sprout_sync.schemas.transaction import RemoteTransaction, SyncAck, TransactionPayload
from sprout_sync.services.change_tracker import stamp_remote
from sprout_sync.services.local_store import LocalStore
from sprout_sync.services.remote_client import RemoteClient
from sprout_sync.timeutils import EPOCH, utcnow

logger = logging.getLogger(__name__)


class SyncEngine:
    """Orchestrates one sync run against a single local store."""

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteClient,
        clock: Callable[[], datetime] = utcnow,
        page_size: int = 50,
        max_record_rejections: int = 3,
    ):
        self._store = store
        self._remote = remote
        self._clock = clock
        self._page_size = page_size
        self._max_record_rejections = max_record_rejections
        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def run(self) -> SyncReport | None:
        """Run one full sync. Returns ``None`` if a run is already in progress."""
        if not self._run_lock.acquire(blocking=False):
            logger.info("Sync run already in progress; ignoring trigger")
            return None

        try:
            report = SyncReport(started_at=self._clock())
            self.upload_pending(report)
            self.download_remote_changes(report)
            report.purged = self._store.purge_deleted_synced()
            report.finished_at = self._clock()
            logger.info(
                f"Sync finished: {report.uploaded} uploaded, {report.deleted} deleted, "
                f"{report.failed} failed, {report.downloaded} downloaded, "
                f"{report.conflicts} conflicts, {report.purged} purged"
            )
            return report
        finally:
            self._run_lock.release()

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload_pending(self, report: SyncReport) -> None:
        candidates = self._store.list_upload_candidates(self._max_record_rejections)
        if candidates:
            logger.debug(f"Uploading {len(candidates)} pending transactions")

        for candidate in candidates:
            self._upload_record(candidate.id, report)

    def _upload_record(self, transaction_id: str, report: SyncReport) -> None:
        record = self._store.modify(transaction_id, self._begin_upload)
        if record is None:
            return

        sent_modified_at = record.locally_modified_at
        try:
            if record.is_deleted:
                if not self._remote.delete_transaction(record.id):
                    logger.debug(f"Delete of {record.id} acknowledged as already absent")
                self._store.hard_delete(record.id)
                report.deleted += 1
                return

            payload = TransactionPayload.from_record(record)
            if record.never_synced:
                ack = self._remote.create_transaction(payload)
            else:
                ack = self._remote.update_transaction(record.id, payload)

            synced_at = self._clock()
            self._store.modify(
                record.id,
                lambda row: self._complete_upload(row, ack, sent_modified_at, synced_at),
            )
            report.uploaded += 1
        except LocalStoreError:
            raise
        except AuthenticationError:
            self._store.modify(record.id, self._abandon_upload)
            raise
        except Exception as exc:
            logger.warning(f"Upload of transaction {record.id} failed: {exc}")
            rejected = isinstance(exc, RejectedError)
            self._store.modify(record.id, lambda row: self._fail_upload(row, exc, rejected))
            report.failed += 1
            report.add_error(f"{record.id}: {exc}")

    @staticmethod
    def _begin_upload(row: Transaction | None) -> Transaction | None:
        if row is None or row.sync_status not in (SyncStatus.PENDING, SyncStatus.FAILED):
            return None
        row.sync_status = SyncStatus.SYNCING
        return row

    @staticmethod
    def _abandon_upload(row: Transaction | None) -> Transaction | None:
        if row is not None and row.sync_status == SyncStatus.SYNCING:
            row.sync_status = SyncStatus.PENDING
        return row

    @staticmethod
    def _fail_upload(row: Transaction | None, exc: Exception, rejected: bool) -> Transaction | None:
        if row is None:
            return None
        if row.sync_status == SyncStatus.SYNCING:
            # Deleted records stay PENDING so they keep their delete intent
            row.sync_status = SyncStatus.PENDING if row.is_deleted else SyncStatus.FAILED
        row.last_error = str(exc)[:500]
        if rejected:
            row.failure_count = (row.failure_count or 0) + 1
        return row

    def _complete_upload(
        self,
        row: Transaction | None,
        ack: SyncAck,
        sent_modified_at: datetime,
        synced_at: datetime,
    ) -> Transaction | None:
        if row is None:
            return None
        if ack.version < (row.remote_version or 0):
            logger.warning(
                f"Server acknowledged {row.id} with version {ack.version} "
                f"below local version {row.remote_version}; keeping local version"
            )
        row.remote_version = max(row.remote_version or 0, ack.version)
        row.last_synced_at = synced_at
        row.failure_count = 0
        row.last_error = None

        if row.locally_modified_at == sent_modified_at:
            row.sync_status = SyncStatus.SYNCED
            row.updated_at = ack.updated_at
        else:
            # Edited while the request was in flight; the newer edit still needs uploading
            row.sync_status = SyncStatus.PENDING
        return row

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def download_remote_changes(self, report: SyncReport) -> None:
        since = self._store.get_last_sync() or EPOCH
        checkpoint = None
        cursor = None
        seen_cursors: set[str] = set()

        while True:
            page = self._remote.fetch_changes(since, cursor=cursor, limit=self._page_size)
            report.pages += 1
            if checkpoint is None:
                # Changes made while later pages were fetched are picked up next run
                checkpoint = page.last_sync

            for remote in page.transactions:
                self._merge_remote(remote, report)

            if not page.has_more:
                break
            if not page.next_cursor:
                raise InvalidResponseError("Sync page has more results but no cursor")
            if page.next_cursor in seen_cursors:
                raise InvalidResponseError(f"Sync cursor {page.next_cursor} repeated")
            seen_cursors.add(page.next_cursor)
            cursor = page.next_cursor

        self._store.set_last_sync(checkpoint)
        logger.debug(f"Download complete over {report.pages} pages; checkpoint {checkpoint.isoformat()}")

    def _merge_remote(self, remote: RemoteTransaction, report: SyncReport) -> None:
        synced_at = self._clock()
        outcome = {}

        def _merge(row: Transaction | None) -> Transaction | None:
            if row is None:
                outcome["result"] = "inserted"
                return stamp_remote(None, remote, synced_at)

            if (
                row.sync_status != SyncStatus.SYNCED
                and remote.version is not None
                and remote.version <= (row.remote_version or 0)
            ):
                # Already known here, usually our own upload coming back; local edits stay queued
                outcome["result"] = "current"
                return row

            if row.sync_status != SyncStatus.SYNCED and row.locally_modified_at > remote.updated_at:
                if row.is_deleted:
                    # The local delete is newer; it stays queued and wins on upload
                    outcome["result"] = "kept_delete"
                    return row
                row.sync_status = SyncStatus.CONFLICT
                row.conflict_payload = remote.model_dump(mode="json", by_alias=True)
                outcome["result"] = "conflict"
                return row

            if remote.updated_at > row.updated_at:
                if remote.version is not None and remote.version < (row.remote_version or 0):
                    outcome["result"] = "stale"
                    return row
                outcome["result"] = "applied"
                return stamp_remote(row, remote, synced_at)

            outcome["result"] = "current"
            return row

        self._store.modify(remote.id, _merge)

        result = outcome.get("result")
        if result in ("inserted", "applied"):
            report.downloaded += 1
        elif result == "conflict":
            report.conflicts += 1
            logger.info(f"Conflict on transaction {remote.id}: local changes are newer than remote")
        elif result == "stale":
            report.stale += 1
            logger.warning(f"Ignoring stale remote version {remote.version} of {remote.id}")
