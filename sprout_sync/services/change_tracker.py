"""Change tracker: the only way transactions are written with sync metadata.

Local edits always leave a record PENDING with a fresh ``locally_modified_at``;
remote-origin writes always leave it SYNCED with ``last_synced_at`` set.
"""
from collections.abc import Callable
from datetime import datetime
import logging
import uuid

from sprout_sync.exceptions import ConflictStateError, TransactionNotFoundError
from sprout_sync.models.transaction import (
    ConflictResolution,
    SyncStatus,
    Transaction,
    USER_EDITABLE_FIELDS,
)
from sprout_sync.schemas.transaction import (
    RemoteTransaction,
    TransactionCreate,
    TransactionUpdate,
)
from sprout_sync.services.local_store import LocalStore
from sprout_sync.timeutils import next_modification_time, utcnow

logger = logging.getLogger(__name__)


def stamp_remote(row: Transaction | None, remote: RemoteTransaction, synced_at: datetime) -> Transaction:
    """Materialize a server version of a record into ``row`` (or a new row)."""
    if row is None:
        row = Transaction(
            id=remote.id,
            created_at=remote.created_at or remote.updated_at,
            locally_modified_at=remote.updated_at,
            remote_version=0,
            failure_count=0,
        )
    elif remote.created_at and row.created_at is None:
        row.created_at = remote.created_at

    row.user_id = remote.user_id
    row.assign(remote.user_fields())
    row.updated_at = remote.updated_at
    row.remote_version = max(row.remote_version or 0, remote.version or 0)
    row.sync_status = SyncStatus.SYNCED
    row.last_synced_at = synced_at
    row.is_deleted = False
    row.failure_count = 0
    row.last_error = None
    row.conflict_resolution = None
    row.conflict_payload = None
    return row


def _merged_fields(local: Transaction, remote: RemoteTransaction) -> dict:
    """Remote values as the base, local values wherever the user filled them in."""
    merged = remote.user_fields()
    local_fields = local.user_fields()
    for field in USER_EDITABLE_FIELDS:
        if field in ("tags", "attachments"):
            combined = list(local_fields[field])
            combined.extend(item for item in merged[field] if item not in combined)
            merged[field] = combined
        elif local_fields[field] not in (None, ""):
            merged[field] = local_fields[field]
    if local_fields["location"] is not None:
        merged["location"] = local_fields["location"]
    return merged


class ChangeTracker:
    """Gate for local mutations and conflict resolution."""

    def __init__(
        self,
        store: LocalStore,
        clock: Callable[[], datetime] = utcnow,
        on_change: Callable[[], None] | None = None,
    ):
        self._store = store
        self._clock = clock
        self._on_change = on_change

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()

    @staticmethod
    def _touch(row: Transaction, now: datetime) -> None:
        row.locally_modified_at = next_modification_time(row.locally_modified_at, now)
        row.updated_at = now

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_transaction(self, transaction_id: str) -> Transaction:
        record = self._store.get(transaction_id)
        if record is None or record.is_deleted:
            raise TransactionNotFoundError(transaction_id)
        return record

    def list_transactions(
        self,
        user_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        category: str | None = None,
    ) -> list[Transaction]:
        return self._store.list_transactions(user_id, start=start, end=end, category=category)

    def count_transactions(self, user_id: str | None = None) -> int:
        return self._store.count_transactions(user_id)

    # ------------------------------------------------------------------
    # Local mutations
    # ------------------------------------------------------------------

    def create_transaction(self, draft: TransactionCreate) -> Transaction:
        """Create a new local record, queued for upload."""
        now = self._clock()
        fields = draft.model_dump()
        if fields["date"] is None:
            fields["date"] = now

        record = Transaction(
            id=str(uuid.uuid4()),
            user_id=fields.pop("user_id"),
            sync_status=SyncStatus.PENDING,
            last_synced_at=None,
            locally_modified_at=now,
            remote_version=0,
            failure_count=0,
            is_deleted=False,
            created_at=now,
            updated_at=now,
        )
        record.assign(fields)

        saved = self._store.upsert(record)
        logger.debug(f"Created transaction {saved.id}")
        self._notify()
        return saved

    def update_transaction(self, transaction_id: str, changes: TransactionUpdate) -> Transaction:
        """Apply a local edit. CONFLICT records stay in conflict until resolved."""
        fields = changes.changes()
        now = self._clock()

        def _edit(row: Transaction | None) -> Transaction | None:
            if row is None or row.is_deleted:
                return None
            row.assign(fields)
            self._touch(row, now)
            if row.sync_status != SyncStatus.CONFLICT:
                row.sync_status = SyncStatus.PENDING
            row.failure_count = 0
            row.last_error = None
            return row

        updated = self._store.modify(transaction_id, _edit)
        if updated is None:
            raise TransactionNotFoundError(transaction_id)
        self._notify()
        return updated

    def delete_transaction(self, transaction_id: str) -> Transaction:
        """Soft-delete; the row disappears once the server confirms."""
        current = self._store.get(transaction_id)
        if current is None or current.is_deleted:
            raise TransactionNotFoundError(transaction_id)

        deleted = self._store.mark_deleted(transaction_id, self._clock())
        if deleted is None:
            raise TransactionNotFoundError(transaction_id)
        self._notify()
        return deleted

    def retry_parked(self, transaction_id: str | None = None) -> int:
        """Let records parked after repeated rejections be uploaded again."""
        count = self._store.reset_rejections(transaction_id)
        if count:
            logger.info(f"Re-queued {count} parked transactions")
            self._notify()
        return count

    # ------------------------------------------------------------------
    # Remote-origin writes
    # ------------------------------------------------------------------

    def apply_remote(self, remote: RemoteTransaction) -> Transaction:
        """Store a server version as-is, tagged SYNCED."""
        synced_at = self._clock()
        return self._store.modify(remote.id, lambda row: stamp_remote(row, remote, synced_at))

    # ------------------------------------------------------------------
    # Conflict resolution
    # ------------------------------------------------------------------

    def choose_resolution(self, transaction_id: str, resolution: ConflictResolution) -> Transaction:
        """Record how a conflict should be resolved on the next sync."""

        def _choose(row: Transaction | None) -> Transaction | None:
            if row is None:
                return None
            if row.sync_status != SyncStatus.CONFLICT:
                raise ConflictStateError(f"Transaction {row.id} is not in conflict")
            row.conflict_resolution = ConflictResolution(resolution)
            return row

        record = self._store.modify(transaction_id, _choose)
        if record is None:
            raise TransactionNotFoundError(transaction_id)
        return record

    def resolve_conflict(
        self,
        transaction_id: str,
        resolution: ConflictResolution,
        changes: TransactionUpdate | None = None,
    ) -> Transaction:
        """Resolve a CONFLICT record now.

        ``keep_local`` re-queues the local version over the server's,
        ``keep_remote`` adopts the server version that raised the conflict and
        ``merge`` combines both (plus ``changes``) and re-queues the result.
        """
        resolution = ConflictResolution(resolution)
        overrides = changes.changes() if changes is not None else {}
        now = self._clock()

        def _resolve(row: Transaction | None) -> Transaction | None:
            if row is None:
                return None
            if row.sync_status != SyncStatus.CONFLICT:
                raise ConflictStateError(f"Transaction {row.id} is not in conflict")

            remote = RemoteTransaction.model_validate(row.conflict_payload) if row.conflict_payload else None
            if remote is None and resolution != ConflictResolution.KEEP_LOCAL:
                raise ConflictStateError(f"Transaction {row.id} has no remote version to apply")

            if resolution == ConflictResolution.KEEP_REMOTE:
                return stamp_remote(row, remote, now)

            if resolution == ConflictResolution.MERGE:
                row.assign(_merged_fields(row, remote))
            if remote is not None:
                row.remote_version = max(row.remote_version or 0, remote.version or 0)
            if overrides:
                row.assign(overrides)
            self._touch(row, now)
            row.sync_status = SyncStatus.PENDING
            row.conflict_resolution = None
            row.conflict_payload = None
            row.failure_count = 0
            return row

        record = self._store.modify(transaction_id, _resolve)
        if record is None:
            raise TransactionNotFoundError(transaction_id)

        logger.info(f"Resolved conflict on {transaction_id} with {resolution.value}")
        if record.sync_status == SyncStatus.PENDING:
            self._notify()
        return record

    def apply_chosen_resolutions(self) -> int:
        """Resolve every conflict that already has a chosen resolution."""
        resolved = 0
        for record in self._store.list_by_status(SyncStatus.CONFLICT):
            if record.conflict_resolution is None:
                continue
            self.resolve_conflict(record.id, record.conflict_resolution)
            resolved += 1
        return resolved
