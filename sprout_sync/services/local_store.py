"""Local store: durable CRUD over transactions on the device.

No network awareness. Every operation is its own database transaction, and a
process-wide lock makes read-modify-write sequences atomic with respect to
other threads sharing the store.
"""
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import datetime
import logging
import threading

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from sprout_sync.exceptions import LocalStoreError
from sprout_sync.models.sync_state import LAST_SYNC_KEY, SyncCheckpoint
from sprout_sync.models.transaction import SyncStatus, Transaction
from sprout_sync.timeutils import next_modification_time

logger = logging.getLogger(__name__)

Mutator = Callable[[Transaction | None], Transaction | None]


class LocalStore:
    """Transactions table plus the durable last-sync checkpoint."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._lock = threading.RLock()

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        with self._lock:
            db = self._session_factory()
            try:
                yield db
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise LocalStoreError(f"Local store operation failed: {exc}") from exc
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    # ------------------------------------------------------------------
    # Single-record operations
    # ------------------------------------------------------------------

    def get(self, transaction_id: str) -> Transaction | None:
        """Get a record by id, including soft-deleted ones."""
        with self._session() as db:
            return db.get(Transaction, transaction_id)

    def upsert(self, record: Transaction) -> Transaction:
        """Insert or replace the record with ``record.id``."""
        with self._session() as db:
            row = db.get(Transaction, record.id)
            if row is None:
                row = Transaction()
                row.copy_from(record)
                db.add(row)
            else:
                row.copy_from(record)
            return row

    def modify(self, transaction_id: str, mutate: Mutator) -> Transaction | None:
        """Atomically read, change and write one record.

        ``mutate`` receives the stored row (or ``None``) and returns the row to
        keep. Returning a new ``Transaction`` when none existed inserts it.
        """
        with self._session() as db:
            row = db.get(Transaction, transaction_id)
            result = mutate(row)
            if row is None and result is not None:
                db.add(result)
            return result

    def mark_deleted(self, transaction_id: str, now: datetime) -> Transaction | None:
        """Soft-delete: the row stays until the server confirms the deletion."""

        def _mark(row: Transaction | None) -> Transaction | None:
            if row is None:
                return None
            row.is_deleted = True
            row.sync_status = SyncStatus.PENDING
            row.locally_modified_at = next_modification_time(row.locally_modified_at, now)
            row.updated_at = now
            row.failure_count = 0
            row.last_error = None
            row.conflict_resolution = None
            row.conflict_payload = None
            return row

        return self.modify(transaction_id, _mark)

    def hard_delete(self, transaction_id: str) -> bool:
        """Physically remove a record and its location."""
        with self._session() as db:
            row = db.get(Transaction, transaction_id)
            if row is None:
                return False
            db.delete(row)
            return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_by_status(self, status: SyncStatus) -> list[Transaction]:
        with self._session() as db:
            return (
                db.query(Transaction)
                .filter(Transaction.sync_status == status)
                .order_by(Transaction.locally_modified_at)
                .all()
            )

    def list_modified_since(self, timestamp: datetime) -> list[Transaction]:
        with self._session() as db:
            return (
                db.query(Transaction)
                .filter(Transaction.locally_modified_at > timestamp)
                .order_by(Transaction.locally_modified_at)
                .all()
            )

    def list_transactions(
        self,
        user_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        category: str | None = None,
    ) -> list[Transaction]:
        """Visible (not soft-deleted) records, newest first.

        ``start`` and ``end`` bound the transaction date inclusively.
        """
        with self._session() as db:
            query = self._visible(db, user_id)
            if start is not None:
                query = query.filter(Transaction.date >= start)
            if end is not None:
                query = query.filter(Transaction.date <= end)
            if category:
                query = query.filter(Transaction.category == category)
            return query.order_by(Transaction.date.desc()).all()

    def count_transactions(self, user_id: str | None = None) -> int:
        with self._session() as db:
            return self._visible(db, user_id).count()

    @staticmethod
    def _visible(db: Session, user_id: str | None):
        query = db.query(Transaction).filter(Transaction.is_deleted.is_(False))
        if user_id:
            query = query.filter(Transaction.user_id == user_id)
        return query

    def list_upload_candidates(self, max_rejections: int) -> list[Transaction]:
        """Records waiting for upload, oldest change first.

        Records rejected ``max_rejections`` times in a row are parked until a
        local edit or an explicit retry resets their counter.
        """
        with self._session() as db:
            return (
                db.query(Transaction)
                .filter(
                    Transaction.sync_status.in_([SyncStatus.PENDING, SyncStatus.FAILED]),
                    Transaction.failure_count < max_rejections,
                )
                .order_by(Transaction.locally_modified_at)
                .all()
            )

    def list_parked(self, max_rejections: int) -> list[Transaction]:
        with self._session() as db:
            return (
                db.query(Transaction)
                .filter(
                    Transaction.sync_status.in_([SyncStatus.PENDING, SyncStatus.FAILED]),
                    Transaction.failure_count >= max_rejections,
                )
                .all()
            )

    def count_unsynced(self) -> int:
        with self._session() as db:
            return (
                db.query(func.count(Transaction.id))
                .filter(Transaction.sync_status != SyncStatus.SYNCED)
                .scalar()
            )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_deleted_synced(self) -> int:
        """Physically remove deletions the server has acknowledged."""
        with self._session() as db:
            rows = (
                db.query(Transaction)
                .filter(
                    and_(
                        Transaction.is_deleted.is_(True),
                        Transaction.sync_status == SyncStatus.SYNCED,
                    )
                )
                .all()
            )
            for row in rows:
                db.delete(row)
            return len(rows)

    def recover_interrupted_uploads(self) -> int:
        """Reset records left SYNCING by a process that died mid-upload."""
        with self._session() as db:
            recovered = (
                db.query(Transaction)
                .filter(Transaction.sync_status == SyncStatus.SYNCING)
                .update({Transaction.sync_status: SyncStatus.PENDING}, synchronize_session=False)
            )
        if recovered:
            logger.info(f"Recovered {recovered} interrupted uploads as PENDING")
        return recovered

    def reset_rejections(self, transaction_id: str | None = None) -> int:
        """Clear rejection counters so parked records are uploaded again."""
        with self._session() as db:
            query = db.query(Transaction).filter(
                or_(
                    Transaction.sync_status == SyncStatus.FAILED,
                    Transaction.sync_status == SyncStatus.PENDING,
                ),
                Transaction.failure_count > 0,
            )
            if transaction_id:
                query = query.filter(Transaction.id == transaction_id)
            return query.update({Transaction.failure_count: 0}, synchronize_session=False)

    # ------------------------------------------------------------------
    # Checkpoint
    # ------------------------------------------------------------------

    def get_last_sync(self) -> datetime | None:
        with self._session() as db:
            checkpoint = db.get(SyncCheckpoint, LAST_SYNC_KEY)
            return checkpoint.value if checkpoint else None

    def set_last_sync(self, timestamp: datetime) -> None:
        with self._session() as db:
            checkpoint = db.get(SyncCheckpoint, LAST_SYNC_KEY)
            if checkpoint is None:
                db.add(SyncCheckpoint(key=LAST_SYNC_KEY, value=timestamp))
            else:
                checkpoint.value = timestamp
