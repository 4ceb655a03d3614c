from datetime import datetime, timedelta
from decimal import Decimal

from sprout_sync.database import create_local_engine, create_session_factory, init_schema
from sprout_sync.models.transaction import SyncStatus, Transaction, TransactionType
from sprout_sync.schemas.transaction import RemoteTransaction, SyncAck, SyncPage
from sprout_sync.services.local_store import LocalStore

T0 = datetime(2024, 3, 1, 12, 0, 0)


def build_store() -> LocalStore:
    engine = create_local_engine("sqlite://")
    init_schema(engine)
    return LocalStore(create_session_factory(engine))


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


def make_record(
    transaction_id: str,
    status: SyncStatus = SyncStatus.PENDING,
    modified_at: datetime = T0,
    **overrides,
) -> Transaction:
    fields = dict(
        id=transaction_id,
        user_id="user-1",
        amount=Decimal("-12.50"),
        currency="USD",
        category="Food",
        merchant="Corner Cafe",
        date=T0,
        type=TransactionType.EXPENSE,
        tags=[],
        attachments=[],
        is_recurring=False,
        sync_status=status,
        last_synced_at=None,
        locally_modified_at=modified_at,
        remote_version=0,
        failure_count=0,
        is_deleted=False,
        created_at=modified_at,
        updated_at=modified_at,
    )
    fields.update(overrides)
    return Transaction(**fields)


def remote_tx(transaction_id: str, updated_at: datetime, version: int | None = 1, **fields) -> RemoteTransaction:
    data = dict(
        id=transaction_id,
        user_id="user-1",
        amount=Decimal("-12.50"),
        category="Food",
        date=T0,
        updated_at=updated_at,
        version=version,
    )
    data.update(fields)
    return RemoteTransaction(**data)


class FakeRemote:
    """Scriptable stand-in for RemoteClient used by engine tests."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.created = []
        self.updated = []
        self.deleted = []
        self.fetch_calls = []
        self.pages: list[SyncPage | Exception] = []
        self.failures: dict[str, Exception] = {}
        self.delete_found = True
        self.during_upload = None

    def _maybe_fail(self, transaction_id: str) -> None:
        failure = self.failures.get(transaction_id)
        if failure is not None:
            raise failure

    def _ack(self, payload, version: int) -> SyncAck:
        if self.during_upload is not None:
            self.during_upload(payload)
        return SyncAck(id=payload.id, version=version, updated_at=self.clock() + timedelta(seconds=1))

    def create_transaction(self, payload):
        self._maybe_fail(payload.id)
        self.created.append(payload)
        return self._ack(payload, 1)

    def update_transaction(self, transaction_id, payload):
        self._maybe_fail(transaction_id)
        self.updated.append(payload)
        return self._ack(payload, payload.remote_version + 1)

    def delete_transaction(self, transaction_id):
        self._maybe_fail(transaction_id)
        self.deleted.append(transaction_id)
        return self.delete_found

    def fetch_changes(self, since, cursor=None, limit=None):
        self.fetch_calls.append((since, cursor, limit))
        if not self.pages:
            return SyncPage(transactions=[], last_sync=self.clock(), has_more=False)
        page = self.pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page
