from datetime import timedelta
from decimal import Decimal

import pytest

from helpers import T0, FakeClock, build_store, remote_tx
from sprout_sync.exceptions import ConflictStateError, TransactionNotFoundError
from sprout_sync.models.transaction import ConflictResolution, SyncStatus, TransactionType
from sprout_sync.schemas.transaction import TransactionCreate, TransactionUpdate
from sprout_sync.services.change_tracker import ChangeTracker


def _build_tracker():
    store = build_store()
    clock = FakeClock()
    notifications = []
    tracker = ChangeTracker(store, clock=clock, on_change=lambda: notifications.append(clock()))
    return tracker, store, clock, notifications


def _draft(**overrides) -> TransactionCreate:
    fields = dict(user_id="user-1", amount=Decimal("-4.75"), category="Coffee", merchant="Local Cafe")
    fields.update(overrides)
    return TransactionCreate(**fields)


def _put_in_conflict(store, transaction_id, remote):
    def _flag(row):
        row.sync_status = SyncStatus.CONFLICT
        row.conflict_payload = remote.model_dump(mode="json", by_alias=True)
        return row

    store.modify(transaction_id, _flag)


def test_create_queues_new_record_for_upload():
    tracker, store, clock, notifications = _build_tracker()

    record = tracker.create_transaction(_draft(currency="eur", tags=["morning"]))
    stored = store.get(record.id)

    assert stored.sync_status == SyncStatus.PENDING
    assert stored.locally_modified_at == T0
    assert stored.date == T0
    assert stored.currency == "EUR"
    assert stored.type == TransactionType.EXPENSE
    assert stored.tags == ["morning"]
    assert stored.never_synced
    assert notifications == [T0]


def test_update_marks_synced_record_pending_and_clears_rejections():
    tracker, store, clock, _ = _build_tracker()
    tracker.apply_remote(remote_tx("t1", T0))
    store.modify("t1", lambda row: setattr(row, "failure_count", 2) or row)

    clock.advance(60)
    updated = tracker.update_transaction("t1", TransactionUpdate(merchant="Bakery"))

    assert updated.merchant == "Bakery"
    assert updated.sync_status == SyncStatus.PENDING
    assert updated.failure_count == 0
    assert updated.locally_modified_at == T0 + timedelta(seconds=60)


def test_repeated_edits_within_one_clock_tick_still_advance_modification_time():
    tracker, store, clock, _ = _build_tracker()
    record = tracker.create_transaction(_draft())

    first = tracker.update_transaction(record.id, TransactionUpdate(notes="one"))
    second = tracker.update_transaction(record.id, TransactionUpdate(notes="two"))

    assert first.locally_modified_at > T0
    assert second.locally_modified_at > first.locally_modified_at


def test_update_only_touches_fields_that_were_set():
    tracker, store, clock, _ = _build_tracker()
    record = tracker.create_transaction(_draft(notes="keep me"))

    tracker.update_transaction(record.id, TransactionUpdate(amount=Decimal("-5.00")))
    stored = store.get(record.id)

    assert stored.amount == Decimal("-5.00")
    assert stored.notes == "keep me"
    assert stored.merchant == "Local Cafe"


def test_update_cannot_clear_required_fields():
    tracker, _, _, _ = _build_tracker()
    record = tracker.create_transaction(_draft())

    with pytest.raises(ValueError, match="category cannot be cleared"):
        tracker.update_transaction(record.id, TransactionUpdate(category=None))


def test_update_unknown_or_deleted_record_raises_not_found():
    tracker, _, _, _ = _build_tracker()
    record = tracker.create_transaction(_draft())
    tracker.delete_transaction(record.id)

    with pytest.raises(TransactionNotFoundError):
        tracker.update_transaction("missing", TransactionUpdate(notes="x"))
    with pytest.raises(TransactionNotFoundError):
        tracker.update_transaction(record.id, TransactionUpdate(notes="x"))


def test_delete_soft_deletes_and_hides_record():
    tracker, store, clock, notifications = _build_tracker()
    record = tracker.create_transaction(_draft())

    clock.advance(5)
    tracker.delete_transaction(record.id)

    assert tracker.list_transactions() == []
    with pytest.raises(TransactionNotFoundError):
        tracker.get_transaction(record.id)

    stored = store.get(record.id)
    assert stored.is_deleted is True
    assert stored.sync_status == SyncStatus.PENDING
    assert len(notifications) == 2


def test_apply_remote_stores_server_version_as_synced():
    tracker, store, clock, notifications = _build_tracker()
    remote = remote_tx(
        "t1",
        T0 - timedelta(hours=1),
        version=4,
        tags=["groceries"],
        location={"city": "Austin"},
    )

    tracker.apply_remote(remote)
    stored = store.get("t1")

    assert stored.sync_status == SyncStatus.SYNCED
    assert stored.remote_version == 4
    assert stored.last_synced_at == T0
    assert stored.locally_modified_at == remote.updated_at
    assert stored.location_dict()["city"] == "Austin"
    assert notifications == []


def test_edit_of_conflicted_record_stays_in_conflict():
    tracker, store, clock, _ = _build_tracker()
    record = tracker.create_transaction(_draft())
    _put_in_conflict(store, record.id, remote_tx(record.id, T0, version=2))

    tracker.update_transaction(record.id, TransactionUpdate(notes="still deciding"))

    assert store.get(record.id).sync_status == SyncStatus.CONFLICT


def test_keep_remote_adopts_server_version():
    tracker, store, clock, _ = _build_tracker()
    record = tracker.create_transaction(_draft())
    _put_in_conflict(store, record.id, remote_tx(record.id, T0, version=3, merchant="Server Cafe"))

    resolved = tracker.resolve_conflict(record.id, ConflictResolution.KEEP_REMOTE)

    assert resolved.sync_status == SyncStatus.SYNCED
    assert resolved.merchant == "Server Cafe"
    assert resolved.remote_version == 3
    assert resolved.conflict_payload is None


def test_keep_local_requeues_local_version_above_server_version():
    tracker, store, clock, _ = _build_tracker()
    record = tracker.create_transaction(_draft())
    _put_in_conflict(store, record.id, remote_tx(record.id, T0, version=3, merchant="Server Cafe"))

    clock.advance(30)
    resolved = tracker.resolve_conflict(record.id, "keep_local")

    assert resolved.sync_status == SyncStatus.PENDING
    assert resolved.merchant == "Local Cafe"
    assert resolved.remote_version == 3
    assert resolved.locally_modified_at == T0 + timedelta(seconds=30)
    assert not resolved.never_synced


def test_merge_prefers_local_values_and_unions_tags():
    tracker, store, clock, _ = _build_tracker()
    record = tracker.create_transaction(_draft(tags=["coffee"]))
    remote = remote_tx(
        record.id,
        T0,
        version=2,
        merchant="Server Cafe",
        notes="from the web app",
        tags=["food", "coffee"],
    )
    _put_in_conflict(store, record.id, remote)

    resolved = tracker.resolve_conflict(
        record.id, ConflictResolution.MERGE, TransactionUpdate(category="Dining")
    )

    assert resolved.sync_status == SyncStatus.PENDING
    assert resolved.merchant == "Local Cafe"
    assert resolved.notes == "from the web app"
    assert resolved.tags == ["coffee", "food"]
    assert resolved.category == "Dining"
    assert resolved.remote_version == 2


def test_resolving_non_conflicted_record_is_rejected():
    tracker, _, _, _ = _build_tracker()
    record = tracker.create_transaction(_draft())

    with pytest.raises(ConflictStateError):
        tracker.resolve_conflict(record.id, ConflictResolution.KEEP_LOCAL)
    with pytest.raises(ConflictStateError):
        tracker.choose_resolution(record.id, ConflictResolution.KEEP_LOCAL)


def test_chosen_resolutions_are_applied_in_bulk():
    tracker, store, clock, _ = _build_tracker()
    chosen = tracker.create_transaction(_draft())
    undecided = tracker.create_transaction(_draft(merchant="Other"))
    _put_in_conflict(store, chosen.id, remote_tx(chosen.id, T0, version=2, merchant="Server"))
    _put_in_conflict(store, undecided.id, remote_tx(undecided.id, T0, version=2))

    tracker.choose_resolution(chosen.id, ConflictResolution.KEEP_REMOTE)

    assert tracker.apply_chosen_resolutions() == 1
    assert store.get(chosen.id).sync_status == SyncStatus.SYNCED
    assert store.get(chosen.id).merchant == "Server"
    assert store.get(undecided.id).sync_status == SyncStatus.CONFLICT


def test_retry_parked_resets_rejection_counter():
    tracker, store, clock, notifications = _build_tracker()
    record = tracker.create_transaction(_draft())

    def _park(row):
        row.sync_status = SyncStatus.FAILED
        row.failure_count = 3
        return row

    store.modify(record.id, _park)

    assert tracker.retry_parked() == 1
    assert store.get(record.id).failure_count == 0
    assert len(notifications) == 2
