"""SQLAlchemy models package."""
from sprout_sync.models.sync_state import LAST_SYNC_KEY, SyncCheckpoint
from sprout_sync.models.transaction import (
    ConflictResolution,
    SyncStatus,
    Transaction,
    TransactionLocation,
    TransactionType,
)

__all__ = [
    "ConflictResolution",
    "LAST_SYNC_KEY",
    "SyncCheckpoint",
    "SyncStatus",
    "Transaction",
    "TransactionLocation",
    "TransactionType",
]
