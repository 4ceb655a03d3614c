"""Transaction model for the offline-first local store."""
import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import relationship

from sprout_sync.database import Base
from sprout_sync.timeutils import utcnow


class SyncStatus(str, enum.Enum):
    SYNCED = "SYNCED"
    PENDING = "PENDING"
    SYNCING = "SYNCING"
    FAILED = "FAILED"
    CONFLICT = "CONFLICT"


class TransactionType(str, enum.Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class ConflictResolution(str, enum.Enum):
    KEEP_LOCAL = "keep_local"
    KEEP_REMOTE = "keep_remote"
    MERGE = "merge"


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


# Fields a user (or a remote edit) may change; everything else is sync metadata
USER_EDITABLE_FIELDS = (
    "amount",
    "currency",
    "category",
    "subcategory",
    "merchant",
    "description",
    "date",
    "type",
    "payment_method",
    "receipt_url",
    "tags",
    "notes",
    "is_recurring",
    "recurring_frequency",
    "attachments",
)

LOCATION_FIELDS = (
    "latitude",
    "longitude",
    "address",
    "city",
    "state",
    "country",
    "postal_code",
)


class TransactionLocation(Base):
    """Where a transaction happened. Owned by exactly one transaction."""

    __tablename__ = "transaction_locations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    transaction_id = Column(
        String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    latitude = Column(Float)
    longitude = Column(Float)
    address = Column(String(255))
    city = Column(String(100))
    state = Column(String(100))
    country = Column(String(100))
    postal_code = Column(String(20))

    def to_dict(self) -> dict:
        return {field: getattr(self, field) for field in LOCATION_FIELDS}


class Transaction(Base):
    """A financial transaction plus the metadata that drives its sync."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_sync_status", "sync_status"),
        Index("ix_transactions_locally_modified_at", "locally_modified_at"),
        Index("ix_transactions_user_date", "user_id", "date"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(128), nullable=False)

    # Financial fields
    amount = Column(Numeric(18, 2), nullable=False)  # Signed: negative = outflow
    currency = Column(String(3), nullable=False, default="USD")
    category = Column(String(100), nullable=False)
    subcategory = Column(String(100))
    merchant = Column(String(255))
    description = Column(Text)
    date = Column(DateTime, nullable=False)
    type = Column(
        Enum(TransactionType, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        default=TransactionType.EXPENSE,
    )
    payment_method = Column(String(50))
    receipt_url = Column(String(1024))
    tags = Column(JSON, nullable=False, default=list)
    notes = Column(Text)

    # Recurrence
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurring_frequency = Column(String(50))
    attachments = Column(JSON, nullable=False, default=list)

    # Sync metadata
    sync_status = Column(
        Enum(SyncStatus, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        default=SyncStatus.PENDING,
    )
    last_synced_at = Column(DateTime)
    locally_modified_at = Column(DateTime, nullable=False, default=utcnow)
    remote_version = Column(Integer, nullable=False, default=0)
    conflict_resolution = Column(
        Enum(ConflictResolution, values_callable=_enum_values, native_enum=False, length=20)
    )
    conflict_payload = Column(JSON)  # Unapplied remote version while in CONFLICT
    failure_count = Column(Integer, nullable=False, default=0)  # Consecutive rejections
    last_error = Column(Text)

    # Offline support
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    location = relationship(
        "TransactionLocation",
        uselist=False,
        lazy="joined",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.sync_status} v{self.remote_version}>"

    @property
    def never_synced(self) -> bool:
        return self.last_synced_at is None and not self.remote_version

    def location_dict(self) -> dict | None:
        return self.location.to_dict() if self.location is not None else None

    def set_location(self, data: dict | None) -> None:
        """Replace the owned location; ``None`` removes it."""
        if data is None:
            self.location = None
            return
        if self.location is None:
            self.location = TransactionLocation()
        for field in LOCATION_FIELDS:
            setattr(self.location, field, data.get(field))

    def user_fields(self) -> dict:
        fields = {field: getattr(self, field) for field in USER_EDITABLE_FIELDS}
        fields["tags"] = list(self.tags or [])
        fields["attachments"] = list(self.attachments or [])
        fields["location"] = self.location_dict()
        return fields

    def assign(self, fields: dict) -> None:
        """Set user-editable fields (and ``location``) from a mapping."""
        for key, value in fields.items():
            if key == "location":
                self.set_location(value)
            elif key in ("tags", "attachments"):
                setattr(self, key, list(value or []))
            else:
                setattr(self, key, value)

    def copy_from(self, other: "Transaction") -> None:
        """Overwrite every column and the location with ``other``'s values."""
        for attr in sa_inspect(Transaction).column_attrs:
            value = getattr(other, attr.key)
            if isinstance(value, list):
                value = list(value)
            setattr(self, attr.key, value)
        self.set_location(other.location_dict())
