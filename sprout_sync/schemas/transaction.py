"""Transaction schemas: local input models and the sync API wire format."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from sprout_sync.models.transaction import Transaction, TransactionType
from sprout_sync.timeutils import as_utc, to_naive_utc


class CamelModel(BaseModel):
    """Base for JSON bodies exchanged with the sync API (camelCase keys)."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


def _naive_utc(value):
    if isinstance(value, datetime):
        return to_naive_utc(value)
    return value


class LocationPayload(CamelModel):
    """Location attached to a transaction."""

    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    postal_code: str | None = None


class TransactionCreate(BaseModel):
    """A new transaction entered on the device."""

    user_id: str = Field(..., min_length=1)
    amount: Decimal
    category: str = Field(..., min_length=1, max_length=100)
    currency: str = Field("USD", min_length=3, max_length=3)
    subcategory: str | None = None
    merchant: str | None = None
    description: str | None = None
    date: datetime | None = None  # Defaults to now
    type: TransactionType = TransactionType.EXPENSE
    payment_method: str | None = None
    receipt_url: str | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    location: LocationPayload | None = None
    is_recurring: bool = False
    recurring_frequency: str | None = None
    attachments: list[str] = Field(default_factory=list)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        return value.upper()

    @field_validator("date")
    @classmethod
    def normalize_date(cls, value):
        return _naive_utc(value)


class TransactionUpdate(BaseModel):
    """Partial edit of a local transaction. Only fields that are set apply."""

    amount: Decimal | None = None
    category: str | None = Field(None, min_length=1, max_length=100)
    currency: str | None = Field(None, min_length=3, max_length=3)
    subcategory: str | None = None
    merchant: str | None = None
    description: str | None = None
    date: datetime | None = None
    type: TransactionType | None = None
    payment_method: str | None = None
    receipt_url: str | None = None
    tags: list[str] | None = None
    notes: str | None = None
    location: LocationPayload | None = None
    is_recurring: bool | None = None
    recurring_frequency: str | None = None
    attachments: list[str] | None = None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value):
        return value.upper() if value else value

    @field_validator("date")
    @classmethod
    def normalize_date(cls, value):
        return _naive_utc(value)

    def changes(self) -> dict:
        """Explicitly set fields, ready for ``Transaction.assign``."""
        data = self.model_dump(exclude_unset=True)
        for required in ("amount", "category", "currency", "date", "type", "is_recurring"):
            if required in data and data[required] is None:
                raise ValueError(f"{required} cannot be cleared")
        return data


class TransactionPayload(CamelModel):
    """Full transaction body for ``POST /transactions`` and ``PUT /transactions/{id}``."""

    id: str
    user_id: str
    amount: Decimal
    currency: str
    category: str
    subcategory: str | None = None
    merchant: str | None = None
    description: str | None = None
    date: datetime
    type: TransactionType
    payment_method: str | None = None
    receipt_url: str | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    location: LocationPayload | None = None
    is_recurring: bool = False
    recurring_frequency: str | None = None
    attachments: list[str] = Field(default_factory=list)
    locally_modified_at: datetime
    remote_version: int = 0

    @classmethod
    def from_record(cls, record: Transaction) -> "TransactionPayload":
        location = record.location_dict()
        return cls(
            id=record.id,
            user_id=record.user_id,
            amount=record.amount,
            currency=record.currency,
            category=record.category,
            subcategory=record.subcategory,
            merchant=record.merchant,
            description=record.description,
            date=as_utc(record.date),
            type=record.type,
            payment_method=record.payment_method,
            receipt_url=record.receipt_url,
            tags=list(record.tags or []),
            notes=record.notes,
            location=LocationPayload(**location) if location else None,
            is_recurring=record.is_recurring,
            recurring_frequency=record.recurring_frequency,
            attachments=list(record.attachments or []),
            locally_modified_at=as_utc(record.locally_modified_at),
            remote_version=record.remote_version or 0,
        )

    @field_serializer("amount", when_used="json")
    def serialize_amount(self, value: Decimal):
        # The API expects a JSON number, not pydantic's default decimal string
        return float(value)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class SyncAck(CamelModel):
    """Server acknowledgment of a create or update."""

    id: str | None = None
    version: int
    updated_at: datetime

    @field_validator("updated_at")
    @classmethod
    def normalize_updated_at(cls, value):
        return _naive_utc(value)


class RemoteTransaction(CamelModel):
    """A transaction as delivered by ``GET /sync``.

    Tolerates missing optional fields and unknown extra keys.
    """

    id: str
    user_id: str
    amount: Decimal
    category: str
    description: str | None = None
    date: datetime
    updated_at: datetime
    created_at: datetime | None = None
    version: int | None = None
    type: TransactionType = TransactionType.EXPENSE
    currency: str = "USD"
    subcategory: str | None = None
    merchant: str | None = None
    payment_method: str | None = None
    receipt_url: str | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    location: LocationPayload | None = None
    is_recurring: bool = False
    recurring_frequency: str | None = None
    attachments: list[str] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        if isinstance(value, TransactionType):
            return value
        lowered = str(value or "").lower()
        if lowered == "income":
            return TransactionType.INCOME
        if lowered == "transfer":
            return TransactionType.TRANSFER
        return TransactionType.EXPENSE

    @field_validator("currency", mode="before")
    @classmethod
    def default_currency(cls, value):
        return (value or "USD").upper()

    @field_validator("tags", "attachments", mode="before")
    @classmethod
    def default_list(cls, value):
        return value or []

    @field_validator("is_recurring", mode="before")
    @classmethod
    def default_is_recurring(cls, value):
        return bool(value) if value is not None else False

    @field_validator("date", "updated_at", "created_at")
    @classmethod
    def normalize_timestamps(cls, value):
        return _naive_utc(value)

    def user_fields(self) -> dict:
        """Values for the user-editable columns of a local record."""
        return {
            "amount": self.amount,
            "currency": self.currency,
            "category": self.category,
            "subcategory": self.subcategory,
            "merchant": self.merchant,
            "description": self.description,
            "date": self.date,
            "type": self.type,
            "payment_method": self.payment_method,
            "receipt_url": self.receipt_url,
            "tags": list(self.tags),
            "notes": self.notes,
            "is_recurring": self.is_recurring,
            "recurring_frequency": self.recurring_frequency,
            "attachments": list(self.attachments),
            "location": self.location.model_dump() if self.location else None,
        }


class SyncPage(CamelModel):
    """One page of ``GET /sync``."""

    transactions: list[RemoteTransaction] = Field(default_factory=list)
    last_sync: datetime
    has_more: bool = False
    next_cursor: str | None = None

    @field_validator("last_sync")
    @classmethod
    def normalize_last_sync(cls, value):
        return _naive_utc(value)


class ReceiptUploadResponse(CamelModel):
    """Response of ``POST /transactions/{id}/receipt``."""

    receipt_url: str
    uploaded_at: datetime


class ErrorResponse(BaseModel):
    """Error body returned by the sync API."""

    error: str
    message: str
    timestamp: str | None = None
