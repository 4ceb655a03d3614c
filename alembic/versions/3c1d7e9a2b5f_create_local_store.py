"""create local store

Revision ID: 3c1d7e9a2b5f
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3c1d7e9a2b5f"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SYNC_STATUSES = ("SYNCED", "PENDING", "SYNCING", "FAILED", "CONFLICT")
TRANSACTION_TYPES = ("income", "expense", "transfer")
CONFLICT_RESOLUTIONS = ("keep_local", "keep_remote", "merge")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("amount", sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("subcategory", sa.String(length=100), nullable=True),
        sa.Column("merchant", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("type", sa.Enum(*TRANSACTION_TYPES, native_enum=False, length=20), nullable=False),
        sa.Column("payment_method", sa.String(length=50), nullable=True),
        sa.Column("receipt_url", sa.String(length=1024), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_recurring", sa.Boolean(), nullable=False),
        sa.Column("recurring_frequency", sa.String(length=50), nullable=True),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("sync_status", sa.Enum(*SYNC_STATUSES, native_enum=False, length=20), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        sa.Column("locally_modified_at", sa.DateTime(), nullable=False),
        sa.Column("remote_version", sa.Integer(), nullable=False),
        sa.Column(
            "conflict_resolution",
            sa.Enum(*CONFLICT_RESOLUTIONS, native_enum=False, length=20),
            nullable=True,
        ),
        sa.Column("conflict_payload", sa.JSON(), nullable=True),
        sa.Column("failure_count", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.create_index("ix_transactions_sync_status", ["sync_status"], unique=False)
        batch_op.create_index("ix_transactions_locally_modified_at", ["locally_modified_at"], unique=False)
        batch_op.create_index("ix_transactions_user_date", ["user_id", "date"], unique=False)

    op.create_table(
        "transaction_locations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("transaction_id", sa.String(length=36), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("state", sa.String(length=100), nullable=True),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("postal_code", sa.String(length=20), nullable=True),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("transaction_locations", schema=None) as batch_op:
        batch_op.create_index(
            batch_op.f("ix_transaction_locations_transaction_id"), ["transaction_id"], unique=False
        )

    op.create_table(
        "sync_checkpoints",
        sa.Column("key", sa.String(length=50), nullable=False),
        sa.Column("value", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("sync_checkpoints")

    with op.batch_alter_table("transaction_locations", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_transaction_locations_transaction_id"))
    op.drop_table("transaction_locations")

    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.drop_index("ix_transactions_user_date")
        batch_op.drop_index("ix_transactions_locally_modified_at")
        batch_op.drop_index("ix_transactions_sync_status")
    op.drop_table("transactions")
