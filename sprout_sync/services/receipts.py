"""Receipt attachments."""
import logging
import mimetypes
from pathlib import Path

from sprout_sync.models.transaction import Transaction
from sprout_sync.schemas.transaction import TransactionUpdate
from sprout_sync.services.change_tracker import ChangeTracker
from sprout_sync.services.remote_client import RemoteClient

logger = logging.getLogger(__name__)


def attach_receipt(
    remote: RemoteClient,
    tracker: ChangeTracker,
    transaction_id: str,
    content: bytes,
    filename: str = "receipt.jpg",
    content_type: str | None = None,
) -> Transaction:
    """Upload a receipt image and record its URL on the transaction.

    The URL is stored as a local edit so it reaches the server with the next
    upload like any other change.
    """
    tracker.get_transaction(transaction_id)

    content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
    uploaded = remote.upload_receipt(transaction_id, content, filename, content_type)
    logger.info(f"Uploaded receipt for {transaction_id} ({len(content)} bytes)")

    return tracker.update_transaction(transaction_id, TransactionUpdate(receipt_url=uploaded.receipt_url))


def attach_receipt_file(
    remote: RemoteClient,
    tracker: ChangeTracker,
    transaction_id: str,
    path: Path,
) -> Transaction:
    path = Path(path)
    return attach_receipt(remote, tracker, transaction_id, path.read_bytes(), filename=path.name)
