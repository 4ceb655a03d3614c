"""HTTP client for the Sprout sync API.

Maps sync-engine intents to API calls and API failures to typed exceptions.
It never retries: the scheduler retries runs and records retry on later runs.
"""
from datetime import datetime
import logging

import httpx
from pydantic import ValidationError

from sprout_sync.exceptions import (
    AuthenticationError,
    InvalidResponseError,
    NetworkError,
    RejectedError,
    RemoteTimeoutError,
    ServerError,
)
from sprout_sync.schemas.transaction import (
    ErrorResponse,
    ReceiptUploadResponse,
    SyncAck,
    SyncPage,
    TransactionPayload,
)
from sprout_sync.services.credentials import CredentialProvider
from sprout_sync.timeutils import isoformat_z

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {408, 429}


class RemoteClient:
    """Sync API client authenticated with the current bearer token."""

    def __init__(
        self,
        base_url: str,
        credentials: CredentialProvider,
        http_client: httpx.Client | None = None,
        timeout: float = 15.0,
    ):
        self._credentials = credentials
        self._client = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        token = self._credentials.get_access_token()
        if not token:
            raise AuthenticationError("No access token available")

        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        try:
            response = self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise RemoteTimeoutError(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        if response.is_success:
            return response

        error_code, message = self._parse_error(response)
        status_code = response.status_code
        detail = f"{method} {path} returned {status_code}: {message}"

        if status_code in (401, 403):
            raise AuthenticationError(detail)
        if status_code >= 500 or status_code in TRANSIENT_STATUS_CODES:
            raise ServerError(detail, status_code)
        raise RejectedError(detail, status_code, error_code)

    @staticmethod
    def _parse_error(response: httpx.Response) -> tuple[str | None, str]:
        try:
            body = ErrorResponse.model_validate(response.json())
            return body.error, body.message
        except (ValueError, ValidationError):
            return None, response.text[:200] or response.reason_phrase

    @staticmethod
    def _parse(model, response: httpx.Response):
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise InvalidResponseError(
                f"Unexpected response from {response.request.method} {response.request.url.path}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def create_transaction(self, payload: TransactionPayload) -> SyncAck:
        response = self._request("POST", "/transactions", json=payload.to_json())
        return self._parse(SyncAck, response)

    def update_transaction(self, transaction_id: str, payload: TransactionPayload) -> SyncAck:
        response = self._request("PUT", f"/transactions/{transaction_id}", json=payload.to_json())
        return self._parse(SyncAck, response)

    def delete_transaction(self, transaction_id: str) -> bool:
        """Delete on the server. Returns False when the server had no such record."""
        try:
            self._request("DELETE", f"/transactions/{transaction_id}")
        except RejectedError as exc:
            if exc.status_code == 404:
                logger.debug(f"Transaction {transaction_id} was already absent on the server")
                return False
            raise
        return True

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def fetch_changes(
        self,
        since: datetime,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> SyncPage:
        """Fetch one page of records updated after ``since``."""
        params = {"since": isoformat_z(since)}
        if cursor:
            params["cursor"] = cursor
        if limit:
            params["limit"] = limit
        response = self._request("GET", "/sync", params=params)
        return self._parse(SyncPage, response)

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    def upload_receipt(
        self,
        transaction_id: str,
        content: bytes,
        filename: str = "receipt.jpg",
        content_type: str = "image/jpeg",
    ) -> ReceiptUploadResponse:
        response = self._request(
            "POST",
            f"/transactions/{transaction_id}/receipt",
            files={"receipt": (filename, content, content_type)},
        )
        return self._parse(ReceiptUploadResponse, response)
