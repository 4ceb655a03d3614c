"""Error taxonomy for the sync client.

One exception class per failure kind, each carrying its message. Remote
failures say whether retrying on a later run can succeed.
"""


class SyncError(Exception):
    """Base class for sync client errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class LocalStoreError(SyncError):
    """The on-device store failed; fatal to the current run."""


class TransactionNotFoundError(SyncError):
    """No visible transaction with the given id."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class ConflictStateError(SyncError):
    """A conflict action was requested for a record that is not in conflict."""


class RemoteError(SyncError):
    """A call to the sync API did not succeed."""

    retryable = True


class NetworkError(RemoteError):
    """The API could not be reached."""


class RemoteTimeoutError(NetworkError):
    """The API did not answer in time."""


class ServerError(RemoteError):
    """The API answered with a transient error status (5xx, 408, 429)."""

    def __init__(self, message: str, status_code: int):
        self.status_code = status_code
        super().__init__(message)


class RejectedError(RemoteError):
    """The API refused the request (4xx); retrying the same payload won't help."""

    retryable = False

    def __init__(self, message: str, status_code: int, error_code: str | None = None):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class AuthenticationError(RemoteError):
    """Credentials are missing, expired or refused."""

    retryable = False


class InvalidResponseError(RemoteError):
    """The API answered with a body that does not match the sync contract."""


class SyncRunFailedError(SyncError):
    """A sync run kept failing after all scheduler attempts."""

    def __init__(self, attempts: int, last_error: Exception):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Sync failed after {attempts} attempts: {last_error}")
