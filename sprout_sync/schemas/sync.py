"""Sync run schemas."""
from datetime import datetime

from pydantic import BaseModel, Field

MAX_REPORTED_ERRORS = 10


class SyncReport(BaseModel):
    """Outcome of one sync run."""

    started_at: datetime
    finished_at: datetime | None = None

    # Upload phase
    uploaded: int = 0
    deleted: int = 0
    failed: int = 0

    # Download phase
    pages: int = 0
    downloaded: int = 0
    conflicts: int = 0
    stale: int = 0

    # Cleanup phase
    purged: int = 0

    errors: list[str] = Field(default_factory=list)
    total_errors: int = 0

    def add_error(self, message: str) -> None:
        self.total_errors += 1
        if len(self.errors) < MAX_REPORTED_ERRORS:
            self.errors.append(message)
