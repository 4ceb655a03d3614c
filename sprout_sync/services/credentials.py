"""Credential providers for the sync API.

Token acquisition belongs to the auth layer; the sync client only reads the
current access token.
"""
from datetime import datetime
import json
import logging
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from sprout_sync.schemas.transaction import CamelModel
from sprout_sync.timeutils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    def get_access_token(self) -> str | None:
        """Current bearer token, or ``None`` when the user is signed out."""


class StaticCredentialProvider:
    """Fixed token, for embedding hosts that manage tokens themselves."""

    def __init__(self, access_token: str | None):
        self._access_token = access_token

    def get_access_token(self) -> str | None:
        return self._access_token or None


class StoredTokens(CamelModel):
    """Token bundle persisted by the auth layer."""

    access_token: str
    id_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None


class TokenFileCredentialProvider:
    """Reads the token bundle JSON written by the auth layer on sign-in."""

    def __init__(self, path: Path, clock=utcnow):
        self._path = Path(path)
        self._clock = clock

    def load_tokens(self) -> StoredTokens | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return StoredTokens.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable token store {self._path}: {e}")
            return None

    def get_access_token(self) -> str | None:
        tokens = self.load_tokens()
        if tokens is None or not tokens.access_token:
            return None
        if tokens.expires_at is not None and to_naive_utc(tokens.expires_at) <= self._clock():
            logger.debug("Stored access token has expired")
            return None
        return tokens.access_token
