"""Session management models."""

from datetime import datetime, timedelta
from typing import NewType
from uuid import UUID

from gigcalc.core.db import MongoModel

AuthToken = NewType("AuthToken", str)


class Session(MongoModel):
    """Server-side record binding an opaque auth token to one account.

    The token is only a lookup key; it carries no claims. Expiry is decided
    here from `expires_at`, never from anything the client sends.

    Indexed on auth_token - unique, account_id, expires_at (TTL).
    """

    account_id: UUID
    auth_token: str
    ttl_seconds: int  # Lifetime granted at issue and re-applied on every renewal
    issued_at: datetime
    expires_at: datetime
    last_touched_at: datetime

    def is_expired(self, at: datetime) -> bool:
        return at > self.expires_at

    def remaining(self, at: datetime) -> timedelta:
        return self.expires_at - at
