import asyncio
import secrets
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from pymongo import ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from gigcalc.core.core import Service
from gigcalc.core.modules.session.models import AuthToken, Session
from gigcalc.errors import SessionExpiredError, SessionNotFoundError
from gigcalc.utils import now

logger = structlog.get_logger(__name__)

TOKEN_BYTES = 32  # 256 bits of entropy
MAX_ISSUE_ATTEMPTS = 3


class SessionService(Service):
    """Issues, validates, renews and revokes server-side sessions.

    Every state change is a single conditional statement against the sessions
    collection, so concurrent requests on the same token need no extra locking:

    - an expired session is deleted only while it is still expired,
    - renewal only matches unexpired sessions and uses $max so expires_at never moves back,
    - revocation is an unconditional delete.
    """

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("sessions")
        self._sweeper: asyncio.Task[None] | None = None

    async def on_start(self) -> None:
        """Create indexes and start the periodic sweeper."""
        await self._collection.create_index([("auth_token", 1)], unique=True)
        await self._collection.create_index([("account_id", 1)])
        # MongoDB removes documents once expires_at has passed; sweep() covers the gap between its runs
        await self._collection.create_index([("expires_at", 1)], expireAfterSeconds=0)

        interval = self.core.config.session_sweep_interval_seconds
        if interval > 0:
            self._sweeper = asyncio.create_task(self._sweep_periodically(interval))

    async def on_stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            except Exception:
                # Shutdown of the remaining services must go on
                logger.exception("session_sweeper_crashed")
            self._sweeper = None

    async def issue(self, account_id: UUID, remember: bool = False) -> Session:
        """Create a session for the account and return it, token included."""
        config = self.core.config
        ttl_seconds = config.session_remember_ttl_seconds if remember else config.session_ttl_seconds

        for _ in range(MAX_ISSUE_ATTEMPTS):
            issued_at = now()
            session = Session(
                account_id=account_id,
                auth_token=AuthToken(secrets.token_urlsafe(TOKEN_BYTES)),
                ttl_seconds=ttl_seconds,
                issued_at=issued_at,
                expires_at=issued_at + timedelta(seconds=ttl_seconds),
                last_touched_at=issued_at,
            )
            try:
                await self._collection.insert_one(session.to_mongo())
            except DuplicateKeyError:
                logger.warning("session_token_collision", account_id=str(account_id))
                continue
            logger.info("session_issued", session_id=str(session.id), account_id=str(account_id), ttl_seconds=ttl_seconds)
            return session

        raise RuntimeError("Could not allocate a unique session token")

    async def validate(self, auth_token: AuthToken) -> Session:
        """Return the live session for a token.

        Raises SessionNotFoundError for unknown or revoked tokens. An expired
        session is deleted on the spot and SessionExpiredError is raised.
        """
        session = Session.from_mongo(await self._collection.find_one({"auth_token": auth_token}))
        if session is None:
            logger.debug("session_not_found")
            raise SessionNotFoundError

        current = now()
        if session.is_expired(current):
            await self._collection.delete_one({"_id": session.id, "expires_at": {"$lt": current}})
            logger.info("session_expired", session_id=str(session.id), account_id=str(session.account_id))
            raise SessionExpiredError
        return session

    async def touch(self, auth_token: AuthToken) -> Session:
        """Extend a live session by its TTL from now."""
        session = await self.validate(auth_token)
        return await self._extend(session, now())

    async def renew_if_due(self, session: Session) -> Session | None:
        """Apply the configured renewal policy to a freshly validated session.

        Returns the renewed session, or None when no renewal was due.
        """
        fraction = self.core.config.session_renew_fraction
        if fraction <= 0:
            return None

        current = now()
        if fraction < 1 and session.remaining(current).total_seconds() >= fraction * session.ttl_seconds:
            return None
        return await self._extend(session, current)

    async def revoke(self, auth_token: AuthToken) -> None:
        """Delete the session for a token. Unknown tokens are ignored."""
        result = await self._collection.delete_one({"auth_token": auth_token})
        if result.deleted_count:
            logger.info("session_revoked")

    async def sweep(self) -> int:
        """Delete every session that is expired at the time of the delete."""
        result = await self._collection.delete_many({"expires_at": {"$lt": now()}})
        if result.deleted_count:
            logger.info("sessions_swept", count=result.deleted_count)
        return result.deleted_count

    async def _extend(self, session: Session, current: datetime) -> Session:
        document = await self._collection.find_one_and_update(
            {"_id": session.id, "expires_at": {"$gte": current}},
            {
                "$max": {"expires_at": current + timedelta(seconds=session.ttl_seconds)},
                "$set": {"last_touched_at": current},
            },
            return_document=ReturnDocument.AFTER,
        )
        renewed = Session.from_mongo(document)
        if renewed is None:
            # Revoked or expired between validation and renewal
            raise SessionNotFoundError
        logger.debug("session_renewed", session_id=str(session.id))
        return renewed

    async def _sweep_periodically(self, interval: int) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except PyMongoError:
                logger.exception("session_sweep_failed")
