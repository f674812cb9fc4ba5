from typing import Any
from uuid import UUID

import structlog
from pymongo import ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from gigcalc.core.core import Service
from gigcalc.core.modules.account.models import Account, Preferences
from gigcalc.core.modules.identity.models import VerifiedIdentity
from gigcalc.errors import NotFoundError, ValidationError
from gigcalc.utils import now

logger = structlog.get_logger(__name__)


class AccountService(Service):
    """Maps verified external identities to internal accounts."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("accounts")

    async def on_start(self) -> None:
        """Create indexes on startup."""
        # One account per provider subject; the upsert relies on this to stay race free
        await self._collection.create_index([("provider", 1), ("provider_user_id", 1)], unique=True)

    async def resolve_account(self, identity: VerifiedIdentity) -> Account:
        """Create or update the account for a verified identity in a single atomic upsert.

        Profile fields are overwritten from the identity every time. Preferences and
        the creation timestamp are written only when the account is first created.
        When two first sign-ins race, the loser hits the unique index and retries,
        which then matches the winner's document and runs as an update.
        """
        timestamp = now()
        candidate = Account(
            provider=identity.provider,
            provider_user_id=identity.provider_user_id,
            created_at=timestamp,
            last_authenticated_at=timestamp,
        )
        query = {"provider": identity.provider, "provider_user_id": identity.provider_user_id}
        update = {
            "$set": {
                "email": identity.email,
                "display_name": identity.display_name,
                "picture_url": identity.picture_url,
                "last_authenticated_at": timestamp,
            },
            "$setOnInsert": {
                "_id": candidate.id,
                "preferences": candidate.preferences.model_dump(),
                "created_at": timestamp,
            },
        }

        for attempt in range(2):
            try:
                document = await self._collection.find_one_and_update(
                    query, update, upsert=True, return_document=ReturnDocument.AFTER
                )
                break
            except DuplicateKeyError:
                if attempt > 0:
                    raise
                logger.debug("account_upsert_race", provider=identity.provider)

        account = Account.model_validate(document)
        if account.id == candidate.id:
            logger.info("account_created", account_id=str(account.id), provider=identity.provider)
        else:
            logger.debug("account_updated", account_id=str(account.id))
        return account

    async def get_account(self, account_id: UUID) -> Account:
        """Get account by ID."""
        account = Account.from_mongo(await self._collection.find_one({"_id": account_id}))
        if account is None:
            raise NotFoundError(f"Account '{account_id}' not found")
        return account

    async def update_preferences(self, account_id: UUID, changes: dict[str, Any]) -> Account:
        """Apply a partial preferences update and return the updated account.

        Only the changed fields are written, so concurrent updates to different
        preferences do not overwrite each other.
        """
        try:
            validated = Preferences.model_validate(changes)
        except ValueError as e:
            raise ValidationError(f"Invalid preferences: {e}") from e
        fields = {f"preferences.{name}": getattr(validated, name) for name in changes if name in Preferences.model_fields}
        if not fields:
            return await self.get_account(account_id)

        document = await self._collection.find_one_and_update(
            {"_id": account_id},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        updated = Account.from_mongo(document)
        if updated is None:
            raise NotFoundError(f"Account '{account_id}' not found")
        return updated
