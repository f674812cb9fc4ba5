from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from gigcalc.config import Config
from gigcalc.core.core import Core
from gigcalc.core.modules.access.models import AuthContext
from gigcalc.core.modules.account.models import AccountDetailsView
from gigcalc.core.modules.calculation.models import Calculation, CalculationCreate
from gigcalc.core.modules.identity.models import VerifiedIdentity
from gigcalc.core.modules.session.models import AuthToken
from gigcalc.core.pagination import PaginationResult

logger = structlog.get_logger(__name__)


class App:
    """Facade for all application operations.

    Sign-in runs identity verification, account resolution and session issue in
    that order. Every other operation takes the AuthContext resolved for the
    current request and scopes its work to that account.
    """

    def __init__(self, config: Config, database: AsyncDatabase[dict[str, Any]] | None = None) -> None:
        self._core = Core(config, database)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Application lifespan management - delegates to Core."""
        async with self._core.lifespan():
            yield

    async def check_database(self) -> bool:
        """Whether the database is reachable right now."""
        return await self._core.ping_database()

    # === Authentication ===
    async def authenticate(self, auth_token: AuthToken) -> AuthContext:
        """Resolve a session token to the request's AuthContext (renewing it when due)."""
        return await self._core.services.access.authenticate(auth_token)

    def build_login_url(self, redirect_uri: str, state: str) -> str:
        """URL of the identity provider's consent page for the redirect flow."""
        return self._core.services.identity.build_authorize_url(redirect_uri, state)

    async def sign_in_with_code(self, code: str, redirect_uri: str, remember: bool = False) -> AuthContext:
        """Complete the redirect flow: exchange the code once, then open a session."""
        identity = await self._core.services.identity.exchange_code(code, redirect_uri)
        return await self._start_session(identity, remember)

    async def sign_in_with_id_token(self, credential: str, remember: bool = False) -> AuthContext:
        """Complete the popup flow: verify the provider's ID token, then open a session."""
        identity = await self._core.services.identity.verify_id_token(credential)
        return await self._start_session(identity, remember)

    async def logout(self, auth_token: AuthToken | None) -> None:
        """Revoke the session if there is one. Safe to call repeatedly."""
        if auth_token:
            await self._core.services.session.revoke(auth_token)

    async def sweep_sessions(self) -> int:
        """Purge expired sessions and return how many were removed."""
        return await self._core.services.session.sweep()

    # === Current user ===
    async def get_current_user(self, auth: AuthContext) -> AccountDetailsView:
        """Get current account with preferences and calculation statistics."""
        stats = await self._core.services.calculation.get_stats(auth.account.id)
        return AccountDetailsView.build(auth.account, stats)

    async def update_preferences(self, auth: AuthContext, changes: dict[str, Any]) -> AccountDetailsView:
        """Partially update the current account's preferences."""
        account = await self._core.services.account.update_preferences(auth.account.id, changes)
        stats = await self._core.services.calculation.get_stats(account.id)
        return AccountDetailsView.build(account, stats)

    # === Calculations ===
    async def create_calculation(self, auth: AuthContext, data: CalculationCreate) -> Calculation:
        return await self._core.services.calculation.create_calculation(auth.account.id, data)

    async def list_calculations(
        self, auth: AuthContext, limit: int = 50, offset: int = 0, favorite_only: bool = False
    ) -> PaginationResult[Calculation]:
        return await self._core.services.calculation.list_calculations(auth.account.id, limit, offset, favorite_only)

    async def get_calculation(self, auth: AuthContext, calculation_id: UUID) -> Calculation:
        return await self._core.services.calculation.get_calculation(auth.account.id, calculation_id)

    async def set_calculation_favorite(self, auth: AuthContext, calculation_id: UUID, is_favorite: bool) -> Calculation:
        return await self._core.services.calculation.set_favorite(auth.account.id, calculation_id, is_favorite)

    async def update_calculation_notes(self, auth: AuthContext, calculation_id: UUID, notes: str | None) -> Calculation:
        return await self._core.services.calculation.update_notes(auth.account.id, calculation_id, notes)

    async def delete_calculation(self, auth: AuthContext, calculation_id: UUID) -> None:
        await self._core.services.calculation.delete_calculation(auth.account.id, calculation_id)

    # === Private helpers ===
    async def _start_session(self, identity: VerifiedIdentity, remember: bool) -> AuthContext:
        account = await self._core.services.account.resolve_account(identity)
        session = await self._core.services.session.issue(account.id, remember=remember)
        logger.info("signed_in", account_id=str(account.id), remember=remember)
        return AuthContext(account=account, session=session)
