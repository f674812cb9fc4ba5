from gigcalc.core.core import Service
from gigcalc.core.modules.access.models import AuthContext
from gigcalc.core.modules.session.models import AuthToken
from gigcalc.errors import AuthenticationError, NotFoundError


class AccessService(Service):
    async def authenticate(self, auth_token: AuthToken) -> AuthContext:
        """Validate the token, apply the renewal policy and load the owning account.

        Missing, revoked and expired sessions all raise AuthenticationError.
        """
        session = await self.core.services.session.validate(auth_token)
        renewed = await self.core.services.session.renew_if_due(session)
        try:
            account = await self.core.services.account.get_account(session.account_id)
        except NotFoundError as e:
            # Account removed out of band; the session is useless now
            await self.core.services.session.revoke(auth_token)
            raise AuthenticationError from e
        return AuthContext(account=account, session=renewed or session, renewed=renewed is not None)
