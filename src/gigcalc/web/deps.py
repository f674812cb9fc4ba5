from typing import Annotated, cast

from fastapi import Depends, Request, Response

from gigcalc.app import App
from gigcalc.config import Config
from gigcalc.core.modules.access.models import AuthContext
from gigcalc.core.modules.session.models import AuthToken
from gigcalc.errors import AuthenticationError
from gigcalc.web.cookies import set_session_cookie


async def get_app(request: Request) -> App:
    return cast(App, request.app.state.app)


async def get_config(request: Request) -> Config:
    return cast(Config, request.app.state.config)


async def get_session_token(
    request: Request, config: Annotated[Config, Depends(get_config)]
) -> AuthToken | None:
    """Read the session token from its cookie. The cookie is the only accepted transport."""
    value = request.cookies.get(config.session_cookie_name)
    return AuthToken(value) if value else None


async def get_auth_context(
    response: Response,
    app: Annotated[App, Depends(get_app)],
    config: Annotated[Config, Depends(get_config)],
    auth_token: Annotated[AuthToken | None, Depends(get_session_token)],
) -> AuthContext:
    """Authenticate the request, refreshing the cookie when the session was renewed."""
    if auth_token is None:
        raise AuthenticationError
    auth = await app.authenticate(auth_token)
    if auth.renewed:
        set_session_cookie(response, config, auth.session)
    return auth


# Type aliases for dependencies
AppDep = Annotated[App, Depends(get_app)]
ConfigDep = Annotated[Config, Depends(get_config)]
SessionTokenDep = Annotated[AuthToken | None, Depends(get_session_token)]
AuthDep = Annotated[AuthContext, Depends(get_auth_context)]
