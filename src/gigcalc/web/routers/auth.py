"""Sign-in, sign-out and session status endpoints."""

import secrets
from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from gigcalc.config import Config
from gigcalc.core.modules.access.models import AuthContext
from gigcalc.core.modules.account.models import AccountView
from gigcalc.errors import AuthenticationError, ExchangeFailedError, InvalidCredentialError
from gigcalc.web.cookies import clear_session_cookie, set_session_cookie
from gigcalc.web.deps import AppDep, ConfigDep, SessionTokenDep
from gigcalc.web.error_handlers import TRANSIENT_ERRORS
from gigcalc.web.openapi import ErrorResponse

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["auth"])

OAUTH_STATE_KEY = "oauth_state"
REMEMBER_KEY = "remember"


class TokenSignInRequest(BaseModel):
    """Sign-in with an ID token obtained by the provider's popup flow."""

    credential: str = Field(..., min_length=1, description="ID token issued by the identity provider")
    remember: bool = Field(False, description="Keep the session for the long-lived TTL")


class AuthStatusResponse(BaseModel):
    """Whether the caller holds a valid session, and for whom."""

    authenticated: bool = Field(..., description="True when the session cookie is valid")
    user: AccountView | None = Field(None, description="Signed-in account, if any")

    @classmethod
    def from_auth(cls, auth: AuthContext | None) -> "AuthStatusResponse":
        if auth is None:
            return cls(authenticated=False)
        return cls(authenticated=True, user=AccountView.from_domain(auth.account))


class LogoutResponse(BaseModel):
    success: bool = True


def _redirect_uri(config: Config) -> str:
    return f"{config.public_url.rstrip('/')}/auth/callback"


def _frontend_redirect(config: Config, **params: str) -> RedirectResponse:
    """Redirect the browser back to the frontend with a status marker, never a token."""
    return RedirectResponse(f"{config.frontend_url}?{urlencode(params)}", status_code=303)


@router.get(
    "/auth/login",
    summary="Start sign-in",
    description="Redirect the browser to the identity provider's consent page.",
    operation_id="login",
    status_code=307,
    responses={307: {"description": "Redirect to the identity provider"}},
)
async def login(request: Request, app: AppDep, config: ConfigDep, remember: bool = False) -> RedirectResponse:
    state = secrets.token_urlsafe(32)
    request.session[OAUTH_STATE_KEY] = state
    request.session[REMEMBER_KEY] = remember
    return RedirectResponse(app.build_login_url(_redirect_uri(config), state), status_code=307)


@router.get(
    "/auth/callback",
    summary="Complete sign-in",
    description=(
        "Identity provider redirect target. Exchanges the authorization code, opens a session and "
        "redirects to the frontend with `auth=success` or `error=<code>`."
    ),
    operation_id="authCallback",
    status_code=303,
    responses={303: {"description": "Redirect to the frontend"}},
)
async def callback(
    request: Request,
    app: AppDep,
    config: ConfigDep,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    expected_state = request.session.pop(OAUTH_STATE_KEY, None)
    remember = bool(request.session.pop(REMEMBER_KEY, False))

    if error:
        logger.info("sign_in_cancelled", error=error)
        return _frontend_redirect(config, error="access_denied")
    if not code or not state or not expected_state or not secrets.compare_digest(state, expected_state):
        logger.warning("sign_in_state_mismatch")
        return _frontend_redirect(config, error="invalid_state")

    try:
        auth = await app.sign_in_with_code(code, _redirect_uri(config), remember=remember)
    except ExchangeFailedError as e:
        logger.warning("sign_in_failed", reason="exchange_failed", detail=e.detail)
        return _frontend_redirect(config, error="exchange_failed")
    except InvalidCredentialError as e:
        logger.warning("sign_in_failed", reason="invalid_credential", detail=e.detail)
        return _frontend_redirect(config, error="invalid_credential")
    except TRANSIENT_ERRORS as e:
        logger.warning("sign_in_failed", reason="unavailable", error=type(e).__name__)
        return _frontend_redirect(config, error="unavailable")

    response = _frontend_redirect(config, auth="success")
    set_session_cookie(response, config, auth.session)
    return response


@router.post(
    "/auth/token",
    summary="Sign in with an ID token",
    description="Verify an ID token from the provider's popup flow and open a session.",
    operation_id="signInWithToken",
    responses={
        200: {"description": "Signed in; session cookie set"},
        401: {"model": ErrorResponse, "description": "Credential rejected"},
        503: {"model": ErrorResponse, "description": "Identity provider unavailable"},
    },
)
async def sign_in_with_token(
    body: TokenSignInRequest, app: AppDep, config: ConfigDep, response: Response
) -> AuthStatusResponse:
    auth = await app.sign_in_with_id_token(body.credential, remember=body.remember)
    set_session_cookie(response, config, auth.session)
    return AuthStatusResponse.from_auth(auth)


@router.get(
    "/auth/status",
    summary="Session status",
    description="Report whether the caller is signed in. Never fails with 401.",
    operation_id="getAuthStatus",
)
async def auth_status(
    app: AppDep, config: ConfigDep, auth_token: SessionTokenDep, response: Response
) -> AuthStatusResponse:
    if auth_token is None:
        return AuthStatusResponse.from_auth(None)
    try:
        auth = await app.authenticate(auth_token)
    except AuthenticationError:
        clear_session_cookie(response, config)
        return AuthStatusResponse.from_auth(None)
    if auth.renewed:
        set_session_cookie(response, config, auth.session)
    return AuthStatusResponse.from_auth(auth)


@router.post(
    "/auth/logout",
    summary="End session",
    description="Revoke the current session and clear its cookie. Succeeds even without a session.",
    operation_id="logout",
)
async def logout(app: AppDep, config: ConfigDep, auth_token: SessionTokenDep, response: Response) -> LogoutResponse:
    await app.logout(auth_token)
    clear_session_cookie(response, config)
    return LogoutResponse()
