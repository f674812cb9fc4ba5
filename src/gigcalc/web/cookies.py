"""Session cookie handling. The session token travels only in this cookie, never in a URL."""

from fastapi import Response

from gigcalc.config import Config
from gigcalc.core.modules.session.models import Session
from gigcalc.utils import now


def set_session_cookie(response: Response, config: Config, session: Session) -> None:
    response.set_cookie(
        key=config.session_cookie_name,
        value=session.auth_token,
        max_age=max(int(session.remaining(now()).total_seconds()), 0),
        httponly=True,
        secure=config.session_cookie_secure,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response, config: Config) -> None:
    response.delete_cookie(
        key=config.session_cookie_name,
        httponly=True,
        secure=config.session_cookie_secure,
        samesite="lax",
        path="/",
    )
