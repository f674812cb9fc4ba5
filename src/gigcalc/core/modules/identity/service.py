"""Verification of Google sign-in credentials.

Two credential shapes are accepted:

- an ID token (JWT) handed to the browser by the Google sign-in popup, verified
  locally against Google's published signing keys;
- an authorization code from the redirect flow, exchanged once at the token
  endpoint and resolved through the userinfo endpoint.

Nothing here caches credentials. Only the provider's public signing keys are
kept between calls.
"""

import time
from typing import Any
from urllib.parse import urlencode

import httpx
import jwt
import structlog
from jwt.exceptions import PyJWKSetError
from pymongo.asynchronous.database import AsyncDatabase

from gigcalc.core.core import Service
from gigcalc.core.modules.identity.models import VerifiedIdentity
from gigcalc.errors import ExchangeFailedError, InvalidCredentialError, TransientError

logger = structlog.get_logger(__name__)

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = frozenset({"accounts.google.com", "https://accounts.google.com"})

JWKS_CACHE_SECONDS = 60 * 60
CLOCK_SKEW_SECONDS = 30


class IdentityService(Service):
    """Identity verifier backed by Google OAuth 2.0 / OpenID Connect."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._client: httpx.AsyncClient | None = None
        self._jwks: jwt.PyJWKSet | None = None
        self._jwks_fetched_at = 0.0

    async def on_start(self) -> None:
        """Open the HTTP client used for provider calls."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.core.config.identity_timeout_seconds)

    async def on_stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def provider(self) -> str:
        return self.core.config.identity_provider

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Identity service not started")
        return self._client

    def build_authorize_url(self, redirect_uri: str, state: str) -> str:
        """Build the provider URL the browser is sent to for the redirect flow."""
        params = {
            "client_id": self.core.config.google_client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "prompt": "select_account",
        }
        return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> VerifiedIdentity:
        """Exchange an authorization code and fetch the signed-in user's profile.

        The code is posted exactly once. A rejected code raises ExchangeFailedError;
        it is never retried because the provider invalidates codes after first use.
        """
        config = self.core.config
        payload = {
            "code": code,
            "client_id": config.google_client_id,
            "client_secret": config.google_client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        response = await self._request("POST", GOOGLE_TOKEN_URL, data=payload, headers={"Accept": "application/json"})
        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.warning("code_exchange_failed", provider=self.provider, status=response.status_code, error=detail)
            raise ExchangeFailedError(detail)

        access_token = _json_object(response).get("access_token")
        if not access_token:
            logger.warning("code_exchange_failed", provider=self.provider, error="no access_token in response")
            raise ExchangeFailedError("no access_token in response")

        response = await self._request("GET", GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.warning("userinfo_failed", provider=self.provider, status=response.status_code, error=detail)
            raise ExchangeFailedError(detail)

        return self._identity_from_claims(_json_object(response))

    async def verify_id_token(self, credential: str) -> VerifiedIdentity:
        """Verify a provider-issued ID token and return the identity it asserts."""
        try:
            header = jwt.get_unverified_header(credential)
        except jwt.InvalidTokenError as e:
            raise InvalidCredentialError(f"malformed token: {e}") from e

        kid = header.get("kid")
        if not kid:
            raise InvalidCredentialError("token has no key id")
        signing_key = await self._get_signing_key(str(kid))

        try:
            claims = jwt.decode(
                credential,
                key=signing_key.key,
                algorithms=["RS256"],
                audience=self.core.config.google_client_id,
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "iat", "iss", "aud", "sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise InvalidCredentialError("token expired") from e
        except jwt.InvalidTokenError as e:
            raise InvalidCredentialError(str(e)) from e

        if claims.get("iss") not in GOOGLE_ISSUERS:
            raise InvalidCredentialError(f"unexpected issuer: {claims.get('iss')}")
        return self._identity_from_claims(claims)

    def _identity_from_claims(self, claims: dict[str, Any]) -> VerifiedIdentity:
        subject = claims.get("sub")
        if not subject:
            raise InvalidCredentialError("identity has no subject")
        # Providers may omit email_verified; only an explicit false is rejected
        if claims.get("email_verified") is False:
            raise InvalidCredentialError("email not verified")
        return VerifiedIdentity(
            provider=self.provider,
            provider_user_id=str(subject),
            email=claims.get("email"),
            display_name=claims.get("name"),
            picture_url=claims.get("picture"),
        )

    async def _get_signing_key(self, kid: str) -> jwt.PyJWK:
        """Find the provider key for `kid`, refetching the key set once when it is stale or unknown."""
        jwks = self._jwks
        if jwks is None or time.monotonic() - self._jwks_fetched_at > JWKS_CACHE_SECONDS:
            jwks = await self._refresh_jwks()
        try:
            return jwks[kid]
        except KeyError:
            pass

        # Keys rotate; a kid we have not seen may be newer than our copy
        jwks = await self._refresh_jwks()
        try:
            return jwks[kid]
        except KeyError as e:
            raise InvalidCredentialError(f"unknown signing key: {kid}") from e

    async def _refresh_jwks(self) -> jwt.PyJWKSet:
        response = await self._request("GET", GOOGLE_JWKS_URL)
        if response.status_code >= 400:
            logger.error("jwks_fetch_failed", status=response.status_code)
            raise TransientError
        try:
            jwks = jwt.PyJWKSet.from_dict(_json_object(response))
        except PyJWKSetError as e:
            logger.exception("jwks_invalid")
            raise TransientError from e
        self._jwks = jwks
        self._jwks_fetched_at = time.monotonic()
        logger.debug("jwks_refreshed", keys=len(jwks.keys))
        return jwks

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one request to the provider, mapping network trouble and 5xx to TransientError."""
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("identity_provider_timeout", url=url)
            raise TransientError from e
        except httpx.TransportError as e:
            logger.warning("identity_provider_unreachable", url=url, error=str(e))
            raise TransientError from e
        if response.status_code >= 500:
            logger.warning("identity_provider_error", url=url, status=response.status_code)
            raise TransientError
        return response


def _json_object(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise ExchangeFailedError("provider returned invalid JSON") from e
    if not isinstance(data, dict):
        raise ExchangeFailedError("provider returned unexpected payload")
    return data


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"status {response.status_code}"
    if isinstance(data, dict):
        return str(data.get("error_description") or data.get("error") or f"status {response.status_code}")
    return f"status {response.status_code}"
