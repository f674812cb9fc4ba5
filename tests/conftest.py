"""Shared pytest fixtures.

MongoDB is replaced by an in-memory collection double that implements the
subset of the async PyMongo API the services use, including unique indexes.
Google is replaced by an httpx MockTransport serving the token, userinfo and
key set endpoints.
"""

import copy
import json
import operator
import time
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

from gigcalc.app import App
from gigcalc.config import Config
from gigcalc.core.core import Core
from gigcalc.core.modules.identity.service import GOOGLE_JWKS_URL, GOOGLE_TOKEN_URL, GOOGLE_USERINFO_URL
from gigcalc.web.server import create_fastapi_app

CLIENT_ID = "test-client-id.apps.googleusercontent.com"
SIGNING_KID = "test-key"

_MISSING = object()
_COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "$lt": operator.lt,
    "$lte": operator.le,
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$ne": operator.ne,
}


def _matches(document: dict[str, Any], query: dict[str, Any]) -> bool:
    for key, condition in query.items():
        value = document.get(key, _MISSING)
        if isinstance(condition, dict) and condition and all(op.startswith("$") for op in condition):
            if value is _MISSING:
                return False
            if not all(_COMPARISONS[op](value, operand) for op, operand in condition.items()):
                return False
        elif value is _MISSING or value != condition:
            return False
    return True


def _apply_update(document: dict[str, Any], update: dict[str, Any]) -> None:
    for op, fields in update.items():
        for key, value in fields.items():
            if op == "$set" and "." in key:
                parent, child = key.split(".", 1)
                document.setdefault(parent, {})[child] = value
            elif op == "$set":
                document[key] = value
            elif op == "$max":
                if key not in document or value > document[key]:
                    document[key] = value
            elif op == "$inc":
                document[key] = document.get(key, 0) + value
            elif op != "$setOnInsert":
                raise NotImplementedError(op)


class FakeCursor:
    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self._documents = documents

    def sort(self, key: str, direction: int = 1) -> "FakeCursor":
        self._documents.sort(key=lambda d: d[key], reverse=direction == -1)
        return self

    def skip(self, count: int) -> "FakeCursor":
        self._documents = self._documents[count:]
        return self

    def limit(self, count: int) -> "FakeCursor":
        if count:
            self._documents = self._documents[:count]
        return self

    def __aiter__(self) -> "FakeCursor":
        self._iter = iter(self._documents)
        return self

    async def __anext__(self) -> dict[str, Any]:
        try:
            return copy.deepcopy(next(self._iter))
        except StopIteration:
            raise StopAsyncIteration from None


class FakeCollection:
    def __init__(self, name: str) -> None:
        self.name = name
        self.documents: list[dict[str, Any]] = []
        self.unique_keys: list[tuple[str, ...]] = [("_id",)]
        self.indexes: list[dict[str, Any]] = []

    async def create_index(self, keys: list[tuple[str, int]], unique: bool = False, **kwargs: Any) -> str:
        fields = tuple(field for field, _ in keys)
        if unique:
            self.unique_keys.append(fields)
        self.indexes.append({"keys": fields, "unique": unique, **kwargs})
        return "_".join(fields)

    def _check_unique(self, candidate: dict[str, Any], ignore: dict[str, Any] | None = None) -> None:
        for fields in self.unique_keys:
            key = tuple(candidate.get(f) for f in fields)
            for existing in self.documents:
                if existing is ignore:
                    continue
                if tuple(existing.get(f) for f in fields) == key:
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {fields}")

    def _first(self, query: dict[str, Any], sort: list[tuple[str, int]] | None = None) -> dict[str, Any] | None:
        matching = [d for d in self.documents if _matches(d, query)]
        for key, direction in reversed(sort or []):
            matching.sort(key=lambda d: d[key], reverse=direction == -1)
        return matching[0] if matching else None

    async def insert_one(self, document: dict[str, Any]) -> SimpleNamespace:
        document = copy.deepcopy(document)
        self._check_unique(document)
        self.documents.append(document)
        return SimpleNamespace(inserted_id=document["_id"])

    async def find_one(self, query: dict[str, Any], sort: list[tuple[str, int]] | None = None) -> dict[str, Any] | None:
        return copy.deepcopy(self._first(query, sort))

    def find(self, query: dict[str, Any] | None = None) -> FakeCursor:
        return FakeCursor([d for d in self.documents if _matches(d, query or {})])

    async def count_documents(self, query: dict[str, Any]) -> int:
        return sum(1 for d in self.documents if _matches(d, query))

    async def find_one_and_update(
        self, query: dict[str, Any], update: dict[str, Any], upsert: bool = False, return_document: bool = False
    ) -> dict[str, Any] | None:
        existing = self._first(query)
        if existing is None:
            if not upsert:
                return None
            created = {k: copy.deepcopy(v) for k, v in query.items() if not isinstance(v, dict)}
            created.update(copy.deepcopy(update.get("$setOnInsert", {})))
            _apply_update(created, copy.deepcopy(update))
            self._check_unique(created)
            self.documents.append(created)
            return copy.deepcopy(created) if return_document else None

        updated = copy.deepcopy(existing)
        _apply_update(updated, copy.deepcopy(update))
        self._check_unique(updated, ignore=existing)
        before = copy.deepcopy(existing)
        existing.clear()
        existing.update(updated)
        return copy.deepcopy(existing) if return_document else before

    async def update_one(self, query: dict[str, Any], update: dict[str, Any]) -> SimpleNamespace:
        existing = self._first(query)
        if existing is None:
            return SimpleNamespace(matched_count=0, modified_count=0)
        _apply_update(existing, copy.deepcopy(update))
        return SimpleNamespace(matched_count=1, modified_count=1)

    async def delete_one(self, query: dict[str, Any]) -> SimpleNamespace:
        existing = self._first(query)
        if existing is None:
            return SimpleNamespace(deleted_count=0)
        self.documents.remove(existing)
        return SimpleNamespace(deleted_count=1)

    async def delete_many(self, query: dict[str, Any]) -> SimpleNamespace:
        doomed = [d for d in self.documents if _matches(d, query)]
        self.documents = [d for d in self.documents if not any(d is x for x in doomed)]
        return SimpleNamespace(deleted_count=len(doomed))

    async def aggregate(self, pipeline: list[dict[str, Any]]) -> FakeCursor:
        documents = [copy.deepcopy(d) for d in self.documents]
        for stage in pipeline:
            if "$match" in stage:
                documents = [d for d in documents if _matches(d, stage["$match"])]
            elif "$group" in stage:
                documents = _group(documents, stage["$group"]) if documents else []
            else:
                raise NotImplementedError(stage)
        return FakeCursor(documents)


def _group(documents: list[dict[str, Any]], spec: dict[str, Any]) -> list[dict[str, Any]]:
    """Single-group $group supporting $sum, $avg and $max."""

    def values(expression: Any) -> list[Any]:
        if isinstance(expression, str) and expression.startswith("$"):
            return [d[expression[1:]] for d in documents if d.get(expression[1:]) is not None]
        return [expression for _ in documents]

    result: dict[str, Any] = {"_id": spec["_id"]}
    for name, accumulator in spec.items():
        if name == "_id":
            continue
        ((op, expression),) = accumulator.items()
        found = values(expression)
        if op == "$sum":
            result[name] = sum(found)
        elif op == "$avg":
            result[name] = sum(found) / len(found) if found else None
        elif op == "$max":
            result[name] = max(found) if found else None
        else:
            raise NotImplementedError(op)
    return [result]


class FakeDatabase:
    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}
        self.command_error: Exception | None = None

    async def command(self, name: str) -> dict[str, Any]:
        if self.command_error is not None:
            raise self.command_error
        if name != "ping":
            raise NotImplementedError(name)
        return {"ok": 1.0}

    def get_collection(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def __getitem__(self, name: str) -> FakeCollection:
        return self.get_collection(name)


class FakeClock:
    """Replacement for gigcalc.utils.now in the session service."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeGoogle:
    """Google OAuth endpoints backed by dictionaries.

    Codes are single use, like the real token endpoint.
    """

    def __init__(self, private_key: rsa.RSAPrivateKey, jwks: dict[str, Any]) -> None:
        self.private_key = private_key
        self.jwks = jwks
        self.codes: dict[str, dict[str, Any]] = {}
        self.used_codes: set[str] = set()
        self.token_requests = 0
        self.jwks_requests = 0
        self.fail_with: httpx.Response | Exception | None = None

    def add_code(self, code: str, sub: str, email: str, name: str = "Test Driver", **claims: Any) -> None:
        self.codes[code] = {"sub": sub, "email": email, "name": name, "picture": f"https://pics.test/{sub}.png", **claims}

    def id_token(self, sub: str, email: str, name: str = "Test Driver", kid: str = SIGNING_KID, **overrides: Any) -> str:
        issued = int(time.time())
        claims = {
            "iss": "https://accounts.google.com",
            "aud": CLIENT_ID,
            "sub": sub,
            "email": email,
            "email_verified": True,
            "name": name,
            "picture": f"https://pics.test/{sub}.png",
            "iat": issued,
            "exp": issued + 3600,
            **overrides,
        }
        return jwt.encode(claims, self.private_key, algorithm="RS256", headers={"kid": kid})

    def handler(self, request: httpx.Request) -> httpx.Response:
        if isinstance(self.fail_with, Exception):
            raise self.fail_with
        if self.fail_with is not None:
            return self.fail_with

        url = str(request.url.copy_with(query=None))
        if url == GOOGLE_TOKEN_URL:
            self.token_requests += 1
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            code = form.get("code", "")
            if code not in self.codes or code in self.used_codes:
                return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Bad Request"})
            self.used_codes.add(code)
            return httpx.Response(200, json={"access_token": f"access-{code}", "token_type": "Bearer"})
        if url == GOOGLE_USERINFO_URL:
            code = request.headers.get("Authorization", "").removeprefix("Bearer access-")
            if code not in self.codes:
                return httpx.Response(401, json={"error": "invalid_token"})
            return httpx.Response(200, json=self.codes[code])
        if url == GOOGLE_JWKS_URL:
            self.jwks_requests += 1
            return httpx.Response(200, json=self.jwks)
        return httpx.Response(404)


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def fake_google(signing_key: rsa.RSAPrivateKey) -> FakeGoogle:
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(signing_key.public_key()))
    jwk.update({"kid": SIGNING_KID, "alg": "RS256", "use": "sig"})
    return FakeGoogle(signing_key, {"keys": [jwk]})


@pytest.fixture
def config() -> Config:
    return Config(
        _env_file=None,
        database_url="mongodb://localhost:27017/gigcalc_test",
        session_secret_key="test-session-secret",
        frontend_url="http://frontend.test/",
        public_url="http://testserver",
        google_client_id=CLIENT_ID,
        google_client_secret="test-client-secret",
        session_cookie_secure=False,
        session_sweep_interval_seconds=0,
    )


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Freeze session time; advance it explicitly."""
    fake = FakeClock(datetime.now(UTC))
    monkeypatch.setattr("gigcalc.core.modules.session.service.now", fake)
    monkeypatch.setattr("gigcalc.web.cookies.now", fake)
    return fake


@pytest_asyncio.fixture
async def core(config: Config, database: FakeDatabase, fake_google: FakeGoogle):
    core = Core(config, database)  # type: ignore[arg-type]
    core.services.identity._client = httpx.AsyncClient(transport=httpx.MockTransport(fake_google.handler))
    await core.on_start()
    yield core
    await core.on_stop()


@pytest.fixture
def app_instance(config: Config, database: FakeDatabase, fake_google: FakeGoogle) -> App:
    app = App(config, database)  # type: ignore[arg-type]
    app._core.services.identity._client = httpx.AsyncClient(transport=httpx.MockTransport(fake_google.handler))
    return app


@pytest.fixture
def client(app_instance: App, config: Config) -> Iterator[TestClient]:
    with TestClient(create_fastapi_app(app_instance, config)) as test_client:
        yield test_client


@pytest.fixture
def sign_in(client: TestClient, fake_google: FakeGoogle, config: Config) -> Callable[..., str]:
    """Run the redirect sign-in flow and return the issued session token.

    The client's cookie jar is cleared afterwards so tests pass the token explicitly.
    """

    def _sign_in(sub: str = "g-123", email: str = "a@x.com", remember: bool = False) -> str:
        code = f"code-{sub}-{len(fake_google.codes)}"
        fake_google.add_code(code, sub=sub, email=email)
        response = client.get("/auth/login", params={"remember": remember}, follow_redirects=False)
        state = parse_qs(urlparse(response.headers["location"]).query)["state"][0]
        response = client.get("/auth/callback", params={"code": code, "state": state}, follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"] == "http://frontend.test/?auth=success"
        token = response.cookies[config.session_cookie_name]
        client.cookies.clear()
        return token

    return _sign_in


@pytest.fixture
def session_cookie(config: Config) -> Callable[[str], dict[str, str]]:
    """Build a Cookie header carrying a session token."""

    def _headers(token: str) -> dict[str, str]:
        return {"Cookie": f"{config.session_cookie_name}={token}"}

    return _headers
