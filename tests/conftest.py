"""
Shared test fixtures for the ISDA Soil MCP server test suite.

Key fixtures:
- make_token: A factory that mints JWTs shaped like the ones /login returns
- clock: A controllable clock injected into the client, so token expiry can be
  tested without sleeping
- fake_isda: An in-memory stand-in for the ISDA Soil API, served through
  httpx.MockTransport; it records every request it receives
- isda_client: An ISDASoilClient wired to fake_isda

Testing approach:
- test_auth.py: Unit tests for the token expiry decoding and freshness rules
- test_isda_client.py: The client against fake_isda (validation, token reuse,
  refresh, 401 retry, error mapping)
- test_tools.py: The tool layer on its own, then the full MCP server driven
  in-memory through httpx.ASGITransport
"""

import datetime
import itertools
import time
from typing import Any

import httpx
import jwt
import pytest

from src.isda_client import LAYERS_PATH, LOGIN_PATH, SOIL_PROPERTY_PATH, ISDASoilClient

TEST_BASE_URL = "https://isda.test"
TEST_USERNAME = "farmer@example.com"
TEST_PASSWORD = "s3cret"

# Lifetime of the tokens issued by the fake login endpoint.
TOKEN_LIFETIME_SECONDS = 3600

# Key the fake API signs its tokens with; the client never verifies it.
UPSTREAM_SECRET = "upstream-signing-secret-for-tests-only"

SOIL_PAYLOAD: dict[str, Any] = {
    "property": {
        "ph": [
            {
                "value": {"unit": None, "type": "float", "value": 6.2},
                "depth": {"value": "0-20", "unit": "cm"},
                "uncertainty": [
                    {"confidence_interval": "50%", "lower_bound": 6.0, "upper_bound": 6.4},
                    {"confidence_interval": "90%", "lower_bound": 5.6, "upper_bound": 6.8},
                ],
            }
        ],
        "nitrogen_total": [
            {
                "value": {"unit": "g/kg", "type": "float", "value": 1.3},
                "depth": {"value": "0-20", "unit": "cm"},
            }
        ],
    }
}

LAYERS_PAYLOAD: dict[str, Any] = {
    "property": {
        "ph": {
            "description": "pH",
            "theme": "Chemical",
            "unit": None,
            "uncertainty": True,
            "value": {"type": "float"},
            "depths": {"unit": "cm", "values": ["0-20", "20-50"]},
        }
    }
}


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeISDAService:
    """
    In-memory ISDA Soil API.

    /login issues a new signed JWT on every call (expiring
    TOKEN_LIFETIME_SECONDS after the fake clock's current time). The data
    endpoints answer with queued responses first, then with the default
    payloads. Setting `failures[path]` makes that path raise a transport error.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.requests: list[httpx.Request] = []
        self.issued_tokens: list[str] = []
        self.opaque_tokens = False
        self.failures: dict[str, tuple[type[httpx.TransportError], str]] = {}
        self._queued: dict[str, list[httpx.Response]] = {}
        self._counter = itertools.count(1)

    # --- configuration ---

    def queue(self, path: str, status_code: int, json: Any = None, text: str | None = None) -> None:
        """Queue a one-off response for `path`."""
        if text is not None:
            response = httpx.Response(status_code, text=text)
        else:
            response = httpx.Response(status_code, json=json)
        self._queued.setdefault(path, []).append(response)

    def fail(self, path: str, error_type: type[httpx.TransportError], message: str) -> None:
        self.failures[path] = (error_type, message)

    # --- inspection ---

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @property
    def login_count(self) -> int:
        return len(self.requests_to(LOGIN_PATH))

    # --- transport handler ---

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in self.failures:
            error_type, message = self.failures[path]
            raise error_type(message, request=request)

        queued = self._queued.get(path)
        if queued:
            return queued.pop(0)

        if path == LOGIN_PATH and request.method == "POST":
            return httpx.Response(
                200, json={"access_token": self._issue_token(), "token_type": "bearer"}
            )

        if request.headers.get("authorization") not in {f"Bearer {t}" for t in self.issued_tokens}:
            return httpx.Response(401, json={"detail": "Could not validate credentials"})

        if path == SOIL_PROPERTY_PATH:
            return httpx.Response(200, json=SOIL_PAYLOAD)
        if path == LAYERS_PATH:
            return httpx.Response(200, json=LAYERS_PAYLOAD)

        return httpx.Response(404, json={"detail": "Not Found"})

    def _issue_token(self) -> str:
        n = next(self._counter)
        if self.opaque_tokens:
            token = f"opaque-token-{n}"
        else:
            token = jwt.encode(
                {
                    "sub": TEST_USERNAME,
                    "jti": str(n),
                    "exp": int(self.clock.now) + TOKEN_LIFETIME_SECONDS,
                },
                UPSTREAM_SECRET,
                algorithm="HS256",
            )
        self.issued_tokens.append(token)
        return token


# ---------------------------------------------------------------------------
# Token factory fixture
# ---------------------------------------------------------------------------
@pytest.fixture
def make_token():
    """
    Factory fixture to mint JWTs for testing expiry decoding.

    Usage in tests:
        def test_something(make_token):
            token = make_token(exp=1_900_000_000)
    """

    def _make_token(
        exp: Any = None,
        include_exp: bool = True,
        secret: str = UPSTREAM_SECRET,
        extra_claims: dict | None = None,
    ) -> str:
        payload: dict = {"sub": TEST_USERNAME}

        if include_exp:
            if exp is None:
                exp = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=1)
            payload["exp"] = exp

        if extra_claims:
            payload.update(extra_claims)

        return jwt.encode(payload, secret, algorithm="HS256")

    return _make_token


# ---------------------------------------------------------------------------
# Fake upstream and client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(now=float(int(time.time())))


@pytest.fixture
def fake_isda(clock) -> FakeISDAService:
    return FakeISDAService(clock)


@pytest.fixture
async def isda_client(fake_isda, clock):
    """An ISDASoilClient talking to fake_isda through httpx.MockTransport."""
    client = ISDASoilClient(
        base_url=TEST_BASE_URL + "/",
        username=TEST_USERNAME,
        password=TEST_PASSWORD,
        transport=httpx.MockTransport(fake_isda.handler),
        clock=clock,
    )
    yield client
    await client.aclose()
