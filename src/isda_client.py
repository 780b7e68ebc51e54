"""
Async client for the ISDA Soil API.

The client owns one authenticated HTTP session:
- Logs in with username/password (form-encoded POST to /login)
- Caches the returned bearer token and refreshes it one minute before expiry
- On a 401 from a data endpoint, drops the cached token, logs in again and
  retries the request exactly once

Endpoints used:
    POST {base}/login                       -> {"access_token": ..., "token_type": ...}
    GET  {base}/isdasoil/v2/soilproperty    -> {"property": {...}}
    GET  {base}/isdasoil/v2/layers          -> {"property": {...}}

The response payloads are passed through unchanged; the TypedDicts below only
document their shape.
"""

import asyncio
import logging
import time
from typing import Any, Callable, TypedDict

import httpx

from src.auth import SessionToken, decode_token_expiry
from src.errors import (
    APIError,
    AuthenticationError,
    NetworkError,
    ProtocolError,
    RequestTimeoutError,
    ValidationError,
)
from src.validation import DEPTHS, is_valid_depth, is_valid_latitude, is_valid_longitude

logger = logging.getLogger("isda-soil-mcp.client")

USER_AGENT = "ISDA-Soil-MCP-Server/1.0.0"
REQUEST_TIMEOUT_SECONDS = 30.0

LOGIN_PATH = "/login"
SOIL_PROPERTY_PATH = "/isdasoil/v2/soilproperty"
LAYERS_PATH = "/isdasoil/v2/layers"

# First attempt plus one retry after re-authenticating on a 401.
MAX_ATTEMPTS = 2


class MeasuredValue(TypedDict):
    unit: str | None
    type: str
    value: float


class DepthBand(TypedDict):
    value: str
    unit: str


class UncertaintyInterval(TypedDict):
    confidence_interval: str
    lower_bound: float
    upper_bound: float


class SoilPropertyValue(TypedDict, total=False):
    value: MeasuredValue
    depth: DepthBand
    uncertainty: list[UncertaintyInterval]


class LayerDepths(TypedDict):
    unit: str
    values: list[str]


class LayerMetadata(TypedDict):
    description: str
    theme: str
    unit: str | None
    uncertainty: bool
    value: dict[str, str]
    depths: LayerDepths


class SoilPropertyResponse(TypedDict):
    property: dict[str, list[SoilPropertyValue]]


class LayersResponse(TypedDict):
    property: dict[str, LayerMetadata]


class ISDASoilClient:
    """
    Client for the ISDA Soil API.

    One instance holds a single cached token shared by every call made through
    it. The check-then-refresh sequence runs under an asyncio.Lock so concurrent
    calls trigger at most one login.

    Args:
        base_url: API root, e.g. "https://api.isda-africa.com" (a trailing
                  slash is stripped)
        username: ISDA account username
        password: ISDA account password
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests pass an httpx.MockTransport)
        clock: Returns the current time in seconds since the epoch
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._username = username
        self._password = password
        self._clock = clock
        self._token: SessionToken | None = None
        self._token_lock = asyncio.Lock()
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            transport=transport,
        )

    @property
    def token(self) -> SessionToken | None:
        """The cached session token, if any."""
        return self._token

    @property
    def is_closed(self) -> bool:
        """True once aclose() has released the connection pool."""
        return self._http.is_closed

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ISDASoilClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    async def ensure_token(self) -> SessionToken:
        """
        Return a token that is valid for at least another minute.

        Reuses the cached token when it is fresh, otherwise performs a login
        exchange and caches the result. The cache is only written after the
        exchange fully succeeds.

        Raises:
            AuthenticationError: The login endpoint returned a non-success status
            ProtocolError: The login response had no access_token
            RequestTimeoutError: The login request timed out
            NetworkError: Any other transport failure
        """
        async with self._token_lock:
            if self._token is not None and self._token.is_fresh(self._clock()):
                return self._token

            self._token = await self._login()
            return self._token

    def invalidate_token(self, token: SessionToken | None = None) -> None:
        """
        Drop the cached token so the next call logs in again.

        When `token` is given, the cache is only cleared if it still holds that
        token; a token refreshed by a concurrent call is kept.
        """
        if token is None or self._token == token:
            self._token = None

    async def _login(self) -> SessionToken:
        logger.info(
            "Authenticating with ISDA Soil API",
            extra={"log_data": {"base_url": self.base_url}},
        )

        response = await self._send(
            "POST",
            LOGIN_PATH,
            label="Authentication",
            failure="Failed to authenticate with ISDA Soil API",
            data={"username": self._username, "password": self._password},
        )

        if not response.is_success:
            logger.warning(
                "ISDA Soil API login rejected",
                extra={"log_data": {"status_code": response.status_code}},
            )
            raise AuthenticationError(response.status_code, response.text or response.reason_phrase)

        payload = self._parse_json(response)
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token:
            raise ProtocolError("Invalid API response: missing access_token")

        now = self._clock()
        token = SessionToken(
            access_token=access_token,
            expires_at=decode_token_expiry(access_token, now),
        )
        logger.info(
            "Obtained ISDA Soil API token",
            extra={"log_data": {"expires_in_seconds": round(token.expires_at - now)}},
        )
        return token

    # ------------------------------------------------------------------
    # Data endpoints
    # ------------------------------------------------------------------

    async def get_soil_property_data(
        self, lat: float, lon: float, depth: str | None = None
    ) -> SoilPropertyResponse:
        """
        Get soil property data for a location.

        Args:
            lat: Latitude, strictly between -90 and 90
            lon: Longitude, strictly between -180 and 180
            depth: "0-20", "20-50", or None for both depths

        Returns:
            The API response, {"property": {name: [measurement, ...]}}

        Raises:
            ValidationError: Bad coordinate or depth (no request is made)
            APIError, ProtocolError, RequestTimeoutError, NetworkError,
            AuthenticationError: see module docstring
        """
        if not is_valid_latitude(lat):
            raise ValidationError(
                f"Invalid latitude: {lat}. Must be between -90 and 90 (exclusive)."
            )
        if not is_valid_longitude(lon):
            raise ValidationError(
                f"Invalid longitude: {lon}. Must be between -180 and 180 (exclusive)."
            )
        if not is_valid_depth(depth):
            allowed = " or ".join(f'"{d}"' for d in DEPTHS)
            raise ValidationError(f"Invalid depth: {depth}. Must be {allowed}.")

        params: dict[str, Any] = {"lat": lat, "lon": lon}
        if depth:
            params["depth"] = depth

        return await self._get_property_payload(SOIL_PROPERTY_PATH, params, "Soil property data")

    async def get_available_layers(self) -> LayersResponse:
        """
        Get metadata about the soil properties the API can return.

        Returns:
            The API response, {"property": {name: {description, unit, ...}}}
        """
        return await self._get_property_payload(LAYERS_PATH, None, "Layers")

    async def _get_property_payload(
        self, path: str, params: dict[str, Any] | None, label: str
    ) -> Any:
        """
        GET an authenticated endpoint whose body is {"property": {...}}.

        A 401 invalidates the token used for the request and the request is
        sent once more with a fresh token. The second response is final, even
        if it is another 401.
        """
        for attempt in range(1, MAX_ATTEMPTS + 1):
            token = await self.ensure_token()
            response = await self._send(
                "GET",
                path,
                label=label,
                failure=f"Failed to fetch {label.lower()}",
                params=params,
                headers={"Authorization": token.authorization_header},
            )

            if response.status_code == 401 and attempt < MAX_ATTEMPTS:
                logger.info(
                    "Token rejected, re-authenticating",
                    extra={"log_data": {"path": path, "attempt": attempt}},
                )
                self.invalidate_token(token)
                continue
            break

        if not response.is_success:
            logger.warning(
                "ISDA Soil API request failed",
                extra={"log_data": {"path": path, "status_code": response.status_code}},
            )
            raise APIError(response.status_code, response.text or response.reason_phrase)

        payload = self._parse_json(response)
        if not isinstance(payload, dict) or payload.get("property") is None:
            raise ProtocolError("Invalid API response format: expected object with property field")

        return payload

    async def _send(
        self, method: str, path: str, label: str, failure: str, **kwargs: Any
    ) -> httpx.Response:
        """
        Send one request, bounded by `self.timeout` from start to last byte.

        httpx's own timeout applies per phase (connect, each read, ...), so the
        whole exchange is also wrapped in asyncio.wait_for, which cancels it
        once the deadline passes.
        """
        try:
            return await asyncio.wait_for(
                self._http.request(method, path, **kwargs),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RequestTimeoutError(
                f"{label} request timed out after {self.timeout:g} seconds",
                timeout=self.timeout,
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{failure}: {e}") from e

    @staticmethod
    def _parse_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError("Invalid API response: body is not valid JSON") from e
