"""
MCP Server exposing ISDA Soil API data, built on FastMCP v2.

This module creates and runs the MCP server with:
- Two tools: get_isda_soil_properties and get_isda_available_layers
- Default coordinates read from the X-Farm-Latitude / X-Farm-Longitude headers
- A middleware that logs every tool call with a request id and duration
- Health, readiness and service-info HTTP endpoints
- Structured JSON logging
- Stateless Streamable HTTP transport with CORS

Request flow for a tool call:

    1. Client POSTs a JSON-RPC "tools/call" to /mcp
    2. ToolCallLoggingMiddleware logs the call and times it
    3. The tool function reads the header defaults via get_http_request()
    4. src.tools resolves/validates inputs and calls the shared ISDASoilClient
    5. A ToolFailure is raised as ToolError, which FastMCP turns into a result
       with isError=true; a ToolSuccess is returned as JSON text

Running the server:
    uv run python -m src.server

    This starts the server on http://0.0.0.0:3002 with:
    - MCP endpoint at /mcp (Streamable HTTP)
    - Health check at /health
    - Readiness check at /ready
"""

import datetime
import json
import logging
import math
import sys
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator, Literal

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.dependencies import get_http_request
from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from fastmcp.tools.tool import ToolResult
from mcp.types import CallToolRequestParams
from pydantic import Field
from starlette.middleware import Middleware as ASGIMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from src import tools
from src.config import Settings, settings
from src.isda_client import ISDASoilClient

SERVICE_NAME = "isda-soil-mcp-server"
SERVICE_VERSION = "1.0.0"

LATITUDE_HEADER = "x-farm-latitude"
LONGITUDE_HEADER = "x-farm-longitude"

# ---------------------------------------------------------------------------
# Structured JSON Logging
# ---------------------------------------------------------------------------
# Logs go to stdout as one JSON object per line. Structured fields are passed
# with logger.info("msg", extra={"log_data": {...}}).


class JSONLogFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Example output:

        {"timestamp": "2026-02-06 10:30:00,123", "level": "INFO",
         "logger": "isda-soil-mcp", "message": "Tool call completed",
         "request_id": "1a2b3c4d", "tool": "get_isda_soil_properties"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "log_data"):
            log_entry.update(record.log_data)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(JSONLogFormatter())

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    handlers=[handler],
)
logger = logging.getLogger("isda-soil-mcp")


# ---------------------------------------------------------------------------
# ISDA Soil API client
# ---------------------------------------------------------------------------


def build_client(config: Settings) -> ISDASoilClient | None:
    """
    Create the shared API client, or None when credentials are missing.

    Without credentials the server still starts; the tools then answer with a
    "service unavailable" failure instead of calling the API.
    """
    if not config.credentials_configured:
        logger.warning(
            "ISDA_USERNAME and ISDA_PASSWORD are not set; "
            "MCP tools will not work until credentials are configured"
        )
        return None

    return ISDASoilClient(
        base_url=config.isda_api_base_url,
        username=config.isda_username,
        password=config.isda_password,
        timeout=config.request_timeout,
    )


# One client per process: every tool call shares its cached token.
isda_client: ISDASoilClient | None = build_client(settings)


# ---------------------------------------------------------------------------
# Tool call logging middleware
# ---------------------------------------------------------------------------


class ToolCallLoggingMiddleware(Middleware):
    """
    Logs every tools/call request with a short request id and its duration.

    Exceptions raised by the tool (including ToolError for soft failures) are
    logged and re-raised so FastMCP can build the error result.
    """

    async def on_call_tool(
        self,
        context: MiddlewareContext[CallToolRequestParams],
        call_next: CallNext[CallToolRequestParams, ToolResult],
    ) -> ToolResult:
        request_id = str(uuid.uuid4())[:8]
        tool_name = context.message.name
        started = time.perf_counter()

        logger.info(
            "Tool call received",
            extra={
                "log_data": {
                    "request_id": request_id,
                    "tool": tool_name,
                    "arguments": context.message.arguments or {},
                }
            },
        )

        try:
            result = await call_next(context)
        except Exception as e:
            logger.warning(
                "Tool call failed",
                extra={
                    "log_data": {
                        "request_id": request_id,
                        "tool": tool_name,
                        "error": str(e),
                        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                    }
                },
            )
            raise

        logger.info(
            "Tool call completed",
            extra={
                "log_data": {
                    "request_id": request_id,
                    "tool": tool_name,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                }
            },
        )
        return result


# ---------------------------------------------------------------------------
# Server lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def close_client_on_shutdown(server: FastMCP) -> AsyncIterator[None]:
    """Release the shared client's connection pool when the server stops."""
    try:
        yield
    finally:
        if isda_client is not None and not isda_client.is_closed:
            logger.info("Closing ISDA Soil API client")
            await isda_client.aclose()


# ---------------------------------------------------------------------------
# Create the MCP server
# ---------------------------------------------------------------------------
mcp = FastMCP(
    name="isda-soil-intelligence",
    instructions=(
        "Soil property data and analysis for African locations via the ISDA Soil API. "
        "Use get_isda_available_layers to discover property names, units and depths, "
        "and get_isda_soil_properties to fetch values for a coordinate."
    ),
    middleware=[ToolCallLoggingMiddleware()],
    lifespan=close_client_on_shutdown,
)


def _parse_header_coordinate(name: str, raw: str | None) -> float | None:
    """
    Parse a default-coordinate header; None when the header is absent.

    A value that is not a number parses to NaN, so the call is rejected by the
    coordinate check instead of silently using the fallback location.
    """
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning(
            "Unparseable coordinate header",
            extra={"log_data": {"header": name, "value": raw}},
        )
        return math.nan


def _get_header_coordinates() -> tuple[float | None, float | None]:
    """
    Read the default coordinates from the current HTTP request's headers.

    Returns (None, None) when there is no HTTP request (e.g., stdio transport).
    """
    try:
        request = get_http_request()
    except RuntimeError:
        return None, None

    latitude = _parse_header_coordinate(LATITUDE_HEADER, request.headers.get(LATITUDE_HEADER))
    longitude = _parse_header_coordinate(LONGITUDE_HEADER, request.headers.get(LONGITUDE_HEADER))

    if latitude is not None and longitude is not None:
        logger.info(
            "Using default coordinates from headers",
            extra={"log_data": {"latitude": latitude, "longitude": longitude}},
        )
    return latitude, longitude


def _render(outcome: tools.ToolOutcome) -> str:
    """Turn a tool outcome into the text result, or an MCP error result."""
    if isinstance(outcome, tools.ToolFailure):
        raise ToolError(outcome.message)
    return outcome.to_text()


# ---------------------------------------------------------------------------
# Tool: get_isda_soil_properties
# ---------------------------------------------------------------------------
@mcp.tool(
    name=tools.SOIL_PROPERTIES_TOOL,
    description=(
        "Get soil property data for a specific location. Returns soil properties "
        "including pH, nitrogen, phosphorus, potassium, and other chemical properties "
        "with values for different soil depths (0-20cm and 20-50cm). Includes "
        "uncertainty intervals for each property."
    ),
)
async def get_isda_soil_properties(
    latitude: Annotated[
        float | None,
        Field(ge=-90, le=90, description="Latitude coordinate. Optional if provided in headers."),
    ] = None,
    longitude: Annotated[
        float | None,
        Field(
            ge=-180, le=180, description="Longitude coordinate. Optional if provided in headers."
        ),
    ] = None,
    depth: Annotated[
        Literal["0-20", "20-50"] | None,
        Field(
            description=(
                "Optional soil depth filter. "
                "Default: returns both depths (0-20cm and 20-50cm)."
            )
        ),
    ] = None,
) -> str:
    default_latitude, default_longitude = _get_header_coordinates()
    outcome = await tools.get_soil_properties(
        isda_client,
        latitude=latitude,
        longitude=longitude,
        depth=depth,
        default_latitude=default_latitude,
        default_longitude=default_longitude,
    )
    return _render(outcome)


# ---------------------------------------------------------------------------
# Tool: get_isda_available_layers
# ---------------------------------------------------------------------------
@mcp.tool(
    name=tools.AVAILABLE_LAYERS_TOOL,
    description=(
        "Get metadata about available soil properties/layers. Returns information "
        "about all soil properties that can be queried, including descriptions, "
        "units, and available depths."
    ),
)
async def get_isda_available_layers() -> str:
    return _render(await tools.get_available_layers(isda_client))


# ---------------------------------------------------------------------------
# Health, Readiness and Service Info Endpoints
# ---------------------------------------------------------------------------
# Plain HTTP endpoints (not MCP protocol) for load balancers and probes.


@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> Response:
    """Liveness probe: is the server process alive and responsive?"""
    return JSONResponse(
        {
            "status": "healthy",
            "service": SERVICE_NAME,
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "version": SERVICE_VERSION,
            "isdaApiConfigured": isda_client is not None,
        }
    )


@mcp.custom_route("/ready", methods=["GET"])
async def readiness_check(request: Request) -> Response:
    """Readiness probe: can the tools reach the ISDA Soil API?"""
    if isda_client is None:
        return JSONResponse(
            {"status": "not_ready", "reason": "ISDA credentials not configured"},
            status_code=503,
        )

    return JSONResponse({"status": "ready"})


@mcp.custom_route("/", methods=["GET"])
async def service_info(request: Request) -> Response:
    """Describe the service, its endpoints and its tools."""
    return JSONResponse(
        {
            "service": "ISDA Soil MCP Server",
            "version": SERVICE_VERSION,
            "description": "Soil property data and analysis for African locations via ISDA Soil API",
            "endpoints": {"health": "/health", "ready": "/ready", "mcp": "/mcp (POST)"},
            "tools": [tools.SOIL_PROPERTIES_TOOL, tools.AVAILABLE_LAYERS_TOOL],
        }
    )


# ---------------------------------------------------------------------------
# ASGI app
# ---------------------------------------------------------------------------


def cors_middleware(config: Settings = settings) -> list[ASGIMiddleware]:
    """CORS for browser-based MCP clients, exposing the session header."""
    return [
        ASGIMiddleware(
            CORSMiddleware,
            allow_origins=config.origins,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=[
                "Content-Type",
                "mcp-session-id",
                "Authorization",
                "X-Farm-Latitude",
                "X-Farm-Longitude",
            ],
            expose_headers=["Mcp-Session-Id"],
        )
    ]


def create_app():
    """Build the stateless Streamable HTTP ASGI app with CORS enabled."""
    return mcp.http_app(
        transport="streamable-http",
        middleware=cors_middleware(),
        stateless_http=True,
    )


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    logger.info(
        "Starting ISDA Soil Intelligence MCP Server v%s on %s:%d "
        "(transport=streamable-http, isda_api=%s)",
        SERVICE_VERSION,
        settings.host,
        settings.port,
        "configured" if isda_client is not None else "NOT CONFIGURED",
    )
    # uvicorn (started by FastMCP) handles SIGINT/SIGTERM and drains connections.
    mcp.run(
        transport="streamable-http",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        middleware=cors_middleware(),
        stateless_http=True,
    )
