"""
Tool logic behind the two MCP tools, independent of the MCP transport.

Each tool function returns a ToolOutcome instead of raising:

    ToolSuccess(payload)   -> rendered as the tool's JSON text result
    ToolFailure(message)   -> rendered as an error-flagged tool result

Errors are reported to the caller as soft failures with a user-facing
message, never as protocol-level exceptions. server.py owns the conversion
from ToolFailure to the MCP error convention.

Coordinate resolution for get_isda_soil_properties, evaluated per axis:

    explicit argument  >  header default (X-Farm-Latitude/-Longitude)  >  Nairobi
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Union

from src.errors import ISDAError, ServiceUnavailableError
from src.isda_client import ISDASoilClient
from src.validation import is_valid_latitude, is_valid_longitude

logger = logging.getLogger("isda-soil-mcp.tools")

SOIL_PROPERTIES_TOOL = "get_isda_soil_properties"
AVAILABLE_LAYERS_TOOL = "get_isda_available_layers"

# Fallback location when neither the call nor the headers provide one.
NAIROBI_LATITUDE = -1.2864
NAIROBI_LONGITUDE = 36.8172

DATA_SOURCE = "ISDA Soil API"
SOIL_PROPERTIES_NOTE = (
    "Soil properties include uncertainty intervals at 50%, 68%, and 90% confidence levels"
)
LAYERS_NOTE = "Use these property names when querying soil data"

INVALID_LATITUDE_MESSAGE = (
    "Invalid latitude coordinate. Please provide a valid latitude between -90 and 90 (exclusive)."
)
INVALID_LONGITUDE_MESSAGE = (
    "Invalid longitude coordinate. "
    "Please provide a valid longitude between -180 and 180 (exclusive)."
)
SERVICE_UNAVAILABLE_MESSAGE = (
    "I'm having trouble connecting to the soil data service. Try again in a moment?"
)
SOIL_DATA_ERROR_PREFIX = "I'm having trouble getting soil data right now."
LAYERS_ERROR_PREFIX = "I'm having trouble getting layer information."
RETRY_HINT = "Try again in a moment?"


@dataclass(frozen=True)
class ToolSuccess:
    """A successful tool call. `payload` is serialized as the result text."""

    payload: dict[str, Any]

    def to_text(self) -> str:
        return json.dumps(self.payload, indent=2)


@dataclass(frozen=True)
class ToolFailure:
    """A failed tool call carrying the message shown to the caller."""

    message: str


ToolOutcome = Union[ToolSuccess, ToolFailure]


def resolve_coordinate(
    explicit: float | None, header_default: float | None, fallback: float
) -> float:
    """First value that is not None: argument, then header default, then fallback."""
    if explicit is not None:
        return explicit
    if header_default is not None:
        return header_default
    return fallback


def resolve_location(
    latitude: float | None,
    longitude: float | None,
    default_latitude: float | None = None,
    default_longitude: float | None = None,
) -> tuple[float, float]:
    """Resolve latitude and longitude independently of each other."""
    return (
        resolve_coordinate(latitude, default_latitude, NAIROBI_LATITUDE),
        resolve_coordinate(longitude, default_longitude, NAIROBI_LONGITUDE),
    )


def _require_client(client: ISDASoilClient | None) -> ISDASoilClient:
    if client is None:
        raise ServiceUnavailableError(SERVICE_UNAVAILABLE_MESSAGE)
    return client


def _failure_from(error: ISDAError, prefix: str) -> ToolFailure:
    return ToolFailure(f"{prefix} {error.message or RETRY_HINT}")


async def get_soil_properties(
    client: ISDASoilClient | None,
    latitude: float | None = None,
    longitude: float | None = None,
    depth: str | None = None,
    default_latitude: float | None = None,
    default_longitude: float | None = None,
) -> ToolOutcome:
    """
    Fetch soil properties for a location and shape them for the caller.

    Args:
        client: The shared API client, or None when it is not configured
        latitude: Latitude from the tool call
        longitude: Longitude from the tool call
        depth: "0-20", "20-50", or None for both depths
        default_latitude: Latitude from the X-Farm-Latitude header
        default_longitude: Longitude from the X-Farm-Longitude header

    Returns:
        ToolSuccess with location, depth_filter, properties, data_source and
        note; or ToolFailure with a user-facing message.
    """
    lat, lon = resolve_location(latitude, longitude, default_latitude, default_longitude)

    logger.info(
        "get_isda_soil_properties called",
        extra={"log_data": {"latitude": lat, "longitude": lon, "depth": depth or "all"}},
    )

    if not is_valid_latitude(lat):
        return ToolFailure(INVALID_LATITUDE_MESSAGE)
    if not is_valid_longitude(lon):
        return ToolFailure(INVALID_LONGITUDE_MESSAGE)

    try:
        data = await _require_client(client).get_soil_property_data(lat, lon, depth)
    except ServiceUnavailableError as e:
        logger.warning("ISDA Soil API client is not configured")
        return ToolFailure(e.message)
    except ISDAError as e:
        logger.error(
            "Error in get_isda_soil_properties: %s",
            e.message,
            extra={"log_data": {"error_type": type(e).__name__}},
        )
        return _failure_from(e, SOIL_DATA_ERROR_PREFIX)

    return ToolSuccess(
        {
            "location": {"latitude": lat, "longitude": lon},
            "depth_filter": depth or "all",
            "properties": data["property"],
            "data_source": DATA_SOURCE,
            "note": SOIL_PROPERTIES_NOTE,
        }
    )


async def get_available_layers(client: ISDASoilClient | None) -> ToolOutcome:
    """Fetch the metadata of every soil property the API can return."""
    logger.info("get_isda_available_layers called")

    try:
        data = await _require_client(client).get_available_layers()
    except ServiceUnavailableError as e:
        logger.warning("ISDA Soil API client is not configured")
        return ToolFailure(e.message)
    except ISDAError as e:
        logger.error(
            "Error in get_isda_available_layers: %s",
            e.message,
            extra={"log_data": {"error_type": type(e).__name__}},
        )
        return _failure_from(e, LAYERS_ERROR_PREFIX)

    return ToolSuccess(
        {
            "available_properties": data["property"],
            "data_source": DATA_SOURCE,
            "note": LAYERS_NOTE,
        }
    )
