"""Coordinate and depth checks shared by the API client and the tool layer."""

import math

# Soil depth bands (centimeters) the API reports values for.
DEPTHS: tuple[str, ...] = ("0-20", "20-50")


def _in_open_range(value: object, low: float, high: float) -> bool:
    # bool is an int subclass, but True/False are never coordinates.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if math.isnan(value):
        return False
    return low < value < high


def is_valid_latitude(value: object) -> bool:
    """Latitude must lie strictly between -90 and 90."""
    return _in_open_range(value, -90.0, 90.0)


def is_valid_longitude(value: object) -> bool:
    """Longitude must lie strictly between -180 and 180."""
    return _in_open_range(value, -180.0, 180.0)


def is_valid_depth(value: object) -> bool:
    """None means "all depths"; anything else must be one of DEPTHS."""
    return value is None or value in DEPTHS
