"""
CLI utility to query the ISDA Soil API directly, without an MCP client.

Uses the same credentials as the server (ISDA_USERNAME, ISDA_PASSWORD,
ISDA_API_BASE_URL from the environment or .env), which makes it a quick way to
check that the credentials work and the API is reachable.

Usage examples:

    # Soil properties for Nairobi, both depths
    uv run python -m scripts.soil_lookup --lat -1.2864 --lon 36.8172

    # Topsoil only
    uv run python -m scripts.soil_lookup --lat -1.2864 --lon 36.8172 --depth 0-20

    # Metadata for every available property
    uv run python -m scripts.soil_lookup --layers

The raw API response is printed as JSON. On failure the error message is
printed to stderr and the exit code is 1.
"""

import argparse
import asyncio
import json
import sys

from src.config import settings
from src.errors import ISDAError, ServiceUnavailableError
from src.isda_client import ISDASoilClient
from src.validation import DEPTHS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Query the ISDA Soil API with the configured credentials.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Soil properties:
    %(prog)s --lat -1.2864 --lon 36.8172

  Topsoil only:
    %(prog)s --lat -1.2864 --lon 36.8172 --depth 0-20

  Available layers:
    %(prog)s --layers
        """,
    )

    parser.add_argument("--lat", type=float, help="Latitude, strictly between -90 and 90")
    parser.add_argument("--lon", type=float, help="Longitude, strictly between -180 and 180")
    parser.add_argument(
        "--depth",
        choices=DEPTHS,
        help="Soil depth in cm (default: both depths)",
    )
    parser.add_argument(
        "--layers",
        action="store_true",
        help="List available soil properties instead of querying a location",
    )
    return parser


async def run_lookup(client: ISDASoilClient, args: argparse.Namespace) -> dict:
    """Run the query selected by the parsed arguments and return the raw response."""
    if args.layers:
        return await client.get_available_layers()
    return await client.get_soil_property_data(args.lat, args.lon, args.depth)


async def _main(args: argparse.Namespace) -> dict:
    if not settings.credentials_configured:
        raise ServiceUnavailableError("ISDA_USERNAME and ISDA_PASSWORD must be set")

    async with ISDASoilClient(
        base_url=settings.isda_api_base_url,
        username=settings.isda_username,
        password=settings.isda_password,
        timeout=settings.request_timeout,
    ) as client:
        return await run_lookup(client, args)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.layers and (args.lat is None or args.lon is None):
        parser.error("--lat and --lon are required unless --layers is given")

    try:
        data = asyncio.run(_main(args))
    except ISDAError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print(json.dumps(data, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
