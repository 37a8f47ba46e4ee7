#!/usr/bin/env python3
"""
Rate Quote CLI

Quotes one shipment against every configured carrier and prints the sorted
rates. Carrier credentials come from the environment / .env file (see
rateshop.core.config.Settings).

Usage:
    # One 35 lb package, Connecticut to Maryland
    rateshop-quote --origin 06405 --destination 20852 --package 12 12 12 35 150

    # Two packages to Canada
    rateshop-quote --origin 06405 --destination "L4W 1S2" --destination-country CA \\
        --package 12 12 12 35 150 --package 4 4 6 15 250

Exit status: 0 when at least one rate was returned, 1 when none, 2 on
invalid input.
"""
import argparse
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from rateshop.core.config import settings
from rateshop.core.exceptions import ConfigurationError, InvalidInputError
from rateshop.modules.shipping.carriers.base import Address, Package, Shipment
from rateshop.services.rate_manager import RateManager

logger = logging.getLogger(__name__)


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rateshop-quote",
        description="Quote shipping rates from every configured carrier",
    )
    parser.add_argument("--origin", required=True, help="Origin postal code")
    parser.add_argument("--origin-country", default="US", help="Origin country code (default: US)")
    parser.add_argument("--destination", default="", help="Destination postal code")
    parser.add_argument("--destination-city", default="", help="Destination city")
    parser.add_argument("--destination-country", default="US", help="Destination country code (default: US)")
    parser.add_argument(
        "--package",
        nargs=5,
        action="append",
        type=_decimal,
        metavar=("LENGTH", "WIDTH", "HEIGHT", "WEIGHT", "INSURED_VALUE"),
        help="Package dimensions (in), weight (lb) and insured value (USD); repeatable",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser


def format_shipment(shipment: Shipment) -> List[str]:
    lines = [str(rate) for rate in shipment.rates]
    if not shipment.rates:
        lines.append("No rates available")
    for error in shipment.errors:
        lines.append(f"! {error.provider_name}: {error.message}")
    return lines


def main(argv: Optional[List[str]] = None, manager: Optional[RateManager] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=(args.log_level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        origin = Address(postal_code=args.origin, country_code=args.origin_country)
        destination = Address(
            city=args.destination_city,
            postal_code=args.destination,
            country_code=args.destination_country,
        )
        packages = [Package(*values) for values in (args.package or [])]
        if manager is None:
            manager = RateManager.from_settings(settings)
        shipment = manager.get_rates_sync(origin, destination, packages)
    except InvalidInputError as e:
        logger.error(f"Invalid input: {e.message}")
        print(f"Error: {e.message}", file=sys.stderr)
        return 2
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}")
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 2

    for line in format_shipment(shipment):
        print(line)
    return 0 if shipment.rates else 1


if __name__ == "__main__":
    sys.exit(main())
