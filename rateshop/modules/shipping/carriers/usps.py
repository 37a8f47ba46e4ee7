"""
USPS Carrier Implementation

Quotes domestic rates through the USPS Web Tools RateV4 API. Every package
of the shipment goes into one RateV4Request; USPS prices packages
individually, so a service is offered only when every package was quoted
for it, and its total is the sum of the package postage.
"""
import enum
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Tuple

import httpx

from rateshop.core.exceptions import AdapterTransportError, InvalidInputError
from rateshop.modules.shipping.carriers import register_carrier
from rateshop.modules.shipping.carriers.base import (
    AvailableService,
    BaseCarrier,
    CarrierCode,
    Package,
    Rate,
    Shipment,
)
from rateshop.modules.shipping.carriers.normalization import parse_charges
from rateshop.modules.shipping.carriers.xml_utils import (
    MalformedXMLError,
    parse_xml,
    to_xml,
    xml_list,
    xml_text,
)

logger = logging.getLogger(__name__)

# USPS Web Tools URLs
USPS_PRODUCTION_URL = "https://secure.shippingapis.com/ShippingAPI.dll"
USPS_TESTING_URL = "https://stg-secure.shippingapis.com/ShippingAPI.dll"

RATE_API = "RateV4"
RATE_API_REVISION = "2"

# RateV4 accepts at most 25 packages per request
MAX_PACKAGES_PER_REQUEST = 25

_COMMITMENT_DAYS_RE = re.compile(r"(\d+)\s*-?\s*Day", re.IGNORECASE)


class USPSService(enum.Flag):
    """Selectable USPS services."""
    FIRST_CLASS = 1
    PRIORITY = 2
    PRIORITY_EXPRESS = 4
    PRIORITY_EXPRESS_HOLD_FOR_PICKUP = 8
    RETAIL_GROUND = 16
    MEDIA_MAIL = 32
    LIBRARY_MAIL = 64
    GROUND_ADVANTAGE = 128
    ALL = 255


# Keyed by the CLASSID attribute of <Postage>
USPS_SERVICE_CODES = MappingProxyType({
    "0": AvailableService("USPS First-Class Mail", USPSService.FIRST_CLASS),
    "1": AvailableService("USPS Priority Mail", USPSService.PRIORITY),
    "2": AvailableService("USPS Priority Mail Express Hold For Pickup", USPSService.PRIORITY_EXPRESS_HOLD_FOR_PICKUP),
    "3": AvailableService("USPS Priority Mail Express", USPSService.PRIORITY_EXPRESS),
    "4": AvailableService("USPS Retail Ground", USPSService.RETAIL_GROUND),
    "6": AvailableService("USPS Media Mail", USPSService.MEDIA_MAIL),
    "7": AvailableService("USPS Library Mail", USPSService.LIBRARY_MAIL),
    "1058": AvailableService("USPS Ground Advantage", USPSService.GROUND_ADVANTAGE),
})

# Only Priority Mail Express carries a money-back delivery guarantee
USPS_GUARANTEED_CLASS_IDS = frozenset({"2", "3"})


@dataclass(frozen=True)
class USPSCredentials:
    """USPS Web Tools credentials."""
    user_id: str
    password: str = ""
    use_production: bool = True

    @property
    def base_url(self) -> str:
        return USPS_PRODUCTION_URL if self.use_production else USPS_TESTING_URL

    def __repr__(self) -> str:
        return f"USPSCredentials(user_id={self.user_id!r}, use_production={self.use_production})"


@register_carrier(CarrierCode.USPS)
class USPSCarrier(BaseCarrier):
    """USPS shipping carrier implementation (domestic only)."""

    SERVICE_CODES = USPS_SERVICE_CODES
    ALL_SERVICES = USPSService.ALL

    def __init__(
        self,
        credentials: USPSCredentials,
        timeout: Optional[float] = None,
        services: Optional[USPSService] = None,
        service_description: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            timeout=timeout,
            services=services,
            service_description=service_description,
            transport=transport,
        )
        self.credentials = credentials

    @classmethod
    def from_settings(cls, settings) -> Optional["USPSCarrier"]:
        """Build from application settings, or None when USPS is not configured."""
        if not settings.USPS_ENABLED:
            logger.debug("USPS carrier is disabled")
            return None
        if not settings.usps_configured:
            logger.warning("USPS carrier enabled but USPS_USER_ID is missing, skipping")
            return None

        return cls(
            USPSCredentials(
                user_id=settings.USPS_USER_ID,
                password=settings.USPS_PASSWORD,
                use_production=settings.USPS_USE_PRODUCTION,
            ),
            timeout=settings.carrier_timeout(settings.USPS_TIMEOUT_SECONDS),
        )

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.USPS

    @property
    def carrier_name(self) -> str:
        return "USPS"

    def validate_shipment(self, shipment: Shipment) -> None:
        if len(shipment.packages) > MAX_PACKAGES_PER_REQUEST:
            raise InvalidInputError(
                f"USPS rates at most {MAX_PACKAGES_PER_REQUEST} packages per shipment",
                field="packages",
            )
        if not shipment.destination.is_united_states_address():
            # Domestic API; request_rates() quotes nothing for these
            return
        if not shipment.origin.postal_code:
            raise InvalidInputError("USPS requires an origin ZIP code", field="origin.postal_code")
        if not shipment.destination.postal_code:
            raise InvalidInputError("USPS requires a destination ZIP code", field="destination.postal_code")

    async def request_rates(self, client: httpx.AsyncClient, shipment: Shipment) -> List[Rate]:
        """Get domestic shipping rates from USPS."""
        if not shipment.destination.is_united_states_address():
            logger.info(f"USPS quotes domestic shipments only, skipping {shipment.destination.country_code}")
            return []

        response = await self._send(
            client,
            "GET",
            self.credentials.base_url,
            params={"API": RATE_API, "XML": self.build_request(shipment)},
        )
        return self.parse_response(response.text, package_count=len(shipment.packages))

    # ==================== Request ====================

    def build_request(self, shipment: Shipment) -> str:
        body: Dict[str, Any] = {"@USERID": self.credentials.user_id}
        if self.credentials.password:
            body["@PASSWORD"] = self.credentials.password
        body["Revision"] = RATE_API_REVISION
        body["Package"] = [
            self._package(index, package, shipment)
            for index, package in enumerate(shipment.packages)
        ]
        return to_xml("RateV4Request", body, declaration=False)

    @staticmethod
    def _package(index: int, package: Package, shipment: Shipment) -> Dict[str, Any]:
        return {
            "@ID": str(index),
            "Service": "ALL",
            "ZipOrigination": shipment.origin.postal_code[:5],
            "ZipDestination": shipment.destination.postal_code[:5],
            "Pounds": str(package.rounded_weight),
            "Ounces": "0",
            "Container": "",
            "Width": str(package.rounded_width),
            "Length": str(package.rounded_length),
            "Height": str(package.rounded_height),
            "Value": str(package.insured_value),
            "Machinable": "TRUE",
        }

    # ==================== Response ====================

    def parse_response(self, body: str, package_count: int) -> List[Rate]:
        """
        Parse a RateV4Response and combine postage across packages.

        Raises:
            AdapterParseError: body is not a RateV4 response
            AdapterTransportError: USPS reported an error for the request or a package
        """
        try:
            tag, root = parse_xml(body, force_list=("Package", "Postage"))
        except MalformedXMLError as e:
            raise self._parse_error("returned malformed XML", e)

        if tag == "Error":
            raise self._rejected(root)
        if tag != "RateV4Response":
            raise self._parse_error(f"returned unexpected document <{tag}>")

        packages = xml_list(root, "Package")
        if len(packages) != package_count:
            raise self._parse_error(f"returned {len(packages)} packages, expected {package_count}")

        quotes: Dict[str, List[Tuple[Decimal, Optional[int]]]] = {}
        for package in packages:
            error = package.get("Error")
            if error is not None:
                raise self._rejected(error)
            for class_id, charges, days in self._package_postage(package):
                quotes.setdefault(class_id, []).append((charges, days))

        rates = []
        for class_id, lines in quotes.items():
            if len(lines) != package_count:
                logger.debug(f"USPS class {class_id} not offered for every package, skipping")
                continue
            total = sum(charges for charges, _ in lines)
            days = [d for _, d in lines]
            guaranteed_days = max(days) if None not in days else None
            rate = self.build_rate(class_id, str(total), guaranteed_days=guaranteed_days)
            if rate is not None:
                rates.append(rate)
        return rates

    def _package_postage(self, package: Dict[str, Any]):
        """Yield (class_id, charges, guaranteed_days) for the usable lines of one package."""
        for postage in xml_list(package, "Postage"):
            class_id = (postage.get("@CLASSID") or "").strip()
            if self.lookup_service(class_id) is None:
                continue
            try:
                charges = parse_charges(xml_text(postage, "Rate"))
            except ValueError as e:
                logger.warning(f"USPS class {class_id}: skipping rate line, {e}")
                continue
            yield class_id, charges, self._guaranteed_days(class_id, postage)

    @staticmethod
    def _guaranteed_days(class_id: str, postage: Dict[str, Any]) -> Optional[int]:
        if class_id not in USPS_GUARANTEED_CLASS_IDS:
            return None
        match = _COMMITMENT_DAYS_RE.search(xml_text(postage, "CommitmentName", default=""))
        return int(match.group(1)) if match else None

    def _rejected(self, error: Any) -> AdapterTransportError:
        number = (xml_text(error, "Number") or "").strip()
        description = (xml_text(error, "Description") or "unknown error").strip()
        logger.error(f"USPS rating error: {number} - {description}")
        return AdapterTransportError(
            f"USPS rejected the rate request: {description}",
            provider_name=self.carrier_name,
            details={"usps_error_number": number},
        )
