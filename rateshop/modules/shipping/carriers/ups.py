"""
UPS Carrier Implementation

Quotes rates through the UPS XML Rating Service (AccessRequest +
RatingServiceSelectionRequest documents posted together). Shops all
services unless a single service description is configured.
"""
import enum
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Optional

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
from rateshop.modules.shipping.carriers.xml_utils import (
    MalformedXMLError,
    parse_xml,
    to_xml,
    xml_list,
    xml_text,
)

logger = logging.getLogger(__name__)

# UPS API URLs
UPS_PRODUCTION_RATES_URL = "https://onlinetools.ups.com/ups.app/xml/Rate"
UPS_DEVELOPMENT_RATES_URL = "https://wwwcie.ups.com/ups.app/xml/Rate"

PICKUP_TYPE_DAILY = "03"
PACKAGING_CUSTOMER_SUPPLIED = "02"
XPCI_VERSION = "1.0001"


class UPSService(enum.Flag):
    """Selectable UPS services. Must stay in sync with UPS_SERVICE_CODES."""
    NEXT_DAY_AIR = 1
    SECOND_DAY_AIR = 2
    GROUND = 4
    WORLDWIDE_EXPRESS = 8
    WORLDWIDE_EXPEDITED = 16
    STANDARD = 32
    THREE_DAY_SELECT = 64
    NEXT_DAY_AIR_SAVER = 128
    NEXT_DAY_AIR_EARLY_AM = 256
    WORLDWIDE_EXPRESS_PLUS = 512
    SECOND_DAY_AIR_AM = 1024
    EXPRESS_SAVER = 2048
    SURE_POST = 4096
    ALL = 8191


UPS_SERVICE_CODES = MappingProxyType({
    "01": AvailableService("UPS Next Day Air", UPSService.NEXT_DAY_AIR),
    "02": AvailableService("UPS Second Day Air", UPSService.SECOND_DAY_AIR),
    "03": AvailableService("UPS Ground", UPSService.GROUND),
    "07": AvailableService("UPS Worldwide Express", UPSService.WORLDWIDE_EXPRESS),
    "08": AvailableService("UPS Worldwide Expedited", UPSService.WORLDWIDE_EXPEDITED),
    "11": AvailableService("UPS Standard", UPSService.STANDARD),
    "12": AvailableService("UPS 3-Day Select", UPSService.THREE_DAY_SELECT),
    "13": AvailableService("UPS Next Day Air Saver", UPSService.NEXT_DAY_AIR_SAVER),
    "14": AvailableService("UPS Next Day Air Early AM", UPSService.NEXT_DAY_AIR_EARLY_AM),
    "54": AvailableService("UPS Worldwide Express Plus", UPSService.WORLDWIDE_EXPRESS_PLUS),
    "59": AvailableService("UPS 2nd Day Air AM", UPSService.SECOND_DAY_AIR_AM),
    "65": AvailableService("UPS Express Saver", UPSService.EXPRESS_SAVER),
    "93": AvailableService("UPS Sure Post", UPSService.SURE_POST),
})


@dataclass(frozen=True)
class UPSCredentials:
    """UPS XML API credentials."""
    license_number: str
    user_id: str
    password: str
    use_production: bool = True

    @property
    def rates_url(self) -> str:
        return UPS_PRODUCTION_RATES_URL if self.use_production else UPS_DEVELOPMENT_RATES_URL

    def __repr__(self) -> str:
        return f"UPSCredentials(user_id={self.user_id!r}, use_production={self.use_production})"


@register_carrier(CarrierCode.UPS)
class UPSCarrier(BaseCarrier):
    """UPS shipping carrier implementation."""

    SERVICE_CODES = UPS_SERVICE_CODES
    ALL_SERVICES = UPSService.ALL

    def __init__(
        self,
        credentials: UPSCredentials,
        timeout: Optional[float] = None,
        services: Optional[UPSService] = None,
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
    def from_settings(cls, settings) -> Optional["UPSCarrier"]:
        """Build from application settings, or None when UPS is not configured."""
        if not settings.UPS_ENABLED:
            logger.debug("UPS carrier is disabled")
            return None
        if not settings.ups_configured:
            logger.warning("UPS carrier enabled but credentials are missing, skipping")
            return None

        return cls(
            UPSCredentials(
                license_number=settings.UPS_LICENSE_NUMBER,
                user_id=settings.UPS_USER_ID,
                password=settings.UPS_PASSWORD,
                use_production=settings.UPS_USE_PRODUCTION,
            ),
            timeout=settings.carrier_timeout(settings.UPS_TIMEOUT_SECONDS),
            service_description=settings.UPS_SERVICE_DESCRIPTION,
        )

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.UPS

    @property
    def carrier_name(self) -> str:
        return "UPS"

    def validate_shipment(self, shipment: Shipment) -> None:
        if not shipment.origin.postal_code:
            raise InvalidInputError("UPS requires an origin postal code", field="origin.postal_code")
        if shipment.destination.requires_postal_code and not shipment.destination.postal_code:
            raise InvalidInputError(
                f"UPS requires a destination postal code for {shipment.destination.country_code} addresses",
                field="destination.postal_code",
            )

    async def request_rates(self, client: httpx.AsyncClient, shipment: Shipment) -> List[Rate]:
        """Get shipping rates from UPS."""
        response = await self._send(
            client,
            "POST",
            self.credentials.rates_url,
            content=self.build_request(shipment),
            # UPS documents x-www-form-urlencoded, but accepts the raw XML as text/xml
            headers={"Content-Type": "text/xml; charset=UTF-8"},
        )
        return self.parse_response(response.text)

    # ==================== Request ====================

    def build_request(self, shipment: Shipment) -> bytes:
        """Serialize the access and rating documents, in that order."""
        access = to_xml("AccessRequest", self._access_request())
        rating = to_xml("RatingServiceSelectionRequest", self._rating_request(shipment))
        return (access + rating).encode("utf-8")

    def _access_request(self) -> Dict[str, Any]:
        return {
            "@xml:lang": "en-US",
            "AccessLicenseNumber": self.credentials.license_number,
            "UserId": self.credentials.user_id,
            "Password": self.credentials.password,
        }

    def _rating_request(self, shipment: Shipment) -> Dict[str, Any]:
        destination = shipment.destination
        ship_to: Dict[str, Any] = {}
        if destination.requires_postal_code:
            ship_to["PostalCode"] = destination.postal_code
        if destination.city:
            ship_to["City"] = destination.city
        ship_to["CountryCode"] = destination.country_code

        shipment_body: Dict[str, Any] = {
            "Shipper": {
                "Address": {
                    "PostalCode": shipment.origin.postal_code,
                    "CountryCode": shipment.origin.country_code,
                },
            },
            "ShipTo": {"Address": ship_to},
        }
        if self.service_code:
            shipment_body["Service"] = {"Code": self.service_code}
        shipment_body["Package"] = [_package(package) for package in shipment.packages]

        return {
            "@xml:lang": "en-US",
            "Request": {
                "TransactionReference": {
                    "CustomerContext": "Rating and Service",
                    "XpciVersion": XPCI_VERSION,
                },
                "RequestAction": "Rate",
                "RequestOption": "Rate" if self.service_code else "Shop",
            },
            "PickupType": {"Code": PICKUP_TYPE_DAILY},
            "Shipment": shipment_body,
        }

    # ==================== Response ====================

    def parse_response(self, body: str) -> List[Rate]:
        """
        Parse a RatingServiceSelectionResponse.

        Raises:
            AdapterParseError: body is not a rating response
            AdapterTransportError: UPS reported a failed request
        """
        try:
            tag, root = parse_xml(body, force_list=("RatedShipment",))
        except MalformedXMLError as e:
            raise self._parse_error("returned malformed XML", e)

        if tag != "RatingServiceSelectionResponse":
            raise self._parse_error(f"returned unexpected document <{tag}>")

        status = xml_text(root, "Response/ResponseStatusCode", default="").strip()
        if status != "1":
            description = xml_text(root, "Response/Error/ErrorDescription", default="unknown error").strip()
            error_code = xml_text(root, "Response/Error/ErrorCode", default="").strip()
            logger.error(f"UPS rating error: {error_code} - {description}")
            raise AdapterTransportError(
                f"UPS rejected the rate request: {description}",
                provider_name=self.carrier_name,
                details={"ups_error_code": error_code},
            )

        rates = []
        for rated_shipment in xml_list(root, "RatedShipment"):
            rate = self.build_rate(
                service_code=xml_text(rated_shipment, "Service/Code", default=""),
                total_charges=xml_text(rated_shipment, "TotalCharges/MonetaryValue"),
                guaranteed_days=xml_text(rated_shipment, "GuaranteedDaysToDelivery"),
                scheduled_time=xml_text(rated_shipment, "ScheduledDeliveryTime"),
            )
            if rate is not None:
                rates.append(rate)
        return rates


def _package(package: Package) -> Dict[str, Any]:
    return {
        "PackagingType": {"Code": PACKAGING_CUSTOMER_SUPPLIED},
        "PackageWeight": {"Weight": str(package.rounded_weight)},
        "Dimensions": {
            "Length": str(package.rounded_length),
            "Width": str(package.rounded_width),
            "Height": str(package.rounded_height),
        },
        "PackageServiceOptions": {
            "InsuredValue": {"CurrencyCode": "USD", "MonetaryValue": str(package.insured_value)},
        },
    }
