"""
FedEx Carrier Implementation

Quotes rates through the FedEx Web Services Rate Service (SOAP, v13).
Authenticates with a key/password pair plus the account and meter numbers.
Shops all services unless a single service is configured.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
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
from rateshop.modules.shipping.carriers.normalization import parse_delivery_timestamp
from rateshop.modules.shipping.carriers.xml_utils import (
    MalformedXMLError,
    parse_xml,
    to_xml,
    xml_list,
    xml_text,
)

logger = logging.getLogger(__name__)

# FedEx Web Services URLs
FEDEX_PRODUCTION_URL = "https://ws.fedex.com/web-services/rate"
FEDEX_TESTING_URL = "https://wsbeta.fedex.com/web-services/rate"

SOAP_ENVELOPE_NAMESPACE = "http://schemas.xmlsoap.org/soap/envelope/"
FEDEX_RATE_NAMESPACE = "http://fedex.com/ws/rate/v13"
FEDEX_RATE_VERSION = {"ServiceId": "crs", "Major": "13", "Intermediate": "0", "Minor": "0"}

# Notification severities that mean no rates were produced
FEDEX_FAILURE_SEVERITIES = frozenset({"ERROR", "FAILURE"})


class FedExService(enum.Flag):
    """Selectable FedEx services."""
    PRIORITY_OVERNIGHT = 1
    STANDARD_OVERNIGHT = 2
    FIRST_OVERNIGHT = 4
    TWO_DAY = 8
    TWO_DAY_AM = 16
    EXPRESS_SAVER = 32
    GROUND = 64
    HOME_DELIVERY = 128
    INTERNATIONAL_PRIORITY = 256
    INTERNATIONAL_ECONOMY = 512
    INTERNATIONAL_FIRST = 1024
    SMART_POST = 2048
    ALL = 4095


# Keyed by RateReplyDetails/ServiceType
FEDEX_SERVICE_CODES = MappingProxyType({
    "PRIORITY_OVERNIGHT": AvailableService("FedEx Priority Overnight", FedExService.PRIORITY_OVERNIGHT),
    "STANDARD_OVERNIGHT": AvailableService("FedEx Standard Overnight", FedExService.STANDARD_OVERNIGHT),
    "FIRST_OVERNIGHT": AvailableService("FedEx First Overnight", FedExService.FIRST_OVERNIGHT),
    "FEDEX_2_DAY": AvailableService("FedEx 2Day", FedExService.TWO_DAY),
    "FEDEX_2_DAY_AM": AvailableService("FedEx 2Day A.M.", FedExService.TWO_DAY_AM),
    "FEDEX_EXPRESS_SAVER": AvailableService("FedEx Express Saver", FedExService.EXPRESS_SAVER),
    "FEDEX_GROUND": AvailableService("FedEx Ground", FedExService.GROUND),
    "GROUND_HOME_DELIVERY": AvailableService("FedEx Home Delivery", FedExService.HOME_DELIVERY),
    "INTERNATIONAL_PRIORITY": AvailableService("FedEx International Priority", FedExService.INTERNATIONAL_PRIORITY),
    "INTERNATIONAL_ECONOMY": AvailableService("FedEx International Economy", FedExService.INTERNATIONAL_ECONOMY),
    "INTERNATIONAL_FIRST": AvailableService("FedEx International First", FedExService.INTERNATIONAL_FIRST),
    "SMART_POST": AvailableService("FedEx SmartPost", FedExService.SMART_POST),
})


@dataclass(frozen=True)
class FedExCredentials:
    """FedEx Web Services credentials."""
    key: str
    password: str
    account_number: str
    meter_number: str
    use_production: bool = True

    @property
    def rates_url(self) -> str:
        return FEDEX_PRODUCTION_URL if self.use_production else FEDEX_TESTING_URL

    def __repr__(self) -> str:
        return f"FedExCredentials(account_number={self.account_number!r}, use_production={self.use_production})"


@register_carrier(CarrierCode.FEDEX)
class FedExCarrier(BaseCarrier):
    """FedEx shipping carrier implementation."""

    SERVICE_CODES = FEDEX_SERVICE_CODES
    ALL_SERVICES = FedExService.ALL

    def __init__(
        self,
        credentials: FedExCredentials,
        timeout: Optional[float] = None,
        services: Optional[FedExService] = None,
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
    def from_settings(cls, settings) -> Optional["FedExCarrier"]:
        """Build from application settings, or None when FedEx is not configured."""
        if not settings.FEDEX_ENABLED:
            logger.debug("FedEx carrier is disabled")
            return None
        if not settings.fedex_configured:
            logger.warning("FedEx carrier enabled but credentials are missing, skipping")
            return None

        return cls(
            FedExCredentials(
                key=settings.FEDEX_KEY,
                password=settings.FEDEX_PASSWORD,
                account_number=settings.FEDEX_ACCOUNT_NUMBER,
                meter_number=settings.FEDEX_METER_NUMBER,
                use_production=settings.FEDEX_USE_PRODUCTION,
            ),
            timeout=settings.carrier_timeout(settings.FEDEX_TIMEOUT_SECONDS),
            service_description=settings.FEDEX_SERVICE_DESCRIPTION,
        )

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.FEDEX

    @property
    def carrier_name(self) -> str:
        return "FedEx"

    def validate_shipment(self, shipment: Shipment) -> None:
        if not shipment.origin.postal_code:
            raise InvalidInputError("FedEx requires an origin postal code", field="origin.postal_code")
        if shipment.destination.requires_postal_code and not shipment.destination.postal_code:
            raise InvalidInputError(
                f"FedEx requires a destination postal code for {shipment.destination.country_code} addresses",
                field="destination.postal_code",
            )

    async def request_rates(self, client: httpx.AsyncClient, shipment: Shipment) -> List[Rate]:
        """Get shipping rates from FedEx."""
        response = await self._send(
            client,
            "POST",
            self.credentials.rates_url,
            content=self.build_request(shipment).encode("utf-8"),
            headers={"Content-Type": "text/xml; charset=UTF-8", "SOAPAction": "http://fedex.com/ws/rate/v13/getRates"},
        )
        return self.parse_response(response.text)

    # ==================== Request ====================

    def build_request(self, shipment: Shipment, ship_timestamp: Optional[datetime] = None) -> str:
        """Serialize the SOAP envelope around one RateRequest."""
        envelope = {
            "@xmlns:soapenv": SOAP_ENVELOPE_NAMESPACE,
            "soapenv:Header": "",
            "soapenv:Body": {"RateRequest": self._rate_request(shipment, ship_timestamp)},
        }
        return to_xml("soapenv:Envelope", envelope)

    def _rate_request(self, shipment: Shipment, ship_timestamp: Optional[datetime]) -> Dict[str, Any]:
        credentials = self.credentials
        timestamp = ship_timestamp or datetime.now().astimezone()

        requested: Dict[str, Any] = {
            "ShipTimestamp": timestamp.replace(microsecond=0).isoformat(),
            "DropoffType": "REGULAR_PICKUP",
        }
        if self.service_code:
            requested["ServiceType"] = self.service_code
        requested.update({
            "PackagingType": "YOUR_PACKAGING",
            "Shipper": {
                "Address": {
                    "PostalCode": shipment.origin.postal_code,
                    "CountryCode": shipment.origin.country_code,
                },
            },
            "Recipient": {"Address": _recipient_address(shipment)},
            "ShippingChargesPayment": {
                "PaymentType": "SENDER",
                "Payor": {"ResponsibleParty": {"AccountNumber": credentials.account_number}},
            },
            "RateRequestTypes": "LIST",
            "PackageCount": str(len(shipment.packages)),
            "RequestedPackageLineItems": [
                _package_line_item(sequence, package)
                for sequence, package in enumerate(shipment.packages, start=1)
            ],
        })

        return {
            "@xmlns": FEDEX_RATE_NAMESPACE,
            "WebAuthenticationDetail": {
                "UserCredential": {"Key": credentials.key, "Password": credentials.password},
            },
            "ClientDetail": {
                "AccountNumber": credentials.account_number,
                "MeterNumber": credentials.meter_number,
            },
            "TransactionDetail": {"CustomerTransactionId": "Rating and Service"},
            "Version": dict(FEDEX_RATE_VERSION),
            "ReturnTransitAndCommit": "true",
            "RequestedShipment": requested,
        }

    # ==================== Response ====================

    def parse_response(self, body: str) -> List[Rate]:
        """
        Parse a SOAP RateReply.

        Raises:
            AdapterParseError: body is not a rate reply
            AdapterTransportError: FedEx reported a fault or a failed request
        """
        try:
            tag, root = parse_xml(
                body,
                force_list=("Notifications", "RateReplyDetails", "RatedShipmentDetails"),
                namespaces={SOAP_ENVELOPE_NAMESPACE: None, FEDEX_RATE_NAMESPACE: None},
            )
        except MalformedXMLError as e:
            raise self._parse_error("returned malformed XML", e)

        if tag != "Envelope":
            raise self._parse_error(f"returned unexpected document <{tag}>")

        soap_body = root.get("Body")
        if not isinstance(soap_body, dict):
            raise self._parse_error("returned an empty SOAP body")
        if "Fault" in soap_body:
            message = xml_text(soap_body, "Fault/faultstring", default="SOAP fault")
            logger.error(f"FedEx SOAP fault: {message}")
            raise AdapterTransportError(f"FedEx rejected the rate request: {message}", provider_name=self.carrier_name)

        reply = soap_body.get("RateReply")
        if not isinstance(reply, dict):
            raise self._parse_error("returned no RateReply")

        severity = (xml_text(reply, "HighestSeverity") or "").strip().upper()
        if severity in FEDEX_FAILURE_SEVERITIES:
            notification = (xml_list(reply, "Notifications") or [{}])[0]
            code = (xml_text(notification, "Code") or "").strip()
            message = (xml_text(notification, "Message") or "unknown error").strip()
            logger.error(f"FedEx rating error: {code} - {message}")
            raise AdapterTransportError(
                f"FedEx rejected the rate request: {message}",
                provider_name=self.carrier_name,
                details={"fedex_notification_code": code, "fedex_severity": severity},
            )

        rates = []
        for detail in xml_list(reply, "RateReplyDetails"):
            rate = self.build_rate(
                service_code=xml_text(detail, "ServiceType", default=""),
                total_charges=_net_charge(detail),
                delivery_date=parse_delivery_timestamp(xml_text(detail, "DeliveryTimestamp")),
            )
            if rate is not None:
                rates.append(rate)
        return rates


def _recipient_address(shipment: Shipment) -> Dict[str, Any]:
    destination = shipment.destination
    address: Dict[str, Any] = {}
    if destination.city:
        address["City"] = destination.city
    if destination.state:
        address["StateOrProvinceCode"] = destination.state
    if destination.postal_code:
        address["PostalCode"] = destination.postal_code
    address["CountryCode"] = destination.country_code
    return address


def _package_line_item(sequence: int, package: Package) -> Dict[str, Any]:
    return {
        "SequenceNumber": str(sequence),
        "GroupPackageCount": "1",
        "InsuredValue": {"Currency": "USD", "Amount": str(package.insured_value)},
        "Weight": {"Units": "LB", "Value": str(package.rounded_weight)},
        "Dimensions": {
            "Length": str(package.rounded_length),
            "Width": str(package.rounded_width),
            "Height": str(package.rounded_height),
            "Units": "IN",
        },
    }


def _net_charge(detail: Dict[str, Any]) -> Optional[str]:
    """Account (negotiated) rate when quoted, otherwise the first rate type."""
    rated = xml_list(detail, "RatedShipmentDetails")
    if not rated:
        return None
    chosen = next(
        (r for r in rated if (xml_text(r, "ShipmentRateDetail/RateType") or "").startswith("PAYOR_ACCOUNT")),
        rated[0],
    )
    return xml_text(chosen, "ShipmentRateDetail/TotalNetCharge/Amount")
