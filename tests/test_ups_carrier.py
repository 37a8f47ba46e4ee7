"""
Tests for the UPS carrier.
"""
from datetime import date, timedelta
from decimal import Decimal

import httpx
import pytest
import xmltodict

from rateshop.core.exceptions import (
    AdapterParseError,
    AdapterTimeoutError,
    AdapterTransportError,
    ConfigurationError,
    InvalidInputError,
)
from rateshop.modules.shipping.carriers.base import Address, Package, Shipment
from rateshop.modules.shipping.carriers.normalization import DELIVERY_DATE_SENTINEL
from rateshop.modules.shipping.carriers.ups import (
    UPS_DEVELOPMENT_RATES_URL,
    UPS_PRODUCTION_RATES_URL,
    UPSCarrier,
    UPSCredentials,
    UPSService,
)

from conftest import mock_transport

CREDENTIALS = UPSCredentials(license_number="LIC123", user_id="shipper", password="secret")


def rated_shipment(code: str, total: str, days: str = "", time: str = "") -> str:
    return (
        "<RatedShipment>"
        f"<Service><Code>{code}</Code></Service>"
        f"<TotalCharges><CurrencyCode>USD</CurrencyCode><MonetaryValue>{total}</MonetaryValue></TotalCharges>"
        f"<GuaranteedDaysToDelivery>{days}</GuaranteedDaysToDelivery>"
        f"<ScheduledDeliveryTime>{time}</ScheduledDeliveryTime>"
        "</RatedShipment>"
    )


def rating_response(*shipments: str) -> str:
    return (
        "<?xml version=\"1.0\"?>"
        "<RatingServiceSelectionResponse>"
        "<Response><ResponseStatusCode>1</ResponseStatusCode><ResponseStatusDescription>Success</ResponseStatusDescription></Response>"
        + "".join(shipments)
        + "</RatingServiceSelectionResponse>"
    )


ERROR_RESPONSE = (
    "<RatingServiceSelectionResponse>"
    "<Response><ResponseStatusCode>0</ResponseStatusCode>"
    "<Error><ErrorSeverity>Hard</ErrorSeverity><ErrorCode>250003</ErrorCode>"
    "<ErrorDescription>Invalid Access License number</ErrorDescription></Error>"
    "</Response></RatingServiceSelectionResponse>"
)


def split_documents(body: bytes):
    """Split the concatenated AccessRequest + RatingServiceSelectionRequest payload."""
    text = body.decode("utf-8")
    marker = "<?xml"
    parts = [marker + part for part in text.split(marker) if part.strip()]
    return [xmltodict.parse(part, force_list=("Package",)) for part in parts]


class TestUPSConfiguration:
    """Test construction and settings."""

    def test_defaults(self):
        carrier = UPSCarrier(CREDENTIALS)
        assert carrier.timeout == 10.0
        assert carrier.services == UPSService.ALL
        assert carrier.carrier_name == "UPS"

    def test_rates_url(self):
        assert CREDENTIALS.rates_url == UPS_PRODUCTION_RATES_URL
        sandbox = UPSCredentials("LIC", "user", "pw", use_production=False)
        assert sandbox.rates_url == UPS_DEVELOPMENT_RATES_URL

    def test_credentials_repr_hides_secrets(self):
        assert "secret" not in repr(CREDENTIALS)
        assert "LIC123" not in repr(CREDENTIALS)

    def test_invalid_timeout(self):
        with pytest.raises(ConfigurationError):
            UPSCarrier(CREDENTIALS, timeout=0)

    def test_service_code_reverse_lookup(self):
        carrier = UPSCarrier(CREDENTIALS)
        assert carrier.service_code_for("UPS Ground") == "03"
        assert carrier.service_code_for("next-day-air") == "01"
        assert carrier.service_code_for("93") == "93"
        assert carrier.service_code_for("Pony Express") is None


class TestUPSValidation:
    """Test pre-flight address checks."""

    def test_origin_postal_code_required(self, destination, packages):
        shipment = Shipment(origin=Address(country_code="US"), destination=destination, packages=packages)
        with pytest.raises(InvalidInputError) as exc_info:
            UPSCarrier(CREDENTIALS).validate_shipment(shipment)
        assert exc_info.value.details["field"] == "origin.postal_code"

    def test_canadian_destination_needs_postal_code(self, origin, packages):
        shipment = Shipment(origin=origin, destination=Address(country_code="CA"), packages=packages)
        with pytest.raises(InvalidInputError):
            UPSCarrier(CREDENTIALS).validate_shipment(shipment)

    def test_european_destination_without_postal_code(self, origin, packages):
        shipment = Shipment(origin=origin, destination=Address(city="Bath", country_code="GB"), packages=packages)
        UPSCarrier(CREDENTIALS).validate_shipment(shipment)

    def test_unknown_single_service_rejected_at_construction(self):
        with pytest.raises(ConfigurationError) as exc_info:
            UPSCarrier(CREDENTIALS, service_description="Teleport")
        assert exc_info.value.details["service_description"] == "Teleport"


class TestUPSRequest:
    """Test rating request serialization."""

    def test_access_request(self, shipment):
        documents = split_documents(UPSCarrier(CREDENTIALS).build_request(shipment))
        access = documents[0]["AccessRequest"]

        assert access["@xml:lang"] == "en-US"
        assert access["AccessLicenseNumber"] == "LIC123"
        assert access["UserId"] == "shipper"
        assert access["Password"] == "secret"

    def test_shop_request(self, shipment):
        documents = split_documents(UPSCarrier(CREDENTIALS).build_request(shipment))
        rating = documents[1]["RatingServiceSelectionRequest"]

        assert rating["Request"]["RequestOption"] == "Shop"
        assert rating["PickupType"]["Code"] == "03"
        assert rating["Shipment"]["Shipper"]["Address"]["PostalCode"] == "06405"
        assert rating["Shipment"]["ShipTo"]["Address"]["PostalCode"] == "20852"
        assert rating["Shipment"]["ShipTo"]["Address"]["CountryCode"] == "US"
        assert "Service" not in rating["Shipment"]
        assert len(rating["Shipment"]["Package"]) == 2

    def test_single_service_request(self, shipment):
        carrier = UPSCarrier(CREDENTIALS, service_description="UPS Ground")
        rating = split_documents(carrier.build_request(shipment))[1]["RatingServiceSelectionRequest"]

        assert rating["Request"]["RequestOption"] == "Rate"
        assert rating["Shipment"]["Service"]["Code"] == "03"

    def test_packages_submitted_rounded_up(self, origin, destination):
        package = Package(Decimal("11.1"), Decimal("7.5"), 3, Decimal("14.3"), Decimal("120.50"))
        shipment = Shipment(origin=origin, destination=destination, packages=[package])

        rating = split_documents(UPSCarrier(CREDENTIALS).build_request(shipment))[1]["RatingServiceSelectionRequest"]
        submitted = rating["Shipment"]["Package"][0]

        assert submitted["PackageWeight"]["Weight"] == "15"
        assert submitted["Dimensions"] == {"Length": "12", "Width": "8", "Height": "3"}
        assert submitted["PackageServiceOptions"]["InsuredValue"]["MonetaryValue"] == "120.50"
        # Original values are untouched
        assert package.weight == Decimal("14.3")
        assert package.length == Decimal("11.1")

    def test_international_destination_omits_postal_code(self, origin, packages):
        destination = Address(city="Bath", postal_code="BA11HX", country_code="GB")
        shipment = Shipment(origin=origin, destination=destination, packages=packages)

        rating = split_documents(UPSCarrier(CREDENTIALS).build_request(shipment))[1]["RatingServiceSelectionRequest"]

        assert rating["Shipment"]["ShipTo"]["Address"] == {"City": "Bath", "CountryCode": "GB"}


class TestUPSResponse:
    """Test rating response parsing."""

    def test_parses_rates(self):
        body = rating_response(
            rated_shipment("01", "42.50", days="1", time="10:30 A.M."),
            rated_shipment("03", "10.00"),
        )
        rates = UPSCarrier(CREDENTIALS).parse_response(body)

        assert len(rates) == 2
        air, ground = rates
        assert air.provider_name == "UPS"
        assert air.service_name == "next-day-air"
        assert air.service_description == "UPS Next Day Air"
        assert air.service_code == "01"
        assert air.total_charges == Decimal("42.50")
        assert air.delivery_date.date() == date.today() + timedelta(days=1)
        assert (air.delivery_date.hour, air.delivery_date.minute) == (10, 30)
        assert ground.service_name == "ground"
        assert ground.delivery_date.date() == DELIVERY_DATE_SENTINEL
        assert not ground.has_guaranteed_delivery

    def test_out_of_range_guaranteed_days_keeps_other_rates(self):
        body = rating_response(
            rated_shipment("01", "42.50", days="1"),
            rated_shipment("03", "10.00", days="99999999"),
        )
        rates = UPSCarrier(CREDENTIALS).parse_response(body)

        assert [r.service_code for r in rates] == ["01", "03"]
        assert rates[0].has_guaranteed_delivery
        assert not rates[1].has_guaranteed_delivery
        assert rates[1].total_charges == Decimal("10.00")

    def test_unknown_service_code_skipped(self):
        body = rating_response(rated_shipment("XX", "5.00"), rated_shipment("03", "10.00"))
        rates = UPSCarrier(CREDENTIALS).parse_response(body)

        assert [r.service_code for r in rates] == ["03"]

    def test_only_unknown_codes_is_not_an_error(self):
        body = rating_response(rated_shipment("XX", "5.00"))
        assert UPSCarrier(CREDENTIALS).parse_response(body) == []

    def test_services_filter(self):
        body = rating_response(
            rated_shipment("01", "42.50", days="1"),
            rated_shipment("02", "30.00", days="2"),
            rated_shipment("03", "10.00"),
        )
        carrier = UPSCarrier(CREDENTIALS, services=UPSService.GROUND | UPSService.SECOND_DAY_AIR)
        rates = carrier.parse_response(body)

        assert sorted(r.service_code for r in rates) == ["02", "03"]

    def test_bad_total_skips_line_only(self):
        body = rating_response(rated_shipment("01", "N/A", days="1"), rated_shipment("03", "10.00"))
        rates = UPSCarrier(CREDENTIALS).parse_response(body)

        assert [r.service_code for r in rates] == ["03"]

    def test_missing_total_skips_line_only(self):
        body = rating_response(
            "<RatedShipment><Service><Code>02</Code></Service></RatedShipment>",
            rated_shipment("03", "10.00"),
        )
        rates = UPSCarrier(CREDENTIALS).parse_response(body)

        assert [r.service_code for r in rates] == ["03"]

    def test_malformed_xml(self):
        with pytest.raises(AdapterParseError) as exc_info:
            UPSCarrier(CREDENTIALS).parse_response("<RatingServiceSelectionResponse><Response>")
        assert exc_info.value.provider_name == "UPS"

    def test_unexpected_document(self):
        with pytest.raises(AdapterParseError):
            UPSCarrier(CREDENTIALS).parse_response("<html><body>Maintenance</body></html>")

    def test_ups_error_response(self):
        with pytest.raises(AdapterTransportError) as exc_info:
            UPSCarrier(CREDENTIALS).parse_response(ERROR_RESPONSE)
        assert "Invalid Access License number" in exc_info.value.message
        assert exc_info.value.details["ups_error_code"] == "250003"


class TestUPSProduceRates:
    """Test the full HTTP round trip with a mock transport."""

    @pytest.mark.asyncio
    async def test_success_appends_to_shipment(self, shipment):
        requests = []
        body = rating_response(rated_shipment("03", "10.00"), rated_shipment("01", "42.50", days="1"))
        carrier = UPSCarrier(CREDENTIALS, transport=mock_transport(200, body, requests))

        rates = await carrier.produce_rates(shipment)

        assert len(rates) == 2
        assert list(shipment.rates) == rates
        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert str(requests[0].url) == UPS_PRODUCTION_RATES_URL
        assert b"<AccessLicenseNumber>LIC123</AccessLicenseNumber>" in requests[0].content

    @pytest.mark.asyncio
    async def test_http_error_status(self, shipment):
        carrier = UPSCarrier(CREDENTIALS, transport=mock_transport(503, "Service Unavailable"))

        with pytest.raises(AdapterTransportError) as exc_info:
            await carrier.produce_rates(shipment)

        assert exc_info.value.status_code == 503
        assert shipment.rates == []

    @pytest.mark.asyncio
    async def test_timeout(self, shipment):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        carrier = UPSCarrier(CREDENTIALS, timeout=2, transport=httpx.MockTransport(handler))

        with pytest.raises(AdapterTimeoutError) as exc_info:
            await carrier.produce_rates(shipment)

        assert exc_info.value.details["timeout_seconds"] == 2.0
        assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)

    @pytest.mark.asyncio
    async def test_network_error(self, shipment):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        carrier = UPSCarrier(CREDENTIALS, transport=httpx.MockTransport(handler))

        with pytest.raises(AdapterTransportError):
            await carrier.produce_rates(shipment)

    @pytest.mark.asyncio
    async def test_parse_error(self, shipment):
        carrier = UPSCarrier(CREDENTIALS, transport=mock_transport(200, "not xml"))

        with pytest.raises(AdapterParseError):
            await carrier.produce_rates(shipment)
