"""
Pytest configuration and fixtures for rateshop tests.
"""
import asyncio
import enum
from types import MappingProxyType
from typing import List, Optional, Sequence, Tuple

import httpx
import pytest

from rateshop.modules.shipping.carriers.base import (
    Address,
    AvailableService,
    BaseCarrier,
    CarrierCode,
    Package,
    Rate,
    Shipment,
)


class StubService(enum.Flag):
    GROUND = 1
    EXPRESS = 2
    ALL = 3


STUB_SERVICE_CODES = MappingProxyType({
    "GND": AvailableService("Stub Ground", StubService.GROUND),
    "EXP": AvailableService("Stub Express", StubService.EXPRESS),
})


class StubCarrier(BaseCarrier):
    """
    In-memory carrier for RateManager tests.

    lines: (service_code, total_charges, guaranteed_days, scheduled_time)
    """

    SERVICE_CODES = STUB_SERVICE_CODES
    ALL_SERVICES = StubService.ALL

    def __init__(
        self,
        name: str = "STUB",
        lines: Sequence[Tuple] = (),
        error: Optional[Exception] = None,
        delay: float = 0,
        timeout: Optional[float] = None,
        services: Optional[StubService] = None,
    ):
        super().__init__(timeout=timeout, services=services)
        self._name = name
        self.lines = list(lines)
        self.error = error
        self.delay = delay
        self.calls = 0

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.UPS

    @property
    def carrier_name(self) -> str:
        return self._name

    async def request_rates(self, client: httpx.AsyncClient, shipment: Shipment) -> List[Rate]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        rates = []
        for line in self.lines:
            rate = self.build_rate(*line)
            if rate is not None:
                rates.append(rate)
        return rates


@pytest.fixture
def origin() -> Address:
    return Address(city="Madison", state="CT", postal_code="06405", country_code="US")


@pytest.fixture
def destination() -> Address:
    return Address(city="Rockville", state="MD", postal_code="20852", country_code="US")


@pytest.fixture
def packages() -> List[Package]:
    """Two packages: 12x12x12 35 lb insured 150, 4x4x6 15 lb insured 250."""
    return [
        Package(12, 12, 12, 35, 150),
        Package(4, 4, 6, 15, 250),
    ]


@pytest.fixture
def shipment(origin, destination, packages) -> Shipment:
    return Shipment(origin=origin, destination=destination, packages=packages)


def mock_transport(status_code: int = 200, text: str = "", requests: Optional[list] = None) -> httpx.MockTransport:
    """MockTransport answering every request with the same body."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status_code, text=text)

    return httpx.MockTransport(handler)
