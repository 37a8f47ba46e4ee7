"""
Base Carrier Interface

- All carriers implement BaseCarrier (configure at construction,
  produce_rates(shipment) at quote time)
- Carrier-agnostic value records (Address, Package, Rate, Shipment) are shared
  by the carriers, the adjusters and the RateManager
- Each carrier owns its own request building and response parsing; the
  shared normalization (service lookup, filter flags, delivery dates,
  charges) lives here so every carrier applies it the same way
"""
import asyncio
import dataclasses
import enum
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import httpx

from rateshop.core.exceptions import (
    AdapterError,
    AdapterParseError,
    AdapterTimeoutError,
    AdapterTransportError,
    ConfigurationError,
    InvalidInputError,
)
from rateshop.modules.shipping.carriers.countries import ISO_COUNTRY_CODES
from rateshop.modules.shipping.carriers.normalization import (
    estimate_delivery_date,
    is_sentinel_date,
    parse_charges,
)

logger = logging.getLogger(__name__)

Number = Union[int, float, Decimal]

DEFAULT_TIMEOUT_SECONDS = 10.0


class CarrierCode(str, enum.Enum):
    """Supported shipping carriers."""
    UPS = "UPS"
    USPS = "USPS"
    FEDEX = "FEDEX"


# =============================================================================
# Carrier-Agnostic Data Classes
# =============================================================================

@dataclass(frozen=True)
class Address:
    """Origin or destination address. Only the fields carriers rate on."""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country_code: str = "US"

    def __post_init__(self):
        country = (self.country_code or "").strip().upper()
        if country not in ISO_COUNTRY_CODES:
            raise InvalidInputError(
                f"Country code must be an ISO 3166 alpha-2 code, got {self.country_code!r}",
                field="country_code",
            )
        object.__setattr__(self, "country_code", country)
        object.__setattr__(self, "postal_code", (self.postal_code or "").strip())

    def is_united_states_address(self) -> bool:
        return self.country_code == "US"

    def is_canada_address(self) -> bool:
        return self.country_code == "CA"

    @property
    def requires_postal_code(self) -> bool:
        """US and Canadian rates are only accurate with a postal code."""
        return self.is_united_states_address() or self.is_canada_address()


@dataclass(frozen=True)
class Package:
    """
    Package dimensions (inches), weight (pounds) and insured value (USD).

    The precise values are kept for display and insurance. Carriers submit the
    rounded_* views, which round up to whole units (weight at least 1).
    """
    length: Number
    width: Number
    height: Number
    weight: Number
    insured_value: Number = 0

    def __post_init__(self):
        if self.weight is None or self.weight <= 0:
            raise InvalidInputError(
                f"Package weight must be greater than zero, got {self.weight!r}",
                field="weight",
            )
        for name in ("length", "width", "height", "insured_value"):
            if getattr(self, name) < 0:
                raise InvalidInputError(f"Package {name} cannot be negative", field=name)

    @property
    def rounded_weight(self) -> int:
        return max(1, math.ceil(self.weight))

    @property
    def rounded_length(self) -> int:
        return math.ceil(self.length)

    @property
    def rounded_width(self) -> int:
        return math.ceil(self.width)

    @property
    def rounded_height(self) -> int:
        return math.ceil(self.height)


@dataclass(frozen=True)
class Rate:
    """Normalized shipping offer produced by a carrier adapter."""
    provider_name: str
    service_name: str
    service_description: str
    total_charges: Decimal
    delivery_date: datetime
    service_code: str = ""

    def __post_init__(self):
        if self.total_charges < 0:
            raise ValueError(f"total_charges cannot be negative: {self.total_charges}")

    @property
    def has_guaranteed_delivery(self) -> bool:
        return not is_sentinel_date(self.delivery_date)

    def with_total_charges(self, total_charges: Decimal) -> "Rate":
        """Copy of this rate with a new total. Used by rate adjusters."""
        return dataclasses.replace(self, total_charges=total_charges)

    def __str__(self) -> str:
        delivery = self.delivery_date.strftime("%Y-%m-%d %I:%M %p") if self.has_guaranteed_delivery else "no guarantee"
        return f"{self.provider_name} {self.service_description}: ${self.total_charges} ({delivery})"


@dataclass
class Shipment:
    """
    Unit of work for one RateManager.get_rates() call.

    Carriers append rates concurrently through add_rates(); the manager
    finalizes the shipment (adjusted, sorted, frozen rates) before handing it
    back to the caller.
    """
    origin: Address
    destination: Address
    packages: Sequence[Package]
    rates: Sequence[Rate] = field(default_factory=list)
    errors: List[AdapterError] = field(default_factory=list)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False, compare=False)
    _finalized: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self):
        self.packages = tuple(self.packages)
        if not self.packages:
            raise InvalidInputError("At least one package is required", field="packages")
        self.rates = list(self.rates)

    async def add_rates(self, rates: Iterable[Rate]) -> None:
        async with self._lock:
            if self._finalized:
                raise RuntimeError("Cannot add rates to a finalized shipment")
            self.rates.extend(rates)

    def record_error(self, error: AdapterError) -> None:
        self.errors.append(error)

    def finalize(self, rates: Iterable[Rate]) -> None:
        self.rates = tuple(rates)
        self._finalized = True

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    @property
    def total_weight(self) -> Number:
        return sum(p.weight for p in self.packages)

    @property
    def total_insured_value(self) -> Number:
        return sum(p.insured_value for p in self.packages)


# =============================================================================
# Base Carrier Interface
# =============================================================================

@dataclass(frozen=True)
class AvailableService:
    """One entry of a carrier's service-code table."""
    description: str
    flag: enum.Flag

    @property
    def name(self) -> str:
        """Normalized service key, e.g. NEXT_DAY_AIR -> "next-day-air"."""
        return self.flag.name.lower().replace("_", "-")


class BaseCarrier(ABC):
    """
    Abstract base class for all shipping carriers.

    Subclasses provide SERVICE_CODES (wire code -> AvailableService),
    ALL_SERVICES (the full flag set) and request_rates(). produce_rates() is
    the only method the RateManager calls.
    """

    SERVICE_CODES: Mapping[str, AvailableService] = MappingProxyType({})
    ALL_SERVICES: Optional[enum.Flag] = None

    def __init__(
        self,
        timeout: Optional[float] = None,
        services: Optional[enum.Flag] = None,
        service_description: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Configure the carrier.

        Args:
            timeout: Seconds allowed for the whole rate request (default 10)
            services: Flag set of services to keep (default: all)
            service_description: Restrict the request to this single service
            transport: Optional httpx transport (tests, proxies)
        """
        if timeout is not None and timeout <= 0:
            raise ConfigurationError(f"{self.__class__.__name__} timeout must be greater than zero")
        self.timeout = float(timeout) if timeout is not None else DEFAULT_TIMEOUT_SECONDS
        self.services = services if services is not None else self.ALL_SERVICES
        self.service_description = (service_description or "").strip()
        self.service_code: Optional[str] = None
        if self.service_description:
            self.service_code = self.service_code_for(self.service_description)
            if self.service_code is None:
                raise ConfigurationError(
                    f"Unknown {self.__class__.__name__} service {self.service_description!r}",
                    details={"service_description": self.service_description},
                )
        self._transport = transport

    @classmethod
    def from_settings(cls, settings) -> Optional["BaseCarrier"]:
        """
        Build a configured instance from application settings.

        Returns None when the carrier is disabled or has no credentials.
        Carriers without settings support are never built by CarrierFactory.
        """
        logger.debug(f"{cls.__name__} has no settings support")
        return None

    @property
    @abstractmethod
    def carrier_code(self) -> CarrierCode:
        """Return the carrier code enum value."""
        pass

    @property
    @abstractmethod
    def carrier_name(self) -> str:
        """Return the human-readable carrier name."""
        pass

    @abstractmethod
    async def request_rates(self, client: httpx.AsyncClient, shipment: Shipment) -> List[Rate]:
        """
        Send the carrier request and parse its response.

        Args:
            client: HTTP client scoped to this call
            shipment: Shipment being quoted

        Returns:
            Rates for the recognized, requested services
        """
        pass

    def validate_shipment(self, shipment: Shipment) -> None:
        """Raise InvalidInputError if the carrier cannot quote this shipment."""
        return None

    async def produce_rates(self, shipment: Shipment) -> List[Rate]:
        """
        Quote the shipment and append the resulting rates to it.

        Raises:
            AdapterTimeoutError, AdapterTransportError, AdapterParseError
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                rates = await self.request_rates(client, shipment)
        except AdapterError:
            raise
        except httpx.TimeoutException as e:
            raise AdapterTimeoutError(
                f"{self.carrier_name} did not respond within {self.timeout:g}s",
                provider_name=self.carrier_name,
                timeout=self.timeout,
            ) from e
        except httpx.HTTPError as e:
            raise AdapterTransportError(
                f"{self.carrier_name} request failed: {e}",
                provider_name=self.carrier_name,
            ) from e

        await shipment.add_rates(rates)
        logger.info(f"Got {len(rates)} rates from {self.carrier_name}")
        return rates

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        """Issue one request; non-2xx responses become AdapterTransportError."""
        response = await client.request(method, url, **kwargs)
        logger.debug(f"{self.carrier_name} API {method} {url} -> {response.status_code}")

        if not response.is_success:
            raise AdapterTransportError(
                f"{self.carrier_name} returned HTTP {response.status_code}",
                provider_name=self.carrier_name,
                status_code=response.status_code,
                details={"body": response.text[:500]},
            )
        return response

    def _parse_error(self, message: str, cause: Optional[Exception] = None) -> AdapterParseError:
        detail = f": {cause}" if cause else ""
        return AdapterParseError(f"{self.carrier_name} {message}{detail}", provider_name=self.carrier_name)

    def lookup_service(self, service_code: str) -> Optional[AvailableService]:
        """
        Map a wire-level service code to its table entry.

        Returns None for unknown codes, for services outside the configured
        filter, and for other services when a single service is configured;
        none of these is an error.
        """
        code = (service_code or "").strip()
        service = self.SERVICE_CODES.get(code)
        if service is None:
            logger.debug(f"{self.carrier_name} returned unknown service code {service_code!r}, skipping")
            return None
        if self.services is None or service.flag not in self.services:
            return None
        if self.service_code is not None and code != self.service_code:
            return None
        return service

    def build_rate(
        self,
        service_code: str,
        total_charges: Optional[str],
        guaranteed_days: Optional[Union[int, str]] = None,
        scheduled_time: Optional[str] = None,
        today: Optional[date] = None,
        delivery_date: Optional[datetime] = None,
    ) -> Optional[Rate]:
        """
        Normalize one carrier rate line, or return None to skip it.

        Lines are skipped for unknown or filtered service codes and for
        unusable totals; the rest of the response is still processed.
        Carriers that quote a committed delivery timestamp pass it as
        delivery_date instead of guaranteed_days.
        """
        service = self.lookup_service(service_code)
        if service is None:
            return None

        try:
            charges = parse_charges(total_charges)
        except ValueError as e:
            logger.warning(f"{self.carrier_name} {service.description}: skipping rate line, {e}")
            return None

        if delivery_date is None:
            delivery_date = estimate_delivery_date(guaranteed_days, scheduled_time, today=today)

        return Rate(
            provider_name=self.carrier_name,
            service_name=service.name,
            service_description=service.description,
            total_charges=charges,
            delivery_date=delivery_date,
            service_code=service_code.strip(),
        )

    def service_code_for(self, description: str) -> Optional[str]:
        """Reverse lookup: service description or key -> wire code."""
        wanted = description.strip().lower()
        for code, service in self.SERVICE_CODES.items():
            if wanted in (code.lower(), service.description.lower(), service.name):
                return code
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(timeout={self.timeout:g}, services={self.services!r})"


def sort_key(rate: Rate) -> Tuple:
    """
    Final ordering of quoted rates.

    Rates with a concrete delivery date come first, then ascending charges,
    then earliest delivery, then names for a fully deterministic order.
    """
    return (
        not rate.has_guaranteed_delivery,
        rate.total_charges,
        rate.delivery_date,
        rate.provider_name,
        rate.service_name,
        rate.service_code,
    )
