"""
Multi-Carrier Rate Manager

- Quotes a shipment against every registered carrier concurrently
- A failing or slow carrier only loses its own rates; its error is recorded
  on the shipment and the other carriers still answer
- Applies the rate adjuster pipeline in registration order and rounds the
  adjusted totals to cents once
- Returns the shipment with rates sorted: guaranteed delivery dates first,
  then cheapest, then earliest, then by carrier/service name

Usage:
    manager = RateManager()
    manager.add_provider(UPSCarrier(credentials))
    manager.add_rate_adjuster(PercentageRateAdjuster("0.9"))
    shipment = await manager.get_rates(origin, destination, packages)
"""
import asyncio
import logging
from decimal import ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from rateshop.core.exceptions import AdapterError, AdapterTimeoutError
from rateshop.modules.shipping.adjusters import CENTS, PercentageRateAdjuster, RateAdjuster
from rateshop.modules.shipping.carriers import CarrierFactory
from rateshop.modules.shipping.carriers.base import (
    Address,
    BaseCarrier,
    Package,
    Rate,
    Shipment,
    sort_key,
)

logger = logging.getLogger(__name__)


class RateManager:
    """
    Aggregates rates from all registered carriers.

    Registration order of carriers has no effect on the result; the order of
    adjusters does.
    """

    def __init__(
        self,
        providers: Optional[Iterable[BaseCarrier]] = None,
        adjusters: Optional[Iterable[RateAdjuster]] = None,
    ):
        self._providers: List[BaseCarrier] = list(providers or [])
        self._adjusters: List[RateAdjuster] = list(adjusters or [])

    @classmethod
    def from_settings(cls, settings) -> "RateManager":
        """Build a manager with every configured carrier and the configured adjustment."""
        manager = cls(CarrierFactory.get_enabled_carriers(settings))
        if settings.RATE_ADJUSTMENT_FACTOR is not None:
            manager.add_rate_adjuster(PercentageRateAdjuster(settings.RATE_ADJUSTMENT_FACTOR))
        if not manager.providers:
            logger.warning("No carriers configured for rate lookup")
        return manager

    @property
    def providers(self) -> Tuple[BaseCarrier, ...]:
        return tuple(self._providers)

    @property
    def adjusters(self) -> Tuple[RateAdjuster, ...]:
        return tuple(self._adjusters)

    def add_provider(self, provider: BaseCarrier) -> None:
        self._providers.append(provider)

    def add_rate_adjuster(self, adjuster: RateAdjuster) -> None:
        self._adjusters.append(adjuster)

    async def get_rates(
        self,
        origin: Address,
        destination: Address,
        packages: Union[Package, Sequence[Package]],
    ) -> Shipment:
        """
        Get shipping rates from all registered carriers.

        Args:
            origin: Origin address
            destination: Destination address
            packages: One package or a non-empty sequence of packages

        Returns:
            Finalized Shipment. Rates may be empty; carrier failures are
            listed in shipment.errors.

        Raises:
            InvalidInputError: no packages, or a carrier cannot quote the
                addresses given (raised before any carrier is called)
        """
        if isinstance(packages, Package):
            packages = [packages]
        shipment = Shipment(origin=origin, destination=destination, packages=packages or [])

        for provider in self._providers:
            provider.validate_shipment(shipment)

        if self._providers:
            logger.info(f"Fetching rates from {len(self._providers)} carriers")
            await asyncio.gather(*(self._produce_rates(provider, shipment) for provider in self._providers))
        else:
            logger.warning("No carriers registered for rate lookup")

        rates = [self._adjust(rate) for rate in shipment.rates]
        rates.sort(key=sort_key)
        shipment.finalize(rates)

        if shipment.errors:
            failed = ", ".join(e.provider_name or "unknown" for e in shipment.errors)
            logger.warning(f"Rate lookup finished with {len(rates)} rates; failed carriers: {failed}")
        return shipment

    def get_rates_sync(
        self,
        origin: Address,
        destination: Address,
        packages: Union[Package, Sequence[Package]],
    ) -> Shipment:
        """Blocking wrapper around get_rates() for callers without an event loop."""
        return asyncio.run(self.get_rates(origin, destination, packages))

    async def _produce_rates(self, provider: BaseCarrier, shipment: Shipment) -> None:
        """Run one carrier, bounded by its timeout. Never raises."""
        name = provider.carrier_name
        try:
            await asyncio.wait_for(provider.produce_rates(shipment), timeout=provider.timeout)
        except asyncio.TimeoutError as e:
            error = AdapterTimeoutError(
                f"{name} did not respond within {provider.timeout:g}s",
                provider_name=name,
                timeout=provider.timeout,
            )
            error.__cause__ = e
            self._record(shipment, error)
        except AdapterError as e:
            if e.provider_name is None:
                e.provider_name = name
                e.details["provider_name"] = name
            self._record(shipment, e)
        except Exception as e:
            logger.exception(f"Unexpected error getting rates from {name}")
            error = AdapterError(f"{name} failed: {e}", provider_name=name)
            error.__cause__ = e
            self._record(shipment, error)

    @staticmethod
    def _record(shipment: Shipment, error: AdapterError) -> None:
        logger.error(f"Error getting rates from {error.provider_name}: {error.message}")
        shipment.record_error(error)

    def _adjust(self, rate: Rate) -> Rate:
        """Run the adjuster pipeline, rounding to cents once at the end."""
        if not self._adjusters:
            return rate
        for adjuster in self._adjusters:
            rate = adjuster.adjust(rate)
        return rate.with_total_charges(rate.total_charges.quantize(CENTS, rounding=ROUND_HALF_UP))
