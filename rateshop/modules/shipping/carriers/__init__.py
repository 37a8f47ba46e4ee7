"""
Carrier Registry and Factory

- Carrier classes register themselves with @register_carrier
- CarrierFactory builds configured carrier instances from settings
- The RateManager only ever sees BaseCarrier instances
"""
from typing import Dict, List, Optional, Type
import logging

from rateshop.modules.shipping.carriers.base import BaseCarrier, CarrierCode

logger = logging.getLogger(__name__)

# Registry of carrier implementations
_CARRIER_REGISTRY: Dict[CarrierCode, Type[BaseCarrier]] = {}


def register_carrier(carrier_code: CarrierCode):
    """
    Decorator to register a carrier implementation.

    Usage:
        @register_carrier(CarrierCode.UPS)
        class UPSCarrier(BaseCarrier):
            ...
    """
    def decorator(cls: Type[BaseCarrier]):
        _CARRIER_REGISTRY[carrier_code] = cls
        logger.debug(f"Registered carrier: {carrier_code.value} -> {cls.__name__}")
        return cls
    return decorator


class CarrierFactory:
    """
    Factory for creating carrier instances from settings.

    Carriers that are disabled or missing credentials are left out.
    """

    @classmethod
    def get_carrier(cls, carrier_code: CarrierCode, settings) -> Optional[BaseCarrier]:
        """
        Get a configured carrier instance.

        Returns:
            BaseCarrier instance or None if disabled/not configured/not found
        """
        carrier_cls = _CARRIER_REGISTRY.get(carrier_code)
        if not carrier_cls:
            logger.warning(f"No implementation registered for carrier: {carrier_code.value}")
            return None
        return carrier_cls.from_settings(settings)

    @classmethod
    def get_enabled_carriers(cls, settings) -> List[BaseCarrier]:
        """Get every carrier that is enabled and configured."""
        carriers = []
        for code in cls.get_registered_carriers():
            carrier = cls.get_carrier(code, settings)
            if carrier:
                carriers.append(carrier)
        return carriers

    @classmethod
    def get_registered_carriers(cls) -> List[CarrierCode]:
        """Get list of all registered carrier codes."""
        return list(_CARRIER_REGISTRY.keys())


# Import carriers to trigger registration
# These imports must be at the bottom to avoid circular imports
from rateshop.modules.shipping.carriers.ups import UPSCarrier  # noqa: E402, F401
from rateshop.modules.shipping.carriers.usps import USPSCarrier  # noqa: E402, F401
from rateshop.modules.shipping.carriers.fedex import FedExCarrier  # noqa: E402, F401
