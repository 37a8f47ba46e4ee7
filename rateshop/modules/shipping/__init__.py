"""
Shipping Module

- BaseCarrier interface for all carrier implementations
- Carrier-agnostic value records shared by carriers and the RateManager
- Rate adjusters applied to quoted totals
"""
from rateshop.modules.shipping.carriers import CarrierFactory
from rateshop.modules.shipping.carriers.base import (
    Address,
    AvailableService,
    BaseCarrier,
    CarrierCode,
    Package,
    Rate,
    Shipment,
)
from rateshop.modules.shipping.carriers.fedex import FedExCarrier, FedExCredentials, FedExService
from rateshop.modules.shipping.carriers.ups import UPSCarrier, UPSCredentials, UPSService
from rateshop.modules.shipping.carriers.usps import USPSCarrier, USPSCredentials, USPSService
from rateshop.modules.shipping.adjusters import PercentageRateAdjuster, RateAdjuster

__all__ = [
    "Address",
    "AvailableService",
    "BaseCarrier",
    "CarrierCode",
    "CarrierFactory",
    "FedExCarrier",
    "FedExCredentials",
    "FedExService",
    "Package",
    "PercentageRateAdjuster",
    "Rate",
    "RateAdjuster",
    "Shipment",
    "UPSCarrier",
    "UPSCredentials",
    "UPSService",
    "USPSCarrier",
    "USPSCredentials",
    "USPSService",
]
