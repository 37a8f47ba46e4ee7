"""
Rate adjusters.

An adjuster transforms the total charges of a quoted rate (discounts,
markups). The RateManager runs adjusters in registration order. Adjusters
only change total_charges; carrier, service and delivery date stay as the
carrier reported them because final ordering depends on them.
"""
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Union

from rateshop.core.exceptions import ConfigurationError
from rateshop.modules.shipping.carriers.base import Rate

CENTS = Decimal("0.01")


class RateAdjuster(ABC):
    """Base class for a stage of the rate adjustment pipeline."""

    @abstractmethod
    def adjust(self, rate: Rate) -> Rate:
        """Return the rate with adjusted total charges."""
        pass


class PercentageRateAdjuster(RateAdjuster):
    """
    Multiply total charges by a fixed factor.

    PercentageRateAdjuster("0.9") is a 10% discount. The product is left
    unrounded; RateManager rounds to cents after the last adjuster.
    """

    def __init__(self, factor: Union[Decimal, str, int, float]):
        # str() keeps 0.9 as Decimal("0.9") instead of its binary expansion
        try:
            self.factor = factor if isinstance(factor, Decimal) else Decimal(str(factor))
        except InvalidOperation:
            raise ConfigurationError(f"Adjustment factor must be a number, got {factor!r}")
        if not self.factor.is_finite() or self.factor < 0:
            raise ConfigurationError(f"Adjustment factor must be a non-negative number, got {factor!r}")

    def adjust(self, rate: Rate) -> Rate:
        return rate.with_total_charges(rate.total_charges * self.factor)

    def __repr__(self) -> str:
        return f"PercentageRateAdjuster(factor={self.factor})"
