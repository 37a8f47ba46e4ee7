from rateshop.services.rate_manager import RateManager

__all__ = ["RateManager"]
