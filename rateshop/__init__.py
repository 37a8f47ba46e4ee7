"""rateshop - multi-carrier shipping rate aggregation."""

__version__ = "1.0.0"
