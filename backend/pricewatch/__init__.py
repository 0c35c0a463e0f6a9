"""PriceWatch: competitor price tracking, alerting and market intelligence."""

__version__ = "0.1.0"
