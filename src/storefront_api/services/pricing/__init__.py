from .aggregator import CheckoutTotals, PricingAggregator  # noqa: F401
