from .settlement import CheckoutQuote, SettlementResult, SettlementService  # noqa: F401
