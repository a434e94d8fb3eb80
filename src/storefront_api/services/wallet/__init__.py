from .ledger import BalanceLedger, LedgerMeta  # noqa: F401

__all__ = ["BalanceLedger", "LedgerMeta"]
