from .evaluator import AppliedVoucher, DiscountEvaluator, DiscountSummary  # noqa: F401
from .ledger import VoucherLedger, normalize_code  # noqa: F401
