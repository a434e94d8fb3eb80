"""SQLAlchemy models package."""

# Import all models
from .user import User, UserRoleEnum  # noqa: F401
from .product import Product  # noqa: F401
from .cart import CartLine  # noqa: F401
from .voucher import (  # noqa: F401
    DiscountMode,
    Voucher,
    VoucherKind,
    VoucherProduct,
    VoucherRedemption,
    VoucherScope,
)
from .receipt import (  # noqa: F401
    PaymentRailEnum,
    Receipt,
    ReceiptDiscount,
    ReceiptItem,
    ReceiptStatusEnum,
)
from .order import OrderLine  # noqa: F401
from .wallet import WalletAccount, WalletEntryType, WalletLedgerEntry  # noqa: F401
from .subscription import Subscription  # noqa: F401
from .loyalty import LoyaltyAccount  # noqa: F401
from .payment import (  # noqa: F401
    ExternalPayment,
    ExternalPaymentStatusEnum,
    PaymentProviderEnum,
    PaymentPurposeEnum,
)
from .refund import RefundRequest, RefundRequestStatusEnum  # noqa: F401
