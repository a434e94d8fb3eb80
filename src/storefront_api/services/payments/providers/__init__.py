from .nets import NetsQrGateway, NetsStatus, QrChallenge  # noqa: F401
from .paypal import PaypalCapture, PaypalGateway, PaypalOrder  # noqa: F401
