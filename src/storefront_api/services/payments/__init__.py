from .reconciler import ConfirmationOutcome, ConfirmationReconciler, PaymentChallenge  # noqa: F401
