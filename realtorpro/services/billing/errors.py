"""Shared error classes for subscription billing."""

from __future__ import annotations


class BillingError(RuntimeError):
    """Base exception raised by billing services."""

    def __init__(self, message: str, code: str = "BILLING_ERROR") -> None:
        super().__init__(message)
        self.code = code


class SignatureVerificationError(BillingError):
    """Raised when a webhook cannot be attributed to the payment gateway."""

    def __init__(self, message: str = "Invalid signature", code: str = "401_INVALID_SIGNATURE"):
        super().__init__(message, code=code)


class InvalidWebhookPayloadError(BillingError):
    """Raised when a verified webhook body is not a usable event."""

    def __init__(self, message: str = "Invalid payload", code: str = "400_INVALID_PAYLOAD"):
        super().__init__(message, code=code)


class BillingStorageError(BillingError):
    """Raised when the data store fails; callers may retry."""


class DuplicatePaymentError(BillingError):
    """Raised when the ledger already holds a row for the payment id."""

    def __init__(self, payment_id: str) -> None:
        super().__init__(f"Payment {payment_id} already recorded", code="DUPLICATE_PAYMENT")
        self.payment_id = payment_id


class WebhookQueueFullError(BillingError):
    """Raised when the in-process webhook queue cannot accept more events."""

    def __init__(self, message: str = "Webhook queue is full") -> None:
        super().__init__(message, code="QUEUE_FULL")


class PaymentGatewayError(BillingError):
    """Base error for payment gateway client failures."""

    def __init__(self, message: str, code: str = "YOOKASSA_ERROR") -> None:
        super().__init__(message, code=code)


class PaymentGatewayUnavailableError(PaymentGatewayError):
    """Raised when gateway credentials are not configured."""

    def __init__(self, message: str = "Payment service not available") -> None:
        super().__init__(message, code="YOOKASSA_NOT_CONFIGURED")


class PaymentGatewayTimeoutError(PaymentGatewayError):
    """Raised when a gateway request times out."""

    def __init__(self, message: str = "YooKassa request timed out") -> None:
        super().__init__(message, code="YOOKASSA_TIMEOUT")
