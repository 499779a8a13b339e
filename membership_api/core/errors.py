"""
Billing error taxonomy.

Every error carries an ``error_type`` the UI can branch on and a short
``public_message`` that is safe to return to callers. The exception message
itself may hold internal detail and is only ever logged.
"""


class BillingError(Exception):
    error_type = "unknown_error"
    status_code = 500
    public_message = "Something went wrong. Please try again."

    def __init__(self, message: str = "", public_message: str = None):
        super().__init__(message or self.public_message)
        if public_message:
            self.public_message = public_message


class AuthError(BillingError):
    """Caller identity missing or invalid."""
    error_type = "auth_error"
    status_code = 401
    public_message = "Please sign in again to continue."


class ConfigError(BillingError):
    """Stripe credentials unavailable for the resolved environment."""
    error_type = "config_error"
    status_code = 503
    public_message = "Payments are temporarily unavailable. Please try again later."


class NetworkError(BillingError):
    """Transient failure talking to Stripe; safe for the caller to retry."""
    error_type = "network_error"
    status_code = 502
    public_message = "We could not reach the payment provider. Please try again."


class ValidationError(BillingError):
    error_type = "validation_error"
    status_code = 400
    public_message = "The request was invalid."


class InvalidPriceError(ValidationError):
    error_type = "invalid_price"
    public_message = "This plan is not available for purchase."


class InvalidPromoError(ValidationError):
    error_type = "invalid_promo"
    public_message = "This promo code is not valid."


class WebhookSignatureError(BillingError):
    """Webhook payload could not be verified. Never retried usefully."""
    error_type = "invalid_signature"
    status_code = 400
    public_message = "Invalid webhook signature"
