"""Revenue verification error taxonomy.

Every failure the engine can surface maps to one subclass here. Routes turn
them into HTTP responses via `status_code`; nothing in the engine converts an
upstream failure into a zero revenue figure.
"""
from typing import Optional


class RevenueVerificationError(Exception):
    """Base exception for revenue verification operations."""
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UnauthorizedError(RevenueVerificationError):
    """Caller is missing or does not own the product."""
    status_code = 403

    def __init__(self, message: str = "Product not found or unauthorized", authenticated: bool = True):
        self.authenticated = authenticated
        super().__init__(message)


class ProductNotFoundError(RevenueVerificationError):
    status_code = 404

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class NotConnectedError(RevenueVerificationError):
    status_code = 409

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__("No Stripe account connected")


class InvalidStateError(RevenueVerificationError):
    """OAuth state token is missing or failed to decode. Never retried."""
    status_code = 400


class UpstreamError(RevenueVerificationError):
    """Stripe rejected a call or could not be reached."""
    status_code = 502


class ExchangeFailedError(UpstreamError):
    """Stripe refused the OAuth authorization-code exchange."""


class VerificationPendingError(UpstreamError):
    """Account was linked but the first MRR computation failed.

    The link is committed; the caller retries with a refresh.
    """

    def __init__(self, connected_account_id: str, cause: Optional[Exception] = None):
        self.connected_account_id = connected_account_id
        self.cause = cause
        detail = getattr(cause, "message", None) or str(cause or "unknown error")
        super().__init__(f"Stripe account connected but MRR verification failed: {detail}")
