"""
Canonical public frontend base URL for OAuth redirects.
Use get_stripe_connect_redirect_uri() for the Stripe Connect return leg. No other code should build frontend links directly.
"""
import os
import logging

logger = logging.getLogger(__name__)

STRIPE_CALLBACK_PATH = "/settings?stripe_callback=true"


def get_public_app_url() -> str:
    """
    Return normalized public frontend base URL (no trailing slash).
    Fallback order: FRONTEND_PUBLIC_URL, PRODUCTION_URL, PUBLIC_APP_URL, VERCEL_URL (as https).

    Rules:
    - Result is stripped and trailing slash removed.
    - Outside localhost, http is upgraded to https.
    - In production a missing or localhost URL raises ValueError so Stripe is never
      handed a redirect the maker cannot reach.
    """
    raw = (
        (os.getenv("FRONTEND_PUBLIC_URL") or "").strip()
        or (os.getenv("PRODUCTION_URL") or "").strip()
        or (os.getenv("PUBLIC_APP_URL") or "").strip()
    )
    if not raw and os.getenv("VERCEL_URL"):
        raw = f"https://{os.getenv('VERCEL_URL', '').strip()}"
    raw = raw.rstrip("/")

    env = (os.getenv("ENVIRONMENT") or os.getenv("ENV") or "").strip().lower()
    is_production = env in ("production", "prod")

    if not raw:
        if is_production:
            raise ValueError(
                "FRONTEND_PUBLIC_URL or PRODUCTION_URL must be set for Stripe Connect redirects. "
                "Set FRONTEND_PUBLIC_URL=https://<your-frontend-domain> (no trailing slash)."
            )
        return "http://localhost:3000"
    if raw.startswith("http://") and "localhost" not in raw:
        raw = "https://" + raw.split("://", 1)[1]
    if "localhost" in raw.lower():
        if is_production:
            raise ValueError(
                "FRONTEND_PUBLIC_URL (or PRODUCTION_URL) must be your public frontend URL in production (no localhost)."
            )
        logger.warning("get_public_app_url: using localhost; set FRONTEND_PUBLIC_URL for production.")
    return raw


def get_stripe_connect_redirect_uri() -> str:
    """Where Stripe sends the maker back after authorizing; the settings page completes the link."""
    return f"{get_public_app_url()}{STRIPE_CALLBACK_PATH}"
