"""Stripe Connect Routes - verified revenue for maker products.

Endpoints:
- POST /api/stripe-connect/connect - Start OAuth, returns Stripe authorization URL
- POST /api/stripe-connect/callback - Finish OAuth, link account and verify MRR
- POST /api/stripe-connect/refresh - Recompute verified MRR
- POST /api/stripe-connect/product-filter - Choose which Stripe products count
- POST /api/stripe-connect/disconnect - Unlink the Stripe account
- GET /api/stripe-connect/products/{product_id}/catalog - Connected account's products
"""
from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel
from typing import Optional
from services.revenue_verification import revenue_verification_service
from services.revenue_errors import RevenueVerificationError, UnauthorizedError, VerificationPendingError
from services.revenue_display import format_mrr_range
from middleware import require_auth, get_current_user_id
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/stripe-connect", tags=["stripe-connect"])


class ProductRequest(BaseModel):
    product_id: str


class CallbackRequest(BaseModel):
    code: Optional[str] = None
    state: Optional[str] = None


class ProductFilterRequest(BaseModel):
    product_id: str
    stripe_product_id: Optional[str] = None  # comma-separated; empty counts everything


def _to_http_exception(e: RevenueVerificationError) -> HTTPException:
    if isinstance(e, UnauthorizedError) and not e.authenticated:
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if isinstance(e, VerificationPendingError):
        return HTTPException(
            status_code=e.status_code,
            detail={
                "message": e.message,
                "connected_account_id": e.connected_account_id,
                "retry": "refresh",
            },
        )
    return HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/connect")
async def connect(request: Request, body: ProductRequest):
    """Return the Stripe Connect OAuth URL for a product the caller owns."""
    user = await require_auth(request)
    try:
        url = await revenue_verification_service.begin_link(body.product_id, user["user_id"])
    except RevenueVerificationError as e:
        raise _to_http_exception(e)
    except ValueError as e:
        logger.error(f"Stripe Connect misconfigured: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe Connect is not configured"
        )
    return {"url": url}


@router.post("/callback")
async def callback(request: Request, body: CallbackRequest):
    """
    Complete the OAuth flow.

    Authorization header is optional here: the state token names the product
    and maker. When a bearer token is sent it must belong to that maker.
    """
    user_id = await get_current_user_id(request)
    try:
        result = await revenue_verification_service.complete_link(body.code, body.state, user_id)
    except RevenueVerificationError as e:
        raise _to_http_exception(e)
    return {
        "success": True,
        "connected_account_id": result.connected_account_id,
        "mrr": result.verified_revenue_cents,
        "mrr_range": format_mrr_range(result.verified_revenue_cents),
    }


@router.post("/refresh")
async def refresh(request: Request, body: ProductRequest):
    user = await require_auth(request)
    try:
        mrr = await revenue_verification_service.refresh(body.product_id, user["user_id"])
    except RevenueVerificationError as e:
        raise _to_http_exception(e)
    return {"success": True, "mrr": mrr, "mrr_range": format_mrr_range(mrr)}


@router.post("/product-filter")
async def set_product_filter(request: Request, body: ProductFilterRequest):
    """Persist the product filter; `mrr` is null until an account is connected."""
    user = await require_auth(request)
    try:
        mrr = await revenue_verification_service.set_filter(
            body.product_id, user["user_id"], body.stripe_product_id
        )
    except RevenueVerificationError as e:
        raise _to_http_exception(e)
    return {"success": True, "mrr": mrr}


@router.post("/disconnect")
async def disconnect(request: Request, body: ProductRequest):
    user = await require_auth(request)
    try:
        await revenue_verification_service.disconnect(body.product_id, user["user_id"])
    except RevenueVerificationError as e:
        raise _to_http_exception(e)
    return {"success": True}


@router.get("/products/{product_id}/catalog")
async def list_catalog(request: Request, product_id: str):
    """Stripe products on the connected account, most-subscribed first."""
    user = await require_auth(request)
    try:
        entries = await revenue_verification_service.list_catalog(product_id, user["user_id"])
    except RevenueVerificationError as e:
        raise _to_http_exception(e)
    return {
        "products": [
            {"id": e.external_id, "name": e.name, "subscriptionCount": e.active_subscription_count}
            for e in entries
        ]
    }
