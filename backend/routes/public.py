"""Public Routes - unauthenticated reads for product pages.

GET /api/products/{product_id}/verified-revenue - Verified MRR badge data
"""
from fastapi import APIRouter, HTTPException, status
from services.revenue_verification import revenue_verification_service
from services.revenue_errors import ProductNotFoundError
from services.revenue_display import format_mrr_range, mrr_tier
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/products", tags=["public"])


@router.get("/{product_id}/verified-revenue")
async def get_verified_revenue(product_id: str):
    """Badge data: bucketed range and tier only, never the exact cents."""
    try:
        product = await revenue_verification_service.get_verified_revenue(product_id)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    # Revenue only counts while the account that produced it is still linked
    verified = product.is_connected and product.verified_mrr is not None
    verified_mrr = product.verified_mrr if verified else None
    return {
        "product_id": product.product_id,
        "verified": verified,
        "mrr_range": format_mrr_range(verified_mrr),
        "tier": mrr_tier(verified_mrr),
        "verified_at": product.mrr_verified_at.isoformat() if verified and product.mrr_verified_at else None,
    }
