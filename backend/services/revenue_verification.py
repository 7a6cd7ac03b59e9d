"""Revenue Verification Service - Stripe Connect linking and verified MRR.

This service handles:
- Linking a maker's Stripe account to a product (OAuth begin/complete)
- Refreshing the verified MRR figure on demand
- Changing which Stripe products count toward a product's MRR
- Disconnecting the account
- Listing the connected account's catalog for the filter picker

Key Principles:
- Ownership is checked in every operation before anything else is validated
- verified_mrr and mrr_verified_at are always written in the same update
- An upstream failure is never stored as 0; it is raised to the caller
- A successful link is kept even if the first computation fails
"""
import base64
import binascii
import json
import os
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from urllib.parse import urlencode

from database import database
from models import AuditAction, Product, CatalogEntry, LinkResult
from services.payment_platform import PaymentPlatform, stripe_payment_platform
from services.revenue_errors import (
    UnauthorizedError, ProductNotFoundError, NotConnectedError,
    InvalidStateError, UpstreamError, VerificationPendingError,
)
from services.subscription_normalizer import compute_monthly_revenue, normalize_product_filter
from utils.audit import create_audit_log
from utils.public_app_url import get_stripe_connect_redirect_uri

logger = logging.getLogger(__name__)

STRIPE_CONNECT_AUTHORIZE_URL = "https://connect.stripe.com/oauth/authorize"

PRODUCT_PROJECTION = {
    "_id": 0,
    "product_id": 1,
    "owner_id": 1,
    "stripe_connect_account_id": 1,
    "stripe_product_id": 1,
    "verified_mrr": 1,
    "mrr_verified_at": 1,
}


def encode_state_token(product_id: str, user_id: str) -> str:
    """Base64 JSON of {productId, userId}.

    Not signed: a token that fails to decode is rejected, but a well-formed
    forged token is only stopped by the ownership check in complete_link.
    """
    payload = json.dumps({"productId": product_id, "userId": user_id})
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_state_token(state_token: str) -> Dict[str, str]:
    try:
        data = json.loads(base64.b64decode(state_token, validate=True).decode("utf-8"))
    except (binascii.Error, ValueError, TypeError) as e:
        logger.warning(f"Rejected malformed Stripe Connect state token: {e}")
        raise InvalidStateError("Invalid state")

    if not isinstance(data, dict):
        raise InvalidStateError("Invalid state")
    product_id = data.get("productId")
    user_id = data.get("userId")
    if not isinstance(product_id, str) or not product_id or not isinstance(user_id, str) or not user_id:
        raise InvalidStateError("Invalid state")
    return {"productId": product_id, "userId": user_id}


def _verification_state(product: Product) -> Dict[str, Any]:
    """Audit-friendly snapshot of the verification fields."""
    return {
        "stripe_connect_account_id": product.stripe_connect_account_id,
        "stripe_product_id": product.stripe_product_id,
        "verified_mrr": product.verified_mrr,
        "mrr_verified_at": product.mrr_verified_at.isoformat() if product.mrr_verified_at else None,
    }


class RevenueVerificationService:
    """Verified-revenue operations for a single product, owner-only."""

    def __init__(self, platform: Optional[PaymentPlatform] = None):
        self.platform = platform or stripe_payment_platform

    async def _get_owned_product(self, product_id: str, requesting_user_id: Optional[str]) -> Product:
        if not requesting_user_id:
            raise UnauthorizedError("Unauthorized", authenticated=False)

        db = database.get_db()
        doc = await db.products.find_one({"product_id": product_id}, PRODUCT_PROJECTION)
        if not doc:
            raise ProductNotFoundError(product_id)
        if doc.get("owner_id") != requesting_user_id:
            logger.warning(f"User {requesting_user_id} denied access to product {product_id}")
            raise UnauthorizedError()
        return Product(**doc)

    async def _update_owned(self, product: Product, fields: Dict[str, Any], require_account: bool = False) -> None:
        """Write conditioned on both product and owner, like every mutation here.

        With require_account the write also requires the account read earlier to
        still be linked, so a disconnect that lands mid-computation wins.
        """
        db = database.get_db()
        query = {"product_id": product.product_id, "owner_id": product.owner_id}
        if require_account:
            query["stripe_connect_account_id"] = product.stripe_connect_account_id
        result = await db.products.update_one(query, {"$set": fields})
        if result.matched_count == 0:
            if require_account:
                logger.warning(
                    f"Discarded MRR for product {product.product_id}: "
                    f"account {product.stripe_connect_account_id} no longer linked"
                )
                raise NotConnectedError(product.product_id)
            raise ProductNotFoundError(product.product_id)

    async def _recompute(self, product: Product, requesting_user_id: str) -> int:
        """Run the normalizer for a connected product and persist the verification pair."""
        try:
            mrr = compute_monthly_revenue(
                self.platform,
                product.stripe_connect_account_id,
                product.stripe_product_id,
            )
        except UpstreamError as e:
            logger.error(f"MRR verification failed for product {product.product_id}: {e.message}")
            await create_audit_log(
                action=AuditAction.MRR_VERIFICATION_FAILED,
                actor_id=requesting_user_id,
                resource_type="product",
                resource_id=product.product_id,
                metadata={"error": e.message},
            )
            raise

        verified_at = datetime.now(timezone.utc)
        await self._update_owned(
            product, {"verified_mrr": mrr, "mrr_verified_at": verified_at}, require_account=True
        )

        after = product.model_copy(update={"verified_mrr": mrr, "mrr_verified_at": verified_at})
        await create_audit_log(
            action=AuditAction.MRR_VERIFIED,
            actor_id=requesting_user_id,
            resource_type="product",
            resource_id=product.product_id,
            before_state=_verification_state(product),
            after_state=_verification_state(after),
        )
        return mrr

    # ------------------------------------------------------------------
    # Account Linker
    # ------------------------------------------------------------------

    async def begin_link(self, product_id: str, requesting_user_id: Optional[str]) -> str:
        """Build the Stripe Connect authorization URL for an owned product. Persists nothing."""
        await self._get_owned_product(product_id, requesting_user_id)

        client_id = (os.getenv("STRIPE_CONNECT_CLIENT_ID") or "").strip()
        if not client_id:
            raise ValueError("STRIPE_CONNECT_CLIENT_ID is not set. Configure env and restart.")

        params = urlencode({
            "response_type": "code",
            "client_id": client_id,
            "scope": "read_write",
            "redirect_uri": get_stripe_connect_redirect_uri(),
            "state": encode_state_token(product_id, requesting_user_id),
        })
        logger.info(f"Stripe Connect link started for product {product_id}")
        return f"{STRIPE_CONNECT_AUTHORIZE_URL}?{params}"

    async def complete_link(
        self,
        code: Optional[str],
        state_token: Optional[str],
        requesting_user_id: Optional[str] = None,
    ) -> LinkResult:
        """
        Finish the OAuth flow: exchange the code, verify MRR, persist both.

        If the exchange succeeds but the MRR computation fails, the account id is
        still stored (with the verification pair cleared) and
        VerificationPendingError is raised so the caller can refresh later.
        """
        if not code or not state_token:
            raise InvalidStateError("Missing code or state")

        state = decode_state_token(state_token)
        if requesting_user_id and requesting_user_id != state["userId"]:
            raise UnauthorizedError()

        product = await self._get_owned_product(state["productId"], state["userId"])

        connected_account_id = self.platform.exchange_code(code)
        linked = product.model_copy(update={"stripe_connect_account_id": connected_account_id})

        try:
            mrr = compute_monthly_revenue(self.platform, connected_account_id, product.stripe_product_id)
        except UpstreamError as e:
            await self._update_owned(product, {
                "stripe_connect_account_id": connected_account_id,
                "verified_mrr": None,
                "mrr_verified_at": None,
            })
            await create_audit_log(
                action=AuditAction.MRR_VERIFICATION_FAILED,
                actor_id=product.owner_id,
                resource_type="product",
                resource_id=product.product_id,
                metadata={"error": e.message, "stripe_connect_account_id": connected_account_id},
            )
            logger.error(f"Linked {connected_account_id} to product {product.product_id} but MRR verification failed: {e.message}")
            raise VerificationPendingError(connected_account_id, e) from e

        verified_at = datetime.now(timezone.utc)
        await self._update_owned(product, {
            "stripe_connect_account_id": connected_account_id,
            "verified_mrr": mrr,
            "mrr_verified_at": verified_at,
        })

        after = linked.model_copy(update={"verified_mrr": mrr, "mrr_verified_at": verified_at})
        await create_audit_log(
            action=AuditAction.STRIPE_CONNECT_LINKED,
            actor_id=product.owner_id,
            resource_type="product",
            resource_id=product.product_id,
            before_state=_verification_state(product),
            after_state=_verification_state(after),
        )
        logger.info(f"Product {product.product_id} linked to {connected_account_id}, MRR {mrr} cents")
        return LinkResult(connected_account_id=connected_account_id, verified_revenue_cents=mrr)

    # ------------------------------------------------------------------
    # Revenue Store & Refresh Controller
    # ------------------------------------------------------------------

    async def refresh(self, product_id: str, requesting_user_id: Optional[str]) -> int:
        """Recompute and overwrite the verification pair (last write wins)."""
        product = await self._get_owned_product(product_id, requesting_user_id)
        if not product.is_connected:
            raise NotConnectedError(product_id)
        return await self._recompute(product, requesting_user_id)

    async def set_filter(
        self,
        product_id: str,
        requesting_user_id: Optional[str],
        product_filter_csv: Optional[str],
    ) -> Optional[int]:
        """Persist a new product filter; refresh right away when an account is connected."""
        product = await self._get_owned_product(product_id, requesting_user_id)
        product_filter = normalize_product_filter(product_filter_csv)

        await self._update_owned(product, {"stripe_product_id": product_filter})
        await create_audit_log(
            action=AuditAction.STRIPE_PRODUCT_FILTER_UPDATED,
            actor_id=requesting_user_id,
            resource_type="product",
            resource_id=product_id,
            before_state={"stripe_product_id": product.stripe_product_id},
            after_state={"stripe_product_id": product_filter},
        )

        if not product.is_connected:
            return None
        return await self._recompute(product.model_copy(update={"stripe_product_id": product_filter}), requesting_user_id)

    async def disconnect(self, product_id: str, requesting_user_id: Optional[str]) -> None:
        """Clear the account id and verification pair. The product filter is kept."""
        product = await self._get_owned_product(product_id, requesting_user_id)
        if not product.is_connected and product.verified_mrr is None and product.mrr_verified_at is None:
            return

        await self._update_owned(product, {
            "stripe_connect_account_id": None,
            "verified_mrr": None,
            "mrr_verified_at": None,
        })
        await create_audit_log(
            action=AuditAction.STRIPE_CONNECT_DISCONNECTED,
            actor_id=requesting_user_id,
            resource_type="product",
            resource_id=product_id,
            before_state=_verification_state(product),
        )
        logger.info(f"Stripe account disconnected from product {product_id}")

    # ------------------------------------------------------------------
    # Catalog Lister
    # ------------------------------------------------------------------

    async def list_catalog(self, product_id: str, requesting_user_id: Optional[str]) -> List[CatalogEntry]:
        """Whole-account catalog, most-subscribed first. Ignores the product filter."""
        product = await self._get_owned_product(product_id, requesting_user_id)
        if not product.is_connected:
            raise NotConnectedError(product_id)

        account_id = product.stripe_connect_account_id
        catalog = self.platform.list_products(account_id)
        subscriptions = self.platform.list_active_subscriptions(account_id)

        counts = Counter(item.product_id for sub in subscriptions for item in sub.items)
        entries = [
            CatalogEntry(
                external_id=p.external_id,
                name=p.name,
                active_subscription_count=counts.get(p.external_id, 0),
            )
            for p in catalog
        ]
        # Stable: ties keep Stripe's listing order
        entries.sort(key=lambda e: e.active_subscription_count, reverse=True)
        return entries

    # ------------------------------------------------------------------
    # Public badge read
    # ------------------------------------------------------------------

    async def get_verified_revenue(self, product_id: str) -> Product:
        """Unauthenticated read of a product's verification fields for the badge."""
        db = database.get_db()
        doc = await db.products.find_one({"product_id": product_id}, PRODUCT_PROJECTION)
        if not doc:
            raise ProductNotFoundError(product_id)
        return Product(**doc)


revenue_verification_service = RevenueVerificationService()
