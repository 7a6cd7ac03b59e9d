"""Payment Platform - Stripe Connect boundary for revenue verification.

The engine never talks to the Stripe SDK directly. It receives a
PaymentPlatform capability exposing three calls:
- exchange_code: OAuth authorization code -> connected account id
- list_active_subscriptions: every active subscription on a connected account
- list_products: every active product on a connected account

StripePaymentPlatform is the production implementation. Loosely typed Stripe
payloads are mapped into SubscriptionSnapshot / CatalogProduct here, so the
normalizer only ever sees typed models.
"""
import stripe
import os
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Dict, Any, List

from models import BillingInterval, StripeSubscriptionStatus, SubscriptionLineItem, SubscriptionSnapshot, CatalogProduct
from services.revenue_errors import ExchangeFailedError, UpstreamError

logger = logging.getLogger(__name__)

PAGE_LIMIT = 100


def _get_stripe_key() -> str:
    return (os.getenv("STRIPE_SECRET_KEY") or os.getenv("STRIPE_API_KEY") or "").strip()


def _as_dict(obj: Any) -> Dict[str, Any]:
    """StripeObject -> plain dict (recursively). Plain dicts pass through."""
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict_recursive"):
        return obj
    for attr in ("to_dict_recursive", "to_dict"):
        converter = getattr(obj, attr, None)
        if callable(converter):
            return converter()
    return dict(obj)


def _to_datetime(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _ref_id(value: Any) -> Optional[str]:
    """Stripe references are either an id string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


def _unit_amount_cents(item: Dict[str, Any], price: Dict[str, Any]) -> int:
    """Whole-cent unit amount; decimal-only prices are rounded half-up."""
    if price.get("unit_amount") is not None:
        return price["unit_amount"]

    raw_decimal = price.get("unit_amount_decimal")
    if raw_decimal is not None:
        try:
            return int(Decimal(str(raw_decimal)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        except InvalidOperation:
            logger.warning(f"Item {item.get('id')}: unparseable unit_amount_decimal {raw_decimal!r}")

    logger.warning(f"Item {item.get('id')} on price {price.get('id')} has no unit amount; counting 0 cents")
    return 0


def line_item_from_stripe(item: Dict[str, Any]) -> Optional[SubscriptionLineItem]:
    """Map one subscription item. Returns None for non-recurring prices."""
    price = item.get("price") or {}
    recurring = price.get("recurring")
    if not recurring:
        return None

    try:
        interval = BillingInterval(recurring.get("interval"))
    except ValueError:
        logger.warning(f"Skipping item {item.get('id')}: unknown billing interval {recurring.get('interval')!r}")
        return None

    quantity = item.get("quantity")
    return SubscriptionLineItem(
        product_id=_ref_id(price.get("product")) or "",
        unit_amount=_unit_amount_cents(item, price),
        interval=interval,
        interval_count=recurring.get("interval_count") or 1,
        quantity=1 if quantity is None else quantity,
    )


def subscription_snapshot_from_stripe(raw: Dict[str, Any]) -> SubscriptionSnapshot:
    """Map a Stripe subscription payload into a SubscriptionSnapshot."""
    item_payloads = (raw.get("items") or {}).get("data") or []
    items = [li for li in (line_item_from_stripe(i) for i in item_payloads) if li is not None]

    # Newer API versions carry the billing period on each item instead of the subscription
    period_end = raw.get("current_period_end")
    if period_end is None:
        item_period_ends = [i.get("current_period_end") for i in item_payloads if i.get("current_period_end")]
        period_end = max(item_period_ends) if item_period_ends else None

    return SubscriptionSnapshot(
        subscription_id=raw.get("id") or "",
        status=raw.get("status") or "",
        cancel_at_period_end=bool(raw.get("cancel_at_period_end")),
        canceled_at=_to_datetime(raw.get("canceled_at")),
        trial_start=_to_datetime(raw.get("trial_start")),
        trial_end=_to_datetime(raw.get("trial_end")),
        current_period_end=_to_datetime(period_end),
        customer_id=_ref_id(raw.get("customer")),
        items=items,
    )


def catalog_product_from_stripe(raw: Dict[str, Any]) -> CatalogProduct:
    return CatalogProduct(external_id=raw.get("id") or "", name=raw.get("name") or "")


class PaymentPlatform(ABC):
    """Capability object for the maker's external payment account."""

    @abstractmethod
    def exchange_code(self, code: str) -> str:
        """Exchange an OAuth authorization code for a connected account id."""
        pass

    @abstractmethod
    def list_active_subscriptions(self, connected_account_id: str) -> List[SubscriptionSnapshot]:
        pass

    @abstractmethod
    def list_products(self, connected_account_id: str) -> List[CatalogProduct]:
        pass


class StripePaymentPlatform(PaymentPlatform):
    """Stripe Connect implementation (read-only against the connected account)."""

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key

    @property
    def api_key(self) -> str:
        key = (self._api_key if self._api_key is not None else _get_stripe_key()).strip()
        if not key:
            raise UpstreamError("STRIPE_SECRET_KEY or STRIPE_API_KEY is not set. Configure env and restart.")
        return key

    def exchange_code(self, code: str) -> str:
        api_key = self.api_key
        try:
            response = stripe.OAuth.token(
                api_key=api_key,
                grant_type="authorization_code",
                code=code,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe OAuth token exchange failed: {e}")
            raise ExchangeFailedError(getattr(e, "user_message", None) or str(e) or "OAuth exchange failed")

        connected_account_id = _as_dict(response).get("stripe_user_id")
        if not connected_account_id:
            raise ExchangeFailedError("Stripe OAuth response did not include a connected account id")
        logger.info(f"Connected Stripe account: {connected_account_id}")
        return connected_account_id

    def list_active_subscriptions(self, connected_account_id: str) -> List[SubscriptionSnapshot]:
        api_key = self.api_key
        try:
            page = stripe.Subscription.list(
                api_key=api_key,
                stripe_account=connected_account_id,
                status=StripeSubscriptionStatus.ACTIVE.value,
                limit=PAGE_LIMIT,
                expand=["data.customer"],
            )
            snapshots = [subscription_snapshot_from_stripe(_as_dict(sub)) for sub in page.auto_paging_iter()]
        except stripe.StripeError as e:
            logger.error(f"Failed to list subscriptions for {connected_account_id}: {e}")
            raise UpstreamError(f"Failed to fetch subscriptions: {getattr(e, 'user_message', None) or str(e)}")

        logger.info(f"Total active subscriptions found for {connected_account_id}: {len(snapshots)}")
        return snapshots

    def list_products(self, connected_account_id: str) -> List[CatalogProduct]:
        api_key = self.api_key
        try:
            page = stripe.Product.list(
                api_key=api_key,
                stripe_account=connected_account_id,
                active=True,
                limit=PAGE_LIMIT,
            )
            return [catalog_product_from_stripe(_as_dict(p)) for p in page.auto_paging_iter()]
        except stripe.StripeError as e:
            logger.error(f"Failed to list products for {connected_account_id}: {e}")
            raise UpstreamError(f"Failed to fetch Stripe products: {getattr(e, 'user_message', None) or str(e)}")


stripe_payment_platform = StripePaymentPlatform()
