"""Subscription Normalizer - verified MRR from a connected Stripe account.

Reduces every active subscription on the account to a monthly-equivalent
amount in integer cents. Rules, in order, first match wins:
- cancel_at_period_end          -> excluded (not durable forward revenue)
- canceled_at set               -> excluded
- trialing / trial ends later   -> excluded (not yet earned)
- current period already ended  -> excluded (stale despite "active")

Surviving subscriptions contribute only when at least one line item matches the
product filter AND at least one matching item bills monthly, and then only their
monthly items add up. Yearly, weekly and daily items are deliberately left out of
the headline MRR even though they normalize to a positive monthly amount.

All money is Decimal -> int; each line item rounds half-up on its own.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Iterable, FrozenSet, Tuple

from models import BillingInterval, ExclusionReason, SubscriptionLineItem, SubscriptionSnapshot, StripeSubscriptionStatus
from services.payment_platform import PaymentPlatform

logger = logging.getLogger(__name__)

WEEKS_PER_MONTH = Decimal("4.33")
DAYS_PER_MONTH = Decimal("30")
MONTHS_PER_YEAR = Decimal("12")


def parse_product_filter(product_filter_csv: Optional[str]) -> FrozenSet[str]:
    """Comma-separated Stripe product ids -> set. Empty set means accept all."""
    if not product_filter_csv:
        return frozenset()
    return frozenset(p.strip() for p in product_filter_csv.split(",") if p.strip())


def normalize_product_filter(product_filter_csv: Optional[str]) -> Optional[str]:
    """Canonical stored form: trimmed, de-duplicated, original order; None when empty."""
    if not product_filter_csv:
        return None
    seen = []
    for p in product_filter_csv.split(","):
        p = p.strip()
        if p and p not in seen:
            seen.append(p)
    return ",".join(seen) or None


def _round_cents(amount: Decimal) -> int:
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def monthly_equivalent_cents(unit_amount: int, interval: BillingInterval, interval_count: int = 1) -> int:
    """Monthly-equivalent of one unit of a recurring price, rounded to the cent."""
    amount = Decimal(unit_amount)
    count = Decimal(interval_count or 1)

    if interval == BillingInterval.MONTH:
        return _round_cents(amount / count)
    if interval == BillingInterval.YEAR:
        return _round_cents(amount / (MONTHS_PER_YEAR * count))
    if interval == BillingInterval.WEEK:
        return _round_cents(amount * WEEKS_PER_MONTH / count)
    if interval == BillingInterval.DAY:
        return _round_cents(amount * DAYS_PER_MONTH / count)
    raise ValueError(f"Unsupported billing interval: {interval}")


def line_item_mrr_cents(item: SubscriptionLineItem) -> int:
    return monthly_equivalent_cents(item.unit_amount, item.interval, item.interval_count) * item.quantity


def exclusion_reason(sub: SubscriptionSnapshot, now: datetime) -> Optional[ExclusionReason]:
    """First matching exclusion rule for a subscription, or None if it counts."""
    if sub.cancel_at_period_end:
        return ExclusionReason.CANCEL_AT_PERIOD_END
    if sub.canceled_at is not None:
        return ExclusionReason.CANCELED
    if sub.status == StripeSubscriptionStatus.TRIALING.value or (sub.trial_end is not None and sub.trial_end > now):
        return ExclusionReason.TRIALING
    if sub.current_period_end is not None and sub.current_period_end <= now:
        return ExclusionReason.PERIOD_ELAPSED
    return None


def subscription_mrr_cents(sub: SubscriptionSnapshot, accepted: FrozenSet[str]) -> Tuple[int, bool]:
    """Subtotal over matching items, and whether the subscription counts toward MRR.

    Counts only when some matching item bills on a plain monthly interval; only
    those monthly items add to the subtotal.
    """
    subtotal = 0
    has_monthly = False
    for item in sub.items:
        if accepted and item.product_id not in accepted:
            continue
        item_mrr = line_item_mrr_cents(item)
        logger.debug(
            f"Sub {sub.subscription_id}: price={item.unit_amount} cents, interval={item.interval.value}, "
            f"interval_count={item.interval_count}, qty={item.quantity}, itemMRR={item_mrr}"
        )
        if item.interval != BillingInterval.MONTH:
            continue
        has_monthly = True
        subtotal += item_mrr
    return subtotal, has_monthly


def sum_monthly_revenue(
    subscriptions: Iterable[SubscriptionSnapshot],
    product_filter_csv: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """Pure reduction of subscription snapshots to MRR cents."""
    now = now or datetime.now(timezone.utc)
    accepted = parse_product_filter(product_filter_csv)

    total = 0
    for sub in subscriptions:
        reason = exclusion_reason(sub, now)
        if reason is not None:
            logger.debug(f"Sub {sub.subscription_id} excluded: {reason.value}")
            continue

        subtotal, counts = subscription_mrr_cents(sub, accepted)
        if not counts:
            logger.debug(f"Sub {sub.subscription_id} excluded: no matching monthly item")
            continue
        total += subtotal
    return total


def compute_monthly_revenue(
    platform: PaymentPlatform,
    connected_account_id: str,
    product_filter_csv: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """Verified MRR in cents for a connected account.

    Returns 0 when nothing qualifies. Upstream failures propagate as UpstreamError.
    """
    subscriptions = platform.list_active_subscriptions(connected_account_id)
    total = sum_monthly_revenue(subscriptions, product_filter_csv, now)
    logger.info(
        f"Verified MRR for {connected_account_id} (filter={product_filter_csv or 'all'}): "
        f"{total} cents = ${total / 100:.2f}"
    )
    return total
