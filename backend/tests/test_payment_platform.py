"""
Stripe boundary tests: payload -> snapshot mapping and SDK error translation.
No network: the stripe SDK entry points are patched.
"""
import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import stripe

from models import BillingInterval
from services.payment_platform import (
    StripePaymentPlatform,
    line_item_from_stripe,
    subscription_snapshot_from_stripe,
)
from services.revenue_errors import ExchangeFailedError, UpstreamError

PERIOD_END = 1793000000  # 2026-10-25


def _stripe_subscription(**overrides):
    sub = {
        "id": "sub_1",
        "object": "subscription",
        "status": "active",
        "cancel_at_period_end": False,
        "canceled_at": None,
        "trial_start": None,
        "trial_end": None,
        "current_period_end": PERIOD_END,
        "customer": {"id": "cus_1", "object": "customer", "email": "buyer@example.com"},
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_1",
                    "quantity": 3,
                    "price": {
                        "id": "price_1",
                        "product": "prod_P1",
                        "unit_amount": 2000,
                        "recurring": {"interval": "month", "interval_count": 1},
                    },
                },
            ],
        },
    }
    sub.update(overrides)
    return sub


def _page(items):
    page = MagicMock()
    page.auto_paging_iter.return_value = iter(items)
    return page


class TestSnapshotMapping:
    def test_maps_subscription_fields(self):
        snap = subscription_snapshot_from_stripe(_stripe_subscription())
        assert snap.subscription_id == "sub_1"
        assert snap.status == "active"
        assert snap.customer_id == "cus_1"
        assert snap.current_period_end == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)
        assert snap.canceled_at is None
        assert len(snap.items) == 1
        item = snap.items[0]
        assert item.product_id == "prod_P1"
        assert item.unit_amount == 2000
        assert item.interval == BillingInterval.MONTH
        assert item.quantity == 3

    def test_period_end_falls_back_to_items(self):
        raw = _stripe_subscription(current_period_end=None)
        raw["items"]["data"][0]["current_period_end"] = PERIOD_END
        snap = subscription_snapshot_from_stripe(raw)
        assert snap.current_period_end == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)

    def test_non_recurring_item_is_dropped(self):
        assert line_item_from_stripe({"price": {"product": "prod_X", "unit_amount": 500, "recurring": None}}) is None

    def test_expanded_product_and_defaults(self):
        item = line_item_from_stripe({
            "price": {
                "product": {"id": "prod_P2", "name": "Team"},
                "unit_amount": None,
                "recurring": {"interval": "year", "interval_count": None},
            },
        })
        assert item.product_id == "prod_P2"
        assert item.unit_amount == 0
        assert item.interval == BillingInterval.YEAR
        assert item.interval_count == 1
        assert item.quantity == 1

    def test_decimal_only_price_is_rounded(self):
        item = line_item_from_stripe({
            "id": "si_dec",
            "price": {
                "product": "prod_P3",
                "unit_amount": None,
                "unit_amount_decimal": "1999.5",
                "recurring": {"interval": "month", "interval_count": 1},
            },
        })
        assert item.unit_amount == 2000

    def test_missing_unit_amount_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="services.payment_platform"):
            item = line_item_from_stripe({
                "id": "si_none",
                "price": {"id": "price_x", "product": "prod_P4", "recurring": {"interval": "month"}},
            })
        assert item.unit_amount == 0
        assert "si_none" in caplog.text
        assert "no unit amount" in caplog.text

    def test_string_customer_reference(self):
        snap = subscription_snapshot_from_stripe(_stripe_subscription(customer="cus_9"))
        assert snap.customer_id == "cus_9"


class TestStripePaymentPlatform:
    def test_missing_key_is_upstream_error(self):
        platform = StripePaymentPlatform(api_key="")
        with pytest.raises(UpstreamError, match="STRIPE_SECRET_KEY"):
            platform.list_active_subscriptions("acct_1")

    def test_exchange_code_returns_account_id(self):
        platform = StripePaymentPlatform(api_key="sk_test_x")
        with patch("services.payment_platform.stripe.OAuth.token", return_value={"stripe_user_id": "acct_9"}) as token:
            assert platform.exchange_code("ac_123") == "acct_9"
        assert token.call_args.kwargs["grant_type"] == "authorization_code"
        assert token.call_args.kwargs["code"] == "ac_123"

    def test_exchange_failure_carries_stripe_message(self):
        platform = StripePaymentPlatform(api_key="sk_test_x")
        with patch("services.payment_platform.stripe.OAuth.token", side_effect=stripe.StripeError("Authorization code expired")):
            with pytest.raises(ExchangeFailedError, match="Authorization code expired"):
                platform.exchange_code("ac_123")

    def test_exchange_without_account_id_fails(self):
        platform = StripePaymentPlatform(api_key="sk_test_x")
        with patch("services.payment_platform.stripe.OAuth.token", return_value={}):
            with pytest.raises(ExchangeFailedError):
                platform.exchange_code("ac_123")

    def test_lists_active_subscriptions_on_connected_account(self):
        platform = StripePaymentPlatform(api_key="sk_test_x")
        with patch("services.payment_platform.stripe.Subscription.list", return_value=_page([_stripe_subscription()])) as list_subs:
            snaps = platform.list_active_subscriptions("acct_1")
        assert [s.subscription_id for s in snaps] == ["sub_1"]
        kwargs = list_subs.call_args.kwargs
        assert kwargs["stripe_account"] == "acct_1"
        assert kwargs["status"] == "active"
        assert "data.customer" in kwargs["expand"]

    def test_subscription_failure_is_upstream_error(self):
        platform = StripePaymentPlatform(api_key="sk_test_x")
        with patch("services.payment_platform.stripe.Subscription.list", side_effect=stripe.StripeError("No such account")):
            with pytest.raises(UpstreamError, match="No such account"):
                platform.list_active_subscriptions("acct_1")

    def test_lists_active_products(self):
        platform = StripePaymentPlatform(api_key="sk_test_x")
        products = [{"id": "prod_P1", "name": "Starter"}, {"id": "prod_P2", "name": "Team"}]
        with patch("services.payment_platform.stripe.Product.list", return_value=_page(products)) as list_products:
            catalog = platform.list_products("acct_1")
        assert [(p.external_id, p.name) for p in catalog] == [("prod_P1", "Starter"), ("prod_P2", "Team")]
        assert list_products.call_args.kwargs["active"] is True
