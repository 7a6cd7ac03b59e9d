"""Tests for the public MRR range and badge tier buckets."""
import pytest

from services.revenue_display import format_mrr_range, mrr_tier


@pytest.mark.parametrize("cents, expected", [
    (None, None),
    (0, "<$1K"),
    (99_999, "<$1K"),
    (100_000, "$1K-5K"),
    (600_000, "$5K-10K"),
    (2_400_000, "$10K-25K"),
    (4_999_999, "$25K-50K"),
    (5_000_000, "$50K-100K"),
    (24_999_900, "$100K-250K"),
    (25_000_000, "$250K-500K"),
    (99_999_999, "$500K-1M"),
    (100_000_000, "$1M+"),
])
def test_format_mrr_range(cents, expected):
    assert format_mrr_range(cents) == expected


@pytest.mark.parametrize("cents, expected", [
    (None, None),
    (0, "muted"),
    (999_999, "muted"),
    (1_000_000, "blue"),
    (5_000_000, "purple"),
    (10_000_000, "orange"),
    (50_000_000, "gold"),
])
def test_mrr_tier(cents, expected):
    assert mrr_tier(cents) == expected
