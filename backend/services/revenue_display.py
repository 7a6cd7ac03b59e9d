"""Public presentation of verified MRR: coarse ranges and badge tiers.

Exact cents stay private to the maker; the public badge shows a bucket.
"""
from typing import Optional

# (upper bound in dollars, label); last bucket is open-ended
MRR_RANGES = [
    (1_000, "<$1K"),
    (5_000, "$1K-5K"),
    (10_000, "$5K-10K"),
    (25_000, "$10K-25K"),
    (50_000, "$25K-50K"),
    (100_000, "$50K-100K"),
    (250_000, "$100K-250K"),
    (500_000, "$250K-500K"),
    (1_000_000, "$500K-1M"),
]
MRR_RANGE_TOP = "$1M+"

MRR_TIERS = [
    (10_000, "muted"),
    (50_000, "blue"),
    (100_000, "purple"),
    (500_000, "orange"),
]
MRR_TIER_TOP = "gold"


def _dollars_below(mrr_cents: int, dollars: int) -> bool:
    return mrr_cents < dollars * 100


def format_mrr_range(mrr_cents: Optional[int]) -> Optional[str]:
    """Human-readable MRR bucket, e.g. 600000 cents -> '$5K-10K'."""
    if mrr_cents is None:
        return None
    for upper, label in MRR_RANGES:
        if _dollars_below(mrr_cents, upper):
            return label
    return MRR_RANGE_TOP


def mrr_tier(mrr_cents: Optional[int]) -> Optional[str]:
    """Badge colour tier for visual hierarchy."""
    if mrr_cents is None:
        return None
    for upper, tier in MRR_TIERS:
        if _dollars_below(mrr_cents, upper):
            return tier
    return MRR_TIER_TOP
