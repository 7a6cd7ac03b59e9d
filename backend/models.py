from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class BillingInterval(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

class StripeSubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"

class ExclusionReason(str, Enum):
    CANCEL_AT_PERIOD_END = "CANCEL_AT_PERIOD_END"
    CANCELED = "CANCELED"
    TRIALING = "TRIALING"
    PERIOD_ELAPSED = "PERIOD_ELAPSED"

class AuditAction(str, Enum):
    # Stripe Connect
    STRIPE_CONNECT_LINKED = "STRIPE_CONNECT_LINKED"
    STRIPE_CONNECT_DISCONNECTED = "STRIPE_CONNECT_DISCONNECTED"
    STRIPE_PRODUCT_FILTER_UPDATED = "STRIPE_PRODUCT_FILTER_UPDATED"

    # Revenue verification
    MRR_VERIFIED = "MRR_VERIFIED"
    MRR_VERIFICATION_FAILED = "MRR_VERIFICATION_FAILED"

# ============================================================================
# PRODUCT (stored in `products`)
# ============================================================================

class Product(BaseModel):
    """Revenue-verification view of a product document.

    Only the fields the engine reads or writes; the rest of the product
    document belongs to the marketplace CRUD screens.
    """
    model_config = ConfigDict(extra="ignore")

    product_id: str
    owner_id: str
    stripe_connect_account_id: Optional[str] = None
    stripe_product_id: Optional[str] = None  # comma-separated filter
    verified_mrr: Optional[int] = Field(default=None, ge=0)
    mrr_verified_at: Optional[datetime] = None

    @property
    def is_connected(self) -> bool:
        return bool(self.stripe_connect_account_id)

# ============================================================================
# STRIPE SNAPSHOTS (ephemeral, never stored)
# ============================================================================

class SubscriptionLineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    unit_amount: int = 0
    interval: BillingInterval
    interval_count: int = Field(default=1, ge=1)
    quantity: int = Field(default=1, ge=0)

class SubscriptionSnapshot(BaseModel):
    """Read-only projection of one Stripe subscription for a single normalization pass."""
    model_config = ConfigDict(frozen=True)

    subscription_id: str
    status: str
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    customer_id: Optional[str] = None
    items: List[SubscriptionLineItem] = Field(default_factory=list)

class CatalogProduct(BaseModel):
    model_config = ConfigDict(frozen=True)

    external_id: str
    name: str

class CatalogEntry(BaseModel):
    external_id: str
    name: str
    active_subscription_count: int = 0

class LinkResult(BaseModel):
    connected_account_id: str
    verified_revenue_cents: int

# ============================================================================
# AUDIT
# ============================================================================

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
