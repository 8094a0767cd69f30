"""
rate_core/models.py

Pricing primitives - rate plans, room rates, tiers, overrides, pricing rules,
package components and the append-only audit record.
"""
from typing import Any, Dict, Generic, List, Optional, TypeVar
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
import math

T = TypeVar("T")

TWO_PLACES = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce a number to a 2-place Decimal (half-up)."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


# ============== Enums ==============

class EntityStatus(str, Enum):
    """Lifecycle status shared by every primitive"""
    PENDING = "PENDING"
    DELETED = "DELETED"
    CREATED = "CREATED"
    PUBLISHED = "PUBLISHED"
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class GuestType(str, Enum):
    """Market segment dimension of the rate matrix"""
    INDIVIDUAL = "INDIVIDUAL"
    CORPORATE = "CORPORATE"
    GROUP = "GROUP"
    VIP = "VIP"
    LOYALTY_MEMBER = "LOYALTY_MEMBER"


class AdjustmentType(str, Enum):
    """
    Adjustment vocabulary shared by tiers and overrides.

    PERCENTAGE and FIXED take a signed value (negative is a discount).
    The *_INCREASE / *_DECREASE variants take their direction from the type.
    """
    PERCENTAGE = "PERCENTAGE"
    PERCENTAGE_INCREASE = "PERCENTAGE_INCREASE"
    PERCENTAGE_DECREASE = "PERCENTAGE_DECREASE"
    FIXED = "FIXED"
    FIXED_INCREASE = "FIXED_INCREASE"
    FIXED_DECREASE = "FIXED_DECREASE"
    MULTIPLIER = "MULTIPLIER"
    SET_RATE = "SET_RATE"


class PricingRuleType(str, Enum):
    EARLY_BOOKING = "EARLY_BOOKING"
    LAST_MINUTE = "LAST_MINUTE"
    EXTENDED_STAY = "EXTENDED_STAY"
    WEEKEND = "WEEKEND"
    WEEKDAY = "WEEKDAY"
    SEASONAL = "SEASONAL"
    PROMOTIONAL = "PROMOTIONAL"
    OCCUPANCY_BASED = "OCCUPANCY_BASED"
    MEMBER_DISCOUNT = "MEMBER_DISCOUNT"
    CORPORATE = "CORPORATE"
    GROUP = "GROUP"
    OTHER = "OTHER"


class ComponentType(str, Enum):
    SERVICE = "SERVICE"
    MEAL = "MEAL"
    ACTIVITY = "ACTIVITY"
    TRANSPORTATION = "TRANSPORTATION"
    AMENITY = "AMENITY"
    DISCOUNT = "DISCOUNT"
    OTHER = "OTHER"


class AuditEntityType(str, Enum):
    """Closed set of audited entity types"""
    ROOM_RATE = "ROOM_RATE"
    RATE_PLAN = "RATE_PLAN"
    RATE_OVERRIDE = "RATE_OVERRIDE"
    RATE_TIER = "RATE_TIER"
    RATE_PACKAGE_COMPONENT = "RATE_PACKAGE_COMPONENT"
    PRICING_RULE = "PRICING_RULE"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    BULK_UPDATE = "BULK_UPDATE"
    COPY = "COPY"
    OVERRIDE_CREATE = "OVERRIDE_CREATE"
    OVERRIDE_UPDATE = "OVERRIDE_UPDATE"
    OVERRIDE_DELETE = "OVERRIDE_DELETE"
    STOP_SELL = "STOP_SELL"
    RATE_CHANGE = "RATE_CHANGE"
    AVAILABILITY_CHANGE = "AVAILABILITY_CHANGE"
    TIER_UPDATE = "TIER_UPDATE"
    PACKAGE_UPDATE = "PACKAGE_UPDATE"
    RULE_APPLY = "RULE_APPLY"
    ROLLBACK = "ROLLBACK"


AUDIT_ACTION_LABELS: Dict[AuditAction, str] = {
    AuditAction.CREATE: "Created",
    AuditAction.UPDATE: "Updated",
    AuditAction.DELETE: "Deleted",
    AuditAction.BULK_UPDATE: "Bulk Updated",
    AuditAction.COPY: "Copied",
    AuditAction.OVERRIDE_CREATE: "Override Created",
    AuditAction.OVERRIDE_UPDATE: "Override Updated",
    AuditAction.OVERRIDE_DELETE: "Override Deleted",
    AuditAction.STOP_SELL: "Stop Sell Changed",
    AuditAction.RATE_CHANGE: "Rate Changed",
    AuditAction.AVAILABILITY_CHANGE: "Availability Changed",
    AuditAction.TIER_UPDATE: "Tier Updated",
    AuditAction.PACKAGE_UPDATE: "Package Updated",
    AuditAction.RULE_APPLY: "Rule Applied",
    AuditAction.ROLLBACK: "Rolled Back",
}

ENTITY_TYPE_LABELS: Dict[AuditEntityType, str] = {
    AuditEntityType.ROOM_RATE: "Room Rate",
    AuditEntityType.RATE_PLAN: "Rate Plan",
    AuditEntityType.RATE_OVERRIDE: "Rate Override",
    AuditEntityType.RATE_TIER: "Rate Tier",
    AuditEntityType.RATE_PACKAGE_COMPONENT: "Package Component",
    AuditEntityType.PRICING_RULE: "Pricing Rule",
}


# ============== Identity ==============

@dataclass(frozen=True)
class Actor:
    """
    Current user as supplied by the identity/session layer.

    The engine only copies it onto audit records.
    """

    id: int
    display_name: str = ""

    @property
    def label(self) -> str:
        return self.display_name or f"user-{self.id}"


SYSTEM_ACTOR = Actor(id=0, display_name="system")


# ============== Primitives ==============

@dataclass
class RoomType:
    """Read-only reference to room type master data."""

    id: int
    code: str
    name: str = ""
    status: EntityStatus = EntityStatus.ACTIVE


@dataclass
class RatePlan:
    """
    Named pricing policy.

    Attributes:
        code: Unique per hotel
        valid_from: Inclusive start of the validity window
        valid_to: Exclusive end of the validity window (None = open)
        is_package: Package plans add component totals to each cell
    """

    id: int
    code: str
    name: str = ""
    description: Optional[str] = None
    rate_type: Optional[str] = None
    category: Optional[str] = None
    rate_class: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_default: bool = False
    is_public: bool = True
    is_package: bool = False
    non_refundable: bool = False
    requires_guarantee: bool = False
    min_stay_nights: Optional[int] = None
    currency: Optional[str] = None
    status: EntityStatus = EntityStatus.ACTIVE
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class RoomRate:
    """Base nightly price. Unique key = (rate_plan_code, room_type_code, rate_date)."""

    id: int
    rate_plan_code: str
    room_type_code: str
    rate_date: date
    rate_amount: Decimal
    currency: Optional[str] = None
    availability_count: Optional[int] = None
    min_guests: Optional[int] = None
    max_guests: Optional[int] = None
    stop_sell: bool = False
    closed_for_arrival: bool = False
    closed_for_departure: bool = False
    status: EntityStatus = EntityStatus.ACTIVE
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self):
        return (self.rate_plan_code, self.room_type_code, self.rate_date)


@dataclass
class RateTier:
    """Length-of-stay adjustment: matches when min_nights <= nights < max_nights."""

    id: int
    rate_plan_id: int
    min_nights: int
    adjustment_type: AdjustmentType
    adjustment_value: Decimal
    max_nights: Optional[int] = None
    priority: int = 1
    status: EntityStatus = EntityStatus.ACTIVE
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def matches(self, nights: int) -> bool:
        upper = self.max_nights if self.max_nights is not None else math.inf
        return self.min_nights <= nights < upper


@dataclass
class RateOverride:
    """Date-specific adjustment. room_type_id None means plan-wide."""

    id: int
    rate_plan_id: int
    override_date: date
    override_type: AdjustmentType
    override_value: Decimal
    room_type_id: Optional[int] = None
    reason: Optional[str] = None
    stop_sell: bool = False
    closed_for_arrival: bool = False
    closed_for_departure: bool = False
    status: EntityStatus = EntityStatus.ACTIVE
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_plan_wide(self) -> bool:
        return self.room_type_id is None


@dataclass
class PricingRule:
    """Hotel-wide conditional adjustment, evaluated by descending priority."""

    id: int
    rule_name: str
    rule_type: PricingRuleType = PricingRuleType.OTHER
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    discount_percentage: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    price_adjustment: Optional[Decimal] = None
    minimum_nights: Optional[int] = None
    maximum_nights: Optional[int] = None
    advance_booking_days: Optional[int] = None
    is_active: bool = True
    priority: int = 0
    description: Optional[str] = None
    status: EntityStatus = EntityStatus.ACTIVE
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class RatePackageComponent:
    """Bundled inclusion priced on top of the room rate."""

    id: int
    rate_plan_id: int
    component_name: str
    component_type: ComponentType = ComponentType.OTHER
    component_code: Optional[str] = None
    quantity: int = 1
    unit_price: Optional[Decimal] = None
    price_adult: Optional[Decimal] = None
    price_child: Optional[Decimal] = None
    price_infant: Optional[Decimal] = None
    is_included: bool = True
    description: Optional[str] = None
    status: EntityStatus = EntityStatus.ACTIVE
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Occupancy:
    adults: int = 1
    children: int = 0
    infants: int = 0


def component_total(component: RatePackageComponent, occupancy: Occupancy = Occupancy()) -> Decimal:
    """quantity x unit price, or quantity x per-audience prices for the occupancy."""
    quantity = Decimal(component.quantity or 0)
    if component.unit_price is not None:
        return to_money(quantity * Decimal(component.unit_price))
    per_stay = (
        Decimal(component.price_adult or 0) * occupancy.adults
        + Decimal(component.price_child or 0) * occupancy.children
        + Decimal(component.price_infant or 0) * occupancy.infants
    )
    return to_money(quantity * per_stay)


# ============== Audit ==============

@dataclass(frozen=True)
class RateAuditRecord:
    """
    Append-only audit entry.

    previous_value is None for CREATE, new_value is None for DELETE.
    changed_fields is derived from the two snapshots at record time.
    """

    id: int
    entity_type: AuditEntityType
    entity_id: Optional[int]
    action: AuditAction
    actor_id: int
    actor_name: str
    timestamp: datetime
    previous_value: Optional[Dict[str, Any]]
    new_value: Optional[Dict[str, Any]]
    changed_fields: List[str] = field(default_factory=list)
    entity_name: Optional[str] = None
    change_description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entityType": self.entity_type.value,
            "entityId": self.entity_id,
            "entityName": self.entity_name,
            "action": self.action.value,
            "userId": self.actor_id,
            "userName": self.actor_name,
            "previousValue": self.previous_value,
            "newValue": self.new_value,
            "changedFields": list(self.changed_fields),
            "changeDescription": self.change_description,
            "metadata": dict(self.metadata),
            "createdAt": self.timestamp.isoformat(),
        }


# ============== Bulk results ==============

@dataclass(frozen=True)
class CellError:
    """
    One failed cell of a batch.

    kind is one of: validation, not_found, conflict, upstream, audit_write.
    """

    cell_key: str
    reason: str
    kind: str = "upstream"

    def to_dict(self) -> Dict[str, Any]:
        return {"cellKey": self.cell_key, "reason": self.reason, "kind": self.kind}


@dataclass
class BulkResult:
    """Aggregated outcome of a batch write. Failures never raise out of a batch."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    errors: List[CellError] = field(default_factory=list)
    audit_ids: List[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped

    @property
    def message(self) -> str:
        return f"Updated {self.succeeded} of {self.total} cells"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "total": self.total,
            "message": self.message,
            "errors": [e.to_dict() for e in self.errors],
            "auditIds": list(self.audit_ids),
        }


# ============== Pagination ==============

@dataclass
class Page(Generic[T]):
    """Store pagination contract: {content, page, size, totalElements, totalPages}."""

    content: List[T]
    page: int
    size: int
    total_elements: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return math.ceil(self.total_elements / self.size)

    @classmethod
    def slice(cls, items: List[T], page: int, size: int) -> "Page[T]":
        start = page * size
        return cls(content=items[start:start + size], page=page, size=size,
                   total_elements=len(items))


__all__ = [
    "to_money",
    "EntityStatus",
    "GuestType",
    "AdjustmentType",
    "PricingRuleType",
    "ComponentType",
    "AuditEntityType",
    "AuditAction",
    "AUDIT_ACTION_LABELS",
    "ENTITY_TYPE_LABELS",
    "Actor",
    "SYSTEM_ACTOR",
    "RoomType",
    "RatePlan",
    "RoomRate",
    "RateTier",
    "RateOverride",
    "PricingRule",
    "RatePackageComponent",
    "Occupancy",
    "component_total",
    "RateAuditRecord",
    "CellError",
    "BulkResult",
    "Page",
]
