"""
Persistent tables for pricing primitives and rate audit records.

Columns mirror the rate_core dataclasses one to one; the SQL store converts
rows to dataclasses at the repository boundary.
"""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Text,
    Enum as SQLEnum, Boolean, Numeric, UniqueConstraint,
)

from rate_api.database import Base
from rate_core.models import (
    AdjustmentType, AuditAction, AuditEntityType, ComponentType, EntityStatus, PricingRuleType,
)


class _Versioned:
    status = Column(SQLEnum(EntityStatus), default=EntityStatus.ACTIVE, nullable=False)
    version = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class RoomTypeRow(Base):
    """Room type reference data (master data lives elsewhere)"""
    __tablename__ = "room_types"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(30), unique=True, nullable=False)
    name = Column(String(100), default="")
    status = Column(SQLEnum(EntityStatus), default=EntityStatus.ACTIVE, nullable=False)


class RatePlanRow(_Versioned, Base):
    __tablename__ = "rate_plans"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(30), unique=True, nullable=False)
    name = Column(String(100), default="")
    description = Column(Text)
    rate_type = Column(String(30))
    category = Column(String(30))
    rate_class = Column(String(30))
    valid_from = Column(Date)
    valid_to = Column(Date)
    is_default = Column(Boolean, default=False)
    is_public = Column(Boolean, default=True)
    is_package = Column(Boolean, default=False)
    non_refundable = Column(Boolean, default=False)
    requires_guarantee = Column(Boolean, default=False)
    min_stay_nights = Column(Integer)
    currency = Column(String(3))


class RoomRateRow(_Versioned, Base):
    """Base nightly price, unique per (plan code, room type code, date)"""
    __tablename__ = "room_rates"
    __table_args__ = (
        UniqueConstraint("rate_plan_code", "room_type_code", "rate_date", name="uq_room_rate_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    rate_plan_code = Column(String(30), nullable=False, index=True)
    room_type_code = Column(String(30), nullable=False, index=True)
    rate_date = Column(Date, nullable=False, index=True)
    rate_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3))
    availability_count = Column(Integer)
    min_guests = Column(Integer)
    max_guests = Column(Integer)
    stop_sell = Column(Boolean, default=False)
    closed_for_arrival = Column(Boolean, default=False)
    closed_for_departure = Column(Boolean, default=False)


class RateTierRow(_Versioned, Base):
    __tablename__ = "rate_tiers"

    id = Column(Integer, primary_key=True, index=True)
    rate_plan_id = Column(Integer, ForeignKey("rate_plans.id"), nullable=False, index=True)
    min_nights = Column(Integer, nullable=False)
    max_nights = Column(Integer)
    adjustment_type = Column(SQLEnum(AdjustmentType), nullable=False)
    adjustment_value = Column(Numeric(10, 2), nullable=False)
    priority = Column(Integer, default=1)


class RateOverrideRow(_Versioned, Base):
    __tablename__ = "rate_overrides"

    id = Column(Integer, primary_key=True, index=True)
    rate_plan_id = Column(Integer, ForeignKey("rate_plans.id"), nullable=False, index=True)
    room_type_id = Column(Integer, ForeignKey("room_types.id"))  # NULL = plan-wide
    override_date = Column(Date, nullable=False, index=True)
    override_type = Column(SQLEnum(AdjustmentType), nullable=False)
    override_value = Column(Numeric(10, 2), nullable=False)
    reason = Column(String(200))
    stop_sell = Column(Boolean, default=False)
    closed_for_arrival = Column(Boolean, default=False)
    closed_for_departure = Column(Boolean, default=False)


class PricingRuleRow(_Versioned, Base):
    __tablename__ = "pricing_rules"

    id = Column(Integer, primary_key=True, index=True)
    rule_name = Column(String(100), nullable=False)
    rule_type = Column(SQLEnum(PricingRuleType), default=PricingRuleType.OTHER)
    start_date = Column(Date)
    end_date = Column(Date)
    discount_percentage = Column(Numeric(5, 2))
    discount_amount = Column(Numeric(10, 2))
    price_adjustment = Column(Numeric(10, 2))
    minimum_nights = Column(Integer)
    maximum_nights = Column(Integer)
    advance_booking_days = Column(Integer)
    is_active = Column(Boolean, default=True)
    priority = Column(Integer, default=0)  # higher is checked first
    description = Column(Text)


class RatePackageComponentRow(_Versioned, Base):
    __tablename__ = "rate_package_components"

    id = Column(Integer, primary_key=True, index=True)
    rate_plan_id = Column(Integer, ForeignKey("rate_plans.id"), nullable=False, index=True)
    component_name = Column(String(100), nullable=False)
    component_type = Column(SQLEnum(ComponentType), default=ComponentType.OTHER)
    component_code = Column(String(30))
    quantity = Column(Integer, default=1)
    unit_price = Column(Numeric(10, 2))
    price_adult = Column(Numeric(10, 2))
    price_child = Column(Numeric(10, 2))
    price_infant = Column(Numeric(10, 2))
    is_included = Column(Boolean, default=True)
    description = Column(Text)


class RateAuditRow(Base):
    """Append-only rate audit record"""
    __tablename__ = "rate_audit_records"

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(SQLEnum(AuditEntityType), nullable=False, index=True)
    entity_id = Column(Integer, index=True)
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    actor_id = Column(Integer, nullable=False)
    actor_name = Column(String(100))
    timestamp = Column(DateTime, default=datetime.utcnow, index=True)
    previous_value = Column(Text)  # JSON
    new_value = Column(Text)  # JSON
    changed_fields = Column(Text)  # JSON list
    entity_name = Column(String(200))
    change_description = Column(Text)
    metadata_json = Column(Text)  # JSON
