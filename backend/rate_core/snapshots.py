"""
rate_core/snapshots.py

Typed audit snapshots per entity type.

Snapshots are camelCase JSON-friendly dicts (the audit wire format). Each
entity type has a pydantic model so snapshots are validated both ways;
unknown keys are kept (extra="allow") so newer fields survive a round trip,
and arbitrary dicts fall back to plain JSON normalisation.
"""
from typing import Any, ClassVar, Dict, Optional, Type
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import AfterValidator, BaseModel, ConfigDict, PlainSerializer
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from typing_extensions import Annotated

from rate_core.errors import ValidationError
from rate_core.models import (
    AdjustmentType, AuditEntityType, ComponentType, EntityStatus, PricingRuleType, to_money,
)

Money = Annotated[Decimal, AfterValidator(to_money), PlainSerializer(float, return_type=float, when_used="json")]

# Bookkeeping fields that change on every write and never appear in snapshots
_BOOKKEEPING = {"created_at", "updated_at", "version"}


class _Snapshot(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    schema_version: ClassVar[int] = 1

    id: Optional[int] = None
    status: Optional[EntityStatus] = None


class RoomRateSnapshot(_Snapshot):
    rate_plan_code: Optional[str] = None
    room_type_code: Optional[str] = None
    rate_date: Optional[date] = None
    rate_amount: Optional[Money] = None
    currency: Optional[str] = None
    availability_count: Optional[int] = None
    min_guests: Optional[int] = None
    max_guests: Optional[int] = None
    stop_sell: Optional[bool] = None
    closed_for_arrival: Optional[bool] = None
    closed_for_departure: Optional[bool] = None


class RatePlanSnapshot(_Snapshot):
    code: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    rate_type: Optional[str] = None
    category: Optional[str] = None
    rate_class: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_default: Optional[bool] = None
    is_public: Optional[bool] = None
    is_package: Optional[bool] = None
    non_refundable: Optional[bool] = None
    requires_guarantee: Optional[bool] = None
    min_stay_nights: Optional[int] = None
    currency: Optional[str] = None


class RateTierSnapshot(_Snapshot):
    rate_plan_id: Optional[int] = None
    min_nights: Optional[int] = None
    max_nights: Optional[int] = None
    adjustment_type: Optional[AdjustmentType] = None
    adjustment_value: Optional[Money] = None
    priority: Optional[int] = None


class RateOverrideSnapshot(_Snapshot):
    rate_plan_id: Optional[int] = None
    room_type_id: Optional[int] = None
    override_date: Optional[date] = None
    override_type: Optional[AdjustmentType] = None
    override_value: Optional[Money] = None
    reason: Optional[str] = None
    stop_sell: Optional[bool] = None
    closed_for_arrival: Optional[bool] = None
    closed_for_departure: Optional[bool] = None


class PricingRuleSnapshot(_Snapshot):
    rule_name: Optional[str] = None
    rule_type: Optional[PricingRuleType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    discount_percentage: Optional[Money] = None
    discount_amount: Optional[Money] = None
    price_adjustment: Optional[Money] = None
    minimum_nights: Optional[int] = None
    maximum_nights: Optional[int] = None
    advance_booking_days: Optional[int] = None
    is_active: Optional[bool] = None
    priority: Optional[int] = None
    description: Optional[str] = None


class PackageComponentSnapshot(_Snapshot):
    rate_plan_id: Optional[int] = None
    component_type: Optional[ComponentType] = None
    component_code: Optional[str] = None
    component_name: Optional[str] = None
    quantity: Optional[int] = None
    unit_price: Optional[Money] = None
    price_adult: Optional[Money] = None
    price_child: Optional[Money] = None
    price_infant: Optional[Money] = None
    is_included: Optional[bool] = None
    description: Optional[str] = None


SNAPSHOT_MODELS: Dict[AuditEntityType, Type[_Snapshot]] = {
    AuditEntityType.ROOM_RATE: RoomRateSnapshot,
    AuditEntityType.RATE_PLAN: RatePlanSnapshot,
    AuditEntityType.RATE_TIER: RateTierSnapshot,
    AuditEntityType.RATE_OVERRIDE: RateOverrideSnapshot,
    AuditEntityType.PRICING_RULE: PricingRuleSnapshot,
    AuditEntityType.RATE_PACKAGE_COMPONENT: PackageComponentSnapshot,
}


def schema_version(entity_type: AuditEntityType) -> int:
    model = SNAPSHOT_MODELS.get(AuditEntityType(entity_type))
    return model.schema_version if model else 0


def normalize(value: Any) -> Any:
    """Generic fallback: make a value JSON-friendly."""
    if isinstance(value, dict):
        return {str(k): normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def to_snapshot(entity_type: AuditEntityType, entity: Any) -> Optional[Dict[str, Any]]:
    """
    Build the snapshot for an entity or a raw dict.

    Dataclass entities go through the typed model; plain dicts are
    normalised as-is so callers can record arbitrary structured state.
    """
    if entity is None:
        return None
    if not is_dataclass(entity):
        return normalize(dict(entity))
    data = {k: v for k, v in asdict(entity).items() if k not in _BOOKKEEPING}
    model = SNAPSHOT_MODELS.get(AuditEntityType(entity_type))
    if model is None:
        return normalize(data)
    return model.model_validate(data).model_dump(mode="json", by_alias=True)


def _parse(entity_type: AuditEntityType, data: Dict[str, Any]) -> Dict[str, Any]:
    model = SNAPSHOT_MODELS[AuditEntityType(entity_type)]
    try:
        parsed = model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {AuditEntityType(entity_type).value} values: {e.errors()}")
    known = set(model.model_fields) - {"id"}
    return {k: v for k, v in parsed.model_dump(exclude_unset=True).items() if k in known}


def from_snapshot(entity_type: AuditEntityType, snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a snapshot back into a store payload (snake_case, typed values).

    Only keys present in the snapshot are returned; the id and unknown
    extra keys are dropped.
    """
    return _parse(entity_type, snapshot)


def coerce_payload(entity_type: AuditEntityType, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and type a write payload (snake_case or camelCase keys).

    Money is quantized to 2 places and enum strings become enum members.

    Raises:
        ValidationError: unknown keys or values of the wrong type.
    """
    model = SNAPSHOT_MODELS[AuditEntityType(entity_type)]
    accepted = set(model.model_fields) | {f.alias for f in model.model_fields.values() if f.alias}
    unknown = set(payload) - accepted
    if unknown:
        raise ValidationError(f"Unknown fields: {sorted(unknown)}")
    return _parse(entity_type, payload)


__all__ = [
    "SNAPSHOT_MODELS",
    "schema_version",
    "normalize",
    "to_snapshot",
    "from_snapshot",
    "coerce_payload",
]
