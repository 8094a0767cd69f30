"""
rate_core/mutations.py

Single-entity write path for pricing primitives.

Every write validates first, then stores, then appends exactly one audit
record. Errors propagate to the caller; batch helpers in this module
(delete_room_rates_in_range) aggregate them into a BulkResult instead.
"""
from typing import Any, Callable, Dict, List, Optional, Tuple
from datetime import date
import logging

from rate_core.audit import AuditRecorder
from rate_core.errors import (
    AuditWriteError, NotFoundError, RateEngineError, UpstreamWriteError, ValidationError,
    VersionConflictError,
)
from rate_core.models import (
    Actor, AuditAction, AuditEntityType, BulkResult, CellError, EntityStatus,
    PricingRule, RateAuditRecord, RatePlan, RateTier, RoomRate,
)
from rate_core.snapshots import coerce_payload, from_snapshot, to_snapshot
from rate_core.store import PricingStore

logger = logging.getLogger(__name__)

Entity = Any
Validator = Callable[["RateMutationService", Dict[str, Any]], List[str]]

_REQUIRED = {
    AuditEntityType.ROOM_RATE: ("rate_plan_code", "room_type_code", "rate_date", "rate_amount"),
    AuditEntityType.RATE_PLAN: ("code",),
    AuditEntityType.RATE_TIER: ("rate_plan_id", "min_nights", "adjustment_type", "adjustment_value"),
    AuditEntityType.RATE_OVERRIDE: ("rate_plan_id", "override_date", "override_type", "override_value"),
    AuditEntityType.PRICING_RULE: ("rule_name",),
    AuditEntityType.RATE_PACKAGE_COMPONENT: ("rate_plan_id", "component_name"),
}

_CREATE_ACTIONS = {AuditEntityType.RATE_OVERRIDE: AuditAction.OVERRIDE_CREATE}
_UPDATE_ACTIONS = {
    AuditEntityType.RATE_OVERRIDE: AuditAction.OVERRIDE_UPDATE,
    AuditEntityType.RATE_TIER: AuditAction.TIER_UPDATE,
    AuditEntityType.RATE_PACKAGE_COMPONENT: AuditAction.PACKAGE_UPDATE,
}
_DELETE_ACTIONS = {AuditEntityType.RATE_OVERRIDE: AuditAction.OVERRIDE_DELETE}


def room_rate_token(rate: RoomRate, rate_plan_id: Optional[int], room_type_id: Optional[int]) -> str:
    """Cell key token for a stored rate; falls back to codes when ids are unknown."""
    plan = rate_plan_id if rate_plan_id is not None else rate.rate_plan_code
    room_type = room_type_id if room_type_id is not None else rate.room_type_code
    return f"{plan}-{room_type}-{rate.rate_date.isoformat()}"


# ============== Validation ==============

def _non_negative(data: Dict[str, Any], *names: str) -> List[str]:
    return [f"{n} must be >= 0" for n in names if data.get(n) is not None and data[n] < 0]


def _validate_room_rate(service: "RateMutationService", data: Dict[str, Any]) -> List[str]:
    errors = _non_negative(data, "rate_amount", "availability_count")
    if data.get("min_guests") is not None and data.get("max_guests") is not None:
        if data["min_guests"] > data["max_guests"]:
            errors.append("min_guests must not exceed max_guests")
    if data.get("rate_plan_code") and service.store.rate_plans.get_by_code(data["rate_plan_code"]) is None:
        errors.append(f"Unknown rate plan code {data['rate_plan_code']}")
    if data.get("room_type_code") and service.store.room_types.get_by_code(data["room_type_code"]) is None:
        errors.append(f"Unknown room type code {data['room_type_code']}")
    return errors


def _validate_rate_plan(service: "RateMutationService", data: Dict[str, Any]) -> List[str]:
    errors = []
    if data.get("valid_from") and data.get("valid_to") and data["valid_from"] > data["valid_to"]:
        errors.append("valid_from must not be after valid_to")
    if data.get("min_stay_nights") is not None and data["min_stay_nights"] < 1:
        errors.append("min_stay_nights must be >= 1")
    return errors


def _validate_tier(service: "RateMutationService", data: Dict[str, Any]) -> List[str]:
    errors = service.check_rate_plan(data.get("rate_plan_id"))
    if data.get("min_nights") is not None and data["min_nights"] < 1:
        errors.append("min_nights must be >= 1")
    if data.get("max_nights") is not None and data.get("min_nights") is not None:
        if data["max_nights"] <= data["min_nights"]:
            errors.append("max_nights must be greater than min_nights")
    if data.get("priority") is not None and data["priority"] < 1:
        errors.append("priority must be >= 1")
    return errors


def _validate_override(service: "RateMutationService", data: Dict[str, Any]) -> List[str]:
    errors = service.check_rate_plan(data.get("rate_plan_id"))
    if data.get("room_type_id") is not None and service.store.room_types.get(data["room_type_id"]) is None:
        errors.append(f"Unknown room type {data['room_type_id']}")
    return errors


def _validate_rule(service: "RateMutationService", data: Dict[str, Any]) -> List[str]:
    errors = _non_negative(data, "discount_amount", "advance_booking_days", "priority")
    pct = data.get("discount_percentage")
    if pct is not None and not (0 <= pct <= 100):
        errors.append("discount_percentage must be between 0 and 100")
    if data.get("start_date") and data.get("end_date") and data["start_date"] > data["end_date"]:
        errors.append("start_date must not be after end_date")
    if data.get("minimum_nights") is not None and data.get("maximum_nights") is not None:
        if data["minimum_nights"] > data["maximum_nights"]:
            errors.append("minimum_nights must not exceed maximum_nights")
    return errors


def _validate_component(service: "RateMutationService", data: Dict[str, Any]) -> List[str]:
    errors = service.check_rate_plan(data.get("rate_plan_id"))
    errors += _non_negative(data, "unit_price", "price_adult", "price_child", "price_infant")
    if data.get("quantity") is not None and data["quantity"] < 1:
        errors.append("quantity must be >= 1")
    return errors


_VALIDATORS: Dict[AuditEntityType, Validator] = {
    AuditEntityType.ROOM_RATE: _validate_room_rate,
    AuditEntityType.RATE_PLAN: _validate_rate_plan,
    AuditEntityType.RATE_TIER: _validate_tier,
    AuditEntityType.RATE_OVERRIDE: _validate_override,
    AuditEntityType.PRICING_RULE: _validate_rule,
    AuditEntityType.RATE_PACKAGE_COMPONENT: _validate_component,
}


# ============== Service ==============

class RateMutationService:
    """
    Audited create/update/delete for every pricing primitive.

    Example:
        >>> service = RateMutationService(store)
        >>> plan = service.create(AuditEntityType.RATE_PLAN, {"code": "BAR", "name": "Best Available"}, actor)
        >>> service.recorder.history(AuditEntityType.RATE_PLAN, plan.id).total_elements
        1
    """

    def __init__(self, store: PricingStore, recorder: Optional[AuditRecorder] = None):
        self.store = store
        self.recorder = recorder or AuditRecorder(store)
        self.recorder.bind_writer(self)

    # ---------- helpers ----------

    def check_rate_plan(self, rate_plan_id: Optional[int]) -> List[str]:
        if rate_plan_id is not None and self.store.rate_plans.get(rate_plan_id) is None:
            return [f"Unknown rate plan {rate_plan_id}"]
        return []

    def check_plan_code_change(self, current: RatePlan, code: Optional[str]) -> List[str]:
        """Room rates key on the plan code, so a referenced code is frozen."""
        if not code or code == current.code:
            return []
        errors = []
        other = self.store.rate_plans.get_by_code(code)
        if other is not None and other.id != current.id:
            errors.append(f"Rate plan code {code} already exists")
        if self.store.room_rates.list({"rate_plan_code": current.code}, size=1).total_elements:
            errors.append(f"Rate plan code {current.code} is referenced by room rates")
        return errors

    def validate(self, entity_type: AuditEntityType, payload: Dict[str, Any],
                 current: Optional[Entity] = None) -> Dict[str, Any]:
        """
        Coerce and validate a payload against the effective (merged) state.

        Raises:
            ValidationError: before anything is written.
        """
        entity_type = AuditEntityType(entity_type)
        data = coerce_payload(entity_type, payload)
        merged = dict(from_snapshot(entity_type, to_snapshot(entity_type, current))) if current else {}
        merged.update(data)
        if current is None:
            missing = [f for f in _REQUIRED[entity_type] if merged.get(f) is None]
            if missing:
                raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        errors = _VALIDATORS[entity_type](self, merged)
        if entity_type == AuditEntityType.RATE_PLAN and current is not None:
            errors += self.check_plan_code_change(current, merged.get("code"))
        if errors:
            raise ValidationError("; ".join(errors), {"errors": errors})
        return data

    def _guard(self, write: Callable, *args, **kwargs):
        try:
            return write(*args, **kwargs)
        except RateEngineError:
            raise
        except Exception as e:
            raise UpstreamWriteError(f"Store rejected write: {e}") from e

    def _audit(self, entity_type: AuditEntityType, entity_id: Optional[int], action: AuditAction,
               previous: Any, new: Any, actor: Actor, **kwargs) -> RateAuditRecord:
        try:
            return self.recorder.record(entity_type, entity_id, action, previous, new, actor, **kwargs)
        except AuditWriteError as e:
            logger.error(
                f"Integrity gap: {AuditEntityType(entity_type).value}:{entity_id} written "
                f"without audit record ({e.cause})"
            )
            raise

    def _get(self, entity_type: AuditEntityType, entity_id: int) -> Entity:
        entity = self.store.repository_for(entity_type).get(entity_id)
        if entity is None:
            raise NotFoundError(f"{AuditEntityType(entity_type).value} {entity_id} not found")
        return entity

    # ---------- generic CRUD ----------

    def _create(self, entity_type, payload, actor, action=None, metadata=None):
        entity_type = AuditEntityType(entity_type)
        if entity_type == AuditEntityType.ROOM_RATE:
            # an existing natural key is an update of that rate
            _, rate, record = self.upsert_room_rate(payload, actor, action=action, metadata=metadata)
            return rate, record
        data = self.validate(entity_type, payload)
        entity = self._guard(self.store.repository_for(entity_type).create, data)
        action = action or _CREATE_ACTIONS.get(entity_type, AuditAction.CREATE)
        record = self._audit(entity_type, entity.id, action, None, entity, actor, metadata=metadata)
        return entity, record

    def _update(self, entity_type, entity_id, payload, actor, expected_version=None,
                action=None, metadata=None):
        entity_type = AuditEntityType(entity_type)
        current = self._get(entity_type, entity_id)
        data = self.validate(entity_type, payload, current)
        entity = self._guard(self.store.repository_for(entity_type).update, entity_id, data,
                             expected_version=expected_version)
        action = action or _UPDATE_ACTIONS.get(entity_type, AuditAction.UPDATE)
        record = self._audit(entity_type, entity_id, action, current, entity, actor, metadata=metadata)
        return entity, record

    def _delete(self, entity_type, entity_id, actor, action=None, metadata=None):
        entity_type = AuditEntityType(entity_type)
        current = self._get(entity_type, entity_id)
        entity = self._guard(self.store.repository_for(entity_type).delete, entity_id)
        action = action or _DELETE_ACTIONS.get(entity_type, AuditAction.DELETE)
        record = self._audit(entity_type, entity_id, action, current, None, actor, metadata=metadata)
        return entity, record

    def create(self, entity_type: AuditEntityType, payload: Dict[str, Any], actor: Actor,
               action: Optional[AuditAction] = None) -> Entity:
        return self._create(entity_type, payload, actor, action)[0]

    def update(self, entity_type: AuditEntityType, entity_id: int, payload: Dict[str, Any],
               actor: Actor, expected_version: Optional[int] = None,
               action: Optional[AuditAction] = None) -> Entity:
        return self._update(entity_type, entity_id, payload, actor, expected_version, action)[0]

    def delete(self, entity_type: AuditEntityType, entity_id: int, actor: Actor) -> Entity:
        """Soft delete: the entity decays to INACTIVE."""
        return self._delete(entity_type, entity_id, actor)[0]

    # ---------- room rates ----------

    def upsert_room_rate(
        self,
        payload: Dict[str, Any],
        actor: Actor,
        expected_version: Optional[int] = None,
        action: Optional[AuditAction] = None,
        audit: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Optional[RoomRate], RoomRate, Optional[RateAuditRecord]]:
        """
        Write a rate on its natural key.

        With audit=False the caller takes over recording (batch audit mode).

        Returns:
            (previous state or None, new state, audit record or None)
        """
        data = coerce_payload(AuditEntityType.ROOM_RATE, payload)
        existing = None
        if all(data.get(k) is not None for k in ("rate_plan_code", "room_type_code", "rate_date")):
            existing = self.store.room_rates.find_by_key(
                data["rate_plan_code"], data["room_type_code"], data["rate_date"]
            )
        data = self.validate(AuditEntityType.ROOM_RATE, payload, existing)
        if existing is not None and existing.status != EntityStatus.ACTIVE:
            # writing a soft-deleted key revives it
            data.setdefault("status", EntityStatus.ACTIVE)

        previous, rate = self._guard(self.store.room_rates.upsert, data, expected_version=expected_version)
        record = None
        if audit:
            action = action or (AuditAction.CREATE if previous is None else AuditAction.UPDATE)
            record = self._audit(AuditEntityType.ROOM_RATE, rate.id, action, previous, rate, actor,
                                 metadata=metadata)
        return previous, rate, record

    def delete_room_rates_in_range(self, rate_plan_code: str, room_type_code: str,
                                   start: date, end: date, actor: Actor) -> BulkResult:
        """Soft-delete every active rate of a plan/room type in [start, end]."""
        if start > end:
            raise ValidationError("start must not be after end")
        plan = self.store.rate_plans.get_by_code(rate_plan_code)
        room_type = self.store.room_types.get_by_code(room_type_code)
        criteria = {
            "rate_plan_code": rate_plan_code,
            "room_type_code": room_type_code,
            "status": EntityStatus.ACTIVE,
            "start_date": start,
            "end_date": end,
        }
        result = BulkResult()
        for rate in list(self.store.room_rates.iter_all(criteria)):
            token = room_rate_token(rate, plan.id if plan else None, room_type.id if room_type else None)
            try:
                _, record = self._delete(AuditEntityType.ROOM_RATE, rate.id, actor)
            except AuditWriteError as e:
                result.failed += 1
                result.errors.append(CellError(token, e.message, "audit_write"))
                continue
            except RateEngineError as e:
                logger.warning(f"Delete of {token} failed: {e.message}")
                result.failed += 1
                result.errors.append(CellError(token, e.message, error_kind(e)))
                continue
            result.succeeded += 1
            result.audit_ids.append(record.id)
        logger.info(f"Deleted {result.succeeded} of {result.total} rates for {rate_plan_code}/{room_type_code}")
        return result

    # ---------- rules and tiers ----------

    def toggle_rule_active(self, rule_id: int, actor: Actor) -> PricingRule:
        rule = self._get(AuditEntityType.PRICING_RULE, rule_id)
        return self.update(AuditEntityType.PRICING_RULE, rule_id, {"is_active": not rule.is_active}, actor)

    def set_rule_priority(self, rule_id: int, priority: int, actor: Actor) -> PricingRule:
        if priority is None or priority < 0:
            raise ValidationError("priority must be >= 0")
        return self.update(AuditEntityType.PRICING_RULE, rule_id, {"priority": priority}, actor)

    def reorder_tier_priorities(self, rate_plan_id: int, tier_ids: List[int],
                                actor: Actor) -> List[RateTier]:
        """
        Assign priorities 1..n in the given order.

        All ids are checked before the first write; only tiers whose priority
        actually changes are written (one TIER_UPDATE record each).
        """
        if len(set(tier_ids)) != len(tier_ids):
            raise ValidationError("Duplicate tier ids")
        tiers = [self._get(AuditEntityType.RATE_TIER, tier_id) for tier_id in tier_ids]
        foreign = [t.id for t in tiers if t.rate_plan_id != rate_plan_id]
        if foreign:
            raise ValidationError(f"Tiers {foreign} do not belong to rate plan {rate_plan_id}")

        result = []
        for priority, tier in enumerate(tiers, start=1):
            if tier.priority != priority:
                tier = self.update(AuditEntityType.RATE_TIER, tier.id, {"priority": priority}, actor)
            result.append(tier)
        return result

    # ---------- audit-driven writes ----------

    def record_bulk(self, previous: Dict[str, Any], new: Dict[str, Any], actor: Actor,
                    description: str, metadata: Optional[Dict[str, Any]] = None) -> RateAuditRecord:
        """One BULK_UPDATE record keyed by cell token for a whole batch."""
        meta = {"batch": True, "cells": list(new)}
        meta.update(metadata or {})
        return self._audit(AuditEntityType.ROOM_RATE, None, AuditAction.BULK_UPDATE, previous, new,
                           actor, description=description, metadata=meta)

    def rollback(self, record: RateAuditRecord, actor: Actor) -> RateAuditRecord:
        """
        Re-apply a record's previous value through the normal write path.

        CREATE records roll back to a soft delete; DELETE and UPDATE records
        restore the previous snapshot. Returns the new ROLLBACK record.
        """
        metadata = {"rolledBackAuditId": record.id}
        if record.action == AuditAction.BULK_UPDATE and record.metadata.get("batch"):
            return self._rollback_batch(record, actor, metadata)
        if record.entity_id is None:
            raise ValidationError(f"Audit record {record.id} has no entity to restore")

        if record.previous_value is None:
            _, new_record = self._delete(record.entity_type, record.entity_id, actor,
                                         AuditAction.ROLLBACK, metadata)
        else:
            payload = from_snapshot(record.entity_type, record.previous_value)
            if not payload:
                raise ValidationError(f"Audit record {record.id} has nothing to restore")
            _, new_record = self._update(record.entity_type, record.entity_id, payload, actor,
                                         action=AuditAction.ROLLBACK, metadata=metadata)
        logger.info(f"Audit {record.id} rolled back as audit {new_record.id} by {actor.label}")
        return new_record

    def _rollback_batch(self, record: RateAuditRecord, actor: Actor,
                        metadata: Dict[str, Any]) -> RateAuditRecord:
        restored_from: Dict[str, Any] = {}
        restored_to: Dict[str, Any] = {}
        failed = []
        created = record.new_value or {}
        for token, snapshot in (record.previous_value or {}).items():
            try:
                if snapshot is None:
                    rate_id = (created.get(token) or {}).get("id")
                    if rate_id is None:
                        raise ValidationError(f"No created rate recorded for {token}")
                    before = self._get(AuditEntityType.ROOM_RATE, rate_id)
                    after = self._guard(self.store.room_rates.delete, rate_id)
                else:
                    payload = from_snapshot(AuditEntityType.ROOM_RATE, snapshot)
                    before, after = self._guard(self.store.room_rates.upsert, payload)
            except RateEngineError as e:
                logger.warning(f"Rollback of {token} from audit {record.id} failed: {e.message}")
                failed.append(token)
                continue
            restored_from[token] = to_snapshot(AuditEntityType.ROOM_RATE, before)
            restored_to[token] = to_snapshot(AuditEntityType.ROOM_RATE, after)

        metadata["failedCells"] = failed
        new_record = self.record_bulk(restored_from, restored_to, actor,
                                      f"Rolled back bulk update {record.id}", metadata)
        logger.info(f"Bulk audit {record.id} rolled back: {len(restored_to)} cells restored, {len(failed)} failed")
        return new_record


def error_kind(error: Exception) -> str:
    """Classify an engine error for BulkResult reporting."""
    # VersionConflictError is an UpstreamWriteError, check it first
    if isinstance(error, AuditWriteError):
        return "audit_write"
    if isinstance(error, VersionConflictError):
        return "conflict"
    if isinstance(error, ValidationError):
        return "validation"
    if isinstance(error, NotFoundError):
        return "not_found"
    return "upstream"


__all__ = [
    "RateMutationService",
    "room_rate_token",
    "error_kind",
]
