"""
Pricing primitive routes - audited CRUD for every primitive type

Each primitive gets the same list / get / create / update / delete routes;
bodies are camelCase or snake_case dicts validated by the engine.
"""
from typing import Any, Dict, List, Optional
from datetime import date
from fastapi import APIRouter, Depends, HTTPException, Query, status

from rate_api.dependencies import get_mutation_service, get_store, http_error
from rate_api.models.schemas import PriorityUpdate, RoomRateRangeDelete, RoomTypeCreate, TierOrder
from rate_api.security.auth import get_current_actor
from rate_api.services.sql_store import SqlPricingStore
from rate_core.errors import RateEngineError
from rate_core.models import Actor, AuditEntityType, EntityStatus
from rate_core.mutations import RateMutationService
from rate_core.snapshots import to_snapshot


def entity_out(entity_type: AuditEntityType, entity) -> Dict[str, Any]:
    data = to_snapshot(entity_type, entity)
    data["version"] = entity.version
    return data


def crud_router(prefix: str, entity_type: AuditEntityType, tag: str) -> APIRouter:
    """Build list/get/create/update/delete routes for one primitive type"""
    router = APIRouter(prefix=prefix, tags=[tag])

    @router.get("")
    def list_entities(
        status_filter: Optional[EntityStatus] = Query(default=None, alias="status"),
        rate_plan_id: Optional[int] = Query(default=None, alias="ratePlanId"),
        rate_plan_code: Optional[str] = Query(default=None, alias="ratePlanCode"),
        room_type_code: Optional[str] = Query(default=None, alias="roomTypeCode"),
        start_date: Optional[date] = Query(default=None, alias="startDate"),
        end_date: Optional[date] = Query(default=None, alias="endDate"),
        is_active: Optional[bool] = Query(default=None, alias="isActive"),
        page: int = Query(default=0, ge=0),
        size: int = Query(default=100, ge=1, le=1000),
        store: SqlPricingStore = Depends(get_store),
        actor: Actor = Depends(get_current_actor),
    ):
        criteria = {
            "status": status_filter,
            "rate_plan_id": rate_plan_id,
            "rate_plan_code": rate_plan_code,
            "room_type_code": room_type_code,
            "start_date": start_date,
            "end_date": end_date,
            "is_active": is_active,
        }
        result = store.repository_for(entity_type).list(criteria, page=page, size=size)
        return {
            "content": [entity_out(entity_type, e) for e in result.content],
            "page": result.page,
            "size": result.size,
            "totalElements": result.total_elements,
            "totalPages": result.total_pages,
        }

    @router.get("/{entity_id}")
    def get_entity(
        entity_id: int,
        store: SqlPricingStore = Depends(get_store),
        actor: Actor = Depends(get_current_actor),
    ):
        entity = store.repository_for(entity_type).get(entity_id)
        if entity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{tag} {entity_id} not found")
        return entity_out(entity_type, entity)

    @router.post("", status_code=status.HTTP_201_CREATED)
    def create_entity(
        payload: Dict[str, Any],
        service: RateMutationService = Depends(get_mutation_service),
        actor: Actor = Depends(get_current_actor),
    ):
        try:
            entity = service.create(entity_type, payload, actor)
        except RateEngineError as e:
            raise http_error(e)
        return entity_out(entity_type, entity)

    @router.put("/{entity_id}")
    def update_entity(
        entity_id: int,
        payload: Dict[str, Any],
        expected_version: Optional[int] = Query(default=None, alias="expectedVersion"),
        service: RateMutationService = Depends(get_mutation_service),
        actor: Actor = Depends(get_current_actor),
    ):
        try:
            entity = service.update(entity_type, entity_id, payload, actor, expected_version=expected_version)
        except RateEngineError as e:
            raise http_error(e)
        return entity_out(entity_type, entity)

    @router.delete("/{entity_id}")
    def delete_entity(
        entity_id: int,
        service: RateMutationService = Depends(get_mutation_service),
        actor: Actor = Depends(get_current_actor),
    ):
        try:
            entity = service.delete(entity_type, entity_id, actor)
        except RateEngineError as e:
            raise http_error(e)
        return entity_out(entity_type, entity)

    return router


rate_plans = crud_router("/rate-plans", AuditEntityType.RATE_PLAN, "Rate Plans")
room_rates = crud_router("/room-rates", AuditEntityType.ROOM_RATE, "Room Rates")
rate_tiers = crud_router("/rate-tiers", AuditEntityType.RATE_TIER, "Rate Tiers")
rate_overrides = crud_router("/rate-overrides", AuditEntityType.RATE_OVERRIDE, "Rate Overrides")
pricing_rules = crud_router("/pricing-rules", AuditEntityType.PRICING_RULE, "Pricing Rules")
package_components = crud_router(
    "/rate-package-components", AuditEntityType.RATE_PACKAGE_COMPONENT, "Package Components"
)


# ============== Primitive-specific routes ==============

extras = APIRouter(tags=["Pricing Primitives"])


@extras.put("/room-rates")
def upsert_room_rate(
    payload: Dict[str, Any],
    expected_version: Optional[int] = Query(default=None, alias="expectedVersion"),
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
):
    """Create or update the rate for its (plan, room type, date) key"""
    try:
        _, rate, _ = service.upsert_room_rate(payload, actor, expected_version=expected_version)
    except RateEngineError as e:
        raise http_error(e)
    return entity_out(AuditEntityType.ROOM_RATE, rate)


@extras.post("/room-rates/delete-range")
def delete_room_rates_in_range(
    data: RoomRateRangeDelete,
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
):
    """Soft-delete every rate of a plan/room type in a date range"""
    try:
        result = service.delete_room_rates_in_range(
            data.rate_plan_code, data.room_type_code, data.start_date, data.end_date, actor
        )
    except RateEngineError as e:
        raise http_error(e)
    return result.to_dict()


@extras.post("/pricing-rules/{rule_id}/toggle")
def toggle_pricing_rule(
    rule_id: int,
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
):
    try:
        rule = service.toggle_rule_active(rule_id, actor)
    except RateEngineError as e:
        raise http_error(e)
    return entity_out(AuditEntityType.PRICING_RULE, rule)


@extras.put("/pricing-rules/{rule_id}/priority")
def set_pricing_rule_priority(
    rule_id: int,
    data: PriorityUpdate,
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
):
    try:
        rule = service.set_rule_priority(rule_id, data.priority, actor)
    except RateEngineError as e:
        raise http_error(e)
    return entity_out(AuditEntityType.PRICING_RULE, rule)


@extras.put("/rate-plans/{rate_plan_id}/tier-priorities")
def reorder_tiers(
    rate_plan_id: int,
    data: TierOrder,
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
) -> List[Dict[str, Any]]:
    """Assign tier priorities 1..n in the given order"""
    try:
        tiers = service.reorder_tier_priorities(rate_plan_id, data.tier_ids, actor)
    except RateEngineError as e:
        raise http_error(e)
    return [entity_out(AuditEntityType.RATE_TIER, t) for t in tiers]


@extras.get("/room-types")
def list_room_types(
    store: SqlPricingStore = Depends(get_store),
    actor: Actor = Depends(get_current_actor),
):
    return [{"id": rt.id, "code": rt.code, "name": rt.name} for rt in store.room_types.list_all()]


@extras.post("/room-types", status_code=status.HTTP_201_CREATED)
def add_room_type(
    data: RoomTypeCreate,
    store: SqlPricingStore = Depends(get_store),
    actor: Actor = Depends(get_current_actor),
):
    """Register room type reference data mirrored from the master-data system"""
    if store.room_types.get_by_code(data.code) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Room type {data.code} already exists")
    rt = store.room_types.add(data.code, data.name)
    return {"id": rt.id, "code": rt.code, "name": rt.name}


routers = [extras, rate_plans, room_rates, rate_tiers, rate_overrides, pricing_rules, package_components]
