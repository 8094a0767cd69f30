"""
Rate matrix routes
"""
from typing import Any, Dict
from fastapi import APIRouter, Depends, HTTPException, status

from rate_api.config import settings
from rate_api.dependencies import get_store, http_error
from rate_api.models.schemas import MatrixRequest, QuoteRequest
from rate_api.security.auth import get_current_actor
from rate_api.services.sql_store import SqlPricingStore
from rate_core.errors import RateEngineError
from rate_core.matrix import MatrixBuilder, MatrixOptions
from rate_core.models import Actor, EntityStatus, Occupancy
from rate_core.resolver import RateResolver, ResolveOptions

router = APIRouter(prefix="/rate-matrix", tags=["Rate Matrix"])


@router.post("/generate")
def generate_matrix(
    data: MatrixRequest,
    store: SqlPricingStore = Depends(get_store),
    actor: Actor = Depends(get_current_actor),
) -> Dict[str, Any]:
    """Resolve the date x room type x rate plan x guest type matrix"""
    options = MatrixOptions(
        include_tiers=data.include_tiers,
        include_overrides=data.include_overrides,
        include_rules=data.include_rules,
        include_package_components=data.include_package_components,
        length_of_stay=data.length_of_stay,
        booking_date=data.booking_date,
        occupancy=Occupancy(data.adults, data.children, data.infants),
    )
    builder = MatrixBuilder(store, max_workers=settings.MATRIX_MAX_WORKERS,
                            default_currency=settings.CURRENCY)
    try:
        response = builder.build(data.start_date, data.end_date, data.room_type_codes,
                                 data.rate_plan_codes, data.guest_types, options)
    except RateEngineError as e:
        raise http_error(e)
    return response.to_dict()


@router.post("/quote")
def quote_stay(
    data: QuoteRequest,
    store: SqlPricingStore = Depends(get_store),
    actor: Actor = Depends(get_current_actor),
) -> Dict[str, Any]:
    """Per-night resolution and totals for one stay"""
    plan = store.rate_plans.get_by_code(data.rate_plan_code)
    room_type = store.room_types.get_by_code(data.room_type_code)
    if plan is None or plan.status != EntityStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Rate plan {data.rate_plan_code} not found")
    if room_type is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Room type {data.room_type_code} not found")

    builder = MatrixBuilder(store)
    resolver = RateResolver(
        builder.load_context(data.check_in, data.check_out),
        today=data.booking_date,
        options=ResolveOptions(occupancy=Occupancy(data.adults, data.children, data.infants)),
        default_currency=settings.CURRENCY,
    )
    quote = resolver.quote_stay(plan, room_type, data.check_in, data.check_out, data.guest_type)
    return {
        "ratePlanCode": quote.rate_plan_code,
        "roomTypeCode": quote.room_type_code,
        "checkIn": quote.check_in.isoformat(),
        "checkOut": quote.check_out.isoformat(),
        "available": quote.available,
        "missingDates": [d.isoformat() for d in quote.missing_dates],
        "nights": [n.to_dict() for n in quote.nights],
        "roomTotal": float(quote.room_total),
        "packageTotal": float(quote.package_total),
        "total": float(quote.total),
    }
