"""
Rate audit routes - list, summary, export, history, compare and rollback
"""
import io
from typing import Any, Dict, Optional
from datetime import date
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from rate_api.config import settings
from rate_api.dependencies import get_mutation_service, http_error
from rate_api.security.auth import get_current_actor
from rate_api.services.export_service import AuditExportService
from rate_core.audit import AuditFilters
from rate_core.errors import RateEngineError
from rate_core.models import Actor, AuditAction, AuditEntityType
from rate_core.mutations import RateMutationService

router = APIRouter(prefix="/rate-audits", tags=["Rate Audit"])


def _filters(
    entity_type: Optional[AuditEntityType] = Query(default=None, alias="entityType"),
    entity_id: Optional[int] = Query(default=None, alias="entityId"),
    action: Optional[AuditAction] = None,
    user_id: Optional[int] = Query(default=None, alias="userId"),
    user_name: Optional[str] = Query(default=None, alias="userName"),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    search: Optional[str] = None,
) -> AuditFilters:
    return AuditFilters(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor=user_id if user_id is not None else user_name,
        start=start_date,
        end=end_date,
        free_text=search,
    )


def _page(result) -> Dict[str, Any]:
    return {
        "content": [r.to_dict() for r in result.content],
        "page": result.page,
        "size": result.size,
        "totalElements": result.total_elements,
        "totalPages": result.total_pages,
    }


@router.get("")
def list_audits(
    filters: AuditFilters = Depends(_filters),
    page: int = Query(default=0, ge=0),
    size: int = Query(default=settings.AUDIT_PAGE_SIZE, ge=1, le=500),
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
):
    """Filtered audit records, newest first"""
    return _page(service.recorder.query(filters, page, size))


@router.get("/summary")
def audit_summary(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
):
    return service.recorder.summarize(start_date, end_date).to_dict()


@router.get("/export")
def export_audits(
    format: str = Query(default="csv", description="csv, excel or pdf"),
    filters: AuditFilters = Depends(_filters),
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
):
    exporter = AuditExportService(service.recorder, limit=settings.AUDIT_EXPORT_LIMIT)
    try:
        content, media_type, filename = exporter.export(format, filters)
    except RateEngineError as e:
        raise http_error(e)
    return StreamingResponse(
        io.BytesIO(content),
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/entity/{entity_type}/{entity_id}")
def entity_history(
    entity_type: AuditEntityType,
    entity_id: int,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=settings.AUDIT_PAGE_SIZE, ge=1, le=500),
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
):
    return _page(service.recorder.history(entity_type, entity_id, page, size))


@router.get("/{audit_id}")
def get_audit(
    audit_id: int,
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return service.recorder.get(audit_id).to_dict()
    except RateEngineError as e:
        raise http_error(e)


@router.get("/{audit_id}/compare")
def compare_audit(
    audit_id: int,
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
):
    """Field-by-field comparison of previous and new values"""
    try:
        changes = service.recorder.compare(audit_id)
    except RateEngineError as e:
        raise http_error(e)
    return [c.to_dict() for c in changes]


@router.post("/{audit_id}/rollback")
def rollback_audit(
    audit_id: int,
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
):
    """Restore the record's previous value; returns the new audit record"""
    try:
        record = service.recorder.rollback(audit_id, actor)
    except RateEngineError as e:
        raise http_error(e)
    return record.to_dict()
