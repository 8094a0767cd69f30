"""
Rate grid routes - selection, bulk edit and paste
"""
from typing import Any, Dict, List
from fastapi import APIRouter, Depends, HTTPException, status

from rate_api.config import settings
from rate_api.dependencies import get_mutation_service, http_error
from rate_api.models.schemas import BulkRequest, PasteRequest, SelectionRequest
from rate_api.security.auth import get_current_actor
from rate_core.bulk import BulkContext, BulkMutationOrchestrator, BulkOperation, BulkOperationType
from rate_core.errors import RateEngineError
from rate_core.models import Actor, to_money
from rate_core.mutations import RateMutationService
from rate_core.selection import (
    CellKey, GridLayout, Selection, clear_selection, extend_selection, select_all,
    select_row, start_selection, toggle_cell,
)

router = APIRouter(prefix="/rate-grid", tags=["Rate Grid"])


def _keys(tokens: List[str]) -> List[CellKey]:
    return [CellKey.from_token(t) for t in tokens]


def _context(actor: Actor, audit_mode) -> BulkContext:
    return BulkContext(
        actor=actor,
        audit_mode=audit_mode,
        max_workers=settings.BULK_MAX_WORKERS,
        use_versioning=settings.ENABLE_RATE_VERSIONING,
        max_cells=settings.BULK_MAX_CELLS,
    )


@router.post("/bulk")
def bulk_update(
    data: BulkRequest,
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
) -> Dict[str, Any]:
    """Apply one bulk operation to the selected cells. Cell failures are reported, not raised."""
    orchestrator = BulkMutationOrchestrator(service)
    companions = {"availability_count": data.availability_count, "stop_sell": data.stop_sell}
    try:
        if data.operation == BulkOperationType.COPY_FROM:
            operation = BulkOperation.copy_from(orchestrator.capture(_keys(data.source_cells)), **companions)
        else:
            value = to_money(data.value) if data.value is not None else None
            operation = BulkOperation(data.operation, value, **companions)
        result = orchestrator.apply(_keys(data.cells), operation, _context(actor, data.audit_mode))
    except RateEngineError as e:
        raise http_error(e)
    return result.to_dict()


@router.post("/paste")
def paste_cells(
    data: PasteRequest,
    service: RateMutationService = Depends(get_mutation_service),
    actor: Actor = Depends(get_current_actor),
) -> Dict[str, Any]:
    """Copy source cells onto targets by position, cycling through the sources"""
    orchestrator = BulkMutationOrchestrator(service)
    try:
        clipboard = orchestrator.capture(_keys(data.source_cells))
        result = orchestrator.paste(clipboard, _keys(data.target_cells), _context(actor, data.audit_mode),
                                    availability_count=data.availability_count, stop_sell=data.stop_sell)
    except RateEngineError as e:
        raise http_error(e)
    return result.to_dict()


@router.post("/selection")
def compute_selection(
    data: SelectionRequest,
    actor: Actor = Depends(get_current_actor),
) -> Dict[str, Any]:
    """Apply one selection step to the current selection and return the new one"""
    try:
        layout = GridLayout.from_range(data.rate_plan_ids, data.room_type_ids, data.start_date, data.end_date)
        current = Selection(tuple(_keys(data.current)),
                            CellKey.from_token(data.anchor) if data.anchor else None)
        cell = CellKey.from_token(data.cell) if data.cell else None

        if data.mode in ("start", "extend", "toggle") and cell is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"mode {data.mode} needs a cell")
        if data.mode == "start":
            selection = start_selection(cell)
        elif data.mode == "extend":
            anchor = current.anchor or cell
            selection = extend_selection(layout, anchor, cell)
        elif data.mode == "toggle":
            selection = toggle_cell(layout, current, cell)
        elif data.mode == "clear":
            selection = clear_selection()
        elif data.mode == "all":
            selection = select_all(layout)
        elif data.mode == "row":
            if cell is None:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="mode row needs a cell")
            selection = select_row(layout, cell.rate_plan_id, cell.room_type_id)
        else:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown mode {data.mode}")
    except RateEngineError as e:
        raise http_error(e)

    return {
        "cells": selection.tokens(),
        "anchor": selection.anchor.to_token() if selection.anchor else None,
        "count": len(selection),
    }
