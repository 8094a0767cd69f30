"""
Shared router dependencies and engine error mapping
"""
import logging
from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from rate_api.database import get_db
from rate_api.services.sql_store import SqlPricingStore
from rate_core.errors import (
    AuditWriteError, NotFoundError, RateEngineError, UpstreamWriteError,
    ValidationError, VersionConflictError,
)
from rate_core.mutations import RateMutationService

logger = logging.getLogger(__name__)


def get_store(db: Session = Depends(get_db)) -> SqlPricingStore:
    return SqlPricingStore(db)


def get_mutation_service(store: SqlPricingStore = Depends(get_store)) -> RateMutationService:
    return RateMutationService(store)


def http_error(error: RateEngineError) -> HTTPException:
    """Map an engine error to its HTTP status"""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if isinstance(error, VersionConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.message)
    if isinstance(error, UpstreamWriteError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error.message)
    if isinstance(error, AuditWriteError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": error.message,
                "integrityGap": True,
                "entityType": error.details.get("entityType"),
                "entityId": error.entity_id,
            },
        )
    logger.error(f"Unmapped engine error: {error.message}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)


__all__ = ["get_store", "get_mutation_service", "http_error"]
