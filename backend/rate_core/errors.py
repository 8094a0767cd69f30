"""
rate_core/errors.py

Error taxonomy for the rate engine.
"""
from typing import Any, Dict, Optional


class RateEngineError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(RateEngineError):
    """Malformed operation input. Raised before any write is attempted."""


class NotFoundError(RateEngineError):
    """Unknown entity id on a single-entity path."""


class NoBaseRateError(RateEngineError):
    """No active RoomRate for (rate plan, room type, date)."""

    def __init__(self, rate_plan_code: str, room_type_code: str, rate_date):
        super().__init__(
            f"No base rate for {rate_plan_code}/{room_type_code} on {rate_date}",
            {"ratePlanCode": rate_plan_code, "roomTypeCode": room_type_code,
             "date": str(rate_date)},
        )
        self.rate_plan_code = rate_plan_code
        self.room_type_code = room_type_code
        self.rate_date = rate_date


class UpstreamWriteError(RateEngineError):
    """The store rejected a write."""


class VersionConflictError(UpstreamWriteError):
    """Compare-and-swap on the entity version failed."""

    def __init__(self, entity: str, entity_id: int, expected: int, actual: int):
        super().__init__(
            f"{entity} {entity_id} is at version {actual}, expected {expected}",
            {"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class AuditWriteError(RateEngineError):
    """
    The primitive write succeeded but its audit record could not be appended.

    The entity is left written; callers must report the gap.
    """

    def __init__(self, entity_type, entity_id: Optional[int], cause: Exception):
        super().__init__(
            f"Audit write failed for {getattr(entity_type, 'value', entity_type)} "
            f"{entity_id}: {cause}",
            {"entityType": getattr(entity_type, "value", entity_type), "entityId": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.cause = cause


__all__ = [
    "RateEngineError",
    "ValidationError",
    "NotFoundError",
    "NoBaseRateError",
    "UpstreamWriteError",
    "VersionConflictError",
    "AuditWriteError",
]
