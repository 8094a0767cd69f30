"""
Request schemas for the rate engine API

Primitive CRUD bodies are plain dicts validated by the engine's typed
snapshot models (rate_core.snapshots), so only the operation requests live
here.
"""
from datetime import date
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from rate_core.bulk import AuditMode, BulkOperationType
from rate_core.models import GuestType


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============== Rate matrix ==============

class OccupancyFields(_Request):
    adults: int = Field(default=1, ge=0)
    children: int = Field(default=0, ge=0)
    infants: int = Field(default=0, ge=0)


class MatrixRequest(OccupancyFields):
    start_date: date = Field(..., alias="startDate")
    end_date: date = Field(..., alias="endDate")
    room_type_codes: List[str] = Field(..., alias="roomTypeCodes", min_length=1)
    rate_plan_codes: List[str] = Field(..., alias="ratePlanCodes", min_length=1)
    guest_types: List[GuestType] = Field(default_factory=list, alias="guestTypes")
    include_tiers: bool = Field(default=True, alias="includeTiers")
    include_overrides: bool = Field(default=True, alias="includeOverrides")
    include_rules: bool = Field(default=True, alias="includeRules")
    include_package_components: bool = Field(default=True, alias="includePackageComponents")
    length_of_stay: Optional[int] = Field(default=None, alias="lengthOfStay", ge=1)
    booking_date: Optional[date] = Field(default=None, alias="bookingDate")

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date > self.end_date:
            raise ValueError("startDate must not be after endDate")
        return self


class QuoteRequest(OccupancyFields):
    rate_plan_code: str = Field(..., alias="ratePlanCode")
    room_type_code: str = Field(..., alias="roomTypeCode")
    check_in: date = Field(..., alias="checkIn")
    check_out: date = Field(..., alias="checkOut")
    guest_type: Optional[GuestType] = Field(default=None, alias="guestType")
    booking_date: Optional[date] = Field(default=None, alias="bookingDate")

    @model_validator(mode="after")
    def check_stay(self):
        if self.check_out <= self.check_in:
            raise ValueError("checkOut must be after checkIn")
        return self


# ============== Rate grid ==============

class BulkRequest(_Request):
    cells: List[str] = Field(default_factory=list, description="Cell key tokens: ratePlanId-roomTypeId-YYYY-MM-DD")
    operation: BulkOperationType
    value: Optional[Decimal] = None
    source_cells: List[str] = Field(default_factory=list, alias="sourceCells")
    availability_count: Optional[int] = Field(default=None, alias="availabilityCount")
    stop_sell: Optional[bool] = Field(default=None, alias="stopSell")
    audit_mode: AuditMode = Field(default=AuditMode.PER_CELL, alias="auditMode")


class PasteRequest(_Request):
    source_cells: List[str] = Field(..., alias="sourceCells")
    target_cells: List[str] = Field(..., alias="targetCells")
    availability_count: Optional[int] = Field(default=None, alias="availabilityCount")
    stop_sell: Optional[bool] = Field(default=None, alias="stopSell")
    audit_mode: AuditMode = Field(default=AuditMode.PER_CELL, alias="auditMode")


class SelectionRequest(_Request):
    """
    One selection step over the displayed grid.

    mode: start | extend | toggle | clear | all | row
    """

    rate_plan_ids: List[int] = Field(..., alias="ratePlanIds")
    room_type_ids: List[int] = Field(..., alias="roomTypeIds")
    start_date: date = Field(..., alias="startDate")
    end_date: date = Field(..., alias="endDate")
    mode: str = "start"
    cell: Optional[str] = None
    anchor: Optional[str] = None
    current: List[str] = Field(default_factory=list)


# ============== Primitives ==============

class PriorityUpdate(_Request):
    priority: int = Field(..., ge=0)


class TierOrder(_Request):
    tier_ids: List[int] = Field(..., alias="tierIds", min_length=1)


class RoomRateRangeDelete(_Request):
    rate_plan_code: str = Field(..., alias="ratePlanCode")
    room_type_code: str = Field(..., alias="roomTypeCode")
    start_date: date = Field(..., alias="startDate")
    end_date: date = Field(..., alias="endDate")


class RoomTypeCreate(_Request):
    code: str = Field(..., max_length=30)
    name: str = ""
