"""
SQLAlchemy implementation of the rate_core PricingStore.

One store wraps one Session. Sessions are not thread safe, so a re-entrant
lock serialises every repository call; bulk and matrix worker pools share
the store safely and keep last-write-wins semantics per key.
"""
import json
import logging
import threading
from dataclasses import fields
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rate_api.models.orm import (
    PricingRuleRow, RateAuditRow, RateOverrideRow, RatePackageComponentRow,
    RatePlanRow, RateTierRow, RoomRateRow, RoomTypeRow,
)
from rate_core.errors import NotFoundError, UpstreamWriteError, ValidationError, VersionConflictError
from rate_core.models import (
    AuditAction, AuditEntityType, EntityStatus, Page, PricingRule, RateAuditRecord,
    RateOverride, RatePackageComponent, RatePlan, RateTier, RoomRate, RoomType,
)
from rate_core.store import (
    AuditRepository, Criteria, DEFAULT_PAGE_SIZE, PricingStore, RatePlanRepository,
    Repository, RoomRateRepository, RoomTypeRepository,
)

logger = logging.getLogger(__name__)

_BOOKKEEPING = ("id", "created_at", "updated_at", "version")


class _SqlRepository(Repository):
    row_cls: Type = None
    entity_cls: Type = None
    date_field: Optional[str] = None

    def __init__(self, db: Session, lock: threading.RLock):
        self.db = db
        self._lock = lock
        self._field_names = {f.name for f in fields(self.entity_cls)}

    @property
    def name(self) -> str:
        return self.entity_cls.__name__

    def _to_entity(self, row):
        return self.entity_cls(**{name: getattr(row, name) for name in self._field_names})

    def _clean(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(payload) - self._field_names
        if unknown:
            raise ValidationError(f"Unknown {self.name} fields: {sorted(unknown)}")
        return {k: v for k, v in payload.items() if k not in _BOOKKEEPING}

    def _commit(self):
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise UpstreamWriteError(f"{self.name} write rejected: {e}") from e

    def _filter(self, query, criteria: Criteria):
        for key, value in criteria.items():
            if value is None:
                continue
            if key in ("start_date", "end_date"):
                query = self._filter_range(query, key, value)
            elif hasattr(self.row_cls, key):
                query = query.filter(getattr(self.row_cls, key) == value)
        return query

    def _filter_range(self, query, key: str, bound: date):
        if self.date_field is None:
            return query
        column = getattr(self.row_cls, self.date_field)
        return query.filter(column >= bound if key == "start_date" else column <= bound)

    def get(self, entity_id: int):
        with self._lock:
            row = self.db.get(self.row_cls, entity_id)
            return self._to_entity(row) if row is not None else None

    def list(self, criteria: Optional[Criteria] = None, page: int = 0,
             size: int = DEFAULT_PAGE_SIZE) -> Page:
        with self._lock:
            query = self._filter(self.db.query(self.row_cls), criteria or {})
            total = query.count()
            rows = query.order_by(self.row_cls.id).offset(page * size).limit(size).all()
            return Page(content=[self._to_entity(r) for r in rows], page=page, size=size,
                        total_elements=total)

    def create(self, payload: Dict[str, Any]):
        data = self._clean(payload)
        with self._lock:
            row = self.row_cls(version=1, **data)
            self.db.add(row)
            self._commit()
            self.db.refresh(row)
            logger.info(f"{self.name} {row.id} created")
            return self._to_entity(row)

    def update(self, entity_id: int, payload: Dict[str, Any],
               expected_version: Optional[int] = None):
        data = self._clean(payload)
        with self._lock:
            row = self.db.get(self.row_cls, entity_id)
            if row is None:
                raise NotFoundError(f"{self.name} {entity_id} not found")
            if expected_version is not None and row.version != expected_version:
                raise VersionConflictError(self.name, entity_id, expected_version, row.version)
            for key, value in data.items():
                setattr(row, key, value)
            row.version = (row.version or 0) + 1
            row.updated_at = datetime.utcnow()
            self._commit()
            self.db.refresh(row)
            return self._to_entity(row)

    def delete(self, entity_id: int):
        return self.update(entity_id, {"status": EntityStatus.INACTIVE})


class SqlRatePlanRepository(_SqlRepository, RatePlanRepository):
    row_cls = RatePlanRow
    entity_cls = RatePlan

    def get_by_code(self, code: str) -> Optional[RatePlan]:
        with self._lock:
            row = self.db.query(RatePlanRow).filter(RatePlanRow.code == code).first()
            return self._to_entity(row) if row is not None else None

    def create(self, payload: Dict[str, Any]) -> RatePlan:
        with self._lock:
            if self.get_by_code(payload.get("code")) is not None:
                raise ValidationError(f"Rate plan code {payload.get('code')} already exists")
            return super().create(payload)


class SqlRoomRateRepository(_SqlRepository, RoomRateRepository):
    row_cls = RoomRateRow
    entity_cls = RoomRate
    date_field = "rate_date"

    def find_by_key(self, rate_plan_code: str, room_type_code: str,
                    rate_date: date) -> Optional[RoomRate]:
        with self._lock:
            row = self.db.query(RoomRateRow).filter(
                RoomRateRow.rate_plan_code == rate_plan_code,
                RoomRateRow.room_type_code == room_type_code,
                RoomRateRow.rate_date == rate_date,
            ).first()
            return self._to_entity(row) if row is not None else None

    def create(self, payload: Dict[str, Any]) -> RoomRate:
        # the unique key would reject a second insert: update in place instead
        with self._lock:
            existing = self.find_by_key(
                payload.get("rate_plan_code"), payload.get("room_type_code"), payload.get("rate_date")
            )
            if existing is not None:
                data = dict(payload)
                data.setdefault("status", EntityStatus.ACTIVE)
                return self.update(existing.id, data)
            return super().create(payload)

    def upsert(self, payload: Dict[str, Any], expected_version: Optional[int] = None):
        with self._lock:
            return super().upsert(payload, expected_version)


class SqlRateTierRepository(_SqlRepository):
    row_cls = RateTierRow
    entity_cls = RateTier


class SqlRateOverrideRepository(_SqlRepository):
    row_cls = RateOverrideRow
    entity_cls = RateOverride
    date_field = "override_date"


class SqlPricingRuleRepository(_SqlRepository):
    row_cls = PricingRuleRow
    entity_cls = PricingRule

    def _filter_range(self, query, key: str, bound: date):
        # keep rules whose own window overlaps the requested range
        if key == "start_date":
            return query.filter((PricingRuleRow.end_date.is_(None)) | (PricingRuleRow.end_date >= bound))
        return query.filter((PricingRuleRow.start_date.is_(None)) | (PricingRuleRow.start_date <= bound))


class SqlPackageComponentRepository(_SqlRepository):
    row_cls = RatePackageComponentRow
    entity_cls = RatePackageComponent


class SqlRoomTypeRepository(RoomTypeRepository):

    def __init__(self, db: Session, lock: threading.RLock):
        self.db = db
        self._lock = lock

    @staticmethod
    def _to_entity(row: RoomTypeRow) -> RoomType:
        return RoomType(id=row.id, code=row.code, name=row.name or "", status=row.status)

    def add(self, code: str, name: str = "") -> RoomType:
        with self._lock:
            row = RoomTypeRow(code=code, name=name or code)
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            return self._to_entity(row)

    def get(self, room_type_id: int) -> Optional[RoomType]:
        with self._lock:
            row = self.db.get(RoomTypeRow, room_type_id)
            return self._to_entity(row) if row is not None else None

    def get_by_code(self, code: str) -> Optional[RoomType]:
        with self._lock:
            row = self.db.query(RoomTypeRow).filter(RoomTypeRow.code == code).first()
            return self._to_entity(row) if row is not None else None

    def list_all(self) -> List[RoomType]:
        with self._lock:
            return [self._to_entity(r) for r in self.db.query(RoomTypeRow).order_by(RoomTypeRow.id).all()]


def _dumps(value: Any) -> Optional[str]:
    return json.dumps(value, ensure_ascii=False, default=str) if value is not None else None


def _loads(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


class SqlAuditRepository(AuditRepository):
    """Append-only: rows are inserted and read, never updated or deleted."""

    def __init__(self, db: Session, lock: threading.RLock):
        self.db = db
        self._lock = lock

    @staticmethod
    def _to_record(row: RateAuditRow) -> RateAuditRecord:
        return RateAuditRecord(
            id=row.id,
            entity_type=AuditEntityType(row.entity_type),
            entity_id=row.entity_id,
            action=AuditAction(row.action),
            actor_id=row.actor_id,
            actor_name=row.actor_name,
            timestamp=row.timestamp,
            previous_value=_loads(row.previous_value),
            new_value=_loads(row.new_value),
            changed_fields=_loads(row.changed_fields) or [],
            entity_name=row.entity_name,
            change_description=row.change_description,
            metadata=_loads(row.metadata_json) or {},
        )

    def append(self, record: Dict[str, Any]) -> RateAuditRecord:
        with self._lock:
            row = RateAuditRow(
                entity_type=record["entity_type"],
                entity_id=record.get("entity_id"),
                action=record["action"],
                actor_id=record["actor_id"],
                actor_name=record.get("actor_name"),
                timestamp=record.get("timestamp") or datetime.utcnow(),
                previous_value=_dumps(record.get("previous_value")),
                new_value=_dumps(record.get("new_value")),
                changed_fields=_dumps(record.get("changed_fields") or []),
                entity_name=record.get("entity_name"),
                change_description=record.get("change_description"),
                metadata_json=_dumps(record.get("metadata") or {}),
            )
            self.db.add(row)
            try:
                self.db.commit()
            except SQLAlchemyError:
                self.db.rollback()
                raise
            self.db.refresh(row)
            return self._to_record(row)

    def get(self, audit_id: int) -> Optional[RateAuditRecord]:
        with self._lock:
            row = self.db.get(RateAuditRow, audit_id)
            return self._to_record(row) if row is not None else None

    def list_all(self) -> List[RateAuditRecord]:
        with self._lock:
            rows = self.db.query(RateAuditRow).order_by(RateAuditRow.id).all()
            return [self._to_record(r) for r in rows]


class SqlPricingStore(PricingStore):
    """PricingStore over one SQLAlchemy session."""

    def __init__(self, db: Session):
        self._lock = threading.RLock()
        self.db = db
        self.rate_plans = SqlRatePlanRepository(db, self._lock)
        self.room_types = SqlRoomTypeRepository(db, self._lock)
        self.room_rates = SqlRoomRateRepository(db, self._lock)
        self.rate_tiers = SqlRateTierRepository(db, self._lock)
        self.rate_overrides = SqlRateOverrideRepository(db, self._lock)
        self.pricing_rules = SqlPricingRuleRepository(db, self._lock)
        self.package_components = SqlPackageComponentRepository(db, self._lock)
        self.audits = SqlAuditRepository(db, self._lock)
