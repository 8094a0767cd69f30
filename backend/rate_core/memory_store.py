"""
rate_core/memory_store.py

In-memory pricing store - thread-safe dict-backed repositories.

Used by tests and by single-process tooling; the SQL store in rate_api
implements the same contract.
"""
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar
from dataclasses import fields, replace
from datetime import date, datetime
import copy
import logging
import threading

from rate_core.errors import NotFoundError, ValidationError, VersionConflictError
from rate_core.models import (
    EntityStatus, Page, PricingRule, RateAuditRecord, RateOverride,
    RatePackageComponent, RatePlan, RateTier, RoomRate, RoomType,
)
from rate_core.store import (
    AuditRepository, Criteria, DEFAULT_PAGE_SIZE, PricingStore, RatePlanRepository,
    Repository, RoomRateRepository, RoomTypeRepository,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]

# Keys handled specially by the criteria matcher
_RANGE_KEYS = {"start_date", "end_date"}


class _MemoryRepository(Repository[T]):
    """
    Dict-backed repository.

    Attributes:
        entity_cls: Dataclass constructed from payloads
        date_field: Field used by start_date/end_date criteria (None = no date)
    """

    entity_cls: Type[T]
    date_field: Optional[str] = None

    def __init__(self, lock: threading.RLock, clock: Clock):
        self._items: Dict[int, T] = {}
        self._next_id = 1
        self._lock = lock
        self._clock = clock
        self._field_names = {f.name for f in fields(self.entity_cls)}

    @property
    def name(self) -> str:
        return self.entity_cls.__name__

    def _clean(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(payload) - self._field_names
        if unknown:
            raise ValidationError(f"Unknown {self.name} fields: {sorted(unknown)}")
        return {k: v for k, v in payload.items() if k not in ("id", "created_at", "updated_at", "version")}

    def get(self, entity_id: int) -> Optional[T]:
        with self._lock:
            return self._items.get(entity_id)

    def _matches(self, entity: T, criteria: Criteria) -> bool:
        for key, value in criteria.items():
            if value is None:
                continue
            if key in _RANGE_KEYS:
                if not self._in_range(entity, key, value):
                    return False
                continue
            if not hasattr(entity, key):
                continue
            if getattr(entity, key) != value:
                return False
        return True

    def _in_range(self, entity: T, key: str, bound: date) -> bool:
        if self.date_field is None:
            return True
        value = getattr(entity, self.date_field)
        if value is None:
            return True
        return value >= bound if key == "start_date" else value <= bound

    def list(self, criteria: Optional[Criteria] = None, page: int = 0,
             size: int = DEFAULT_PAGE_SIZE) -> Page[T]:
        criteria = criteria or {}
        with self._lock:
            items = [e for _, e in sorted(self._items.items()) if self._matches(e, criteria)]
        return Page.slice(items, page, size)

    def create(self, payload: Dict[str, Any]) -> T:
        data = self._clean(payload)
        with self._lock:
            now = self._clock()
            try:
                entity = self.entity_cls(id=self._next_id, created_at=now, updated_at=now, version=1, **data)
            except TypeError as e:
                raise ValidationError(f"Invalid {self.name} payload: {e}")
            self._items[entity.id] = entity
            self._next_id += 1
        logger.info(f"{self.name} {entity.id} created")
        return entity

    def update(self, entity_id: int, payload: Dict[str, Any],
               expected_version: Optional[int] = None) -> T:
        data = self._clean(payload)
        with self._lock:
            current = self._items.get(entity_id)
            if current is None:
                raise NotFoundError(f"{self.name} {entity_id} not found")
            if expected_version is not None and current.version != expected_version:
                raise VersionConflictError(self.name, entity_id, expected_version, current.version)
            updated = replace(current, version=current.version + 1, updated_at=self._clock(), **data)
            self._items[entity_id] = updated
        return updated

    def delete(self, entity_id: int) -> T:
        return self.update(entity_id, {"status": EntityStatus.INACTIVE})


class MemoryRatePlanRepository(_MemoryRepository[RatePlan], RatePlanRepository):
    entity_cls = RatePlan

    def get_by_code(self, code: str) -> Optional[RatePlan]:
        with self._lock:
            for plan in self._items.values():
                if plan.code == code:
                    return plan
        return None

    def create(self, payload: Dict[str, Any]) -> RatePlan:
        with self._lock:
            if self.get_by_code(payload.get("code")) is not None:
                raise ValidationError(f"Rate plan code {payload.get('code')} already exists")
            return super().create(payload)


class MemoryRoomRateRepository(_MemoryRepository[RoomRate], RoomRateRepository):
    entity_cls = RoomRate
    date_field = "rate_date"

    def find_by_key(self, rate_plan_code: str, room_type_code: str,
                    rate_date: date) -> Optional[RoomRate]:
        key = (rate_plan_code, room_type_code, rate_date)
        with self._lock:
            for rate in self._items.values():
                if rate.key == key:
                    return rate
        return None

    def create(self, payload: Dict[str, Any]) -> RoomRate:
        # natural key is unique: a second create updates in place
        with self._lock:
            existing = self.find_by_key(
                payload.get("rate_plan_code"), payload.get("room_type_code"), payload.get("rate_date")
            )
            if existing is not None:
                data = dict(payload)
                data.setdefault("status", EntityStatus.ACTIVE)
                return self.update(existing.id, data)
            return super().create(payload)


class MemoryRateTierRepository(_MemoryRepository[RateTier]):
    entity_cls = RateTier


class MemoryRateOverrideRepository(_MemoryRepository[RateOverride]):
    entity_cls = RateOverride
    date_field = "override_date"


class MemoryPricingRuleRepository(_MemoryRepository[PricingRule]):
    entity_cls = PricingRule

    def _in_range(self, entity: PricingRule, key: str, bound: date) -> bool:
        # rules carry their own window; keep rules overlapping the requested range
        if key == "start_date":
            return entity.end_date is None or entity.end_date >= bound
        return entity.start_date is None or entity.start_date <= bound


class MemoryPackageComponentRepository(_MemoryRepository[RatePackageComponent]):
    entity_cls = RatePackageComponent


class MemoryRoomTypeRepository(RoomTypeRepository):

    def __init__(self, lock: threading.RLock):
        self._items: Dict[int, RoomType] = {}
        self._lock = lock

    def add(self, code: str, name: str = "", room_type_id: Optional[int] = None) -> RoomType:
        with self._lock:
            new_id = room_type_id or (max(self._items, default=0) + 1)
            room_type = RoomType(id=new_id, code=code, name=name or code)
            self._items[new_id] = room_type
        return room_type

    def get(self, room_type_id: int) -> Optional[RoomType]:
        return self._items.get(room_type_id)

    def get_by_code(self, code: str) -> Optional[RoomType]:
        for room_type in self._items.values():
            if room_type.code == code:
                return room_type
        return None

    def list_all(self) -> List[RoomType]:
        return [rt for _, rt in sorted(self._items.items())]


class MemoryAuditRepository(AuditRepository):

    def __init__(self, lock: threading.RLock, clock: Clock):
        self._records: List[RateAuditRecord] = []
        self._lock = lock
        self._clock = clock

    def append(self, record: Dict[str, Any]) -> RateAuditRecord:
        with self._lock:
            data = copy.deepcopy(record)
            data.setdefault("timestamp", self._clock())
            entry = RateAuditRecord(id=len(self._records) + 1, **data)
            self._records.append(entry)
        return entry

    def get(self, audit_id: int) -> Optional[RateAuditRecord]:
        with self._lock:
            if 1 <= audit_id <= len(self._records):
                return self._records[audit_id - 1]
        return None

    def list_all(self) -> List[RateAuditRecord]:
        with self._lock:
            return list(self._records)


class InMemoryPricingStore(PricingStore):
    """
    Thread-safe in-memory store.

    One re-entrant lock guards all repositories, so concurrent bulk workers
    see last-write-wins semantics per key.
    """

    def __init__(self, clock: Clock = datetime.now):
        self._lock = threading.RLock()
        self.rate_plans = MemoryRatePlanRepository(self._lock, clock)
        self.room_types = MemoryRoomTypeRepository(self._lock)
        self.room_rates = MemoryRoomRateRepository(self._lock, clock)
        self.rate_tiers = MemoryRateTierRepository(self._lock, clock)
        self.rate_overrides = MemoryRateOverrideRepository(self._lock, clock)
        self.pricing_rules = MemoryPricingRuleRepository(self._lock, clock)
        self.package_components = MemoryPackageComponentRepository(self._lock, clock)
        self.audits = MemoryAuditRepository(self._lock, clock)


__all__ = ["InMemoryPricingStore"]
