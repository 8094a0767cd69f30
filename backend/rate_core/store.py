"""
rate_core/store.py

Pricing primitive store - repository interface the engine reads and writes through.

The engine owns no storage. Every repository exposes get / list / create /
update / delete; delete is a soft transition to INACTIVE. Audit records go to an
append-only repository with no update or delete.
"""
from typing import Any, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date

from rate_core.models import (
    AuditEntityType, Page, PricingRule, RateAuditRecord, RateOverride,
    RatePackageComponent, RatePlan, RateTier, RoomRate, RoomType,
)

T = TypeVar("T")

Criteria = Dict[str, Any]

DEFAULT_PAGE_SIZE = 100


class Repository(ABC, Generic[T]):
    """Per-entity repository contract."""

    @abstractmethod
    def get(self, entity_id: int) -> Optional[T]:
        """Return the entity or None."""
        raise NotImplementedError

    @abstractmethod
    def list(self, criteria: Optional[Criteria] = None, page: int = 0,
             size: int = DEFAULT_PAGE_SIZE) -> Page[T]:
        """
        List entities matching the filter criteria.

        Common criteria keys: status, start_date / end_date (date range on the
        entity's date field), rate_plan_id, rate_plan_code, room_type_id,
        room_type_code, is_active.
        """
        raise NotImplementedError

    @abstractmethod
    def create(self, payload: Dict[str, Any]) -> T:
        raise NotImplementedError

    @abstractmethod
    def update(self, entity_id: int, payload: Dict[str, Any],
               expected_version: Optional[int] = None) -> T:
        """
        Partial update. With expected_version set the write is a compare-and-swap.

        Raises:
            NotFoundError: unknown id
            VersionConflictError: version mismatch
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, entity_id: int) -> T:
        """Soft delete (status -> INACTIVE). Returns the updated entity."""
        raise NotImplementedError

    def iter_all(self, criteria: Optional[Criteria] = None,
                 size: int = DEFAULT_PAGE_SIZE) -> Iterator[T]:
        """Walk every page of a listing."""
        page = 0
        while True:
            result = self.list(criteria, page=page, size=size)
            yield from result.content
            page += 1
            if page >= result.total_pages:
                break


class RoomRateRepository(Repository[RoomRate]):
    """Room rates add key lookup and upsert on (plan code, room type code, date)."""

    @abstractmethod
    def find_by_key(self, rate_plan_code: str, room_type_code: str,
                    rate_date: date) -> Optional[RoomRate]:
        raise NotImplementedError

    def upsert(self, payload: Dict[str, Any],
               expected_version: Optional[int] = None) -> Tuple[Optional[RoomRate], RoomRate]:
        """
        Write a rate for its natural key, updating in place when it exists.

        Returns:
            (previous state or None, new state)
        """
        existing = self.find_by_key(
            payload["rate_plan_code"], payload["room_type_code"], payload["rate_date"]
        )
        if existing is None:
            return None, self.create(payload)
        previous = replace(existing)
        return previous, self.update(existing.id, payload, expected_version=expected_version)


class RoomTypeRepository(ABC):
    """Read-only room type reference data."""

    @abstractmethod
    def get(self, room_type_id: int) -> Optional[RoomType]:
        raise NotImplementedError

    @abstractmethod
    def get_by_code(self, code: str) -> Optional[RoomType]:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> List[RoomType]:
        raise NotImplementedError


class RatePlanRepository(Repository[RatePlan]):

    @abstractmethod
    def get_by_code(self, code: str) -> Optional[RatePlan]:
        raise NotImplementedError


class AuditRepository(ABC):
    """Append-only audit storage."""

    @abstractmethod
    def append(self, record: Dict[str, Any]) -> RateAuditRecord:
        """Persist a new record (id and timestamp assigned by the store)."""
        raise NotImplementedError

    @abstractmethod
    def get(self, audit_id: int) -> Optional[RateAuditRecord]:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> List[RateAuditRecord]:
        """All records, oldest first. Filtering happens in the recorder."""
        raise NotImplementedError


class PricingStore(ABC):
    """
    Bundle of repositories the engine depends on.

    Attributes:
        rate_plans, room_types, room_rates, rate_tiers, rate_overrides,
        pricing_rules, package_components, audits
    """

    rate_plans: RatePlanRepository
    room_types: RoomTypeRepository
    room_rates: RoomRateRepository
    rate_tiers: Repository[RateTier]
    rate_overrides: Repository[RateOverride]
    pricing_rules: Repository[PricingRule]
    package_components: Repository[RatePackageComponent]
    audits: AuditRepository

    def repository_for(self, entity_type: AuditEntityType) -> Repository:
        return {
            AuditEntityType.ROOM_RATE: self.room_rates,
            AuditEntityType.RATE_PLAN: self.rate_plans,
            AuditEntityType.RATE_OVERRIDE: self.rate_overrides,
            AuditEntityType.RATE_TIER: self.rate_tiers,
            AuditEntityType.RATE_PACKAGE_COMPONENT: self.package_components,
            AuditEntityType.PRICING_RULE: self.pricing_rules,
        }[AuditEntityType(entity_type)]


__all__ = [
    "Criteria",
    "DEFAULT_PAGE_SIZE",
    "Repository",
    "RoomRateRepository",
    "RoomTypeRepository",
    "RatePlanRepository",
    "AuditRepository",
    "PricingStore",
]
