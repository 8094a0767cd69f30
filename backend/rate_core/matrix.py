"""
rate_core/matrix.py

Matrix builder - resolves date x room type x rate plan x guest type.

A pure read: primitives are loaded once into a PricingContext, cells are
resolved on a bounded worker pool and aggregated afterwards. Missing base
rates and unknown codes become empty cells; they never abort a build.
"""
from typing import Any, Dict, Iterator, List, Optional, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
import logging

from rate_core.errors import ValidationError
from rate_core.models import EntityStatus, GuestType, Occupancy, to_money
from rate_core.resolver import PricingContext, RateMatrixCell, RateResolver, ResolveOptions
from rate_core.store import PricingStore

logger = logging.getLogger(__name__)

DEFAULT_GUEST_TYPES = (GuestType.INDIVIDUAL,)


@dataclass(frozen=True)
class MatrixOptions:
    """
    Attributes:
        length_of_stay: LOS used for tier and rule night conditions (None skips tiers)
        booking_date: "today" for advance booking conditions (None = current date)
        max_workers: overrides the builder's pool size
    """

    include_tiers: bool = True
    include_overrides: bool = True
    include_rules: bool = True
    include_package_components: bool = True
    length_of_stay: Optional[int] = None
    booking_date: Optional[date] = None
    occupancy: Occupancy = Occupancy()
    max_workers: Optional[int] = None

    def resolve_options(self) -> ResolveOptions:
        return ResolveOptions(
            include_tiers=self.include_tiers,
            include_overrides=self.include_overrides,
            include_rules=self.include_rules,
            include_package_components=self.include_package_components,
            occupancy=self.occupancy,
        )


@dataclass
class MatrixSummary:
    total_cells: int = 0
    resolved_cells: int = 0
    empty_cells: int = 0
    min_rate: Optional[Decimal] = None
    max_rate: Optional[Decimal] = None
    average_rate: Optional[Decimal] = None
    stop_sell_count: int = 0
    closed_for_arrival_count: int = 0
    closed_for_departure_count: int = 0

    @classmethod
    def of(cls, cells: Sequence[RateMatrixCell]) -> "MatrixSummary":
        summary = cls(total_cells=len(cells))
        rates = [c.final_rate for c in cells if not c.is_empty]
        summary.resolved_cells = len(rates)
        summary.empty_cells = summary.total_cells - summary.resolved_cells
        if rates:
            summary.min_rate = min(rates)
            summary.max_rate = max(rates)
            summary.average_rate = to_money(sum(rates, Decimal("0")) / len(rates))
        summary.stop_sell_count = sum(1 for c in cells if c.stop_sell)
        summary.closed_for_arrival_count = sum(1 for c in cells if c.closed_for_arrival)
        summary.closed_for_departure_count = sum(1 for c in cells if c.closed_for_departure)
        return summary

    def to_dict(self) -> Dict[str, Any]:
        def num(value):
            return float(value) if value is not None else None

        return {
            "totalCells": self.total_cells,
            "resolvedCells": self.resolved_cells,
            "emptyCells": self.empty_cells,
            "minRate": num(self.min_rate),
            "maxRate": num(self.max_rate),
            "averageRate": num(self.average_rate),
            "stopSellCount": self.stop_sell_count,
            "closedForArrivalCount": self.closed_for_arrival_count,
            "closedForDepartureCount": self.closed_for_departure_count,
        }


@dataclass
class RateMatrixResponse:
    """
    Cells organised as date -> room type code -> rate plan code -> guest type.

    Dates are ISO strings and guest types their enum values, so the nested
    dict walks the same way in Python and in JSON.
    """

    start_date: date
    end_date: date
    room_type_codes: List[str]
    rate_plan_codes: List[str]
    guest_types: List[GuestType]
    cells: Dict[str, Dict[str, Dict[str, Dict[str, RateMatrixCell]]]] = field(default_factory=dict)
    summary: MatrixSummary = field(default_factory=MatrixSummary)

    def cell(self, day: date, room_type_code: str, rate_plan_code: str,
             guest_type: GuestType = GuestType.INDIVIDUAL) -> Optional[RateMatrixCell]:
        return (self.cells.get(day.isoformat(), {})
                .get(room_type_code, {})
                .get(rate_plan_code, {})
                .get(GuestType(guest_type).value))

    def iter_cells(self) -> Iterator[RateMatrixCell]:
        for by_room_type in self.cells.values():
            for by_plan in by_room_type.values():
                for by_guest in by_plan.values():
                    yield from by_guest.values()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "roomTypeCodes": list(self.room_type_codes),
            "ratePlanCodes": list(self.rate_plan_codes),
            "guestTypes": [g.value for g in self.guest_types],
            "matrix": {
                day: {
                    rt: {
                        rp: {gt: cell.to_dict() for gt, cell in by_guest.items()}
                        for rp, by_guest in by_plan.items()
                    }
                    for rt, by_plan in by_room_type.items()
                }
                for day, by_room_type in self.cells.items()
            },
            "summary": self.summary.to_dict(),
        }


class MatrixBuilder:
    """
    Builds rate matrices from a PricingStore.

    Example:
        >>> builder = MatrixBuilder(store, max_workers=4)
        >>> response = builder.build(date(2024, 3, 1), date(2024, 3, 7), ["DLX"], ["BAR"])
        >>> response.summary.min_rate
        Decimal('180.00')
    """

    def __init__(self, store: PricingStore, max_workers: int = 4,
                 default_currency: Optional[str] = None):
        self.store = store
        self.max_workers = max_workers
        self.default_currency = default_currency

    def load_context(self, start: date, end: date) -> PricingContext:
        """Read every primitive in effect for [start, end] in one pass."""
        window = {"status": EntityStatus.ACTIVE, "start_date": start, "end_date": end}
        active = {"status": EntityStatus.ACTIVE}
        return PricingContext.from_primitives(
            room_rates=self.store.room_rates.iter_all(window),
            tiers=self.store.rate_tiers.iter_all(active),
            overrides=self.store.rate_overrides.iter_all(window),
            rules=self.store.pricing_rules.iter_all({**window, "is_active": True}),
            components=self.store.package_components.iter_all(active),
        )

    def build(
        self,
        start: date,
        end: date,
        room_type_codes: Sequence[str],
        rate_plan_codes: Sequence[str],
        guest_types: Optional[Sequence[GuestType]] = None,
        options: Optional[MatrixOptions] = None,
    ) -> RateMatrixResponse:
        if start > end:
            raise ValidationError("start date must not be after end date")
        options = options or MatrixOptions()
        guest_types = [GuestType(g) for g in (guest_types or DEFAULT_GUEST_TYPES)]
        days = [start + timedelta(days=i) for i in range((end - start).days + 1)]

        plans = {code: self.store.rate_plans.get_by_code(code) for code in rate_plan_codes}
        room_types = {code: self.store.room_types.get_by_code(code) for code in room_type_codes}
        for code in [c for c, p in plans.items() if p is None or p.status != EntityStatus.ACTIVE]:
            logger.warning(f"Rate plan {code} unknown or inactive, its cells will be empty")
            plans[code] = None
        for code in [c for c, r in room_types.items() if r is None]:
            logger.warning(f"Room type {code} unknown, its cells will be empty")

        resolver = RateResolver(
            self.load_context(start, end),
            today=options.booking_date,
            options=options.resolve_options(),
            default_currency=self.default_currency,
        )

        tasks = [
            (day, rt_code, rp_code, guest_type)
            for day in days
            for rt_code in room_type_codes
            for rp_code in rate_plan_codes
            for guest_type in guest_types
        ]

        def resolve(task) -> RateMatrixCell:
            day, rt_code, rp_code, guest_type = task
            plan, room_type = plans[rp_code], room_types[rt_code]
            if plan is None or room_type is None:
                return RateMatrixCell.empty(rp_code, rt_code, day, guest_type)
            return resolver.resolve_or_empty(plan, room_type, day, options.length_of_stay, guest_type)

        workers = options.max_workers or self.max_workers
        if workers <= 1:
            resolved = [resolve(t) for t in tasks]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="matrix") as pool:
                resolved = list(pool.map(resolve, tasks))

        response = RateMatrixResponse(
            start_date=start,
            end_date=end,
            room_type_codes=list(room_type_codes),
            rate_plan_codes=list(rate_plan_codes),
            guest_types=guest_types,
        )
        for (day, rt_code, rp_code, guest_type), cell in zip(tasks, resolved):
            (response.cells
             .setdefault(day.isoformat(), {})
             .setdefault(rt_code, {})
             .setdefault(rp_code, {}))[guest_type.value] = cell
        response.summary = MatrixSummary.of(resolved)
        logger.info(
            f"Rate matrix {start}..{end}: {response.summary.resolved_cells} of "
            f"{response.summary.total_cells} cells resolved"
        )
        return response


__all__ = [
    "MatrixOptions",
    "MatrixSummary",
    "RateMatrixResponse",
    "MatrixBuilder",
]
