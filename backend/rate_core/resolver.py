"""
rate_core/resolver.py

Rate resolver - layers base rate, length-of-stay tier, date override,
pricing rule and package components into one matrix cell.

Precedence (each step consumes the previous output):
    1. base RoomRate (missing -> NoBaseRateError)
    2. first matching tier, priority ascending
    3. most specific override (room-type-specific beats plan-wide)
    4. first matching active pricing rule, priority descending
    5. package component total, reported beside the final rate
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
import logging

from rate_core.adjustments import (
    apply_adjustment, apply_pricing_rule, clamp_non_negative, describe_adjustment, has_rule_adjustment,
)
from rate_core.errors import NoBaseRateError
from rate_core.models import (
    EntityStatus, GuestType, Occupancy, PricingRule, RateOverride,
    RatePackageComponent, RatePlan, RateTier, RoomRate, RoomType,
    component_total, to_money,
)

logger = logging.getLogger(__name__)

RateKey = Tuple[str, str, date]


def _active(items: Iterable[Any]) -> List[Any]:
    return [i for i in items if i.status == EntityStatus.ACTIVE]


# ============== Resolution inputs ==============

@dataclass
class PricingContext:
    """
    Snapshot of the primitives in effect, indexed for resolution.

    Built once per matrix build from store reads; resolution itself never
    touches the store.
    """

    room_rates: Dict[RateKey, RoomRate] = field(default_factory=dict)
    tiers_by_plan: Dict[int, List[RateTier]] = field(default_factory=dict)
    overrides_by_plan_date: Dict[Tuple[int, date], List[RateOverride]] = field(default_factory=dict)
    rules: List[PricingRule] = field(default_factory=list)
    components_by_plan: Dict[int, List[RatePackageComponent]] = field(default_factory=dict)

    @classmethod
    def from_primitives(
        cls,
        room_rates: Iterable[RoomRate] = (),
        tiers: Iterable[RateTier] = (),
        overrides: Iterable[RateOverride] = (),
        rules: Iterable[PricingRule] = (),
        components: Iterable[RatePackageComponent] = (),
    ) -> "PricingContext":
        """Index active primitives; inactive ones never take part in resolution."""
        ctx = cls()
        for rate in _active(room_rates):
            ctx.room_rates[rate.key] = rate
        for tier in _active(tiers):
            ctx.tiers_by_plan.setdefault(tier.rate_plan_id, []).append(tier)
        for tiers_list in ctx.tiers_by_plan.values():
            tiers_list.sort(key=lambda t: (t.priority, t.id))
        for override in _active(overrides):
            key = (override.rate_plan_id, override.override_date)
            ctx.overrides_by_plan_date.setdefault(key, []).append(override)
        ctx.rules = sorted(
            (r for r in _active(rules) if r.is_active),
            key=lambda r: (-r.priority, r.id),
        )
        for component in _active(components):
            ctx.components_by_plan.setdefault(component.rate_plan_id, []).append(component)
        return ctx


@dataclass(frozen=True)
class ResolveOptions:
    include_tiers: bool = True
    include_overrides: bool = True
    include_rules: bool = True
    include_package_components: bool = True
    occupancy: Occupancy = Occupancy()


# ============== Output ==============

@dataclass
class RateMatrixCell:
    """
    Resolved pricing/availability for one (plan, room type, date, guest type).

    An empty cell (no base rate) has base_rate and final_rate set to None;
    it is unavailable, not priced at zero.
    """

    rate_plan_code: str
    room_type_code: str
    rate_date: date
    guest_type: Optional[GuestType] = None
    base_rate: Optional[Decimal] = None
    tier_adjustment: Optional[Decimal] = None
    override_adjustment: Optional[Decimal] = None
    rule_adjustment: Optional[Decimal] = None
    final_rate: Optional[Decimal] = None
    currency: Optional[str] = None
    availability_count: Optional[int] = None
    stop_sell: bool = False
    closed_for_arrival: bool = False
    closed_for_departure: bool = False
    applied_tier: Optional[Dict[str, Any]] = None
    applied_override: Optional[Dict[str, Any]] = None
    applied_rule: Optional[Dict[str, Any]] = None
    package_components: List[Dict[str, Any]] = field(default_factory=list)
    package_component_total: Optional[Decimal] = None

    @property
    def is_empty(self) -> bool:
        return self.base_rate is None

    @classmethod
    def empty(cls, rate_plan_code: str, room_type_code: str, rate_date: date,
              guest_type: Optional[GuestType] = None) -> "RateMatrixCell":
        return cls(rate_plan_code=rate_plan_code, room_type_code=room_type_code,
                   rate_date=rate_date, guest_type=guest_type)

    def to_dict(self) -> Dict[str, Any]:
        def num(value):
            return float(value) if value is not None else None

        return {
            "ratePlanCode": self.rate_plan_code,
            "roomTypeCode": self.room_type_code,
            "date": self.rate_date.isoformat(),
            "guestType": self.guest_type.value if self.guest_type else None,
            "empty": self.is_empty,
            "baseRate": num(self.base_rate),
            "tierAdjustment": num(self.tier_adjustment),
            "overrideAdjustment": num(self.override_adjustment),
            "ruleAdjustment": num(self.rule_adjustment),
            "finalRate": num(self.final_rate),
            "currency": self.currency,
            "availabilityCount": self.availability_count,
            "stopSell": self.stop_sell,
            "closedForArrival": self.closed_for_arrival,
            "closedForDeparture": self.closed_for_departure,
            "appliedTier": self.applied_tier,
            "appliedOverride": self.applied_override,
            "appliedRule": self.applied_rule,
            "packageComponents": self.package_components,
            "packageComponentTotal": num(self.package_component_total),
        }


@dataclass
class StayQuote:
    """Per-night resolution of a stay."""

    rate_plan_code: str
    room_type_code: str
    check_in: date
    check_out: date
    nights: List[RateMatrixCell] = field(default_factory=list)
    missing_dates: List[date] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return not self.missing_dates and all(
            not (n.stop_sell or n.is_empty) for n in self.nights
        )

    @property
    def room_total(self) -> Decimal:
        return to_money(sum((n.final_rate for n in self.nights if n.final_rate is not None), Decimal("0")))

    @property
    def package_total(self) -> Decimal:
        return to_money(sum((n.package_component_total or Decimal("0") for n in self.nights), Decimal("0")))

    @property
    def total(self) -> Decimal:
        return to_money(self.room_total + self.package_total)


# ============== Resolver ==============

class RateResolver:
    """
    Pure rate resolver over a PricingContext.

    Example:
        >>> resolver = RateResolver(ctx, today=date(2024, 1, 1))
        >>> cell = resolver.resolve(plan, room_type, date(2024, 3, 1), length_of_stay=10)
        >>> cell.final_rate
        Decimal('162.00')
    """

    def __init__(self, context: PricingContext, today: Optional[date] = None,
                 options: ResolveOptions = ResolveOptions(), default_currency: Optional[str] = None):
        self.context = context
        self.today = today or date.today()
        self.options = options
        self.default_currency = default_currency

    # ---------- layer selection ----------

    def select_tier(self, rate_plan: RatePlan, length_of_stay: Optional[int]) -> Optional[RateTier]:
        """First matching tier by ascending priority. Tiers are never cumulative."""
        if length_of_stay is None:
            return None
        for tier in self.context.tiers_by_plan.get(rate_plan.id, []):
            if tier.matches(length_of_stay):
                return tier
        return None

    def select_override(self, rate_plan: RatePlan, room_type: RoomType,
                        target: date) -> Optional[RateOverride]:
        """
        Most specific override for (plan, date).

        A room-type-specific override wins over a plan-wide one regardless of
        creation order. Within the same specificity the latest id wins.
        """
        candidates = self.context.overrides_by_plan_date.get((rate_plan.id, target), [])
        specific = [o for o in candidates if o.room_type_id == room_type.id]
        if specific:
            return max(specific, key=lambda o: o.id)
        plan_wide = [o for o in candidates if o.is_plan_wide]
        if plan_wide:
            return max(plan_wide, key=lambda o: o.id)
        return None

    def rule_matches(self, rule: PricingRule, target: date,
                     length_of_stay: Optional[int]) -> bool:
        if not rule.is_active or rule.status != EntityStatus.ACTIVE:
            return False
        if not has_rule_adjustment(rule):
            return False
        if rule.start_date is not None and target < rule.start_date:
            return False
        if rule.end_date is not None and target > rule.end_date:
            return False
        if rule.minimum_nights is not None:
            if length_of_stay is None or length_of_stay < rule.minimum_nights:
                return False
        if rule.maximum_nights is not None:
            if length_of_stay is None or length_of_stay > rule.maximum_nights:
                return False
        if rule.advance_booking_days is not None:
            if (target - self.today).days < rule.advance_booking_days:
                return False
        return True

    def select_rule(self, target: date, length_of_stay: Optional[int]) -> Optional[PricingRule]:
        """First matching active rule by descending priority; evaluation stops there."""
        for rule in self.context.rules:
            if self.rule_matches(rule, target, length_of_stay):
                return rule
        return None

    # ---------- resolution ----------

    def resolve(
        self,
        rate_plan: RatePlan,
        room_type: RoomType,
        target: date,
        length_of_stay: Optional[int] = None,
        guest_type: Optional[GuestType] = None,
    ) -> RateMatrixCell:
        """
        Resolve one cell.

        Raises:
            NoBaseRateError: no active RoomRate for the triple.
        """
        base = self.context.room_rates.get((rate_plan.code, room_type.code, target))
        if base is None:
            raise NoBaseRateError(rate_plan.code, room_type.code, target)

        opts = self.options
        cell = RateMatrixCell(
            rate_plan_code=rate_plan.code,
            room_type_code=room_type.code,
            rate_date=target,
            guest_type=guest_type,
            base_rate=to_money(base.rate_amount),
            currency=base.currency or rate_plan.currency or self.default_currency,
            availability_count=base.availability_count,
            stop_sell=bool(base.stop_sell),
            closed_for_arrival=bool(base.closed_for_arrival),
            closed_for_departure=bool(base.closed_for_departure),
        )
        amount = cell.base_rate

        if opts.include_tiers:
            tier = self.select_tier(rate_plan, length_of_stay)
            if tier is not None:
                adjusted = apply_adjustment(amount, tier.adjustment_type, tier.adjustment_value)
                cell.tier_adjustment = to_money(adjusted - amount)
                cell.applied_tier = {
                    "tierId": tier.id,
                    "label": describe_adjustment(tier.adjustment_type, tier.adjustment_value),
                    "minNights": tier.min_nights,
                    "maxNights": tier.max_nights,
                    "adjustmentType": tier.adjustment_type.value,
                    "adjustmentValue": float(tier.adjustment_value),
                    "priority": tier.priority,
                }
                amount = adjusted
                logger.debug(f"Tier {tier.id} applied to {rate_plan.code}/{room_type.code} {target}")

        if opts.include_overrides:
            override = self.select_override(rate_plan, room_type, target)
            if override is not None:
                adjusted = apply_adjustment(amount, override.override_type, override.override_value)
                cell.override_adjustment = to_money(adjusted - amount)
                cell.applied_override = {
                    "overrideId": override.id,
                    "label": describe_adjustment(override.override_type, override.override_value),
                    "overrideType": override.override_type.value,
                    "overrideValue": float(override.override_value),
                    "roomTypeId": override.room_type_id,
                    "reason": override.reason,
                }
                cell.stop_sell = cell.stop_sell or override.stop_sell
                cell.closed_for_arrival = cell.closed_for_arrival or override.closed_for_arrival
                cell.closed_for_departure = cell.closed_for_departure or override.closed_for_departure
                amount = adjusted

        if opts.include_rules:
            rule = self.select_rule(target, length_of_stay)
            if rule is not None:
                adjusted = apply_pricing_rule(amount, rule)
                cell.rule_adjustment = to_money(adjusted - amount)
                cell.applied_rule = {
                    "ruleId": rule.id,
                    "ruleName": rule.rule_name,
                    "ruleType": rule.rule_type.value,
                    "priority": rule.priority,
                }
                amount = adjusted

        cell.final_rate = clamp_non_negative(amount)

        if opts.include_package_components and rate_plan.is_package:
            total = Decimal("0")
            for component in self.context.components_by_plan.get(rate_plan.id, []):
                price = component_total(component, opts.occupancy)
                total += price
                cell.package_components.append({
                    "componentId": component.id,
                    "componentType": component.component_type.value,
                    "componentCode": component.component_code,
                    "componentName": component.component_name,
                    "quantity": component.quantity,
                    "isIncluded": component.is_included,
                    "totalPrice": float(price),
                })
            cell.package_component_total = to_money(total)

        return cell

    def resolve_or_empty(self, rate_plan: RatePlan, room_type: RoomType, target: date,
                         length_of_stay: Optional[int] = None,
                         guest_type: Optional[GuestType] = None) -> RateMatrixCell:
        try:
            return self.resolve(rate_plan, room_type, target, length_of_stay, guest_type)
        except NoBaseRateError:
            return RateMatrixCell.empty(rate_plan.code, room_type.code, target, guest_type)

    def quote_stay(self, rate_plan: RatePlan, room_type: RoomType, check_in: date,
                   check_out: date, guest_type: Optional[GuestType] = None) -> StayQuote:
        """Resolve each night of [check_in, check_out) with the stay length as LOS."""
        nights = (check_out - check_in).days
        quote = StayQuote(rate_plan.code, room_type.code, check_in, check_out)
        for offset in range(max(nights, 0)):
            night = check_in + timedelta(days=offset)
            cell = self.resolve_or_empty(rate_plan, room_type, night, nights, guest_type)
            if cell.is_empty:
                quote.missing_dates.append(night)
            quote.nights.append(cell)
        return quote


__all__ = [
    "PricingContext",
    "ResolveOptions",
    "RateMatrixCell",
    "StayQuote",
    "RateResolver",
]
