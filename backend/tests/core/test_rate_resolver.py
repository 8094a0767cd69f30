"""
Tests for rate_core/resolver.py and rate_core/adjustments.py
Covers: layer precedence, tier selection, override specificity, rule priority
and conditions, flag propagation, package totals, stay quotes
"""
import pytest
from datetime import date, timedelta
from decimal import Decimal

from rate_core.adjustments import apply_adjustment, apply_pricing_rule, describe_adjustment
from rate_core.errors import NoBaseRateError, ValidationError
from rate_core.models import (
    AdjustmentType, ComponentType, EntityStatus, GuestType, Occupancy, PricingRule,
    RateOverride, RatePackageComponent, RatePlan, RateTier, RoomRate, RoomType,
)
from rate_core.resolver import PricingContext, RateResolver, ResolveOptions

D = date(2024, 3, 1)
BAR = RatePlan(id=1, code="BAR", currency="USD")
DLX = RoomType(id=1, code="DLX")
STD = RoomType(id=2, code="STD")


# ── helpers ──────────────────────────────────────────────────────────

def _rate(amount, room_type=DLX, day=D, rate_id=1, **kwargs):
    return RoomRate(id=rate_id, rate_plan_code="BAR", room_type_code=room_type.code,
                    rate_date=day, rate_amount=Decimal(str(amount)), **kwargs)


def _tier(tier_id, min_nights, max_nights, value, priority, adjustment_type=AdjustmentType.PERCENTAGE):
    return RateTier(id=tier_id, rate_plan_id=1, min_nights=min_nights, max_nights=max_nights,
                    adjustment_type=adjustment_type, adjustment_value=Decimal(str(value)),
                    priority=priority)


def _override(override_id, value, room_type_id=None, override_type=AdjustmentType.SET_RATE, **kwargs):
    return RateOverride(id=override_id, rate_plan_id=1, override_date=D, override_type=override_type,
                        override_value=Decimal(str(value)), room_type_id=room_type_id, **kwargs)


def _rule(rule_id, priority, discount_percentage=None, **kwargs):
    pct = Decimal(str(discount_percentage)) if discount_percentage is not None else None
    return PricingRule(id=rule_id, rule_name=f"rule-{rule_id}", priority=priority,
                       discount_percentage=pct, **kwargs)


def _resolver(rates=(), tiers=(), overrides=(), rules=(), components=(), **kwargs):
    ctx = PricingContext.from_primitives(rates, tiers, overrides, rules, components)
    kwargs.setdefault("today", D - timedelta(days=60))
    return RateResolver(ctx, **kwargs)


# ── tests ────────────────────────────────────────────────────────────

class TestBaseRate:

    def test_no_layers_final_equals_base(self):
        cell = _resolver([_rate("200")]).resolve(BAR, DLX, D, length_of_stay=3)
        assert cell.base_rate == Decimal("200.00")
        assert cell.final_rate == Decimal("200.00")
        assert cell.tier_adjustment is None
        assert cell.override_adjustment is None
        assert cell.rule_adjustment is None

    def test_missing_base_rate_raises(self):
        with pytest.raises(NoBaseRateError):
            _resolver([_rate("200")]).resolve(BAR, STD, D)

    def test_missing_base_rate_is_empty_cell(self):
        cell = _resolver([]).resolve_or_empty(BAR, DLX, D, guest_type=GuestType.VIP)
        assert cell.is_empty
        assert cell.final_rate is None
        assert cell.guest_type == GuestType.VIP

    def test_inactive_base_rate_ignored(self):
        resolver = _resolver([_rate("200", status=EntityStatus.INACTIVE)])
        with pytest.raises(NoBaseRateError):
            resolver.resolve(BAR, DLX, D)

    def test_currency_falls_back_to_plan(self):
        cell = _resolver([_rate("200")]).resolve(BAR, DLX, D)
        assert cell.currency == "USD"


class TestTierSelection:

    def test_first_matching_tier_only(self):
        tiers = [_tier(1, 1, 3, "10", 1), _tier(2, 3, None, "5", 2)]
        cell = _resolver([_rate("200")], tiers).resolve(BAR, DLX, D, length_of_stay=2)
        assert cell.final_rate == Decimal("220.00")
        assert cell.applied_tier["tierId"] == 1
        assert cell.applied_tier["label"] == "+10%"

    def test_upper_bound_is_exclusive(self):
        tiers = [_tier(1, 1, 3, "10", 1), _tier(2, 3, None, "5", 2)]
        cell = _resolver([_rate("200")], tiers).resolve(BAR, DLX, D, length_of_stay=3)
        assert cell.final_rate == Decimal("210.00")
        assert cell.applied_tier["tierId"] == 2

    def test_priority_not_id_decides(self):
        tiers = [_tier(1, 1, None, "5", 2), _tier(2, 1, None, "10", 1)]
        cell = _resolver([_rate("200")], tiers).resolve(BAR, DLX, D, length_of_stay=2)
        assert cell.applied_tier["tierId"] == 2
        assert cell.final_rate == Decimal("220.00")

    def test_no_length_of_stay_skips_tiers(self):
        tiers = [_tier(1, 1, None, "10", 1)]
        cell = _resolver([_rate("200")], tiers).resolve(BAR, DLX, D)
        assert cell.applied_tier is None
        assert cell.final_rate == Decimal("200.00")

    def test_tiers_of_other_plans_ignored(self):
        tier = _tier(1, 1, None, "10", 1)
        tier.rate_plan_id = 99
        cell = _resolver([_rate("200")], [tier]).resolve(BAR, DLX, D, length_of_stay=2)
        assert cell.applied_tier is None


class TestOverrideSpecificity:

    def test_specific_beats_plan_wide_created_later(self):
        overrides = [_override(1, "180", room_type_id=1), _override(2, "150")]
        cell = _resolver([_rate("200")], overrides=overrides).resolve(BAR, DLX, D)
        assert cell.final_rate == Decimal("180.00")
        assert cell.applied_override["overrideId"] == 1
        assert cell.applied_override["label"] == "set 180.00"

    def test_specific_beats_plan_wide_created_earlier(self):
        overrides = [_override(1, "150"), _override(2, "180", room_type_id=1)]
        cell = _resolver([_rate("200")], overrides=overrides).resolve(BAR, DLX, D)
        assert cell.final_rate == Decimal("180.00")
        assert cell.applied_override["overrideId"] == 2

    def test_plan_wide_applies_to_other_room_types(self):
        rates = [_rate("200"), _rate("120", room_type=STD, rate_id=2)]
        overrides = [_override(1, "180", room_type_id=1), _override(2, "150")]
        cell = _resolver(rates, overrides=overrides).resolve(BAR, STD, D)
        assert cell.final_rate == Decimal("150.00")
        assert cell.applied_override["roomTypeId"] is None

    def test_override_flags_propagate(self):
        rates = [_rate("200", closed_for_arrival=True)]
        overrides = [_override(1, "0", override_type=AdjustmentType.FIXED, stop_sell=True)]
        cell = _resolver(rates, overrides=overrides).resolve(BAR, DLX, D)
        assert cell.stop_sell is True
        assert cell.closed_for_arrival is True
        assert cell.closed_for_departure is False
        assert cell.final_rate == Decimal("200.00")

    def test_final_rate_clamped_at_zero(self):
        overrides = [_override(1, "-500", override_type=AdjustmentType.FIXED)]
        cell = _resolver([_rate("200")], overrides=overrides).resolve(BAR, DLX, D)
        assert cell.final_rate == Decimal("0.00")


class TestPricingRules:

    def test_only_highest_priority_rule_applies(self):
        rules = [_rule(1, 5, "10"), _rule(2, 10, "20")]
        cell = _resolver([_rate("200")], rules=rules).resolve(BAR, DLX, D)
        assert cell.final_rate == Decimal("160.00")
        assert cell.rule_adjustment == Decimal("-40.00")
        assert cell.applied_rule["ruleId"] == 2

    def test_inactive_rule_skipped(self):
        rules = [_rule(1, 5, "10"), _rule(2, 10, "20", is_active=False)]
        cell = _resolver([_rate("200")], rules=rules).resolve(BAR, DLX, D)
        assert cell.applied_rule["ruleId"] == 1
        assert cell.final_rate == Decimal("180.00")

    def test_date_window(self):
        rules = [_rule(1, 5, "10", start_date=D + timedelta(days=1))]
        cell = _resolver([_rate("200")], rules=rules).resolve(BAR, DLX, D)
        assert cell.applied_rule is None

    def test_minimum_nights_needs_length_of_stay(self):
        resolver = _resolver([_rate("200")], rules=[_rule(1, 5, "10", minimum_nights=3)])
        assert resolver.resolve(BAR, DLX, D).applied_rule is None
        assert resolver.resolve(BAR, DLX, D, length_of_stay=2).applied_rule is None
        assert resolver.resolve(BAR, DLX, D, length_of_stay=3).applied_rule["ruleId"] == 1

    def test_advance_booking_days(self):
        rules = [_rule(1, 5, "10", advance_booking_days=30)]
        late = _resolver([_rate("200")], rules=rules, today=D - timedelta(days=10))
        early = _resolver([_rate("200")], rules=rules, today=D - timedelta(days=40))
        assert late.resolve(BAR, DLX, D).applied_rule is None
        assert early.resolve(BAR, DLX, D).final_rate == Decimal("180.00")

    def test_rule_without_adjustment_never_matches(self):
        rules = [_rule(1, 10), _rule(2, 5, "10")]
        cell = _resolver([_rate("200")], rules=rules).resolve(BAR, DLX, D)
        assert cell.applied_rule["ruleId"] == 2

    def test_rule_components_applied_in_order(self):
        rule = _rule(1, 0, "10", discount_amount=Decimal("20"), price_adjustment=Decimal("5"))
        assert apply_pricing_rule(Decimal("200"), rule) == Decimal("165.00")


class TestLayeredScenario:

    def test_tier_override_rule_cumulative(self):
        resolver = _resolver(
            [_rate("200")],
            tiers=[_tier(1, 7, None, "-15", 1)],
            overrides=[_override(1, "180", room_type_id=1)],
            rules=[_rule(1, 1, "10")],
        )
        cell = resolver.resolve(BAR, DLX, D, length_of_stay=10)
        assert cell.tier_adjustment == Decimal("-30.00")
        assert cell.override_adjustment == Decimal("10.00")
        assert cell.rule_adjustment == Decimal("-18.00")
        assert cell.final_rate == Decimal("162.00")

    def test_layers_can_be_switched_off(self):
        resolver = _resolver(
            [_rate("200")],
            tiers=[_tier(1, 7, None, "-15", 1)],
            overrides=[_override(1, "180", room_type_id=1)],
            rules=[_rule(1, 1, "10")],
            options=ResolveOptions(include_overrides=False, include_rules=False),
        )
        assert resolver.resolve(BAR, DLX, D, length_of_stay=10).final_rate == Decimal("170.00")


class TestPackageComponents:

    def test_package_total_reported_beside_final_rate(self):
        plan = RatePlan(id=1, code="BAR", is_package=True)
        components = [
            RatePackageComponent(id=1, rate_plan_id=1, component_name="Breakfast",
                                 component_type=ComponentType.MEAL, quantity=2,
                                 unit_price=Decimal("25")),
            RatePackageComponent(id=2, rate_plan_id=1, component_name="Spa",
                                 price_adult=Decimal("30"), price_child=Decimal("10")),
        ]
        resolver = _resolver([_rate("200")], components=components,
                             options=ResolveOptions(occupancy=Occupancy(adults=2, children=1)))
        cell = resolver.resolve(plan, DLX, D)
        assert cell.final_rate == Decimal("200.00")
        assert cell.package_component_total == Decimal("120.00")
        assert [c["totalPrice"] for c in cell.package_components] == [50.0, 70.0]

    def test_non_package_plan_has_no_total(self):
        components = [RatePackageComponent(id=1, rate_plan_id=1, component_name="Breakfast",
                                           unit_price=Decimal("25"))]
        cell = _resolver([_rate("200")], components=components).resolve(BAR, DLX, D)
        assert cell.package_component_total is None
        assert cell.package_components == []


class TestQuoteStay:

    def test_totals_use_stay_length_as_los(self):
        rates = [_rate("200", day=D + timedelta(days=i), rate_id=i + 1) for i in range(3)]
        resolver = _resolver(rates, tiers=[_tier(1, 3, None, "-10", 1)])
        quote = resolver.quote_stay(BAR, DLX, D, D + timedelta(days=3))
        assert quote.available
        assert [n.final_rate for n in quote.nights] == [Decimal("180.00")] * 3
        assert quote.room_total == Decimal("540.00")
        assert quote.total == Decimal("540.00")

    def test_missing_night_makes_quote_unavailable(self):
        rates = [_rate("200", day=D)]
        quote = _resolver(rates).quote_stay(BAR, DLX, D, D + timedelta(days=2))
        assert not quote.available
        assert quote.missing_dates == [D + timedelta(days=1)]
        assert quote.room_total == Decimal("200.00")


class TestAdjustments:

    @pytest.mark.parametrize("adjustment_type,value,expected", [
        (AdjustmentType.PERCENTAGE, "10", "110.00"),
        (AdjustmentType.PERCENTAGE, "-10", "90.00"),
        (AdjustmentType.PERCENTAGE_INCREASE, "-10", "110.00"),
        (AdjustmentType.PERCENTAGE_DECREASE, "10", "90.00"),
        (AdjustmentType.FIXED_DECREASE, "15", "85.00"),
        (AdjustmentType.MULTIPLIER, "1.5", "150.00"),
        (AdjustmentType.SET_RATE, "75", "75.00"),
    ])
    def test_apply_adjustment(self, adjustment_type, value, expected):
        assert apply_adjustment(Decimal("100"), adjustment_type, value) == Decimal(expected)

    def test_rounds_half_up(self):
        assert apply_adjustment(Decimal("0.05"), AdjustmentType.MULTIPLIER, "0.5") == Decimal("0.03")

    def test_missing_value_rejected(self):
        with pytest.raises(ValidationError):
            apply_adjustment(Decimal("100"), AdjustmentType.FIXED, None)

    def test_describe(self):
        assert describe_adjustment(AdjustmentType.PERCENTAGE_DECREASE, Decimal("15")) == "-15%"
        assert describe_adjustment(AdjustmentType.SET_RATE, Decimal("180")) == "set 180.00"
