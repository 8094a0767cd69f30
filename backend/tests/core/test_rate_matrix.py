"""
Tests for rate_core/matrix.py
"""
import pytest
from datetime import timedelta
from decimal import Decimal

from conftest import STAY_DATE, seed_rates
from rate_core.errors import ValidationError
from rate_core.matrix import MatrixBuilder, MatrixOptions, MatrixSummary
from rate_core.models import AdjustmentType, EntityStatus, GuestType
from rate_core.resolver import RateMatrixCell

D = STAY_DATE


@pytest.fixture
def priced_store(store):
    seed_rates(store, "BAR", "DLX", D, 1, "200.00")
    seed_rates(store, "BAR", "DLX", D + timedelta(days=1), 1, "220.00", stop_sell=True)
    return store


class TestMatrixShape:

    def test_nested_date_room_type_plan_guest_type(self, priced_store):
        response = MatrixBuilder(priced_store).build(
            D, D + timedelta(days=2), ["DLX", "STD"], ["BAR"],
            [GuestType.INDIVIDUAL, GuestType.CORPORATE],
        )
        data = response.to_dict()["matrix"]
        assert set(data) == {(D + timedelta(days=i)).isoformat() for i in range(3)}
        cell = data[D.isoformat()]["DLX"]["BAR"]["CORPORATE"]
        assert cell["finalRate"] == 200.0
        assert cell["guestType"] == "CORPORATE"
        assert data[D.isoformat()]["STD"]["BAR"]["INDIVIDUAL"]["empty"] is True

    def test_guest_types_default_to_individual(self, priced_store):
        response = MatrixBuilder(priced_store).build(D, D, ["DLX"], ["BAR"])
        assert response.guest_types == [GuestType.INDIVIDUAL]
        assert response.cell(D, "DLX", "BAR").final_rate == Decimal("200.00")

    def test_guest_type_has_no_pricing_effect(self, priced_store):
        response = MatrixBuilder(priced_store).build(D, D, ["DLX"], ["BAR"], list(GuestType))
        rates = {c.final_rate for c in response.iter_cells()}
        assert rates == {Decimal("200.00")}


class TestMissingCells:

    def test_missing_base_rate_yields_empty_cells(self, priced_store):
        response = MatrixBuilder(priced_store).build(D, D + timedelta(days=2), ["DLX"], ["BAR"])
        third = response.cell(D + timedelta(days=2), "DLX", "BAR")
        assert third.is_empty
        assert third.final_rate is None

    def test_unknown_codes_yield_empty_cells(self, priced_store):
        response = MatrixBuilder(priced_store).build(D, D, ["DLX", "XXX"], ["BAR", "NOPE"])
        assert response.cell(D, "XXX", "BAR").is_empty
        assert response.cell(D, "DLX", "NOPE").is_empty
        assert not response.cell(D, "DLX", "BAR").is_empty

    def test_inactive_plan_yields_empty_cells(self, priced_store, bar_plan):
        priced_store.rate_plans.delete(bar_plan.id)
        response = MatrixBuilder(priced_store).build(D, D, ["DLX"], ["BAR"])
        assert response.cell(D, "DLX", "BAR").is_empty

    def test_inverted_range_rejected(self, priced_store):
        with pytest.raises(ValidationError):
            MatrixBuilder(priced_store).build(D + timedelta(days=1), D, ["DLX"], ["BAR"])


class TestSummary:

    def test_aggregates(self, priced_store):
        response = MatrixBuilder(priced_store).build(
            D, D + timedelta(days=2), ["DLX", "STD"], ["BAR"],
            [GuestType.INDIVIDUAL, GuestType.CORPORATE],
        )
        summary = response.summary
        assert summary.total_cells == 12
        assert summary.resolved_cells == 4
        assert summary.empty_cells == 8
        assert summary.min_rate == Decimal("200.00")
        assert summary.max_rate == Decimal("220.00")
        assert summary.average_rate == Decimal("210.00")
        assert summary.stop_sell_count == 2

    def test_summary_of_empty_cells(self):
        summary = MatrixSummary.of([RateMatrixCell.empty("BAR", "DLX", D)])
        assert summary.min_rate is None
        assert summary.to_dict()["averageRate"] is None


class TestBuildIsPureRead:

    def test_no_writes_and_repeatable(self, priced_store):
        builder = MatrixBuilder(priced_store)
        before = priced_store.room_rates.list().content
        first = builder.build(D, D + timedelta(days=1), ["DLX"], ["BAR"]).to_dict()
        second = builder.build(D, D + timedelta(days=1), ["DLX"], ["BAR"]).to_dict()
        assert first == second
        assert priced_store.room_rates.list().content == before
        assert priced_store.audits.list_all() == []

    def test_parallel_matches_sequential(self, priced_store):
        builder = MatrixBuilder(priced_store)
        args = (D, D + timedelta(days=2), ["DLX", "STD"], ["BAR"], list(GuestType))
        sequential = builder.build(*args, options=MatrixOptions(max_workers=1)).to_dict()
        parallel = builder.build(*args, options=MatrixOptions(max_workers=8)).to_dict()
        assert sequential == parallel


class TestLayersInMatrix:

    def test_tiers_overrides_rules_loaded_from_store(self, priced_store, bar_plan):
        priced_store.rate_tiers.create({
            "rate_plan_id": bar_plan.id, "min_nights": 7,
            "adjustment_type": AdjustmentType.PERCENTAGE, "adjustment_value": Decimal("-15"),
        })
        priced_store.rate_overrides.create({
            "rate_plan_id": bar_plan.id, "room_type_id": 1, "override_date": D,
            "override_type": AdjustmentType.SET_RATE, "override_value": Decimal("180"),
        })
        priced_store.pricing_rules.create({"rule_name": "Spring", "discount_percentage": Decimal("10")})
        response = MatrixBuilder(priced_store).build(
            D, D, ["DLX"], ["BAR"], options=MatrixOptions(length_of_stay=10),
        )
        assert response.cell(D, "DLX", "BAR").final_rate == Decimal("162.00")

    def test_rule_outside_window_not_loaded(self, priced_store):
        priced_store.pricing_rules.create({
            "rule_name": "Summer", "discount_percentage": Decimal("10"),
            "start_date": D + timedelta(days=90), "end_date": D + timedelta(days=120),
        })
        response = MatrixBuilder(priced_store).build(D, D, ["DLX"], ["BAR"])
        assert response.cell(D, "DLX", "BAR").applied_rule is None

    def test_inactive_override_not_loaded(self, priced_store, bar_plan):
        override = priced_store.rate_overrides.create({
            "rate_plan_id": bar_plan.id, "override_date": D,
            "override_type": AdjustmentType.SET_RATE, "override_value": Decimal("50"),
        })
        priced_store.rate_overrides.update(override.id, {"status": EntityStatus.INACTIVE})
        response = MatrixBuilder(priced_store).build(D, D, ["DLX"], ["BAR"])
        assert response.cell(D, "DLX", "BAR").final_rate == Decimal("200.00")

    def test_booking_date_drives_advance_booking(self, priced_store):
        priced_store.pricing_rules.create({
            "rule_name": "Early bird", "discount_percentage": Decimal("10"), "advance_booking_days": 30,
        })
        early = MatrixOptions(booking_date=D - timedelta(days=45))
        late = MatrixOptions(booking_date=D - timedelta(days=5))
        builder = MatrixBuilder(priced_store)
        assert builder.build(D, D, ["DLX"], ["BAR"], options=early).cell(D, "DLX", "BAR").final_rate == Decimal("180.00")
        assert builder.build(D, D, ["DLX"], ["BAR"], options=late).cell(D, "DLX", "BAR").final_rate == Decimal("200.00")
