"""
Tests for rate_core/bulk.py
Covers: arithmetic operations, copy_from cycling, idempotence of set versus
compounding deltas, partial failure isolation, cancellation, batch audit mode
"""
import logging
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from conftest import STAY_DATE, seed_rates
from rate_core.bulk import (
    AuditMode, BulkContext, BulkMutationOrchestrator, BulkOperation, BulkOperationType,
    CancellationToken,
)
from rate_core.errors import ValidationError
from rate_core.models import AuditAction, AuditEntityType, EntityStatus
from rate_core.selection import CellKey, CellValues, GridLayout, extend_selection

D = STAY_DATE


# ── helpers ──────────────────────────────────────────────────────────

def _keys(room_type_id=1, days=5, start=D):
    return [CellKey(1, room_type_id, start + timedelta(days=i)) for i in range(days)]


def _amounts(store, room_type_code="DLX", days=5):
    result = []
    for i in range(days):
        rate = store.room_rates.find_by_key("BAR", room_type_code, D + timedelta(days=i))
        result.append(rate.rate_amount if rate is not None else None)
    return result


@pytest.fixture
def orchestrator(service):
    return BulkMutationOrchestrator(service)


@pytest.fixture
def context(actor):
    return BulkContext(actor=actor)


# ── tests ────────────────────────────────────────────────────────────

class TestArithmeticOperations:

    def test_set(self, store, week_of_rates, orchestrator, context):
        result = orchestrator.apply(_keys(), BulkOperation.set(150), context)
        assert result.succeeded == 5
        assert result.failed == 0
        assert result.message == "Updated 5 of 5 cells"
        assert _amounts(store) == [Decimal("150.00")] * 5

    @pytest.mark.parametrize("operation,expected", [
        (BulkOperation.increase_percent(10), "110.00"),
        (BulkOperation.decrease_percent(25), "75.00"),
        (BulkOperation.increase_fixed(12.5), "112.50"),
        (BulkOperation.decrease_fixed(30), "70.00"),
        (BulkOperation.decrease_fixed(500), "0.00"),
    ])
    def test_delta_operations_from_current_amount(self, store, week_of_rates, orchestrator,
                                                  context, operation, expected):
        orchestrator.apply(_keys(), operation, context)
        assert _amounts(store) == [Decimal(expected)] * 5

    def test_missing_cell_starts_from_zero(self, store, orchestrator, context):
        orchestrator.apply(_keys(room_type_id=2, days=2), BulkOperation.increase_fixed(40), context)
        assert _amounts(store, "STD", 2) == [Decimal("40.00")] * 2

    def test_inactive_cell_starts_from_zero_and_is_revived(self, store, week_of_rates,
                                                           orchestrator, context):
        store.room_rates.delete(week_of_rates[0].id)
        orchestrator.apply(_keys(days=1), BulkOperation.increase_fixed(10), context)
        rate = store.room_rates.get(week_of_rates[0].id)
        assert rate.rate_amount == Decimal("10.00")
        assert rate.status == EntityStatus.ACTIVE

    def test_companion_fields_set_uniformly(self, store, week_of_rates, orchestrator, context):
        orchestrator.apply(_keys(), BulkOperation.set(150, availability_count=4, stop_sell=True), context)
        rates = store.room_rates.list({"room_type_code": "DLX"}).content
        assert {(r.availability_count, r.stop_sell) for r in rates} == {(4, True)}

    def test_companion_only_keeps_amount(self, store, week_of_rates, orchestrator, context):
        operation = BulkOperation(BulkOperationType.SET, None, stop_sell=True)
        orchestrator.apply(_keys(), operation, context)
        assert _amounts(store) == [Decimal("100.00")] * 5


class TestIdempotence:

    def test_set_twice_same_state(self, store, week_of_rates, orchestrator, context):
        orchestrator.apply(_keys(), BulkOperation.set(150), context)
        first = _amounts(store)
        orchestrator.apply(_keys(), BulkOperation.set(150), context)
        assert _amounts(store) == first == [Decimal("150.00")] * 5

    def test_increase_percent_twice_compounds(self, store, week_of_rates, orchestrator, context):
        orchestrator.apply(_keys(), BulkOperation.increase_percent(10), context)
        orchestrator.apply(_keys(), BulkOperation.increase_percent(10), context)
        assert _amounts(store) == [Decimal("121.00")] * 5

    def test_duplicate_keys_applied_once(self, store, week_of_rates, orchestrator, context):
        key = CellKey(1, 1, D)
        result = orchestrator.apply([key, key], BulkOperation.increase_percent(10), context)
        assert result.succeeded == 1
        assert _amounts(store, days=1) == [Decimal("110.00")]
        assert len(store.audits.list_all()) == 1

    def test_copy_from_twice_same_state(self, store, week_of_rates, orchestrator, context):
        seed_rates(store, "BAR", "STD", D, 2, "80.00")
        clipboard = orchestrator.capture(_keys(room_type_id=2, days=2))
        orchestrator.paste(clipboard, _keys(), context)
        first = _amounts(store)
        orchestrator.paste(clipboard, _keys(), context)
        assert _amounts(store) == first


class TestCopyFrom:

    def test_sources_cycle_by_position(self, store, week_of_rates, orchestrator, context):
        seed_rates(store, "BAR", "STD", D, 1, "111.00")
        seed_rates(store, "BAR", "STD", D + timedelta(days=1), 1, "222.00")
        clipboard = orchestrator.capture(_keys(room_type_id=2, days=2))

        result = orchestrator.apply(_keys(), BulkOperation.copy_from(clipboard), context)

        assert result.succeeded == 5
        pattern = [Decimal("111.00"), Decimal("222.00")]
        assert _amounts(store) == [pattern[i % 2] for i in range(5)]

    def test_copies_availability_and_stop_sell(self, store, week_of_rates, orchestrator, context):
        sources = [CellValues(Decimal("90.00"), 2, True)]
        orchestrator.apply(_keys(days=2), BulkOperation.copy_from(sources), context)
        rate = store.room_rates.find_by_key("BAR", "DLX", D + timedelta(days=1))
        assert (rate.rate_amount, rate.availability_count, rate.stop_sell) == (Decimal("90.00"), 2, True)

    def test_copy_records_copy_action(self, store, week_of_rates, orchestrator, context):
        orchestrator.apply(_keys(days=2), BulkOperation.copy_from([CellValues(Decimal("90.00"))]), context)
        assert {r.action for r in store.audits.list_all()} == {AuditAction.COPY}

    def test_empty_clipboard_rejected(self, orchestrator, context):
        with pytest.raises(ValidationError):
            orchestrator.apply(_keys(), BulkOperation.copy_from([]), context)

    def test_empty_source_cell_not_pasted_as_zero(self, store, week_of_rates, orchestrator, context):
        clipboard = orchestrator.capture([CellKey(1, 1, D), CellKey(1, 2, D)])
        assert clipboard.source_keys == (CellKey(1, 1, D),)

        targets = _keys(room_type_id=2, days=2, start=D + timedelta(days=1))
        result = orchestrator.paste(clipboard, targets, context)

        assert result.succeeded == 2
        assert _amounts(store, "STD", days=3) == [None, Decimal("100.00"), Decimal("100.00")]
        assert store.room_rates.list({"room_type_code": "STD"}).total_elements == 2

    def test_all_empty_clipboard_rejected(self, store, week_of_rates, orchestrator, context):
        clipboard = orchestrator.capture(_keys(room_type_id=2, days=2))
        assert clipboard.is_empty
        with pytest.raises(ValidationError, match="No cells copied"):
            orchestrator.paste(clipboard, _keys(), context)
        assert store.audits.list_all() == []

    def test_sources_without_rate_dropped(self, store, week_of_rates, orchestrator, context):
        sources = [CellValues(None, 3, False), CellValues(Decimal("90.00"))]
        orchestrator.apply(_keys(days=2), BulkOperation.copy_from(sources), context)
        assert _amounts(store, days=2) == [Decimal("90.00")] * 2


class TestValidation:

    def test_empty_selection(self, orchestrator, context):
        with pytest.raises(ValidationError):
            orchestrator.apply([], BulkOperation.set(100), context)

    def test_negative_value(self, store, week_of_rates, orchestrator, context):
        with pytest.raises(ValidationError):
            orchestrator.apply(_keys(), BulkOperation.set(-1), context)
        assert store.audits.list_all() == []

    def test_value_or_companion_required(self, orchestrator, context):
        with pytest.raises(ValidationError):
            orchestrator.apply(_keys(), BulkOperation(BulkOperationType.SET), context)

    def test_selection_size_limit(self, actor, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.apply(_keys(), BulkOperation.set(100), BulkContext(actor=actor, max_cells=3))


class TestPartialFailure:

    def test_one_failing_cell_does_not_abort(self, store, week_of_rates, orchestrator, context, monkeypatch):
        original = store.room_rates.upsert
        calls = []

        def flaky(payload, expected_version=None):
            calls.append(payload["rate_date"])
            if len(calls) == 4:
                raise RuntimeError("store unavailable")
            return original(payload, expected_version)

        monkeypatch.setattr(store.room_rates, "upsert", MagicMock(side_effect=flaky))
        keys = _keys() + _keys(room_type_id=2)

        result = orchestrator.apply(keys, BulkOperation.set(150), context)

        assert result.succeeded == 9
        assert result.failed == 1
        assert result.errors[0].cell_key == keys[3].to_token()
        assert result.errors[0].kind == "upstream"
        assert "store unavailable" in result.errors[0].reason
        assert result.message == "Updated 9 of 10 cells"
        assert len(store.audits.list_all()) == 9

    def test_unknown_room_type_reported_per_cell(self, store, week_of_rates, orchestrator, context):
        keys = _keys(days=2) + [CellKey(1, 99, D)]
        result = orchestrator.apply(keys, BulkOperation.set(150), context)
        assert (result.succeeded, result.failed) == (2, 1)
        assert result.errors[0].kind == "not_found"

    def test_parallel_workers_isolate_failures(self, store, week_of_rates, actor, orchestrator):
        keys = _keys() + [CellKey(1, 99, D)]
        context = BulkContext(actor=actor, max_workers=4)
        result = orchestrator.apply(keys, BulkOperation.set(150), context)
        assert (result.succeeded, result.failed) == (5, 1)
        assert _amounts(store) == [Decimal("150.00")] * 5


class TestCancellation:

    def test_cancelled_before_start(self, store, week_of_rates, actor, orchestrator):
        token = CancellationToken()
        token.cancel()
        result = orchestrator.apply(_keys(), BulkOperation.set(150), BulkContext(actor=actor, cancel_token=token))
        assert result.cancelled
        assert (result.succeeded, result.skipped) == (0, 5)
        assert _amounts(store) == [Decimal("100.00")] * 5

    def test_cancel_between_cells_keeps_written_cells(self, store, week_of_rates, actor,
                                                      orchestrator, monkeypatch):
        token = CancellationToken()
        original = store.room_rates.upsert
        calls = []

        def cancel_after_two(payload, expected_version=None):
            result = original(payload, expected_version)
            calls.append(payload["rate_date"])
            if len(calls) == 2:
                token.cancel()
            return result

        monkeypatch.setattr(store.room_rates, "upsert", cancel_after_two)
        result = orchestrator.apply(_keys(), BulkOperation.set(150),
                                    BulkContext(actor=actor, cancel_token=token))

        assert result.cancelled
        assert (result.succeeded, result.failed, result.skipped) == (2, 0, 3)
        assert _amounts(store) == [Decimal("150.00")] * 2 + [Decimal("100.00")] * 3


class TestAuditModes:

    def test_per_cell_records(self, store, week_of_rates, orchestrator, context):
        result = orchestrator.apply(_keys(), BulkOperation.set(150), context)
        records = store.audits.list_all()
        assert len(records) == 5
        assert {r.action for r in records} == {AuditAction.UPDATE}
        assert result.audit_ids == [r.id for r in records]
        assert records[0].changed_fields == ["rateAmount"]

    def test_new_cells_recorded_as_create(self, store, orchestrator, context):
        orchestrator.apply(_keys(room_type_id=2, days=2), BulkOperation.set(90), context)
        assert {r.action for r in store.audits.list_all()} == {AuditAction.CREATE}

    def test_batch_mode_single_record(self, store, week_of_rates, actor, orchestrator):
        context = BulkContext(actor=actor, audit_mode=AuditMode.BATCH)
        result = orchestrator.apply(_keys(), BulkOperation.set(150), context)

        records = store.audits.list_all()
        assert len(records) == 1
        record = records[0]
        assert record.action == AuditAction.BULK_UPDATE
        assert record.entity_type == AuditEntityType.ROOM_RATE
        assert record.metadata["batch"] is True
        assert record.metadata["cells"] == [k.to_token() for k in _keys()]
        assert record.new_value[_keys()[0].to_token()]["rateAmount"] == 150.0
        assert result.audit_ids == [record.id]

    def test_audit_failure_is_integrity_gap(self, store, week_of_rates, orchestrator, context,
                                            monkeypatch, caplog):
        monkeypatch.setattr(store.audits, "append", MagicMock(side_effect=RuntimeError("audit down")))
        with caplog.at_level(logging.ERROR, logger="rate_core.mutations"):
            result = orchestrator.apply(_keys(days=2), BulkOperation.set(150), context)

        assert (result.succeeded, result.failed) == (0, 2)
        assert {e.kind for e in result.errors} == {"audit_write"}
        assert _amounts(store, days=2) == [Decimal("150.00")] * 2
        assert "Integrity gap" in caplog.text

    def test_batch_record_failure_fails_written_cells(self, store, week_of_rates, actor,
                                                      orchestrator, monkeypatch):
        monkeypatch.setattr(store.audits, "append", MagicMock(side_effect=RuntimeError("audit down")))
        context = BulkContext(actor=actor, audit_mode=AuditMode.BATCH)
        result = orchestrator.apply(_keys(), BulkOperation.set(150), context)
        assert (result.succeeded, result.failed) == (0, 5)
        assert {e.kind for e in result.errors} == {"audit_write"}


class TestVersioning:

    def test_versioned_writes_succeed_without_contention(self, store, week_of_rates, actor, orchestrator):
        context = BulkContext(actor=actor, use_versioning=True)
        result = orchestrator.apply(_keys(), BulkOperation.set(150), context)
        assert result.succeeded == 5
        assert {r.version for r in store.room_rates.list({"room_type_code": "DLX"}).content} == {2}


class TestSelectionInput:

    def test_applies_to_extended_selection(self, store, week_of_rates, orchestrator, context):
        layout = GridLayout.from_range([1], [1, 2], D, D + timedelta(days=4))
        selection = extend_selection(layout, CellKey(1, 1, D), CellKey(1, 1, D + timedelta(days=2)))
        result = orchestrator.apply(selection, BulkOperation.set(175), context)
        assert result.succeeded == 3
        assert _amounts(store) == [Decimal("175.00")] * 3 + [Decimal("100.00")] * 2
