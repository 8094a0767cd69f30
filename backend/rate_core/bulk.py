"""
rate_core/bulk.py

Bulk mutation orchestrator - applies one operation across a grid selection.

Each target cell is one upsert plus its audit record, run back to back by
the same worker. Cells are independent: a failure is recorded against its
cell and the batch carries on. Cancellation is cooperative and checked
before every cell; cells already written stay written.
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
import logging
import threading

from rate_core.adjustments import apply_adjustment, clamp_non_negative
from rate_core.errors import AuditWriteError, NotFoundError, RateEngineError, ValidationError
from rate_core.models import (
    Actor, AdjustmentType, AuditAction, AuditEntityType, BulkResult, CellError,
    EntityStatus, RoomRate, to_money,
)
from rate_core.mutations import RateMutationService, error_kind
from rate_core.selection import CellKey, CellValues, Clipboard, Selection
from rate_core.snapshots import to_snapshot

logger = logging.getLogger(__name__)


class BulkOperationType(str, Enum):
    SET = "set"
    INCREASE_PERCENT = "increase_percent"
    DECREASE_PERCENT = "decrease_percent"
    INCREASE_FIXED = "increase_fixed"
    DECREASE_FIXED = "decrease_fixed"
    COPY_FROM = "copy_from"


_ADJUSTMENTS = {
    BulkOperationType.SET: AdjustmentType.SET_RATE,
    BulkOperationType.INCREASE_PERCENT: AdjustmentType.PERCENTAGE_INCREASE,
    BulkOperationType.DECREASE_PERCENT: AdjustmentType.PERCENTAGE_DECREASE,
    BulkOperationType.INCREASE_FIXED: AdjustmentType.FIXED_INCREASE,
    BulkOperationType.DECREASE_FIXED: AdjustmentType.FIXED_DECREASE,
}


class AuditMode(str, Enum):
    PER_CELL = "per_cell"
    BATCH = "batch"


@dataclass(frozen=True)
class BulkOperation:
    """
    One bulk edit.

    Arithmetic operations start from the cell's current base amount (0 when
    the cell has none) and clamp at 0. set and copy_from are idempotent;
    the delta operations compound when re-applied.

    Example:
        >>> BulkOperation.increase_percent(10).new_amount(Decimal("100"))
        Decimal('110.00')
    """

    operation: BulkOperationType
    value: Optional[Decimal] = None
    sources: Tuple[CellValues, ...] = ()
    availability_count: Optional[int] = None
    stop_sell: Optional[bool] = None

    @classmethod
    def set(cls, value, **companions) -> "BulkOperation":
        return cls(BulkOperationType.SET, _money_or_none(value), **companions)

    @classmethod
    def increase_percent(cls, value, **companions) -> "BulkOperation":
        return cls(BulkOperationType.INCREASE_PERCENT, _money_or_none(value), **companions)

    @classmethod
    def decrease_percent(cls, value, **companions) -> "BulkOperation":
        return cls(BulkOperationType.DECREASE_PERCENT, _money_or_none(value), **companions)

    @classmethod
    def increase_fixed(cls, value, **companions) -> "BulkOperation":
        return cls(BulkOperationType.INCREASE_FIXED, _money_or_none(value), **companions)

    @classmethod
    def decrease_fixed(cls, value, **companions) -> "BulkOperation":
        return cls(BulkOperationType.DECREASE_FIXED, _money_or_none(value), **companions)

    @classmethod
    def copy_from(cls, sources: Union[Clipboard, Sequence[CellValues]], **companions) -> "BulkOperation":
        entries = sources.entries if isinstance(sources, Clipboard) else tuple(sources)
        entries = tuple(e for e in entries if e.rate_amount is not None)
        return cls(BulkOperationType.COPY_FROM, sources=entries, **companions)

    @property
    def is_copy(self) -> bool:
        return self.operation == BulkOperationType.COPY_FROM

    def validate(self) -> None:
        if self.is_copy:
            if not self.sources:
                raise ValidationError("No cells copied")
            return
        has_companion = self.availability_count is not None or self.stop_sell is not None
        if self.value is None and not has_companion:
            raise ValidationError("A value, availability count or stop sell flag is required")
        if self.value is not None and self.value < 0:
            raise ValidationError("Bulk value must be >= 0")
        if self.availability_count is not None and self.availability_count < 0:
            raise ValidationError("availability_count must be >= 0")

    def source_for(self, index: int) -> CellValues:
        """Positional copy source, cycling when there are fewer sources than targets."""
        return self.sources[index % len(self.sources)]

    def new_amount(self, current: Optional[Decimal]) -> Decimal:
        base = current if current is not None else Decimal("0")
        if self.value is None:
            return to_money(base)
        return clamp_non_negative(apply_adjustment(base, _ADJUSTMENTS[self.operation], self.value))

    def payload_for(self, index: int, current: Optional[Decimal]) -> Dict[str, Any]:
        if self.is_copy:
            source = self.source_for(index)
            payload = {"rate_amount": source.rate_amount}
            if source.availability_count is not None:
                payload["availability_count"] = source.availability_count
            if source.stop_sell is not None:
                payload["stop_sell"] = source.stop_sell
        else:
            payload = {"rate_amount": self.new_amount(current)}
        if self.availability_count is not None:
            payload["availability_count"] = self.availability_count
        if self.stop_sell is not None:
            payload["stop_sell"] = self.stop_sell
        return payload


def _money_or_none(value) -> Optional[Decimal]:
    return to_money(value) if value is not None else None


class CancellationToken:
    """Cooperative cancellation shared between a caller and a running batch."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class BulkContext:
    """
    Per-invocation state of a bulk run. Nothing about a running batch is
    held on the orchestrator itself.

    Attributes:
        max_workers: 1 runs cells sequentially in selection order
        use_versioning: compare-and-swap each write on the version read for it
        audit_mode: PER_CELL writes one record per cell, BATCH one BULK_UPDATE record
    """

    actor: Actor
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    audit_mode: AuditMode = AuditMode.PER_CELL
    max_workers: int = 1
    use_versioning: bool = False
    max_cells: int = 5000


@dataclass
class _CellOutcome:
    key: CellKey
    status: str
    error: Optional[CellError] = None
    previous: Optional[RoomRate] = None
    current: Optional[RoomRate] = None
    audit_id: Optional[int] = None


class BulkMutationOrchestrator:
    """
    Applies a BulkOperation to every key of a selection.

    Example:
        >>> orchestrator = BulkMutationOrchestrator(service)
        >>> result = orchestrator.apply(selection, BulkOperation.set(150), BulkContext(actor))
        >>> result.message
        'Updated 5 of 5 cells'
    """

    def __init__(self, service: RateMutationService):
        self.service = service
        self.store = service.store

    # ---------- helpers ----------

    def _codes(self, key: CellKey) -> Tuple[str, str]:
        plan = self.store.rate_plans.get(key.rate_plan_id)
        if plan is None:
            raise NotFoundError(f"Unknown rate plan {key.rate_plan_id}")
        room_type = self.store.room_types.get(key.room_type_id)
        if room_type is None:
            raise NotFoundError(f"Unknown room type {key.room_type_id}")
        return plan.code, room_type.code

    def current_rate(self, key: CellKey) -> Optional[RoomRate]:
        plan_code, room_type_code = self._codes(key)
        rate = self.store.room_rates.find_by_key(plan_code, room_type_code, key.date)
        if rate is None or rate.status != EntityStatus.ACTIVE:
            return None
        return rate

    def capture(self, keys: Iterable[CellKey]) -> Clipboard:
        """Copy the current values of the given cells. Cells without an active rate are left out."""
        def lookup(key: CellKey) -> Optional[CellValues]:
            try:
                rate = self.current_rate(key)
            except NotFoundError:
                return None
            return CellValues.from_rate(rate) if rate is not None else None

        return Clipboard.copy(keys, lookup)

    def paste(self, clipboard: Clipboard, targets: Union[Selection, Iterable[CellKey]],
              context: BulkContext, **companions) -> BulkResult:
        """Apply a copy_from built from the clipboard to the targets."""
        return self.apply(targets, BulkOperation.copy_from(clipboard, **companions), context)

    # ---------- per cell ----------

    def _apply_cell(self, index: int, key: CellKey, operation: BulkOperation,
                    context: BulkContext) -> _CellOutcome:
        if context.cancel_token.cancelled:
            return _CellOutcome(key, "skipped")
        token = key.to_token()
        try:
            plan_code, room_type_code = self._codes(key)
            existing = self.store.room_rates.find_by_key(plan_code, room_type_code, key.date)
            active = existing if existing is not None and existing.status == EntityStatus.ACTIVE else None
            payload = operation.payload_for(index, active.rate_amount if active else None)
            payload.update(rate_plan_code=plan_code, room_type_code=room_type_code, rate_date=key.date)
            expected = existing.version if (context.use_versioning and existing is not None) else None
            previous, current, record = self.service.upsert_room_rate(
                payload,
                context.actor,
                expected_version=expected,
                action=AuditAction.COPY if operation.is_copy else None,
                audit=context.audit_mode == AuditMode.PER_CELL,
            )
        except RateEngineError as e:
            logger.warning(f"Bulk {operation.operation.value} failed for {token}: {e.message}")
            return _CellOutcome(key, "failed", CellError(token, e.message, error_kind(e)))
        except Exception as e:
            # store read failures are isolated per cell like write failures
            logger.warning(f"Bulk {operation.operation.value} failed for {token}: {e}")
            return _CellOutcome(key, "failed", CellError(token, str(e), "upstream"))
        return _CellOutcome(key, "ok", previous=previous, current=current,
                            audit_id=record.id if record else None)

    # ---------- batch ----------

    def apply(self, selection: Union[Selection, Iterable[CellKey]], operation: BulkOperation,
              context: BulkContext) -> BulkResult:
        """
        Apply the operation to every selected cell.

        Raises:
            ValidationError: empty selection or malformed operation, before any write.
        """
        keys: List[CellKey] = list(dict.fromkeys(selection))
        if not keys:
            raise ValidationError("No cells selected")
        if len(keys) > context.max_cells:
            raise ValidationError(f"Selection of {len(keys)} cells exceeds the limit of {context.max_cells}")
        operation.validate()

        logger.info(f"Bulk {operation.operation.value} started on {len(keys)} cells by {context.actor.label}")
        if context.max_workers <= 1:
            outcomes = [self._apply_cell(i, key, operation, context) for i, key in enumerate(keys)]
        else:
            with ThreadPoolExecutor(max_workers=context.max_workers, thread_name_prefix="bulk") as pool:
                futures = [pool.submit(self._apply_cell, i, key, operation, context)
                           for i, key in enumerate(keys)]
                outcomes = [f.result() for f in futures]

        result = self._aggregate(outcomes, operation, context)
        result.cancelled = context.cancel_token.cancelled
        if result.cancelled:
            logger.warning(f"Bulk {operation.operation.value} cancelled: {result.skipped} cells skipped")
        logger.info(f"Bulk {operation.operation.value}: {result.message}, {result.failed} failed")
        return result

    def _aggregate(self, outcomes: List[_CellOutcome], operation: BulkOperation,
                   context: BulkContext) -> BulkResult:
        result = BulkResult()
        written = []
        for outcome in outcomes:
            if outcome.status == "ok":
                written.append(outcome)
                if outcome.audit_id is not None:
                    result.audit_ids.append(outcome.audit_id)
            elif outcome.status == "failed":
                result.failed += 1
                result.errors.append(outcome.error)
            else:
                result.skipped += 1

        if context.audit_mode == AuditMode.BATCH and written:
            previous = {o.key.to_token(): to_snapshot(AuditEntityType.ROOM_RATE, o.previous) for o in written}
            current = {o.key.to_token(): to_snapshot(AuditEntityType.ROOM_RATE, o.current) for o in written}
            try:
                record = self.service.record_bulk(
                    previous, current, context.actor,
                    description=f"Bulk {operation.operation.value} on {len(written)} cells",
                    metadata={"operation": operation.operation.value},
                )
            except AuditWriteError as e:
                # written without a record: none of them count as succeeded
                for o in written:
                    result.failed += 1
                    result.errors.append(CellError(o.key.to_token(), e.message, "audit_write"))
                return result
            result.audit_ids.append(record.id)

        result.succeeded = len(written)
        return result


__all__ = [
    "BulkOperationType",
    "BulkOperation",
    "AuditMode",
    "CancellationToken",
    "BulkContext",
    "BulkMutationOrchestrator",
]
