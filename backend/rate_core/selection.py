"""
rate_core/selection.py

Grid selection - immutable selections over the displayed rate grid.

A cell is addressed by (rate plan id, room type id, date). "Between" for a
range selection is defined by the currently displayed order of rate plans and
room types, so reordering the grid changes what a range covers. Every
operation returns a new Selection; nothing here holds mutable state.
"""
from typing import Callable, Dict, Iterable, Iterator, Optional, Sequence, Tuple
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from rate_core.errors import ValidationError
from rate_core.models import RoomRate


@dataclass(frozen=True, order=True)
class CellKey:
    rate_plan_id: int
    room_type_id: int
    date: date

    def to_token(self) -> str:
        """
        Example:
            >>> CellKey(1, 2, date(2024, 3, 1)).to_token()
            '1-2-2024-03-01'
        """
        return f"{self.rate_plan_id}-{self.room_type_id}-{self.date.isoformat()}"

    @classmethod
    def from_token(cls, token: str) -> "CellKey":
        try:
            rate_plan_id, room_type_id, iso_date = token.split("-", 2)
            return cls(int(rate_plan_id), int(room_type_id), date.fromisoformat(iso_date))
        except ValueError:
            raise ValidationError(f"Invalid cell key: {token!r}")


@dataclass(frozen=True)
class GridLayout:
    """
    What the grid currently displays, in display order.

    Attributes:
        rate_plan_ids: Rate plans top to bottom
        room_type_ids: Room types within each rate plan
        dates: Visible date columns, ascending
    """

    rate_plan_ids: Tuple[int, ...]
    room_type_ids: Tuple[int, ...]
    dates: Tuple[date, ...]

    @classmethod
    def from_range(cls, rate_plan_ids: Sequence[int], room_type_ids: Sequence[int],
                   start: date, end: date) -> "GridLayout":
        days = (end - start).days
        return cls(tuple(rate_plan_ids), tuple(room_type_ids),
                   tuple(start + timedelta(days=i) for i in range(days + 1)))

    def __contains__(self, key: CellKey) -> bool:
        return (key.rate_plan_id in self.rate_plan_ids
                and key.room_type_id in self.room_type_ids
                and key.date in self.dates)

    def cells(self) -> Iterator[CellKey]:
        """All cells in display order: rate plan, then room type, then date."""
        for rate_plan_id in self.rate_plan_ids:
            for room_type_id in self.room_type_ids:
                for day in self.dates:
                    yield CellKey(rate_plan_id, room_type_id, day)

    def with_rate_plan_order(self, rate_plan_ids: Sequence[int]) -> "GridLayout":
        _check_permutation(self.rate_plan_ids, rate_plan_ids, "rate plan")
        return GridLayout(tuple(rate_plan_ids), self.room_type_ids, self.dates)

    def with_room_type_order(self, room_type_ids: Sequence[int]) -> "GridLayout":
        _check_permutation(self.room_type_ids, room_type_ids, "room type")
        return GridLayout(self.rate_plan_ids, tuple(room_type_ids), self.dates)


def _check_permutation(current: Sequence[int], proposed: Sequence[int], what: str) -> None:
    if sorted(current) != sorted(proposed):
        raise ValidationError(f"New {what} order must contain exactly the displayed {what}s")


@dataclass(frozen=True)
class Selection:
    """Ordered set of selected cell keys plus the range anchor."""

    keys: Tuple[CellKey, ...] = ()
    anchor: Optional[CellKey] = None

    def __iter__(self) -> Iterator[CellKey]:
        return iter(self.keys)

    def __len__(self) -> int:
        return len(self.keys)

    def __contains__(self, key: CellKey) -> bool:
        return key in self.keys

    def tokens(self):
        return [k.to_token() for k in self.keys]


def _require_visible(layout: GridLayout, key: CellKey) -> None:
    if key not in layout:
        raise ValidationError(f"Cell {key.to_token()} is not in the displayed grid")


def start_selection(key: CellKey) -> Selection:
    return Selection(keys=(key,), anchor=key)


def extend_selection(layout: GridLayout, anchor: CellKey, target: CellKey) -> Selection:
    """
    Rectangular hull of anchor and target in display order.

    Covers the rate plans and room types between the two keys' displayed
    positions and every visible date between their dates (inclusive).
    """
    _require_visible(layout, anchor)
    _require_visible(layout, target)

    plan_lo, plan_hi = sorted((layout.rate_plan_ids.index(anchor.rate_plan_id),
                               layout.rate_plan_ids.index(target.rate_plan_id)))
    room_lo, room_hi = sorted((layout.room_type_ids.index(anchor.room_type_id),
                               layout.room_type_ids.index(target.room_type_id)))
    first, last = min(anchor.date, target.date), max(anchor.date, target.date)

    keys = tuple(
        CellKey(rate_plan_id, room_type_id, day)
        for rate_plan_id in layout.rate_plan_ids[plan_lo:plan_hi + 1]
        for room_type_id in layout.room_type_ids[room_lo:room_hi + 1]
        for day in layout.dates
        if first <= day <= last
    )
    return Selection(keys=keys, anchor=anchor)


def toggle_cell(layout: GridLayout, selection: Selection, key: CellKey) -> Selection:
    """Add or remove one key. The result need not be rectangular."""
    if key in selection.keys:
        remaining = tuple(k for k in selection.keys if k != key)
        anchor = selection.anchor if selection.anchor != key else None
        return Selection(keys=remaining, anchor=anchor)
    _require_visible(layout, key)
    return Selection(keys=selection.keys + (key,), anchor=key)


def clear_selection() -> Selection:
    return Selection()


def select_all(layout: GridLayout) -> Selection:
    keys = tuple(layout.cells())
    return Selection(keys=keys, anchor=keys[0] if keys else None)


def select_row(layout: GridLayout, rate_plan_id: int, room_type_id: int) -> Selection:
    """Every visible date of one (rate plan, room type) row."""
    if not layout.dates:
        return Selection()
    return extend_selection(
        layout,
        CellKey(rate_plan_id, room_type_id, layout.dates[0]),
        CellKey(rate_plan_id, room_type_id, layout.dates[-1]),
    )


# ============== Clipboard ==============

@dataclass(frozen=True)
class CellValues:
    """Copyable state of one cell."""

    rate_amount: Optional[Decimal] = None
    availability_count: Optional[int] = None
    stop_sell: Optional[bool] = None

    @classmethod
    def from_rate(cls, rate: Optional[RoomRate]) -> "CellValues":
        if rate is None:
            return cls()
        return cls(rate.rate_amount, rate.availability_count, rate.stop_sell)


@dataclass(frozen=True)
class Clipboard:
    """Values of the priced cells of a selection, in selection order. Empty cells are not copied."""

    source_keys: Tuple[CellKey, ...] = ()
    entries: Tuple[CellValues, ...] = ()

    @classmethod
    def copy(cls, selection: Iterable[CellKey],
             lookup: Callable[[CellKey], Optional[CellValues]]) -> "Clipboard":
        keys, values = [], []
        for key in selection:
            value = lookup(key)
            if value is None or value.rate_amount is None:
                continue
            keys.append(key)
            values.append(value)
        return cls(source_keys=tuple(keys), entries=tuple(values))

    @classmethod
    def from_mapping(cls, selection: Iterable[CellKey],
                     values: Dict[CellKey, CellValues]) -> "Clipboard":
        return cls.copy(selection, values.get)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def value_for(self, index: int) -> CellValues:
        """Positional source for the index-th target, cycling: entries[index % n]."""
        if not self.entries:
            raise ValidationError("Clipboard is empty")
        return self.entries[index % len(self.entries)]


__all__ = [
    "CellKey",
    "GridLayout",
    "Selection",
    "start_selection",
    "extend_selection",
    "toggle_cell",
    "clear_selection",
    "select_all",
    "select_row",
    "CellValues",
    "Clipboard",
]
