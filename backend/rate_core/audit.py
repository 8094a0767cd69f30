"""
rate_core/audit.py

Audit recorder - append-only change records with structured diffs.

Every mutating operation writes exactly one record carrying the previous and
new snapshots. Records are never edited; rollback appends a new record.
"""
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field
from datetime import date, datetime
import logging
import re

from rate_core.errors import AuditWriteError, NotFoundError
from rate_core.models import (
    Actor, AuditAction, AuditEntityType, AUDIT_ACTION_LABELS, ENTITY_TYPE_LABELS,
    Page, PricingRule, RateAuditRecord, RateOverride, RatePackageComponent,
    RatePlan, RateTier, RoomRate,
)
from rate_core.snapshots import normalize, schema_version, to_snapshot
from rate_core.store import PricingStore

logger = logging.getLogger(__name__)

ADDED = "added"
REMOVED = "removed"
MODIFIED = "modified"

RECENT_LIMIT = 10

_CAMEL_BOUNDARY = re.compile(r"([A-Z])")


# ============== Diff ==============

def field_label(name: str) -> str:
    """
    Display label for a snapshot key.

    Example:
        >>> field_label("rateAmount")
        'Rate Amount'
        >>> field_label("closed_for_arrival")
        'Closed for arrival'
    """
    spaced = _CAMEL_BOUNDARY.sub(r" \1", name).replace("_", " ").strip()
    return spaced[:1].upper() + spaced[1:]


@dataclass(frozen=True)
class FieldChange:
    field: str
    field_label: str
    previous_value: Any
    new_value: Any
    change_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "fieldLabel": self.field_label,
            "previousValue": self.previous_value,
            "newValue": self.new_value,
            "changeType": self.change_type,
        }


def compute_diff(previous: Optional[Dict[str, Any]],
                 new: Optional[Dict[str, Any]]) -> List[FieldChange]:
    """
    Structural diff of two snapshots.

    Keys are taken from the union of both sides (previous first). A key
    absent on one side is added/removed even when the other side holds None;
    a key present on both sides is modified when the values differ by
    structural equality. Unchanged keys are omitted.
    """
    previous = previous or {}
    new = new or {}
    keys = list(previous) + [k for k in new if k not in previous]

    changes = []
    for key in keys:
        if key not in previous:
            changes.append(FieldChange(key, field_label(key), None, new[key], ADDED))
        elif key not in new:
            changes.append(FieldChange(key, field_label(key), previous[key], None, REMOVED))
        elif normalize(previous[key]) != normalize(new[key]):
            changes.append(FieldChange(key, field_label(key), previous[key], new[key], MODIFIED))
    return changes


def entity_display_name(entity: Any) -> Optional[str]:
    """Human-readable name stored on the record for list views and search."""
    if isinstance(entity, RoomRate):
        return f"{entity.rate_plan_code}/{entity.room_type_code} {entity.rate_date.isoformat()}"
    if isinstance(entity, RatePlan):
        return entity.name or entity.code
    if isinstance(entity, PricingRule):
        return entity.rule_name
    if isinstance(entity, RateTier):
        upper = entity.max_nights if entity.max_nights is not None else "+"
        return f"Tier {entity.min_nights}-{upper} nights"
    if isinstance(entity, RateOverride):
        return f"Override {entity.override_date.isoformat()}"
    if isinstance(entity, RatePackageComponent):
        return entity.component_name
    return None


# ============== Query ==============

@dataclass
class AuditFilters:
    """
    Audit query filters. None means "any".

    Attributes:
        actor: actor id (int) or a case-insensitive fragment of the actor name
        start / end: inclusive bounds on the record timestamp
        free_text: matched against entity name, description, actor and fields
    """

    entity_type: Optional[AuditEntityType] = None
    entity_id: Optional[int] = None
    action: Optional[AuditAction] = None
    actor: Optional[Union[int, str]] = None
    start: Optional[Union[date, datetime]] = None
    end: Optional[Union[date, datetime]] = None
    free_text: Optional[str] = None


def _in_window(ts: datetime, start, end) -> bool:
    if start is not None:
        if isinstance(start, datetime):
            if ts < start:
                return False
        elif ts.date() < start:
            return False
    if end is not None:
        if isinstance(end, datetime):
            if ts > end:
                return False
        elif ts.date() > end:
            return False
    return True


def matches_filters(record: RateAuditRecord, filters: AuditFilters) -> bool:
    if filters.entity_type is not None and record.entity_type != AuditEntityType(filters.entity_type):
        return False
    if filters.entity_id is not None and record.entity_id != filters.entity_id:
        return False
    if filters.action is not None and record.action != AuditAction(filters.action):
        return False
    if filters.actor is not None:
        if isinstance(filters.actor, int):
            if record.actor_id != filters.actor:
                return False
        elif filters.actor.lower() not in (record.actor_name or "").lower():
            return False
    if not _in_window(record.timestamp, filters.start, filters.end):
        return False
    if filters.free_text:
        needle = filters.free_text.lower()
        haystack = " ".join(str(part) for part in (
            record.entity_name, record.change_description, record.actor_name,
            record.entity_type.value, record.action.value, " ".join(record.changed_fields),
        ) if part)
        if needle not in haystack.lower():
            return False
    return True


@dataclass
class AuditSummary:
    total_changes: int = 0
    by_action: Dict[str, int] = field(default_factory=dict)
    by_actor: Dict[str, int] = field(default_factory=dict)
    by_entity: Dict[str, int] = field(default_factory=dict)
    recent: List[RateAuditRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalChanges": self.total_changes,
            "byAction": dict(self.by_action),
            "byUser": dict(self.by_actor),
            "byEntity": dict(self.by_entity),
            "recentChanges": [r.to_dict() for r in self.recent],
        }


# ============== Recorder ==============

class AuditRecorder:
    """
    Writes and reads rate audit records through the store's audit repository.

    Rollback is delegated to the bound writer (the mutation service), so the
    restore goes through the normal write path and produces its own record.

    Example:
        >>> recorder = AuditRecorder(store)
        >>> rec = recorder.record(AuditEntityType.ROOM_RATE, 7, AuditAction.UPDATE,
        ...                       {"rateAmount": 100}, {"rateAmount": 120}, actor)
        >>> rec.changed_fields
        ['rateAmount']
    """

    def __init__(self, store: PricingStore):
        self.store = store
        self._writer = None

    def bind_writer(self, writer) -> None:
        self._writer = writer

    def describe(self, entity_type: AuditEntityType, action: AuditAction,
                 changes: List[FieldChange]) -> str:
        label = f"{AUDIT_ACTION_LABELS[action]} {ENTITY_TYPE_LABELS[entity_type]}"
        if changes and action not in (AuditAction.CREATE, AuditAction.DELETE):
            return f"{label}: {', '.join(c.field_label for c in changes)}"
        return label

    def record(
        self,
        entity_type: AuditEntityType,
        entity_id: Optional[int],
        action: AuditAction,
        previous: Any,
        new: Any,
        actor: Actor,
        entity_name: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RateAuditRecord:
        """
        Append one record. previous/new may be entities or plain dicts.

        Raises:
            AuditWriteError: the audit repository rejected the append.
        """
        entity_type = AuditEntityType(entity_type)
        action = AuditAction(action)
        previous_snapshot = to_snapshot(entity_type, previous)
        new_snapshot = to_snapshot(entity_type, new)
        changes = compute_diff(previous_snapshot, new_snapshot)

        meta = {"schemaVersion": schema_version(entity_type)}
        meta.update(metadata or {})

        payload = {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "actor_id": actor.id,
            "actor_name": actor.label,
            "previous_value": previous_snapshot,
            "new_value": new_snapshot,
            "changed_fields": [c.field for c in changes],
            "entity_name": entity_name or entity_display_name(new if new is not None else previous),
            "change_description": description or self.describe(entity_type, action, changes),
            "metadata": meta,
        }
        try:
            entry = self.store.audits.append(payload)
        except Exception as e:
            raise AuditWriteError(entity_type, entity_id, e) from e

        logger.info(f"Audit {entry.id}: {action.value} {entity_type.value}:{entity_id} by {actor.label}")
        return entry

    # ---------- reads ----------

    def get(self, audit_id: int) -> RateAuditRecord:
        record = self.store.audits.get(audit_id)
        if record is None:
            raise NotFoundError(f"Audit record {audit_id} not found")
        return record

    def query(self, filters: Optional[AuditFilters] = None, page: int = 0,
              size: int = 20) -> Page[RateAuditRecord]:
        """Filtered records, newest first."""
        filters = filters or AuditFilters()
        records = [r for r in self.store.audits.list_all() if matches_filters(r, filters)]
        records.sort(key=lambda r: (r.timestamp, r.id), reverse=True)
        return Page.slice(records, page, size)

    def history(self, entity_type: AuditEntityType, entity_id: int, page: int = 0,
                size: int = 20) -> Page[RateAuditRecord]:
        return self.query(AuditFilters(entity_type=entity_type, entity_id=entity_id), page, size)

    def compare(self, audit_id: int) -> List[FieldChange]:
        record = self.get(audit_id)
        return compute_diff(record.previous_value, record.new_value)

    def summarize(self, start: Optional[Union[date, datetime]] = None,
                  end: Optional[Union[date, datetime]] = None) -> AuditSummary:
        records = [r for r in self.store.audits.list_all() if _in_window(r.timestamp, start, end)]
        summary = AuditSummary(total_changes=len(records))
        for r in records:
            summary.by_action[r.action.value] = summary.by_action.get(r.action.value, 0) + 1
            summary.by_actor[r.actor_name] = summary.by_actor.get(r.actor_name, 0) + 1
            summary.by_entity[r.entity_type.value] = summary.by_entity.get(r.entity_type.value, 0) + 1
        summary.recent = sorted(records, key=lambda r: (r.timestamp, r.id), reverse=True)[:RECENT_LIMIT]
        return summary

    # ---------- rollback ----------

    def rollback(self, audit_id: int, actor: Actor) -> RateAuditRecord:
        """
        Restore the previous value of a record as a new write.

        The original record is left untouched; the returned record is new.
        """
        if self._writer is None:
            raise RuntimeError("AuditRecorder has no writer bound for rollback")
        return self._writer.rollback(self.get(audit_id), actor)


__all__ = [
    "ADDED",
    "REMOVED",
    "MODIFIED",
    "field_label",
    "FieldChange",
    "compute_diff",
    "entity_display_name",
    "AuditFilters",
    "matches_filters",
    "AuditSummary",
    "AuditRecorder",
]
