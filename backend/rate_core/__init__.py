"""
rate_core - rate resolution and bulk-editing engine

Pure engine layer, independent of web and SQL:
- models / errors: pricing primitives, audit record, error taxonomy
- resolver: layers base rate, tier, override, rule and package components
- matrix: date x room type x rate plan x guest type builds
- selection: immutable grid selections and the clipboard
- bulk: bulk mutations with per-cell failure isolation and cancellation
- audit: diff, query, summary and rollback of change records
- mutations: audited single-entity writes
- store / memory_store: repository interface and an in-memory implementation

Usage:
    >>> from rate_core import InMemoryPricingStore, RateMutationService, MatrixBuilder
    >>> store = InMemoryPricingStore()
    >>> service = RateMutationService(store)
    >>> matrix = MatrixBuilder(store).build(start, end, ["DLX"], ["BAR"])
"""

# Models and errors
from rate_core.models import (
    Actor,
    AdjustmentType,
    AuditAction,
    AuditEntityType,
    BulkResult,
    CellError,
    ComponentType,
    EntityStatus,
    GuestType,
    Occupancy,
    Page,
    PricingRule,
    PricingRuleType,
    RateAuditRecord,
    RateOverride,
    RatePackageComponent,
    RatePlan,
    RateTier,
    RoomRate,
    RoomType,
    SYSTEM_ACTOR,
)
from rate_core.errors import (
    AuditWriteError,
    NoBaseRateError,
    NotFoundError,
    RateEngineError,
    UpstreamWriteError,
    ValidationError,
    VersionConflictError,
)

# Storage
from rate_core.store import PricingStore
from rate_core.memory_store import InMemoryPricingStore

# Resolution
from rate_core.resolver import PricingContext, RateMatrixCell, RateResolver, ResolveOptions, StayQuote
from rate_core.matrix import MatrixBuilder, MatrixOptions, RateMatrixResponse

# Editing
from rate_core.selection import (
    CellKey,
    CellValues,
    Clipboard,
    GridLayout,
    Selection,
    clear_selection,
    extend_selection,
    select_all,
    select_row,
    start_selection,
    toggle_cell,
)
from rate_core.audit import AuditFilters, AuditRecorder, FieldChange, compute_diff
from rate_core.mutations import RateMutationService
from rate_core.bulk import (
    AuditMode,
    BulkContext,
    BulkMutationOrchestrator,
    BulkOperation,
    BulkOperationType,
    CancellationToken,
)

__version__ = "1.0.0"
