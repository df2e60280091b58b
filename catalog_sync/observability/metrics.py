"""
Run statistics for sync runs.

This module provides RunStatistics, a dataclass that tracks the outcome of a
single sweep:
- Per-entity processed / skipped / error / rejected counters
- Wall-clock start and end timestamps
- Cancellation flag for partial runs
- A structured issue log (one entry per failed item)
- Source health indicators

Design decisions:
- Single statistics object per run, mutated only by the orchestrator
- Counters only ever increase
- Serializable to_dict() for storage in the sync_runs table
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

ENTITY_TYPES = ("module", "unit", "machine", "exam", "vulnerability", "link")

# Issues kept in the snapshot; counters stay exact beyond this
MAX_RECORDED_ISSUES = 500


@dataclass
class EntityCounters:
    """Monotonic counters for one entity type."""
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    rejected: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
            "rejected": self.rejected,
        }


@dataclass
class RunStatistics:
    """
    Statistics for a single sync run.

    Read by the caller after the run completes; designed to be serialized to
    JSON for storage in the sync_runs table.
    """
    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    cancelled: bool = False

    counters: Dict[str, EntityCounters] = field(
        default_factory=lambda: {entity: EntityCounters() for entity in ENTITY_TYPES}
    )

    # Structured per-item failures
    issues: List[Dict[str, Any]] = field(default_factory=list)

    # Key: source_id, Value: dict with health status
    source_health: Dict[str, Dict] = field(default_factory=dict)

    def _counter(self, entity: str) -> EntityCounters:
        if entity not in self.counters:
            self.counters[entity] = EntityCounters()
        return self.counters[entity]

    def record_processed(self, entity: str, count: int = 1):
        self._counter(entity).processed += count

    def record_skipped(self, entity: str):
        """
        Record an expected skip (e.g. a sparse id that returned not-found).

        Skips are not errors and are not added to the issue log.
        """
        self._counter(entity).skipped += 1

    def record_error(self, entity: str, error: str, context: Optional[Dict] = None):
        """
        Record a failed item.

        Args:
            entity: Entity type the failure belongs to
            error: Outcome or error message
            context: Optional dict with additional context (e.g., id, path)
        """
        self._counter(entity).errors += 1
        self._log_issue("error", entity, error, context)

    def record_rejection(self, entity: str, reason: str, context: Optional[Dict] = None):
        """Record a payload the normalizer refused to map."""
        self._counter(entity).rejected += 1
        self._log_issue("rejected", entity, reason, context)

    def _log_issue(self, kind: str, entity: str, message: str, context: Optional[Dict]):
        if len(self.issues) < MAX_RECORDED_ISSUES:
            self.issues.append({
                "type": kind,
                "entity": entity,
                "message": message,
                "context": context or {},
            })

    def finish(self, cancelled: bool = False):
        self.completed_at = datetime.utcnow()
        self.cancelled = self.cancelled or cancelled

    @property
    def status(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.completed_at is None:
            return "running"
        return "completed"

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def totals(self) -> EntityCounters:
        total = EntityCounters()
        for counters in self.counters.values():
            total.processed += counters.processed
            total.skipped += counters.skipped
            total.errors += counters.errors
            total.rejected += counters.rejected
        return total

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert statistics to dictionary for JSON serialization.

        Returns:
            Dictionary representation suitable for JSON storage
        """
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "status": self.status,
            "duration_seconds": self.duration_seconds,
            "counters": {k: v.to_dict() for k, v in self.counters.items()},
            "totals": self.totals().to_dict(),
            "source_health": self.source_health,
            "issues": self.issues,
        }
