"""
Observability layer for the catalog sync engine.

This module provides run statistics, integrity checks, and reporting
for sync runs.

Main exports:
- RunStatistics: Tracks counters and timing for a sync run
- IntegrityChecker: Runs referential-integrity checks
- IntegrityCheckResult: Result of an integrity check
- RunReporter: Generates Markdown reports
"""
from .integrity_checks import IntegrityChecker, IntegrityCheckResult
from .metrics import EntityCounters, RunStatistics
from .reporter import RunReporter

__all__ = [
    "EntityCounters",
    "RunStatistics",
    "IntegrityChecker",
    "IntegrityCheckResult",
    "RunReporter",
]
