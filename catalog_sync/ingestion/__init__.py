"""
Ingestion layer for the catalog sync engine.

Provides the governed transport and adapters for the two remote services,
plus the normalizer that maps their payloads to canonical records:
- Academy service (modules, exams, exam relations)
- Labs service (machine profiles, machine tags)
"""
from .academy_adapter import AcademyAdapter
from .base_adapter import BaseServiceAdapter, SourceHealth
from .http_client import (
    ACADEMY,
    LABS,
    FetchResult,
    HttpClient,
    Outcome,
    RateGovernor,
    RetryConfig,
)
from .labs_adapter import LabsAdapter
from .normalizer import NormalizationError

__all__ = [
    "ACADEMY",
    "LABS",
    "AcademyAdapter",
    "BaseServiceAdapter",
    "FetchResult",
    "HttpClient",
    "LabsAdapter",
    "NormalizationError",
    "Outcome",
    "RateGovernor",
    "RetryConfig",
    "SourceHealth",
]
