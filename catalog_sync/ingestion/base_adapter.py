"""
Base adapter for the remote catalog services.

Defines the shared health bookkeeping and envelope unwrapping used by the
academy and labs adapters.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .http_client import FetchResult, HttpClient, Outcome

logger = logging.getLogger(__name__)


@dataclass
class SourceHealth:
    """Health status of a service adapter."""
    source_id: str
    is_healthy: bool
    last_fetch: Optional[datetime]
    records_fetched: int
    error_message: Optional[str] = None


class BaseServiceAdapter:
    """
    Endpoint wrapper over the governed transport for one remote service.

    Subclasses expose one method per endpoint; each returns a FetchResult
    whose payload (on success) is the unwrapped envelope content.
    """

    def __init__(self, client: HttpClient, service: str, credential: Optional[str]):
        self.client = client
        self.source_id = service
        self.credential = credential
        self._last_fetch: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._records_fetched: int = 0

    def _get(self, path: str, envelope: str, expected: type) -> FetchResult:
        self._last_fetch = datetime.utcnow()
        result = self.client.fetch_entity(self.source_id, path, self.credential)

        if result.ok:
            result = self._unwrap(result, path, envelope, expected)

        if result.ok:
            self._records_fetched += 1
        elif result.outcome is not Outcome.NOT_FOUND:
            self._last_error = f"{path}: {result.outcome.value} {result.detail or ''}".strip()

        return result

    @staticmethod
    def _unwrap(result: FetchResult, path: str, envelope: str, expected: type) -> FetchResult:
        value: Any = result.payload
        for key in envelope.split("."):
            if not isinstance(value, dict) or key not in value:
                return FetchResult.failure(
                    Outcome.MALFORMED_PAYLOAD,
                    detail=f"{path}: missing '{envelope}' envelope",
                    status_code=result.status_code,
                )
            value = value[key]

        if value is None and expected is list:
            value = []

        if not isinstance(value, expected):
            return FetchResult.failure(
                Outcome.MALFORMED_PAYLOAD,
                detail=f"{path}: '{envelope}' is {type(value).__name__}, expected {expected.__name__}",
                status_code=result.status_code,
            )

        return FetchResult.success(value, status_code=result.status_code or 200)

    def get_health(self) -> SourceHealth:
        """Return health status of this adapter."""
        return SourceHealth(
            source_id=self.source_id,
            is_healthy=self._last_error is None,
            last_fetch=self._last_fetch,
            records_fetched=self._records_fetched,
            error_message=self._last_error,
        )

    def health_dict(self) -> Dict[str, Any]:
        health = self.get_health()
        return {
            "healthy": health.is_healthy,
            "records": health.records_fetched,
            "error": health.error_message,
        }
