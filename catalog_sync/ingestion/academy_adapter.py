"""
Academy catalog service adapter: modules, exams, and exam relations.
"""
from typing import Optional

from .base_adapter import BaseServiceAdapter
from .http_client import ACADEMY, FetchResult, HttpClient

MODULE_PATH = "api/v2/modules/{module_id}"
EXAMS_PATH = "api/v2/external/public/labs/exams"
EXAM_MODULES_PATH = "api/v2/external/public/labs/relations/exams/{exam_id}"


class AcademyAdapter(BaseServiceAdapter):
    """Per-entity lookups against the academy service (session cookie auth)."""

    def __init__(self, client: HttpClient, cookie: Optional[str]):
        super().__init__(client, ACADEMY, cookie)

    def fetch_module(self, module_id: int) -> FetchResult:
        return self._get(MODULE_PATH.format(module_id=module_id), "data", dict)

    def fetch_exams(self) -> FetchResult:
        """Fetch the full, unpaginated exam list."""
        return self._get(EXAMS_PATH, "data", list)

    def fetch_exam_modules(self, exam_id: int) -> FetchResult:
        """Fetch the modules related to one exam."""
        return self._get(EXAM_MODULES_PATH.format(exam_id=exam_id), "data.modules", list)
