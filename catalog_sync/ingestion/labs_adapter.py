"""
Labs catalog service adapter: machine profiles and machine tags.
"""
from typing import Optional, Union

from .base_adapter import BaseServiceAdapter
from .http_client import LABS, FetchResult, HttpClient

MACHINE_PATH = "api/v4/machine/profile/{key}"
MACHINE_TAGS_PATH = "api/v4/machine/tags/{machine_id}"


class LabsAdapter(BaseServiceAdapter):
    """Per-entity lookups against the labs service (bearer token auth)."""

    def __init__(self, client: HttpClient, bearer: Optional[str]):
        super().__init__(client, LABS, bearer)

    def fetch_machine(self, key: Union[int, str]) -> FetchResult:
        """Fetch a machine profile by name or numeric id."""
        return self._get(MACHINE_PATH.format(key=key), "info", dict)

    def fetch_machine_tags(self, machine_id: int) -> FetchResult:
        """Fetch a machine's flat {id, name, category} tag list."""
        return self._get(MACHINE_TAGS_PATH.format(machine_id=machine_id), "info", list)
