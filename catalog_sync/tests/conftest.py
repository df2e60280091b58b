"""
Shared pytest fixtures for catalog sync tests.

This module provides a temporary DuckDB catalog, an in-memory stand-in for
the HTTP client (fixture payloads keyed by service and path), and the
module 5 / machine 42 fixture catalog used across the sync tests.
"""
import copy
import tempfile
import threading
from pathlib import Path

import pytest

from catalog_sync.ingestion import ACADEMY, LABS, AcademyAdapter, FetchResult, LabsAdapter, Outcome
from catalog_sync.storage import CatalogGateway, Database
from catalog_sync.sync import SyncConfig, SyncOrchestrator


class FakeTransport:
    """
    Replaces HttpClient.fetch_entity with canned responses.

    Routes map (service, path) to either a JSON body (returned as OK) or a
    FetchResult (returned as-is). Unknown routes are NOT_FOUND.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.before_fetch = None

    def fetch_entity(self, service, path, credential):
        if self.before_fetch is not None:
            self.before_fetch(service, path)
        self.calls.append((service, path))

        value = self.routes.get((service, path))
        if value is None:
            return FetchResult.failure(Outcome.NOT_FOUND, status_code=404)
        if isinstance(value, FetchResult):
            return value
        return FetchResult.success(copy.deepcopy(value))

    def paths(self, service):
        return [path for s, path in self.calls if s == service]


def module_payload(module_id, difficulty="Medium", sections=None, machines=None, name=None):
    return {
        "data": {
            "id": module_id,
            "name": name or f"Module {module_id}",
            "description": f"Description of module {module_id}",
            "difficulty": {"id": 2, "title": difficulty},
            "url": {"absolute": f"https://academy.hackthebox.com/module/details/{module_id}"},
            "avatar": f"https://academy.hackthebox.com/storage/modules/{module_id}/logo.png",
            "sections": sections if sections is not None else [],
            "related": {"machines": machines if machines is not None else []},
        }
    }


def machine_payload(machine_id, name, os="Linux", difficulty="Easy"):
    return {
        "info": {
            "id": machine_id,
            "name": name,
            "os": os,
            "difficultyText": difficulty,
            "synopsis": f"{name} synopsis",
            "avatar": f"/storage/avatars/{machine_id}.png",
        }
    }


def tags_payload(*tags):
    return {"info": [{"id": tag_id, "name": name, "category": category} for tag_id, name, category in tags]}


def exams_payload(*exams):
    return {"data": [{"id": exam_id, "name": name, "logo": None} for exam_id, name in exams]}


def exam_modules_payload(*module_ids):
    return {"data": {"modules": [{"id": module_id} for module_id in module_ids]}}


def scenario_routes():
    """Module 5 (two units, related machine 42), exam 3 -> module 5."""
    return {
        (ACADEMY, "api/v2/modules/5"): module_payload(
            5,
            name="SQL Injection Fundamentals",
            sections=[
                {"id": 502, "page": 2, "title": "Exploitation", "type": "interactive"},
                {"id": 501, "page": 1, "title": "Introduction", "type": "article"},
            ],
            machines=[{"id": 42, "name": "Shocker", "os": "Linux", "difficultyText": "Easy"}],
        ),
        (ACADEMY, "api/v2/external/public/labs/exams"): exams_payload((3, "Penetration Tester")),
        (ACADEMY, "api/v2/external/public/labs/relations/exams/3"): exam_modules_payload(5),
        (LABS, "api/v4/machine/profile/Shocker"): machine_payload(42, "Shocker", os="Linux"),
        (LABS, "api/v4/machine/tags/42"): tags_payload((9, "SQLi", "Vulnerability")),
    }


@pytest.fixture
def temp_db():
    """
    Create a temporary DuckDB database for testing.

    Yields:
        Database instance with schema initialized

    Cleanup:
        Automatically closes connection and removes file after test
    """
    with tempfile.NamedTemporaryFile(suffix=".duckdb", delete=True) as f:
        db_path = f.name

    db = Database(db_path)
    db.initialize_schema()
    yield db
    db.close()

    Path(db_path).unlink(missing_ok=True)


@pytest.fixture
def gateway(temp_db):
    return CatalogGateway(temp_db)


@pytest.fixture
def transport():
    return FakeTransport(scenario_routes())


@pytest.fixture
def make_orchestrator(gateway):
    """
    Factory for orchestrators over the temp catalog.

    Usage:
        orchestrator = make_orchestrator(transport, max_module_id=6)
    """
    def _make(transport, cancel_event=None, **overrides):
        settings = {"delay_seconds": 0.0, "max_module_id": 6}
        settings.update(overrides)
        config = SyncConfig(academy_cookie="session=abc", labs_bearer="token", **settings)
        return SyncOrchestrator(
            config,
            gateway,
            AcademyAdapter(transport, config.academy_cookie),
            LabsAdapter(transport, config.labs_bearer),
            cancel_event=cancel_event or threading.Event(),
        )
    return _make
