"""
Tests for run configuration loading and the CLI wiring.
"""
import pytest

from catalog_sync.run_sync import build_orchestrator, load_config
from catalog_sync.sync import ConfigError, SyncConfig

MINIMAL = {
    "database": {"path": "catalog.duckdb"},
    "academy": {},
    "labs": {},
    "sync": {},
}


def test_defaults():
    config = SyncConfig.from_dict(MINIMAL)

    assert config.delay_seconds == 2.0
    assert config.max_module_id == 500
    assert config.start_module_id == 1
    assert config.backfill_vulnerabilities is True
    assert config.fetch_machine_tags is True
    assert config.module_vulnerabilities == {}
    assert config.max_retries == 0


def test_credentials_from_environment(monkeypatch):
    monkeypatch.setenv("HTB_COOKIE", "session=from-env")
    monkeypatch.setenv("MY_TOKEN", "token-from-env")

    config = SyncConfig.from_dict(dict(MINIMAL, labs={"bearer_env": "MY_TOKEN"}))

    assert config.academy_cookie == "session=from-env"
    assert config.labs_bearer == "token-from-env"


def test_inline_credentials_win(monkeypatch):
    monkeypatch.setenv("HTB_COOKIE", "session=from-env")

    config = SyncConfig.from_dict(dict(MINIMAL, academy={"cookie": "session=inline"}))

    assert config.academy_cookie == "session=inline"


def test_module_vulnerability_mapping_keys_coerced():
    config = SyncConfig.from_dict(dict(MINIMAL, sync={"module_vulnerabilities": {"15": ["9", 12]}}))

    assert config.module_vulnerabilities == {15: [9, 12]}


def test_boolean_flags_read_as_given():
    config = SyncConfig.from_dict(dict(MINIMAL, sync={"fetch_machine_tags": False, "backfill_vulnerabilities": False}))

    assert config.fetch_machine_tags is False
    assert config.backfill_vulnerabilities is False


def test_service_intervals():
    config = SyncConfig.from_dict(dict(MINIMAL, labs={"delay_seconds": 0.5}))

    assert config.service_intervals() == {"labs": 0.5}


@pytest.mark.parametrize("bad", [
    {k: v for k, v in MINIMAL.items() if k != "sync"},
    dict(MINIMAL, sync={"max_module_id": "many"}),
    dict(MINIMAL, sync={"max_module_id": 0}),
    dict(MINIMAL, sync={"delay_seconds": -1}),
    dict(MINIMAL, sync={"machine_lookup": "slug"}),
    dict(MINIMAL, sync={"module_vulnerabilities": [1, 2]}),
    dict(MINIMAL, sync={"fetch_machine_tags": "false"}),
    dict(MINIMAL, sync={"backfill_vulnerabilities": "no"}),
    dict(MINIMAL, sync={"backfill_vulnerabilities": 0}),
])
def test_invalid_config_rejected(bad):
    with pytest.raises(ConfigError):
        SyncConfig.from_dict(bad)


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "missing.yaml"))


def test_load_config_requires_database_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("database: {}\nacademy: {}\nlabs: {}\nsync: {}\n")

    with pytest.raises(ConfigError):
        load_config(str(path))


def test_load_config_reads_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "database:\n  path: test.duckdb\n"
        "academy:\n  cookie: abc\n"
        "labs:\n  bearer: xyz\n"
        "sync:\n  max_module_id: 20\n"
    )

    config = SyncConfig.from_dict(load_config(str(path)))

    assert config.max_module_id == 20
    assert config.academy_cookie == "abc"


def test_build_orchestrator_wires_adapters(gateway):
    config = SyncConfig(academy_cookie="c", labs_bearer="b", academy_delay_seconds=3.0)

    orchestrator = build_orchestrator(config, gateway)

    assert orchestrator.academy.source_id == "academy"
    assert orchestrator.labs.source_id == "labs"
    assert orchestrator.academy.client is orchestrator.labs.client
    assert orchestrator.academy.client.governor.interval_for("academy") == 3.0
    assert orchestrator.academy.client.governor.interval_for("labs") == 2.0
