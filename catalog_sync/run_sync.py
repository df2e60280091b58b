#!/usr/bin/env python3
"""
Command-line entry point for the catalog sync engine.

This module wires the components for one sweep:
1. Configuration: Load and validate the YAML config
2. Storage: Open the DuckDB catalog and initialize the schema
3. Ingestion: Build the rate governor, HTTP client and service adapters
4. Sync: Run the four-phase orchestrator
5. Quality: Run integrity checks against the catalog
6. Reporting: Write the Markdown run report and record the run

SIGINT and SIGTERM request cooperative cancellation: the in-flight request
finishes, no new request is issued, and the partial run is still reported.

Usage:
    python -m catalog_sync.run_sync [--config path/to/config.yaml]
"""
import argparse
import logging
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from catalog_sync.ingestion import (
    ACADEMY,
    LABS,
    AcademyAdapter,
    HttpClient,
    LabsAdapter,
    RateGovernor,
    RetryConfig,
)
from catalog_sync.observability import IntegrityChecker, RunReporter, RunStatistics
from catalog_sync.storage import CatalogGateway, Database, StorageError
from catalog_sync.sync import ConfigError, SyncConfig, SyncOrchestrator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SETUP_FAILURE = 1
EXIT_CANCELLED = 130

DEFAULT_REPORT_DIR = "reports"


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Read the YAML configuration file.

    Raises:
        ConfigError: If the file is missing or is not valid YAML
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(config, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    if "path" not in (config.get("database") or {}):
        raise ConfigError("Missing required config key: database.path")
    return config


def build_orchestrator(
    sync_config: SyncConfig,
    gateway: CatalogGateway,
    statistics: Optional[RunStatistics] = None,
    cancel_event: Optional[threading.Event] = None,
) -> SyncOrchestrator:
    """Build a fresh governor, client and adapter pair for one run."""
    governor = RateGovernor(sync_config.delay_seconds, intervals=sync_config.service_intervals())
    client = HttpClient(
        governor,
        base_urls={ACADEMY: sync_config.academy_base_url, LABS: sync_config.labs_base_url},
        retry_config=RetryConfig(
            max_retries=sync_config.max_retries,
            timeout_seconds=sync_config.timeout_seconds,
        ),
        origins={ACADEMY: sync_config.academy_base_url, LABS: sync_config.labs_origin},
    )
    return SyncOrchestrator(
        sync_config,
        gateway,
        AcademyAdapter(client, sync_config.academy_cookie),
        LabsAdapter(client, sync_config.labs_bearer),
        statistics=statistics,
        cancel_event=cancel_event,
    )


def install_signal_handlers(cancel_event: threading.Event):
    def _request_cancel(signum, frame):
        logger.warning(f"Received signal {signum}; cancelling after the current request")
        cancel_event.set()

    signal.signal(signal.SIGINT, _request_cancel)
    signal.signal(signal.SIGTERM, _request_cancel)


def print_summary(statistics: RunStatistics, report_path: Optional[Path]):
    print("\n" + "=" * 60)
    print("Sync Summary")
    print("=" * 60)
    print(f"Run ID: {statistics.run_id}")
    print(f"Status: {statistics.status}")
    if statistics.duration_seconds is not None:
        print(f"Duration: {statistics.duration_seconds:.1f}s")
    print(f"\n  {'entity':14} {'processed':>9} {'skipped':>8} {'errors':>7} {'rejected':>9}")
    for entity, counters in statistics.counters.items():
        print(
            f"  {entity:14} {counters.processed:9} {counters.skipped:8} "
            f"{counters.errors:7} {counters.rejected:9}"
        )
    if report_path:
        print(f"\nReport: {report_path}")
    print("=" * 60)


def run(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
        if args.max_module_id is not None:
            config["sync"] = dict(config.get("sync") or {}, max_module_id=args.max_module_id)
        if args.no_backfill:
            config["sync"] = dict(config.get("sync") or {}, backfill_vulnerabilities=False)
        sync_config = SyncConfig.from_dict(config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_SETUP_FAILURE

    if not sync_config.academy_cookie:
        logger.warning("No academy cookie configured; academy requests will likely be forbidden")
    if not sync_config.labs_bearer:
        logger.warning("No labs bearer token configured; labs requests will likely be forbidden")

    db = Database(config["database"]["path"])
    try:
        db.initialize_schema()
    except Exception as e:
        logger.error(f"Database setup failed: {e}")
        db.close()
        return EXIT_SETUP_FAILURE

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    with db:
        gateway = CatalogGateway(db)
        statistics = RunStatistics(run_id=db.get_current_run_id(), started_at=datetime.utcnow())
        orchestrator = build_orchestrator(sync_config, gateway, statistics, cancel_event)
        statistics = orchestrator.run()

        logger.info("Running integrity checks")
        integrity_results = IntegrityChecker(db).run_all_checks()
        for result in integrity_results:
            log = logger.info if result.passed else logger.warning
            log(f"  {result.check_name}: {result.message}")

        reporter = RunReporter()
        report = reporter.generate_report(statistics, integrity_results)
        report_path = reporter.save_report(report, Path(args.report_dir))
        logger.info(f"Report saved to {report_path}")

        try:
            gateway.record_run(statistics)
        except StorageError as e:
            logger.error(f"Could not record run {statistics.run_id}: {e}")

    print_summary(statistics, report_path)
    return EXIT_CANCELLED if statistics.cancelled else EXIT_OK


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Sync the academy and labs catalogs into a local DuckDB store"
    )
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )
    parser.add_argument(
        "--max-module-id",
        type=int,
        default=None,
        help="Override sync.max_module_id for this run"
    )
    parser.add_argument(
        "--no-backfill",
        action="store_true",
        help="Skip the vulnerability back-fill phase"
    )
    parser.add_argument(
        "--report-dir",
        default=DEFAULT_REPORT_DIR,
        help=f"Directory for Markdown run reports (default: {DEFAULT_REPORT_DIR})"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    sys.exit(run(args))


if __name__ == "__main__":
    main()
