"""
Sync orchestrator: drives one sweep through the four phases.

Phases run in a fixed order:
1. Module sweep: walk module ids, persist module, units and related machines
2. Exam sweep: fetch the exam list, persist exams and their module links
3. Machine resolution: resolve every machine queued by phase 1, with tags
4. Vulnerability back-fill: derive module -> vulnerability links

Every remote call returns a FetchResult; the outcome decides the counter:
- OK -> normalize and persist
- NOT_FOUND -> skipped (sparse id space, not an error)
- FORBIDDEN / TRANSIENT_ERROR -> error, item abandoned
- MALFORMED_PAYLOAD -> rejected, like a normalization failure
- NormalizationError -> rejected, nothing persisted for that item
- StorageError -> error, that entity or link set abandoned

Only cancellation stops a sweep early. The cancel event is checked before
every fetch; in-flight requests are never interrupted.
"""
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Set

from catalog_sync.ingestion import AcademyAdapter, LabsAdapter, Outcome
from catalog_sync.ingestion.http_client import FetchResult
from catalog_sync.ingestion.normalizer import (
    NormalizationError,
    normalize_exam,
    normalize_exam_module_ids,
    normalize_machine,
    normalize_module,
    partition_tags,
)
from catalog_sync.ingestion.records import NormalizedModule, RelatedMachine
from catalog_sync.observability.metrics import RunStatistics
from catalog_sync.storage.gateway import CatalogGateway, StorageError
from .config import SyncConfig

logger = logging.getLogger(__name__)


class SyncCancelled(Exception):
    """Raised internally when the cancel event is set between fetches."""


class SyncOrchestrator:
    """
    Runs one sweep against the academy and labs services.

    The orchestrator owns all per-run state (machine queue, tag results) and
    is the only writer of the RunStatistics it returns.
    """

    def __init__(
        self,
        config: SyncConfig,
        gateway: CatalogGateway,
        academy: AcademyAdapter,
        labs: LabsAdapter,
        statistics: Optional[RunStatistics] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.gateway = gateway
        self.academy = academy
        self.labs = labs
        self.statistics = statistics or RunStatistics(
            run_id=f"run_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}",
            started_at=datetime.utcnow(),
        )
        self.cancel_event = cancel_event or threading.Event()

        # Machine id -> related entry from the first module that listed it
        self._machine_queue: Dict[int, RelatedMachine] = {}
        # Module id -> related machine ids, for modules persisted this run
        self._module_machines: Dict[int, Set[int]] = {}
        # Machine id -> vulnerability ids, for machines whose tags were fetched this run
        self._machine_vulnerabilities: Dict[int, Set[int]] = {}
        self._upserted_vulnerabilities: Dict[int, str] = {}

    def run(self) -> RunStatistics:
        """
        Execute the sweep.

        Returns:
            RunStatistics snapshot; status is "cancelled" if the cancel event
            stopped the sweep early
        """
        stats = self.statistics
        logger.info(f"=== Starting Sync Run: {stats.run_id} ===")

        try:
            logger.info(
                "Phase 1: Sweeping modules %d..%d",
                self.config.start_module_id, self.config.max_module_id,
            )
            self._sweep_modules()

            logger.info("Phase 2: Sweeping exams")
            self._sweep_exams()

            logger.info("Phase 3: Resolving %d machines", len(self._machine_queue))
            self._resolve_machines()

            if self.config.backfill_vulnerabilities:
                logger.info("Phase 4: Back-filling module vulnerabilities")
                self._backfill_vulnerabilities()
            else:
                logger.info("Phase 4: Vulnerability back-fill disabled")

        except SyncCancelled:
            logger.warning("Sync run %s cancelled; returning partial statistics", stats.run_id)
            stats.finish(cancelled=True)
        else:
            stats.finish()
        finally:
            stats.source_health = {
                self.academy.source_id: self.academy.health_dict(),
                self.labs.source_id: self.labs.health_dict(),
            }

        totals = stats.totals()
        logger.info(
            f"=== Sync Run {stats.status}: {totals.processed} processed, {totals.skipped} skipped, "
            f"{totals.errors} errors, {totals.rejected} rejected ==="
        )
        return stats

    def _check_cancelled(self):
        if self.cancel_event.is_set():
            raise SyncCancelled()

    def _record_failure(self, entity: str, entity_id, result: FetchResult):
        """Count a non-OK fetch outcome; NOT_FOUND is a skip."""
        if result.outcome is Outcome.NOT_FOUND:
            logger.debug("%s %s not found, skipping", entity, entity_id)
            self.statistics.record_skipped(entity)
            return

        logger.warning(
            "%s %s failed: %s %s", entity, entity_id, result.outcome.value, result.detail or ""
        )
        context = {"id": entity_id, "status_code": result.status_code, "detail": result.detail}
        if result.outcome is Outcome.MALFORMED_PAYLOAD:
            self.statistics.record_rejection(entity, result.outcome.value, context)
        else:
            self.statistics.record_error(entity, result.outcome.value, context)

    def _record_rejection(self, entity: str, entity_id, exc: NormalizationError):
        logger.warning("%s %s rejected: %s", entity, entity_id, exc.reason)
        self.statistics.record_rejection(entity, exc.reason, {"id": entity_id})

    def _record_storage_error(self, entity: str, entity_id, exc: StorageError):
        logger.warning("%s %s not stored: %s", entity, entity_id, exc)
        self.statistics.record_error(entity, "storage_error", {"id": entity_id, "detail": str(exc)})

    def _replace_links(self, parent_type: str, parent_id: int, child_type: str, child_ids) -> bool:
        try:
            changes = self.gateway.replace_links(parent_type, parent_id, child_type, child_ids)
        except StorageError as exc:
            self._record_storage_error("link", f"{parent_type}:{parent_id}->{child_type}", exc)
            return False
        if changes["added"] or changes["removed"]:
            logger.debug(
                "%s %s -> %s links: +%d -%d",
                parent_type, parent_id, child_type, changes["added"], changes["removed"],
            )
        self.statistics.record_processed("link")
        return True

    # Phase 1

    def _sweep_modules(self):
        for module_id in range(self.config.start_module_id, self.config.max_module_id + 1):
            self._check_cancelled()
            result = self.academy.fetch_module(module_id)
            if not result.ok:
                self._record_failure("module", module_id, result)
                continue

            try:
                normalized = normalize_module(result.payload)
            except NormalizationError as exc:
                self._record_rejection("module", module_id, exc)
                continue

            if normalized.module.id != module_id:
                logger.warning("Module lookup %d returned id %d", module_id, normalized.module.id)
            self._persist_module(normalized)

    def _persist_module(self, normalized: NormalizedModule):
        module = normalized.module
        try:
            self.gateway.upsert_module(module)
        except StorageError as exc:
            self._record_storage_error("module", module.id, exc)
            return
        self.statistics.record_processed("module")

        try:
            removed = self.gateway.replace_units(module.id, normalized.units)
        except StorageError as exc:
            self._record_storage_error("unit", module.id, exc)
        else:
            self.statistics.record_processed("unit", len(normalized.units))
            if removed:
                logger.info("Module %d: removed %d stale units", module.id, removed)

        machine_ids = [m.id for m in normalized.related_machines]
        if self._replace_links("module", module.id, "machine", machine_ids):
            self._module_machines[module.id] = set(machine_ids)

        for related in normalized.related_machines:
            if related.id not in self._machine_queue:
                self._machine_queue[related.id] = related

        logger.info(
            "Module %d (%s): %d units, %d related machines",
            module.id, module.name, len(normalized.units), len(machine_ids),
        )

    # Phase 2

    def _sweep_exams(self):
        self._check_cancelled()
        result = self.academy.fetch_exams()
        if not result.ok:
            self._record_failure("exam", "list", result)
            return

        exam_ids: List[int] = []
        for entry in result.payload:
            try:
                exam = normalize_exam(entry)
            except NormalizationError as exc:
                self._record_rejection("exam", exc.entity_id, exc)
                continue
            try:
                self.gateway.upsert_exam(exam)
            except StorageError as exc:
                self._record_storage_error("exam", exam.id, exc)
                continue
            self.statistics.record_processed("exam")
            exam_ids.append(exam.id)

        for exam_id in exam_ids:
            self._check_cancelled()
            relations = self.academy.fetch_exam_modules(exam_id)
            if not relations.ok:
                self._record_failure("link", f"exam:{exam_id}", relations)
                continue
            try:
                module_ids = normalize_exam_module_ids(exam_id, relations.payload)
            except NormalizationError as exc:
                self._record_rejection("link", f"exam:{exam_id}", exc)
                continue
            self._replace_links("exam", exam_id, "module", module_ids)

        logger.info("Exams: %d persisted", len(exam_ids))

    # Phase 3

    def _resolve_machines(self):
        for machine_id, related in list(self._machine_queue.items()):
            self._check_cancelled()
            key = related.name if self.config.machine_lookup == "name" else machine_id
            result = self.labs.fetch_machine(key)
            if not result.ok:
                self._record_failure("machine", machine_id, result)
                continue

            try:
                machine = normalize_machine(result.payload, related, self.config.machine_url_base)
            except NormalizationError as exc:
                self._record_rejection("machine", machine_id, exc)
                continue

            try:
                self.gateway.upsert_machine(machine)
            except StorageError as exc:
                self._record_storage_error("machine", machine.id, exc)
                continue
            self.statistics.record_processed("machine")

            if machine.id != machine_id:
                logger.warning("Machine %s resolved to id %d, expected %d", key, machine.id, machine_id)
                self._relink_machine(machine_id, machine.id)

            if self.config.fetch_machine_tags:
                self._sync_machine_tags(machine.id)

    def _relink_machine(self, related_id: int, resolved_id: int):
        """Point module links recorded under a module's related id at the resolved profile id."""
        for module_id, machine_ids in list(self._module_machines.items()):
            if related_id not in machine_ids:
                continue
            updated = (machine_ids - {related_id}) | {resolved_id}
            if self._replace_links("module", module_id, "machine", sorted(updated)):
                self._module_machines[module_id] = updated

    def _sync_machine_tags(self, machine_id: int):
        self._check_cancelled()
        result = self.labs.fetch_machine_tags(machine_id)
        if not result.ok:
            self._record_failure("link", f"machine:{machine_id}", result)
            return

        try:
            tags = partition_tags(machine_id, result.payload)
        except NormalizationError as exc:
            self._record_rejection("link", f"machine:{machine_id}", exc)
            return

        for vulnerability in tags.vulnerabilities:
            if self._upserted_vulnerabilities.get(vulnerability.id) == vulnerability.name:
                continue
            try:
                self.gateway.upsert_vulnerability(vulnerability)
            except StorageError as exc:
                self._record_storage_error("vulnerability", vulnerability.id, exc)
                continue
            self._upserted_vulnerabilities[vulnerability.id] = vulnerability.name
            self.statistics.record_processed("vulnerability")

        if self._replace_links("machine", machine_id, "vulnerability", tags.vulnerability_ids):
            self._machine_vulnerabilities[machine_id] = set(tags.vulnerability_ids)

        for kind, labels in (("language", tags.languages), ("area_of_interest", tags.areas_of_interest)):
            try:
                self.gateway.replace_labels(machine_id, kind, labels)
            except StorageError as exc:
                self._record_storage_error("link", f"machine:{machine_id}:{kind}", exc)
                continue
            self.statistics.record_processed("link")

    # Phase 4

    def _backfill_vulnerabilities(self):
        """
        Derive module -> vulnerability links for modules persisted this run.

        A module's set is the union of its related machines' vulnerability
        ids (tags fetched this run, else the stored machine links) and the
        ids declared for it in module_vulnerabilities. Declared ids that are
        not a known vulnerability are skipped with a warning.
        """
        try:
            known = self.gateway.existing_ids("vulnerability")
        except StorageError as exc:
            self._record_storage_error("vulnerability", "known ids", exc)
            return
        declared = self._declared_vulnerabilities(known)

        for module_id, machine_ids in self._module_machines.items():
            self._check_cancelled()
            vulnerability_ids: Set[int] = set(declared.get(module_id, set()))
            try:
                for machine_id in machine_ids:
                    if machine_id in self._machine_vulnerabilities:
                        vulnerability_ids |= self._machine_vulnerabilities[machine_id]
                    else:
                        vulnerability_ids |= self.gateway.linked_ids("machine", machine_id, "vulnerability")
            except StorageError as exc:
                self._record_storage_error("link", f"module:{module_id}->vulnerability", exc)
                continue
            self._replace_links("module", module_id, "vulnerability", sorted(vulnerability_ids))

        # Machines first seen through a module inherit its declared vulnerabilities
        for machine_id, tag_ids in self._machine_vulnerabilities.items():
            inherited: Set[int] = set()
            for module_id, machine_ids in self._module_machines.items():
                if machine_id in machine_ids:
                    inherited |= declared.get(module_id, set())
            if inherited - tag_ids:
                self._replace_links("machine", machine_id, "vulnerability", sorted(tag_ids | inherited))

    def _declared_vulnerabilities(self, known: Set[int]) -> Dict[int, Set[int]]:
        declared: Dict[int, Set[int]] = {}
        for module_id, vulnerability_ids in self.config.module_vulnerabilities.items():
            valid = set()
            for vulnerability_id in vulnerability_ids:
                if vulnerability_id in known:
                    valid.add(vulnerability_id)
                else:
                    logger.warning(
                        "module_vulnerabilities: module %d maps unknown vulnerability %d, skipping",
                        module_id, vulnerability_id,
                    )
            declared[module_id] = valid
        return declared
