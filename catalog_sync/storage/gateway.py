"""
Persistence gateway: idempotent upserts and link-set replacement.

The sync orchestrator never issues SQL itself; every write goes through
CatalogGateway. Each public write runs in its own transaction and either
fully applies or raises StorageError.

Design decisions:
- INSERT ... ON CONFLICT (id) DO UPDATE for entities, keyed on remote id
- Link sets and unit sets are reconciled (delete stale, insert missing)
  instead of delete-all + insert, so unchanged rows are never touched
"""
import json
import logging
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Set

import duckdb

from catalog_sync.ingestion.records import (
    ExamRecord,
    MachineRecord,
    ModuleRecord,
    UnitRecord,
    VulnerabilityRecord,
)
from .database import ENTITY_TABLES, LABEL_TABLES, LINK_TABLES, Database

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """A gateway write that could not be applied."""


class CatalogGateway:
    """
    Write and lookup operations over the catalog tables.

    Each upsert/replace method:
    1. Opens a transaction
    2. Applies the change keyed on remote ids
    3. Commits, or rolls back and raises StorageError
    """

    def __init__(self, database: Database):
        """
        Initialize gateway with database connection.

        Args:
            database: Database instance with schema initialized
        """
        self.db = database

    @contextmanager
    def _transaction(self, description: str):
        conn = self.db.connect()
        conn.execute("BEGIN TRANSACTION")
        try:
            yield conn
        except duckdb.Error as exc:
            conn.execute("ROLLBACK")
            logger.error("Storage failure (%s): %s", description, exc)
            raise StorageError(f"{description}: {exc}") from exc
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    # Entities

    def upsert_module(self, module: ModuleRecord) -> None:
        with self._transaction(f"module {module.id}") as conn:
            conn.execute("""
                INSERT INTO modules (id, name, description, difficulty, url, image)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    difficulty = excluded.difficulty,
                    url = excluded.url,
                    image = excluded.image
            """, [
                module.id,
                module.name,
                module.description,
                module.difficulty.value,
                module.url,
                module.image,
            ])

    def upsert_unit(self, unit: UnitRecord) -> None:
        with self._transaction(f"unit {unit.id}") as conn:
            self._upsert_unit(conn, unit)

    def replace_units(self, module_id: int, units: List[UnitRecord]) -> int:
        """
        Make the module's unit set equal to `units`.

        Args:
            module_id: Owning module id
            units: Full, already-ordered unit list for the module

        Returns:
            Number of stale units removed
        """
        keep_ids = [u.id for u in units]
        with self._transaction(f"units of module {module_id}") as conn:
            for unit in units:
                self._upsert_unit(conn, unit)

            stale = [
                row[0] for row in conn.execute(
                    "SELECT id FROM units WHERE module_id = ?", [module_id]
                ).fetchall()
                if row[0] not in keep_ids
            ]
            if stale:
                conn.executemany("DELETE FROM units WHERE id = ?", [[unit_id] for unit_id in stale])
        return len(stale)

    def upsert_machine(self, machine: MachineRecord) -> None:
        with self._transaction(f"machine {machine.id}") as conn:
            conn.execute("""
                INSERT INTO machines (id, name, synopsis, difficulty, os, url, image)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    name = excluded.name,
                    synopsis = excluded.synopsis,
                    difficulty = excluded.difficulty,
                    os = excluded.os,
                    url = excluded.url,
                    image = excluded.image
            """, [
                machine.id,
                machine.name,
                machine.synopsis,
                machine.difficulty.value,
                machine.os.value,
                machine.url,
                machine.image,
            ])

    def upsert_exam(self, exam: ExamRecord) -> None:
        with self._transaction(f"exam {exam.id}") as conn:
            conn.execute("""
                INSERT INTO exams (id, name, logo)
                VALUES (?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    name = excluded.name,
                    logo = excluded.logo
            """, [exam.id, exam.name, exam.logo])

    def upsert_vulnerability(self, vulnerability: VulnerabilityRecord) -> None:
        with self._transaction(f"vulnerability {vulnerability.id}") as conn:
            conn.execute("""
                INSERT INTO vulnerabilities (id, name)
                VALUES (?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    name = excluded.name
            """, [vulnerability.id, vulnerability.name])

    # Relations

    def replace_links(
        self,
        parent_type: str,
        parent_id: int,
        child_type: str,
        child_ids: Iterable[int],
    ) -> Dict[str, int]:
        """
        Reconcile one parent's link set to exactly `child_ids`.

        Args:
            parent_type: module | machine | exam
            parent_id: Parent entity id
            child_type: machine | vulnerability | module
            child_ids: Desired child ids (duplicates ignored)

        Returns:
            Dictionary with "added" and "removed" counts
        """
        try:
            table, parent_col, child_col = LINK_TABLES[(parent_type, child_type)]
        except KeyError:
            raise ValueError(f"No link table for {parent_type} -> {child_type}") from None

        wanted = set(child_ids)
        with self._transaction(f"{table} for {parent_type} {parent_id}") as conn:
            current = {
                row[0] for row in conn.execute(
                    f"SELECT {child_col} FROM {table} WHERE {parent_col} = ?", [parent_id]
                ).fetchall()
            }
            removed = sorted(current - wanted)
            added = sorted(wanted - current)

            if removed:
                conn.executemany(
                    f"DELETE FROM {table} WHERE {parent_col} = ? AND {child_col} = ?",
                    [[parent_id, child_id] for child_id in removed],
                )
            if added:
                conn.executemany(
                    f"INSERT INTO {table} ({parent_col}, {child_col}) VALUES (?, ?)",
                    [[parent_id, child_id] for child_id in added],
                )

        return {"added": len(added), "removed": len(removed)}

    def replace_labels(self, machine_id: int, kind: str, labels: Iterable[str]) -> Dict[str, int]:
        """Reconcile a machine's language or area-of-interest label set."""
        try:
            table, label_col = LABEL_TABLES[kind]
        except KeyError:
            raise ValueError(f"Unknown label kind: {kind}") from None

        wanted = set(labels)
        with self._transaction(f"{table} for machine {machine_id}") as conn:
            current = {
                row[0] for row in conn.execute(
                    f"SELECT {label_col} FROM {table} WHERE machine_id = ?", [machine_id]
                ).fetchall()
            }
            removed = sorted(current - wanted)
            added = sorted(wanted - current)

            if removed:
                conn.executemany(
                    f"DELETE FROM {table} WHERE machine_id = ? AND {label_col} = ?",
                    [[machine_id, label] for label in removed],
                )
            if added:
                conn.executemany(
                    f"INSERT INTO {table} (machine_id, {label_col}) VALUES (?, ?)",
                    [[machine_id, label] for label in added],
                )

        return {"added": len(added), "removed": len(removed)}

    # Reads

    def _fetch_column(self, sql: str, params: Optional[List] = None) -> List:
        try:
            rows = self.db.connect().execute(sql, params or []).fetchall()
        except duckdb.Error as exc:
            raise StorageError(f"read failed: {exc}") from exc
        return [row[0] for row in rows]

    def existing_ids(self, entity_type: str) -> Set[int]:
        table = ENTITY_TABLES[entity_type]
        return set(self._fetch_column(f"SELECT id FROM {table}"))

    def linked_ids(self, parent_type: str, parent_id: int, child_type: str) -> Set[int]:
        table, parent_col, child_col = LINK_TABLES[(parent_type, child_type)]
        return set(self._fetch_column(
            f"SELECT {child_col} FROM {table} WHERE {parent_col} = ?", [parent_id]
        ))

    def labels(self, machine_id: int, kind: str) -> Set[str]:
        table, label_col = LABEL_TABLES[kind]
        return set(self._fetch_column(
            f"SELECT {label_col} FROM {table} WHERE machine_id = ?", [machine_id]
        ))

    # Run metadata

    def record_run(self, statistics) -> None:
        """
        Persist a run snapshot to sync_runs.

        Args:
            statistics: RunStatistics of a finished (or cancelled) run
        """
        totals = statistics.totals()
        with self._transaction(f"sync run {statistics.run_id}") as conn:
            conn.execute("""
                INSERT INTO sync_runs
                (run_id, started_at, completed_at, status, processed, skipped,
                 errors, rejected, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (run_id) DO UPDATE SET
                    started_at = excluded.started_at,
                    completed_at = excluded.completed_at,
                    status = excluded.status,
                    processed = excluded.processed,
                    skipped = excluded.skipped,
                    errors = excluded.errors,
                    rejected = excluded.rejected,
                    metadata = excluded.metadata
            """, [
                statistics.run_id,
                statistics.started_at,
                statistics.completed_at,
                statistics.status,
                totals.processed,
                totals.skipped,
                totals.errors,
                totals.rejected,
                json.dumps(statistics.to_dict()),
            ])

    @staticmethod
    def _upsert_unit(conn: duckdb.DuckDBPyConnection, unit: UnitRecord) -> None:
        conn.execute("""
            INSERT INTO units (id, module_id, sequence_order, name, type)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                module_id = excluded.module_id,
                sequence_order = excluded.sequence_order,
                name = excluded.name,
                type = excluded.type
        """, [unit.id, unit.module_id, unit.sequence_order, unit.name, unit.type.value])
