"""
Referential-integrity checks for the catalog store.

This module implements IntegrityChecker, which runs SQL-based validation
checks against the catalog tables after each sync run.

Checks implemented:
- Orphan units: Every unit must belong to a stored module
- Unit ordering: sequence_order must be unique within a module
- Dangling links: Link rows must reference stored parents and children
- Enumerated columns: Difficulty and os values must be in their fixed sets

Design decisions:
- Each check returns an IntegrityCheckResult with pass/fail and details
- Dangling links are reported, not repaired: a link may point at an entity
  that a later run resolves
- Checks are SQL-based (run against database, not Python)
"""
from dataclasses import dataclass
from typing import Any, Dict, List

from catalog_sync.ingestion.records import MachineDifficulty, MachineOS, ModuleDifficulty
from catalog_sync.storage.database import ENTITY_TABLES, LINK_TABLES


@dataclass
class IntegrityCheckResult:
    """
    Result of a single integrity check.

    Attributes:
        check_name: Unique identifier for the check
        passed: True if check passed, False otherwise
        message: Human-readable summary of the result
        details: Optional dict with additional context (e.g., counts)
    """
    check_name: str
    passed: bool
    message: str
    details: Dict[str, Any] = None


class IntegrityChecker:
    """
    Runs integrity checks against the catalog tables.

    Each check method executes a SQL query against the database and returns
    an IntegrityCheckResult indicating pass/fail status.
    """

    def __init__(self, database):
        """
        Initialize integrity checker.

        Args:
            database: Database instance with active connection
        """
        self.db = database

    def run_all_checks(self) -> List[IntegrityCheckResult]:
        """
        Run all integrity checks.

        Returns:
            List of IntegrityCheckResult objects, one per check
        """
        results = []
        results.append(self.check_orphan_units())
        results.append(self.check_unit_sequence_unique())
        results.extend(self.check_dangling_links())
        results.append(self.check_enumerated_values())
        return results

    def check_orphan_units(self) -> IntegrityCheckResult:
        """Ensure every unit belongs to a stored module."""
        conn = self.db.connect()
        result = conn.execute("""
            SELECT count(*) FROM units u
            LEFT JOIN modules m ON m.id = u.module_id
            WHERE m.id IS NULL
        """).fetchone()[0]

        return IntegrityCheckResult(
            check_name="orphan_units",
            passed=result == 0,
            message=f"{result} units without module" if result > 0 else "All units belong to a module",
            details={"orphan_count": result}
        )

    def check_unit_sequence_unique(self) -> IntegrityCheckResult:
        """Ensure sequence_order is unique within each module."""
        conn = self.db.connect()
        result = conn.execute("""
            SELECT count(*) FROM (
                SELECT module_id, sequence_order
                FROM units
                GROUP BY module_id, sequence_order
                HAVING count(*) > 1
            )
        """).fetchone()[0]

        return IntegrityCheckResult(
            check_name="unit_sequence_unique",
            passed=result == 0,
            message=f"{result} duplicated unit positions" if result > 0 else "Unit ordering is unique",
            details={"duplicate_count": result}
        )

    def check_dangling_links(self) -> List[IntegrityCheckResult]:
        """
        Count link rows whose parent or child is not stored.

        One result per link table.
        """
        conn = self.db.connect()
        results = []
        for (parent_type, child_type), (table, parent_col, child_col) in LINK_TABLES.items():
            parent_table = ENTITY_TABLES[parent_type]
            child_table = ENTITY_TABLES[child_type]
            count = conn.execute(f"""
                SELECT count(*) FROM {table} l
                LEFT JOIN {parent_table} p ON p.id = l.{parent_col}
                LEFT JOIN {child_table} c ON c.id = l.{child_col}
                WHERE p.id IS NULL OR c.id IS NULL
            """).fetchone()[0]

            results.append(IntegrityCheckResult(
                check_name=f"dangling_{table}",
                passed=count == 0,
                message=f"{count} links to missing rows" if count > 0 else "All links resolve",
                details={"dangling_count": count}
            ))
        return results

    def check_enumerated_values(self) -> IntegrityCheckResult:
        """Ensure difficulty and os columns only hold known labels."""
        conn = self.db.connect()
        module_levels = [d.value for d in ModuleDifficulty]
        machine_levels = [d.value for d in MachineDifficulty]
        os_labels = [o.value for o in MachineOS]

        bad_modules = conn.execute(
            f"SELECT count(*) FROM modules WHERE difficulty NOT IN ({_placeholders(module_levels)})",
            module_levels,
        ).fetchone()[0]
        bad_machines = conn.execute(
            f"""
            SELECT count(*) FROM machines
            WHERE difficulty NOT IN ({_placeholders(machine_levels)})
               OR os NOT IN ({_placeholders(os_labels)})
            """,
            machine_levels + os_labels,
        ).fetchone()[0]

        total = bad_modules + bad_machines
        return IntegrityCheckResult(
            check_name="enumerated_values",
            passed=total == 0,
            message=f"{total} rows with unknown labels" if total > 0 else "All labels valid",
            details={"modules": bad_modules, "machines": bad_machines}
        )


def _placeholders(values: List[Any]) -> str:
    return ", ".join("?" for _ in values)
