"""
Database connection and schema management for the catalog store.

This module provides:
- DuckDB connection lifecycle management
- Entity tables keyed by remote-assigned ids
- Link tables for the many-to-many relations
- Sync run metadata tracking

Design decisions:
- Primary keys only, no foreign keys: link rows may reference entities that
  a later phase (or a later run) fills in
- Optional attributes stored as NULL
"""
import duckdb
from datetime import datetime
from typing import Optional

# (parent_type, child_type) -> (table, parent column, child column)
LINK_TABLES = {
    ("module", "machine"): ("module_machines", "module_id", "machine_id"),
    ("module", "vulnerability"): ("module_vulnerabilities", "module_id", "vulnerability_id"),
    ("machine", "vulnerability"): ("machine_vulnerabilities", "machine_id", "vulnerability_id"),
    ("exam", "module"): ("exam_modules", "exam_id", "module_id"),
}

# label kind -> (table, label column)
LABEL_TABLES = {
    "language": ("machine_languages", "language"),
    "area_of_interest": ("machine_areas_of_interest", "area_of_interest"),
}

ENTITY_TABLES = {
    "module": "modules",
    "unit": "units",
    "machine": "machines",
    "exam": "exams",
    "vulnerability": "vulnerabilities",
}


class Database:
    """
    Manages DuckDB connection and schema initialization.

    This class is responsible for:
    - Creating and maintaining a single database connection
    - Initializing entity, link and label tables
    - Providing run ID generation for sync run tracking
    """

    def __init__(self, db_path: str = "catalog.duckdb"):
        """
        Initialize database manager.

        Args:
            db_path: Path to DuckDB database file (created if doesn't exist)
        """
        self.db_path = db_path
        self.conn: Optional[duckdb.DuckDBPyConnection] = None

    def connect(self) -> duckdb.DuckDBPyConnection:
        """
        Get or create database connection.

        Returns:
            Active DuckDB connection
        """
        if self.conn is None:
            self.conn = duckdb.connect(self.db_path)
        return self.conn

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def initialize_schema(self):
        """
        Create all required tables if they don't exist.

        Tables created:
        - modules, units, machines, exams, vulnerabilities
        - module_machines, module_vulnerabilities, machine_vulnerabilities,
          exam_modules
        - machine_languages, machine_areas_of_interest
        - sync_runs
        """
        conn = self.connect()

        conn.execute("""
            CREATE TABLE IF NOT EXISTS modules (
                id INTEGER PRIMARY KEY,
                name VARCHAR NOT NULL,
                description VARCHAR,
                difficulty VARCHAR NOT NULL,
                url VARCHAR,
                image VARCHAR
            )
        """)

        # sequence_order uniqueness per module is guaranteed by the normalizer
        conn.execute("""
            CREATE TABLE IF NOT EXISTS units (
                id INTEGER PRIMARY KEY,
                module_id INTEGER NOT NULL,
                sequence_order INTEGER NOT NULL,
                name VARCHAR NOT NULL,
                type VARCHAR NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS machines (
                id INTEGER PRIMARY KEY,
                name VARCHAR NOT NULL,
                synopsis VARCHAR,
                difficulty VARCHAR NOT NULL,
                os VARCHAR NOT NULL,
                url VARCHAR,
                image VARCHAR
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS exams (
                id INTEGER PRIMARY KEY,
                name VARCHAR NOT NULL,
                logo VARCHAR
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS vulnerabilities (
                id INTEGER PRIMARY KEY,
                name VARCHAR NOT NULL
            )
        """)

        for table, parent_col, child_col in LINK_TABLES.values():
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    {parent_col} INTEGER NOT NULL,
                    {child_col} INTEGER NOT NULL,
                    PRIMARY KEY ({parent_col}, {child_col})
                )
            """)

        for table, label_col in LABEL_TABLES.values():
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    machine_id INTEGER NOT NULL,
                    {label_col} VARCHAR NOT NULL,
                    PRIMARY KEY (machine_id, {label_col})
                )
            """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS sync_runs (
                run_id VARCHAR PRIMARY KEY,
                started_at TIMESTAMP,
                completed_at TIMESTAMP,
                status VARCHAR,
                processed INTEGER,
                skipped INTEGER,
                errors INTEGER,
                rejected INTEGER,
                metadata JSON
            )
        """)

    def get_current_run_id(self) -> str:
        """
        Generate a unique run ID for this sync execution.

        Returns:
            Run ID in format: run_YYYYMMDD_HHMMSS
        """
        return f"run_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}"

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
