"""
Database operations and schema management.

Supports both SQLite (local development) and PostgreSQL (production).
"""

import sqlite3
import logging
from contextlib import contextmanager
from typing import Optional, Iterator

import pandas as pd

from db_connection import get_connection, get_database_url, is_postgres, DatabaseAdapter
from exceptions import DatabaseError

logger = logging.getLogger(__name__)


class Database:
    """Database connection and operations manager supporting SQLite and PostgreSQL."""

    def __init__(self, db_path: Optional[str] = None, db_url: Optional[str] = None):
        """
        Initialize database connection settings.

        Args:
            db_path: Path to a SQLite database. When given, environment and
                secrets lookups are skipped.
            db_url: Explicit database URL (sqlite:/// or postgresql://)
        """
        if db_path:
            self.db_url = f"sqlite:///{db_path}"
        else:
            self.db_url = db_url or get_database_url()
        self.db_path = self.db_url.replace('sqlite:///', '') if self.db_url.startswith('sqlite') else None
        self._is_postgres = is_postgres(self.db_url)
        self._conn = None
        self._adapter = None

    @property
    def is_postgres(self) -> bool:
        """Check if using PostgreSQL."""
        return self._is_postgres

    def get_conn(self):
        """Get a database connection."""
        if self._is_postgres:
            # For PostgreSQL, reuse connection
            if self._conn is None:
                self._conn = get_connection(self.db_url)
                self._adapter = DatabaseAdapter(self._conn, postgres=True)
            return self._conn
        # For SQLite, create new connection each time for thread safety
        return sqlite3.connect(self.db_path, check_same_thread=False)

    def _get_adapter(self, conn) -> DatabaseAdapter:
        """Get adapter for connection."""
        if self._is_postgres and self._adapter:
            return self._adapter
        return DatabaseAdapter(conn, postgres=self._is_postgres)

    def _release(self, conn) -> None:
        if not self._is_postgres:
            conn.close()

    def run_sql(self, sql: str, params: tuple = ()) -> None:
        """Execute a SQL statement that modifies data."""
        conn = self.get_conn()
        adapter = self._get_adapter(conn)
        try:
            adapter.execute(sql, params)
            adapter.commit()
            logger.debug(f"Executed SQL: {sql[:100]}... with params {params}")
        except Exception as e:
            logger.error(f"Error executing SQL: {e}")
            adapter.rollback()
            raise DatabaseError(str(e), operation="run_sql", query=sql) from e
        finally:
            self._release(conn)

    def read_sql(self, sql: str, params: tuple = ()) -> pd.DataFrame:
        """Execute a SQL query and return results as DataFrame."""
        conn = self.get_conn()
        try:
            if self._is_postgres and '?' in sql:
                sql = sql.replace('?', '%s')
            df = pd.read_sql_query(sql, conn, params=params)
            logger.debug(f"Read SQL: {sql[:100]}... returned {len(df)} rows")
            return df
        except Exception as e:
            logger.error(f"Error reading SQL: {e}")
            raise DatabaseError(str(e), operation="read_sql", query=sql) from e
        finally:
            self._release(conn)

    @contextmanager
    def transaction(self) -> Iterator[DatabaseAdapter]:
        """
        Run several statements as one atomic unit.

        Commits when the block exits normally; rolls back and re-raises
        otherwise, so readers never observe partial writes.
        """
        conn = self.get_conn()
        adapter = self._get_adapter(conn)
        try:
            yield adapter
            adapter.commit()
        except Exception as e:
            logger.error(f"Transaction rolled back: {e}")
            adapter.rollback()
            raise
        finally:
            self._release(conn)

    def init_db(self) -> None:
        """Initialize database schema."""
        logger.info(f"Initializing database schema ({'PostgreSQL' if self._is_postgres else 'SQLite'})...")

        if self._is_postgres:
            pk_auto = "SERIAL PRIMARY KEY"
        else:
            pk_auto = "INTEGER PRIMARY KEY AUTOINCREMENT"

        self.run_sql("""
        CREATE TABLE IF NOT EXISTS partners (
            partner_id TEXT PRIMARY KEY,
            partner_name TEXT NOT NULL,
            email TEXT NOT NULL UNIQUE,
            payout_details TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
        """)

        self.run_sql("""
        CREATE TABLE IF NOT EXISTS deals (
            deal_id TEXT PRIMARY KEY,
            amount REAL NOT NULL,
            closed_date TEXT NOT NULL,
            attribution_model TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
        """)

        # seq is storage order; it breaks ties between equal timestamps
        self.run_sql(f"""
        CREATE TABLE IF NOT EXISTS events (
            seq {pk_auto},
            event_id TEXT NOT NULL UNIQUE,
            partner_id TEXT NOT NULL,
            deal_id TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            touchpoint_type TEXT NOT NULL,
            metadata TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (partner_id) REFERENCES partners(partner_id)
        );
        """)

        self.run_sql("""
        CREATE TABLE IF NOT EXISTS attribution_results (
            result_id TEXT PRIMARY KEY,
            deal_id TEXT NOT NULL,
            partner_id TEXT NOT NULL,
            model TEXT NOT NULL,
            total_amount REAL NOT NULL,
            attribution_percentage REAL NOT NULL,
            payout_amount REAL NOT NULL,
            touchpoints INTEGER NOT NULL DEFAULT 0,
            role TEXT,
            calculated_at TEXT NOT NULL,
            FOREIGN KEY (deal_id) REFERENCES deals(deal_id),
            FOREIGN KEY (partner_id) REFERENCES partners(partner_id)
        );
        """)

        for index_sql in (
            "CREATE INDEX IF NOT EXISTS idx_events_deal_id ON events(deal_id);",
            "CREATE INDEX IF NOT EXISTS idx_events_partner_id ON events(partner_id);",
            "CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events(timestamp);",
            "CREATE INDEX IF NOT EXISTS idx_attribution_results_deal_id ON attribution_results(deal_id);",
            "CREATE INDEX IF NOT EXISTS idx_deals_closed_date ON deals(closed_date);",
        ):
            self.run_sql(index_sql)

        logger.info("Database schema ready")

    def table_count(self, table: str) -> int:
        """Row count for one of the application tables."""
        if table not in ("partners", "deals", "events", "attribution_results"):
            raise ValueError(f"Unknown table: {table}")
        df = self.read_sql(f"SELECT COUNT(*) AS n FROM {table};")
        return int(df.loc[0, "n"])
