"""
Database Connection Manager
===========================

Handles connections to both SQLite (local development) and PostgreSQL (production).
Automatically detects which database to use based on environment.
"""

import os
import sqlite3
import logging

import streamlit as st

from config import DB_PATH

logger = logging.getLogger(__name__)


def get_database_url() -> str:
    """
    Get database URL from Streamlit secrets or environment.

    Priority:
    1. Streamlit secrets (production)
    2. DATABASE_URL environment variable (local with .env)
    3. SQLite fallback at DB_PATH (local development)
    """
    try:
        if hasattr(st, 'secrets') and 'database' in st.secrets:
            db_url = st.secrets['database'].get('url')
            if db_url:
                logger.info("Using PostgreSQL from Streamlit secrets")
                return db_url
    except Exception as e:
        # No secrets.toml outside a deployed app
        logger.debug(f"No database secrets found: {e}")

    db_url = os.getenv('DATABASE_URL')
    if db_url:
        logger.info("Using database from DATABASE_URL")
        return db_url

    logger.info("Using SQLite (local development mode)")
    return f"sqlite:///{DB_PATH}"


def is_postgres(db_url: str) -> bool:
    """Check if a database URL points at PostgreSQL."""
    return db_url.startswith('postgresql://') or db_url.startswith('postgres://')


def get_connection(db_url: str):
    """
    Get database connection based on database type.

    Returns:
        For SQLite: sqlite3.Connection
        For PostgreSQL: psycopg2.connection
    """
    if db_url.startswith('sqlite'):
        db_path = db_url.replace('sqlite:///', '')
        return sqlite3.connect(db_path, check_same_thread=False)

    import psycopg2

    # Plain tuple rows; reads go through pandas
    return psycopg2.connect(db_url)


class DatabaseAdapter:
    """Wraps a DB-API connection so callers can always write `?` placeholders."""

    def __init__(self, conn, postgres: bool = False):
        self.conn = conn
        self.is_postgres = postgres

    def execute(self, sql: str, params: tuple = ()):
        """Execute SQL with automatic parameter placeholder conversion."""
        if self.is_postgres and '?' in sql:
            sql = sql.replace('?', '%s')

        cursor = self.conn.cursor()
        cursor.execute(sql, params)
        return cursor

    def commit(self):
        """Commit transaction."""
        self.conn.commit()

    def rollback(self):
        """Rollback transaction."""
        self.conn.rollback()
