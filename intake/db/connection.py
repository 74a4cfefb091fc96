"""Database connection and schema management."""

import duckdb
from typing import Optional
from pathlib import Path
from ..utils.logger import get_app_logger


class DatabaseConnection:
    """DuckDB connection manager for the user registry."""

    def __init__(self, db_path: str = "./data/intake.db"):
        """
        Initialize database connection.

        Args:
            db_path: Path to DuckDB database file, or ":memory:"
        """
        self.db_path = db_path
        self.logger = get_app_logger()
        self.conn: Optional[duckdb.DuckDBPyConnection] = None

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connect()
        self._init_schema()

    def _connect(self):
        """Connect to DuckDB database."""
        try:
            self.conn = duckdb.connect(self.db_path)
            self.logger.info(f"Connected to DuckDB at {self.db_path}")
        except Exception as e:
            self.logger.error(f"Failed to connect to DuckDB: {e}")
            raise

    def _init_schema(self):
        """Initialize database schema."""
        try:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    email VARCHAR PRIMARY KEY,
                    name VARCHAR NOT NULL,
                    role VARCHAR,
                    onboarding_complete BOOLEAN NOT NULL DEFAULT FALSE,
                    storage_used_mb DOUBLE NOT NULL DEFAULT 0,
                    created_at TIMESTAMP NOT NULL,
                    last_login TIMESTAMP
                )
            """)

            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_users_onboarding ON users(onboarding_complete)"
            )

            self.logger.info("Database schema initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database schema: {e}")
            raise

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            self.logger.info("Database connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
