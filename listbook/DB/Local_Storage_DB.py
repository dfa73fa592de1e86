# Local_Storage_DB.py
#########################################
# Local key/value storage for the listbook client.
#
# A small SQLite database with a single `key_value_store` table. Each value is a
# serialized JSON document (the record collection, the settings object). The
# class mirrors the other DB classes: thread-local connections, a schema
# version table, and a transaction context manager.
####
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Union
#
# 3rd-Party Imports
from loguru import logger
#
########################################################################################################################
#
# Classes:

class StorageError(Exception):
    """Base exception for local storage errors."""
    pass


class SchemaError(StorageError):
    """Exception for schema version mismatches or migration failures."""
    pass


class LocalStorageDB:
    _CURRENT_SCHEMA_VERSION = 1

    _TABLES_SQL_V1 = """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY NOT NULL
    );
    INSERT OR IGNORE INTO schema_version (version) VALUES (0);

    CREATE TABLE IF NOT EXISTS key_value_store (
        key TEXT PRIMARY KEY NOT NULL,
        value TEXT NOT NULL,
        last_modified DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
    );
    """

    _SCHEMA_UPDATE_VERSION_SQL_V1 = "UPDATE schema_version SET version = 1 WHERE version = 0;"

    def __init__(self, db_path: Union[str, Path]):
        """
        Opens (or creates) the store and makes sure the schema is current.

        Args:
            db_path: Path to the SQLite file, or ':memory:'.

        Raises:
            StorageError: If the database cannot be opened or initialized.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.expanduser().resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(":memory:") if self.is_memory_db else Path(db_path).expanduser().resolve()
        self.db_path_str = ':memory:' if self.is_memory_db else str(self.db_path)

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to create storage directory {self.db_path.parent}: {e}") from e

        logger.info(f"Initializing LocalStorageDB for path: {self.db_path_str}")
        self._local = threading.local()
        try:
            self._initialize_schema()
        except (StorageError, sqlite3.Error) as e:
            logger.critical(f"FATAL: Local store initialization failed for {self.db_path_str}: {e}")
            self.close_connection()
            if isinstance(e, StorageError):
                raise
            raise StorageError(f"Local store initialization failed: {e}") from e

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            try:
                conn.execute("SELECT 1")
                return conn
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection to {self.db_path_str} was closed. Reopening.")
                self._local.conn = None

        try:
            conn = sqlite3.connect(
                self.db_path_str,
                check_same_thread=False,
                timeout=10
            )
            conn.row_factory = sqlite3.Row
            if not self.is_memory_db:
                conn.execute("PRAGMA journal_mode=WAL;")
            self._local.conn = conn
            logger.debug(f"Opened SQLite connection to {self.db_path_str} [Thread: {threading.current_thread().name}]")
        except sqlite3.Error as e:
            self._local.conn = None
            raise StorageError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def close_connection(self):
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        self._local.conn = None
        try:
            conn.close()
            logger.debug(f"Closed connection for thread {threading.current_thread().name}.")
        except sqlite3.Error as e:
            logger.warning(f"Error closing connection: {e}")

    # --- Transaction Context ---
    @contextmanager
    def transaction(self):
        conn = self.get_connection()
        in_outer = conn.in_transaction
        try:
            if not in_outer:
                conn.execute("BEGIN")
            yield conn
            if not in_outer:
                conn.commit()
        except Exception as e:
            if not in_outer:
                logger.error(f"Transaction failed, rolling back: {type(e).__name__} - {e}")
                try:
                    conn.rollback()
                except sqlite3.Error as rb_err:
                    logger.error(f"Rollback FAILED: {rb_err}")
            raise

    # --- Schema Initialization ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            return row['version'] if row else 0
        except sqlite3.Error as e:
            if "no such table: schema_version" in str(e).lower():
                return 0
            raise StorageError(f"Could not determine schema version: {e}") from e

    def _initialize_schema(self):
        conn = self.get_connection()
        current_version = self._get_db_version(conn)
        target_version = self._CURRENT_SCHEMA_VERSION
        logger.debug(f"Checking store schema. Current: {current_version}, Code supports: {target_version}")

        if current_version == target_version:
            return
        if current_version > target_version:
            raise SchemaError(f"Store schema version ({current_version}) is newer than supported ({target_version}).")

        conn.executescript(self._TABLES_SQL_V1 + self._SCHEMA_UPDATE_VERSION_SQL_V1)
        conn.commit()
        final_version = self._get_db_version(conn)
        if final_version != target_version:
            raise SchemaError(f"Schema migration applied, but final version is {final_version}, expected {target_version}.")
        logger.info(f"Local store schema initialized to version {target_version}.")

    # --- Key/Value Operations ---
    def get_item(self, key: str) -> Optional[str]:
        try:
            row = self.get_connection().execute(
                "SELECT value FROM key_value_store WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read key '{key}': {e}") from e
        return row['value'] if row else None

    def set_item(self, key: str, value: str) -> None:
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO key_value_store (key, value, last_modified) VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, last_modified = CURRENT_TIMESTAMP
                    """,
                    (key, value),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write key '{key}': {e}") from e

    def remove_item(self, key: str) -> bool:
        try:
            with self.transaction() as conn:
                cursor = conn.execute("DELETE FROM key_value_store WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to remove key '{key}': {e}") from e
        return cursor.rowcount > 0

    def keys(self) -> List[str]:
        try:
            rows = self.get_connection().execute("SELECT key FROM key_value_store ORDER BY key").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list keys: {e}") from e
        return [row['key'] for row in rows]

#
# End of Local_Storage_DB.py
########################################################################################################################
