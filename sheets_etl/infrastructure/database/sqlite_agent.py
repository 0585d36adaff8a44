"""
Dialecto SQLite (sqlite3 de la stdlib).

Ojo con SQLITE_LIMIT_VARIABLE_NUMBER: versiones antiguas aceptan como
máximo 999 parámetros por sentencia.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from loguru import logger

from sheets_etl.infrastructure.database.base import (
    DOCUMENTS_TABLE,
    ETL_JOBS_TABLE,
    ORIGIN_JOB_COLUMN,
    ORIGIN_ROW_COLUMN,
    ROWID_COLUMN,
    DatabaseAgent,
)
from sheets_etl.etl.types import MAX_VALUE_LENGTH


class SqliteAgent(DatabaseAgent):
    dialect_name = "sqlite"
    insert_chunk_size = 25
    max_parameters = 999
    placeholder = "?"

    def __init__(self, connection: sqlite3.Connection, **kwargs) -> None:
        # Autocommit: BEGIN/COMMIT los emite `transaction()` explícitamente.
        connection.isolation_level = None
        super().__init__(connection, **kwargs)
        self._lock_conn: Optional[sqlite3.Connection] = None

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def try_advisory_lock(self, lock_key: int) -> bool:
        """
        Evita ejecuciones simultáneas sobre el mismo archivo.

        SQLite no tiene advisory locks: se abre un archivo hermano
        `<base>.<lock_key>.lock` y se mantiene un BEGIN IMMEDIATE durante toda
        la corrida. El sistema operativo libera el lock si el proceso muere.
        Una base en memoria es privada de la conexión: siempre se concede.
        """
        if self._lock_conn is not None:
            return True
        main_file = next((row[2] for row in self._fetchall("PRAGMA database_list") if row[1] == "main"), "")
        if not main_file:
            return True

        lock_conn = sqlite3.connect(f"{main_file}.{lock_key}.lock", timeout=0, isolation_level=None)
        try:
            lock_conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            lock_conn.close()
            if "locked" in str(e):
                logger.debug(f"Lock de corrida ocupado: {main_file}.{lock_key}.lock")
                return False
            raise
        self._lock_conn = lock_conn
        return True

    def close(self) -> None:
        if self._lock_conn is not None:
            self._lock_conn.close()
            self._lock_conn = None
        super().close()

    def _unqualified(self, name: str) -> str:
        # REFERENCES en SQLite no admite schema: la tabla debe estar en la misma base.
        return self.quote_identifier(self.table_prefix + name)

    def _accounting_ddl(self) -> list[str]:
        documents = self.qualified_table(DOCUMENTS_TABLE)
        jobs = self.qualified_table(ETL_JOBS_TABLE)
        return [
            f"""
            CREATE TABLE IF NOT EXISTS {documents} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                document_id VARCHAR(200) NOT NULL,
                remote_modified VARCHAR(99) NOT NULL,
                name VARCHAR(255) NOT NULL DEFAULT '',
                last_seen VARCHAR(32) NOT NULL,
                UNIQUE (document_id)
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS {jobs} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                document_id VARCHAR(200) NOT NULL,
                sub_table_name VARCHAR(255) NOT NULL,
                target_table VARCHAR(255) NOT NULL,
                loaded_modified VARCHAR(99) NOT NULL,
                content_fingerprint VARCHAR(64) NOT NULL,
                UNIQUE (document_id, sub_table_name),
                FOREIGN KEY (document_id)
                    REFERENCES {self._unqualified(DOCUMENTS_TABLE)}(document_id)
            )
            """,
        ]

    def _target_table_ddl(self, table: str) -> str:
        q = self.quote_identifier
        return f"""
            CREATE TABLE IF NOT EXISTS {self.qualified_table(table)} (
                {q(ROWID_COLUMN)} INTEGER PRIMARY KEY AUTOINCREMENT,
                {q(ORIGIN_JOB_COLUMN)} INTEGER NOT NULL,
                {q(ORIGIN_ROW_COLUMN)} INTEGER NOT NULL,
                UNIQUE ({q(ORIGIN_JOB_COLUMN)}, {q(ORIGIN_ROW_COLUMN)}),
                FOREIGN KEY ({q(ORIGIN_JOB_COLUMN)})
                    REFERENCES {self._unqualified(ETL_JOBS_TABLE)}(id)
                    ON DELETE RESTRICT
                    ON UPDATE RESTRICT
            )
            """

    def _add_column_sql(self, table: str, column: str) -> str:
        return (
            f"ALTER TABLE {self.qualified_table(table)} "
            f"ADD COLUMN {self.quote_identifier(column)} VARCHAR({MAX_VALUE_LENGTH})"
        )

    def _is_duplicate_column_error(self, error: Exception) -> bool:
        return isinstance(error, sqlite3.OperationalError) and "duplicate column name" in str(error)

    def _upsert_document_sql(self) -> str:
        return f"""
            INSERT INTO {self.qualified_table(DOCUMENTS_TABLE)}
                   (document_id, remote_modified, name, last_seen)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (document_id) DO UPDATE SET
                   remote_modified = excluded.remote_modified,
                   name = excluded.name,
                   last_seen = excluded.last_seen
            """

    def _upsert_job_sql(self) -> str:
        return f"""
            INSERT INTO {self.qualified_table(ETL_JOBS_TABLE)}
                   (document_id, sub_table_name, target_table, loaded_modified, content_fingerprint)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (document_id, sub_table_name) DO UPDATE SET
                   target_table = excluded.target_table,
                   loaded_modified = excluded.loaded_modified,
                   content_fingerprint = excluded.content_fingerprint
            """

    @contextmanager
    def _begin(self) -> Iterator[None]:
        self._execute("BEGIN")
        try:
            yield
        except BaseException:
            # Algunos errores (SQLITE_FULL, etc.) ya revierten solos.
            if self._conn.in_transaction:
                self._execute("ROLLBACK")
            raise
        self._execute("COMMIT")


def connect_sqlite(path: str, *, timeout_s: Optional[float] = 30.0) -> sqlite3.Connection:
    """Abre la base SQLite en modo autocommit (el agente controla las transacciones)."""
    return sqlite3.connect(path, timeout=timeout_s, isolation_level=None)
