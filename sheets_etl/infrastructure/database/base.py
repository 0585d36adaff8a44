"""
Agente de base de datos: contrato común para los dialectos soportados.

Tablas de accounting:

TABLE __meta_documents
  * id                (autoincremental, clave)
  * document_id       (id opaco de Google Drive, UNIQUE)
  * remote_modified   (RFC 3339, orden lexicográfico = cronológico)
  * name              (informativo)
  * last_seen         ('YYYY-MM-DD HH:MM:SS.ffffff' UTC, hora local del job)

TABLE __meta_etl_jobs
  * id                      (autoincremental, clave; es el _origin_job_id)
  * document_id             (-> __meta_documents.document_id)
  * sub_table_name          (nombre de la hoja)
  * target_table            (tabla donde viven sus filas)
  * loaded_modified         (remote_modified en la última carga exitosa)
  * content_fingerprint     (hash del contenido en la última carga exitosa)
  * UNIQUE (document_id, sub_table_name)

Cada tabla destino tiene _rowid (clave sintética) y las columnas de linaje
_origin_job_id / _origin_row_index, UNIQUE juntas.

Aquí solo vive el SQL que es idéntico en todos los dialectos. DDL, upserts,
placeholders, quoting, transacciones y detección de errores de "columna
duplicada" los define cada subclase.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

from loguru import logger

from sheets_etl.etl.types import Document, ExtractionJob, MAX_VALUE_LENGTH
from sheets_etl.shared.exceptions.domain import SchemaMigrationError

DOCUMENTS_TABLE = "__meta_documents"
ETL_JOBS_TABLE = "__meta_etl_jobs"

ROWID_COLUMN = "_rowid"
ORIGIN_JOB_COLUMN = "_origin_job_id"
ORIGIN_ROW_COLUMN = "_origin_row_index"
LINEAGE_COLUMNS = (ROWID_COLUMN, ORIGIN_JOB_COLUMN, ORIGIN_ROW_COLUMN)

_JOB_COLUMNS = "id, document_id, sub_table_name, target_table, loaded_modified, content_fingerprint"


class DatabaseAgent(ABC):
    """
    Almacén de datos + accounting sobre una conexión DB-API.

    La conexión se comparte durante toda la corrida y opera en modo
    autocommit; `transaction()` abre el único bloque atómico permitido.
    """

    dialect_name: str = ""
    # Filas por INSERT; se acota además por max_parameters.
    insert_chunk_size: int = 100
    # Máximo de parámetros enlazados por sentencia.
    max_parameters: int = 999
    placeholder: str = "?"

    def __init__(
        self,
        connection: Any,
        *,
        schema: Optional[str] = None,
        table_prefix: str = "",
        insert_chunk_size: Optional[int] = None,
    ) -> None:
        self._conn = connection
        self.schema = schema
        self.table_prefix = table_prefix or ""
        if insert_chunk_size is not None:
            self.insert_chunk_size = insert_chunk_size
        self._in_transaction = False

    @property
    def connection(self) -> Any:
        return self._conn

    # ------------------------------------------------------------------
    # Dialecto
    # ------------------------------------------------------------------

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        ...

    @abstractmethod
    def _accounting_ddl(self) -> list[str]:
        """Sentencias CREATE ... IF NOT EXISTS para el accounting."""

    @abstractmethod
    def _target_table_ddl(self, table: str) -> str:
        """CREATE TABLE IF NOT EXISTS con clave sintética y linaje."""

    @abstractmethod
    def _add_column_sql(self, table: str, column: str) -> str:
        ...

    @abstractmethod
    def _is_duplicate_column_error(self, error: Exception) -> bool:
        ...

    @abstractmethod
    def _upsert_document_sql(self) -> str:
        """Parámetros: document_id, remote_modified, name, last_seen."""

    @abstractmethod
    def _upsert_job_sql(self) -> str:
        """Parámetros: document_id, sub_table_name, target_table, loaded_modified, content_fingerprint."""

    @abstractmethod
    @contextmanager
    def _begin(self) -> Iterator[None]:
        """Bloque BEGIN/COMMIT; ROLLBACK si el bloque levanta excepción."""

    def try_advisory_lock(self, lock_key: int) -> bool:
        """Evita ejecuciones simultáneas del mismo job. Por defecto, siempre concedido."""
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def qualified_table(self, unqualified_name: str) -> str:
        """
        Nombre de tabla con schema y prefijo, ya citado.

        Ojo: con prefijo se pueden generar nombres demasiado largos para el motor.
        """
        quoted = self.quote_identifier(self.table_prefix + unqualified_name)
        if self.schema:
            return f"{self.quote_identifier(self.schema)}.{quoted}"
        return quoted

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> Any:
        if params:
            return self._conn.execute(sql, tuple(params))
        return self._conn.execute(sql)

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        row = self._execute(sql, params).fetchone()
        return tuple(row) if row is not None else None

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        return [tuple(r) for r in self._execute(sql, params).fetchall()]

    def _placeholders(self, count: int) -> str:
        return ", ".join([self.placeholder] * count)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Único bloque atómico de la corrida.

        No se permiten transacciones anidadas ni DDL dentro del bloque.
        """
        if self._in_transaction:
            raise RuntimeError("Ya hay una transacción abierta en esta conexión")
        self._in_transaction = True
        try:
            with self._begin():
                yield
        finally:
            self._in_transaction = False

    # ------------------------------------------------------------------
    # Accounting: esquema
    # ------------------------------------------------------------------

    def ensure_schema(self) -> None:
        """Crea las tablas de accounting si no existen. Llamarlo dos veces no pierde datos."""
        for statement in self._accounting_ddl():
            self._execute(statement)

    # ------------------------------------------------------------------
    # Accounting: documentos
    # ------------------------------------------------------------------

    def upsert_document(self, document_id: str, remote_modified: str, name: str, last_seen: str) -> None:
        self._execute(self._upsert_document_sql(), (document_id, remote_modified, name, last_seen))

    def get_document(self, document_id: str) -> Optional[Document]:
        row = self._fetchone(
            f"""
            SELECT document_id, remote_modified, name, last_seen
              FROM {self.qualified_table(DOCUMENTS_TABLE)}
             WHERE document_id = {self.placeholder}
            """,
            (document_id,),
        )
        return Document(*row) if row else None

    def greatest_modified_and_id(self) -> Optional[tuple[str, str]]:
        row = self._fetchone(
            f"""
            SELECT remote_modified, document_id
              FROM {self.qualified_table(DOCUMENTS_TABLE)}
             ORDER BY remote_modified DESC, document_id DESC
             LIMIT 1
            """
        )
        return (row[0], row[1]) if row else None

    def oldest_seen_document_id(self) -> Optional[str]:
        row = self._fetchone(
            f"""
            SELECT document_id
              FROM {self.qualified_table(DOCUMENTS_TABLE)}
             ORDER BY last_seen ASC, document_id ASC
             LIMIT 1
            """
        )
        return row[0] if row else None

    def document_ids_not_seen_since(self, since: str, limit: int) -> list[str]:
        rows = self._fetchall(
            f"""
            SELECT document_id
              FROM {self.qualified_table(DOCUMENTS_TABLE)}
             WHERE last_seen < {self.placeholder}
             ORDER BY document_id
             LIMIT {int(limit)}
            """,
            (since,),
        )
        return [r[0] for r in rows]

    def known_document_ids(self, document_ids: Sequence[str]) -> set[str]:
        known: set[str] = set()
        for chunk in self._chunks(list(dict.fromkeys(document_ids)), self.max_parameters):
            rows = self._fetchall(
                f"""
                SELECT document_id
                  FROM {self.qualified_table(DOCUMENTS_TABLE)}
                 WHERE document_id IN ({self._placeholders(len(chunk))})
                """,
                chunk,
            )
            known.update(r[0] for r in rows)
        return known

    # ------------------------------------------------------------------
    # Accounting: jobs
    # ------------------------------------------------------------------

    def load_states(self, document_ids: Sequence[str]) -> list[tuple[str, str, Optional[str], Optional[str]]]:
        """
        Estado de carga de los documentos pedidos, en una consulta por lote.

        Retorna (document_id, remote_modified, sub_table_name, loaded_modified);
        sub_table_name/loaded_modified son None si el documento no tiene jobs.
        Con una lista vacía no se ejecuta ninguna consulta (evita `IN ()`).
        """
        states: list[tuple[str, str, Optional[str], Optional[str]]] = []
        unique_ids = list(dict.fromkeys(document_ids))
        for chunk in self._chunks(unique_ids, self.max_parameters):
            states.extend(
                self._fetchall(
                    f"""
                    SELECT d.document_id, d.remote_modified, j.sub_table_name, j.loaded_modified
                      FROM {self.qualified_table(DOCUMENTS_TABLE)} d
                      LEFT JOIN {self.qualified_table(ETL_JOBS_TABLE)} j
                        ON j.document_id = d.document_id
                     WHERE d.document_id IN ({self._placeholders(len(chunk))})
                    """,
                    chunk,
                )
            )
        return states

    def get_job(self, document_id: str, sub_table_name: str) -> Optional[ExtractionJob]:
        row = self._fetchone(
            f"""
            SELECT {_JOB_COLUMNS}
              FROM {self.qualified_table(ETL_JOBS_TABLE)}
             WHERE document_id = {self.placeholder}
               AND sub_table_name = {self.placeholder}
            """,
            (document_id, sub_table_name),
        )
        return ExtractionJob(*row) if row else None

    def upsert_job(
        self,
        document_id: str,
        sub_table_name: str,
        target_table: str,
        loaded_modified: str,
        content_fingerprint: str,
    ) -> int:
        """Inserta o actualiza el job y retorna su id (estable entre recargas)."""
        self._execute(
            self._upsert_job_sql(),
            (document_id, sub_table_name, target_table, loaded_modified, content_fingerprint),
        )
        job = self.get_job(document_id, sub_table_name)
        if job is None:
            raise RuntimeError(f"No se pudo registrar el job '{document_id}' / '{sub_table_name}'")
        return job.job_id

    def update_job_loaded_modified(self, job_id: int, loaded_modified: str) -> None:
        self._execute(
            f"""
            UPDATE {self.qualified_table(ETL_JOBS_TABLE)}
               SET loaded_modified = {self.placeholder}
             WHERE id = {self.placeholder}
            """,
            (loaded_modified, job_id),
        )

    # ------------------------------------------------------------------
    # Tablas destino
    # ------------------------------------------------------------------

    def create_or_widen_table(self, table: str, columns: Sequence[str]) -> list[str]:
        """
        Crea la tabla destino si no existe y agrega las columnas que falten.

        Nunca elimina ni achica columnas. Solo se ignora el error de
        "columna duplicada"; cualquier otro error se propaga.
        Retorna las columnas efectivamente agregadas.
        """
        if self._in_transaction:
            raise RuntimeError("El DDL debe ejecutarse antes de abrir la transacción de carga")

        create_statement = self._target_table_ddl(table)
        try:
            self._execute(create_statement)
        except Exception as e:
            raise SchemaMigrationError(table, create_statement, e) from e

        added: list[str] = []
        for column in columns:
            statement = self._add_column_sql(table, column)
            try:
                self._execute(statement)
            except Exception as e:
                if self._is_duplicate_column_error(e):
                    logger.debug(f"Columna '{column}' ya existe en '{table}'")
                    continue
                raise SchemaMigrationError(table, statement, e) from e
            added.append(column)
        if added:
            logger.info(f"Tabla '{table}': columnas agregadas {added}")
        return added

    def delete_rows_for_job(self, table: str, job_id: int) -> int:
        cursor = self._execute(
            f"""
            DELETE FROM {self.qualified_table(table)}
             WHERE {self.quote_identifier(ORIGIN_JOB_COLUMN)} = {self.placeholder}
            """,
            (job_id,),
        )
        return max(getattr(cursor, "rowcount", 0) or 0, 0)

    def rows_per_batch(self, column_count: int) -> int:
        """Filas por INSERT respetando el límite de parámetros del motor."""
        params_per_row = column_count + 2
        return max(1, min(self.insert_chunk_size, self.max_parameters // params_per_row))

    def insert_row_batch(
        self,
        table: str,
        columns: Sequence[str],
        job_id: int,
        start_index: int,
        rows: Sequence[Sequence[Optional[str]]],
    ) -> int:
        """
        INSERT multi-fila etiquetando cada fila con (job_id, índice 0-based).

        Los valores se truncan a MAX_VALUE_LENGTH.
        """
        if not rows:
            return 0
        quoted_columns = ", ".join(
            self.quote_identifier(c) for c in (ORIGIN_JOB_COLUMN, ORIGIN_ROW_COLUMN, *columns)
        )
        one_row = f"({self._placeholders(len(columns) + 2)})"
        values_sql = ", ".join([one_row] * len(rows))
        params: list[Any] = []
        for offset, row in enumerate(rows):
            params.append(job_id)
            params.append(start_index + offset)
            params.extend(_truncate(v) for v in row)
        self._execute(
            f"INSERT INTO {self.qualified_table(table)} ({quoted_columns}) VALUES {values_sql}",
            params,
        )
        return len(rows)

    @staticmethod
    def _chunks(items: list, size: int) -> Iterator[list]:
        for i in range(0, len(items), size):
            yield items[i:i + size]

    def close(self) -> None:
        self._conn.close()


def _truncate(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value[:MAX_VALUE_LENGTH]
