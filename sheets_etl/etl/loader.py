"""
Carga transaccional de una hoja en su tabla destino.

Orden de operaciones:
1) DDL (crear tabla / agregar columnas) ANTES de la transacción: en algunos
   motores el DDL hace commit implícito.
2) Si el fingerprint no cambió, solo se actualiza loaded_modified.
3) Si cambió, en una sola transacción: upsert del job, DELETE de sus filas
   e INSERT por lotes. Cualquier error revierte todo.

Un observador externo ve el estado previo completo o el nuevo completo,
nunca filas a medias.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from loguru import logger

from sheets_etl.etl.identifiers import normalize_column_names
from sheets_etl.etl.types import ExtractedRow
from sheets_etl.infrastructure.database.base import LINEAGE_COLUMNS, DatabaseAgent
from sheets_etl.shared.exceptions.domain import AccountingError, LoadTransactionError

STATUS_LOADED = "loaded"
STATUS_UNCHANGED = "unchanged"


@dataclass(frozen=True)
class LoadResult:
    status: str
    row_count: int
    job_id: int
    columns: tuple[str, ...] = ()


class TransactionalLoader:
    def __init__(self, agent: DatabaseAgent) -> None:
        self._agent = agent

    def load(
        self,
        document_id: str,
        sub_table_name: str,
        target_table: str,
        column_names: Sequence[str],
        rows: Sequence[ExtractedRow],
        fingerprint: str,
    ) -> LoadResult:
        """
        Reemplaza exactamente las filas del job (document_id, sub_table_name).

        El documento debe estar registrado en el accounting: su remote_modified
        actual es lo que queda como loaded_modified.
        """
        agent = self._agent
        columns = normalize_column_names(column_names, reserved=LINEAGE_COLUMNS)

        agent.create_or_widen_table(target_table, columns)

        document = agent.get_document(document_id)
        if document is None:
            raise AccountingError(
                f"El documento '{document_id}' no está registrado; no se puede cargar '{sub_table_name}'",
                document_id=document_id,
            )

        existing = agent.get_job(document_id, sub_table_name)
        if (
            existing is not None
            and existing.content_fingerprint == fingerprint
            and existing.target_table == target_table
        ):
            agent.update_job_loaded_modified(existing.job_id, document.remote_modified)
            logger.info(
                f"'{document_id}' / '{sub_table_name}': contenido sin cambios, "
                f"solo se actualiza loaded_modified={document.remote_modified}"
            )
            return LoadResult(STATUS_UNCHANGED, 0, existing.job_id, tuple(columns))

        try:
            with agent.transaction():
                job_id = agent.upsert_job(
                    document_id,
                    sub_table_name,
                    target_table,
                    document.remote_modified,
                    fingerprint,
                )
                if existing is not None and existing.target_table != target_table:
                    moved = agent.delete_rows_for_job(existing.target_table, job_id)
                    logger.info(
                        f"'{document_id}' / '{sub_table_name}': tabla destino cambió "
                        f"'{existing.target_table}' -> '{target_table}' ({moved} filas removidas)"
                    )
                deleted = agent.delete_rows_for_job(target_table, job_id)
                inserted = self._insert_rows(target_table, columns, job_id, rows)
        except Exception as e:
            logger.error(f"Carga de '{document_id}' / '{sub_table_name}' revertida: {e}")
            raise LoadTransactionError(document_id, sub_table_name, e) from e

        logger.success(
            f"'{document_id}' / '{sub_table_name}' -> '{target_table}': "
            f"{deleted} filas borradas, {inserted} insertadas"
        )
        return LoadResult(STATUS_LOADED, inserted, job_id, tuple(columns))

    def _insert_rows(
        self,
        table: str,
        columns: list[str],
        job_id: int,
        rows: Sequence[ExtractedRow],
    ) -> int:
        batch_size = self._agent.rows_per_batch(len(columns))
        inserted = 0
        for start in range(0, len(rows), batch_size):
            batch = [_fixed_width(row, len(columns)) for row in rows[start:start + batch_size]]
            inserted += self._agent.insert_row_batch(table, columns, job_id, start, batch)
            logger.debug(f"Lote insertado en '{table}': filas {start}..{start + len(batch) - 1}")
        return inserted


def _fixed_width(row: Sequence[Optional[str]], width: int) -> ExtractedRow:
    """Rellena con None o recorta para que la fila calce con las columnas."""
    values = list(row[:width])
    return values + [None] * (width - len(values))
