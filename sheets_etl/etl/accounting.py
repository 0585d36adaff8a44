"""
Accounting del pipeline: qué documentos se vieron y qué se cargó.

Es la única fuente de verdad para el cursor y para decidir qué hojas hay
que volver a extraer. El SQL concreto vive en el agente de cada dialecto.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Sequence, TypeVar

from loguru import logger

from sheets_etl.etl.loader import LoadResult, TransactionalLoader
from sheets_etl.etl.types import Document, ExtractedRow, ExtractionJob, JobKey, Watermark
from sheets_etl.infrastructure.database.base import DatabaseAgent
from sheets_etl.shared.utils.datetime_utils import DateTimeUtils

J = TypeVar("J", bound=JobKey)


class AccountingStore:
    def __init__(
        self,
        agent: DatabaseAgent,
        *,
        clock: Callable[[], datetime] = DateTimeUtils.now_utc,
    ) -> None:
        self._agent = agent
        self._clock = clock
        self._loader = TransactionalLoader(agent)

    @property
    def agent(self) -> DatabaseAgent:
        return self._agent

    def now(self) -> str:
        """Hora local del job en el formato de `last_seen`."""
        return DateTimeUtils.to_last_seen_string(self._clock())

    def ensure_schema(self) -> None:
        """Idempotente: seguro de llamar en cada arranque del proceso."""
        self._agent.ensure_schema()

    def mark_document_seen(self, document_id: str, remote_modified: str, name: str = "") -> None:
        """
        Registra que el documento es accesible (upsert en una sola sentencia).

        Actualiza remote_modified, name y last_seen si ya existía.
        """
        self._agent.upsert_document(document_id, remote_modified, name or "", self.now())

    def get_document(self, document_id: str) -> Optional[Document]:
        return self._agent.get_document(document_id)

    def greatest_seen_modified(self) -> Optional[Watermark]:
        """Mayor (remote_modified, document_id) conocido, o None si no hay documentos."""
        row = self._agent.greatest_modified_and_id()
        return Watermark(*row) if row else None

    def oldest_seen_document(self) -> Optional[str]:
        """Documento con el last_seen más antiguo (siguiente a re-verificar)."""
        return self._agent.oldest_seen_document_id()

    def documents_not_seen_since(self, since: datetime, limit: int = 100) -> list[str]:
        """Documentos no confirmados desde `since`, ordenados por id."""
        return self._agent.document_ids_not_seen_since(DateTimeUtils.to_last_seen_string(since), limit)

    def known_document_ids(self, document_ids: Sequence[str]) -> set[str]:
        if not document_ids:
            return set()
        return self._agent.known_document_ids(document_ids)

    def get_job(self, document_id: str, sub_table_name: str) -> Optional[ExtractionJob]:
        """Estado de carga de una hoja (incluye la tabla destino), o None si nunca se cargó."""
        return self._agent.get_job(document_id, sub_table_name)

    def filter_extractable(self, candidate_jobs: Sequence[J]) -> list[J]:
        """
        Subsecuencia de `candidate_jobs` que hay que (re)extraer.

        Un job es extraíble si su documento es conocido y no tiene job
        registrado, o si el remote_modified actual del documento difiere del
        loaded_modified del job. Los documentos nunca vistos se omiten: no hay
        contra qué comparar.

        Se resuelve con una consulta por lote de documentos, nunca una por job.
        """
        if not candidate_jobs:
            return []

        states = self._agent.load_states([job.document_id for job in candidate_jobs])
        known: dict[str, str] = {}
        up_to_date: set[tuple[str, str]] = set()
        for document_id, remote_modified, sub_table_name, loaded_modified in states:
            known[document_id] = remote_modified
            if sub_table_name is not None and loaded_modified == remote_modified:
                up_to_date.add((document_id, sub_table_name))

        extractable: list[J] = []
        for job in candidate_jobs:
            if job.document_id not in known:
                logger.debug(f"Documento '{job.document_id}' aún no registrado; se omite")
                continue
            if (job.document_id, job.sub_table_name) in up_to_date:
                continue
            extractable.append(job)
        return extractable

    def commit_load(
        self,
        document_id: str,
        sub_table_name: str,
        target_table: str,
        column_names: Sequence[str],
        rows: Sequence[ExtractedRow],
        fingerprint: str,
    ) -> LoadResult:
        """Reemplaza las filas de la hoja y su accounting (ver TransactionalLoader.load)."""
        return self._loader.load(document_id, sub_table_name, target_table, column_names, rows, fingerprint)
