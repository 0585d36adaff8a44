"""
Servicio de sincronización Google Sheets -> base de datos.

Diseño (resumen):
- Discover: lee el cursor (modifiedTime, id) desde el accounting, pide a
  Drive los documentos estrictamente posteriores y los registra como vistos.
  No carga filas.
- Load: para los jobs configurados cuyo documento cambió desde la última
  carga, trae la hoja, extrae columnas, calcula fingerprint y carga en una
  transacción. Un job que falla no interrumpe a los demás.
- Verify-oldest: re-confirma el documento visto hace más tiempo; si ya no es
  accesible se reporta (no se borra nada).

Estrategia de idempotencia:
- El cursor se recalcula desde el accounting en cada corrida.
- Recargar una hoja reemplaza exactamente sus filas (linaje por job).
- Si el contenido no cambió, no se tocan filas.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from loguru import logger

from sheets_etl.core.config import Settings
from sheets_etl.etl.accounting import AccountingStore
from sheets_etl.etl.fingerprint import fingerprint
from sheets_etl.etl.job_config import EtlJobConfig
from sheets_etl.etl.loader import STATUS_UNCHANGED, LoadResult
from sheets_etl.etl.rows import RowsOfColumns
from sheets_etl.etl.types import DocumentSource, Watermark
from sheets_etl.etl.watermark import filter_after_watermark, next_watermark
from sheets_etl.infrastructure.database import agent_for_url
from sheets_etl.infrastructure.database.base import DatabaseAgent
from sheets_etl.infrastructure.external.google_sheets.client import GoogleSheetsClient
from sheets_etl.shared.exceptions.base import AppException

LOCK_NAMESPACE = "sheets_etl"


def stable_lock_key(namespace: str, name: str) -> int:
    """
    Genera un lock key reproducible para el advisory lock.
    """
    # hash() no es estable entre procesos; sumatoria simple de bytes.
    raw = (namespace + ":" + name).encode("utf-8")
    return int(sum(raw) % (2**31 - 1))


def fingerprint_context(job: EtlJobConfig) -> list[Any]:
    """Ajustes del job que, si cambian, obligan a recargar aunque la hoja sea igual."""
    return [
        job.target_table,
        [[name, specifier] for name, specifier in job.column_mapping.items()],
        job.header_row,
        job.skip_rows,
    ]


@dataclass(frozen=True)
class DiscoverResult:
    watermark_before: Watermark
    watermark_after: Watermark
    discovered: int


@dataclass(frozen=True)
class JobFailure:
    document_id: str
    sub_table_name: str
    error_code: str
    message: str


@dataclass
class LoadReport:
    loaded: int = 0
    unchanged: int = 0
    skipped: int = 0
    pending: list[tuple[str, str]] = field(default_factory=list)
    failures: list[JobFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class VerifyResult:
    document_id: Optional[str]
    accessible: bool


@dataclass
class RunReport:
    locked_out: bool = False
    discover: Optional[DiscoverResult] = None
    load: Optional[LoadReport] = None
    verify: Optional[VerifyResult] = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and (self.load is None or self.load.ok)


class SheetsToDatabaseSync:
    """
    Orquestador del pipeline.

    Discover, load y verify son re-entrantes: cualquiera puede repetirse tras
    un corte sin perder ni duplicar datos.
    """

    def __init__(
        self,
        *,
        store: AccountingStore,
        source: DocumentSource,
        discover_limit: int = 500,
    ) -> None:
        self._store = store
        self._source = source
        self._discover_limit = discover_limit

    def discover(self, limit: Optional[int] = None) -> DiscoverResult:
        """Registra hasta `limit` documentos nuevos posteriores al cursor."""
        if limit is None:
            limit = self._discover_limit
        if limit < 1:
            raise ValueError(f"limit debe ser >= 1 (recibido {limit})")
        before = next_watermark(self._store)
        logger.info(f"Discover: cursor > ({before.modified}, '{before.document_id}'), limit={limit}")

        remote = self._source.list_documents_modified_since(before.modified, before.document_id, limit)
        documents = sorted(filter_after_watermark(remote, before), key=lambda d: d.watermark)[:limit]

        for doc in documents:
            self._store.mark_document_seen(doc.document_id, doc.modified, doc.name)
            logger.debug(f"Documento visto: '{doc.document_id}' modified={doc.modified}")

        after = next_watermark(self._store)
        logger.info(f"Discover completado. documentos={len(documents)}, cursor=({after.modified}, '{after.document_id}')")
        return DiscoverResult(watermark_before=before, watermark_after=after, discovered=len(documents))

    def load(self, jobs: Sequence[EtlJobConfig]) -> LoadReport:
        """
        Carga los jobs cuyo documento cambió desde la última carga.

        Los errores se capturan por job y se reportan; no abortan al resto.
        """
        report = LoadReport()
        if not jobs:
            return report

        known = self._store.known_document_ids([job.document_id for job in jobs])
        for job in jobs:
            if job.document_id not in known:
                report.pending.append((job.document_id, job.sub_table_name))
        if report.pending:
            logger.info(f"{len(report.pending)} jobs esperan a que discover registre su documento")

        extractable = self._store.filter_extractable(jobs)
        report.skipped = len(jobs) - len(extractable) - len(report.pending)
        logger.info(f"Load: {len(extractable)} de {len(jobs)} jobs por extraer")

        for job in extractable:
            try:
                result = self.load_job(job)
            except AppException as e:
                logger.error(f"Job '{job.document_id}' / '{job.sub_table_name}' falló: {e.message}")
                report.failures.append(JobFailure(job.document_id, job.sub_table_name, e.error_code, e.message))
                continue
            except Exception as e:
                logger.exception(f"Job '{job.document_id}' / '{job.sub_table_name}' falló inesperadamente")
                report.failures.append(JobFailure(job.document_id, job.sub_table_name, "INTERNAL_ERROR", str(e)))
                continue

            if result.status == STATUS_UNCHANGED:
                report.unchanged += 1
            else:
                report.loaded += 1

        logger.info(
            f"Load completado. cargados={report.loaded}, sin_cambios={report.unchanged}, "
            f"omitidos={report.skipped}, pendientes={len(report.pending)}, fallidos={len(report.failures)}"
        )
        return report

    def load_job(self, job: EtlJobConfig) -> LoadResult:
        """Trae la hoja, extrae las columnas configuradas y la carga."""
        logger.info(f"Cargando '{job.document_id}' / '{job.sub_table_name}' -> '{job.target_table}'")
        grid = self._source.get_sub_table_rows(job.document_id, job.sub_table_name)

        # Se resuelven las columnas antes de tocar la base: un encabezado
        # inválido no debe dejar ni una tabla creada.
        sheet = RowsOfColumns(grid)
        indices = sheet.resolve_columns(job.column_specifiers, job.header_row)
        rows = sheet.select_rows(indices, job.skip_rows)
        logger.debug(f"Extraídas {len(rows)} filas x {len(indices)} columnas de {len(sheet)} filas crudas")

        return self._store.commit_load(
            job.document_id,
            job.sub_table_name,
            job.target_table,
            job.output_columns,
            rows,
            fingerprint(grid, context=fingerprint_context(job)),
        )

    def verify_oldest(self) -> VerifyResult:
        """
        Re-confirma el documento visto hace más tiempo.

        Si sigue accesible se refresca su last_seen (rota al siguiente en la
        próxima corrida). El remote_modified guardado no se toca: moverlo
        adelantaría el cursor sobre documentos aún no descubiertos.
        """
        document_id = self._store.oldest_seen_document()
        if document_id is None:
            return VerifyResult(document_id=None, accessible=False)

        remote = self._source.get_document_metadata(document_id)
        if remote is None:
            logger.warning(f"Documento '{document_id}' ya no es accesible (no se elimina)")
            return VerifyResult(document_id=document_id, accessible=False)

        stored = self._store.get_document(document_id)
        remote_modified = stored.remote_modified if stored else remote.modified
        self._store.mark_document_seen(document_id, remote_modified, remote.name)
        logger.info(f"Documento '{document_id}' sigue accesible")
        return VerifyResult(document_id=document_id, accessible=True)

    def run_once(
        self,
        jobs: Sequence[EtlJobConfig],
        *,
        lock_key: int,
        discover: bool = True,
        load: bool = True,
        verify: bool = True,
        discover_limit: Optional[int] = None,
    ) -> RunReport:
        """
        Ejecuta una corrida completa: discover, load y verify-oldest.

        Un error fatal de un paso se registra y los pasos siguientes igual corren.
        """
        self._store.ensure_schema()

        report = RunReport()
        if not self._store.agent.try_advisory_lock(lock_key):
            logger.warning("Sync ya está corriendo (advisory lock ocupado). Saliendo.")
            report.locked_out = True
            return report

        if discover:
            try:
                report.discover = self.discover(discover_limit)
            except AppException as e:
                logger.error(f"Discover falló: {e.message}")
                report.errors.append(f"discover: {e.message}")

        if load:
            report.load = self.load(jobs)

        if verify:
            try:
                report.verify = self.verify_oldest()
            except AppException as e:
                logger.error(f"Verify falló: {e.message}")
                report.errors.append(f"verify: {e.message}")

        return report


def build_from_settings(
    config: Settings,
) -> tuple[SheetsToDatabaseSync, DatabaseAgent, GoogleSheetsClient]:
    """
    Constructor "oficial" del pipeline a partir de la configuración.
    """
    agent = agent_for_url(
        config.DATABASE_URL,
        schema=config.DATABASE_SCHEMA,
        table_prefix=config.TABLE_PREFIX,
        insert_chunk_size=config.INSERT_CHUNK_SIZE,
    )
    client = GoogleSheetsClient.from_service_account_file(
        config.GOOGLE_CREDENTIALS_FILE,
        max_requests_per_second=config.GOOGLE_MAX_REQUESTS_PER_SECOND,
        max_retries=config.GOOGLE_MAX_RETRIES,
        timeout_s=config.GOOGLE_TIMEOUT_S,
    )
    service = SheetsToDatabaseSync(
        store=AccountingStore(agent),
        source=client,
        discover_limit=config.DISCOVER_LIMIT,
    )
    return service, agent, client
