"""
CLI: Google Sheets -> base de datos (one-way, incremental).

Uso recomendado:
  - Ejecutar como job (cron/systemd timer), p.ej. cada 5 minutos.
  - Cada corrida descubre documentos nuevos, carga las hojas configuradas que
    cambiaron y re-verifica el documento visto hace más tiempo.
  - Dos corridas sobre el mismo destino no se pisan: Postgres usa
    pg_try_advisory_lock y SQLite un archivo `<base>.<lock>.lock` junto a la base.

Variables de entorno (o .env):
  - DATABASE_URL (sqlite:///ruta.db o postgresql://...)
  - GOOGLE_CREDENTIALS_FILE (JSON de la service account)
  - ETL_CONFIG_FILE (JSON de jobs)

Ejecución:
  sheets-etl
  sheets-etl --discover-only --limit 100
  sheets-etl --load-only --config etl-config.json
  sheets-etl --account
  sheets-etl --list-sheets 1b33RL2nQJxdaHYxVmkk4lo3K1IKjSD3_ggnokrZCkx8
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv
from loguru import logger

from sheets_etl.core.config import Settings
from sheets_etl.core.logging import setup_logging
from sheets_etl.etl.job_config import EtlJobConfig, load_job_configs
from sheets_etl.etl.sync_service import LOCK_NAMESPACE, build_from_settings, stable_lock_key
from sheets_etl.infrastructure.external.google_sheets.client import GoogleSheetsClient
from sheets_etl.shared.exceptions.base import AppException


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"debe ser >= 1 (recibido {value})")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sheets-etl", description="Google Sheets -> base de datos")
    parser.add_argument("--config", help="Archivo JSON de jobs (por defecto ETL_CONFIG_FILE).")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--discover-only", action="store_true", help="Solo registra documentos nuevos.")
    mode.add_argument("--load-only", action="store_true", help="Solo carga hojas de documentos ya registrados.")
    parser.add_argument("--no-verify", action="store_true", help="No re-verifica el documento más antiguo.")
    parser.add_argument("--limit", type=_positive_int, help="Máximo de documentos por discover (por defecto DISCOVER_LIMIT).")
    parser.add_argument(
        "--account",
        action="store_true",
        help="Imprime el email de la service account (compartir los documentos con él) y sale.",
    )
    parser.add_argument(
        "--list-sheets",
        metavar="DOCUMENT_ID",
        help="Imprime las hojas de tipo GRID del documento y sale.",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    # Cargar variables desde .env si existe (no pisa variables ya definidas).
    load_dotenv(Path.cwd() / ".env", override=False)
    config = Settings()
    setup_logging(config)

    if args.account or args.list_sheets:
        client = GoogleSheetsClient.from_service_account_file(
            config.GOOGLE_CREDENTIALS_FILE,
            max_requests_per_second=config.GOOGLE_MAX_REQUESTS_PER_SECOND,
            max_retries=config.GOOGLE_MAX_RETRIES,
            timeout_s=config.GOOGLE_TIMEOUT_S,
        )
        if args.account:
            print(client.account_name)
        if args.list_sheets:
            for title in client.get_grid_sheet_titles(args.list_sheets):
                print(title)
        return 0

    try:
        jobs: list[EtlJobConfig] = []
        if not args.discover_only:
            jobs = load_job_configs(args.config or config.ETL_CONFIG_FILE)
            logger.info(f"{len(jobs)} jobs configurados")

        service, agent, _client = build_from_settings(config)
    except AppException as e:
        logger.error(f"{e.error_code}: {e.message}")
        return 2

    # Un lock por conjunto de tablas (schema + prefijo).
    lock_key = stable_lock_key(LOCK_NAMESPACE, f"{config.DATABASE_SCHEMA or ''}.{config.TABLE_PREFIX}")

    logger.info("Iniciando Google Sheets -> base de datos sync...")
    try:
        report = service.run_once(
            jobs,
            lock_key=lock_key,
            discover=not args.load_only,
            load=not args.discover_only,
            verify=not args.no_verify,
            discover_limit=args.limit,
        )
    finally:
        agent.close()

    if report.locked_out:
        return 0

    if report.load is not None:
        for failure in report.load.failures:
            logger.error(
                f"FALLÓ '{failure.document_id}' / '{failure.sub_table_name}': "
                f"[{failure.error_code}] {failure.message}"
            )
    if report.verify is not None and report.verify.document_id and not report.verify.accessible:
        logger.warning(f"Documento no accesible: '{report.verify.document_id}'")

    if not report.ok:
        return 1
    logger.success("Sync OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
