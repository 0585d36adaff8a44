"""
Agentes de base de datos (un dialecto por backend) y su factory.
"""
from __future__ import annotations

from typing import Optional

from sheets_etl.infrastructure.database.base import DatabaseAgent
from sheets_etl.shared.exceptions.domain import DatabaseConfigError


def sqlite_path_from_url(url: str) -> str:
    """
    sqlite:///relativo.db -> relativo.db
    sqlite:////abs/ruta.db -> /abs/ruta.db
    sqlite:// o sqlite:///:memory: -> :memory:
    """
    rest = url.split("://", 1)[1] if "://" in url else ""
    if rest in ("", "/", "/:memory:", ":memory:"):
        return ":memory:"
    return rest[1:] if rest.startswith("/") else rest


def agent_for_url(
    url: str,
    *,
    schema: Optional[str] = None,
    table_prefix: str = "",
    insert_chunk_size: Optional[int] = None,
) -> DatabaseAgent:
    """
    Abre la conexión y retorna el agente del dialecto que corresponde a la URL.
    """
    scheme = url.split("://", 1)[0].lower() if "://" in url else ""
    options = dict(schema=schema, table_prefix=table_prefix, insert_chunk_size=insert_chunk_size)

    if scheme.startswith("sqlite"):
        from sheets_etl.infrastructure.database.sqlite_agent import SqliteAgent, connect_sqlite

        return SqliteAgent(connect_sqlite(sqlite_path_from_url(url)), **options)

    if scheme.startswith("postgres"):
        # Import diferido: psycopg solo es necesario con destino Postgres.
        from sheets_etl.infrastructure.database.postgres_agent import (
            PostgresAgent,
            connect_postgres,
            normalize_psycopg_dsn,
        )

        return PostgresAgent(connect_postgres(normalize_psycopg_dsn(url)), **options)

    raise DatabaseConfigError(url)
