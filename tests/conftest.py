"""
Configuración de fixtures para pytest.
"""
from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from sheets_etl.etl.accounting import AccountingStore
from sheets_etl.etl.types import Grid, RemoteDocument
from sheets_etl.infrastructure.database.sqlite_agent import SqliteAgent
from sheets_etl.shared.exceptions.domain import DocumentNotAccessibleError


class StepClock:
    """Reloj determinista: cada llamada avanza un segundo."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


class FakeDocumentSource:
    """
    DocumentSource en memoria.

    El listado filtra con >= sobre (modifiedTime, id), así que devuelve
    también el documento del borde, como puede pasar con Drive.
    """

    def __init__(self) -> None:
        self.documents: dict[str, RemoteDocument] = {}
        self.grids: dict[tuple[str, str], Grid] = {}
        self.inaccessible: set[str] = set()
        self.list_calls: list[tuple[str, str, int]] = []
        self.row_calls: list[tuple[str, str]] = []

    def add(self, document_id: str, modified: str, name: str = "", sheets: Optional[dict[str, Grid]] = None) -> None:
        self.documents[document_id] = RemoteDocument(document_id, modified, name or document_id)
        for sheet_name, grid in (sheets or {}).items():
            self.grids[(document_id, sheet_name)] = grid

    def list_documents_modified_since(self, since_modified: str, since_id: str, limit: int):
        self.list_calls.append((since_modified, since_id, limit))
        docs = [d for d in self.documents.values() if d.watermark >= (since_modified, since_id)]
        return sorted(docs, key=lambda d: d.watermark)[:limit]

    def get_document_metadata(self, document_id: str):
        if document_id in self.inaccessible:
            return None
        return self.documents.get(document_id)

    def get_sub_table_rows(self, document_id: str, sub_table_name: str) -> Grid:
        self.row_calls.append((document_id, sub_table_name))
        if document_id in self.inaccessible or (document_id, sub_table_name) not in self.grids:
            raise DocumentNotAccessibleError(document_id)
        return self.grids[(document_id, sub_table_name)]


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def sqlite_agent():
    """Agente SQLite sobre una base en memoria, con el accounting creado."""
    agent = SqliteAgent(sqlite3.connect(":memory:"))
    agent.ensure_schema()
    yield agent
    agent.close()


@pytest.fixture
def store(sqlite_agent, clock) -> AccountingStore:
    return AccountingStore(sqlite_agent, clock=clock)


@pytest.fixture
def source() -> FakeDocumentSource:
    return FakeDocumentSource()


def table_rows(agent, table: str) -> list[tuple]:
    """Filas de datos de una tabla destino (sin _rowid), ordenadas por linaje."""
    cursor = agent.connection.execute(
        f'SELECT * FROM "{table}" ORDER BY "_origin_job_id", "_origin_row_index"'
    )
    return [tuple(row[1:]) for row in cursor.fetchall()]


def table_columns(agent, table: str) -> list[str]:
    return [row[1] for row in agent.connection.execute(f'PRAGMA table_info("{table}")').fetchall()]


def table_exists(agent, table: str) -> bool:
    row = agent.connection.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
    ).fetchone()
    return bool(row[0])
