"""
Tipos y utilidades puras para el pipeline Google Sheets -> base de datos.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Optional, Protocol, Sequence

# Valores de celda más largos se truncan antes de guardarse.
MAX_VALUE_LENGTH = 100

Grid = list[list[str]]
ExtractedRow = list[Optional[str]]


class Watermark(NamedTuple):
    """
    Cursor del sync: par (modifiedTime, id) con orden lexicográfico.

    Al ser NamedTuple, la comparación de tuplas de Python es exactamente
    el orden que usa el cursor.
    """

    modified: str
    document_id: str


# Antes de que existiera Google Drive; el id vacío es el menor posible.
EPOCH_WATERMARK = Watermark(modified="2001-01-01T00:00:00Z", document_id="")


@dataclass(frozen=True)
class RemoteDocument:
    """Documento tal como lo reporta la API remota."""

    document_id: str
    modified: str
    name: str = ""

    @property
    def watermark(self) -> Watermark:
        return Watermark(self.modified, self.document_id)


@dataclass(frozen=True)
class Document:
    """Documento registrado en el accounting."""

    document_id: str
    remote_modified: str
    name: str
    last_seen: str


@dataclass(frozen=True)
class ExtractionJob:
    """
    Accounting de un par (documento, hoja) cargado.

    - loaded_modified: remote_modified del documento en la última carga exitosa
    - content_fingerprint: hash del contenido en la última carga exitosa
    """

    job_id: int
    document_id: str
    sub_table_name: str
    target_table: str
    loaded_modified: str
    content_fingerprint: str


class JobKey(Protocol):
    """Cualquier descriptor de job con documento y hoja."""

    document_id: str
    sub_table_name: str


class DocumentSource(Protocol):
    """
    Colaborador remoto (Google Drive / Sheets).

    Reintentos, backoff y throttling son responsabilidad de la implementación.
    """

    def list_documents_modified_since(
        self, since_modified: str, since_id: str, limit: int
    ) -> Sequence[RemoteDocument]:
        ...

    def get_document_metadata(self, document_id: str) -> Optional[RemoteDocument]:
        ...

    def get_sub_table_rows(self, document_id: str, sub_table_name: str) -> Grid:
        ...
