"""
Cursor del sync incremental.

El cursor se recalcula siempre desde el accounting persistido, nunca desde
memoria: una corrida interrumpida retoma exactamente donde quedó.
"""

from __future__ import annotations

from typing import Iterable, TypeVar

from sheets_etl.etl.accounting import AccountingStore
from sheets_etl.etl.types import EPOCH_WATERMARK, RemoteDocument, Watermark

D = TypeVar("D", bound=RemoteDocument)


def next_watermark(store: AccountingStore) -> Watermark:
    """Mayor (remote_modified, id) conocido, o EPOCH_WATERMARK si el accounting está vacío."""
    return store.greatest_seen_modified() or EPOCH_WATERMARK


def filter_after_watermark(documents: Iterable[D], watermark: Watermark) -> list[D]:
    """
    Deja solo los documentos estrictamente posteriores al cursor.

    La API remota filtra con >=, así que puede devolver el propio documento
    del borde; sin este filtro se re-procesaría en cada corrida.
    """
    return [doc for doc in documents if doc.watermark > watermark]
