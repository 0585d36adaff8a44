"""
Extracción de filas/columnas desde la grilla cruda de una hoja.
"""

from __future__ import annotations

from typing import Any, Sequence, Union

from sheets_etl.etl.types import ExtractedRow
from sheets_etl.shared.exceptions.domain import (
    ColumnIndexOutOfBoundsError,
    ColumnNotFoundError,
)

ColumnSpecifier = Union[int, str]


class RowsOfColumns:
    """
    Grilla (filas de columnas) de una hoja, posiblemente irregular.

    Google Sheets omite filas y columnas vacías al final, por eso las filas
    pueden tener distinto largo. Los valores se recortan (strip) al construir.
    """

    def __init__(self, values: Sequence[Sequence[Any]]) -> None:
        self._rows: list[list[str]] = [
            ["" if cell is None else str(cell).strip() for cell in row]
            for row in values
        ]

    def __len__(self) -> int:
        return len(self._rows)

    def resolve_columns(
        self,
        specifiers: Sequence[ColumnSpecifier],
        header_row: int = 0,
    ) -> list[int]:
        """
        Traduce especificadores a índices de columna (0-based).

        - int: se usa tal cual, debe caber en el ancho del encabezado
        - str: búsqueda exacta (sin case-folding) en la fila `header_row`
        """
        header = self._rows[header_row] if 0 <= header_row < len(self._rows) else []
        indices: list[int] = []
        for specifier in specifiers:
            if isinstance(specifier, int) and not isinstance(specifier, bool):
                if specifier < 0 or specifier >= len(header):
                    raise ColumnIndexOutOfBoundsError(specifier, len(header))
                indices.append(specifier)
                continue
            try:
                indices.append(header.index(specifier))
            except ValueError:
                raise ColumnNotFoundError(str(specifier), header_row, header) from None
        return indices

    def select_rows(self, column_indices: Sequence[int], skip_rows: int = 1) -> list[ExtractedRow]:
        """
        Retorna las filas después de `skip_rows`, proyectadas a `column_indices`.

        Una fila más corta que un índice pedido produce None en esa celda;
        todas las filas de salida tienen len(column_indices) celdas.
        """
        selected: list[ExtractedRow] = []
        for row in self._rows[max(skip_rows, 0):]:
            selected.append([row[i] if i < len(row) else None for i in column_indices])
        return selected
