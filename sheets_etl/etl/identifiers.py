"""
Normalización de encabezados de hoja a nombres de columna SQL.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable, Sequence

# Límite de PostgreSQL (NAMEDATALEN - 1); SQLite no tiene límite práctico.
MAX_IDENTIFIER_LENGTH = 63

_RESERVED_PATTERN = re.compile(r"^col_[0-9]+$")
_WHITESPACE = re.compile(r"\s+")
_UNSAFE_CHARS = re.compile(r"[^a-z0-9_]")


def _to_ascii(label: str) -> str:
    # NFKD separa los diacríticos ('é' -> 'e' + U+0301); lo que no tenga
    # equivalente ASCII se descarta.
    decomposed = unicodedata.normalize("NFKD", label)
    return decomposed.encode("ascii", "ignore").decode("ascii")


def normalize_identifier(label: str) -> str:
    """
    Normaliza una etiqueta individual (sin resolver colisiones).

    Puede devolver '' si la etiqueta no tiene ningún carácter utilizable.
    """
    column = _to_ascii(label).lower().strip()
    column = _WHITESPACE.sub("_", column)
    column = _UNSAFE_CHARS.sub("", column)
    if not column:
        return ""
    if not (column[0].isalpha() or column[0] == "_"):
        column = "_" + column
    return column[:MAX_IDENTIFIER_LENGTH]


def normalize_column_names(
    labels: Sequence[str],
    reserved: Iterable[str] = (),
) -> list[str]:
    """
    Convierte etiquetas arbitrarias en nombres de columna únicos y seguros.

    Reglas:
    - solo [a-z0-9_], empezando por letra o '_'
    - caracteres no ASCII se transliteran o se descartan
    - si el resultado queda vacío, choca con uno anterior, con el patrón
      reservado col_<n> o con un nombre de `reserved` (columnas técnicas),
      se reemplaza por col_<posición 1-based>

    Nunca falla: toda entrada produce una salida.
    """
    reserved_names = set(reserved)
    result: list[str] = []
    used: set[str] = set()
    for index, label in enumerate(labels):
        column = normalize_identifier(label)
        if (
            not column
            or column in used
            or column in reserved_names
            or _RESERVED_PATTERN.match(column)
        ):
            column = f"col_{index + 1}"
        used.add(column)
        result.append(column)
    return result
