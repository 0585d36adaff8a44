"""
Fingerprint de contenido para detectar "el timestamp cambió pero los datos no".
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Optional, Sequence


def fingerprint(raw_grid: Sequence[Sequence[Any]], *, context: Optional[Sequence[Any]] = None) -> str:
    """
    SHA-256 (hex) sobre una serialización canónica de la grilla cruda.

    Se usa solo para comparar igualdad, no como medida de seguridad.

    - raw_grid: valores tal como los devolvió la API (sin strip)
    - context: valores extra que también invalidan la carga si cambian
      (p.ej. el mapeo de columnas configurado)
    """
    payload = {"grid": [list(row) for row in raw_grid]}
    if context is not None:
        payload["context"] = list(context)
    # JSON con separadores fijos: filas irregulares y celdas con comas no
    # pueden producir la misma serialización que otra grilla.
    canonical = json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
