"""
Cliente mínimo de Google Drive v3 + Sheets v4 sobre requests.

Requisitos cubiertos:
- autenticación con service account (google-auth, AuthorizedSession)
- paginación por nextPageToken
- rate-limit/backoff (429, 5xx) con jitter
- throttling explícito (por defecto 1 request/s en promedio)
- listado incremental por modifiedTime
"""

from __future__ import annotations

import random
import time
from typing import Any, Callable, Optional
from urllib.parse import quote

import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account
from loguru import logger

from sheets_etl.etl.types import Grid, RemoteDocument, Watermark
from sheets_etl.shared.exceptions.domain import (
    DocumentNotAccessibleError,
    RemoteApiError,
    TransientSourceError,
)

SCOPES = (
    "https://www.googleapis.com/auth/drive.metadata.readonly",
    "https://www.googleapis.com/auth/spreadsheets.readonly",
)

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
SHEETS_URL = "https://sheets.googleapis.com/v4/spreadsheets"
SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"

# Máximo permitido por files.list
DRIVE_MAX_PAGE_SIZE = 1000

# Drive y Sheets también informan cuota agotada como 403 con estos `reason`.
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})


def build_modified_since_query(modified_time: str) -> str:
    """
    Construye el `q` de Drive para hojas de cálculo modificadas desde `modified_time`.

    - Incluye igualdad (>=): varios archivos pueden compartir el modifiedTime
      del borde. El filtro estricto por (modifiedTime, id) se aplica después.
    """
    escaped = modified_time.replace("\\", "\\\\").replace("'", "\\'")
    return (
        f"mimeType = '{SPREADSHEET_MIME_TYPE}' "
        f"and modifiedTime >= '{escaped}' "
        f"and trashed = false"
    )


def _is_rate_limited(resp: requests.Response) -> bool:
    """True si un 403 es en realidad un rate-limit (error.errors[].reason)."""
    if resp.status_code != 403:
        return False
    try:
        payload = resp.json()
    except ValueError:
        return False
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        return False
    return any(
        isinstance(item, dict) and item.get("reason") in RATE_LIMIT_REASONS
        for item in error.get("errors") or []
    )


def _sheet_range(sheet_name: str) -> str:
    # Sin rango de celdas: toda la hoja. Las comillas simples se duplican (A1 notation).
    return "'" + sheet_name.replace("'", "''") + "'"


class RequestThrottle:
    """
    Limita el promedio de requests por segundo desde que se creó el cliente.

    Estado explícito del cliente: cada instancia lleva su propia cuenta.
    """

    def __init__(
        self,
        max_requests_per_second: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_requests_per_second <= 0:
            raise ValueError("max_requests_per_second debe ser > 0")
        self._interval_s = 1.0 / max_requests_per_second
        self._clock = clock
        self._sleep = sleep
        self._started = clock()
        self._request_count = 0

    @property
    def request_count(self) -> int:
        return self._request_count

    def wait(self) -> float:
        """Duerme lo necesario antes del siguiente request. Retorna los segundos dormidos."""
        elapsed = self._clock() - self._started
        due = self._request_count * self._interval_s
        slept = 0.0
        if due > elapsed:
            slept = due - elapsed
            logger.debug(f"Throttling {slept:.2f}s")
            self._sleep(slept)
        self._request_count += 1
        return slept


class GoogleSheetsClient:
    """
    Cliente HTTP de Google Drive / Sheets. Implementa DocumentSource.

    Importante:
    - No interpreta valores de celda: se devuelven como strings formateados.
    - modifiedTime se maneja como string RFC 3339 (orden lexicográfico).
    """

    def __init__(
        self,
        session: requests.Session,
        *,
        account_name: str = "",
        throttle: Optional[RequestThrottle] = None,
        timeout_s: int = 30,
        max_retries: int = 6,
        min_backoff_s: float = 0.8,
        max_backoff_s: float = 32.0,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self._session = session
        self._account_name = account_name
        self._throttle = throttle or RequestThrottle()
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._sleep = sleep
        self._jitter = jitter

    @classmethod
    def from_service_account_file(
        cls,
        credentials_file: str,
        *,
        max_requests_per_second: float = 1.0,
        max_retries: int = 6,
        timeout_s: int = 30,
    ) -> "GoogleSheetsClient":
        credentials = service_account.Credentials.from_service_account_file(
            credentials_file,
            scopes=list(SCOPES),
        )
        return cls(
            AuthorizedSession(credentials),
            account_name=credentials.service_account_email,
            throttle=RequestThrottle(max_requests_per_second),
            timeout_s=timeout_s,
            max_retries=max_retries,
        )

    @property
    def account_name(self) -> str:
        """Email de la service account: los documentos deben compartirse con ella."""
        return self._account_name

    def list_documents_modified_since(
        self,
        since_modified: str,
        since_id: str,
        limit: int = 500,
    ) -> list[RemoteDocument]:
        """
        Hojas de cálculo con (modifiedTime, id) estrictamente mayor al cursor,
        ordenadas por (modifiedTime, id) ascendente, como máximo `limit`.

        Drive ordena por modifiedTime pero no desempata por id, así que antes de
        recortar se siguen trayendo páginas hasta tener todos los archivos que
        comparten el modifiedTime del último elemento retornado.
        """
        cursor = Watermark(since_modified, since_id)
        params: dict[str, Any] = {
            "q": build_modified_since_query(since_modified),
            "orderBy": "modifiedTime",
            "pageSize": min(max(limit, 1), DRIVE_MAX_PAGE_SIZE),
            "fields": "nextPageToken, files(id, name, modifiedTime)",
        }

        fetched: list[RemoteDocument] = []
        while True:
            payload = self._request_json("GET", DRIVE_FILES_URL, params=params)
            for item in payload.get("files") or []:
                if not item.get("id") or not item.get("modifiedTime"):
                    # Caso raro; preferimos fallar temprano y visible.
                    raise RemoteApiError(f"Drive devolvió un archivo sin id/modifiedTime: {item}")
                fetched.append(
                    RemoteDocument(
                        document_id=item["id"],
                        modified=item["modifiedTime"],
                        name=item.get("name") or "",
                    )
                )

            page_token = payload.get("nextPageToken")
            if not page_token:
                break
            newer = sorted(d.watermark for d in fetched if d.watermark > cursor)
            if len(newer) >= limit and fetched[-1].modified > newer[limit - 1].modified:
                break
            params["pageToken"] = page_token

        documents = sorted((d for d in fetched if d.watermark > cursor), key=lambda d: d.watermark)
        logger.debug(f"Drive: {len(fetched)} archivos leídos, {len(documents)} posteriores al cursor")
        return documents[:limit]

    def get_document_metadata(self, document_id: str) -> Optional[RemoteDocument]:
        """
        Metadata actual del documento, o None si ya no es accesible
        (borrado, en la papelera o sin permisos para la service account).
        """
        try:
            payload = self._request_json(
                "GET",
                f"{DRIVE_FILES_URL}/{quote(document_id, safe='')}",
                params={"fields": "id, name, modifiedTime, trashed"},
            )
        except TransientSourceError:
            # Cuota agotada tras los reintentos: el documento sigue existiendo.
            raise
        except RemoteApiError as e:
            if e.status_code in (403, 404):
                return None
            raise
        if payload.get("trashed"):
            return None
        return RemoteDocument(
            document_id=payload.get("id") or document_id,
            modified=payload["modifiedTime"],
            name=payload.get("name") or "",
        )

    def get_sub_table_rows(self, document_id: str, sub_table_name: str) -> Grid:
        """
        Valores de toda la hoja como filas de columnas (filas irregulares posibles).

        Google omite filas y columnas vacías al final.
        """
        url = (
            f"{SHEETS_URL}/{quote(document_id, safe='')}"
            f"/values/{quote(_sheet_range(sub_table_name), safe='')}"
        )
        try:
            payload = self._request_json(
                "GET",
                url,
                params={"majorDimension": "ROWS", "valueRenderOption": "FORMATTED_VALUE"},
            )
        except RemoteApiError as e:
            if e.status_code == 404:
                raise DocumentNotAccessibleError(document_id) from e
            raise
        return [[str(cell) for cell in row] for row in payload.get("values") or []]

    def get_grid_sheet_titles(self, document_id: str) -> list[str]:
        """Títulos de las hojas de tipo GRID (excluye gráficos, etc.)."""
        payload = self._request_json(
            "GET",
            f"{SHEETS_URL}/{quote(document_id, safe='')}",
            params={"fields": "sheets(properties(title,sheetType))"},
        )
        titles: list[str] = []
        for sheet in payload.get("sheets") or []:
            properties = sheet.get("properties") or {}
            if properties.get("sheetType", "GRID") != "GRID":
                continue
            titles.append(properties.get("title", ""))
        return titles

    def _backoff_seconds(self, attempt: int, retry_after: Optional[str]) -> float:
        if retry_after:
            try:
                return max(float(retry_after), 0.0)
            except ValueError:
                # Retry-After también puede venir como fecha HTTP; usamos exponencial.
                pass
        base = min(self._max_backoff_s, self._min_backoff_s * (2**attempt))
        return base + base * 0.25 * self._jitter()

    def _request_json(self, method: str, url: str, *, params: dict[str, Any]) -> dict[str, Any]:
        """
        Request HTTP con backoff para 429/5xx.

        Estrategia:
        - 429: respeta Retry-After si existe, si no exponencial con jitter.
        - 403 con reason rateLimitExceeded / userRateLimitExceeded: igual que 429.
        - 5xx: exponencial con jitter.
        - Errores de red: se reintentan igual que un 5xx.
        - Resto de 4xx: error inmediato (config/auth mal, sin permisos).
        Agotar los reintentos levanta TransientSourceError.
        """
        for attempt in range(self._max_retries + 1):
            self._throttle.wait()
            try:
                resp = self._session.request(
                    method=method,
                    url=url,
                    params=params,
                    timeout=self._timeout_s,
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt >= self._max_retries:
                    raise TransientSourceError(
                        f"Google API no disponible tras {attempt} reintentos: {e}"
                    ) from e
                sleep_s = self._backoff_seconds(attempt, None)
                logger.warning(f"Google API error de red ({e}); reintento en {sleep_s:.1f}s")
                self._sleep(sleep_s)
                continue

            if 200 <= resp.status_code < 300:
                return resp.json()

            # Errores recuperables
            if resp.status_code == 429 or _is_rate_limited(resp) or 500 <= resp.status_code < 600:
                if attempt >= self._max_retries:
                    raise TransientSourceError(
                        f"Google API error {resp.status_code} tras {attempt} reintentos: {resp.text}",
                        status_code=resp.status_code,
                    )
                sleep_s = self._backoff_seconds(attempt, resp.headers.get("Retry-After"))
                logger.warning(f"Google API {resp.status_code}; reintento en {sleep_s:.1f}s")
                self._sleep(sleep_s)
                continue

            # Errores no recuperables
            raise RemoteApiError(
                f"Google API request falló {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )

        # range(max_retries + 1) siempre retorna o levanta antes de llegar aquí
        raise TransientSourceError("Google API: reintentos agotados")
