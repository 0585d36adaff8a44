"""
Excepciones relacionadas con la lógica del pipeline ETL.
"""
from typing import Any, Optional

from sheets_etl.shared.exceptions.base import AppException


class EtlException(AppException):
    """Excepción base para errores del pipeline."""

    def __init__(self, message: str, error_code: str = "ETL_ERROR", details=None):
        super().__init__(
            message=message,
            error_code=error_code,
            details=details
        )


class JobConfigError(EtlException):
    """La configuración de un job (hoja -> tabla) no es válida."""

    def __init__(self, message: str, document_id: Optional[str] = None, sub_table_name: Optional[str] = None):
        details = {}
        if document_id is not None:
            details["document_id"] = document_id
        if sub_table_name is not None:
            details["sub_table_name"] = sub_table_name
        super().__init__(
            message=message,
            error_code="JOB_CONFIG_ERROR",
            details=details
        )


class ColumnNotFoundError(EtlException):
    """Excepción cuando una columna pedida por nombre no está en la fila de encabezado."""

    def __init__(self, column: str, header_row: int, header: list[str]):
        super().__init__(
            message=f"Columna requerida no encontrada: '{column}' (fila de encabezado {header_row})",
            error_code="COLUMN_NOT_FOUND",
            details={"column": column, "header_row": header_row, "header": list(header)}
        )


class ColumnIndexOutOfBoundsError(EtlException):
    """Excepción cuando un índice de columna excede el ancho del encabezado."""

    def __init__(self, index: int, width: int):
        super().__init__(
            message=f"Índice de columna {index} fuera de rango (el encabezado tiene {width} columnas)",
            error_code="COLUMN_INDEX_OUT_OF_BOUNDS",
            details={"index": index, "width": width}
        )


class RemoteApiError(EtlException):
    """Error no recuperable de integración con la API remota."""

    def __init__(self, message: str, status_code: Optional[int] = None, error_code: str = "REMOTE_API_ERROR"):
        details = {"status_code": status_code} if status_code is not None else None
        super().__init__(
            message=message,
            error_code=error_code,
            details=details
        )
        self.status_code = status_code


class TransientSourceError(RemoteApiError):
    """La API remota siguió fallando (429/5xx) tras agotar los reintentos."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code="TRANSIENT_SOURCE_FAILURE"
        )


class DocumentNotAccessibleError(EtlException):
    """Un documento visto previamente ya no es accesible desde la API remota."""

    def __init__(self, document_id: str):
        super().__init__(
            message=f"Documento '{document_id}' no accesible",
            error_code="DOCUMENT_NOT_ACCESSIBLE",
            details={"document_id": document_id}
        )


class SchemaMigrationError(EtlException):
    """Falló un DDL por un motivo distinto a 'la columna ya existe'."""

    def __init__(self, table: str, statement: str, cause: Any):
        super().__init__(
            message=f"No se pudo modificar el esquema de '{table}': {cause}",
            error_code="SCHEMA_MIGRATION_ERROR",
            details={"table": table, "statement": statement}
        )


class LoadTransactionError(EtlException):
    """Falló la transacción de carga; el estado previo quedó intacto (rollback)."""

    def __init__(self, document_id: str, sub_table_name: str, cause: Any):
        super().__init__(
            message=(
                f"Carga de '{document_id}' / '{sub_table_name}' revertida: {cause}"
            ),
            error_code="LOAD_TRANSACTION_FAILED",
            details={"document_id": document_id, "sub_table_name": sub_table_name}
        )


class AccountingError(EtlException):
    """Estado de accounting inconsistente con la operación pedida."""

    def __init__(self, message: str, document_id: Optional[str] = None):
        details = {"document_id": document_id} if document_id else None
        super().__init__(
            message=message,
            error_code="ACCOUNTING_ERROR",
            details=details
        )


class DatabaseConfigError(EtlException):
    """DATABASE_URL apunta a un backend no soportado."""

    def __init__(self, url: str):
        # Solo el esquema: la URL completa puede traer credenciales.
        scheme = url.split("://", 1)[0] if "://" in url else url[:20]
        super().__init__(
            message=f"DATABASE_URL no soportada (se espera sqlite:// o postgresql://): {scheme}://...",
            error_code="DATABASE_CONFIG_ERROR",
        )
