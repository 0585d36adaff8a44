"""
Configuración de jobs (documento + hoja -> tabla destino).

Formato del archivo JSON:

    {
        "$schema": "./config-schema.json",
        "1b33RL2nQJxdaHYxVmkk4lo3K1IKjSD3_ggnokrZCkx8": {
            "2019 Expirations": {
                "targetTable": "certification-course-renewals-2019",
                "columnMapping": {"out1": "in1", "out2": 2},
                "headerRow": 0,
                "skipRows": 1
            }
        }
    }

Este módulo no realiza I/O salvo la lectura del archivo: solo define y valida
la configuración. Se valida al cargar, no al usar.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel, Field, StrictInt, StrictStr, ValidationError, field_validator

from sheets_etl.shared.exceptions.domain import JobConfigError

SCHEMA_KEY = "$schema"


class EtlJobConfig(BaseModel):
    """
    Config de una hoja de Google Sheets -> una tabla destino.

    - column_mapping: nombre de salida -> nombre de columna en el encabezado
      (str, búsqueda exacta) o índice 0-based (int). El orden se conserva.
    - header_row: fila (0-based) donde buscar los nombres de columna
    - skip_rows: filas a saltar antes de los datos (normalmente el encabezado)
    """

    document_id: str = Field(..., min_length=1)
    sub_table_name: str = Field(..., min_length=1)
    target_table: str = Field(..., min_length=1, alias="targetTable")
    column_mapping: dict[str, Union[StrictInt, StrictStr]] = Field(..., alias="columnMapping")
    header_row: int = Field(default=0, ge=0, alias="headerRow")
    skip_rows: int = Field(default=1, ge=0, alias="skipRows")

    @field_validator("target_table")
    @classmethod
    def _target_table_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("targetTable no puede estar vacío")
        return value

    @field_validator("column_mapping")
    @classmethod
    def _mapping_not_empty(cls, value: dict[str, Union[int, str]]) -> dict[str, Union[int, str]]:
        if not value:
            raise ValueError("columnMapping debe tener al menos una columna")
        for output_name, specifier in value.items():
            if isinstance(specifier, int) and specifier < 0:
                raise ValueError(f"índice negativo para '{output_name}': {specifier}")
        return value

    @property
    def output_columns(self) -> list[str]:
        return list(self.column_mapping.keys())

    @property
    def column_specifiers(self) -> list[Union[int, str]]:
        return list(self.column_mapping.values())

    class Config:
        """Configuracion de Pydantic."""
        frozen = True
        populate_by_name = True


def parse_job_configs(data: dict[str, Any]) -> list[EtlJobConfig]:
    """
    Convierte el dict {documento: {hoja: config}} en una lista de EtlJobConfig.

    La clave "$schema" se ignora. Cualquier entrada inválida levanta
    JobConfigError indicando documento y hoja.
    """
    if not isinstance(data, dict):
        raise JobConfigError("La configuración debe ser un objeto JSON {documento: {hoja: config}}")

    configs: list[EtlJobConfig] = []
    for document_id, sheets in data.items():
        if document_id == SCHEMA_KEY:
            continue
        if not isinstance(sheets, dict):
            raise JobConfigError(
                f"El documento '{document_id}' debe mapear nombres de hoja a configuraciones",
                document_id=document_id,
            )
        for sheet_name, raw in sheets.items():
            if not isinstance(raw, dict):
                raise JobConfigError(
                    f"Configuración inválida para '{document_id}' / '{sheet_name}'",
                    document_id=document_id,
                    sub_table_name=sheet_name,
                )
            try:
                configs.append(
                    EtlJobConfig(document_id=document_id, sub_table_name=sheet_name, **raw)
                )
            except ValidationError as e:
                raise JobConfigError(
                    f"Configuración inválida para '{document_id}' / '{sheet_name}': {e}",
                    document_id=document_id,
                    sub_table_name=sheet_name,
                ) from e
    return configs


def load_job_configs(path: Union[str, Path]) -> list[EtlJobConfig]:
    """Lee y valida el archivo JSON de configuración de jobs."""
    config_path = Path(path)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise JobConfigError(f"No existe el archivo de configuración: {config_path}") from e
    except json.JSONDecodeError as e:
        raise JobConfigError(f"JSON inválido en {config_path}: {e}") from e
    return parse_job_configs(data)
