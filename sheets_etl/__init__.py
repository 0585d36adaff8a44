"""
Pipeline incremental Google Sheets -> base de datos relacional (SQLite / PostgreSQL).

Diseñado para ejecutarse como job (cron / task scheduler):
- Idempotencia: se puede ejecutar N veces sin duplicar datos.
- Incremental: cursor (modifiedTime, id) persistido en el accounting.
- Cargas atómicas por hoja con linaje por fila.
"""

__version__ = "0.1.0"
