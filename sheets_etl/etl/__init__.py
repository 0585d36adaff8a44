"""
Pipeline de sincronización one-way: Google Sheets -> base de datos relacional.

Este paquete está diseñado para ejecutarse como job (cron / task scheduler).

Objetivos de diseño:
- Incremental: se apoya en el modifiedTime de Google Drive y un cursor
  (modifiedTime, id) recalculado siempre desde el accounting persistido.
- Idempotencia: recargar una hoja sin cambios no toca filas (fingerprint).
- Atomicidad: cada carga reemplaza las filas de su job en una sola transacción.
"""
