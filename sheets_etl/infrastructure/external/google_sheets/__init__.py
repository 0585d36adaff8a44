"""
Cliente de Google Drive / Sheets (REST v3 / v4, sin SDKs de discovery).

Solo lectura: lista hojas de cálculo por fecha de modificación y trae los
valores de una hoja. Reintentos, backoff y throttling viven aquí; el resto
del pipeline no reintenta nada.
"""
