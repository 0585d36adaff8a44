"""
Utilidades para manejo de fechas y horas.
"""
from datetime import datetime, timezone


class DateTimeUtils:
    """Clase de utilidades para operaciones con fechas y horas."""

    # Ancho fijo: el orden lexicográfico coincide con el cronológico.
    LAST_SEEN_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

    @staticmethod
    def now_utc() -> datetime:
        """
        Obtiene la fecha y hora actual en UTC.

        Returns:
            datetime: Fecha y hora actual en UTC
        """
        return datetime.now(timezone.utc)

    @staticmethod
    def ensure_utc(dt: datetime) -> datetime:
        """Normaliza un datetime a UTC (aware). Los naive se asumen UTC."""
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    @classmethod
    def to_last_seen_string(cls, dt: datetime) -> str:
        """
        Serializa un datetime al formato de `last_seen` del accounting.

        Args:
            dt: Objeto datetime (naive = UTC)

        Returns:
            str: 'YYYY-MM-DD HH:MM:SS.ffffff' en UTC
        """
        return cls.ensure_utc(dt).strftime(cls.LAST_SEEN_FORMAT)
