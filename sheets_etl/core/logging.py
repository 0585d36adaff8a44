"""
Configuracion de sinks de loguru para el job.
"""
import sys

from loguru import logger

from sheets_etl.core.config import Settings


def setup_logging(config: Settings) -> None:
    """
    Reemplaza el sink por defecto de loguru.

    - stderr con el nivel LOG_LEVEL
    - archivo rotado si LOG_FILE esta definido
    """
    logger.remove()
    logger.add(sys.stderr, level=config.LOG_LEVEL)

    if config.LOG_FILE:
        logger.add(
            config.LOG_FILE,
            rotation="500 MB",
            retention="10 days",
            level=config.LOG_LEVEL
        )
