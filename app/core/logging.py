import logging
import sys

from app.core.config import Settings


def setup_logging(settings: Settings) -> None:
    """Configure root logging once for the process.

    DEBUG when settings.debug is set, otherwise settings.log_level.
    """
    level = logging.DEBUG if settings.debug else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
