import logging

from .config import Settings


def setup_logging(settings: Settings) -> None:
    """Configure logging for applications using the query layer.

    The format includes timestamp, log level, logger name, and message.
    """
    log_level_name = settings.log_level.upper()
    level = getattr(logging, log_level_name, logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    # SQL statements are logged by sqlalchemy.engine only when echo is requested.
    engine_level = logging.INFO if settings.echo else logging.WARNING
    logging.getLogger("sqlalchemy.engine").setLevel(engine_level)
