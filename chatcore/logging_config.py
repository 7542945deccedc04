from logging.config import dictConfig

from chatcore.config import get_settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(level: str | None = None):
    """Install a console handler on the root logger."""
    settings = get_settings()
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": LOG_FORMAT,
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {
                "level": (level or settings.log_level).upper(),
                "handlers": ["console"],
            },
            "loggers": {
                # SQL echo is driven by settings.debug on the engine itself
                "sqlalchemy.engine": {"level": "WARNING"},
            },
        }
    )
