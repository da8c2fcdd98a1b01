import logging
import os
from logging.config import dictConfig
from typing import Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# httpx logs every request at INFO; keep that out of normal output.
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def configure_logging(level: Optional[str] = None) -> None:
    """Configure logging for the storage package.

    ``level`` overrides ``LUMI_LOG_LEVEL`` for the ``lumi`` loggers; third-party
    loggers stay at WARNING unless ``LUMI_DEBUG_HTTP=1``.
    """
    package_level = (level or os.getenv("LUMI_LOG_LEVEL", "INFO")).upper()
    debug_http = os.getenv("LUMI_DEBUG_HTTP", "0") == "1"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": os.getenv("LUMI_LOG_FORMAT", DEFAULT_LOG_FORMAT),
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "lumi": {"level": package_level},
                "migrate_local_store": {"level": package_level},
                **{
                    name: {"level": "DEBUG" if debug_http else "WARNING"}
                    for name in _QUIET_LOGGERS
                },
            },
            "root": {
                "handlers": ["default"],
                "level": "WARNING",
            },
        }
    )

    if debug_http:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
