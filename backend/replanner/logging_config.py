import logging
import os
from logging.config import dictConfig

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s replanner [%(name)s] %(message)s"


def _env_level(name: str, default: str) -> str:
    value = os.getenv(name, default).upper()
    return value if isinstance(logging.getLevelName(value), int) else default


def configure_logging() -> None:
    """Route replanner and telemetry logs through one stream handler.

    ``REPLANNER_LOG_LEVEL`` sets the service level; third-party loggers stay at
    ``REPLANNER_ROOT_LOG_LEVEL`` (WARNING by default).
    """
    level = _env_level("REPLANNER_LOG_LEVEL", "INFO")
    telemetry_level = "DEBUG" if os.getenv("REPLANNER_DEBUG_TELEMETRY", "0") == "1" else level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": DEFAULT_LOG_FORMAT,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "replanner": {
                    "handlers": ["default"],
                    "level": level,
                    "propagate": False,
                },
                "replanner.telemetry": {
                    "level": telemetry_level,
                },
            },
            "root": {
                "handlers": ["default"],
                "level": _env_level("REPLANNER_ROOT_LOG_LEVEL", "WARNING"),
            },
        }
    )

    if os.getenv("REPLANNER_DEBUG_HTTP", "0") == "1":
        logging.getLogger("uvicorn.access").setLevel(logging.DEBUG)
