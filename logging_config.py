"""
Logging configuration.

Console logging for the API process. LOG_LEVEL sets the root level and
LOG_FORMAT=json switches to single-line JSON records for log shippers.
"""

import logging.config

import config

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "[{levelname}] {asctime} | {name} | {module}.{funcName}:{lineno} | {message}",
            "style": "{",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
        "json": {
            "format": '{{"time": "{asctime}", "level": "{levelname}", "logger": "{name}", "message": "{message}"}}',
            "style": "{",
            "datefmt": "%Y-%m-%dT%H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json" if config.LOG_FORMAT == "json" else "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": config.LOG_LEVEL,
    },
    "loggers": {
        "uvicorn.access": {"level": "WARNING"},
        "pymongo": {"level": "WARNING"},
    },
}


def configure_logging():
    logging.config.dictConfig(LOGGING)
