import logging
import logging.config
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("IOTFLEET_LOG_FILE", "/tmp/iotfleet.log")

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)-6s %(name)8s:%(lineno)d %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": sys.stdout,
        },
        "file": {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": LOG_FILE,
            "mode": "a",
            "delay": True,
        },
    },
    "loggers": {
        "iotfleet": {
            "level": LOG_LEVEL,
            "handlers": ["console", "file"],
            "propagate": False, # Don't pass 'iotfleet' logs up to the root logger
        },
        # One line per request from thousands of nodes is too much
        "httpx": {
            "level": "WARNING",
            "handlers": ["console", "file"],
            "propagate": False,
        },
        "uvicorn.access": {
             "level": "WARNING",
             "handlers": ["console", "file"],
             "propagate": False,
        },
    },
    # Other libraries only reach the console
    "root": {
        "level": "WARNING",
        "handlers": ["console"],
    },
}

def setup_logging(level: str | None = None):
    """ Apply the logging configuration. """
    logging.config.dictConfig(LOGGING_CONFIG)
    if level:
        logging.getLogger("iotfleet").setLevel(level.upper())
    os.environ.setdefault("PYTHONUNBUFFERED", "1")
