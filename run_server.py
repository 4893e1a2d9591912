"""
uvicorn entrypoint for the tradegate API.

Application loggers share uvicorn's handlers so decision, routing and risk
audit lines interleave with access logs in one stream.
"""

import copy
import logging.config
import os
from pathlib import Path
from typing import Any, Dict

import uvicorn
from uvicorn.config import LOGGING_CONFIG

PROJECT_ROOT = Path(__file__).resolve().parent
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
APP_FORMAT = "%(asctime)s | %(levelprefix)s %(name)s | %(message)s"
ACCESS_FORMAT = '%(asctime)s | %(levelprefix)s %(client_addr)s - "%(request_line)s" %(status_code)s'


def build_logging_config(level: str = "INFO") -> Dict[str, Any]:
    logging_config = copy.deepcopy(LOGGING_CONFIG)
    formatters = logging_config["formatters"]
    formatters["default"].update(fmt=APP_FORMAT, datefmt=DATE_FORMAT)
    formatters["access"].update(fmt=ACCESS_FORMAT, datefmt=DATE_FORMAT)
    loggers = logging_config["loggers"]
    loggers[""] = {"handlers": ["default"], "level": level}
    # Audit lines stay visible even when the root level is raised.
    loggers["risk.audit"] = {"handlers": ["default"], "level": "INFO", "propagate": False}
    return logging_config


def main() -> None:
    logging.config.dictConfig(build_logging_config(os.getenv("TRADEGATE_LOG_LEVEL", "INFO").upper()))
    uvicorn.run(
        "services.webapp.main:app",
        host=os.getenv("TRADEGATE_HOST", "0.0.0.0"),
        port=int(os.getenv("TRADEGATE_PORT", "8000")),
        reload=os.getenv("TRADEGATE_RELOAD", "0") == "1",
        reload_dirs=[str(PROJECT_ROOT)],
        reload_excludes=["data/*", "*.json", "*.log"],
        log_config=None,
    )


if __name__ == "__main__":
    main()
