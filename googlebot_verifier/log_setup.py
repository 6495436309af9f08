"""Logging setup driven by the ``logging`` config section."""

import logging
from logging.handlers import RotatingFileHandler
from typing import Any, Dict


def setup_logging(config: Dict[str, Any]) -> None:
    log_config = config.get("logging", {})
    level = getattr(logging, str(log_config.get("level", "INFO")).upper(), logging.INFO)
    log_format = log_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handlers = [logging.StreamHandler()]

    log_file = log_config.get("file")
    if log_file:
        handlers.append(
            RotatingFileHandler(
                log_file,
                maxBytes=log_config.get("max_size", 10485760),
                backupCount=log_config.get("backup_count", 5),
                encoding="utf-8",
            )
        )

    logging.basicConfig(level=level, format=log_format, handlers=handlers, force=True)
