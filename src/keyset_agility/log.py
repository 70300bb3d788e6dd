"""
JSON-line logging for services built on keyset_agility.

Library modules log through ``logging.getLogger(__name__)`` and never
configure handlers. ``get_logger`` installs the stdout JSON handler on the
package logger; ``KeysetService.from_settings`` calls it with the configured
level.
"""

import json
import logging
import sys
import time
from typing import Optional


def get_logger(name: str = "keyset_agility", level: Optional[int] = None) -> logging.Logger:
    """JSON-line stdout logger for the keyset_agility package (UTC timestamps)."""
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt=json.dumps({
                "ts": "%(asctime)s",
                "level": "%(levelname)s",
                "name": "%(name)s",
                "msg": "%(message)s",
            }),
            datefmt="%Y-%m-%dT%H:%M:%SZ",
        )
        formatter.converter = time.gmtime
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
