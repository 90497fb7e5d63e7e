"""Logging setup for the contest services.

Every module logs through ``logging.getLogger("occupy.<module>")``; this module
only configures the root handler and optional per-logger levels.

What each level shows:
- ERROR: unexpected failures in a claim or sweep pass
- WARNING: transient claim failures, rollbacks, feed errors
- INFO: committed claims, expiries, closes, point awards
- DEBUG: every claim attempt, deferred feed snapshots, store commits

Configure via config.yaml (logging.level, logging.format, logging.loggers) or
env (LOGGING_LEVEL, LOGGING_FORMAT).
"""

import logging
from typing import Dict

from occupy.config import LoggingConfig

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

DEFAULT_LEVEL = "INFO"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level(level: str) -> int:
    """Level name to logging constant; unknown names mean INFO."""
    return LEVELS.get(level.upper().strip(), LEVELS[DEFAULT_LEVEL])


class OccupyLogging:
    """Applies LoggingConfig to the root logger and the named occupy.* loggers."""

    def __init__(self, config: LoggingConfig) -> None:
        self.level = _resolve_level(config.level)
        self.format = config.format or DEFAULT_FORMAT
        self.overrides: Dict[str, int] = {
            name: _resolve_level(level) for name, level in (config.loggers or {}).items()
        }

    def setup(self) -> None:
        logging.basicConfig(level=self.level, format=self.format, force=True)
        for name, level in self.overrides.items():
            logging.getLogger(name).setLevel(level)
