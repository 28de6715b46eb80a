"""Logging for shopsched, with two extra levels for scheduling runs.

``-v`` shows what a run changes (placements, reschedules, deletions),
``-vv`` adds the checks behind each decision (machine candidates, slot
scores) and ``-vvv`` also shows calendar walking.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

CHANGES_LEVEL = 25  # Between INFO (20) and WARNING (30)
CHECKS_LEVEL = 15  # Between DEBUG (10) and INFO (20)

logging.addLevelName(CHANGES_LEVEL, "CHANGES")
logging.addLevelName(CHECKS_LEVEL, "CHECKS")

# Indexed by verbosity; higher verbosity counts as the last entry
_LEVELS_BY_VERBOSITY = (logging.ERROR, CHANGES_LEVEL, CHECKS_LEVEL, logging.DEBUG)


class ShopschedLogger(logging.Logger):
    """Logger with one method per verbosity step above errors."""

    def changes(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log a placement or another change to the schedule."""
        if self.isEnabledFor(CHANGES_LEVEL):
            self._log(CHANGES_LEVEL, msg, args, **kwargs)

    def checks(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log a candidate or slot evaluation."""
        if self.isEnabledFor(CHECKS_LEVEL):
            self._log(CHECKS_LEVEL, msg, args, **kwargs)


def get_logger() -> ShopschedLogger:
    """The ``shopsched`` logger; configure it with setup_logger()."""
    logging.setLoggerClass(ShopschedLogger)
    logger = logging.getLogger("shopsched")
    assert isinstance(logger, ShopschedLogger)
    return logger


def level_for_verbosity(verbosity: int) -> int:
    """Logging level for a ``-v`` count (negative counts are silent)."""
    index = min(max(verbosity, 0), len(_LEVELS_BY_VERBOSITY) - 1)
    return _LEVELS_BY_VERBOSITY[index]


def setup_logger(verbosity: int, stream: TextIO | None = None) -> None:
    """Point the logger at a stream with plain messages.

    Can be called again to reconfigure.

    Args:
        verbosity: 0=errors only, 1=changes, 2=checks, 3 or more=debug
        stream: Output stream (default: sys.stderr)
    """
    logger = get_logger()
    logger.handlers.clear()
    logger.setLevel(level_for_verbosity(verbosity))

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.propagate = False


def reset_logger() -> None:
    """Drop handlers and go back to errors only."""
    logger = get_logger()
    logger.handlers.clear()
    logger.setLevel(logging.ERROR)


def debug_enabled() -> bool:
    """Whether calendar-walking detail is being logged."""
    return get_logger().isEnabledFor(logging.DEBUG)
