"""Idempotent stderr logging setup for the ``kairos`` logger tree."""

from __future__ import annotations

import logging
import os
import sys

_CONFIGURED = False

LOG_LEVEL_ENV = "KAIROS_LOG_LEVEL"


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, logging.INFO)
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        # getLevelName returns "Level X" for unknown names
        return resolved if isinstance(resolved, int) else logging.INFO
    return level


def setup_logging(level: int | str | None = None) -> None:
    """Route Kairos logs to stderr. Safe to call multiple times.

    ``level`` may be a logging constant or a name such as ``"debug"``; when
    omitted, ``KAIROS_LOG_LEVEL`` is consulted before falling back to INFO.
    """
    global _CONFIGURED  # noqa: PLW0603
    if _CONFIGURED:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )

    logger = logging.getLogger("kairos")
    logger.setLevel(_resolve_level(level))
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True
