"""
Logging helpers for command line use.

Library code only ever logs through module loggers; configuring handlers is
left to the application, or to :func:`configure_logging` for the CLI.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"

# aiortc and aioice are chatty at DEBUG; keep them at INFO unless asked.
NOISY_LOGGERS = ("aiortc", "aioice", "websockets")


def configure_logging(
    level: int = logging.INFO,
    format: Optional[str] = None,
    *,
    quiet_dependencies: bool = True,
) -> None:
    """
    Ensure the root logger is configured exactly once.
    """

    if logging.getLogger().handlers:
        # Respect any user provided configuration.
        return

    logging.basicConfig(
        level=level,
        format=format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    if quiet_dependencies and level < logging.INFO:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.INFO)


__all__ = ["DEFAULT_FORMAT", "configure_logging"]
