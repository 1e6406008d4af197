"""
Root logger setup shared by the relay process and uvicorn.

``relay.main`` starts uvicorn with ``log_config=None``, so access and error
logs from the server land on the same stdout handler as the relay's own
offer/answer/ICE messages.  Levels may be given by name as they appear in
the YAML profiles (``log_level: DEBUG``).
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Union

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"


def resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def configure_logging(level: Union[int, str] = logging.INFO, format: Optional[str] = None) -> None:
    """
    Ensure the root logger is configured exactly once.
    """

    if logging.getLogger().handlers:
        # Respect any user provided configuration.
        return

    logging.basicConfig(
        level=resolve_level(level),
        format=format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
