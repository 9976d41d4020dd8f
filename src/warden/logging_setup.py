from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    resolved = getattr(logging, level.upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    # discord.py's gateway chatter drowns out watchlist logs at DEBUG.
    logging.getLogger("discord").setLevel(max(resolved, logging.INFO))
    logging.getLogger("warden").setLevel(resolved)
