from __future__ import annotations

import logging

LOG_FORMAT = "%(levelname)s: %(message)s"


def ensure_logging(level: int = logging.INFO) -> None:
    """Configure the root logger once, or re-format handlers installed by a server."""

    formatter = logging.Formatter(LOG_FORMAT)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        root.setLevel(level)
        for handler in root.handlers:
            handler.setFormatter(formatter)
