"""Process-wide logging setup."""

import logging
import re

from signal_trader.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once.

    Safe to call multiple times; subsequent calls only adjust the level.
    """
    level_name = (level or settings.log_level).upper()
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level_name)
        return

    logging.basicConfig(level=level_name, format=LOG_FORMAT)
    # httpx / telegram polling is chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def mask_url(url: str) -> str:
    """Hide credentials in a connection URL before it is logged."""
    return re.sub(r"//[^/@]*@", "//***@", url)
