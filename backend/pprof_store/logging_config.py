import os
import sys
import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Install one stdout handler on the root logger (only once) and set the
    `pprof_store` level from `level` or PPROF_LOG_LEVEL (default INFO).
    """
    lvl_name = (level or os.getenv("PPROF_LOG_LEVEL") or "INFO").upper()
    lvl = getattr(logging, lvl_name, logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=lvl, format=LOG_FORMAT, stream=sys.stdout)
    lg = logging.getLogger("pprof_store")
    lg.setLevel(lvl)
    return lg
