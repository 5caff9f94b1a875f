from __future__ import annotations

import logging
import os
import sys
from typing import Optional

DATABASE_URL = os.getenv("CARDFLOW_DATABASE_URL", "sqlite:///./cardflow.db")
STORAGE = os.getenv("CARDFLOW_STORAGE", "memory")  # memory|sql
LOG_LEVEL = os.getenv("CARDFLOW_LOG_LEVEL", "INFO")
MAX_OPEN_BOARDS = int(os.getenv("CARDFLOW_MAX_OPEN_BOARDS", "64"))
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
VERSION = "1.0.0"


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s [cardflow] %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
