from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    data_root: Path
    log_level: int = logging.INFO
    log_to_file: bool = False
    snapshot_queue_size: int = 8
    max_workers: int = 4


def load_settings() -> Settings:
    env_root = os.environ.get("PLATES_DATA_ROOT")
    if env_root:
        root = Path(env_root).expanduser().resolve()
    else:
        root = Path.home() / ".plates_engine"
    level_name = os.environ.get("PLATES_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    log_to_file = os.environ.get("PLATES_LOG_TO_FILE", "").lower() in ("1", "true", "yes")
    return Settings(data_root=root, log_level=level, log_to_file=log_to_file)
