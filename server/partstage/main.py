"""Точка сборки хранилища."""

from __future__ import annotations

import logging
from typing import Optional

from .config import Settings, settings
from .logger import init_logger
from .storage import Storage

logger = logging.getLogger(__name__)


def create_storage(config: Optional[Settings] = None) -> Storage:
    config = config or settings
    init_logger(config)
    config.data_dir.mkdir(parents=True, exist_ok=True)
    storage = Storage(config)
    logger.info("Хранилище фрагментов в %s", storage.workspaces.root)
    return storage
