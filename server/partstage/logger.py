"""Настройка журналирования."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler

from .config import Settings

logging.captureWarnings(True)

_INITED_FLAG = "_partstage_inited"


def init_logger(settings: Settings) -> logging.Logger:
    """
    Идемпотентная инициализация:
    - всегда пишет в stdout;
    - в файл с ротацией только при settings.log_to_file;
    - уровень берётся из settings.log_level.
    """

    root = logging.getLogger()
    if getattr(root, _INITED_FLAG, False):
        return logging.getLogger(settings.logger_name)

    level = getattr(logging, (settings.log_level or "INFO").upper(), logging.INFO)
    root.setLevel(level)

    text_fmt = "%(asctime)s %(levelname)s %(name)s - %(message)s"
    date_fmt = "%Y-%m-%dT%H:%M:%S%z"
    formatter = logging.Formatter(text_fmt, datefmt=date_fmt)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(level)
    ch.setFormatter(formatter)
    root.addHandler(ch)

    if settings.log_to_file:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            settings.log_dir / settings.log_file_name,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(formatter)
        root.addHandler(fh)

    setattr(root, _INITED_FLAG, True)
    logger = logging.getLogger(settings.logger_name)
    logger.debug("Журналирование инициализировано")
    return logger
