"""
Logging setup for the connector process.

Console output plus a size-rotated log file, optionally gzip-compressing
rotated files.
"""
import gzip
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler

from .config import LogSettings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _gzip_namer(name: str) -> str:
    return name + ".gz"


def _gzip_rotator(source: str, dest: str) -> None:
    with open(source, "rb") as f_in, gzip.open(dest, "wb") as f_out:
        shutil.copyfileobj(f_in, f_out)
    os.remove(source)


def setup_logging(settings: LogSettings) -> None:
    """
    Configure root logging from log settings.

    Args:
        settings: Log level, file path and rotation policy.
    """
    settings.file_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        settings.file_path,
        maxBytes=settings.max_size * 1024 * 1024,
        backupCount=settings.max_backups,
        encoding="utf-8",
    )
    if settings.compress:
        file_handler.namer = _gzip_namer
        file_handler.rotator = _gzip_rotator

    logging.basicConfig(
        level=settings.level.upper(),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout),
            file_handler,
        ],
        force=True,
    )
