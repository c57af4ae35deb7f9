# etcd_wrapper/app/logging_config.py
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

FORMAT = (
    "%(asctime)s | %(levelname)-7s | %(name)s | "
    "%(filename)s:%(lineno)d | %(funcName)s() | %(message)s"
)
formatter = logging.Formatter(FORMAT)

LOG_FILE_NAME = "wrapper.log"


def _file_handler(path: Path, level=logging.DEBUG) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _stream_handler(level=logging.DEBUG) -> logging.StreamHandler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _attach(logger: logging.Logger, handler: logging.Handler) -> None:
    for h in logger.handlers:
        if type(h) is type(handler) and getattr(h, "baseFilename", None) == getattr(handler, "baseFilename", None):
            return
    logger.addHandler(handler)


def setup_logging(level: Union[str, int] = "INFO", log_dir: Optional[Union[str, Path]] = None) -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handlers = [_stream_handler()]
    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        handlers.append(_file_handler(directory / LOG_FILE_NAME))

    # --- Wrapper ---
    wrapper_parent = logging.getLogger("etcd_wrapper")
    wrapper_parent.setLevel(level)
    for handler in handlers:
        _attach(wrapper_parent, handler)
    wrapper_parent.propagate = False

    # --- Uvicorn ---
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        ul = logging.getLogger(name)
        ul.setLevel(level)
        for handler in handlers:
            _attach(ul, handler)
        ul.propagate = False
