from __future__ import annotations
from rich.logging import RichHandler
import logging


def setup(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="[%(name)s] %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING if level > logging.DEBUG else logging.DEBUG)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
