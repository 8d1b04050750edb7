"""Logging configuration for genycloud-tui.

Library modules log through loguru. Logging stays disabled until
``setup_logging`` is called, which the TUI does when ``--log-file`` is given.
The terminal belongs to Textual, so only file sinks are supported.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from loguru import logger

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum log level.
        file: Path of the log file.
        rotation: File rotation policy (e.g. "10 MB", "1 day").
        retention: Number of rotated files to keep.
    """

    file: str
    level: LogLevel = "INFO"
    rotation: str = "10 MB"
    retention: int = 5


def setup_logging(config: LogConfig) -> list[int]:
    """Enable package logging and return the handler ids that were added."""
    logger.enable("genycloud_tui")
    # loguru's default stderr handler (id 0) would draw over the TUI.
    try:
        logger.remove(0)
    except ValueError:
        pass
    handler_id = logger.add(
        config.file,
        level=config.level,
        format=FILE_FORMAT,
        rotation=config.rotation,
        retention=config.retention,
        diagnose=False,
        enqueue=True,
        filter="genycloud_tui",
    )
    return [handler_id]


def teardown_logging(handler_ids: list[int]) -> None:
    for handler_id in handler_ids:
        try:
            logger.remove(handler_id)
        except ValueError:
            pass
    logger.disable("genycloud_tui")
