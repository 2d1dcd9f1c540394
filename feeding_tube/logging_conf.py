"""Structured logging: JSON files under the home ``logs/`` folder, readable console output."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from pathlib import Path

import structlog
from pythonjsonlogger import jsonlogger

ROOT_LOGGER = "feeding_tube"
SOURCE_LOGGER_PREFIX = f"{ROOT_LOGGER}.source"
APP_LOG_NAME = "feeding_tube.log"
ERROR_LOG_NAME = "error.log"
SOURCE_HANDLER_NAME = "source-file"

_active_files: LogFiles | None = None


@dataclass(slots=True, frozen=True)
class LogFiles:
    """Layout of the log folder: the application log, the error log and one file per source."""

    root: Path

    @property
    def app_log(self) -> Path:
        return self.root / APP_LOG_NAME

    @property
    def error_log(self) -> Path:
        return self.root / ERROR_LOG_NAME

    @property
    def sources_dir(self) -> Path:
        return self.root / "sources"

    def source_log(self, source_id: str) -> Path:
        return self.sources_dir / f"{source_id}.log"

    def available(self) -> list[Path]:
        if not self.root.exists():
            return []
        return sorted(self.root.rglob("*.log"))

    def resolve(self, name: str | None) -> Path:
        """Map a CLI argument onto a log file: empty is the main log, else a file name or a source id."""

        if not name:
            return self.app_log
        direct = self.root / name
        if direct.is_file():
            return direct
        return self.source_log(name)


def _json_formatter() -> logging.Formatter:
    return jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")


def _file_handler(path: Path, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(_json_formatter())
    return handler


def configure_logging(logs_dir: Path, verbose: bool = False) -> LogFiles:
    """Route structlog events into the stdlib ``feeding_tube`` logger tree.

    Files receive JSON lines. The console only gets warnings and errors unless
    ``verbose`` is set, so it does not fight with progress bars. Calling it
    again replaces the handlers, which lets a different home take over.
    """

    global _active_files
    files = LogFiles(Path(logs_dir))
    files.sources_dir.mkdir(parents=True, exist_ok=True)
    level = logging.DEBUG if verbose else logging.INFO

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=structlog.dev.ConsoleRenderer(colors=False))
    )

    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.addHandler(console)
    root.addHandler(_file_handler(files.app_log, level))
    root.addHandler(_file_handler(files.error_log, logging.ERROR))
    root.setLevel(level)
    root.propagate = False

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _active_files = files
    return files


def source_logger(source_id: str) -> structlog.BoundLogger:
    """Logger bound to ``source=source_id``; also writes to the source's own file once logging is configured."""

    name = f"{SOURCE_LOGGER_PREFIX}.{source_id}"
    if _active_files is not None:
        path = str(_active_files.source_log(source_id))
        py_logger = logging.getLogger(name)
        current = [h for h in py_logger.handlers if h.get_name() == SOURCE_HANDLER_NAME]
        if not any(getattr(h, "baseFilename", None) == path for h in current):
            for stale in current:
                py_logger.removeHandler(stale)
                stale.close()
            handler = _file_handler(Path(path), logging.INFO)
            handler.set_name(SOURCE_HANDLER_NAME)
            py_logger.addHandler(handler)
    return structlog.get_logger(name).bind(source=source_id)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.is_file():
        return []
    with path.open("r", encoding="utf-8", errors="replace") as stream:
        return list(deque(stream, maxlen=line_count))


__all__ = ["LogFiles", "configure_logging", "source_logger", "tail_log"]
