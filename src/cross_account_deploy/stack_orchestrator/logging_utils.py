"""Logging helpers for the deployment CLI."""

from __future__ import annotations

import logging
from pathlib import Path


class StageFilter(logging.Filter):
    """Keep warnings plus the stage narrative (``XAD:`` lines) in the run log."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if record.levelno >= logging.WARNING:
            return True
        if getattr(record, "narrative", False):
            return True
        return str(record.msg).startswith("XAD:")


def configure_logging(level: int = logging.INFO, log_path: str | None = None) -> None:
    """Configure default logging if no handlers are present."""
    root = logging.getLogger()
    if root.handlers:
        return
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_path:
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.addFilter(StageFilter())
        handlers.append(file_handler)

    # botocore is chatty at INFO when credentials are resolved.
    logging.getLogger("botocore").setLevel(logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
