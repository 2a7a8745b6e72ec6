"""Logging setup and the debug response dump."""

from __future__ import annotations

import datetime
import logging
from pathlib import Path

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)


def daily_log_path(log_dir: Path, day: datetime.date | None = None) -> Path:
    day = day or datetime.date.today()
    return log_dir / f"server_{day.isoformat()}.log"


def setup_logging(debug: bool = False, log_dir: Path | None = None) -> None:
    """Configure the root logger: console always, a daily file when ``log_dir`` is set."""
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(daily_log_path(log_dir), encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # google-genai and httpx are chatty at DEBUG
    for name in ("httpx", "httpcore", "google_genai"):
        logging.getLogger(name).setLevel(logging.WARNING)


def write_debug_response(path: Path, text: str) -> None:
    """Overwrite ``path`` with the last response text. Failures are only logged."""
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        logger.warning("Could not write debug response to %s: %s", path, e)
