"""Logging setup: console output in dev, rotating JSON files everywhere."""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from intake_api.core.config import Settings

_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# LogRecord attributes that are not user supplied "extra" fields
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

MAX_BYTES = 5 * 1024 * 1024


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED}


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line, extras merged at the top level."""

    def __init__(self, service: str, version: str):
        super().__init__()
        self.service = service
        self.version = version

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
            "version": self.version,
        }
        entry.update(_extras(record))
        if record.exc_info:
            entry["stack"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _extras(record)
        if extras:
            line += " " + json.dumps(extras, default=str)
        return line


def configure_logging(cfg: Settings) -> None:
    root = logging.getLogger()
    root.setLevel(_LEVELS.get(cfg.log_level, logging.DEBUG))

    # re-configuring (tests, reloads) must not stack handlers
    for handler in list(root.handlers):
        if getattr(handler, "_intake_api", False):
            root.removeHandler(handler)
            handler.close()

    handlers = []
    if not cfg.is_production:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(ConsoleFormatter())
        handlers.append(console)

    if cfg.LOG_TO_FILE:
        cfg.logs_dir.mkdir(parents=True, exist_ok=True)
        json_format = JsonLineFormatter(cfg.APP_NAME, cfg.VERSION)

        error_file = RotatingFileHandler(
            cfg.logs_dir / "error.log", maxBytes=MAX_BYTES, backupCount=3, encoding="utf-8"
        )
        error_file.setLevel(logging.ERROR)
        error_file.setFormatter(json_format)
        handlers.append(error_file)

        combined = RotatingFileHandler(
            cfg.logs_dir / "combined.log", maxBytes=MAX_BYTES, backupCount=5, encoding="utf-8"
        )
        combined.setFormatter(json_format)
        handlers.append(combined)

    for handler in handlers:
        handler._intake_api = True
        root.addHandler(handler)


def log_form_submission(
    logger: logging.Logger,
    form_data: Dict[str, Any],
    result: Dict[str, Any],
    request_id: Optional[str] = None,
) -> None:
    client = form_data.get("fullName") or " ".join(
        p for p in (form_data.get("firstName"), form_data.get("lastName")) if p
    )
    logger.info(
        "Form Submission",
        extra={
            "formType": form_data.get("formType"),
            "clientName": client,
            "email": form_data.get("email"),
            "success": result.get("success"),
            "pdfFile": result.get("filename"),
            "uploadedToDrive": result.get("storage") == "drive",
            "requestId": request_id,
        },
    )
