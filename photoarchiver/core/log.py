# photoarchiver/core/log.py
from __future__ import annotations

import hashlib
import json
import logging
import logging.handlers
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOGGER = logging.getLogger("photoarchiver")


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


class ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter that keeps per-call extra= (file_token) next to the bound context."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def run_logger(run_id: str, command: str) -> ContextAdapter:
    """Attach run_id + command to every log record of one CLI run."""
    return ContextAdapter(LOGGER, {"run_id": run_id, "command": command})


def file_token_for(p) -> str:
    """Short stable token for grepping all lines about one file."""
    return hashlib.sha1(str(p).encode("utf-8", "ignore")).hexdigest()[:8]


class EnsureContext(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "command"):
            record.command = "-"
        if not hasattr(record, "run_id"):
            record.run_id = "-"
        # Default file_token to run_id unless the log call overrides it
        if not hasattr(record, "file_token"):
            record.file_token = record.run_id
        return True


class BriefFormatter(logging.Formatter):
    """Message only; tracebacks stay in the log file."""

    def format(self, record: logging.LogRecord) -> str:
        brief = logging.makeLogRecord(record.__dict__)
        brief.exc_info = None
        brief.exc_text = None
        brief.stack_info = None
        return super().format(brief)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "msg": record.getMessage(),
            "name": record.name,
            "command": getattr(record, "command", None),
            "run_id": getattr(record, "run_id", None),
            "file_token": getattr(record, "file_token", None),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(logs_dir: Optional[Path], verbose: int = 0, quiet: bool = False,
                  log_level: Optional[str] = None, json_logs: bool = False) -> logging.Logger:
    """
    Console/File matrix:
      - -q:   console = silent;             file = INFO+
      - none: console = INFO+, no traces;   file = INFO+
      - -v:   console = INFO+ with traces;  file = INFO+
      - -vv:  console = DEBUG;              file = DEBUG
      - --log-level=X: both console & file use X (no special filters)
    Failed files reach the default console as one line each; the
    "Failed to process" tracebacks are only printed with -v or in the file.
    """
    logger = LOGGER
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    # Decide levels & console format
    brief = False
    if log_level:
        console_level = getattr(logging, log_level.upper())
        file_level = console_level
    elif quiet:
        console_level = logging.CRITICAL  # prints nothing (we don't emit CRITICAL)
        file_level = logging.INFO
    elif verbose >= 2:
        console_level = logging.DEBUG
        file_level = logging.DEBUG
    elif verbose >= 1:
        console_level = logging.INFO
        file_level = logging.INFO
    else:
        console_level = logging.INFO
        file_level = logging.INFO
        brief = True

    # Console handler (human format)
    ch = logging.StreamHandler()
    ch.setLevel(console_level)
    ch.addFilter(EnsureContext())
    ch.setFormatter(BriefFormatter("%(message)s") if brief else logging.Formatter("%(message)s"))
    logger.addHandler(ch)

    if logs_dir is None:
        return logger

    # File handler (rotating)
    logs_dir = Path(logs_dir).expanduser()
    logs_dir.mkdir(parents=True, exist_ok=True)
    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_path = logs_dir / f"photoarchiver-{ts}.log"

    fh = logging.handlers.TimedRotatingFileHandler(log_path, when="midnight", backupCount=14, encoding="utf-8")
    fh.setLevel(file_level)
    fh.addFilter(EnsureContext())
    if json_logs:
        fh.setFormatter(JsonFormatter())
    else:
        fh.setFormatter(logging.Formatter(
            "%(asctime)sZ [%(levelname)s] [%(command)s:%(file_token)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        ))
    logger.addHandler(fh)

    logger.debug("Log file: %s", log_path)
    return logger
