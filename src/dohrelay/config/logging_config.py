"""Root logger setup for the proxy: stderr, file and syslog outputs.

Every line carries a bracketed lowercase level tag (``[info]``, ``[warn]``);
stderr and file lines are prefixed with a UTC ISO-8601 timestamp, syslog lines
are not since syslog stamps them itself.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

LINE_FORMAT = "%(asctime)s %(level_tag)s %(name)s: %(message)s"
DEFAULT_SYSLOG_ADDRESS = "/dev/log"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAG_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "crit",
}

# Client libraries that log every upstream request; only shown at debug level.
_CHATTY_LOGGERS = ("httpx", "httpcore")


def level_tag(levelno: int) -> str:
    return "[%s]" % _TAG_NAMES.get(levelno, f"lvl{levelno}")


class SyslogFormatter(logging.Formatter):
    """Tag and logger name only; the syslog daemon adds the timestamp."""

    def format(self, record):
        record.level_tag = level_tag(record.levelno)
        return f"{record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """Formatter exposing ``%(level_tag)s`` and rendering asctime in UTC."""

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        return stamp.strftime(datefmt or "%Y-%m-%dT%H:%M:%SZ")

    def format(self, record):
        record.level_tag = level_tag(record.levelno)
        return super().format(record)


def resolve_level(name: Any) -> int:
    """Brief: Map debug/info/warn/error/crit (any case) to a logging level; info otherwise."""
    return _LEVELS.get(str(name or "info").lower(), logging.INFO)


def _file_handler(file_path: str, formatter: logging.Formatter) -> logging.Handler:
    path = os.path.abspath(os.path.expanduser(file_path))
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def _syslog_handler(syslog_cfg: Any) -> logging.Handler:
    """
    Brief: Build a SysLogHandler from ``True`` or an address/facility mapping.

    Inputs:
      - syslog_cfg: True for defaults, or dict with ``address`` (socket path,
        or [host, port]) and ``facility`` (e.g. "LOCAL0")

    Outputs:
      - logging.Handler using SyslogFormatter

    Raises:
      - OSError / ValueError when the syslog endpoint is unusable
    """
    syslog_cls = logging.handlers.SysLogHandler
    opts = syslog_cfg if isinstance(syslog_cfg, dict) else {}
    address = opts.get("address", DEFAULT_SYSLOG_ADDRESS)
    if isinstance(address, list):
        address = tuple(address)
    facility_name = str(opts.get("facility", "USER")).upper()
    facility = getattr(syslog_cls, f"LOG_{facility_name}", syslog_cls.LOG_USER)

    handler = syslog_cls(address=address, facility=facility)
    handler.setFormatter(SyslogFormatter())
    return handler


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Replace the root logger's handlers according to the ``logging`` config section.

    Args:
        cfg: Mapping with optional keys:
            - level: debug, info, warn, error, crit (default: info)
            - stderr: log to stderr (default: True)
            - file: path of a log file to append to; parent dirs are created
            - syslog: True, or {"address": ..., "facility": ...}

    A syslog endpoint that cannot be opened is reported as a warning and
    skipped; the other outputs stay active.

    Example config:
        {"level": "debug", "stderr": True, "file": "./dohrelay.log"}
    """
    cfg = cfg or {}
    level = resolve_level(cfg.get("level"))
    formatter = BracketLevelFormatter(fmt=LINE_FORMAT)

    handlers: List[logging.Handler] = []
    if cfg.get("stderr", True):
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(formatter)
        handlers.append(stream)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        handlers.append(_file_handler(file_path.strip(), formatter))

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)

    if cfg.get("syslog"):
        try:
            root.addHandler(_syslog_handler(cfg["syslog"]))
        except (OSError, ValueError) as e:
            root.warning(f"Failed to configure syslog: {e}")

    chatty_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)

    logging.captureWarnings(True)
