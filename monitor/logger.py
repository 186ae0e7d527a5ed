"""
Operator-facing logging for the negRisk engine.

Every record is assigned a channel from its logger name, so a console full
of scan chatter still makes gate decisions, health changes and audit
failures stand out:

    scan    scanner.*, pipeline.*     per-cycle evaluation
    feed    client.*                  upstream fetches (gamma, CLOB, RPC)
    gate    executor.*                approvals, blocks, control changes
    audit   audit.*                   audit trail writes
    health  monitor.health            heartbeat and degraded signals
    api     report.*                  HTTP surface

Records may carry `opportunity_id`, `operator` and `group_id` through
`extra=`; all three outputs show them.

Outputs:
  - stderr: colored one-line records with a channel tag
  - file (always): logs/negrisk_<command>_YYYYMMDD_HHMMSS.log at DEBUG
  - file (optional): ndjson for machine consumption
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone

HEALTH_LOGGER = "monitor.health"

DEFAULT_LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "logs")

# Longest prefix wins
CHANNELS: dict[str, str] = {
    "scanner": "scan",
    "pipeline": "scan",
    "client": "feed",
    "executor": "gate",
    "audit": "audit",
    HEALTH_LOGGER: "health",
    "report": "api",
}
DEFAULT_CHANNEL = "app"

CONTEXT_FIELDS = ("opportunity_id", "operator", "group_id")

QUIET_LOGGERS = ("httpx", "httpcore", "py_clob_client", "uvicorn.access")

_ANSI = {
    "reset": "\033[0m",
    "dim": "\033[2m",
    "bold": "\033[1m",
    "red": "\033[31m",
    "yellow": "\033[33m",
    "magenta": "\033[35m",
    "cyan": "\033[36m",
    "green": "\033[32m",
}

_LEVEL_TAGS = {
    logging.DEBUG: ("dim", "DBG"),
    logging.INFO: ("cyan", "INF"),
    logging.WARNING: ("yellow", "WRN"),
    logging.ERROR: ("red", "ERR"),
    logging.CRITICAL: ("red", "CRT"),
}

# Channels an operator acts on get their own color; the rest stay dim.
_CHANNEL_COLORS = {"gate": "green", "health": "magenta", "audit": "yellow"}


def channel_for(logger_name: str) -> str:
    best, best_len = DEFAULT_CHANNEL, -1
    for prefix, channel in CHANNELS.items():
        if (logger_name == prefix or logger_name.startswith(prefix + ".")) and len(prefix) > best_len:
            best, best_len = channel, len(prefix)
    return best


def record_context(record: logging.LogRecord) -> dict[str, str]:
    """The opportunity/operator/group fields attached via `extra=`, if any."""
    return {
        name: str(getattr(record, name))
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class ChannelFilter(logging.Filter):
    """Stamps `record.channel` and `record.context` for the formatters."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.channel = channel_for(record.name)
        ctx = record_context(record)
        record.context = " ".join(f"{k}={v}" for k, v in ctx.items())
        return True


class ConsoleFormatter(logging.Formatter):
    def __init__(self, use_color: bool = True):
        super().__init__()
        self._use_color = use_color and _color_enabled()

    def _paint(self, text: str, color: str) -> str:
        if not self._use_color:
            return text
        return f"{_ANSI[color]}{text}{_ANSI['reset']}"

    def format(self, record: logging.LogRecord) -> str:
        channel = getattr(record, "channel", None) or channel_for(record.name)
        level_color, tag = _LEVEL_TAGS.get(record.levelno, ("bold", "???"))
        parts = [
            self._paint(time.strftime("%H:%M:%S", time.localtime(record.created)), "dim"),
            self._paint(tag, level_color),
            self._paint(f"[{channel}]", _CHANNEL_COLORS.get(channel, "dim")),
            record.getMessage(),
        ]
        ctx = record_context(record)
        if ctx:
            parts.append(self._paint("(" + " ".join(f"{k}={v}" for k, v in ctx.items()) + ")", "dim"))
        line = " ".join(parts)
        if record.exc_info and record.exc_info[1]:
            line += "\n     " + self._paint(str(record.exc_info[1]), "red")
        return line


class JSONFormatter(logging.Formatter):
    """One JSON object per line: ts, level, channel, logger, msg and any context fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "channel": getattr(record, "channel", None) or channel_for(record.name),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = f"{type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return json.dumps(entry, separators=(",", ":"))


def log_file_name(command: str, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"negrisk_{command}_{now.strftime('%Y%m%d_%H%M%S')}.log"


def setup_logging(
    level: str = "INFO",
    json_log_file: str | None = None,
    log_dir: str | None = None,
    command: str = "run",
) -> str:
    """
    Replace the root handlers with the console, verbose file and optional
    ndjson outputs. Returns the verbose log path.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    channels = ChannelFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.addFilter(channels)
    console.setFormatter(ConsoleFormatter())
    root.addHandler(console)

    log_dir = log_dir or DEFAULT_LOG_DIR
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, log_file_name(command))
    verbose = logging.FileHandler(log_path, mode="a")
    verbose.setLevel(logging.DEBUG)
    verbose.addFilter(channels)
    verbose.setFormatter(logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)-8s [%(channel)s] %(name)s:%(lineno)d - %(message)s %(context)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root.addHandler(verbose)

    if json_log_file:
        ndjson = logging.FileHandler(json_log_file, mode="a")
        ndjson.addFilter(channels)
        ndjson.setFormatter(JSONFormatter())
        root.addHandler(ndjson)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_path


def _color_enabled() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return bool(getattr(sys.stderr, "isatty", None) and sys.stderr.isatty())
