# =============================================================================
#  Mergecord
#  Copyright (C) 2025 github.com/Mergecord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations
import contextlib
import contextvars
import json as _json
import logging
import sys as _sys
from datetime import datetime, timezone
from typing import Iterable, Optional

from common.constants import REDACT_KEYS

REDACTED = "***REDACTED***"

phase_var = contextvars.ContextVar("phase", default="-")

EXTRA_KEYS = (
    "channel_id",
    "page",
    "records",
    "cursor",
    "op",
    "took_ms",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class RedactFilter(logging.Filter):
    """Injects the current phase and masks secrets appearing in args/msg."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        vals = {s for s in secrets if s}
        # longest first so a secret containing another is masked whole
        self.secrets = sorted(vals, key=len, reverse=True)

    def _redact_value(self, val):
        try:
            s = str(val)
        except Exception:
            return "<unprintable>"
        for secret in self.secrets:
            if secret in s:
                s = s.replace(secret, REDACTED)
        return s

    def _redact_obj(self, obj):
        if isinstance(obj, dict):
            out = {}
            for k, v in obj.items():
                if str(k).upper() in REDACT_KEYS and v:
                    out[k] = REDACTED
                elif isinstance(v, str):
                    out[k] = self._redact_value(v)
                else:
                    out[k] = v
            return out
        return obj

    def _redact_arg(self, a):
        if isinstance(a, dict):
            return self._redact_obj(a)
        if isinstance(a, (int, float, bool, type(None))):
            return a
        if isinstance(a, str):
            return self._redact_value(a)
        if isinstance(a, BaseException):
            # exception text often embeds request details
            return self._redact_value(a)
        return a

    def filter(self, record: logging.LogRecord) -> bool:
        record.phase = phase_var.get()
        if not self.secrets:
            return True
        if isinstance(record.args, dict):
            record.args = {k: self._redact_arg(v) for k, v in record.args.items()}
        elif isinstance(record.args, (tuple, list)):
            new_list = [self._redact_arg(a) for a in record.args]
            record.args = tuple(new_list) if isinstance(record.args, tuple) else new_list
        if isinstance(record.msg, str):
            record.msg = self._redact_value(record.msg)
        return True


LEVEL_MARK = {
    logging.DEBUG: "🧩",
    logging.INFO: "✅",
    logging.WARNING: "⚠️",
    logging.ERROR: "❌",
    logging.CRITICAL: "💥",
}


class _RedactingFormatter(logging.Formatter):
    def __init__(self, *a, redactor: Optional[RedactFilter] = None, **kw):
        super().__init__(*a, **kw)
        self.redactor = redactor

    def formatException(self, ei) -> str:
        text = super().formatException(ei)
        return self.redactor._redact_value(text) if self.redactor else text


class HumanFormatter(_RedactingFormatter):
    def format(self, record: logging.LogRecord) -> str:
        mark = LEVEL_MARK.get(record.levelno, "•")
        ts = _now_iso()
        phase = getattr(record, "phase", "-")
        msg = super().format(record)
        extras = []
        for k in EXTRA_KEYS:
            v = getattr(record, k, None)
            if v not in (None, "", []):
                extras.append(f"{k}={v}")
        extras_s = f" | {' '.join(extras)}" if extras else ""
        return f"{ts} {mark} {record.levelname:<8} [{phase}] {msg}{extras_s}"


class JSONFormatter(_RedactingFormatter):
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "time": _now_iso(),
            "level": record.levelname,
            "message": record.getMessage(),
            "phase": getattr(record, "phase", "-"),
            "logger": record.name,
            "caller": f"{record.module}:{record.lineno}",
        }
        for k in EXTRA_KEYS:
            v = getattr(record, k, None)
            if v not in (None, "", []):
                base[k] = v
        if record.exc_info:
            base["error"] = self.formatException(record.exc_info)
        return _json.dumps(base, separators=(",", ":"), default=str)


class ContextAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        for k, v in self.extra.items():
            extra.setdefault(k, v)
        return msg, kwargs


def get_logger(name="mergecord", **ctx):
    logger = logging.getLogger(name)
    return ContextAdapter(logger, dict(ctx))


@contextlib.contextmanager
def phase(name: str):
    """Tag every record logged inside the block with ``name``."""
    token = phase_var.set(name)
    try:
        yield
    finally:
        phase_var.reset(token)


def configure_app_logging(
    level: str = "INFO",
    fmt: str = "HUMAN",
    *,
    secrets: Iterable[str] = (),
    stream=None,
):
    """
    Logging config with:
    - fmt: HUMAN (default) or JSON
    - level: DEBUG/INFO/etc.
    - redaction of ``secrets`` + phase context
    Returns an adapter for the ``mergecord`` logger.
    """
    fmt = (fmt or "HUMAN").strip().upper()
    lvl = (level or "INFO").strip().upper()

    root = logging.getLogger("mergecord")
    redactor = RedactFilter(secrets)

    h = logging.StreamHandler(stream=stream or _sys.stdout)
    if fmt == "JSON":
        h.setFormatter(JSONFormatter("%(message)s", redactor=redactor))
    else:
        h.setFormatter(HumanFormatter("%(message)s", redactor=redactor))
    h.addFilter(redactor)

    root.handlers.clear()
    root.addHandler(h)
    root.propagate = False
    root.setLevel(getattr(logging, lvl, logging.INFO))

    for lib in ("discord", "discord.http", "discord.client", "aiohttp"):
        logging.getLogger(lib).setLevel(logging.WARNING)
    return get_logger("mergecord")
