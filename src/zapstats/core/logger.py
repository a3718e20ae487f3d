"""
Structured logging with key=value and JSON output support.

Every log line is an event name followed by structured fields, e.g.
``zap_applied target=note1... amount_msat=21000``. Two renderings are
supported: human-readable key=value pairs (default) and one JSON object per
line for log shippers.

The ``StructuredFormatter`` is a stdlib ``logging.Formatter`` that reads the
``structured_kv`` extra attached by [Logger][zapstats.core.logger.Logger].
Installed on the root handler (see ``zapstats.__main__.setup_logging``) it
also renders plain ``logging.getLogger(__name__)`` records from the
``nips`` and ``models`` layers with the same ``level name message`` prefix.

Examples:
    ```python
    from zapstats.core.logger import Logger

    logger = Logger("live")
    logger.info("subscription_active", target="30311:ab..:stream")
    # Output: subscription_active target=30311:ab..:stream

    scoped = logger.bind(target="note1xyz")
    scoped.warning("zap_decode_failed", event_id="ff..")
    # Output: zap_decode_failed target=note1xyz event_id=ff..
    ```
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import Any, ClassVar


def _truncate(value: Any, max_value_length: int | None) -> str:
    s = str(value)
    if max_value_length and len(s) > max_value_length:
        return s[:max_value_length] + f"...<truncated {len(s) - max_value_length} chars>"
    return s


def format_kv_pairs(
    kwargs: dict[str, Any],
    max_value_length: int | None = 1000,
    prefix: str = " ",
) -> str:
    """Render a mapping as space-separated ``key=value`` pairs.

    Values longer than ``max_value_length`` are truncated. Empty values and
    values containing whitespace, ``=`` or quotes are wrapped in double
    quotes with backslash escaping so the line stays machine-splittable.

    Args:
        kwargs: Fields to render, in insertion order.
        max_value_length: Truncation limit per value; ``None`` disables it.
        prefix: Prepended to a non-empty result.

    Returns:
        The rendered pairs, or ``""`` when ``kwargs`` is empty.
    """
    if not kwargs:
        return ""

    parts: list[str] = []
    for key, value in kwargs.items():
        s = _truncate(value, max_value_length)
        if not s or any(ch in s for ch in ' ="\''):
            escaped = s.replace("\\", "\\\\").replace('"', '\\"')
            parts.append(f'{key}="{escaped}"')
        else:
            parts.append(f"{key}={s}")
    return prefix + " ".join(parts)


class StructuredFormatter(logging.Formatter):
    """Render records as ``level logger message key=value ...``.

    Records without ``structured_kv`` (stdlib loggers) are emitted with the
    same prefix and no trailing fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname.lower()} {record.name} {record.getMessage()}"
        fields: dict[str, Any] = getattr(record, "structured_kv", {})
        if fields:
            line += format_kv_pairs(fields)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class Logger:
    """Structured logger that appends keyword arguments as fields.

    Wraps a standard ``logging.Logger``. Every method mirrors the stdlib API
    with an extra ``**kwargs`` that becomes structured output. Bound context
    (see [bind()][zapstats.core.logger.Logger.bind]) is prepended to every
    record emitted through the returned logger.
    """

    _DEFAULT_MAX_VALUE_LENGTH: ClassVar[int] = 1000

    def __init__(
        self,
        name: str,
        *,
        json_output: bool = False,
        max_value_length: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a structured logger.

        Args:
            name: Name passed to ``logging.getLogger``; services use their
                ``SERVICE_NAME``.
            json_output: Emit one JSON object per record instead of key=value.
            max_value_length: Per-value truncation limit (default 1000).
            context: Fields included in every record.
        """
        if max_value_length is None:
            max_value_length = self._DEFAULT_MAX_VALUE_LENGTH
        self._logger = logging.getLogger(name)
        self._json_output = json_output
        self._max_value_length = max_value_length
        self._context: dict[str, Any] = dict(context or {})

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **context: Any) -> Logger:
        """Return a logger for the same name with extra bound fields."""
        return Logger(
            self._logger.name,
            json_output=self._json_output,
            max_value_length=self._max_value_length,
            context={**self._context, **context},
        )

    def _format_json(self, msg: str, level: str, fields: dict[str, Any]) -> str:
        record = {
            "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
            "level": level,
            "service": self._logger.name,
            "message": msg,
            **fields,
        }
        return json.dumps(record, default=str)

    def _make_extra(self, fields: dict[str, Any]) -> dict[str, Any]:
        if not fields:
            return {}
        truncated = {
            k: v if isinstance(v, int | float | bool) else _truncate(v, self._max_value_length)
            for k, v in fields.items()
        }
        return {"structured_kv": truncated}

    def _emit(self, level: int, msg: str, kwargs: dict[str, Any], *, exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        fields = {**self._context, **kwargs}
        if self._json_output:
            self._logger.log(
                level,
                self._format_json(msg, logging.getLevelName(level).lower(), fields),
                exc_info=exc_info,
            )
        else:
            self._logger.log(level, msg, extra=self._make_extra(fields), exc_info=exc_info)

    def debug(self, msg: str, **kwargs: Any) -> None:
        """Log at DEBUG with optional fields."""
        self._emit(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        """Log at INFO with optional fields."""
        self._emit(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        """Log at WARNING with optional fields."""
        self._emit(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        """Log at ERROR with optional fields."""
        self._emit(logging.ERROR, msg, kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        """Log at CRITICAL with optional fields."""
        self._emit(logging.CRITICAL, msg, kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._emit(logging.ERROR, msg, kwargs, exc_info=True)
