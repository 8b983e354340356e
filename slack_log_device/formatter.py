"""Message formatter: renders a log record into a bounded Slack message.

A rendered message never exceeds MAX_LENGTH characters. Sections are added
in priority order, each only if it still fits in what is left:

1. the headline (severity, source label, message or error class + message),
2. the metadata block (request and process fields, extra metadata),
3. the fenced backtrace,
4. the cause chain, each cause bringing its own backtrace.

Lengths are counted in code points of NFC-normalized text, so truncation
never splits a character.
"""

import os
import socket
from collections.abc import Mapping
from types import MappingProxyType

from slack_log_device.config import (
    FormatterConfig,
    parse_flag,
    parse_max_backtrace_lines,
)
from slack_log_device.models import (
    MAX_CAUSE_DEPTH,
    ErrorInfo,
    LogRecord,
    RenderContext,
    RenderedMessage,
    Severity,
)
from slack_log_device.text import is_blank, normalize_text, presence

MAX_LENGTH = 4000
ELLIPSIS = "..."
FENCE = "```"
SEPARATOR = "\n\n"

# Smallest room worth rendering a section into.
MIN_METADATA_SIZE = 11
MIN_BACKTRACE_SIZE = 7

DEFAULT_ICON_EMOJIS = MappingProxyType({
    Severity.DEBUG: ":bug:",
    Severity.INFO: ":information_source:",
    Severity.WARN: ":warning:",
    Severity.ERROR: ":x:",
    Severity.FATAL: ":fire:",
    Severity.UNKNOWN: ":interrobang:",
})

_UNSET = object()


def truncate(text: str, max_length: int = MAX_LENGTH) -> str:
    """Strip *text* and cut it to *max_length*.

    A cut text ends with a 3-char ellipsis, unless *max_length* is too small
    to hold one, in which case it is cut hard.
    """
    text = text.strip()
    if len(text) <= max_length:
        return text
    if max_length < len(ELLIPSIS):
        return text[:max(max_length, 0)]
    return text[:max_length - len(ELLIPSIS)] + ELLIPSIS


def _request_attribute(request, name: str):
    if isinstance(request, Mapping):
        return request.get(name)
    return getattr(request, name, None)


class MessageFormatter:
    """Renders LogRecords into RenderedMessages.

    *message_converter* is called with the stripped message text (or error
    message) and its result, stringified and stripped, replaces it.
    """

    def __init__(
        self,
        disable_default_metadata=False,
        extra_metadata=None,
        icon_emoji=_UNSET,
        icon_emojis=None,
        max_backtrace_lines=10,
        message_converter=None,
    ):
        self.disable_default_metadata = disable_default_metadata
        self.extra_metadata = extra_metadata
        self.max_backtrace_lines = max_backtrace_lines

        self._icon_emojis = dict(DEFAULT_ICON_EMOJIS)
        if icon_emojis is not None:
            self.icon_emojis = icon_emojis
        if icon_emoji is not _UNSET:
            self.set_icon_emoji(icon_emoji)

        self._message_converter = message_converter or (lambda message: message)

    @classmethod
    def from_config(cls, config: FormatterConfig, message_converter=None) -> "MessageFormatter":
        kwargs = {
            "disable_default_metadata": config.disable_default_metadata,
            "extra_metadata": config.extra_metadata,
            "icon_emojis": config.icon_emojis,
            "max_backtrace_lines": config.max_backtrace_lines,
            "message_converter": message_converter,
        }
        if config.icon_emoji is not None:
            kwargs["icon_emoji"] = config.icon_emoji
        return cls(**kwargs)

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    @property
    def disable_default_metadata(self) -> bool:
        return self._disable_default_metadata

    @disable_default_metadata.setter
    def disable_default_metadata(self, value):
        self._disable_default_metadata = parse_flag(value)

    @property
    def extra_metadata(self) -> dict:
        return self._extra_metadata

    @extra_metadata.setter
    def extra_metadata(self, value):
        self._extra_metadata = dict(value or {})

    @property
    def max_backtrace_lines(self) -> int:
        return self._max_backtrace_lines

    @max_backtrace_lines.setter
    def max_backtrace_lines(self, value):
        self._max_backtrace_lines = parse_max_backtrace_lines(value)

    @property
    def icon_emojis(self) -> Mapping:
        return MappingProxyType(dict(self._icon_emojis))

    @icon_emojis.setter
    def icon_emojis(self, values):
        # Keys are case-insensitive severity names.
        updates = {
            Severity.parse(severity): presence(icon)
            for severity, icon in (values or {}).items()
        }
        self._icon_emojis.update(updates)

    def set_icon_emoji(self, value) -> None:
        """Use the same icon (or none, if blank) for every severity."""
        icon = presence(value)
        for severity in self._icon_emojis:
            self._icon_emojis[severity] = icon

    def icon_emoji(self, severity) -> str | None:
        return self._icon_emojis[Severity.parse(severity)]

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, record: LogRecord) -> RenderedMessage:
        text = f"*`{record.severity.name}`*"
        label = presence(record.source_label)
        if label:
            text += f" (*{label}*)"
        text += ":"

        error = record.error
        if error is not None:
            class_name = normalize_text(error.class_name).strip()
            message = self._convert_message(error.message)
            text += f" A `{class_name}` occurred: {message}".rstrip()
        else:
            text += f" {self._convert_message(record.payload)}".rstrip()
        text = truncate(text)

        text = self._append_metadata(text, record)
        if error is not None:
            text = self._append_backtrace(text, error)
            text = self._append_causes(text, error)

        return RenderedMessage(
            truncate(text),
            icon=self._icon_emojis[record.severity],
            severity=record.severity,
        )

    __call__ = render

    def _convert_message(self, value) -> str:
        converted = self._message_converter(normalize_text(value).strip())
        return normalize_text(converted).strip()

    def _append_metadata(self, text: str, record: LogRecord) -> str:
        metadata = self._format_metadata(
            record, MAX_LENGTH - len(text) - len(SEPARATOR)
        )
        return f"{text}{SEPARATOR}{metadata}" if metadata else text

    def _append_backtrace(self, text: str, error: ErrorInfo) -> str:
        backtrace = self._format_backtrace(
            error, MAX_LENGTH - len(text) - len(SEPARATOR)
        )
        return f"{text}{SEPARATOR}{backtrace}" if backtrace else text

    def _append_causes(self, text: str, error: ErrorInfo) -> str:
        cause = error.cause
        depth = 0
        while cause is not None and depth < MAX_CAUSE_DEPTH:
            heading = f"{SEPARATOR}Caused by `{normalize_text(cause.class_name).strip()}`"
            if len(text) + len(heading) + len(":") + len(ELLIPSIS) > MAX_LENGTH:
                break
            message = normalize_text(cause.message).strip()
            text = truncate(f"{text}{heading}: {message}")
            text = self._append_backtrace(text, cause)
            cause = cause.cause
            depth += 1
        return text

    def _default_metadata(self, request) -> dict:
        if self.disable_default_metadata:
            return {}
        metadata = {}
        if request is not None:
            metadata.update({
                "Method": _request_attribute(request, "method"),
                "URL": _request_attribute(request, "url"),
                "Remote address": _request_attribute(request, "remote_addr"),
                "User-Agent": _request_attribute(request, "user_agent"),
            })
        metadata.update({
            "User": os.environ.get("USER"),
            "Machine": socket.gethostname(),
            "PID": os.getpid(),
        })
        return {
            name: f"`{presence(value)}`" if presence(value) else None
            for name, value in metadata.items()
        }

    def _format_metadata(self, record: LogRecord, size_available: int) -> str | None:
        if size_available < MIN_METADATA_SIZE:
            return None
        entries = self._default_metadata(record.request)
        for name, value in self.extra_metadata.items():
            name = presence(name)
            if name:
                entries[name] = value

        context = RenderContext(exception=record.error, request=record.request)
        lines = []
        for name, value in entries.items():
            if callable(value):
                value = value(context)
            value = presence(value)
            if value is not None:
                lines.append(f"• *{name}*: {value}")
        if not lines:
            return None
        return truncate("\n".join(lines), size_available)

    def _format_backtrace(self, error: ErrorInfo, size_available: int) -> str | None:
        if self.max_backtrace_lines == 0 or size_available < MIN_BACKTRACE_SIZE:
            return None
        lines = [normalize_text(line) for line in error.backtrace if not is_blank(line)]
        if not lines:
            return None
        if self.max_backtrace_lines < 0:
            body = "\n".join(lines)
        else:
            body = "\n".join(lines[:self.max_backtrace_lines])
            if len(lines) > self.max_backtrace_lines:
                body += "\n..."
        return f"{FENCE}{truncate(body, size_available - 2 * len(FENCE))}{FENCE}"
