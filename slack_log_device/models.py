"""Log record, error and rendered message models."""

import logging
import traceback
from dataclasses import dataclass
from enum import Enum

from slack_log_device.errors import SeverityError
from slack_log_device.text import presence

# Longest cause chain kept below the top-level error.
MAX_CAUSE_DEPTH = 16

_SEVERITY_ALIASES = {"WARNING": "WARN", "CRITICAL": "FATAL"}


class Severity(Enum):
    """Log severities, ranked from least to most severe."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3
    FATAL = 4
    UNKNOWN = 5

    @property
    def rank(self) -> int:
        return self.value

    @classmethod
    def parse(cls, value) -> "Severity":
        """Resolve a severity from an enum member or a case-insensitive name.

        The Python level names ``WARNING`` and ``CRITICAL`` are accepted as
        aliases of ``WARN`` and ``FATAL``.
        """
        if isinstance(value, cls):
            return value
        name = (presence(value) or "").upper()
        name = _SEVERITY_ALIASES.get(name, name)
        try:
            return cls[name]
        except KeyError:
            raise SeverityError(f"Invalid log severity: {value!r}") from None

    @classmethod
    def from_levelno(cls, levelno: int) -> "Severity":
        """Map a numeric ``logging`` level onto a severity."""
        if levelno >= logging.CRITICAL:
            return cls.FATAL
        if levelno >= logging.ERROR:
            return cls.ERROR
        if levelno >= logging.WARNING:
            return cls.WARN
        if levelno >= logging.INFO:
            return cls.INFO
        if levelno >= logging.DEBUG:
            return cls.DEBUG
        return cls.UNKNOWN


def _class_name(exc: BaseException) -> str:
    cls = type(exc)
    if cls.__module__ == "builtins":
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


def _backtrace(exc: BaseException) -> tuple[str, ...]:
    # Innermost frame first, so the raising frame survives line limits.
    frames = traceback.extract_tb(exc.__traceback__)
    return tuple(
        f"{frame.filename}:{frame.lineno} in {frame.name}"
        for frame in reversed(frames)
    )


def _cause_of(exc: BaseException) -> BaseException | None:
    if exc.__cause__ is not None:
        return exc.__cause__
    if exc.__suppress_context__:
        return None
    return exc.__context__


@dataclass(frozen=True)
class ErrorInfo:
    """A structured error: class name, message, backtrace and optional cause."""

    class_name: str
    message: str = ""
    backtrace: tuple[str, ...] = ()
    cause: "ErrorInfo | None" = None

    def __post_init__(self):
        object.__setattr__(self, "backtrace", tuple(self.backtrace or ()))

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        """Build an ErrorInfo chain from a Python exception.

        Follows ``__cause__``, then ``__context__`` unless it is suppressed,
        keeping at most MAX_CAUSE_DEPTH causes and stopping at the first
        exception already seen in the chain.
        """
        chain: list[BaseException] = []
        seen: set[int] = set()
        current = exc
        while current is not None and id(current) not in seen:
            if len(chain) > MAX_CAUSE_DEPTH:
                break
            seen.add(id(current))
            chain.append(current)
            current = _cause_of(current)

        info = None
        for item in reversed(chain):
            info = cls(
                class_name=_class_name(item),
                message=str(item),
                backtrace=_backtrace(item),
                cause=info,
            )
        return info


@dataclass(frozen=True)
class LogRecord:
    """One log event.

    *payload* is either message text (any value, stringified when rendered)
    or an ErrorInfo; exceptions are converted to ErrorInfo on construction.
    *request* is the request-like object of the call, if any, used to fill
    request metadata.
    """

    severity: Severity
    payload: object = ""
    source_label: str | None = None
    request: object = None

    def __post_init__(self):
        object.__setattr__(self, "severity", Severity.parse(self.severity))
        if isinstance(self.payload, BaseException):
            object.__setattr__(
                self, "payload", ErrorInfo.from_exception(self.payload)
            )

    @property
    def error(self) -> ErrorInfo | None:
        return self.payload if isinstance(self.payload, ErrorInfo) else None


@dataclass(frozen=True)
class RenderContext:
    """What a callable metadata value gets to look at."""

    exception: ErrorInfo | None = None
    request: object = None


@dataclass(frozen=True)
class RenderedMessage:
    text: str
    icon: str | None = None
    severity: Severity | None = None

    def __post_init__(self):
        object.__setattr__(self, "icon", presence(self.icon))

    def __str__(self) -> str:
        return self.text
