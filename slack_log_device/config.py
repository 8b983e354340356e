"""Configuration module: validators, frozen dataclasses, YAML/env/CLI loading."""

import argparse
import os
import re
from dataclasses import dataclass, field, fields

import httpx
import yaml

from slack_log_device.errors import ConfigurationError
from slack_log_device.models import Severity
from slack_log_device.text import is_blank, normalize_text, presence, squish

CHANNEL_PATTERN = re.compile(r"[@#][a-z0-9_-]{1,21}")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _parse_int(value) -> int | None:
    """Integer value of *value*, or None when it is not an integer.

    Accepts ints and integer strings (surrounding whitespace allowed). Bools
    are rejected even though they are ints.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _check_keys(options, valid_keys) -> None:
    unknown = sorted(str(key) for key in options if key not in valid_keys)
    if unknown:
        valid = ", ".join(repr(key) for key in sorted(valid_keys))
        raise ConfigurationError(
            f"Unknown key: {unknown[0]!r}. Valid keys are: {valid}"
        )


# ------------------------------------------------------------------
# Field validators
# ------------------------------------------------------------------


def parse_flag(value) -> bool:
    if isinstance(value, str):
        return _parse_bool(value)
    return bool(value)


def parse_channel(value) -> str | None:
    channel = presence(value)
    if channel is not None and not CHANNEL_PATTERN.fullmatch(channel):
        raise ConfigurationError(
            f"Invalid channel specified: {value!r}, it must start with # or @ "
            "and be in lower case with no spaces or special chars and its "
            "length must not exceed 22 chars"
        )
    return channel


def parse_flush_delay(value) -> int:
    delay = _parse_int(value)
    if delay is None or delay < 0:
        raise ConfigurationError(f"Invalid flush delay: {value!r}")
    return delay


def parse_max_buffer_size(value) -> int:
    size = _parse_int(value)
    if size is None or size < 0:
        raise ConfigurationError(f"Invalid max buffer size: {value!r}")
    return size


def parse_timeout(value) -> int:
    timeout = _parse_int(value)
    if timeout is None or timeout <= 0:
        raise ConfigurationError(f"Invalid timeout: {value!r}")
    return timeout


def parse_username(value) -> str | None:
    return squish(value)


def parse_webhook_url(value) -> str:
    if is_blank(value):
        raise ConfigurationError("Webhook URL must be specified")
    text = normalize_text(value).strip()
    try:
        url = httpx.URL(text)
    except httpx.InvalidURL:
        url = None
    if url is None or url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(f"Invalid webhook URL: {value!r}")
    return text


def parse_max_backtrace_lines(value) -> int:
    length = _parse_int(value)
    if length is None or length < -1:
        raise ConfigurationError(f"Invalid max backtrace lines: {value!r}")
    return length


# ------------------------------------------------------------------
# Config dataclasses
# ------------------------------------------------------------------


@dataclass(frozen=True)
class DeviceConfig:
    """Validated device options. Every field is checked on construction,
    so ``dataclasses.replace`` re-validates too."""

    webhook_url: str | None = None
    auto_flush: bool = False
    channel: str | None = None
    flush_delay: int = 1
    max_buffer_size: int = 131072
    timeout: int = 5
    username: str | None = None

    def __post_init__(self):
        validators = {
            "webhook_url": parse_webhook_url,
            "auto_flush": parse_flag,
            "channel": parse_channel,
            "flush_delay": parse_flush_delay,
            "max_buffer_size": parse_max_buffer_size,
            "timeout": parse_timeout,
            "username": parse_username,
        }
        for name, validate in validators.items():
            object.__setattr__(self, name, validate(getattr(self, name)))

    @classmethod
    def keys(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_dict(cls, d: dict) -> "DeviceConfig":
        """Build a DeviceConfig, rejecting unknown option names."""
        _check_keys(d, cls.keys())
        return cls(**d)


@dataclass(frozen=True)
class FormatterConfig:
    """Formatter options. ``icon_emoji`` of None leaves the default icons."""

    disable_default_metadata: bool = False
    extra_metadata: dict = field(default_factory=dict)
    icon_emoji: str | None = None
    icon_emojis: dict = field(default_factory=dict)
    max_backtrace_lines: int = 10

    def __post_init__(self):
        object.__setattr__(
            self,
            "disable_default_metadata",
            parse_flag(self.disable_default_metadata),
        )
        object.__setattr__(self, "extra_metadata", dict(self.extra_metadata or {}))
        icon_emojis = {
            Severity.parse(severity): presence(icon)
            for severity, icon in (self.icon_emojis or {}).items()
        }
        object.__setattr__(self, "icon_emojis", icon_emojis)
        object.__setattr__(
            self,
            "max_backtrace_lines",
            parse_max_backtrace_lines(self.max_backtrace_lines),
        )

    @classmethod
    def keys(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_dict(cls, d: dict) -> "FormatterConfig":
        _check_keys(d, cls.keys())
        return cls(**d)


@dataclass(frozen=True)
class ShipperConfig:
    """Everything the command-line shipper needs."""

    device: DeviceConfig
    formatter: FormatterConfig = field(default_factory=FormatterConfig)
    severity: Severity = Severity.INFO
    source_label: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "severity", Severity.parse(self.severity))
        object.__setattr__(self, "source_label", presence(self.source_label))


# ------------------------------------------------------------------
# Loading
# ------------------------------------------------------------------

DEVICE_ENV_VARS = {
    "SLACK_WEBHOOK_URL": "webhook_url",
    "SLACK_CHANNEL": "channel",
    "SLACK_USERNAME": "username",
    "AUTO_FLUSH": "auto_flush",
    "FLUSH_DELAY": "flush_delay",
    "MAX_BUFFER_SIZE": "max_buffer_size",
    "TIMEOUT": "timeout",
}

SHIPPER_KEYS = ("device", "formatter", "severity", "source_label")


def load_yaml(path: str) -> dict:
    """Load a YAML config file and return its top-level mapping."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}") from None
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from None
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ship log lines to a Slack webhook")
    parser.add_argument("--config", type=str, default=None)
    parser.add_argument("--webhook-url", type=str, default=None)
    parser.add_argument("--channel", type=str, default=None)
    parser.add_argument("--username", type=str, default=None)
    parser.add_argument("--auto-flush", action="store_true", default=None)
    parser.add_argument("--flush-delay", type=int, default=None)
    parser.add_argument("--max-buffer-size", type=int, default=None)
    parser.add_argument("--timeout", type=int, default=None)
    parser.add_argument("--max-backtrace-lines", type=int, default=None)
    parser.add_argument("--no-default-metadata", action="store_true", default=None)
    parser.add_argument("--severity", type=str, default=None)
    parser.add_argument("--source-label", type=str, default=None)
    return parser


def load_config(argv=None, environ=None) -> ShipperConfig:
    """Build ShipperConfig from defaults <- YAML file <- env vars <- CLI args.

    The YAML file comes from ``--config`` or the ``CONFIG_PATH`` environment
    variable. Pass argv and environ for testability; when None, argparse
    reads sys.argv and os.environ is used.
    """
    environ = os.environ if environ is None else environ
    args = _build_parser().parse_args(argv)

    file_config: dict = {}
    config_path = args.config or environ.get("CONFIG_PATH")
    if config_path:
        file_config = load_yaml(config_path)
        _check_keys(file_config, SHIPPER_KEYS)

    device = dict(file_config.get("device") or {})
    formatter = dict(file_config.get("formatter") or {})
    severity = file_config.get("severity", Severity.INFO)
    source_label = file_config.get("source_label")

    # Env vars override the file
    for env_name, key in DEVICE_ENV_VARS.items():
        if env_name in environ:
            device[key] = environ[env_name]
    if "MAX_BACKTRACE_LINES" in environ:
        formatter["max_backtrace_lines"] = environ["MAX_BACKTRACE_LINES"]
    severity = environ.get("LOG_SEVERITY", severity)
    source_label = environ.get("SOURCE_LABEL", source_label)

    # CLI flags override env vars
    cli_device = {
        "webhook_url": args.webhook_url,
        "channel": args.channel,
        "username": args.username,
        "auto_flush": args.auto_flush,
        "flush_delay": args.flush_delay,
        "max_buffer_size": args.max_buffer_size,
        "timeout": args.timeout,
    }
    device.update({k: v for k, v in cli_device.items() if v is not None})
    if args.max_backtrace_lines is not None:
        formatter["max_backtrace_lines"] = args.max_backtrace_lines
    if args.no_default_metadata:
        formatter["disable_default_metadata"] = True
    if args.severity is not None:
        severity = args.severity
    if args.source_label is not None:
        source_label = args.source_label

    return ShipperConfig(
        device=DeviceConfig.from_dict(device),
        formatter=FormatterConfig.from_dict(formatter),
        severity=severity,
        source_label=source_label,
    )
