"""Tests for MessageFormatter: headline, metadata, backtrace and the length cap."""

import os
import socket
from types import SimpleNamespace

import pytest

from slack_log_device.config import FormatterConfig
from slack_log_device.errors import ConfigurationError, SeverityError
from slack_log_device.formatter import MAX_LENGTH, MessageFormatter, truncate
from slack_log_device.models import MAX_CAUSE_DEPTH, ErrorInfo, LogRecord, RenderContext, Severity

HEADLINE = "*`DEBUG`*: A `RuntimeError` occurred: BAM!"


def _error(message="BAM!", backtrace=(), cause=None) -> ErrorInfo:
    return ErrorInfo("RuntimeError", message, backtrace=backtrace, cause=cause)


def _render(payload, severity="debug", **options) -> str:
    options.setdefault("disable_default_metadata", True)
    formatter = MessageFormatter(**options)
    return formatter.render(LogRecord(severity, payload)).text


class TestTruncate:
    def test_short_text_is_stripped(self):
        assert truncate("  abc  ", 10) == "abc"

    def test_long_text_gets_ellipsis(self):
        assert truncate("abcdef", 5) == "ab..."

    def test_exact_length_is_kept(self):
        assert truncate("abcde", 5) == "abcde"

    def test_tiny_limit_cuts_hard(self):
        assert truncate("abcdef", 2) == "ab"
        assert truncate("abcdef", 0) == ""


class TestHeadline:
    def test_text_message(self):
        assert _render("disk almost full", "warn") == "*`WARN`*: disk almost full"

    def test_text_is_stripped(self):
        assert _render("  hello \n", "info") == "*`INFO`*: hello"

    def test_source_label(self):
        formatter = MessageFormatter(disable_default_metadata=True)
        record = LogRecord("info", "hello", source_label=" worker ")
        assert formatter.render(record).text == "*`INFO`* (*worker*): hello"

    def test_blank_source_label_is_omitted(self):
        formatter = MessageFormatter(disable_default_metadata=True)
        record = LogRecord("info", "hello", source_label="   ")
        assert formatter.render(record).text == "*`INFO`*: hello"

    def test_error_message(self):
        assert _render(_error()) == HEADLINE

    def test_blank_error_message(self):
        assert _render(_error(message="   ")) == "*`DEBUG`*: A `RuntimeError` occurred:"

    def test_message_converter(self):
        formatter = MessageFormatter(
            disable_default_metadata=True,
            message_converter=lambda message: f"  <{message.upper()}>  ",
        )
        assert formatter.render(LogRecord("info", "hi")).text == "*`INFO`*: <HI>"

    def test_message_converter_applies_to_errors(self):
        formatter = MessageFormatter(
            disable_default_metadata=True,
            message_converter=lambda message: message.lower(),
        )
        assert formatter.render(LogRecord("debug", _error())).text == (
            "*`DEBUG`*: A `RuntimeError` occurred: bam!"
        )

    def test_blank_converted_message(self):
        formatter = MessageFormatter(
            disable_default_metadata=True,
            message_converter=lambda message: "",
        )
        assert formatter.render(LogRecord("debug", _error())).text == (
            "*`DEBUG`*: A `RuntimeError` occurred:"
        )

    def test_text_is_nfc_normalized(self):
        assert _render("cafe\u0301", "info") == "*`INFO`*: caf\u00e9"

    def test_huge_message_is_capped(self):
        text = _render("a" * 10_000, "info")
        assert len(text) == MAX_LENGTH
        assert text.endswith("a...")

    def test_callable_formatter(self):
        formatter = MessageFormatter(disable_default_metadata=True)
        assert formatter(LogRecord("info", "hi")).text == "*`INFO`*: hi"


class TestBacktrace:
    def test_backtrace_block(self):
        assert _render(_error(backtrace=["foo", "bar"])) == f"{HEADLINE}\n\n```foo\nbar```"

    def test_blank_backtrace_lines_are_skipped(self):
        assert _render(_error(backtrace=["foo", "  ", "bar"])) == f"{HEADLINE}\n\n```foo\nbar```"

    def test_empty_backtrace(self):
        assert _render(_error(backtrace=["", " "])) == HEADLINE

    def test_default_limit_is_ten_lines(self):
        lines = [str(i) for i in range(1, 51)]
        text = _render(_error(backtrace=lines))
        assert text.endswith("\n9\n10\n...```")
        assert "\n11\n" not in text

    def test_custom_limit(self):
        lines = [str(i) for i in range(1, 51)]
        text = _render(_error(backtrace=lines), max_backtrace_lines=30)
        assert text.endswith("\n30\n...```")

    def test_unlimited(self):
        lines = [str(i) for i in range(1, 51)]
        text = _render(_error(backtrace=lines), max_backtrace_lines=-1)
        assert text.endswith("\n49\n50```")

    def test_zero_disables_backtrace(self):
        lines = [str(i) for i in range(1, 51)]
        assert _render(_error(backtrace=lines), max_backtrace_lines=0) == HEADLINE

    def test_at_limit_no_marker(self):
        lines = [str(i) for i in range(1, 11)]
        assert _render(_error(backtrace=lines)).endswith("\n10```")

    def test_backtrace_one_char_short_of_limit(self):
        text = _render(_error(backtrace=["a" * (MAX_LENGTH - 51)]))
        assert len(text) == MAX_LENGTH - 1
        assert text.endswith("a```")

    def test_backtrace_exactly_at_limit(self):
        text = _render(_error(backtrace=["a" * (MAX_LENGTH - 50)]))
        assert len(text) == MAX_LENGTH
        assert text.endswith("aaaa```")

    def test_backtrace_one_char_over_limit(self):
        text = _render(_error(backtrace=["a" * (MAX_LENGTH - 49)]))
        assert len(text) == MAX_LENGTH
        assert text.endswith("aaaa...```")

    def test_long_lines_inside_limit(self):
        lines = [str(i) for i in range(1, 10)] + ["a" * (MAX_LENGTH - 72), "b"]
        text = _render(_error(backtrace=lines))
        assert len(text) == MAX_LENGTH
        assert text.endswith("a\n...```")

    def test_no_room_for_backtrace(self):
        message = "a" * (MAX_LENGTH - 46)
        text = _render(_error(message=message, backtrace=["hello world"]))
        assert len(text) == MAX_LENGTH - 8
        assert "```" not in text

    def test_minimal_backtrace(self):
        message = "a" * (MAX_LENGTH - 47)
        text = _render(_error(message=message, backtrace=["hello world"]))
        assert len(text) == MAX_LENGTH
        assert text.endswith("aaa\n\n```h```")

    def test_backtrace_with_ellipsis(self):
        message = "a" * (MAX_LENGTH - 50)
        text = _render(_error(message=message, backtrace=["hello world"]))
        assert len(text) == MAX_LENGTH
        assert text.endswith("aaa\n\n```h...```")

    def test_text_payload_has_no_backtrace(self):
        assert "```" not in _render("just text", "info")


class TestCauses:
    def test_cause_is_rendered(self):
        cause = ErrorInfo("KeyError", "inner", backtrace=("i1", "i2"))
        error = ErrorInfo("RuntimeError", "outer", backtrace=("o1",), cause=cause)
        assert _render(error, "error") == (
            "*`ERROR`*: A `RuntimeError` occurred: outer\n\n"
            "```o1```\n\n"
            "Caused by `KeyError`: inner\n\n"
            "```i1\ni2```"
        )

    def test_nested_causes(self):
        root = ErrorInfo("OSError", "disk")
        middle = ErrorInfo("KeyError", "inner", cause=root)
        error = ErrorInfo("RuntimeError", "outer", cause=middle)
        text = _render(error, "error")
        assert text.endswith(
            "Caused by `KeyError`: inner\n\nCaused by `OSError`: disk"
        )

    def test_causes_respect_the_cap(self):
        cause = ErrorInfo("KeyError", "x" * 3000, backtrace=("c" * 3000,))
        error = ErrorInfo("RuntimeError", "outer", backtrace=("o" * 3000,), cause=cause)
        text = _render(error, "error")
        assert len(text) <= MAX_LENGTH

    def test_cause_heading_is_never_cut(self):
        """Across the fit boundary a cause is either whole-headed or absent."""
        rendered, omitted = 0, 0
        for size in range(3900, 3980):
            cause = ErrorInfo("KeyError", "inner")
            text = _render(ErrorInfo("RuntimeError", "m" * size, cause=cause), "error")
            assert len(text) <= MAX_LENGTH
            if "Caused by" in text:
                assert "Caused by `KeyError`:" in text
                rendered += 1
            else:
                omitted += 1
        assert rendered and omitted

    def test_cause_at_the_fit_boundary(self):
        # Headline is 38 characters plus the message.
        cause = ErrorInfo("KeyError", "inner")
        fits = _render(ErrorInfo("RuntimeError", "m" * 3936, cause=cause), "error")
        assert fits.endswith("\n\nCaused by `KeyError`:...")
        assert len(fits) == MAX_LENGTH

        too_long = _render(ErrorInfo("RuntimeError", "m" * 3937, cause=cause), "error")
        assert "Caused by" not in too_long
        assert too_long.endswith("m")

    def test_cause_depth_is_capped(self):
        chain = None
        for i in range(40):
            chain = ErrorInfo("KeyError", str(i), cause=chain)
        text = _render(ErrorInfo("RuntimeError", "top", cause=chain), "error")
        assert text.count("Caused by") == MAX_CAUSE_DEPTH
        assert "Caused by `KeyError`: 39" in text
        assert "Caused by `KeyError`: 0" not in text

    def test_real_exception_chain(self):
        try:
            try:
                raise KeyError("id")
            except KeyError as inner:
                raise ValueError("bad") from inner
        except ValueError as exc:
            text = _render(exc, "error")

        assert text.startswith("*`ERROR`*: A `ValueError` occurred: bad\n\n```")
        assert "Caused by `KeyError`: 'id'" in text
        assert " in test_real_exception_chain" in text


class TestMetadata:
    def test_extra_metadata(self):
        formatter = MessageFormatter(
            disable_default_metadata=True,
            extra_metadata={
                "User ": "   `John` ",
                "  Reversed user": lambda context: "nhoJ",
            },
        )
        assert formatter.render(LogRecord("debug", "hello")).text == (
            "*`DEBUG`*: hello\n\n• *User*: `John`\n• *Reversed user*: nhoJ"
        )

    def test_metadata_comes_before_backtrace(self):
        formatter = MessageFormatter(
            disable_default_metadata=True,
            extra_metadata={"Job": "nightly"},
        )
        text = formatter.render(LogRecord("debug", _error(backtrace=["foo"]))).text
        assert text == f"{HEADLINE}\n\n• *Job*: nightly\n\n```foo```"

    def test_blank_values_are_skipped(self):
        formatter = MessageFormatter(
            disable_default_metadata=True,
            extra_metadata={"Empty": None, "Blank": "  ", "": "nameless"},
        )
        assert formatter.render(LogRecord("info", "hello")).text == "*`INFO`*: hello"

    def test_callable_gets_render_context(self):
        seen = []

        def describe(context):
            seen.append(context)
            return context.exception.class_name

        formatter = MessageFormatter(
            disable_default_metadata=True,
            extra_metadata={"Error": describe},
        )
        request = {"method": "GET"}
        record = LogRecord("error", _error(), request=request)
        text = formatter.render(record).text

        assert text.endswith("\n\n• *Error*: RuntimeError")
        assert isinstance(seen[0], RenderContext)
        assert seen[0].request is request

    def test_callable_errors_propagate(self):
        formatter = MessageFormatter(
            disable_default_metadata=True,
            extra_metadata={"Boom": lambda context: 1 / 0},
        )
        with pytest.raises(ZeroDivisionError):
            formatter.render(LogRecord("info", "hello"))

    def test_default_metadata(self, monkeypatch):
        monkeypatch.setenv("USER", "alice")
        text = MessageFormatter().render(LogRecord("info", "hello")).text
        assert text == (
            "*`INFO`*: hello\n\n"
            "• *User*: `alice`\n"
            f"• *Machine*: `{socket.gethostname()}`\n"
            f"• *PID*: `{os.getpid()}`"
        )

    def test_request_metadata_from_mapping(self, monkeypatch):
        monkeypatch.setenv("USER", "alice")
        request = {
            "method": "GET",
            "url": "http://google.com",
            "remote_addr": "127.0.0.1",
            "user_agent": "Mozilla",
        }
        text = MessageFormatter().render(LogRecord("info", "hello", request=request)).text
        assert text.startswith(
            "*`INFO`*: hello\n\n"
            "• *Method*: `GET`\n"
            "• *URL*: `http://google.com`\n"
            "• *Remote address*: `127.0.0.1`\n"
            "• *User-Agent*: `Mozilla`\n"
            "• *User*: `alice`"
        )

    def test_request_metadata_from_object(self):
        request = SimpleNamespace(method="POST", url="http://example.com/x", remote_addr=None)
        text = MessageFormatter().render(LogRecord("info", "hello", request=request)).text
        assert "• *Method*: `POST`" in text
        assert "• *URL*: `http://example.com/x`" in text
        assert "Remote address" not in text
        assert "User-Agent" not in text

    def test_disabled_default_metadata_skips_request(self):
        request = {"method": "GET"}
        formatter = MessageFormatter(disable_default_metadata=True)
        assert formatter.render(LogRecord("info", "hi", request=request)).text == "*`INFO`*: hi"

    def test_extra_metadata_overrides_defaults(self, monkeypatch):
        monkeypatch.setenv("USER", "alice")
        formatter = MessageFormatter(extra_metadata={" User": "bob"})
        text = formatter.render(LogRecord("info", "hello")).text
        assert "• *User*: bob" in text
        assert "alice" not in text

    def test_metadata_is_truncated(self):
        formatter = MessageFormatter(
            disable_default_metadata=True,
            extra_metadata={"Big": "x" * 5000},
        )
        text = formatter.render(LogRecord("info", "hello")).text
        assert len(text) == MAX_LENGTH
        assert text.endswith("x...")

    def test_no_room_for_metadata(self):
        formatter = MessageFormatter(
            disable_default_metadata=True,
            extra_metadata={"Job": "nightly"},
        )
        text = formatter.render(LogRecord("info", "a" * 5000)).text
        assert len(text) == MAX_LENGTH
        assert "Job" not in text


class TestIcons:
    @pytest.mark.parametrize("severity, icon", [
        ("debug", ":bug:"),
        ("info", ":information_source:"),
        ("warn", ":warning:"),
        ("error", ":x:"),
        ("fatal", ":fire:"),
        ("unknown", ":interrobang:"),
    ])
    def test_default_icons(self, severity, icon):
        formatter = MessageFormatter(disable_default_metadata=True)
        message = formatter.render(LogRecord(severity, "hello"))
        assert message.icon == icon
        assert message.severity is Severity.parse(severity)

    def test_single_icon_for_all(self):
        formatter = MessageFormatter(icon_emoji=" :robot_face: ")
        assert {formatter.icon_emoji(severity) for severity in Severity} == {":robot_face:"}

    def test_blank_icon_disables_icons(self):
        formatter = MessageFormatter(icon_emoji="  ")
        assert formatter.icon_emoji("error") is None
        assert formatter.render(LogRecord("error", "x")).icon is None

    def test_partial_override(self):
        formatter = MessageFormatter(icon_emojis={"Error": ":boom:"})
        assert formatter.icon_emoji("error") == ":boom:"
        assert formatter.icon_emoji("warn") == ":warning:"

    def test_set_icon_emoji(self):
        formatter = MessageFormatter()
        formatter.set_icon_emoji(":robot_face:")
        assert formatter.icon_emoji(Severity.DEBUG) == ":robot_face:"

    def test_unknown_severity(self):
        with pytest.raises(SeverityError):
            MessageFormatter().icon_emoji("loud")

    def test_icon_emojis_view_is_read_only(self):
        icons = MessageFormatter().icon_emojis
        with pytest.raises(TypeError):
            icons[Severity.ERROR] = ":boom:"


class TestOptions:
    def test_invalid_max_backtrace_lines(self):
        with pytest.raises(ConfigurationError):
            MessageFormatter(max_backtrace_lines=-2)

    def test_setter_validates(self):
        formatter = MessageFormatter()
        formatter.max_backtrace_lines = "3"
        assert formatter.max_backtrace_lines == 3
        with pytest.raises(ConfigurationError):
            formatter.max_backtrace_lines = "many"

    def test_from_config(self):
        config = FormatterConfig(
            disable_default_metadata=True,
            extra_metadata={"Job": "nightly"},
            icon_emoji=":robot_face:",
            max_backtrace_lines=2,
        )
        formatter = MessageFormatter.from_config(config)
        assert formatter.disable_default_metadata is True
        assert formatter.extra_metadata == {"Job": "nightly"}
        assert formatter.icon_emoji("error") == ":robot_face:"
        assert formatter.max_backtrace_lines == 2

    def test_from_config_keeps_default_icons(self):
        formatter = MessageFormatter.from_config(FormatterConfig(icon_emojis={"info": ":memo:"}))
        assert formatter.icon_emoji("info") == ":memo:"
        assert formatter.icon_emoji("error") == ":x:"
