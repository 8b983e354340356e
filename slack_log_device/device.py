"""Slack log device: buffers writes and flushes them to a webhook.

The buffer is owned by a single dispatch thread. Callers never touch it;
they send commands (WRITE, FLUSH, SNAPSHOT, SHUTDOWN) through a queue and
wait for the dispatch thread to acknowledge them. The delayed flush is a
single deadline owned by that thread: each write that does not flush at once
pushes it back, so at most one flush is ever scheduled per device.
"""

import atexit
import dataclasses
import logging
import queue
import threading
import time
from dataclasses import dataclass, field

from slack_log_device.config import DeviceConfig
from slack_log_device.formatter import MessageFormatter
from slack_log_device.metrics import DeliveryMetrics
from slack_log_device.models import LogRecord, RenderedMessage
from slack_log_device.text import byte_size, normalize_text
from slack_log_device.transport import WebhookTransport, build_payload

logger = logging.getLogger(__name__)

SEPARATOR = "\n"

WRITE = "write"
FLUSH = "flush"
SNAPSHOT = "snapshot"
SHUTDOWN = "shutdown"

# How often a waiting caller checks that the dispatch thread is still alive.
_ACK_POLL_INTERVAL = 0.05


@dataclass
class _Command:
    kind: str
    item: object = None
    done: threading.Event = field(default_factory=threading.Event)
    result: object = None


def _config_property(name: str) -> property:
    def getter(self):
        return getattr(self._config, name)

    def setter(self, value):
        self._config = dataclasses.replace(self._config, **{name: value})

    return property(getter, setter)


def _batch_icon(batch: list[RenderedMessage]) -> str | None:
    """Icon of the most severe message in the batch (earliest on ties)."""
    with_icon = [message for message in batch if message.icon]
    if not with_icon:
        return None
    best = max(
        with_icon,
        key=lambda message: message.severity.rank if message.severity else -1,
    )
    return best.icon


class SlackLogDevice:
    """Log device that batches messages and posts them to a Slack webhook.

    Options are the DeviceConfig fields; they override *config* and are
    validated eagerly. Writes are strings (stripped, blank ones ignored) or
    LogRecords, which are rendered by *formatter*.

    The dispatch thread and an ``atexit`` hook keep the device alive until
    close() is called, so call it (or close the handler) when done. Devices
    left open are flushed and stopped at interpreter exit.
    """

    def __init__(
        self,
        config: DeviceConfig | None = None,
        *,
        formatter: MessageFormatter | None = None,
        transport: WebhookTransport | None = None,
        metrics: DeliveryMetrics | None = None,
        **options,
    ):
        merged = dataclasses.asdict(config) if config is not None else {}
        merged.update(options)
        self._config = DeviceConfig.from_dict(merged)
        self._formatter = formatter if formatter is not None else MessageFormatter()
        self._transport = transport if transport is not None else WebhookTransport()
        self._metrics = metrics if metrics is not None else DeliveryMetrics()

        self._commands: queue.Queue = queue.Queue()
        # Owned by the dispatch thread
        self._pending: list[RenderedMessage] = []
        self._deadline: float | None = None

        self._closed = threading.Event()
        self._worker = threading.Thread(
            target=self._run, name="slack-log-device", daemon=True
        )
        self._worker.start()
        atexit.register(self.close)

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    auto_flush = _config_property("auto_flush")
    channel = _config_property("channel")
    flush_delay = _config_property("flush_delay")
    max_buffer_size = _config_property("max_buffer_size")
    timeout = _config_property("timeout")
    username = _config_property("username")
    webhook_url = _config_property("webhook_url")

    @property
    def config(self) -> DeviceConfig:
        return self._config

    @property
    def formatter(self) -> MessageFormatter:
        return self._formatter

    @property
    def metrics(self) -> DeliveryMetrics:
        return self._metrics

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write(self, message) -> None:
        """Buffer *message*, flushing now or scheduling a delayed flush."""
        if message is None:
            return
        if not isinstance(message, LogRecord):
            message = normalize_text(message).strip()
            if not message:
                return
        self._submit(_Command(WRITE, message))

    def flush(self) -> None:
        """Deliver everything buffered so far as one payload."""
        self._submit(_Command(FLUSH))

    def should_flush(self) -> bool:
        return self._should_flush(self.pending_messages())

    def pending_messages(self) -> list[str]:
        """Texts currently buffered, in write order."""
        return self._submit(_Command(SNAPSHOT))

    def close(self) -> None:
        """Flush one last time and stop the dispatch thread. Idempotent."""
        if self._closed.is_set():
            return
        self._closed.set()
        atexit.unregister(self.close)
        self._submit(_Command(SHUTDOWN))

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def is_dispatch_thread(self) -> bool:
        return threading.current_thread() is self._worker

    # ------------------------------------------------------------------
    # Command plumbing
    # ------------------------------------------------------------------

    def _submit(self, command: _Command):
        if self.is_dispatch_thread():
            if command.kind == WRITE:
                # Logged from inside a flush: queue it, never wait on ourselves.
                self._commands.put(command)
                return None
            return self._handle(command)

        if self._worker.is_alive():
            self._commands.put(command)
            while not command.done.wait(_ACK_POLL_INTERVAL):
                if not self._worker.is_alive():
                    break
        if command.done.is_set():
            return command.result
        return self._handle_after_shutdown(command)

    def _handle_after_shutdown(self, command: _Command):
        """Serve a command the stopped dispatch thread will never see."""
        if command.kind == WRITE:
            message = self._render(command.item)
            if message is not None:
                self._deliver([message], trigger="write")
            return None
        if command.kind == SNAPSHOT:
            return []
        return None

    def _run(self):
        while True:
            timeout = None
            if self._deadline is not None:
                timeout = max(0.0, self._deadline - time.monotonic())
            try:
                command = self._commands.get(timeout=timeout)
            except queue.Empty:
                self._deadline = None
                self._flush_pending("timer")
                continue

            try:
                command.result = self._handle(command)
            except Exception:
                logger.exception("Failed to handle %s command", command.kind)
            finally:
                command.done.set()

            if command.kind == SHUTDOWN:
                logger.debug("Dispatch thread stopped")
                return

    def _handle(self, command: _Command):
        if command.kind == WRITE:
            self._append(command.item)
        elif command.kind == FLUSH:
            self._deadline = None
            self._flush_pending("manual")
        elif command.kind == SNAPSHOT:
            return [message.text for message in self._pending]
        elif command.kind == SHUTDOWN:
            self._deadline = None
            self._flush_pending("shutdown")
        return None

    # ------------------------------------------------------------------
    # Buffer (dispatch thread only)
    # ------------------------------------------------------------------

    def _should_flush(self, texts: list[str]) -> bool:
        config = self._config
        return (
            config.auto_flush
            or config.flush_delay == 0
            or byte_size(SEPARATOR.join(texts)) > config.max_buffer_size
        )

    def _render(self, item) -> RenderedMessage | None:
        if not isinstance(item, LogRecord):
            return RenderedMessage(item)
        try:
            return self._formatter.render(item)
        except Exception:
            logger.exception("Failed to render %s record", item.severity.name)
            return None

    def _append(self, item) -> None:
        message = self._render(item)
        if message is None:
            return
        self._pending.append(message)
        if self._should_flush([m.text for m in self._pending]):
            self._deadline = None
            self._flush_pending("write")
        else:
            self._deadline = time.monotonic() + self._config.flush_delay

    def _flush_pending(self, trigger: str) -> None:
        if not self._pending:
            return
        batch, self._pending = self._pending, []
        self._deliver(batch, trigger)

    def _deliver(self, batch: list[RenderedMessage], trigger: str) -> None:
        """POST a batch as one payload. Failures are logged, never raised."""
        config = self._config
        text = SEPARATOR.join(message.text for message in batch)
        payload = build_payload(
            text,
            channel=config.channel,
            username=config.username,
            icon_emoji=_batch_icon(batch),
        )

        start = time.monotonic()
        try:
            self._transport.post(config.webhook_url, payload, timeout=config.timeout)
        except Exception:
            self._metrics.record_failure(len(batch))
            logger.exception("Failed to deliver batch of %d records", len(batch))
            return

        elapsed_ms = (time.monotonic() - start) * 1000
        self._metrics.record_batch(
            batch_size=len(batch),
            bytes_sent=byte_size(text),
            send_time_ms=elapsed_ms,
            trigger=trigger,
        )
        logger.debug("Flushed batch of %d records (%s)", len(batch), trigger)
