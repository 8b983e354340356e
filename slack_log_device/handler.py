"""Logging handler: routes standard library log records to a SlackLogDevice."""

import logging

from slack_log_device.device import SlackLogDevice
from slack_log_device.models import LogRecord, Severity


class SlackLogHandler(logging.Handler):
    """Forwards each emitted record to *device* as a LogRecord.

    The logger name becomes the source label. When the record carries
    exception info the exception is the payload and the log message is not
    rendered. A ``request`` passed through ``extra`` feeds request metadata.
    """

    def __init__(self, device: SlackLogDevice, level=logging.NOTSET):
        super().__init__(level)
        self.device = device

    def to_log_record(self, record: logging.LogRecord) -> LogRecord:
        if record.exc_info and record.exc_info[1] is not None:
            payload = record.exc_info[1]
        else:
            payload = record.getMessage()
        return LogRecord(
            Severity.from_levelno(record.levelno),
            payload,
            source_label=record.name,
            request=getattr(record, "request", None),
        )

    def handle(self, record: logging.LogRecord):
        """Filter and emit without the handler lock; the device serializes writes.

        The lock would be held while waiting on the dispatch thread, and the
        dispatch thread itself logs (transport errors, httpx debug output).
        """
        if self.device.is_dispatch_thread():
            return False
        rv = self.filter(record)
        if isinstance(rv, logging.LogRecord):
            record = rv
        if rv:
            self.emit(record)
        return rv

    def emit(self, record: logging.LogRecord) -> None:
        # Records logged while the device is flushing would feed back into it.
        if self.device.is_dispatch_thread():
            return
        try:
            self.device.write(self.to_log_record(record))
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        self.device.flush()

    def close(self) -> None:
        try:
            self.device.close()
        finally:
            super().close()
