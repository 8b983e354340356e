"""Command-line shipper: posts stdin lines to a Slack webhook."""

import logging
import signal
import sys
import threading

from slack_log_device.config import load_config
from slack_log_device.device import SlackLogDevice
from slack_log_device.errors import ConfigurationError
from slack_log_device.formatter import MessageFormatter
from slack_log_device.models import LogRecord


def ship_lines(lines, device: SlackLogDevice, config, shutdown_event: threading.Event) -> int:
    """Write each line to *device* as a record; return how many were written."""
    count = 0
    for line in lines:
        if shutdown_event.is_set():
            break
        line = line.rstrip("\n")
        if not line.strip():
            continue
        device.write(LogRecord(config.severity, line, source_label=config.source_label))
        count += 1
    return count


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger(__name__)

    try:
        config = load_config(argv)
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    shutdown_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    formatter = MessageFormatter.from_config(config.formatter)
    device = SlackLogDevice(config.device, formatter=formatter)
    logger.info(
        "Shipping stdin at %s to Slack (flush delay %ds)",
        config.severity.name, device.flush_delay,
    )

    try:
        count = ship_lines(sys.stdin, device, config, shutdown_event)
        logger.info("Read %d lines", count)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        device.close()
        stats = device.metrics.snapshot()
        logger.info(
            "Delivered %d records in %d batches, %d records lost",
            stats["records_sent"], stats["batches_sent"], stats["records_failed"],
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
