import threading
import time

import pytest

from slack_log_device.device import SlackLogDevice
from slack_log_device.errors import TransportError

WEBHOOK_URL = "https://hooks.slack.com/services/T000/B000/XXXX"


class RecordingTransport:
    """Stands in for WebhookTransport, remembering every POST."""

    def __init__(self):
        self.calls: list[tuple[str, dict, float]] = []
        self.fail = False
        self.on_post = None
        self._lock = threading.Lock()

    def post(self, url, payload, timeout):
        with self._lock:
            self.calls.append((url, payload, timeout))
        if self.on_post is not None:
            self.on_post(payload)
        if self.fail:
            raise TransportError("webhook unreachable")

    @property
    def payloads(self) -> list[dict]:
        with self._lock:
            return [payload for _, payload, _ in self.calls]

    @property
    def texts(self) -> list[str]:
        return [payload["text"] for payload in self.payloads]

    def wait_for_calls(self, count: int, timeout: float = 3.0) -> bool:
        """Poll until at least *count* POSTs happened or *timeout* elapses."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if len(self.calls) >= count:
                return True
            time.sleep(0.02)
        return len(self.calls) >= count


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def make_device(transport):
    """Factory for devices posting to *transport*, closed at teardown.

    A long flush delay keeps the timer out of tests that do not want it.
    """
    devices = []

    def factory(**options):
        options.setdefault("webhook_url", WEBHOOK_URL)
        options.setdefault("flush_delay", 60)
        options.setdefault("transport", transport)
        device = SlackLogDevice(**options)
        devices.append(device)
        return device

    yield factory
    for device in devices:
        device.close()
