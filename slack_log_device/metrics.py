"""Delivery metrics: thread-safe counters for webhook flushes."""

import statistics
import threading
import time

FLUSH_TRIGGERS = ("write", "timer", "manual", "shutdown")


class DeliveryMetrics:
    """Counts delivered and lost batches for one device."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._batches_sent: int = 0
        self._records_sent: int = 0
        self._bytes_sent: int = 0
        self._batches_failed: int = 0
        self._records_failed: int = 0
        self._send_times: list[float] = []
        self._flush_triggers: dict = dict.fromkeys(FLUSH_TRIGGERS, 0)
        self._start_time = time.monotonic()

    def record_batch(
        self,
        batch_size: int,
        bytes_sent: int,
        send_time_ms: float,
        trigger: str = "manual",
    ) -> None:
        """Record one delivered batch.

        Args:
            batch_size: Number of records joined into the payload.
            bytes_sent: Size of the payload text in bytes.
            send_time_ms: Time taken by the webhook POST, in milliseconds.
            trigger: What caused the flush: "write", "timer", "manual" or
                "shutdown".
        """
        with self._lock:
            self._batches_sent += 1
            self._records_sent += batch_size
            self._bytes_sent += bytes_sent
            self._send_times.append(send_time_ms)
            self._flush_triggers[trigger] = self._flush_triggers.get(trigger, 0) + 1

    def record_failure(self, batch_size: int) -> None:
        """Record a batch lost to a transport failure."""
        with self._lock:
            self._batches_failed += 1
            self._records_failed += batch_size

    def snapshot(self) -> dict:
        with self._lock:
            send_times = list(self._send_times)
            avg_send = sum(send_times) / len(send_times) if send_times else 0.0
            return {
                "batches_sent": self._batches_sent,
                "records_sent": self._records_sent,
                "bytes_sent": self._bytes_sent,
                "batches_failed": self._batches_failed,
                "records_failed": self._records_failed,
                "avg_send_time_ms": avg_send,
                "p95_send_time_ms": self._p95(send_times),
                "flush_triggers": dict(self._flush_triggers),
                "uptime_seconds": time.monotonic() - self._start_time,
            }

    @staticmethod
    def _p95(data: list) -> float:
        if not data:
            return 0.0
        if len(data) == 1:
            return float(data[0])
        return statistics.quantiles(data, n=20, method="inclusive")[-1]
