from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
import logging
import threading
from typing import Callable, TypeVar

from perf_tap.errors import HistoryUnavailable

FALLBACK_FPS = 60.0
MIN_FPS_INTERVAL_MS = 100

T = TypeVar("T")


@dataclass(frozen=True)
class CounterSample:
    counters: tuple[int, ...]
    timestamp_ms: int


class HistoryStore:
    """Last cumulative counters seen per (metric, device, subject) key.

    Shared by every collection call. The lock covers one lookup, rate
    computation and write; it is never held across an adb command.
    Entries live until evicted by `ttl_s` or `max_entries`; with neither set
    the store grows with the number of distinct keys ever observed.
    """

    def __init__(
        self,
        ttl_s: float | None = None,
        max_entries: int | None = None,
        lock_timeout_s: float = 1.0,
    ) -> None:
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self.lock_timeout_s = lock_timeout_s
        self._samples: OrderedDict[str, CounterSample] = OrderedDict()
        self._lock = threading.Lock()
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def key(metric: str, device_id: str, subject: str) -> str:
        return f"{metric}:{device_id}:{subject}"

    def __len__(self) -> int:
        return len(self._samples)

    def get(self, key: str) -> CounterSample | None:
        self._acquire()
        try:
            return self._samples.get(key)
        finally:
            self._lock.release()

    def update(
        self,
        key: str,
        sample: CounterSample,
        derive: Callable[[CounterSample | None, CounterSample], T],
    ) -> T:
        """Derive a value from the previous sample, then store `sample`.

        The new sample is written whatever `derive` decides, so every parsed
        reading advances the history.
        """
        self._acquire()
        try:
            previous = self._samples.get(key)
            try:
                return derive(previous, sample)
            finally:
                self._samples[key] = sample
                self._samples.move_to_end(key)
                self._evict(sample.timestamp_ms)
        finally:
            self._lock.release()

    def _acquire(self) -> None:
        if not self._lock.acquire(timeout=self.lock_timeout_s):
            raise HistoryUnavailable(
                f"history lock not acquired within {self.lock_timeout_s}s"
            )

    def _evict(self, now_ms: int) -> None:
        if self.ttl_s is not None:
            cutoff = now_ms - int(self.ttl_s * 1000)
            stale = [k for k, s in self._samples.items() if s.timestamp_ms < cutoff]
            for key in stale:
                del self._samples[key]
            if stale:
                self.logger.debug("Evicted %s stale history entries.", len(stale))
        if self.max_entries is not None:
            while len(self._samples) > self.max_entries:
                key, _ = self._samples.popitem(last=False)
                self.logger.debug("Evicted history entry %s.", key)


def _frame_rate(previous: CounterSample | None, current: CounterSample) -> float:
    if previous is None:
        return FALLBACK_FPS
    elapsed_ms = current.timestamp_ms - previous.timestamp_ms
    if elapsed_ms <= MIN_FPS_INTERVAL_MS:
        return FALLBACK_FPS
    frames = max(current.counters[0] - previous.counters[0], 0)
    return frames / (elapsed_ms / 1000)


def _traffic_rates(
    previous: CounterSample | None, current: CounterSample
) -> tuple[float | None, float | None]:
    if previous is None:
        return None, None
    elapsed_ms = max(current.timestamp_ms - previous.timestamp_ms, 1)
    rx_diff = max(current.counters[0] - previous.counters[0], 0)
    tx_diff = max(current.counters[1] - previous.counters[1], 0)
    return rx_diff * 1000 / elapsed_ms, tx_diff * 1000 / elapsed_ms


def derive_frame_rate(
    store: HistoryStore, key: str, total_frames: int, now_ms: int
) -> float:
    """Frames per second since the last sample for `key`.

    Returns FALLBACK_FPS on the first sample or when less than
    MIN_FPS_INTERVAL_MS has elapsed.
    """
    sample = CounterSample(counters=(total_frames,), timestamp_ms=now_ms)
    return store.update(key, sample, _frame_rate)


def derive_traffic_rates(
    store: HistoryStore, key: str, rx_bytes: int, tx_bytes: int, now_ms: int
) -> tuple[float | None, float | None]:
    """Receive and transmit bytes per second, or (None, None) on first sample."""
    sample = CounterSample(counters=(rx_bytes, tx_bytes), timestamp_ms=now_ms)
    return store.update(key, sample, _traffic_rates)
