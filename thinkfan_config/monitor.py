"""Periodic temperature readings of the configured sensors."""

import logging
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass

from thinkfan_config.errors import SensorUnavailableError
from thinkfan_config.thermal import read_temperature

log = logging.getLogger(__name__)

HISTORY_LENGTH = 10  # readings kept per sensor


@dataclass(frozen=True)
class Reading:
    timestamp: float
    value: float


class TemperatureMonitor:
    """Reads a set of sensor paths in parallel, once per interval.

    A path that fails or is too slow to answer reports None for that cycle
    without holding back the others. Stopping takes effect between cycles.
    """

    def __init__(
        self,
        paths: list[str],
        interval: float,
        read: Callable[[str], float] = read_temperature,
        read_timeout: float | None = None,
    ) -> None:
        self._paths = list(paths)
        self._interval = interval
        self._read = read
        self._read_timeout = read_timeout if read_timeout is not None else interval
        self._history: dict[str, deque[Reading]] = {
            p: deque(maxlen=HISTORY_LENGTH) for p in self._paths
        }
        # At most one read in flight per path, each with its own worker
        self._pool = ThreadPoolExecutor(
            max_workers=max(1, len(self._paths)),
            thread_name_prefix="sensor-read",
        )
        self._pending: dict[str, Future] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def history(self, path: str) -> list[Reading]:
        return list(self._history.get(path, ()))

    def _read_one(self, path: str) -> float | None:
        try:
            return self._read(path)
        except SensorUnavailableError as e:
            log.warning("%s", e)
            return None

    def poll_once(self) -> dict[str, float | None]:
        """Read every path once and record the successful readings."""
        values: dict[str, float | None] = {}
        futures: dict[str, Future] = {}
        for path in self._paths:
            previous = self._pending.get(path)
            if previous is not None and not previous.done():
                log.warning("Reading %s still pending from an earlier cycle", path)
                values[path] = None
                continue
            futures[path] = self._pool.submit(self._read_one, path)

        done, _ = wait(futures.values(), timeout=self._read_timeout)

        now = time.time()
        for path, future in futures.items():
            if future not in done:
                self._pending[path] = future
                log.warning("Reading %s timed out", path)
                values[path] = None
                continue
            values[path] = future.result()
            if values[path] is not None:
                self._history[path].append(Reading(timestamp=now, value=values[path]))
        return values

    def stop(self) -> None:
        self._running = False

    def close(self) -> None:
        self.stop()
        self._pool.shutdown(wait=False, cancel_futures=True)

    def _wait(self, seconds: float) -> None:
        """Sleep in small increments so stop() takes effect promptly."""
        end = time.monotonic() + seconds
        while self._running and time.monotonic() < end:
            time.sleep(max(0.0, min(0.5, end - time.monotonic())))

    def run(
        self, on_readings: Callable[[dict[str, float | None]], None], cycles: int | None = None,
    ) -> None:
        """Poll until stop() is called or ``cycles`` polls have run."""
        self._running = True
        count = 0
        while self._running:
            on_readings(self.poll_once())
            count += 1
            if cycles is not None and count >= cycles:
                break
            self._wait(self._interval)
        self._running = False
