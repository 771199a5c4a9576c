import time


class Clock:
    """Monotonic wall clock measuring seconds since creation or the last reset."""

    def __init__(self):
        self._start = time.perf_counter()

    def reset(self):
        self._start = time.perf_counter()

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self._start
