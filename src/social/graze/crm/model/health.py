import asyncio


class HealthGauge:
    """
    A makeshift readiness signal.

    Unexpected failures (anything that ends in a 500 or a failed background sweep) bump the gauge
    with `womp`. A background task calls `tick` periodically, which lets the value decay back
    towards zero. While the value sits above the threshold the readiness probe reports the
    service as unhealthy, so a burst of failures takes the instance out of rotation until it has
    been quiet for a while.
    """

    def __init__(self, value: int = 0, health_threshold: int = 100) -> None:
        self._value = value
        self._health_threshold = health_threshold
        self._lock = asyncio.Lock()

    @property
    def value(self) -> int:
        return self._value

    async def womp(self, d=1) -> int:
        async with self._lock:
            self._value += int(d)
            return self._value

    async def tick(self) -> None:
        async with self._lock:
            self._value = max(0, self._value - 1)

    async def is_healthy(self) -> bool:
        async with self._lock:
            return self._value <= self._health_threshold
