from collections import Counter
from collections.abc import Iterable
from threading import Lock


# Always present on /metrics, even before the first event.
FLEET_COUNTERS = (
    "provision_attempts_total",
    "provision_succeeded_total",
    "provision_failed_total",
    "teardown_succeeded_total",
    "teardown_failed_total",
    "connect_info_not_ready_total",
    "update_instances_reported_total",
)


class Metrics:
    def __init__(self, known: Iterable[str] = ()) -> None:
        self._lock = Lock()
        self._known = tuple(known)
        self._counters: Counter[str] = Counter()

    def inc(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[key] += amount

    def get(self, key: str) -> int:
        with self._lock:
            return self._counters[key]

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            values = {key: 0 for key in self._known}
            values.update(self._counters)
            return values

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()


metrics = Metrics(FLEET_COUNTERS)
