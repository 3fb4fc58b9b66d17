"""
backend/metrics.py

Lightweight thread-safe counters for the notification engine.
No external dependencies — uses Python's threading.Lock.

Usage:
    from backend.metrics import METRICS
    METRICS.rules_fired.inc()
    print(METRICS.as_dict())
"""

import threading


class Counter:
    """A thread-safe integer counter."""

    __slots__ = ("_value", "_lock")

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> int:
        with self._lock:
            self._value += amount
            return self._value

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:  # pragma: no cover
        return f"Counter({self._value})"


class Metrics:
    """Singleton holding all engine counters."""

    def __init__(self) -> None:
        # --- Dispatcher ---
        self.events_dispatched: Counter = Counter()
        """Dispatch passes started (one per audit event)."""

        self.rules_evaluated: Counter = Counter()
        """Rules that reached the trigger evaluator or the critical check."""

        self.rules_skipped: Counter = Counter()
        """Rules skipped: disabled, first-login repeat, failed-login threshold rules."""

        self.rules_fired: Counter = Counter()
        """Rules whose verdict was true."""

        self.rule_errors: Counter = Counter()
        """Rules that raised during evaluation and were absorbed."""

        self.store_failures: Counter = Counter()
        """Dispatch passes aborted because the rule store could not be read."""

        # --- Delivery ---
        self.deliveries_sent: Counter = Counter()
        self.deliveries_failed: Counter = Counter()

        self.jobs_dropped: Counter = Counter()
        """Delivery jobs dropped because the dispatch queue was full."""

    def as_dict(self) -> dict:
        """Return all counters as a plain dict (safe for JSON serialisation)."""
        return {
            name: counter.value
            for name, counter in vars(self).items()
            if isinstance(counter, Counter)
        }

    def reset_all(self) -> None:
        """Reset every counter to zero (useful in tests)."""
        for attr in vars(self).values():
            if isinstance(attr, Counter):
                attr.reset()


# Module-level singleton, import from here everywhere
METRICS = Metrics()
