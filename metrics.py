"""In-memory metrics for the sub-agent scheduler.

Provides Prometheus-compatible text exposition format via get_metrics_text().
Uses only the Python standard library.

Thread-safe: all mutations are guarded by a threading.Lock so the module
is safe to use from runners and from executors that post from threads.

Usage:
    from metrics import record_spawn, record_finish, get_metrics_text

    record_spawn("implement")
    record_finish("Completed", 12.5)
    text = get_metrics_text()
"""

from __future__ import annotations

import math
import threading
import time
from collections import defaultdict
from typing import Dict, Tuple


# ---------------------------------------------------------------------------
# Histogram bucket boundaries (seconds), sub-agents run for minutes
# ---------------------------------------------------------------------------

_DEFAULT_BUCKETS: Tuple[float, ...] = (
    1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0,
)


# ---------------------------------------------------------------------------
# Internal storage types
# ---------------------------------------------------------------------------

class _Counter:
    """A monotonically increasing counter keyed by label tuples."""

    __slots__ = ("_values",)

    def __init__(self) -> None:
        self._values: Dict[Tuple[str, ...], float] = defaultdict(float)

    def inc(self, labels: Tuple[str, ...], amount: float = 1.0) -> None:
        self._values[labels] += amount

    def get(self, labels: Tuple[str, ...]) -> float:
        return self._values.get(labels, 0.0)

    def items(self):
        return self._values.items()


class _Gauge:
    """A value that can go up and down."""

    __slots__ = ("_value",)

    def __init__(self) -> None:
        self._value: float = 0.0

    def inc(self) -> None:
        self._value += 1

    def dec(self) -> None:
        self._value = max(0.0, self._value - 1)

    @property
    def value(self) -> float:
        return self._value


class _Histogram:
    """Unlabelled histogram with fixed buckets, a running sum, and a count."""

    __slots__ = ("_buckets", "counts", "sum", "count")

    def __init__(self, buckets: Tuple[float, ...] = _DEFAULT_BUCKETS) -> None:
        self._buckets = buckets
        self.counts: Dict[float, int] = {le: 0 for le in buckets}
        self.sum = 0.0
        self.count = 0

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for le in self._buckets:
            if value <= le:
                self.counts[le] += 1


# ---------------------------------------------------------------------------
# MetricsCollector
# ---------------------------------------------------------------------------

class MetricsCollector:
    """In-memory, thread-safe metrics collector."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._start_time = time.time()

        self.spawned_total = _Counter()
        self.finished_total = _Counter()
        self.rejected_total = _Counter()
        self.running = _Gauge()
        self.duration_seconds = _Histogram()

    # -- public helpers ------------------------------------------------

    def record_spawn(self, template: str) -> None:
        with self._lock:
            self.spawned_total.inc((template,))

    def record_rejected(self, reason: str) -> None:
        """Record a refused spawn.

        Parameters
        ----------
        reason:
            Error kind, e.g. ``"AdmissionRejected"`` or ``"UnknownTemplate"``.
        """
        with self._lock:
            self.rejected_total.inc((reason,))

    def record_start(self) -> None:
        with self._lock:
            self.running.inc()

    def record_finish(self, status: str, duration: float | None = None, started: bool = True) -> None:
        """Record a terminal transition.

        Parameters
        ----------
        status:
            Terminal status value (``"Completed"``, ``"Failed"``, ``"Cancelled"``).
        duration:
            Wall-clock seconds from spawn to finish, if known.
        started:
            Whether record_start() was called for this task.
        """
        with self._lock:
            self.finished_total.inc((status,))
            if started:
                self.running.dec()
            if duration is not None:
                self.duration_seconds.observe(duration)

    def reset(self) -> None:
        with self._lock:
            self.spawned_total = _Counter()
            self.finished_total = _Counter()
            self.rejected_total = _Counter()
            self.running = _Gauge()
            self.duration_seconds = _Histogram()

    # -- exposition -----------------------------------------------------

    def get_metrics_text(self) -> str:
        """Return all metrics in Prometheus text exposition format."""
        with self._lock:
            return self._render()

    def _render(self) -> str:
        lines: list[str] = []

        uptime = time.time() - self._start_time
        lines.append("# HELP process_uptime_seconds Time since the metrics collector was created")
        lines.append("# TYPE process_uptime_seconds gauge")
        lines.append(f"process_uptime_seconds {_fmt(uptime)}")
        lines.append("")

        lines.append("# HELP subagents_spawned_total Sub-agents spawned by template")
        lines.append("# TYPE subagents_spawned_total counter")
        for (template,), value in sorted(self.spawned_total.items()):
            lines.append(f'subagents_spawned_total{{template="{_escape(template)}"}} {_fmt(value)}')
        lines.append("")

        lines.append("# HELP subagents_finished_total Sub-agents that reached a terminal status")
        lines.append("# TYPE subagents_finished_total counter")
        for (status,), value in sorted(self.finished_total.items()):
            lines.append(f'subagents_finished_total{{status="{_escape(status)}"}} {_fmt(value)}')
        lines.append("")

        lines.append("# HELP subagents_rejected_total Spawn requests refused by reason")
        lines.append("# TYPE subagents_rejected_total counter")
        for (reason,), value in sorted(self.rejected_total.items()):
            lines.append(f'subagents_rejected_total{{reason="{_escape(reason)}"}} {_fmt(value)}')
        lines.append("")

        lines.append("# HELP subagents_running Sub-agents currently executing")
        lines.append("# TYPE subagents_running gauge")
        lines.append(f"subagents_running {_fmt(self.running.value)}")
        lines.append("")

        hist = self.duration_seconds
        lines.append("# HELP subagent_duration_seconds Sub-agent wall-clock duration in seconds")
        lines.append("# TYPE subagent_duration_seconds histogram")
        for le in sorted(hist.counts):
            lines.append(f'subagent_duration_seconds_bucket{{le="{_fmt(le)}"}} {hist.counts[le]}')
        lines.append(f'subagent_duration_seconds_bucket{{le="+Inf"}} {hist.count}')
        lines.append(f"subagent_duration_seconds_sum {_fmt(hist.sum)}")
        lines.append(f"subagent_duration_seconds_count {hist.count}")
        lines.append("")

        return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def _fmt(value: float) -> str:
    """Format a numeric value for Prometheus exposition.

    Integers are rendered without a decimal point; floats keep up to 6
    significant digits.
    """
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if math.isnan(value):
        return "NaN"
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return f"{value:.6g}"


def _escape(text: str) -> str:
    """Escape backslash, double-quote, and newline inside a label value."""
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


# ---------------------------------------------------------------------------
# Module-level singleton & convenience functions
# ---------------------------------------------------------------------------

collector = MetricsCollector()


def record_spawn(template: str) -> None:
    collector.record_spawn(template)


def record_rejected(reason: str) -> None:
    collector.record_rejected(reason)


def record_start() -> None:
    collector.record_start()


def record_finish(status: str, duration: float | None = None, started: bool = True) -> None:
    collector.record_finish(status, duration, started)


def get_metrics_text() -> str:
    """Return all metrics as a Prometheus-compatible text exposition string."""
    return collector.get_metrics_text()
