from __future__ import annotations

import math
import os
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from threading import Lock
from time import perf_counter, time
from typing import ClassVar, Union

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

METRIC_PREFIX = "mcp_hello_world_"
HTTP_REQUESTS_TOTAL = f"{METRIC_PREFIX}http_requests_total"
HTTP_REQUEST_DURATION = f"{METRIC_PREFIX}http_request_duration_seconds"
HANDSHAKE_TOTAL = f"{METRIC_PREFIX}handshake_total"
HANDSHAKE_DURATION = f"{METRIC_PREFIX}handshake_duration_seconds"
COLD_START_TOTAL = f"{METRIC_PREFIX}cold_start_total"
UPTIME_SECONDS = f"{METRIC_PREFIX}uptime_seconds"
PROCESS_CPU_SECONDS = f"{METRIC_PREFIX}process_cpu_seconds_total"
PROCESS_START_TIME = f"{METRIC_PREFIX}process_start_time_seconds"
PROCESS_RESIDENT_MEMORY = f"{METRIC_PREFIX}process_resident_memory_bytes"
PROCESS_OPEN_FDS = f"{METRIC_PREFIX}process_open_fds"

HTTP_BUCKETS = (0.1, 0.3, 0.5, 0.7, 1, 3, 5, 7, 10)
HANDSHAKE_BUCKETS = (0.05, 0.1, 0.2, 0.3, 0.5, 1, 2, 3)

LabelValues = tuple[str, ...]
GaugeReading = Union[float, Mapping[LabelValues, float]]


class MetricError(Exception):
    """Misuse of the metrics registry. Raised at registration/observation time."""


class DuplicateMetricName(MetricError):
    pass


class UnknownMetric(MetricError):
    pass


class LabelMismatch(MetricError):
    pass


class MetricKindMismatch(MetricError):
    pass


@dataclass
class _HistogramSeries:
    bucket_counts: list[int]
    count: int = 0
    sum: float = 0.0


@dataclass
class Counter:
    name: str
    help: str
    labelnames: tuple[str, ...] = ()

    kind: ClassVar[str] = "counter"
    _series: dict[LabelValues, float] = field(default_factory=dict, init=False, repr=False)


@dataclass
class Histogram:
    name: str
    help: str
    labelnames: tuple[str, ...] = ()
    buckets: tuple[float, ...] = HTTP_BUCKETS

    kind: ClassVar[str] = "histogram"
    _series: dict[LabelValues, _HistogramSeries] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        bounds = sorted(float(b) for b in self.buckets if not math.isinf(float(b)))
        if not bounds:
            raise ValueError(f"Histogram {self.name} needs at least one finite bucket")
        if len(set(bounds)) != len(bounds):
            raise ValueError(f"Histogram {self.name} has duplicate buckets")
        self.buckets = tuple(bounds)


@dataclass
class Gauge:
    """A gauge whose value is computed by ``collect`` whenever a snapshot is taken.

    ``collect`` returns a plain number for an unlabeled gauge, or a mapping of
    label-value tuples to numbers for a labeled one.
    """

    name: str
    help: str
    collect: Callable[[], GaugeReading]
    labelnames: tuple[str, ...] = ()

    kind: ClassVar[str] = "gauge"


@dataclass
class CollectedCounter(Gauge):
    """A counter read from a monotonic source (for example CPU time) at snapshot time."""

    kind: ClassVar[str] = "counter"


Metric = Union[Counter, Histogram, Gauge]


def _format_value(value: float) -> str:
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if math.isnan(value):
        return "NaN"
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _render_labels(pairs: Iterable[tuple[str, str]]) -> str:
    rendered = ",".join(f'{name}="{_escape(value)}"' for name, value in pairs)
    return f"{{{rendered}}}" if rendered else ""


class MetricsRegistry:
    """Thread-safe, process-local metric store rendered in Prometheus text format."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._metrics: dict[str, Metric] = {}

    def register(self, metric: Metric) -> Metric:
        with self._lock:
            if metric.name in self._metrics:
                raise DuplicateMetricName(f"Metric {metric.name!r} is already registered")
            self._metrics[metric.name] = metric
        return metric

    def get(self, name: str) -> Metric:
        try:
            return self._metrics[name]
        except KeyError:
            raise UnknownMetric(f"Metric {name!r} is not registered") from None

    def increment(self, name: str, labels: Mapping[str, str] | None = None, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("Counters can only be incremented by non-negative amounts")
        metric = self._expect(name, Counter)
        key = self._label_values(metric, labels)
        with self._lock:
            metric._series[key] = metric._series.get(key, 0.0) + float(amount)

    def observe(self, name: str, labels: Mapping[str, str] | None, value: float) -> None:
        metric = self._expect(name, Histogram)
        key = self._label_values(metric, labels)
        value = float(value)
        with self._lock:
            series = metric._series.get(key)
            if series is None:
                series = _HistogramSeries(bucket_counts=[0] * len(metric.buckets))
                metric._series[key] = series
            for i, bound in enumerate(metric.buckets):
                if value <= bound:
                    series.bucket_counts[i] += 1
            series.count += 1
            series.sum += value

    def value(self, name: str, labels: Mapping[str, str] | None = None) -> float:
        """Current counter value, or histogram observation count, for one series."""

        metric = self.get(name)
        if isinstance(metric, Gauge):
            raise MetricKindMismatch(f"Metric {name!r} is collected at snapshot time; read it through snapshot()")
        key = self._label_values(metric, labels)
        with self._lock:
            series = metric._series.get(key)
            if series is None:
                return 0.0
            if isinstance(series, _HistogramSeries):
                return float(series.count)
            return series

    def snapshot(self) -> str:
        with self._lock:
            rendered = [
                (metric, None if isinstance(metric, Gauge) else self._series_lines(metric))
                for metric in self._metrics.values()
            ]

        lines: list[str] = []
        for metric, series_lines in rendered:
            lines.append(f"# HELP {metric.name} {metric.help}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            # Collectors run outside the lock; they may read the registry themselves.
            lines.extend(self._gauge_lines(metric) if series_lines is None else series_lines)
        return "\n".join(lines) + "\n"

    def _series_lines(self, metric: Counter | Histogram) -> list[str]:
        if isinstance(metric, Counter):
            return self._counter_lines(metric)
        return self._histogram_lines(metric)

    def _expect(self, name: str, kind: type) -> Metric:
        metric = self.get(name)
        if not isinstance(metric, kind):
            raise MetricKindMismatch(f"Metric {name!r} is a {metric.kind}, not a {kind.kind}")
        return metric

    @staticmethod
    def _label_values(metric: Metric, labels: Mapping[str, str] | None) -> LabelValues:
        labels = labels or {}
        if set(labels) != set(metric.labelnames):
            raise LabelMismatch(
                f"Metric {metric.name!r} expects labels {list(metric.labelnames)}, got {sorted(labels)}"
            )
        return tuple(str(labels[name]) for name in metric.labelnames)

    @staticmethod
    def _counter_lines(metric: Counter) -> list[str]:
        series = dict(metric._series)
        if not series and not metric.labelnames:
            series[()] = 0.0
        return [
            f"{metric.name}{_render_labels(zip(metric.labelnames, key))} {_format_value(value)}"
            for key, value in series.items()
        ]

    @staticmethod
    def _histogram_lines(metric: Histogram) -> list[str]:
        lines: list[str] = []
        for key, series in metric._series.items():
            pairs = list(zip(metric.labelnames, key))
            for bound, count in zip(metric.buckets, series.bucket_counts):
                le = _render_labels([*pairs, ("le", _format_value(bound))])
                lines.append(f"{metric.name}_bucket{le} {count}")
            lines.append(f"{metric.name}_bucket{_render_labels([*pairs, ('le', '+Inf')])} {series.count}")
            lines.append(f"{metric.name}_sum{_render_labels(pairs)} {_format_value(series.sum)}")
            lines.append(f"{metric.name}_count{_render_labels(pairs)} {series.count}")
        return lines

    @staticmethod
    def _gauge_lines(metric: Gauge) -> list[str]:
        reading = metric.collect()
        if isinstance(reading, Mapping):
            readings = dict(reading)
        else:
            readings = {(): float(reading)}
        lines = []
        for key, value in readings.items():
            if len(key) != len(metric.labelnames):
                raise LabelMismatch(f"Gauge {metric.name!r} collector returned labels {key!r}")
            lines.append(f"{metric.name}{_render_labels(zip(metric.labelnames, key))} {_format_value(value)}")
        return lines


def register_service_metrics(
    registry: MetricsRegistry,
    *,
    started_at: float | None = None,
    cold_start: bool = False,
) -> MetricsRegistry:
    """Register the request, handshake and process metrics exposed on ``/metrics``."""

    started = perf_counter() if started_at is None else started_at

    registry.register(
        Counter(HTTP_REQUESTS_TOTAL, "Total number of HTTP requests", ("method", "route", "status_code"))
    )
    registry.register(
        Histogram(
            HTTP_REQUEST_DURATION,
            "HTTP request duration in seconds",
            ("method", "route", "status_code"),
            buckets=HTTP_BUCKETS,
        )
    )
    registry.register(Counter(HANDSHAKE_TOTAL, "Total number of MCP handshakes", ("client", "status")))
    registry.register(
        Histogram(
            HANDSHAKE_DURATION,
            "MCP handshake duration in seconds",
            ("client", "status"),
            buckets=HANDSHAKE_BUCKETS,
        )
    )
    registry.register(Counter(COLD_START_TOTAL, "Total number of cold starts"))
    registry.register(Gauge(UPTIME_SECONDS, "Server uptime in seconds", lambda: perf_counter() - started))
    register_process_metrics(registry, started_at=started)

    if cold_start:
        registry.increment(COLD_START_TOTAL)
    return registry


_PROC_SELF = "/proc/self"


def _cpu_seconds() -> float:
    times = os.times()
    return times.user + times.system


def _resident_memory_bytes() -> float:
    with open(os.path.join(_PROC_SELF, "statm"), encoding="ascii") as fh:
        resident_pages = int(fh.read().split()[1])
    return float(resident_pages * os.sysconf("SC_PAGE_SIZE"))


def _open_fds() -> float:
    return float(len(os.listdir(os.path.join(_PROC_SELF, "fd"))))


def register_process_metrics(registry: MetricsRegistry, *, started_at: float) -> MetricsRegistry:
    """Process-level metrics, read when ``/metrics`` is scraped.

    Memory and file descriptor gauges come from ``/proc`` and are only
    registered where it exists.
    """

    start_time = time() - (perf_counter() - started_at)
    registry.register(
        CollectedCounter(PROCESS_CPU_SECONDS, "Total user and system CPU time spent in seconds", _cpu_seconds)
    )
    registry.register(
        Gauge(PROCESS_START_TIME, "Start time of the process since unix epoch in seconds", lambda: start_time)
    )
    if os.path.isdir(os.path.join(_PROC_SELF, "fd")):
        registry.register(Gauge(PROCESS_RESIDENT_MEMORY, "Resident memory size in bytes", _resident_memory_bytes))
        registry.register(Gauge(PROCESS_OPEN_FDS, "Number of open file descriptors", _open_fds))
    return registry
