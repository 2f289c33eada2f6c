"""
In-memory operational metrics, exposed by ``GET /metrics``.

Two families of measurements are collected:

- **HTTP requests**: counts keyed by ``"METHOD /path STATUS"`` and
  latency statistics keyed by ``"METHOD /path"``.  Creation identifiers
  in paths are collapsed to ``{creation_id}`` so that one key covers every
  creation.
- **Generation outcomes**: how many background generations ended in each
  terminal status, and which provider of the cascade produced the images
  of the completed ones.  A rising ``placeholder`` count is the first sign
  that every real provider is failing.

Latency observations are kept in a bounded sliding window per endpoint;
the oldest observations are evicted once the window is full.
"""

import collections
import datetime
import re
import threading

DEFAULT_MAXIMUM_OBSERVATIONS_PER_ENDPOINT = 10_000

_CREATION_IDENTIFIER_SEGMENT_PATTERN = re.compile(
    r"/(?:[0-9a-f]{32}|[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})(?=/|$)",
)


def normalise_metrics_path(path: str) -> str:
    """Replace creation identifier path segments with ``{creation_id}``."""
    return _CREATION_IDENTIFIER_SEGMENT_PATTERN.sub("/{creation_id}", path)


class MetricsCollector:
    """
    Thread-safe collector for request and generation metrics.

    A ``threading.Lock`` guards the counters because the collector is
    written from the ASGI middleware and from background tasks alike and
    never awaits while holding the lock.
    """

    def __init__(
        self,
        maximum_observations_per_endpoint: int = DEFAULT_MAXIMUM_OBSERVATIONS_PER_ENDPOINT,
    ) -> None:
        self._lock = threading.Lock()
        self._maximum_observations_per_endpoint = maximum_observations_per_endpoint
        self._request_counts: collections.Counter[str] = collections.Counter()
        self._request_latencies: dict[str, collections.deque[float]] = {}
        self._generation_outcomes_by_status: collections.Counter[str] = collections.Counter()
        self._generation_outcomes_by_provider: collections.Counter[str] = collections.Counter()
        self._service_started_at: str = _format_current_utc_timestamp()

    def record_request(
        self,
        method: str,
        path: str,
        status: int,
        duration_milliseconds: float,
    ) -> None:
        """
        Record a completed HTTP request.

        Called by ``CorrelationIdMiddleware`` after every request, whether
        it succeeded or failed.
        """
        endpoint_path = normalise_metrics_path(path)
        with self._lock:
            self._request_counts[f"{method} {endpoint_path} {status}"] += 1

            latency_key = f"{method} {endpoint_path}"
            if latency_key not in self._request_latencies:
                self._request_latencies[latency_key] = collections.deque(
                    maxlen=self._maximum_observations_per_endpoint,
                )
            self._request_latencies[latency_key].append(duration_milliseconds)

    def record_generation_outcome(self, status: str, provider_used: str | None) -> None:
        """
        Record the terminal status of one background generation.

        Args:
            status: ``completed`` or ``failed``.
            provider_used: The provider that produced the image, or
                ``None`` when no image was produced.
        """
        with self._lock:
            self._generation_outcomes_by_status[status] += 1
            if provider_used is not None:
                self._generation_outcomes_by_provider[provider_used] += 1

    def snapshot(self) -> dict:
        """
        Return a point-in-time snapshot of all collected metrics, ready for
        JSON serialisation.

        Latency statistics per endpoint are count, minimum, maximum,
        average and 95th percentile, in milliseconds.
        """
        with self._lock:
            result: dict = {
                "collected_at": _format_current_utc_timestamp(),
                "service_started_at": self._service_started_at,
                "request_counts": dict(self._request_counts),
                "request_latencies": {},
                "generation_outcomes": {
                    "by_status": dict(self._generation_outcomes_by_status),
                    "by_provider": dict(self._generation_outcomes_by_provider),
                },
            }

            for endpoint_key, latency_observations in self._request_latencies.items():
                observation_count = len(latency_observations)
                sorted_observations = sorted(latency_observations)
                percentile_95_index = min(int(observation_count * 0.95), observation_count - 1)

                result["request_latencies"][endpoint_key] = {
                    "count": observation_count,
                    "minimum_milliseconds": round(sorted_observations[0], 1),
                    "maximum_milliseconds": round(sorted_observations[-1], 1),
                    "average_milliseconds": round(sum(sorted_observations) / observation_count, 1),
                    "ninety_fifth_percentile_milliseconds": round(sorted_observations[percentile_95_index], 1),
                }

            return result


def _format_current_utc_timestamp() -> str:
    """Current UTC time in ISO 8601 with microseconds and a ``Z`` suffix."""
    return datetime.datetime.now(datetime.UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
