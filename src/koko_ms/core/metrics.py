"""
Prometheus metrics for the synthesis pipeline.

Metrics Exposed:
    koko_jobs_total                  - Inference jobs by outcome (ok/error/discarded)
    koko_inference_duration_seconds  - Histogram of single-chunk inference latency
    koko_pool_instances              - Number of loaded inference sessions
    koko_pool_busy                   - Sessions currently running a job
    koko_pool_waiting                - Callers blocked waiting for a session
    koko_requests_total              - HTTP speech requests by status
    koko_request_duration_seconds    - HTTP speech request latency
    koko_audio_seconds_total         - Seconds of audio produced

Each ``KokoMetrics`` owns its own CollectorRegistry. Every InstancePool
holds one, so two pools in one process (two apps, or a test next to a
server) report their own gauges and job counts.

Usage:
    pool = InstancePool(factory, instances=2)
    pool.metrics.record_job("ok", duration=0.41, audio_seconds=2.3)
    content, content_type = pool.metrics.get_metrics_response()

Prometheus Scrape Config Example:
    scrape_configs:
      - job_name: 'koko-ms'
        static_configs:
          - targets: ['localhost:3000']
        metrics_path: '/metrics'
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class KokoMetrics:
    """
    Metric collection for the pool, dispatcher and HTTP front.

    All Prometheus metric operations are thread-safe, so worker threads
    record directly.
    """

    def __init__(self) -> None:
        self._registry = CollectorRegistry()

        self._jobs_total = Counter(
            "koko_jobs_total",
            "Inference jobs by outcome",
            ["status"],
            registry=self._registry,
        )
        self._inference_duration = Histogram(
            "koko_inference_duration_seconds",
            "Single chunk inference duration in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self._registry,
        )
        self._pool_instances = Gauge(
            "koko_pool_instances",
            "Loaded inference sessions",
            registry=self._registry,
        )
        self._pool_busy = Gauge(
            "koko_pool_busy",
            "Sessions currently running a job",
            registry=self._registry,
        )
        self._pool_waiting = Gauge(
            "koko_pool_waiting",
            "Callers waiting for a free session",
            registry=self._registry,
        )
        self._requests_total = Counter(
            "koko_requests_total",
            "HTTP speech requests",
            ["status", "stream"],
            registry=self._registry,
        )
        self._request_duration = Histogram(
            "koko_request_duration_seconds",
            "HTTP speech request duration in seconds",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self._registry,
        )
        self._audio_seconds = Counter(
            "koko_audio_seconds_total",
            "Seconds of synthesized audio",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_job(self, status: str, duration: float = 0.0, audio_seconds: float = 0.0) -> None:
        """
        Record a finished inference job.

        Args:
            status: "ok", "error" or "discarded" (finished after cancellation)
            duration: Inference time in seconds
            audio_seconds: Length of the produced audio
        """
        self._jobs_total.labels(status=status).inc()
        if duration > 0:
            self._inference_duration.observe(duration)
        if audio_seconds > 0:
            self._audio_seconds.inc(audio_seconds)

    def set_pool_instances(self, count: int) -> None:
        self._pool_instances.set(count)

    def set_pool_state(self, busy: int, waiting: int) -> None:
        """Update the busy and waiting gauges."""
        self._pool_busy.set(busy)
        self._pool_waiting.set(waiting)

    def record_request(self, status: str, duration: float, stream: bool = False) -> None:
        self._requests_total.labels(status=status, stream="true" if stream else "false").inc()
        self._request_duration.observe(duration)

    def get_metrics_response(self) -> tuple[bytes, str]:
        """
        Get metrics in Prometheus text format.

        Returns:
            Tuple of (content_bytes, content_type)
        """
        return generate_latest(self._registry), CONTENT_TYPE_LATEST
