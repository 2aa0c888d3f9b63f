"""Prometheus metrics for push dispatch.

Every application owns its own CollectorRegistry, exposed on /metrics.

Push metrics:
- successful_pushes_total{device_type}: devices delivered
- failed_pushes_total{device_type}: devices rejected after all retries
- devices_total: devices received
- notifications_total{type}: notifications that reached at least one device
- jitter_seconds: pre-dispatch delay rolled per notification
- last_successful_push_timestamp_seconds: unix time of the last delivery

HTTP metrics (recorded by RequestLoggingMiddleware):
- http_requests_total{endpoint, method, status}
- http_requests_duration_seconds{endpoint, method, status}

Usage:
    recorder = MetricsRecorder()
    recorder.record_push_success(DeviceClass.ANDROID)
    generate_latest(recorder.registry)
"""

from __future__ import annotations

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from pushgateway.app.push.models import DeviceClass, NotificationType

JITTER_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 15.0)
HTTP_LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class MetricsRecorder:
    """Counters and histograms fed by the dispatch engine and middleware."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()

        self.successful_pushes = Counter(
            "successful_pushes",
            "Devices a push was delivered to, by device type",
            ["device_type"],
            registry=self.registry,
        )
        self.failed_pushes = Counter(
            "failed_pushes",
            "Devices rejected after exhausting retries, by device type",
            ["device_type"],
            registry=self.registry,
        )
        self.devices = Counter(
            "devices",
            "Devices received in notification requests",
            registry=self.registry,
        )
        self.notifications = Counter(
            "notifications",
            "Notifications delivered to at least one device, by type",
            ["type"],
            registry=self.registry,
        )
        self.jitter = Histogram(
            "jitter_seconds",
            "Random delay applied before dispatching a notification",
            buckets=JITTER_BUCKETS,
            registry=self.registry,
        )
        self.last_successful_push = Gauge(
            "last_successful_push_timestamp_seconds",
            "Unix time of the last notification delivered to any device",
            registry=self.registry,
        )
        self.http_requests = Counter(
            "http_requests",
            "HTTP requests served",
            ["endpoint", "method", "status"],
            registry=self.registry,
        )
        self.http_requests_duration = Histogram(
            "http_requests_duration_seconds",
            "HTTP request latency",
            ["endpoint", "method", "status"],
            buckets=HTTP_LATENCY_BUCKETS,
            registry=self.registry,
        )

    # ── Push events ──

    def record_push_success(self, device_class: DeviceClass) -> None:
        self.successful_pushes.labels(device_type=device_class.value).inc()

    def record_push_failure(self, device_class: DeviceClass) -> None:
        self.failed_pushes.labels(device_type=device_class.value).inc()

    def record_devices(self, count: int) -> None:
        self.devices.inc(count)

    def record_notification_delivered(self, notification_type: NotificationType) -> None:
        self.notifications.labels(type=notification_type.value).inc()
        self.last_successful_push.set_to_current_time()

    def observe_jitter(self, seconds: float) -> None:
        self.jitter.observe(seconds)

    # ── HTTP ──

    def observe_http_request(
        self, endpoint: str, method: str, status: int, duration_seconds: float,
    ) -> None:
        labels = {"endpoint": endpoint, "method": method, "status": str(status)}
        self.http_requests.labels(**labels).inc()
        self.http_requests_duration.labels(**labels).observe(duration_seconds)
