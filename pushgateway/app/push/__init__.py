"""
push — Notification fan-out to FCM and APNs.

Sub-modules:
    senders/         — Per-provider delivery backends (FCM, APNs, simulated)
    engine           — Core orchestration: jitter, routing, retry, aggregation
    jitter           — Adaptive pre-dispatch delay estimator
    router           — Device → provider family / payload shape
    payload_builder  — Provider message construction
    metrics          — Prometheus counters for pushes and HTTP traffic
    models           — Data structures shared across the system
"""
