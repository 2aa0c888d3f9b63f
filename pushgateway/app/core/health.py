"""
Health check aggregation — probe for every dispatch subsystem.

Checks:
    • FCM sender configured (live or simulated)
    • APNs sender configured (live or simulated)
    • Jitter estimator state

An unconfigured provider family is DEGRADED: devices routed to it are
rejected, everything else keeps working. No configured family at all
is UNHEALTHY.

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from pushgateway.app.core.config import settings
from pushgateway.app.push.jitter import JitterEstimator
from pushgateway.app.push.models import ProviderFamily
from pushgateway.app.push.router import SenderRegistry
from pushgateway.app.push.senders.base import SimulatedSender

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_sender(senders: SenderRegistry, family: ProviderFamily) -> ComponentHealth:
    """Report whether a provider family has a sender."""
    comp = ComponentHealth(name=f"{family.value}_sender")
    start = time.monotonic()
    sender = senders.get(family)
    if sender is None:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Not configured; devices routed here are rejected"
    else:
        simulated = isinstance(sender, SimulatedSender)
        comp.status = HealthStatus.HEALTHY
        comp.message = "Simulated" if simulated else "Configured"
        comp.details = {"sender": type(sender).__name__, "simulated": simulated}
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_jitter(jitter: JitterEstimator) -> ComponentHealth:
    """Report the current jitter ceiling and history fill."""
    comp = ComponentHealth(name="jitter")
    start = time.monotonic()
    bound = await jitter.delay_bound()
    comp.status = HealthStatus.HEALTHY
    comp.message = f"Delay ceiling {bound:.3f}s"
    comp.details = {
        "max_jitter_seconds": jitter.max_jitter,
        "delay_bound_seconds": round(bound, 6),
        "samples": len(jitter),
    }
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(state: Any) -> HealthReport:
    """
    Run all health checks and aggregate into a report.

    ``state`` is the application state holding ``senders`` and ``jitter``.
    """
    report = HealthReport(
        version=state.settings.APP_VERSION,
        environment=state.settings.ENVIRONMENT,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    for family in ProviderFamily:
        report.components.append(await check_sender(state.senders, family))
    report.components.append(await check_jitter(state.jitter))

    # Aggregate status
    statuses = [c.status for c in report.components]
    if not state.senders.families():
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    if report.status is not HealthStatus.HEALTHY:
        logger.debug("Health check reports %s", report.status.value)
    return report
