"""
engine.py — Per-notification fan-out, retry and aggregation.

This is the central coordinator that:
    1. Rolls a jitter delay once per notification and sleeps it
    2. Routes every device to a provider family and payload shape
    3. Builds the payload and sends it, retrying failed attempts
    4. Turns every device into exactly one DispatchOutcome
    5. Feeds counters and the jitter history

═══════════════════════════════════════════════════════════════════════════
PER-DEVICE STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    Pending ──bad app id──────────────────────────▶ Rejected(invalid_app_id)
       │    ──no sender / unexpected fault─────────▶ Rejected(provider_failure)
       ▼
    Attempting ──ok──────────────────────────────▶ Succeeded
       │  ▲
       │  └── sleep(backoff), backoff ×2 ── Retrying   (attempt ≤ max_retries)
       └──── attempt > max_retries ──────────────▶ Rejected(retries_exhausted)

Backoff: 0.25s, 0.5s, 1s, 2s, ... capped at RETRY_MAX_BACKOFF.
At most max_retries + 1 attempts per device. Every SendError is retried
alike; the providers' transient and permanent failures are not told
apart.

═══════════════════════════════════════════════════════════════════════════
CONCURRENCY
═══════════════════════════════════════════════════════════════════════════

Devices of one notification run concurrently (asyncio.gather keeps
input order) unless DISPATCH_CONCURRENTLY is off. A failure in one
device never aborts its siblings. Cancellation of the request task
propagates into every sleep and send.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List

from pushgateway.app.core.config import Settings
from pushgateway.app.core.errors import (
    InvalidAppIdError,
    ProviderUnavailableError,
    SendError,
)
from pushgateway.app.core.logging_config import redact_pushkey
from pushgateway.app.push.jitter import JitterEstimator
from pushgateway.app.push.metrics import MetricsRecorder
from pushgateway.app.push.models import (
    Device,
    DispatchOutcome,
    DispatchReport,
    Notification,
    RejectReason,
)
from pushgateway.app.push.payload_builder import build_payload
from pushgateway.app.push.router import ProviderRouter

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Retry Configuration
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters shared by every device."""
    max_retries: int
    initial_backoff_seconds: float = 0.25
    max_backoff_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.PUSH_MAX_RETRIES,
            initial_backoff_seconds=settings.RETRY_INITIAL_BACKOFF,
            max_backoff_seconds=settings.RETRY_MAX_BACKOFF,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


def compute_backoff(policy: RetryPolicy, attempt: int) -> float:
    """
    Delay before the retry that follows failed attempt ``attempt`` (1-based).

    Doubles per attempt from the initial backoff, never above the ceiling.
    """
    delay = policy.initial_backoff_seconds * (2 ** (attempt - 1))
    return min(delay, policy.max_backoff_seconds)


# ═══════════════════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════════════════

class DispatchEngine:
    """
    Drives ProviderRouter → PayloadBuilder → Sender for every device.

    Parameters
    ----------
    settings : Settings
    router : ProviderRouter
    jitter : JitterEstimator
        Shared across all requests of the application.
    metrics : MetricsRecorder
    sleep : callable
        Awaitable sleep, ``asyncio.sleep`` unless a test swaps it.
    clock : callable
        Same monotonic clock the JitterEstimator uses.
    """

    def __init__(
        self,
        settings: Settings,
        router: ProviderRouter,
        jitter: JitterEstimator,
        metrics: MetricsRecorder,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.router = router
        self.jitter = jitter
        self.metrics = metrics
        self.retry_policy = RetryPolicy.from_settings(settings)
        self._sleep = sleep
        self._clock = clock

    async def dispatch(self, notification: Notification) -> DispatchReport:
        """
        Deliver one notification to all of its devices.

        Returns
        -------
        DispatchReport
            One outcome per input device, in input order.
        """
        started_at = self._clock()

        delay = await self.jitter.estimate_delay()
        self.metrics.observe_jitter(delay)
        if delay > 0:
            await self._sleep(delay)

        devices = notification.devices
        self.metrics.record_devices(len(devices))
        logger.debug(
            "Got notification to be pushed to %d devices (jitter %.3fs)",
            len(devices), delay,
            extra={"device_count": len(devices), "jitter_seconds": delay},
        )

        if self.settings.DISPATCH_CONCURRENTLY:
            outcomes: List[DispatchOutcome] = list(await asyncio.gather(
                *(self._deliver_isolated(notification, device) for device in devices)
            ))
        else:
            outcomes = []
            for device in devices:
                outcomes.append(await self._deliver_isolated(notification, device))

        report = DispatchReport(outcomes=outcomes, jitter_seconds=delay)

        # Only deliveries count towards the jitter frequency, so invalid
        # requests cannot be used to shrink the delay
        if report.any_succeeded:
            await self.jitter.record_success(started_at)
            self.metrics.record_notification_delivered(notification.notification_type())

        if report.rejected:
            logger.info(
                "Notification done: %d/%d devices rejected",
                len(report.rejected), len(devices),
                extra={"rejected_count": len(report.rejected), "device_count": len(devices)},
            )
        return report

    async def _deliver_isolated(self, notification: Notification, device: Device) -> DispatchOutcome:
        """Run one device to a terminal state, containing unexpected faults."""
        try:
            return await self.deliver_to_device(notification, device)
        except Exception:
            logger.exception(
                "Unexpected fault pushing to %s; rejecting the device",
                redact_pushkey(device.pushkey),
            )
            return DispatchOutcome(
                pushkey=device.pushkey,
                device_class=self.router.device_class(device),
                reason=RejectReason.PROVIDER_FAILURE,
            )

    async def deliver_to_device(self, notification: Notification, device: Device) -> DispatchOutcome:
        """
        Per-device state machine with bounded retries.

        Device-level errors are recovered into the returned outcome;
        anything else propagates to the caller.
        """
        try:
            route = self.router.route(device)
        except InvalidAppIdError:
            return DispatchOutcome(pushkey=device.pushkey, reason=RejectReason.INVALID_APP_ID)

        device_class = route.device_class
        try:
            sender = self.router.sender_for(route)
        except ProviderUnavailableError as exc:
            logger.warning(
                "%s; rejecting %s", exc.message, redact_pushkey(device.pushkey),
                extra={"device_type": device_class.value, "provider": route.provider.value},
            )
            return DispatchOutcome(
                pushkey=device.pushkey,
                device_class=device_class,
                reason=RejectReason.PROVIDER_FAILURE,
            )

        payload = build_payload(notification, device, self.settings, route)
        policy = self.retry_policy

        attempt = 0
        while True:
            attempt += 1
            try:
                await sender.send(payload)
            except SendError as exc:
                if attempt > policy.max_retries:
                    logger.info(
                        "A push failed (device type: %s), even after retrying: %s",
                        device_class.value, exc.message,
                        extra={"device_type": device_class.value, "attempt": attempt},
                    )
                    self.metrics.record_push_failure(device_class)
                    return DispatchOutcome(
                        pushkey=device.pushkey,
                        device_class=device_class,
                        reason=RejectReason.RETRIES_EXHAUSTED,
                        attempts=attempt,
                    )

                delay = compute_backoff(policy, attempt)
                logger.debug(
                    "Retry %d/%d for %s in %.2fs (%s)",
                    attempt, policy.max_retries, device_class.value, delay, exc.message,
                    extra={"device_type": device_class.value, "attempt": attempt},
                )
                await self._sleep(delay)
            else:
                self.metrics.record_push_success(device_class)
                return DispatchOutcome(
                    pushkey=device.pushkey,
                    device_class=device_class,
                    attempts=attempt,
                )
