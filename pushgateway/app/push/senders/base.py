"""
base.py — Sender interface and the simulation backend.

The simulation sender logs what a live provider would receive and
always succeeds. It is what the gateway runs with when
``SENDER_MODE=simulation`` (local development, demos).
"""

from __future__ import annotations

import json
import logging
from typing import Protocol, runtime_checkable

from pushgateway.app.core.logging_config import redact_pushkey
from pushgateway.app.push.models import ProviderFamily, ProviderPayload

logger = logging.getLogger(__name__)


@runtime_checkable
class Sender(Protocol):
    """Send capability for one provider family. Safe for concurrent use."""

    family: ProviderFamily

    async def send(self, payload: ProviderPayload) -> None:
        ...

    async def aclose(self) -> None:
        ...


class SimulatedSender:
    """Logs the payload instead of delivering it."""

    def __init__(self, family: ProviderFamily):
        self.family = family

    async def send(self, payload: ProviderPayload) -> None:
        logger.info(
            "[%s:simulated] %s push → %s (%d bytes)",
            self.family.value.upper(),
            payload.shape.value,
            redact_pushkey(payload.pushkey),
            len(json.dumps(payload.message)),
        )

    async def aclose(self) -> None:
        pass
