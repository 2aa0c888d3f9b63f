"""
apns.py — Apple Push Notification service sender.

Delivery mechanism:
    • HTTP/2 to api.push.apple.com (or the sandbox) through aioapns
    • Token (.p8) authentication: key id + team id
    • apns-priority / apns-push-type headers come from the ProviderPayload

The aioapns client owns an HTTP/2 connection pool bound to the running
event loop, so it is created on first use, inside the loop, behind a
lock. Provider rejections (BadDeviceToken, Unregistered, ...) and
connection problems are all reported as SendError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from aioapns import APNs, NotificationRequest, PushType
from aioapns.exceptions import ConnectionError as APNsConnectionError

from pushgateway.app.core.errors import SendError
from pushgateway.app.core.logging_config import redact_pushkey
from pushgateway.app.push.models import ProviderFamily, ProviderPayload

logger = logging.getLogger(__name__)


class ApnsSender:
    """
    Send ProviderPayloads to APNs.

    Parameters
    ----------
    client_factory : callable
        Builds the aioapns ``APNs`` client (or a test double exposing
        ``send_notification``). Called once, lazily.
    topic : str
        App bundle id sent as ``apns-topic``.
    timeout_seconds : float
        Upper bound for one send.
    """

    family = ProviderFamily.APNS

    def __init__(
        self,
        client_factory: Callable[[], Any],
        topic: str,
        *,
        timeout_seconds: float = 10.0,
    ):
        self._client_factory = client_factory
        self._client: Optional[Any] = None
        self._client_lock = asyncio.Lock()
        self.topic = topic
        self._timeout = timeout_seconds

    @classmethod
    def from_key_file(
        cls,
        key_path: str,
        *,
        key_id: str,
        team_id: str,
        topic: str,
        use_sandbox: bool = False,
        timeout_seconds: float = 10.0,
    ) -> "ApnsSender":
        with open(key_path) as f:
            key = f.read()

        async def _silence(request: NotificationRequest, result: Any) -> None:
            # failures are reported through SendError instead
            pass

        def factory() -> APNs:
            return APNs(
                key=key,
                key_id=key_id,
                team_id=team_id,
                topic=topic,
                use_sandbox=use_sandbox,
                max_connection_attempts=1,
                err_func=_silence,
            )

        logger.info("APNs sender ready for topic %s (sandbox=%s)", topic, use_sandbox)
        return cls(factory, topic, timeout_seconds=timeout_seconds)

    async def _get_client(self) -> Any:
        async with self._client_lock:
            if self._client is None:
                self._client = self._client_factory()
            return self._client

    async def send(self, payload: ProviderPayload) -> None:
        client = await self._get_client()
        request = NotificationRequest(
            device_token=payload.pushkey,
            message=payload.message,
            priority=int(payload.apns_priority or "10"),
            push_type=PushType(payload.push_type or PushType.ALERT.value),
            apns_topic=self.topic,
        )

        try:
            result = await asyncio.wait_for(
                client.send_notification(request), timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise SendError("apns", f"timed out after {self._timeout:.1f}s") from exc
        except APNsConnectionError as exc:
            raise SendError("apns", f"connection error: {exc}") from exc

        if not result.is_successful:
            raise SendError(
                "apns",
                f"{result.status} {result.description or ''}".strip(),
                status=result.status,
            )

        logger.debug(
            "[APNS] Delivered %s push → %s",
            payload.push_type, redact_pushkey(payload.pushkey),
        )

    async def aclose(self) -> None:
        async with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            client.pool.close()
