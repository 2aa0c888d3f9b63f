"""
test_senders.py — Tests for the provider delivery backends.

Covers:
    • FCM HTTP v1 request shape and bearer auth (httpx.MockTransport)
    • FCM error mapping (non-200, transport errors, token refresh failure)
    • APNs request construction and result mapping (fake aioapns client)
    • APNs timeouts and lazy client creation
    • Simulated sender

Run with:
    pytest tests/test_senders.py -v
"""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest
from aioapns import PushType

from pushgateway.app.core.errors import SendError
from pushgateway.app.push.models import PayloadShape, ProviderFamily, ProviderPayload
from pushgateway.app.push.senders.apns import ApnsSender
from pushgateway.app.push.senders.base import SimulatedSender
from pushgateway.app.push.senders.fcm import FcmSender


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

class _FakeCredentials:
    """Minimal google-auth credentials double."""

    def __init__(self, valid: bool = True, token: str = "cached-token", fail: bool = False):
        self.valid = valid
        self.token = token
        self.fail = fail
        self.refreshes = 0

    def refresh(self, request):
        self.refreshes += 1
        if self.fail:
            raise RuntimeError("invalid_grant")
        self.valid = True
        self.token = "fresh-token"


class _FakePool:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class _FakeApnsClient:
    """Stands in for aioapns.APNs."""

    def __init__(self, status: str = "200", description=None, delay: float = 0.0):
        self.status = status
        self.description = description
        self.delay = delay
        self.requests = []
        self.pool = _FakePool()

    async def send_notification(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        return SimpleNamespace(
            is_successful=self.status == "200",
            status=self.status,
            description=self.description,
        )


def _make_payload(
    provider: ProviderFamily = ProviderFamily.FCM,
    shape: PayloadShape = PayloadShape.GENERIC,
    apns_priority=None,
    push_type=None,
) -> ProviderPayload:
    return ProviderPayload(
        provider=provider,
        shape=shape,
        pushkey="device-token-abcdef",
        message={"token": "device-token-abcdef", "notification": {"title": "1 unread"}},
        apns_priority=apns_priority,
        push_type=push_type,
    )


def _make_fcm_sender(handler, credentials=None) -> FcmSender:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FcmSender(
        credentials or _FakeCredentials(),
        "demo-project",
        endpoint="https://fcm.test/v1",
        client=client,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: FCM
# ═══════════════════════════════════════════════════════════════════════════

class TestFcmSender:
    """Test the FCM HTTP v1 sender."""

    @pytest.mark.asyncio
    async def test_posts_message_with_bearer_token(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"name": "projects/demo-project/messages/1"})

        sender = _make_fcm_sender(handler)
        payload = _make_payload()
        await sender.send(payload)
        await sender.aclose()

        assert len(seen) == 1
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://fcm.test/v1/projects/demo-project/messages:send"
        assert request.headers["Authorization"] == "Bearer cached-token"
        assert json.loads(request.content) == {"message": payload.message}

    @pytest.mark.asyncio
    async def test_non_200_is_send_error(self):
        def handler(request):
            return httpx.Response(404, json={"error": {"status": "NOT_FOUND"}})

        sender = _make_fcm_sender(handler)
        with pytest.raises(SendError) as exc_info:
            await sender.send(_make_payload())
        await sender.aclose()

        assert exc_info.value.details["status_code"] == 404
        assert exc_info.value.provider == "fcm"

    @pytest.mark.asyncio
    async def test_transport_error_is_send_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        sender = _make_fcm_sender(handler)
        with pytest.raises(SendError, match="ConnectError"):
            await sender.send(_make_payload())
        await sender.aclose()

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_once(self):
        seen = []

        def handler(request):
            seen.append(request.headers["Authorization"])
            return httpx.Response(200, json={})

        credentials = _FakeCredentials(valid=False)
        sender = _make_fcm_sender(handler, credentials)
        await sender.send(_make_payload())
        await sender.send(_make_payload())
        await sender.aclose()

        assert credentials.refreshes == 1
        assert seen == ["Bearer fresh-token", "Bearer fresh-token"]

    @pytest.mark.asyncio
    async def test_refresh_failure_is_send_error(self):
        def handler(request):
            return httpx.Response(200, json={})

        sender = _make_fcm_sender(handler, _FakeCredentials(valid=False, fail=True))
        with pytest.raises(SendError, match="token refresh failed"):
            await sender.send(_make_payload())
        await sender.aclose()


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: APNs
# ═══════════════════════════════════════════════════════════════════════════

class TestApnsSender:
    """Test the APNs sender against a fake aioapns client."""

    @pytest.mark.asyncio
    async def test_builds_notification_request(self):
        client = _FakeApnsClient()
        sender = ApnsSender(lambda: client, "com.example.messenger")
        payload = _make_payload(
            ProviderFamily.APNS, PayloadShape.APPLE_NATIVE,
            apns_priority="5", push_type="background",
        )

        await sender.send(payload)

        request = client.requests[0]
        assert request.device_token == "device-token-abcdef"
        assert request.message == payload.message
        assert request.priority == 5
        assert request.push_type is PushType.BACKGROUND
        assert request.apns_topic == "com.example.messenger"

    @pytest.mark.asyncio
    async def test_defaults_to_alert_priority_ten(self):
        client = _FakeApnsClient()
        sender = ApnsSender(lambda: client, "com.example.messenger")

        await sender.send(_make_payload(ProviderFamily.APNS, PayloadShape.APPLE_NATIVE))

        assert client.requests[0].priority == 10
        assert client.requests[0].push_type is PushType.ALERT

    @pytest.mark.asyncio
    async def test_unsuccessful_result_is_send_error(self):
        client = _FakeApnsClient(status="400", description="BadDeviceToken")
        sender = ApnsSender(lambda: client, "com.example.messenger")

        with pytest.raises(SendError, match="BadDeviceToken") as exc_info:
            await sender.send(_make_payload(ProviderFamily.APNS, PayloadShape.APPLE_NATIVE))
        assert exc_info.value.details["status"] == "400"

    @pytest.mark.asyncio
    async def test_timeout_is_send_error(self):
        client = _FakeApnsClient(delay=5.0)
        sender = ApnsSender(lambda: client, "com.example.messenger", timeout_seconds=0.01)

        with pytest.raises(SendError, match="timed out"):
            await sender.send(_make_payload(ProviderFamily.APNS, PayloadShape.APPLE_NATIVE))

    @pytest.mark.asyncio
    async def test_client_created_once(self):
        created = []

        def factory():
            client = _FakeApnsClient()
            created.append(client)
            return client

        sender = ApnsSender(factory, "com.example.messenger")
        payload = _make_payload(ProviderFamily.APNS, PayloadShape.APPLE_NATIVE)
        await asyncio.gather(sender.send(payload), sender.send(payload))

        assert len(created) == 1
        assert len(created[0].requests) == 2

    @pytest.mark.asyncio
    async def test_aclose_drops_client(self):
        created = []

        def factory():
            created.append(_FakeApnsClient())
            return created[-1]

        sender = ApnsSender(factory, "com.example.messenger")
        payload = _make_payload(ProviderFamily.APNS, PayloadShape.APPLE_NATIVE)
        await sender.send(payload)
        await sender.aclose()
        await sender.send(payload)

        assert len(created) == 2

    @pytest.mark.asyncio
    async def test_aclose_closes_connection_pool(self):
        client = _FakeApnsClient()
        sender = ApnsSender(lambda: client, "com.example.messenger")
        await sender.send(_make_payload(ProviderFamily.APNS, PayloadShape.APPLE_NATIVE))

        await sender.aclose()

        assert client.pool.closed is True

    @pytest.mark.asyncio
    async def test_aclose_without_client_is_noop(self):
        created = []
        sender = ApnsSender(lambda: created.append(1), "com.example.messenger")

        await sender.aclose()

        assert created == []


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Simulation
# ═══════════════════════════════════════════════════════════════════════════

class TestSimulatedSender:
    """Test the logging-only sender."""

    @pytest.mark.asyncio
    async def test_always_succeeds(self):
        sender = SimulatedSender(ProviderFamily.FCM)
        await sender.send(_make_payload())
        await sender.aclose()
        assert sender.family is ProviderFamily.FCM

    @pytest.mark.asyncio
    async def test_never_logs_full_pushkey(self, caplog):
        sender = SimulatedSender(ProviderFamily.APNS)
        with caplog.at_level("INFO"):
            await sender.send(_make_payload(ProviderFamily.APNS, PayloadShape.APPLE_NATIVE))
        assert "device-token" in caplog.text
        assert "device-token-abcdef" not in caplog.text
