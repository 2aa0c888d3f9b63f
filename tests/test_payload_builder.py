"""
test_payload_builder.py — Tests for provider message construction.

Covers:
    • Android data messages (stripped notification, no visible block)
    • Apple data messages relayed through FCM
    • Generic gateway-rendered messages (visible and counts-only)
    • Native APNs payloads (alert, badge-only, background)
    • Stripped notification rules (no content, event_id_only)
    • Determinism of the encoded JSON

Run with:
    pytest tests/test_payload_builder.py -v
"""

from __future__ import annotations

import json

import pytest

from pushgateway.app.core.config import Settings
from pushgateway.app.push.models import (
    Counts,
    Device,
    Notification,
    PayloadShape,
    ProviderFamily,
)
from pushgateway.app.push.payload_builder import (
    APNS_PRIORITY_ALERT,
    APNS_PRIORITY_BACKGROUND,
    build_payload,
    encode_payload,
    render_title,
    resolve_sound,
    stripped_notification,
)
from pushgateway.app.push.router import ProviderRouter, SenderRegistry


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

APP_ID = "com.famedly.🦊"


def _make_settings(**overrides) -> Settings:
    values = dict(APP_ID=APP_ID, MAX_JITTER_DELAY=0.0, NOTIFICATION_TITLE="<count> unread messages")
    values.update(overrides)
    return Settings(**values)


def _make_device(
    pushkey: str = "pushkey-0123456789",
    app_id: str = APP_ID,
    data=None,
    tweaks=None,
    notify_via=None,
) -> Device:
    return Device(
        app_id=app_id,
        pushkey=pushkey,
        pushkey_ts=1_700_000_000,
        data=data,
        tweaks=tweaks,
        notify_via=notify_via,
    )


def _make_notification(
    devices=(),
    event_id="$event:example.com",
    room_id="!room:example.com",
    unread=3,
    counts_only=False,
    ciphertext=None,
    with_counts=True,
) -> Notification:
    return Notification(
        devices=tuple(devices),
        event_id=event_id,
        room_id=room_id,
        type="m.room.message",
        sender="@alice:example.com",
        sender_display_name="Alice",
        room_name="Lunch",
        prio="high",
        counts=Counts(unread=unread, missed_calls=1) if with_counts else None,
        content={"msgtype": "m.text", "body": "secret body"},
        ciphertext=ciphertext,
        counts_only=counts_only,
    )


def _build(notification: Notification, device: Device, settings: Settings = None):
    settings = settings or _make_settings()
    route = ProviderRouter(settings, SenderRegistry()).route(device)
    return build_payload(notification, device, settings, route)


def _decoded_data(payload) -> dict:
    return json.loads(payload.message["data"]["notification"])


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Helpers
# ═══════════════════════════════════════════════════════════════════════════

class TestHelpers:
    """Test title rendering, sound resolution and notification stripping."""

    def test_title_substitutes_count(self):
        assert render_title(_make_settings(), 7) == "7 unread messages"

    def test_sound_default(self):
        assert resolve_sound(_make_device(), _make_settings()) == "default"

    def test_sound_tweak_wins(self):
        device = _make_device(tweaks={"sound": "bing"})
        assert resolve_sound(device, _make_settings()) == "bing"

    def test_non_string_sound_tweak_ignored(self):
        device = _make_device(tweaks={"sound": True})
        assert resolve_sound(device, _make_settings()) == "default"

    def test_stripped_drops_content(self):
        device = _make_device()
        other = _make_device(pushkey="other")
        stripped = stripped_notification(_make_notification([device, other]), device)
        assert "content" not in stripped
        assert stripped["event_id"] == "$event:example.com"
        assert stripped["counts"] == {"unread": 3, "missed_calls": 1}
        assert stripped["devices"] == [device.to_dict()]

    def test_stripped_event_id_only(self):
        device = _make_device(data={"data_message": "android", "format": "event_id_only"})
        stripped = stripped_notification(_make_notification([device]), device)
        assert set(stripped) == {"event_id", "room_id", "prio", "counts", "devices"}


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Android Data Messages
# ═══════════════════════════════════════════════════════════════════════════

class TestAndroidDataMessage:
    """Test the background data push for self-rendering Android apps."""

    def test_shape_and_provider(self):
        device = _make_device(app_id=f"{APP_ID}.android", data={"data_message": "android"})
        payload = _build(_make_notification([device]), device)
        assert payload.provider is ProviderFamily.FCM
        assert payload.shape is PayloadShape.ANDROID_DATA

    def test_no_visible_block(self):
        device = _make_device(data={"data_message": "android"})
        payload = _build(_make_notification([device]), device)
        assert "notification" not in payload.message
        assert "apns" not in payload.message
        assert payload.message["android"]["priority"] == "high"

    def test_single_device_stripped_notification(self):
        device = _make_device(data={"data_message": "android"})
        other = _make_device(pushkey="someone-else", data={"data_message": "android"})
        payload = _build(_make_notification([device, other]), device)
        data = _decoded_data(payload)
        assert data["devices"] == [device.to_dict()]
        assert "content" not in data
        assert payload.message["token"] == device.pushkey

    @pytest.mark.parametrize("unread", [0, 1, 42])
    def test_shape_independent_of_unread(self, unread):
        device = _make_device(data={"data_message": "android"})
        payload = _build(_make_notification([device], unread=unread), device)
        assert "notification" not in payload.message
        assert _decoded_data(payload)["counts"]["unread"] == unread

    def test_legacy_suffix(self):
        device = _make_device(app_id=f"{APP_ID}.data_message")
        payload = _build(_make_notification([device]), device)
        assert payload.shape is PayloadShape.ANDROID_DATA
        assert "notification" not in payload.message


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Apple Data Messages (via FCM)
# ═══════════════════════════════════════════════════════════════════════════

class TestAppleDataMessage:
    """Test data pushes for the iOS notification service extension."""

    def test_background_priority_and_mutable_content(self):
        device = _make_device(data={"data_message": "ios"})
        payload = _build(_make_notification([device]), device)
        assert payload.shape is PayloadShape.APPLE_DATA
        assert payload.message["apns"]["headers"]["apns-priority"] == APNS_PRIORITY_BACKGROUND
        aps = payload.message["apns"]["payload"]["aps"]
        assert aps["mutable-content"] == 1
        assert aps["badge"] == 3
        assert payload.apns_priority == APNS_PRIORITY_BACKGROUND

    def test_fallback_visible_block(self):
        device = _make_device(data={"data_message": "ios"})
        payload = _build(_make_notification([device]), device)
        assert payload.message["notification"]["title"] == "3 unread messages"

    def test_no_visible_block_without_room(self):
        device = _make_device(data={"data_message": "ios"})
        payload = _build(_make_notification([device], room_id=None), device)
        assert "notification" not in payload.message

    def test_counts_only_keeps_sound_but_no_visible_block(self):
        device = _make_device(data={"data_message": "ios"})
        payload = _build(_make_notification([device], unread=0), device)
        aps = payload.message["apns"]["payload"]["aps"]
        assert aps == {"mutable-content": 1, "badge": 0, "sound": "default"}
        assert "notification" not in payload.message

    def test_sound_tweak_applies(self):
        device = _make_device(data={"data_message": "ios"}, tweaks={"sound": "bing"})
        payload = _build(_make_notification([device]), device)
        assert payload.message["apns"]["payload"]["aps"]["sound"] == "bing"


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Generic Messages
# ═══════════════════════════════════════════════════════════════════════════

class TestGenericMessage:
    """Test gateway-rendered pushes."""

    def test_visible_notification(self):
        device = _make_device()
        payload = _build(_make_notification([device]), device)
        assert payload.shape is PayloadShape.GENERIC
        assert payload.message["notification"] == {
            "title": "3 unread messages",
            "body": _make_settings().NOTIFICATION_BODY,
        }
        assert payload.message["apns"]["headers"]["apns-priority"] == APNS_PRIORITY_ALERT
        assert payload.message["apns"]["payload"]["aps"] == {"badge": 3, "sound": "default"}
        assert "data" not in payload.message

    def test_android_notification_options(self):
        settings = _make_settings(NOTIFICATION_ICON="ic_push", NOTIFICATION_ANDROID_CHANNEL_ID="chan")
        device = _make_device(tweaks={"sound": "bing"})
        payload = _build(_make_notification([device]), device, settings)
        android = payload.message["android"]["notification"]
        assert android["icon"] == "ic_push"
        assert android["channel_id"] == "chan"
        assert android["sound"] == "bing"

    def test_counts_only_zero_unread_without_event(self):
        device = _make_device()
        notification = _make_notification([device], event_id=None, unread=0)
        payload = _build(notification, device)
        assert "notification" not in payload.message
        assert "notification" not in payload.message["android"]
        assert payload.message["apns"]["payload"]["aps"] == {"badge": 0}
        assert payload.message["apns"]["headers"]["apns-priority"] == APNS_PRIORITY_BACKGROUND

    def test_counts_only_flag(self):
        device = _make_device()
        payload = _build(_make_notification([device], counts_only=True), device)
        assert "notification" not in payload.message
        assert payload.message["apns"]["payload"]["aps"] == {"badge": 3}

    def test_encrypted_with_counts_is_counts_only(self):
        device = _make_device()
        notification = _make_notification([device], ciphertext="opaque")
        payload = _build(notification, device)
        assert "notification" not in payload.message

    def test_missing_counts_badge_defaults_to_zero(self):
        device = _make_device()
        notification = _make_notification([device], with_counts=False)
        payload = _build(notification, device)
        assert payload.message["notification"]["title"] == "0 unread messages"
        assert payload.message["apns"]["payload"]["aps"]["badge"] == 0


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Native APNs
# ═══════════════════════════════════════════════════════════════════════════

class TestAppleNativePayload:
    """Test payloads sent straight to APNs."""

    def test_alert(self):
        device = _make_device(notify_via="apns")
        payload = _build(_make_notification([device]), device)
        assert payload.provider is ProviderFamily.APNS
        assert payload.shape is PayloadShape.APPLE_NATIVE
        assert payload.apns_priority == APNS_PRIORITY_ALERT
        assert payload.push_type == "alert"
        aps = payload.message["aps"]
        assert aps["alert"]["title"] == "3 unread messages"
        assert aps["badge"] == 3
        assert aps["sound"] == "default"
        assert payload.message["data"]["devices"] == [device.to_dict()]
        assert "content" not in payload.message["data"]

    def test_badge_only(self):
        device = _make_device(notify_via="apns")
        payload = _build(_make_notification([device], unread=0), device)
        assert payload.message["aps"] == {"badge": 0}
        assert payload.apns_priority == APNS_PRIORITY_BACKGROUND
        assert payload.push_type == "alert"

    def test_background_without_counts(self):
        device = _make_device(notify_via="apns")
        notification = _make_notification([device], event_id=None, with_counts=False)
        payload = _build(notification, device)
        assert payload.message["aps"] == {"content-available": 1}
        assert payload.push_type == "background"
        assert payload.apns_priority == APNS_PRIORITY_BACKGROUND


# ═══════════════════════════════════════════════════════════════════════════
# Section 6: Determinism
# ═══════════════════════════════════════════════════════════════════════════

class TestDeterminism:
    """Same inputs, byte-identical JSON."""

    @pytest.mark.parametrize("device", [
        _make_device(),
        _make_device(data={"data_message": "android"}),
        _make_device(data={"data_message": "ios"}),
        _make_device(notify_via="apns"),
        _make_device(app_id=f"{APP_ID}.data_message"),
    ])
    def test_idempotent(self, device):
        notification = _make_notification([device])
        first = encode_payload(_build(notification, device))
        second = encode_payload(_build(notification, device))
        assert first == second

    def test_unicode_kept_verbatim(self):
        device = _make_device(data={"data_message": "android"})
        encoded = encode_payload(_build(_make_notification([device]), device))
        assert "🦊" in encoded
