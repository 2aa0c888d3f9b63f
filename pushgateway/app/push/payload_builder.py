"""
payload_builder.py — Pure (Notification, Device, Settings, Route) → ProviderPayload.

No I/O, no clock, no randomness: the same inputs always produce the
same JSON.

═══════════════════════════════════════════════════════════════════════════
PAYLOAD SHAPES
═══════════════════════════════════════════════════════════════════════════

    Shape          Provider  Visible block          Data block   apns-priority
    ────────────   ────────  ─────────────────────  ──────────   ─────────────
    ANDROID_DATA   FCM       never                  yes          —
    APPLE_DATA     FCM       room_id & displayable  yes          5
    GENERIC        FCM       displayable            no           10 (5 badge)
    APPLE_NATIVE   APNS      displayable            "data" key   10 (5 badge)

"Displayable" means not counts-only. A counts-only push carries the
badge (unread count, default 0) and nothing a user could read.

Data blocks hold a stripped copy of the notification scoped to the one
device being pushed. ``content`` never travels (payload size limits);
devices registered with format "event_id_only" get identifiers only.
FCM data values must be strings, so the copy is embedded as JSON text.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from pushgateway.app.core.config import Settings
from pushgateway.app.push.models import (
    Device,
    Notification,
    PayloadShape,
    ProviderPayload,
    Route,
)

APNS_PRIORITY_ALERT = "10"
APNS_PRIORITY_BACKGROUND = "5"

EVENT_ID_ONLY = "event_id_only"

_STRIPPED_FIELDS = (
    "event_id", "room_id", "type", "sender", "sender_display_name",
    "room_name", "room_alias", "prio", "ciphertext", "ephemeral", "mac",
    "user_is_target",
)
_EVENT_ID_ONLY_FIELDS = ("event_id", "room_id", "prio")


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def render_title(settings: Settings, unread: int) -> str:
    return settings.NOTIFICATION_TITLE.replace("<count>", str(unread))


def resolve_sound(device: Device, settings: Settings) -> str:
    """Device tweak wins over the configured default."""
    sound = (device.tweaks or {}).get("sound")
    return sound if isinstance(sound, str) else settings.NOTIFICATION_SOUND


def stripped_notification(notification: Notification, device: Device) -> Dict[str, Any]:
    """Copy of the notification addressed to ``device`` alone, without content."""
    fields = _EVENT_ID_ONLY_FIELDS if device.format == EVENT_ID_ONLY else _STRIPPED_FIELDS
    stripped: Dict[str, Any] = {}
    for name in fields:
        value = getattr(notification, name)
        if value is not None:
            stripped[name] = value
    if notification.counts is not None:
        stripped["counts"] = notification.counts.to_dict()
    stripped["devices"] = [device.to_dict()]
    return stripped


def _encode(data: Dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _visible_block(notification: Notification, settings: Settings) -> Dict[str, str]:
    return {
        "title": render_title(settings, notification.unread_count),
        "body": settings.NOTIFICATION_BODY,
    }


def _data_block(notification: Notification, device: Device) -> Dict[str, str]:
    return {"notification": _encode(stripped_notification(notification, device))}


# ═══════════════════════════════════════════════════════════════════════════
# FCM Shapes
# ═══════════════════════════════════════════════════════════════════════════

def _android_data_message(
    notification: Notification, device: Device, settings: Settings,
) -> Dict[str, Any]:
    """Background data push; the app renders the notification itself."""
    return {
        "token": device.pushkey,
        "data": _data_block(notification, device),
        "android": {"priority": "high", "direct_boot_ok": False},
    }


def _apple_data_message(
    notification: Notification, device: Device, settings: Settings,
) -> Dict[str, Any]:
    """Data push for the iOS notification service extension, relayed by FCM."""
    aps: Dict[str, Any] = {
        "mutable-content": 1,
        "badge": notification.unread_count,
        "sound": resolve_sound(device, settings),
    }

    message: Dict[str, Any] = {
        "token": device.pushkey,
        "data": _data_block(notification, device),
        # Priority must be 5 for the service extension to run
        "apns": {
            "headers": {"apns-priority": APNS_PRIORITY_BACKGROUND},
            "payload": {"aps": aps},
        },
    }
    # Fallback in case iOS decides not to run the extension
    if not notification.is_counts_only and notification.room_id is not None:
        message["notification"] = _visible_block(notification, settings)
    return message


def _generic_message(
    notification: Notification, device: Device, settings: Settings,
) -> Dict[str, Any]:
    """Gateway-rendered push; FCM shows it on Android and relays it to iOS."""
    displayable = not notification.is_counts_only
    android: Dict[str, Any] = {"priority": "high", "direct_boot_ok": False}
    aps: Dict[str, Any] = {"badge": notification.unread_count}

    message: Dict[str, Any] = {"token": device.pushkey}
    if displayable:
        sound = resolve_sound(device, settings)
        message["notification"] = _visible_block(notification, settings)
        android["notification"] = {
            "channel_id": settings.NOTIFICATION_ANDROID_CHANNEL_ID,
            "icon": settings.NOTIFICATION_ICON,
            "sound": sound,
            "tag": settings.NOTIFICATION_TAG,
            "click_action": settings.NOTIFICATION_CLICK_ACTION,
        }
        aps["sound"] = sound

    message["android"] = android
    message["apns"] = {
        "headers": {
            "apns-priority": APNS_PRIORITY_ALERT if displayable else APNS_PRIORITY_BACKGROUND,
        },
        "payload": {"aps": aps},
    }
    return message


# ═══════════════════════════════════════════════════════════════════════════
# APNs Shape
# ═══════════════════════════════════════════════════════════════════════════

def _apple_native_payload(
    notification: Notification, device: Device, settings: Settings, route: Route,
) -> ProviderPayload:
    push_type = "alert"
    if not notification.is_counts_only:
        aps: Dict[str, Any] = {
            "alert": _visible_block(notification, settings),
            "mutable-content": 1,
            "badge": notification.unread_count,
            "sound": resolve_sound(device, settings),
        }
        priority = APNS_PRIORITY_ALERT
    elif notification.counts is not None:
        aps = {"badge": notification.unread_count}
        priority = APNS_PRIORITY_BACKGROUND
    else:
        aps = {"content-available": 1}
        priority = APNS_PRIORITY_BACKGROUND
        push_type = "background"

    return ProviderPayload(
        provider=route.provider,
        shape=route.shape,
        pushkey=device.pushkey,
        message={"aps": aps, "data": stripped_notification(notification, device)},
        apns_priority=priority,
        push_type=push_type,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Entry Point
# ═══════════════════════════════════════════════════════════════════════════

_FCM_BUILDERS = {
    PayloadShape.ANDROID_DATA: _android_data_message,
    PayloadShape.APPLE_DATA:   _apple_data_message,
    PayloadShape.GENERIC:      _generic_message,
}


def build_payload(
    notification: Notification,
    device: Device,
    settings: Settings,
    route: Route,
) -> ProviderPayload:
    """
    Build the provider message for one device.

    Parameters
    ----------
    notification : Notification
    device : Device
        Must be one of ``notification.devices``.
    settings : Settings
        Text templates and Android notification options.
    route : Route
        Output of ProviderRouter.route(device).

    Returns
    -------
    ProviderPayload
    """
    if route.shape is PayloadShape.APPLE_NATIVE:
        return _apple_native_payload(notification, device, settings, route)

    builder = _FCM_BUILDERS[route.shape]
    message = builder(notification, device, settings)
    apns_priority: Optional[str] = message.get("apns", {}).get("headers", {}).get("apns-priority")
    return ProviderPayload(
        provider=route.provider,
        shape=route.shape,
        pushkey=device.pushkey,
        message=message,
        apns_priority=apns_priority,
    )


def encode_payload(payload: ProviderPayload) -> str:
    """Canonical JSON of a payload's message (logging, size checks, tests)."""
    return _encode(payload.message)
