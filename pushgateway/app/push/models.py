"""
models.py — Shared data structures for push dispatch.

Defines:
    • ProviderFamily   — the two downstream push services
    • PayloadShape     — how a device's payload is laid out
    • DeviceClass      — metric label for a device
    • RejectReason     — why a device ended up in "rejected"
    • NotificationType — derived type of a delivered notification
    • Counts, Device, Notification — the inbound notification
    • Route, ProviderPayload       — routing decision + built payload
    • DispatchOutcome, DispatchReport — per-device and per-request results

═══════════════════════════════════════════════════════════════════════════
DEVICE CLASSES
═══════════════════════════════════════════════════════════════════════════

    Device                         Shape             Provider   Class
    ──────────────────────────     ──────────────    ────────   ──────────────
    app_id ends ".data_message"    ANDROID_DATA      FCM        android_legacy
    data.data_message == android   ANDROID_DATA      FCM        android
    data.data_message == ios       APPLE_DATA        FCM        ios
    notify_via == apns             APPLE_NATIVE      APNS       apns
    anything else                  GENERIC           FCM        generic

Data-message devices render notifications themselves; the gateway only
hands them a stripped copy of the notification.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

LEGACY_DATA_MESSAGE_SUFFIX = ".data_message"


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class ProviderFamily(str, Enum):
    """Downstream push services."""
    FCM  = "fcm"   # Android-oriented, also relays to Apple devices
    APNS = "apns"  # Apple-oriented


class DataMessageKind(str, Enum):
    """Value of the well-known ``data_message`` key in device data."""
    ANDROID = "android"
    IOS     = "ios"
    NONE    = "none"


class PayloadShape(str, Enum):
    ANDROID_DATA = "android_data"
    APPLE_DATA   = "apple_data"
    GENERIC      = "generic"
    APPLE_NATIVE = "apple_native"


class DeviceClass(str, Enum):
    """Label used on the per-device push counters."""
    ANDROID_LEGACY = "android_legacy"
    ANDROID        = "android"
    IOS            = "ios"
    GENERIC        = "generic"
    APNS           = "apns"


class RejectReason(str, Enum):
    INVALID_APP_ID    = "invalid_app_id"
    PROVIDER_FAILURE  = "provider_failure"
    RETRIES_EXHAUSTED = "retries_exhausted"


class NotificationType(str, Enum):
    NOTIFICATION = "notification"
    DATA         = "data"
    CLEARING     = "clearing"


# ═══════════════════════════════════════════════════════════════════════════
# Inbound Notification
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Counts:
    unread: Optional[int] = None
    missed_calls: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            key: value
            for key, value in (("unread", self.unread), ("missed_calls", self.missed_calls))
            if value is not None
        }


@dataclass(frozen=True)
class Device:
    """
    A push target.

    Attributes
    ----------
    app_id : str
        Routing/shaping key; must start with the configured app id.
    pushkey : str
        Provider token, opaque to the gateway.
    pushkey_ts : int | None
        When the push key was registered.
    data : dict | None
        Pusher data; ``data_message`` and ``format`` are interpreted.
    tweaks : dict | None
        Per-device tweaks; a string ``sound`` overrides the default sound.
    notify_via : str | None
        Explicit provider preference ("fcm" or "apns").
    """
    app_id: str
    pushkey: str
    pushkey_ts: Optional[int] = None
    data: Optional[Dict[str, Any]] = None
    tweaks: Optional[Dict[str, Any]] = None
    notify_via: Optional[str] = None

    @property
    def is_legacy_data_message(self) -> bool:
        return self.app_id.endswith(LEGACY_DATA_MESSAGE_SUFFIX)

    @property
    def data_message_kind(self) -> DataMessageKind:
        kind = (self.data or {}).get("data_message")
        if kind == DataMessageKind.ANDROID.value:
            return DataMessageKind.ANDROID
        if kind == DataMessageKind.IOS.value:
            return DataMessageKind.IOS
        return DataMessageKind.NONE

    @property
    def is_data_message(self) -> bool:
        return self.is_legacy_data_message or self.data_message_kind is not DataMessageKind.NONE

    @property
    def format(self) -> Optional[str]:
        return (self.data or {}).get("format")

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"app_id": self.app_id, "pushkey": self.pushkey}
        if self.pushkey_ts is not None:
            d["pushkey_ts"] = self.pushkey_ts
        if self.data is not None:
            d["data"] = self.data
        if self.tweaks is not None:
            d["tweaks"] = self.tweaks
        if self.notify_via is not None:
            d["notify_via"] = self.notify_via
        return d


@dataclass(frozen=True)
class Notification:
    """One inbound notification, immutable for the life of its dispatch."""
    devices: Tuple[Device, ...] = ()
    event_id: Optional[str] = None
    room_id: Optional[str] = None
    type: Optional[str] = None
    sender: Optional[str] = None
    sender_display_name: Optional[str] = None
    room_name: Optional[str] = None
    room_alias: Optional[str] = None
    prio: Optional[str] = None
    counts: Optional[Counts] = None
    content: Optional[Dict[str, Any]] = None
    ciphertext: Optional[str] = None
    ephemeral: Optional[Any] = None
    mac: Optional[str] = None
    user_is_target: Optional[bool] = None
    counts_only: bool = False

    @property
    def unread_count(self) -> int:
        if self.counts is None or self.counts.unread is None:
            return 0
        return self.counts.unread

    @property
    def is_counts_only(self) -> bool:
        """
        True when the notification carries nothing displayable.

        Either nothing identifies an event, the unread counter dropped
        to zero, the sender asked for it explicitly, or the content is
        encrypted and only the counts are usable.
        """
        has_counts = self.counts is not None
        return (
            (self.event_id is None and self.ciphertext is None)
            or (has_counts and self.unread_count == 0)
            or self.counts_only
            or (has_counts and self.ciphertext is not None)
        )

    def notification_type(self) -> NotificationType:
        """Derived type, judged on the first device like the counters expect."""
        first = self.devices[0] if self.devices else None
        data_message = first is not None and first.is_data_message
        clearing = self.event_id is None or (not data_message and self.unread_count == 0)
        if clearing:
            return NotificationType.CLEARING
        if data_message:
            return NotificationType.DATA
        return NotificationType.NOTIFICATION


# ═══════════════════════════════════════════════════════════════════════════
# Routing & Payloads
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Route:
    """Where and how one device gets its push."""
    provider: ProviderFamily
    shape: PayloadShape
    device_class: DeviceClass


@dataclass(frozen=True)
class ProviderPayload:
    """
    A provider-ready message for one device.

    For FCM, ``message`` is the HTTP v1 ``message`` object. For APNs it
    is the JSON body (``aps`` plus custom keys) and ``apns_priority`` /
    ``push_type`` travel as request headers.
    """
    provider: ProviderFamily
    shape: PayloadShape
    pushkey: str
    message: Dict[str, Any]
    apns_priority: Optional[str] = None
    push_type: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════
# Outcomes
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DispatchOutcome:
    """Terminal state of one device: accepted, or rejected with a reason."""
    pushkey: str
    device_class: Optional[DeviceClass] = None
    reason: Optional[RejectReason] = None
    attempts: int = 0

    @property
    def accepted(self) -> bool:
        return self.reason is None

    @property
    def rejected(self) -> bool:
        return self.reason is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pushkey": self.pushkey,
            "device_class": self.device_class.value if self.device_class else None,
            "accepted": self.accepted,
            "reason": self.reason.value if self.reason else None,
            "attempts": self.attempts,
        }


@dataclass
class DispatchReport:
    """Aggregated result of one notification's fan-out."""
    outcomes: List[DispatchOutcome] = field(default_factory=list)
    jitter_seconds: float = 0.0

    @property
    def rejected(self) -> List[str]:
        """Rejected push keys in input device order."""
        return [o.pushkey for o in self.outcomes if o.rejected]

    @property
    def any_succeeded(self) -> bool:
        return any(o.accepted for o in self.outcomes)

    def to_response(self) -> Dict[str, Any]:
        return {"rejected": self.rejected}
