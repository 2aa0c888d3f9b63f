"""
Pydantic schemas for the push notification API.

Separated from the route handler so they are reusable across
the codebase (background workers, tests). Unknown keys are ignored
everywhere: homeservers add fields over time.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class CountsIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    unread: Optional[int] = Field(None, ge=0, examples=[2])
    missed_calls: Optional[int] = Field(None, ge=0, examples=[1])


class DeviceIn(BaseModel):
    """A device the notification should reach."""
    model_config = ConfigDict(extra="ignore")

    app_id: str = Field(..., examples=["com.example.messenger.android"])
    pushkey: str = Field(..., description="Provider token for the device")
    pushkey_ts: Optional[int] = Field(None, description="Registration time (unix seconds)")
    data: Optional[Dict[str, Any]] = Field(
        None, examples=[{"data_message": "android", "format": "event_id_only"}],
    )
    tweaks: Optional[Dict[str, Any]] = Field(None, examples=[{"sound": "bing"}])
    notify_via: Optional[str] = Field(None, examples=["apns"])


class NotificationIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_id: Optional[str] = Field(None, examples=["$3957tyerfgewrf384"])
    room_id: Optional[str] = Field(None, examples=["!slw48wfj34rtnrf:example.com"])
    type: Optional[str] = Field(None, examples=["m.room.message"])
    sender: Optional[str] = None
    sender_display_name: Optional[str] = None
    room_name: Optional[str] = None
    room_alias: Optional[str] = None
    prio: Optional[Literal["low", "high"]] = Field(None, examples=["high"])
    counts: Optional[CountsIn] = None
    content: Optional[Dict[str, Any]] = None
    devices: List[DeviceIn] = Field(..., description="Devices to push to")
    ciphertext: Optional[str] = None
    ephemeral: Optional[Any] = None
    mac: Optional[str] = None
    user_is_target: Optional[bool] = None
    counts_only: bool = Field(False, description="Only the badge should change")


class PushRequest(BaseModel):
    """Body of POST /_matrix/push/v1/notify."""
    model_config = ConfigDict(extra="ignore")

    notification: NotificationIn


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class PushResponse(BaseModel):
    rejected: List[str] = Field(
        default_factory=list,
        description="Push keys the gateway could not deliver to",
    )
