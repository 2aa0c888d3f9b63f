"""
FastAPI route: push notification endpoint.

Provides:
    POST /_matrix/push/v1/notify   — fan a notification out to its devices

The body is read and validated by hand rather than through a FastAPI
body parameter, so the size limit applies before any JSON parsing.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import ValidationError

from pushgateway.app.api.schemas import DeviceIn, NotificationIn, PushRequest, PushResponse
from pushgateway.app.core.errors import RequestMalformedError
from pushgateway.app.push.models import Counts, Device, Notification

router = APIRouter(prefix="/_matrix/push/v1", tags=["push"])


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def _to_device(d: DeviceIn) -> Device:
    """Convert Pydantic model to dataclass."""
    return Device(
        app_id=d.app_id,
        pushkey=d.pushkey,
        pushkey_ts=d.pushkey_ts,
        data=d.data,
        tweaks=d.tweaks,
        notify_via=d.notify_via,
    )


def _to_notification(n: NotificationIn) -> Notification:
    counts = None
    if n.counts is not None:
        counts = Counts(unread=n.counts.unread, missed_calls=n.counts.missed_calls)
    return Notification(
        devices=tuple(_to_device(d) for d in n.devices),
        event_id=n.event_id,
        room_id=n.room_id,
        type=n.type,
        sender=n.sender,
        sender_display_name=n.sender_display_name,
        room_name=n.room_name,
        room_alias=n.room_alias,
        prio=n.prio,
        counts=counts,
        content=n.content,
        ciphertext=n.ciphertext,
        ephemeral=n.ephemeral,
        mac=n.mac,
        user_is_target=n.user_is_target,
        counts_only=n.counts_only,
    )


async def _read_limited_body(request: Request, limit: int) -> bytes:
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise RequestMalformedError(
            f"Request body exceeds {limit} bytes", content_length=int(declared),
        )

    # Chunked bodies carry no length, so stop reading once past the limit
    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise RequestMalformedError(
                f"Request body exceeds {limit} bytes", bytes_read=received,
            )
        chunks.append(chunk)
    return b"".join(chunks)


def parse_push_request(body: bytes) -> Notification:
    """Validate a raw request body into a Notification."""
    try:
        parsed = PushRequest.model_validate_json(body)
    except ValidationError as exc:
        errors = exc.errors(include_url=False)
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "Invalid request body")
        raise RequestMalformedError(
            f"Malformed notification: {location}: {message}" if location
            else f"Malformed notification: {message}",
            error_count=len(errors),
        ) from exc
    return _to_notification(parsed.notification)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/notify",
    response_model=PushResponse,
    summary="Push a notification to its devices",
    description=(
        "Delivers one notification to every listed device through FCM or "
        "APNs and returns the push keys that could not be reached."
    ),
)
async def notify(request: Request):
    """Dispatch one notification."""
    state = request.app.state
    body = await _read_limited_body(request, state.settings.NOTIFICATION_REQUEST_BODY_LIMIT)
    notification = parse_push_request(body)

    report = await state.engine.dispatch(notification)
    return PushResponse(rejected=report.rejected)
