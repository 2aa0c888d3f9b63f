"""
router.py — Provider selection for one device.

Decision order (first match wins):

    1. app_id does not start with the configured app id  → InvalidAppIdError
    2. app_id ends with ".data_message"                    → ANDROID_DATA / FCM
    3. data.data_message == "android"                      → ANDROID_DATA / FCM
       data.data_message == "ios"                          → APPLE_DATA   / FCM
    4. notify_via == "apns"                                → APPLE_NATIVE / APNS
       otherwise                                           → GENERIC      / FCM

FCM is the default channel even for Apple devices: it relays through
the ``apns`` block of its message.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from pushgateway.app.core.config import Settings
from pushgateway.app.core.errors import InvalidAppIdError, ProviderUnavailableError
from pushgateway.app.push.models import (
    DataMessageKind,
    Device,
    DeviceClass,
    PayloadShape,
    ProviderFamily,
    Route,
)
from pushgateway.app.push.senders.base import Sender

logger = logging.getLogger(__name__)

ROUTES_BY_CLASS: Dict[DeviceClass, Tuple[ProviderFamily, PayloadShape]] = {
    DeviceClass.ANDROID_LEGACY: (ProviderFamily.FCM,  PayloadShape.ANDROID_DATA),
    DeviceClass.ANDROID:        (ProviderFamily.FCM,  PayloadShape.ANDROID_DATA),
    DeviceClass.IOS:            (ProviderFamily.FCM,  PayloadShape.APPLE_DATA),
    DeviceClass.APNS:           (ProviderFamily.APNS, PayloadShape.APPLE_NATIVE),
    DeviceClass.GENERIC:        (ProviderFamily.FCM,  PayloadShape.GENERIC),
}


class SenderRegistry:
    """Sender per provider family; a family may be left unconfigured."""

    def __init__(self, senders: Optional[Dict[ProviderFamily, Sender]] = None):
        self._senders: Dict[ProviderFamily, Sender] = dict(senders or {})

    def get(self, family: ProviderFamily) -> Optional[Sender]:
        return self._senders.get(family)

    def resolve(self, family: ProviderFamily) -> Sender:
        sender = self._senders.get(family)
        if sender is None:
            raise ProviderUnavailableError(family.value)
        return sender

    def families(self) -> List[ProviderFamily]:
        return list(self._senders)

    async def aclose(self) -> None:
        for sender in self._senders.values():
            await sender.aclose()


class ProviderRouter:
    """Maps a device to its Route and the Sender that serves it."""

    def __init__(self, settings: Settings, senders: SenderRegistry):
        self._settings = settings
        self._senders = senders

    def route(self, device: Device) -> Route:
        """
        Pick provider family, payload shape and metric class.

        Raises
        ------
        InvalidAppIdError
            The device does not belong to this gateway's app.
        """
        if not device.app_id.startswith(self._settings.APP_ID):
            logger.info("Someone tried to push with a bad app id: %s", device.app_id)
            raise InvalidAppIdError(device.app_id)

        device_class = self.device_class(device)
        provider, shape = ROUTES_BY_CLASS[device_class]
        return Route(provider, shape, device_class)

    def sender_for(self, route: Route) -> Sender:
        """Sender for a route; raises ProviderUnavailableError if unconfigured."""
        return self._senders.resolve(route.provider)

    @staticmethod
    def device_class(device: Device) -> DeviceClass:
        """Class of a device, without the app-id check."""
        if device.is_legacy_data_message:
            return DeviceClass.ANDROID_LEGACY
        kind = device.data_message_kind
        if kind is DataMessageKind.ANDROID:
            return DeviceClass.ANDROID
        if kind is DataMessageKind.IOS:
            return DeviceClass.IOS
        if device.notify_via == ProviderFamily.APNS.value:
            return DeviceClass.APNS
        return DeviceClass.GENERIC
