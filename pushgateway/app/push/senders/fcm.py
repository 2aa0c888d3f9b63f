"""
fcm.py — Firebase Cloud Messaging (HTTP v1) sender.

Delivery mechanism:
    • POST {FCM_ENDPOINT}/projects/{project_id}/messages:send
    • Body: {"message": <ProviderPayload.message>}
    • Auth: OAuth2 bearer token minted from a service-account key

Token refresh goes through google-auth, which is synchronous and not
safe to run twice at once, so it happens in a worker thread behind an
asyncio.Lock. Sends themselves run concurrently on one shared
httpx.AsyncClient.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import google.auth.transport.requests
import httpx
from google.oauth2 import service_account

from pushgateway.app.core.errors import SendError
from pushgateway.app.core.logging_config import redact_pushkey
from pushgateway.app.push.models import ProviderFamily, ProviderPayload

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"


class FcmSender:
    """
    Send ProviderPayloads to FCM.

    Parameters
    ----------
    credentials : google.auth.credentials.Credentials
        Anything with ``valid``, ``token`` and ``refresh(request)``.
    project_id : str
        Firebase project the service account belongs to.
    endpoint : str
        FCM API base URL.
    timeout_seconds : float
        Per-request HTTP timeout.
    client : httpx.AsyncClient | None
        Injected client (tests); one is created when omitted.
    """

    family = ProviderFamily.FCM

    def __init__(
        self,
        credentials: Any,
        project_id: str,
        *,
        endpoint: str = "https://fcm.googleapis.com/v1",
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._credentials = credentials
        self.project_id = project_id
        self._url = f"{endpoint.rstrip('/')}/projects/{project_id}/messages:send"
        self._timeout = timeout_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_service_account_file(
        cls,
        path: str,
        *,
        endpoint: str = "https://fcm.googleapis.com/v1",
        timeout_seconds: float = 10.0,
    ) -> "FcmSender":
        credentials = service_account.Credentials.from_service_account_file(
            path, scopes=[FCM_SCOPE],
        )
        logger.info("FCM sender ready for project %s", credentials.project_id)
        return cls(
            credentials,
            credentials.project_id,
            endpoint=endpoint,
            timeout_seconds=timeout_seconds,
        )

    async def _access_token(self) -> str:
        async with self._token_lock:
            if not self._credentials.valid:
                request = google.auth.transport.requests.Request()
                try:
                    await asyncio.to_thread(self._credentials.refresh, request)
                except Exception as exc:
                    raise SendError("fcm", f"token refresh failed: {exc}") from exc
                logger.debug("Refreshed FCM access token")
            return self._credentials.token

    async def send(self, payload: ProviderPayload) -> None:
        token = await self._access_token()
        try:
            response = await self._client.post(
                self._url,
                json={"message": payload.message},
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise SendError("fcm", f"{type(exc).__name__}: {exc}") from exc

        if response.status_code != 200:
            raise SendError(
                "fcm",
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        logger.debug(
            "[FCM] Delivered %s push → %s",
            payload.shape.value, redact_pushkey(payload.pushkey),
        )

    async def aclose(self) -> None:
        await self._client.aclose()
