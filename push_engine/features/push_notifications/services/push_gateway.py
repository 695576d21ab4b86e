"""
Firebase Cloud Messaging (HTTP v1) gateway.

Sends one message to one device token. Success returns None; failures are
raised as TransientDeliveryError or PermanentDeliveryError according to
the error code FCM reports.
"""

import json
from typing import Any

import httpx

from push_engine.config import settings
from push_engine.features.push_notifications.domain import BearerToken
from push_engine.features.push_notifications.domain.errors import (
    PermanentDeliveryError,
    TransientDeliveryError,
)
from push_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"

# Unrecognised token or malformed argument: the token will never work again
PERMANENT_ERROR_CODES = {"UNREGISTERED", "INVALID_ARGUMENT", "NOT_FOUND"}


def build_message(
    device_token: str, title: str, body: str, data: dict[str, Any] | None = None
) -> dict:
    """FCM v1 message with the fixed Android and APNs delivery hints."""
    return {
        "token": device_token,
        "notification": {"title": title, "body": body},
        # FCM only accepts string values in data
        "data": {str(k): str(v) for k, v in (data or {}).items() if v is not None},
        "android": {
            "priority": "HIGH",
            "notification": {"sound": "default", "channel_id": "high_importance_channel"},
        },
        "apns": {
            "headers": {"apns-priority": "10", "apns-push-type": "alert"},
            "payload": {
                "aps": {
                    "alert": {"title": title, "body": body},
                    "sound": "default",
                    "badge": 1,
                    "content-available": 1,
                    "mutable-content": 1,
                }
            },
        },
    }


def extract_error_code(error_body: dict) -> str:
    """details[].errorCode first (FcmError), then the canonical status."""
    error = error_body.get("error") if isinstance(error_body, dict) else None
    if not isinstance(error, dict):
        return ""

    for detail in error.get("details") or []:
        if isinstance(detail, dict) and detail.get("errorCode"):
            return detail["errorCode"]
    return error.get("status") or ""


class FcmPushGateway:
    """
    Push gateway bound to one Firebase project.

    Use as an async context manager so one HTTP connection pool serves the
    whole run:

        async with FcmPushGateway(project_id) as gateway:
            await gateway.send(bearer, token, title, body, data)
    """

    def __init__(
        self,
        project_id: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.project_id = project_id
        self.timeout = timeout if timeout is not None else settings.PUSH_REQUEST_TIMEOUT
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def send_url(self) -> str:
        return FCM_SEND_URL.format(project_id=self.project_id)

    async def __aenter__(self) -> "FcmPushGateway":
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        bearer: BearerToken,
        device_token: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        """
        Deliver one push.

        Raises:
            PermanentDeliveryError: The token is unregistered or invalid
            TransientDeliveryError: Timeout, network or any other gateway error
        """
        if self._client is None:
            raise RuntimeError("FcmPushGateway used outside of its async context")

        try:
            response = await self._client.post(
                self.send_url,
                headers={
                    "Authorization": f"Bearer {bearer.value}",
                    "Content-Type": "application/json",
                },
                json={"message": build_message(device_token, title, body, data)},
            )
        except httpx.TimeoutException as exc:
            raise TransientDeliveryError(
                f"Gateway timed out after {self.timeout}s", reason_code="TIMEOUT"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientDeliveryError(
                f"Gateway request failed: {type(exc).__name__}: {exc}", reason_code="NETWORK_ERROR"
            ) from exc

        if response.is_success:
            return

        try:
            error_body = response.json()
        except ValueError:
            error_body = {}

        reason_code = extract_error_code(error_body)
        detail = json.dumps(error_body)[:500] if error_body else response.text[:500]

        if reason_code in PERMANENT_ERROR_CODES:
            raise PermanentDeliveryError(
                detail, reason_code=reason_code, status_code=response.status_code
            )
        raise TransientDeliveryError(
            detail, reason_code=reason_code or None, status_code=response.status_code
        )
