"""Z-API messaging gateway client.

Calls the Z-API REST API directly (no official Python SDK).
"""
import logging
import re
from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel

logger = logging.getLogger(__name__)

ZAPI_BASE = "https://api.z-api.io/instances"
DEFAULT_TIMEOUT = 10


class ZApiError(RuntimeError):
    """The gateway rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ZApiCredentials(BaseModel):
    instance_id: str
    token: str
    client_token: Optional[str] = None


def credentials_for(instance) -> ZApiCredentials:
    """Build gateway credentials from a ChannelInstance row."""
    return ZApiCredentials(
        instance_id=instance.provider_instance_id,
        token=instance.token,
        client_token=instance.client_token,
    )


def _base_url(credentials: ZApiCredentials) -> str:
    return f"{ZAPI_BASE}/{credentials.instance_id}/token/{credentials.token}"


def _headers(credentials: ZApiCredentials) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if credentials.client_token:
        headers["Client-Token"] = credentials.client_token
    return headers


def normalize_phone(phone: str) -> str:
    """Strip everything but digits (Z-API expects e.g. 5511999998888)."""
    return re.sub(r"\D", "", phone or "")


def send_text(
    credentials: ZApiCredentials,
    to_address: str,
    body: str,
    timeout: int = DEFAULT_TIMEOUT,
) -> str:
    """Send a text message and return the provider message id.

    Raises:
        ZApiError: on transport errors, non-2xx responses or a response
            without a message id.
    """
    try:
        resp = requests.post(
            f"{_base_url(credentials)}/send-text",
            json={"phone": normalize_phone(to_address), "message": body},
            headers=_headers(credentials),
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise ZApiError(f"send-text request failed: {exc}") from exc

    if not resp.ok:
        raise ZApiError(
            f"send-text returned HTTP {resp.status_code}: {resp.text[:200]}",
            status_code=resp.status_code,
        )

    data = resp.json() or {}
    message_id = data.get("zapiMessageId") or data.get("messageId") or data.get("id")
    if not message_id:
        raise ZApiError("send-text response has no message id")
    logger.info("Sent message %s via instance %s", message_id, credentials.instance_id)
    return str(message_id)


def get_instance_status(
    credentials: ZApiCredentials, timeout: int = DEFAULT_TIMEOUT
) -> Dict[str, Any]:
    """Return {'connected': bool, ...} for an instance.

    Errors are reported in the returned dict rather than raised.
    """
    try:
        resp = requests.get(
            f"{_base_url(credentials)}/status",
            headers=_headers(credentials),
            timeout=timeout,
        )
        resp.raise_for_status()
        data = resp.json() or {}
        return {
            "connected": bool(data.get("connected")),
            "smartphone_connected": bool(data.get("smartphoneConnected")),
            "error": data.get("error"),
        }
    except Exception as exc:
        return {"connected": False, "error": str(exc)}
