"""Webhook transport: builds the JSON payload and POSTs it with httpx."""

import json
import logging

import httpx

from slack_log_device.errors import TransportError

logger = logging.getLogger(__name__)

HEADERS = {"Content-Type": "application/json"}


def build_payload(
    text: str,
    channel: str | None = None,
    username: str | None = None,
    icon_emoji: str | None = None,
) -> dict:
    """Build the webhook body, leaving out the optional keys that are unset."""
    payload = {"text": text}
    if channel:
        payload["channel"] = channel
    if username:
        payload["username"] = username
    if icon_emoji:
        payload["icon_emoji"] = icon_emoji
    return payload


class WebhookTransport:
    """Posts payloads to a webhook URL.

    A client passed in is used as is and left open by close(); otherwise the
    transport owns its own httpx.Client.
    """

    def __init__(self, client: httpx.Client | None = None):
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client()

    def post(self, url: str, payload: dict, timeout: float) -> httpx.Response:
        """POST *payload* as JSON. Raises TransportError on any failure."""
        body = json.dumps(payload)
        try:
            response = self._client.post(
                url, content=body, headers=HEADERS, timeout=timeout
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransportError(f"Webhook POST to {url} failed: {exc}") from exc
        logger.debug("Posted %d bytes to webhook (%d)", len(body), response.status_code)
        return response

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
