"""Best-effort push notifications.  Failures are logged, never raised."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class PushNotifier:
    def __init__(
        self,
        endpoint: str,
        server_key: Optional[str],
        timeout: float = 5.0,
    ):
        self.endpoint = endpoint
        self.server_key = server_key
        self.timeout = timeout

    @classmethod
    def from_settings(cls, config) -> PushNotifier:
        return cls(
            endpoint=config.push_endpoint,
            server_key=config.push_server_key,
            timeout=config.push_timeout_seconds,
        )

    async def send(
        self,
        token: Optional[str],
        title: str,
        body: str,
        data: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Return True when the provider accepted the message."""
        if not token:
            logger.debug("No device token, skipping push '%s'", title)
            return False
        if not self.server_key:
            logger.debug("Push disabled (no server key), skipping '%s'", title)
            return False

        payload = {
            "to": token,
            "notification": {"title": title, "body": body},
            # providers expect string values in the data block
            "data": {k: str(v) for k, v in (data or {}).items()},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.endpoint,
                    json=payload,
                    headers={"Authorization": f"key={self.server_key}"},
                )
        except httpx.HTTPError as exc:
            logger.error("Push notification '%s' failed: %s", title, exc)
            return False

        if response.status_code >= 400:
            logger.error(
                "Push provider rejected '%s' with %d", title, response.status_code
            )
            return False
        logger.info("Push notification sent: %s", title)
        return True
