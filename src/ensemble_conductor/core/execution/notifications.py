"""Fire-and-forget webhook notifications for execution lifecycle events."""

import asyncio
import hashlib
import hmac
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from ensemble_conductor.core.config.engine_config import NotificationSettings
from ensemble_conductor.core.config.ensemble_config import (
    EnsembleConfig,
    NotificationConfig,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Conductor-Signature"
EVENT_HEADER = "X-Conductor-Event"


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 signature in ``sha256=<hex>`` form."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookNotifier:
    """Delivers events to one webhook, retrying with exponential backoff."""

    def __init__(
        self,
        config: NotificationConfig,
        settings: NotificationSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.settings = settings or NotificationSettings()
        self._transport = transport
        self._sleep = sleep

    @property
    def max_retries(self) -> int:
        if self.config.retries is not None:
            return self.config.retries
        return self.settings.max_retries

    @property
    def timeout(self) -> float:
        return self.config.timeout or self.settings.timeout

    def build_request(
        self, event: str, payload: dict[str, Any]
    ) -> tuple[bytes, dict[str, str]]:
        body = json.dumps(
            {"event": event, "timestamp": time.time(), "data": payload}, default=str
        ).encode("utf-8")
        headers = {"Content-Type": "application/json", EVENT_HEADER: event}
        if self.config.secret:
            headers[SIGNATURE_HEADER] = sign_payload(self.config.secret, body)
        return body, headers

    async def send(self, event: str, payload: dict[str, Any]) -> bool:
        """Deliver one event. Returns False once every attempt has failed."""
        body, headers = self.build_request(event, payload)
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as client:
                    response = await client.post(
                        self.config.url, content=body, headers=headers
                    )
                    response.raise_for_status()
                logger.debug("Delivered %s to %s", event, self.config.url)
                return True
            except httpx.HTTPError as e:
                logger.warning(
                    "Webhook %s failed for %s (attempt %d/%d): %s",
                    self.config.url,
                    event,
                    attempt + 1,
                    attempts,
                    e,
                )
                if attempt + 1 < attempts:
                    await self._sleep(self.settings.initial_backoff * 2**attempt)
        return False


class NotificationManager:
    """Dispatches notifications without making callers wait for delivery.

    Each delivery runs in its own task, held until it finishes so it is not
    garbage collected mid-flight.
    """

    def __init__(
        self,
        settings: NotificationSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or NotificationSettings()
        self._transport = transport
        self._sleep = sleep
        self._tasks: set[asyncio.Task[bool]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def notify(
        self, ensemble: EnsembleConfig, event: str, payload: dict[str, Any]
    ) -> int:
        """Schedule delivery to every subscribed webhook; returns how many."""
        scheduled = 0
        for config in ensemble.notifications:
            if event not in config.events:
                continue
            notifier = WebhookNotifier(
                config, self.settings, self._transport, self._sleep
            )
            task = asyncio.get_running_loop().create_task(
                notifier.send(event, {"ensemble": ensemble.name, **payload})
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            scheduled += 1
        return scheduled

    async def drain(self) -> None:
        """Wait for all in-flight deliveries."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
