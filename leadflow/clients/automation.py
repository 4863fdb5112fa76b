"""Outbound notifications to the automation engine (fire-and-forget)."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from leadflow.config import settings
from leadflow.observability.metrics import metrics

logger = logging.getLogger(__name__)


class AutomationNotifier:
    """Posts pipeline events to the automation webhook without blocking callers.

    ``notify`` schedules the delivery on the running loop and returns at once;
    delivery failures are logged and counted, never raised.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        *,
        shared_secret: str | None = None,
        signature_header: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._webhook_url = (
            webhook_url if webhook_url is not None else settings.automation_webhook_url
        )
        self._shared_secret = (
            shared_secret if shared_secret is not None else settings.automation_shared_secret
        )
        self._signature_header = signature_header or settings.automation_signature_header
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout or settings.automation_notify_timeout_seconds
        )
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    def notify(self, event: str, payload: dict[str, Any]) -> asyncio.Task[None] | None:
        """Schedule delivery of ``event``; returns the task so tests can await it."""
        if not self.enabled:
            logger.debug("automation.notify.skipped", extra={"event": event})
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("automation.notify.no_loop", extra={"event": event})
            return None
        task = loop.create_task(self._deliver(event, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight deliveries; used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._owns_http_client:
            await self._http.aclose()

    async def _deliver(self, event: str, payload: dict[str, Any]) -> None:
        body = {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **payload,
        }
        headers = {"Content-Type": "application/json"}
        if self._shared_secret:
            headers[self._signature_header] = self._shared_secret
        try:
            response = await self._http.post(self._webhook_url, json=body, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning("automation.notify.timeout", extra={"event": event})
            metrics.increment(
                "automation.notify.failed", tags={"event": event, "reason": "timeout"}
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "automation.notify.failed",
                extra={"event": event, "error": type(exc).__name__},
            )
            metrics.increment("automation.notify.failed", tags={"event": event, "reason": "http"})
        else:
            metrics.increment("automation.notify.sent", tags={"event": event})
            logger.info(
                "automation.notify.sent",
                extra={"event": event, "status_code": response.status_code},
            )


_NOTIFIER_INSTANCE: AutomationNotifier | None = None


def get_notifier() -> AutomationNotifier:
    """Singleton accessor used by API routes."""
    global _NOTIFIER_INSTANCE  # noqa: PLW0603
    if _NOTIFIER_INSTANCE is None:
        _NOTIFIER_INSTANCE = AutomationNotifier()
    return _NOTIFIER_INSTANCE
