"""Ops webhook client with exponential backoff retry logic"""

import asyncio
from typing import Any, Dict

import httpx

from bcard_gateway.config import settings
from bcard_gateway.infrastructure.observability.metrics import webhook_failure_counter, webhook_latency_histogram


class OpsEventClient:
    """Sends settlement events (issued cards, reconciliation needs) to the ops service"""

    def __init__(self, webhook_url: str | None = None):
        self.webhook_url = webhook_url or settings.ops_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self.timeout = settings.http_timeout_seconds

    async def send_event(self, payload: Dict[str, Any]) -> None:
        """
        POST an event to the ops webhook, retrying on error statuses and network failures.

        Backoff is base * 2^(attempt-1): 1s, 2s, 4s, 8s with the default base.
        The last failure is re-raised.
        """
        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(self.webhook_url, json=payload, timeout=self.timeout)
                        response.raise_for_status()
                        return

                except (httpx.HTTPStatusError, httpx.RequestError):
                    attempt += 1
                    webhook_failure_counter.inc()

                    if attempt >= self.max_retries:
                        raise

                    await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))
