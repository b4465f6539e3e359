"""Audit webhook client with exponential backoff retry logic"""

import asyncio
import logging
from typing import Any, Dict

import httpx

from dentalflow_finance.config import settings
from dentalflow_finance.infrastructure.observability.metrics import (
    audit_failure_counter,
    audit_webhook_latency_histogram,
)

logger = logging.getLogger(__name__)


class AuditWebhookClient:
    """Client for delivering audit events to the external audit service"""

    def __init__(
        self,
        webhook_url: str | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url or settings.audit_webhook_url
        self.max_retries = max_retries if max_retries is not None else settings.webhook_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.webhook_backoff_base
        self.timeout = settings.http_timeout_seconds
        self.transport = transport

    async def send_event(self, payload: Dict[str, Any]) -> bool:
        """
        Deliver one audit event, retrying on 5xx responses and network errors.

        Retry strategy:
        - Exponential backoff: base * 2^(attempt-1) seconds
        - Gives up after max_retries attempts

        Delivery is best-effort: the final failure is logged and counted,
        never raised, so it cannot affect the operation being audited.

        Returns:
            True when the audit service accepted the event
        """
        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            while attempt < self.max_retries:
                try:
                    with audit_webhook_latency_histogram.time():
                        response = await client.post(self.webhook_url, json=payload)
                        response.raise_for_status()
                        return True

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    if attempt >= self.max_retries:
                        audit_failure_counter.inc()
                        logger.warning(
                            "Audit webhook delivery failed",
                            extra={"attempts": attempt, "error": str(e), "action": payload.get("action")},
                        )
                        return False

                    await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))
        return False
