"""
notifier.py — fire-and-forget webhook for completed explanations.

Scheduled by routes.py as a FastAPI BackgroundTask, so it runs after the
response has been sent. Its outcome is invisible to the caller: every
failure is logged and dropped. No retries, no queue.
"""
import logging
from typing import Any, Optional

import httpx

from taxexplainer.agents.explain_agent.schemas import ExplainResponse
from taxexplainer.agents.input_agent.schemas import ExplainRequest

logger = logging.getLogger(__name__)


def build_notification_payload(request: ExplainRequest, response: ExplainResponse) -> dict[str, Any]:
    """Non-sensitive summary: numbers and verdict only — no question, no AI text."""
    body = response.model_dump(by_alias=True, mode="json")
    return {
        "salary": request.salary,
        "deductions": request.deductions.model_dump(by_alias=True),
        "verdict": body["verdict"],
        "recommendation": body["recommendation"],
        "taxNumbers": body["taxNumbers"],
        "savings": body["savings"],
        "timestamp": body["timestamp"],
    }


class WebhookNotifier:
    """
    POSTs JSON payloads to a single webhook URL.

    url=None (or empty) disables the notifier. transport is for tests
    (httpx.MockTransport).
    """

    def __init__(
        self,
        url: Optional[str],
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url or None
        self.timeout_s = timeout_s
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.url is not None

    async def send(self, payload: dict[str, Any]) -> None:
        if not self.enabled:
            return
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except Exception as exc:
            logger.warning("Webhook notification failed: %s", exc)
            return
        logger.info("Webhook notified status=%d", response.status_code)
