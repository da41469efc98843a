# supplywatch/services/notifier.py

"""Operator channel: review alerts and automation notices per product."""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any

from supplywatch.config.settings import Settings
from supplywatch.services.http_client import HttpClient

logger = logging.getLogger("supplywatch.operator")


class OperatorNotifier:
    """Log operator alerts and optionally forward them to a webhook.

    Delivery problems are logged and swallowed here: an unreachable
    webhook must never fail a pipeline run.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        client: HttpClient | None = None,
    ) -> None:
        self.webhook_url = (
            webhook_url if webhook_url is not None else Settings.OPERATOR_WEBHOOK_URL
        )
        self._client = client
        if self.webhook_url and self._client is None:
            self._client = HttpClient("operator", max_retries=1)
        self.recent: deque[dict[str, Any]] = deque(maxlen=100)

    async def _emit(
        self,
        kind: str,
        product_id: str,
        message: str,
        level: int = logging.WARNING,
        **extra: Any,
    ) -> None:
        payload: dict[str, Any] = {
            "kind": kind,
            "product_id": product_id,
            "message": message,
            "at": datetime.now(timezone.utc).isoformat(),
            **extra,
        }
        self.recent.append(payload)
        logger.log(level, "[%s] %s: %s", kind, product_id, message)
        if not self.webhook_url or self._client is None:
            return
        resp = await asyncio.to_thread(self._client.post, self.webhook_url, payload)
        if resp is None:
            logger.error("Operator webhook delivery failed for %s", product_id)

    async def review_required(self, product_id: str, reason: str) -> None:
        await self._emit("review_required", product_id, reason)

    async def price_variance(
        self,
        product_id: str,
        old_price: str,
        new_price: str,
        change_pct: float,
        threshold_pct: float,
    ) -> None:
        await self._emit(
            "price_variance",
            product_id,
            f"price moved {change_pct:+.2f}% ({old_price} -> {new_price}), "
            f"threshold {threshold_pct:.0f}%",
            old_price=old_price,
            new_price=new_price,
            change_pct=round(change_pct, 2),
        )

    async def pipeline_failure(self, product_id: str, error: str) -> None:
        await self._emit("pipeline_failure", product_id, error)

    async def heal_succeeded(
        self,
        product_id: str,
        old_url: str,
        new_url: str,
        confidence: float,
    ) -> None:
        await self._emit(
            "heal_succeeded",
            product_id,
            f"supplier replaced automatically ({old_url} -> {new_url}), "
            f"match confidence {confidence:.2f}",
            level=logging.INFO,
            old_url=old_url,
            new_url=new_url,
            confidence=round(confidence, 4),
        )
