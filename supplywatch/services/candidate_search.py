# supplywatch/services/candidate_search.py

"""Candidate search collaborators for the replacement matcher."""

import asyncio
import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from supplywatch.config.settings import Settings
from supplywatch.errors import CandidateSearchError
from supplywatch.models.candidate import CandidateListing
from supplywatch.models.product import Product
from supplywatch.services.http_client import HttpClient

logger = logging.getLogger("supplywatch.candidates")


class CandidateSearch(Protocol):
    """Returns a bounded list of candidate listings for a product."""

    async def search(
        self, product: Product, limit: int,
    ) -> list[CandidateListing]: ...


class NullCandidateSearch:
    """Search service stand-in used when no endpoint is configured."""

    async def search(
        self, product: Product, limit: int,
    ) -> list[CandidateListing]:
        logger.debug("No candidate search configured for %s", product.product_id)
        return []


def parse_candidate(row: dict[str, Any]) -> CandidateListing | None:
    """Build a :class:`CandidateListing` from one JSON row."""
    url = str(row.get("url", "")).strip()
    title = str(row.get("title", "")).strip()
    if not url or not title:
        return None

    price: Decimal | None = None
    if row.get("price") is not None:
        try:
            price = Decimal(str(row["price"]))
        except InvalidOperation:
            price = None
        if price is not None and (not price.is_finite() or price < 0):
            price = None

    rating: float | None = None
    if row.get("rating") is not None:
        try:
            rating = float(row["rating"])
        except (TypeError, ValueError):
            rating = None
        if rating is not None and not math.isfinite(rating):
            rating = None

    images = row.get("image_urls") or row.get("images") or []
    features = row.get("features") or []
    return CandidateListing(
        url=url,
        title=title,
        features=tuple(str(f) for f in features),
        image_urls=tuple(str(i) for i in images),
        price=price,
        rating=rating,
        platform=str(row.get("platform", "")),
    )


class HttpCandidateSearch:
    """Query a JSON candidate search endpoint.

    The endpoint receives ``q`` (title), ``image`` (first product image)
    and ``limit`` and must answer with a JSON list of listings, or an
    object holding that list under ``results``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        client: HttpClient | None = None,
    ) -> None:
        self.base_url = base_url or Settings.CANDIDATE_SEARCH_URL
        self._client = client or HttpClient("candidates")

    def _search_sync(self, product: Product, limit: int) -> list[CandidateListing]:
        params: dict[str, Any] = {"q": product.title, "limit": limit}
        if product.image_urls:
            params["image"] = product.image_urls[0]
        resp = self._client.get(self.base_url, params=params)
        if resp is None:
            raise CandidateSearchError(
                f"Candidate search failed for {product.product_id}"
            )
        try:
            data: Any = resp.json()
        except ValueError as exc:
            raise CandidateSearchError(
                f"Candidate search returned invalid JSON: {exc}"
            ) from exc

        rows = data.get("results", []) if isinstance(data, dict) else data
        if not isinstance(rows, list):
            raise CandidateSearchError("Candidate search returned no result list")

        candidates: list[CandidateListing] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            candidate = parse_candidate(row)
            if candidate is not None:
                candidates.append(candidate)
            if len(candidates) >= limit:
                break
        logger.info(
            "Candidate search for %s returned %d listings",
            product.product_id,
            len(candidates),
        )
        return candidates

    async def search(
        self, product: Product, limit: int,
    ) -> list[CandidateListing]:
        return await asyncio.to_thread(self._search_sync, product, limit)
