# tests/test_candidate_search.py

"""Tests for the candidate search adapters."""

import unittest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

from supplywatch.errors import CandidateSearchError
from supplywatch.models.product import Product, new_product
from supplywatch.services.candidate_search import (
    HttpCandidateSearch,
    NullCandidateSearch,
    parse_candidate,
)


def _product() -> Product:
    return new_product(
        "p-1", "u-1", "Silicone Baking Mat", "https://supplier.example/mat",
        price=Decimal("9.99"),
        image_urls=["https://img.example/mat.jpg"],
        created_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )


def _client(payload: object) -> MagicMock:
    client = MagicMock()
    response = MagicMock()
    response.json.return_value = payload
    client.get.return_value = response
    return client


class TestParseCandidate(unittest.TestCase):
    """Row parsing."""

    def test_full_row(self) -> None:
        """All known fields are parsed."""
        candidate = parse_candidate({
            "url": "https://a.example/1",
            "title": "Baking Mat",
            "price": "8.50",
            "rating": "4.7",
            "images": ["https://img.example/a.jpg"],
            "features": ["non-stick"],
            "platform": "temu",
        })
        assert candidate is not None
        self.assertEqual(candidate.price, Decimal("8.50"))
        self.assertEqual(candidate.rating, 4.7)
        self.assertEqual(candidate.image_urls, ("https://img.example/a.jpg",))
        self.assertEqual(candidate.features, ("non-stick",))

    def test_missing_url_or_title(self) -> None:
        """Rows without url or title are dropped."""
        self.assertIsNone(parse_candidate({"title": "x"}))
        self.assertIsNone(parse_candidate({"url": "https://a"}))

    def test_bad_numbers_become_unknown(self) -> None:
        """Unparseable or negative prices and ratings are ignored."""
        candidate = parse_candidate({
            "url": "https://a", "title": "x", "price": "-3", "rating": "great",
        })
        assert candidate is not None
        self.assertIsNone(candidate.price)
        self.assertIsNone(candidate.rating)

    def test_non_finite_rating_becomes_unknown(self) -> None:
        """Ratings of nan or inf are dropped."""
        for raw in ("nan", "inf", float("nan")):
            with self.subTest(rating=raw):
                candidate = parse_candidate(
                    {"url": "https://a", "title": "x", "rating": raw}
                )
                assert candidate is not None
                self.assertIsNone(candidate.rating)



class TestHttpCandidateSearch(unittest.IsolatedAsyncioTestCase):
    """JSON endpoint adapter."""

    async def test_list_response(self) -> None:
        """A bare JSON list is accepted and the query is sent."""
        client = _client([
            {"url": "https://a", "title": "Baking Mat"},
            {"url": "https://b", "title": "Baking Mat XL"},
        ])
        search = HttpCandidateSearch("https://search.example/api", client)
        results = await search.search(_product(), 5)
        self.assertEqual([c.url for c in results], ["https://a", "https://b"])
        client.get.assert_called_once_with(
            "https://search.example/api",
            params={
                "q": "Silicone Baking Mat",
                "limit": 5,
                "image": "https://img.example/mat.jpg",
            },
        )

    async def test_results_object_and_limit(self) -> None:
        """A {"results": [...]} body is unwrapped and bounded."""
        rows = [{"url": f"https://{i}", "title": "Mat"} for i in range(10)]
        search = HttpCandidateSearch("https://search.example/api", _client({"results": rows}))
        results = await search.search(_product(), 3)
        self.assertEqual(len(results), 3)

    async def test_failed_request(self) -> None:
        """No response raises CandidateSearchError."""
        client = MagicMock()
        client.get.return_value = None
        search = HttpCandidateSearch("https://search.example/api", client)
        with self.assertRaises(CandidateSearchError):
            await search.search(_product(), 5)

    async def test_invalid_json(self) -> None:
        """A non-JSON body raises CandidateSearchError."""
        client = MagicMock()
        client.get.return_value.json.side_effect = ValueError("Expecting value")
        search = HttpCandidateSearch("https://search.example/api", client)
        with self.assertRaises(CandidateSearchError):
            await search.search(_product(), 5)

    async def test_null_search(self) -> None:
        """The null search never finds anything."""
        self.assertEqual(await NullCandidateSearch().search(_product(), 5), [])


if __name__ == "__main__":
    unittest.main()
