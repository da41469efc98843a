# tests/test_observation_source.py

"""Tests for the recorded observation feed."""

import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

from supplywatch.models.product import new_product
from supplywatch.services.observation_source import (
    FeedObservationSource,
    load_feed,
    parse_observation,
)


def _write(rows: object) -> Path:
    path = Path(tempfile.mkdtemp()) / "feed.json"
    path.write_text(json.dumps(rows), encoding="utf-8")
    return path


class TestParsing(unittest.TestCase):
    """Feed row parsing."""

    def test_parse_row(self) -> None:
        """A complete row becomes an observation."""
        obs = parse_observation({
            "product_id": "p-1",
            "observed_at": "2026-03-01T12:00:00+00:00",
            "reachable": True,
            "in_stock": False,
            "price": "19.99",
            "supplier_rating": 4.5,
            "stock_level": 0,
        })
        self.assertEqual(obs.price, Decimal("19.99"))
        self.assertFalse(obs.in_stock)
        self.assertEqual(obs.stock_level, 0)
        self.assertEqual(obs.observed_at, datetime(2026, 3, 1, 12, tzinfo=timezone.utc))

    def test_defaults(self) -> None:
        """Reachability and stock default to True."""
        obs = parse_observation({
            "product_id": "p-1", "observed_at": "2026-03-01T12:00:00", "price": 5,
        })
        self.assertTrue(obs.reachable)
        self.assertTrue(obs.in_stock)

    def test_load_feed_skips_malformed(self) -> None:
        """Rows that are not observations are skipped."""
        path = _write([
            {"product_id": "p-1", "observed_at": "2026-03-01T12:00:00", "price": "5"},
            {"product_id": "p-1"},
            {"product_id": "p-1", "observed_at": "yesterday"},
            "junk",
        ])
        self.assertEqual(len(load_feed(path)), 1)

    def test_naive_timestamp_read_as_utc(self) -> None:
        """Naive and offset timestamps both come out in UTC."""
        naive = parse_observation({
            "product_id": "p-1", "observed_at": "2026-03-01T12:00:00", "price": 5,
        })
        offset = parse_observation({
            "product_id": "p-1", "observed_at": "2026-03-01T14:00:00+02:00", "price": 5,
        })
        expected = datetime(2026, 3, 1, 12, tzinfo=timezone.utc)
        self.assertEqual(naive.observed_at, expected)
        self.assertEqual(offset.observed_at, expected)
        self.assertEqual(offset.observed_at.utcoffset(), timedelta(0))

    def test_flags_must_be_booleans(self) -> None:
        """String flags such as "false" are rejected, not read as True."""
        for key in ("in_stock", "reachable"):
            with self.subTest(key=key), self.assertRaises(ValueError):
                parse_observation({
                    "product_id": "p-1",
                    "observed_at": "2026-03-01T12:00:00",
                    "price": 5,
                    key: "false",
                })

    def test_load_feed_skips_rows_with_string_flags(self) -> None:
        """A row with a non-boolean flag is skipped as malformed."""
        path = _write([
            {"product_id": "p-1", "observed_at": "2026-03-01T12:00:00", "price": "5"},
            {"product_id": "p-1", "observed_at": "2026-03-01T13:00:00",
             "price": "5", "in_stock": "false"},
        ])
        self.assertEqual(len(load_feed(path)), 1)

    def test_load_feed_requires_list(self) -> None:
        """A non-list document is an error."""
        with self.assertRaises(ValueError):
            load_feed(_write({"product_id": "p-1"}))


class TestFeedSource(unittest.IsolatedAsyncioTestCase):
    """Per-product replay order."""

    async def test_observe_in_time_order(self) -> None:
        """Observations are served oldest first, per product."""
        path = _write([
            {"product_id": "p-1", "observed_at": "2026-03-01T14:00:00", "price": "7"},
            {"product_id": "p-1", "observed_at": "2026-03-01T12:00:00", "price": "5"},
            {"product_id": "p-2", "observed_at": "2026-03-01T13:00:00", "price": "9"},
        ])
        source = FeedObservationSource.from_file(path)
        self.assertEqual(source.pending(), 3)
        self.assertEqual(source.product_ids(), ["p-1", "p-2"])

        product = new_product("p-1", "u-1", "Mat", "https://supplier.example/mat")
        first = await source.observe(product)
        second = await source.observe(product)
        assert first is not None and second is not None
        self.assertEqual(first.price, Decimal("5"))
        self.assertEqual(second.price, Decimal("7"))
        self.assertIsNone(await source.observe(product))
        self.assertEqual(source.pending("p-1"), 0)

    async def test_mixed_timezone_feed(self) -> None:
        """A feed mixing naive and offset timestamps is ordered in UTC."""
        path = _write([
            {"product_id": "p-1", "observed_at": "2026-03-01T11:00:00+00:00", "price": "7"},
            {"product_id": "p-1", "observed_at": "2026-03-01T10:00:00", "price": "5"},
            {"product_id": "p-1", "observed_at": "2026-03-01T12:30:00+02:00", "price": "6"},
        ])
        source = FeedObservationSource.from_file(path)
        product = new_product("p-1", "u-1", "Mat", "https://supplier.example/mat")
        served = [await source.observe(product) for _ in range(3)]
        self.assertEqual(
            [obs.price for obs in served if obs is not None],
            [Decimal("5"), Decimal("6"), Decimal("7")],
        )
        self.assertIsNone(await source.observe(product))


if __name__ == "__main__":
    unittest.main()
