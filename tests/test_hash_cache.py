# tests/test_hash_cache.py

"""Tests for the in-memory image hash cache."""

import time
import unittest
from unittest.mock import patch

from supplywatch.storage.hash_cache import ImageHashCache


class TestImageHashCache(unittest.TestCase):
    """ImageHashCache unit tests."""

    def setUp(self) -> None:
        self.cache = ImageHashCache(ttl=60)

    def test_miss_then_hit(self) -> None:
        """A stored hash is returned on lookup."""
        self.assertEqual(self.cache.lookup("https://img/1"), (False, None))
        self.cache.store("https://img/1", "1010")
        self.assertEqual(self.cache.lookup("https://img/1"), (True, "1010"))

    def test_unhashable_image_is_cached(self) -> None:
        """A failed hash is remembered as a hit with None."""
        self.cache.store("https://img/broken", None)
        self.assertEqual(self.cache.lookup("https://img/broken"), (True, None))

    def test_expired_entries_evicted(self) -> None:
        """Entries older than the TTL are dropped."""
        self.cache.store("https://img/1", "1010")
        later = time.time() + 61
        with patch("supplywatch.storage.hash_cache.time.time", return_value=later):
            self.assertEqual(self.cache.lookup("https://img/1"), (False, None))
        self.assertEqual(len(self.cache), 0)

    def test_clear(self) -> None:
        """clear() empties the cache and reports the count."""
        self.cache.store("a", "1")
        self.cache.store("b", "0")
        self.assertEqual(self.cache.clear(), 2)
        self.assertEqual(len(self.cache), 0)


if __name__ == "__main__":
    unittest.main()
