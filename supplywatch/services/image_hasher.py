# supplywatch/services/image_hasher.py

"""Perceptual (average) image hashing and an HTTP image fetcher."""

import asyncio
import logging
from io import BytesIO
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from supplywatch.services.http_client import HttpClient
from supplywatch.storage.hash_cache import ImageHashCache

logger = logging.getLogger("supplywatch.images")


def average_hash(image_bytes: bytes | None, hash_size: int = 8) -> str | None:
    """Return the average hash of an image as a bit string.

    The image is reduced to ``hash_size`` x ``hash_size`` greyscale
    pixels; each bit records whether a pixel is brighter than the mean.
    Returns ``None`` for empty or undecodable input.
    """
    if not image_bytes:
        return None
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            small = img.convert("L").resize(
                (hash_size, hash_size), Image.Resampling.LANCZOS
            )
            pixels = list(small.getdata())
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.debug("Could not hash image: %s", exc)
        return None
    avg = sum(pixels) / len(pixels)
    return "".join("1" if pixel > avg else "0" for pixel in pixels)


def hamming_distance(a: str | None, b: str | None) -> int | None:
    """Number of differing bits, or ``None`` for incomparable hashes."""
    if not a or not b or len(a) != len(b):
        return None
    return sum(ch1 != ch2 for ch1, ch2 in zip(a, b))


def hash_similarity(a: str | None, b: str | None) -> float | None:
    """``1 - distance / bits``, or ``None`` when not comparable."""
    distance = hamming_distance(a, b)
    if distance is None or a is None:
        return None
    return 1.0 - distance / len(a)


class ImageFetcher(Protocol):
    """Resolves an image URL to its perceptual hash."""

    async def fetch_hash(self, url: str) -> str | None: ...


class HttpImageFetcher:
    """Download images over HTTP and hash them, with caching."""

    def __init__(
        self,
        hash_size: int = 8,
        client: HttpClient | None = None,
        cache: ImageHashCache | None = None,
    ) -> None:
        self.hash_size = hash_size
        self._client = client or HttpClient("images")
        self._cache = cache or ImageHashCache()

    def _download_and_hash(self, url: str) -> str | None:
        resp = self._client.get(url)
        if resp is None:
            return None
        return average_hash(resp.content, self.hash_size)

    async def fetch_hash(self, url: str) -> str | None:
        hit, cached = self._cache.lookup(url)
        if hit:
            return cached
        image_hash = await asyncio.to_thread(self._download_and_hash, url)
        self._cache.store(url, image_hash)
        return image_hash
