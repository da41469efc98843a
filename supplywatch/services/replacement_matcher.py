# supplywatch/services/replacement_matcher.py

"""Find a substitute supplier listing for a failing product."""

import logging
import re
from decimal import Decimal

from supplywatch.config.policy import MatchPolicy
from supplywatch.config.settings import Settings
from supplywatch.errors import CandidateSearchError, NoSuitableReplacement
from supplywatch.models.candidate import CandidateListing, MatchResult
from supplywatch.models.product import Product
from supplywatch.services.candidate_search import CandidateSearch
from supplywatch.services.image_hasher import ImageFetcher, hash_similarity

logger = logging.getLogger("supplywatch.matcher")

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def tokenize(*texts: str) -> set[str]:
    """Lowercased alphanumeric tokens of all *texts* combined."""
    tokens: set[str] = set()
    for text in texts:
        if text:
            tokens.update(_TOKEN_RE.findall(text.lower()))
    return tokens


def token_overlap(a: set[str], b: set[str]) -> float:
    """Jaccard overlap of two token sets (0 when either is empty)."""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class ReplacementMatcher:
    """Score candidate listings by text and image similarity.

    Text similarity is the normalised token overlap of title and
    features.  When both sides have hashable images the best pairwise
    average-hash similarity is blended in; otherwise the text score is
    used alone.
    """

    def __init__(
        self,
        search: CandidateSearch,
        policy: MatchPolicy | None = None,
        image_fetcher: ImageFetcher | None = None,
        candidate_limit: int | None = None,
    ) -> None:
        self.search = search
        self.policy = policy or MatchPolicy()
        self.image_fetcher = image_fetcher
        self.candidate_limit = candidate_limit or Settings.CANDIDATE_LIMIT

    # ── Qualification ────────────────────────────────────

    def qualifies(
        self, product: Product, candidate: CandidateListing,
    ) -> tuple[bool, str]:
        """Apply the rating, price and self-match filters."""
        if candidate.url == product.supplier.url:
            return False, "same listing as the failing supplier"
        if (
            candidate.rating is not None
            and candidate.rating < self.policy.min_candidate_rating
        ):
            return False, f"rating {candidate.rating} below minimum"
        current = product.supplier.current_price
        if candidate.price is not None and current is not None and current > 0:
            ceiling = current * (
                1 + Decimal(str(self.policy.max_price_variance_pct)) / 100
            )
            if candidate.price > ceiling:
                return False, f"price {candidate.price} above {ceiling:.2f}"
        return True, ""

    # ── Similarity ───────────────────────────────────────

    async def _hashes(self, urls: tuple[str, ...] | list[str]) -> list[str]:
        if self.image_fetcher is None:
            return []
        hashes: list[str] = []
        for url in urls:
            image_hash = await self.image_fetcher.fetch_hash(url)
            if image_hash:
                hashes.append(image_hash)
        return hashes

    @staticmethod
    def best_image_similarity(
        product_hashes: list[str], candidate_hashes: list[str],
    ) -> float | None:
        best: float | None = None
        for a in product_hashes:
            for b in candidate_hashes:
                sim = hash_similarity(a, b)
                if sim is not None and (best is None or sim > best):
                    best = sim
        return best

    async def score(
        self,
        product: Product,
        candidate: CandidateListing,
        product_tokens: set[str],
        product_hashes: list[str],
    ) -> MatchResult:
        text = token_overlap(
            product_tokens, tokenize(candidate.title, *candidate.features)
        )
        image: float | None = None
        if product_hashes:
            image = self.best_image_similarity(
                product_hashes, await self._hashes(candidate.image_urls)
            )
        if image is None:
            combined = text
            reasons = (f"text {text:.2f}",)
        else:
            combined = (
                self.policy.text_weight * text + self.policy.image_weight * image
            )
            reasons = (f"text {text:.2f}", f"image {image:.2f}")
        return MatchResult(
            candidate=candidate,
            score=round(combined, 4),
            text_score=text,
            image_score=image,
            reasons=reasons,
        )

    async def rank(
        self, product: Product, candidates: list[CandidateListing],
    ) -> list[MatchResult]:
        """Score qualified candidates, best first, deterministically."""
        product_tokens = tokenize(product.title, *product.features)
        product_hashes = await self._hashes(product.image_urls)
        results: list[MatchResult] = []
        for candidate in candidates:
            ok, reason = self.qualifies(product, candidate)
            if not ok:
                logger.debug("Candidate %s rejected: %s", candidate.url, reason)
                continue
            results.append(
                await self.score(product, candidate, product_tokens, product_hashes)
            )
        results.sort(
            key=lambda r: (
                -r.score,
                r.candidate.price if r.candidate.price is not None else Decimal("Infinity"),
                r.candidate.url,
            )
        )
        return results

    async def find_replacement(self, product: Product) -> MatchResult:
        """Return the best candidate above the acceptance threshold.

        Raises:
            NoSuitableReplacement: the search failed or nothing cleared
                the threshold.
        """
        try:
            candidates = await self.search.search(product, self.candidate_limit)
        except CandidateSearchError as exc:
            raise NoSuitableReplacement(product.product_id, str(exc)) from exc

        candidates = candidates[: self.candidate_limit]
        if not candidates:
            raise NoSuitableReplacement(product.product_id, "no candidates found")

        results = await self.rank(product, candidates)
        threshold = self.policy.acceptance_threshold
        if not results or results[0].score < threshold:
            best = f"{results[0].score:.2f}" if results else "n/a"
            raise NoSuitableReplacement(
                product.product_id,
                f"best similarity {best} below {threshold:.2f}",
            )

        best_match = results[0]
        logger.info(
            "Replacement for %s: %s (score %.2f; %s)",
            product.product_id,
            best_match.candidate.url,
            best_match.score,
            ", ".join(best_match.reasons),
        )
        return best_match
