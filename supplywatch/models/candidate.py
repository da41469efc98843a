# supplywatch/models/candidate.py

"""Candidate supplier listings and replacement match results."""

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class CandidateListing:
    """A listing returned by the candidate search service."""

    url: str
    title: str
    features: tuple[str, ...] = ()
    image_urls: tuple[str, ...] = ()
    price: Decimal | None = None
    rating: float | None = None
    platform: str = ""


@dataclass(frozen=True)
class MatchResult:
    """Similarity of one candidate to the failing product."""

    candidate: CandidateListing
    score: float
    text_score: float
    image_score: float | None = None
    reasons: tuple[str, ...] = field(default_factory=tuple)
