# supplywatch/models/product.py

"""Product aggregate: supplier link, AI insight and automation log.

The nested records are frozen value types owned by the
:class:`Product`; they are replaced wholesale (never mutated in place)
so a product loaded under the per-product lock is the only writer of
its own sub-records.
"""

from collections.abc import Iterator
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

# Retention caps for the per-product monitoring history
MAX_RECENT_OBSERVATIONS = 64
MAX_TRANSITION_EVENTS = 200
MAX_PRICE_POINTS = 200


class SupplierStatus(str, Enum):
    """Current condition of the supplier listing."""

    ACTIVE = "ACTIVE"
    PRICE_CHANGED = "PRICE_CHANGED"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    REMOVED = "REMOVED"


class AutomationAction(str, Enum):
    """Kinds of automated action recorded in the automation log."""

    PRICE_UPDATE = "PRICE_UPDATE"
    AUTO_HEAL = "AUTO_HEAL"
    PRODUCT_REMOVED = "PRODUCT_REMOVED"


@dataclass(frozen=True)
class SupplierLink:
    """The supplier listing a product is sourced from."""

    url: str
    platform: str = ""
    status: SupplierStatus = SupplierStatus.ACTIVE
    current_price: Decimal | None = None
    previous_price: Decimal | None = None
    in_stock: bool = True
    stock_level: int | None = None
    supplier_rating: float | None = None
    last_checked: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class AIInsight:
    """Derived risk signal; written only by the risk scoring engine."""

    risk_score: float = 50.0
    predicted_removal_date: datetime | None = None
    last_analyzed: datetime | None = None
    previous_score: float | None = None
    previous_analyzed: datetime | None = None
    image_match_confidence: float | None = None


@dataclass(frozen=True)
class AutomationLogEntry:
    """One immutable audit record of an automated action."""

    action: AutomationAction
    timestamp: datetime
    old_value: str | None = None
    new_value: str | None = None
    details: str = ""


@dataclass(frozen=True)
class TransitionEvent:
    """A supplier status change, kept for risk scoring."""

    at: datetime
    from_status: SupplierStatus
    to_status: SupplierStatus
    supplier_url: str


@dataclass(frozen=True)
class PricePoint:
    """An observed supplier price."""

    at: datetime
    price: Decimal
    supplier_url: str


class AutomationLog:
    """Append-only sequence of :class:`AutomationLogEntry`."""

    def __init__(self, entries: tuple[AutomationLogEntry, ...] = ()) -> None:
        self._entries: tuple[AutomationLogEntry, ...] = tuple(entries)

    def append(self, entry: AutomationLogEntry) -> None:
        self._entries = self._entries + (entry,)

    @property
    def entries(self) -> tuple[AutomationLogEntry, ...]:
        return self._entries

    def count(self, action: AutomationAction) -> int:
        return sum(1 for e in self._entries if e.action == action)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[AutomationLogEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> AutomationLogEntry:
        return self._entries[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AutomationLog):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"AutomationLog({len(self._entries)} entries)"


@dataclass
class Product:
    """A monitored dropshipped product and its supplier-side state."""

    product_id: str
    user_id: str
    title: str
    supplier: SupplierLink
    features: list[str] = field(default_factory=lambda: list[str]())
    image_urls: list[str] = field(default_factory=lambda: list[str]())
    insight: AIInsight = field(default_factory=AIInsight)
    automation_log: AutomationLog = field(default_factory=AutomationLog)

    # Monitoring bookkeeping
    unreachable_streak: int = 0
    last_observed_at: datetime | None = None
    recent_observations: list[datetime] = field(
        default_factory=lambda: list[datetime]()
    )
    transitions: list[TransitionEvent] = field(
        default_factory=lambda: list[TransitionEvent]()
    )
    price_points: list[PricePoint] = field(
        default_factory=lambda: list[PricePoint]()
    )
    heal_pending: bool = False
    heal_started_at: datetime | None = None
    needs_review: bool = False
    review_reason: str = ""

    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def status(self) -> SupplierStatus:
        return self.supplier.status

    def has_processed(self, observed_at: datetime) -> bool:
        """Return True if an observation with this timestamp was applied."""
        return observed_at in self.recent_observations

    def mark_processed(self, observed_at: datetime) -> None:
        self.recent_observations.append(observed_at)
        self.recent_observations.sort()
        del self.recent_observations[:-MAX_RECENT_OBSERVATIONS]
        if self.last_observed_at is None or observed_at > self.last_observed_at:
            self.last_observed_at = observed_at

    def record_transition(self, event: TransitionEvent) -> None:
        self.transitions.append(event)
        del self.transitions[:-MAX_TRANSITION_EVENTS]

    def record_price(self, point: PricePoint) -> None:
        self.price_points.append(point)
        del self.price_points[:-MAX_PRICE_POINTS]

    def heal_in_flight(self, now: datetime, lease_seconds: float) -> bool:
        """True while a heal attempt holds an unexpired lease."""
        if not self.heal_pending:
            return False
        if self.heal_started_at is None:
            return True
        return (now - self.heal_started_at).total_seconds() < lease_seconds

    def flag_for_review(self, reason: str) -> None:
        self.needs_review = True
        self.review_reason = reason

    def clear_review(self) -> None:
        self.needs_review = False
        self.review_reason = ""

    # ── Serialisation ────────────────────────────────────

    def to_document(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible document."""
        return {
            "product_id": self.product_id,
            "user_id": self.user_id,
            "title": self.title,
            "features": list(self.features),
            "image_urls": list(self.image_urls),
            "monitored_supplier": _encode(asdict(self.supplier)),
            "ai_insights": _encode(asdict(self.insight)),
            "automation_log": [_encode(asdict(e)) for e in self.automation_log],
            "monitoring": {
                "unreachable_streak": self.unreachable_streak,
                "last_observed_at": _encode(self.last_observed_at),
                "recent_observations": [
                    _encode(t) for t in self.recent_observations
                ],
                "transitions": [_encode(asdict(t)) for t in self.transitions],
                "price_points": [_encode(asdict(p)) for p in self.price_points],
                "heal_pending": self.heal_pending,
                "heal_started_at": _encode(self.heal_started_at),
                "needs_review": self.needs_review,
                "review_reason": self.review_reason,
            },
            "created_at": _encode(self.created_at),
            "updated_at": _encode(self.updated_at),
        }

    @classmethod
    def from_document(
        cls, doc: Mapping[str, Any], version: int = 0,
    ) -> "Product":
        """Rebuild a product from :meth:`to_document` output."""
        sup = doc["monitored_supplier"]
        ins = doc.get("ai_insights") or {}
        mon = doc.get("monitoring") or {}
        supplier = SupplierLink(
            url=sup["url"],
            platform=sup.get("platform", ""),
            status=SupplierStatus(sup.get("status", "ACTIVE")),
            current_price=_decimal(sup.get("current_price")),
            previous_price=_decimal(sup.get("previous_price")),
            in_stock=bool(sup.get("in_stock", True)),
            stock_level=sup.get("stock_level"),
            supplier_rating=sup.get("supplier_rating"),
            last_checked=_datetime(sup.get("last_checked")),
            updated_at=_datetime(sup.get("updated_at")),
        )
        insight = AIInsight(
            risk_score=float(ins.get("risk_score", 50.0)),
            predicted_removal_date=_datetime(ins.get("predicted_removal_date")),
            last_analyzed=_datetime(ins.get("last_analyzed")),
            previous_score=ins.get("previous_score"),
            previous_analyzed=_datetime(ins.get("previous_analyzed")),
            image_match_confidence=ins.get("image_match_confidence"),
        )
        log = AutomationLog(tuple(
            AutomationLogEntry(
                action=AutomationAction(e["action"]),
                timestamp=_datetime(e["timestamp"]),  # type: ignore[arg-type]
                old_value=e.get("old_value"),
                new_value=e.get("new_value"),
                details=e.get("details", ""),
            )
            for e in doc.get("automation_log", [])
        ))
        return cls(
            product_id=doc["product_id"],
            user_id=doc.get("user_id", ""),
            title=doc.get("title", ""),
            supplier=supplier,
            features=list(doc.get("features", [])),
            image_urls=list(doc.get("image_urls", [])),
            insight=insight,
            automation_log=log,
            unreachable_streak=int(mon.get("unreachable_streak", 0)),
            last_observed_at=_datetime(mon.get("last_observed_at")),
            recent_observations=[
                _datetime(t) for t in mon.get("recent_observations", [])  # type: ignore[misc]
            ],
            transitions=[
                TransitionEvent(
                    at=_datetime(t["at"]),  # type: ignore[arg-type]
                    from_status=SupplierStatus(t["from_status"]),
                    to_status=SupplierStatus(t["to_status"]),
                    supplier_url=t.get("supplier_url", ""),
                )
                for t in mon.get("transitions", [])
            ],
            price_points=[
                PricePoint(
                    at=_datetime(p["at"]),  # type: ignore[arg-type]
                    price=Decimal(p["price"]),
                    supplier_url=p.get("supplier_url", ""),
                )
                for p in mon.get("price_points", [])
            ],
            heal_pending=bool(mon.get("heal_pending", False)),
            heal_started_at=_datetime(mon.get("heal_started_at")),
            needs_review=bool(mon.get("needs_review", False)),
            review_reason=mon.get("review_reason", ""),
            version=version,
            created_at=_datetime(doc.get("created_at")),
            updated_at=_datetime(doc.get("updated_at")),
        )

    def projection(self) -> Mapping[str, Any]:
        """Read-only view of the fields exposed to the dashboard."""
        doc = self.to_document()
        return MappingProxyType({
            "product_id": self.product_id,
            "monitored_supplier": MappingProxyType(doc["monitored_supplier"]),
            "ai_insights": MappingProxyType(doc["ai_insights"]),
            "automation_log": tuple(
                MappingProxyType(e) for e in doc["automation_log"]
            ),
            "needs_review": self.needs_review,
            "review_reason": self.review_reason,
        })


def new_product(
    product_id: str,
    user_id: str,
    title: str,
    supplier_url: str,
    *,
    platform: str = "",
    price: Decimal | None = None,
    supplier_rating: float | None = None,
    features: list[str] | None = None,
    image_urls: list[str] | None = None,
    baseline_risk: float = 50.0,
    created_at: datetime | None = None,
) -> Product:
    """Create a freshly imported product in the ACTIVE state."""
    return Product(
        product_id=product_id,
        user_id=user_id,
        title=title,
        supplier=SupplierLink(
            url=supplier_url,
            platform=platform,
            current_price=price,
            supplier_rating=supplier_rating,
            updated_at=created_at,
        ),
        features=list(features or []),
        image_urls=list(image_urls or []),
        insight=AIInsight(risk_score=baseline_risk),
        created_at=created_at,
        updated_at=created_at,
    )


def replace_link(link: SupplierLink, **changes: Any) -> SupplierLink:
    """Return a copy of *link* with *changes* applied."""
    return replace(link, **changes)


# ── Encoding helpers ─────────────────────────────────────


def _encode(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _decimal(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def _datetime(value: Any) -> datetime | None:
    return None if value is None else datetime.fromisoformat(value)
