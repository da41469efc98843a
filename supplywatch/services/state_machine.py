# supplywatch/services/state_machine.py

"""Per-product supplier state machine.

States are ``ACTIVE``, ``PRICE_CHANGED``, ``OUT_OF_STOCK`` and the
terminal ``REMOVED``.  Rules are evaluated in priority order for each
signal and the first match wins:

1. ``unreachable_threshold`` consecutive unreachable observations
   move the listing to ``REMOVED`` and log ``PRODUCT_REMOVED``.
2. An out-of-stock observation moves it to ``OUT_OF_STOCK``.
3. A price delta beyond ``price_tolerance`` moves it to
   ``PRICE_CHANGED`` and logs ``PRICE_UPDATE``.
4. Otherwise the listing is ``ACTIVE``.

The status is the *current* condition, not a history: a listing that
changed price once and then holds steady goes back to ``ACTIVE``.
This class is the only writer of ``SupplierLink.status``,
``current_price``, ``previous_price`` and the stock fields.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from supplywatch.config.policy import MonitorPolicy
from supplywatch.models.candidate import CandidateListing
from supplywatch.models.observation import Signal
from supplywatch.models.product import (
    AutomationAction,
    AutomationLogEntry,
    PricePoint,
    Product,
    SupplierStatus,
    TransitionEvent,
    replace_link,
)

logger = logging.getLogger("supplywatch.state")


@dataclass
class TransitionResult:
    """Outcome of applying one signal to a product."""

    from_status: SupplierStatus
    to_status: SupplierStatus
    log_entries: list[AutomationLogEntry] = field(
        default_factory=lambda: list[AutomationLogEntry]()
    )
    ignored: bool = False  # signal arrived after the terminal state

    @property
    def changed(self) -> bool:
        return self.from_status != self.to_status


def describe_price_change(old: Decimal, new: Decimal) -> tuple[str, float | None]:
    """Return a human-readable description and the percent change."""
    if old == 0:
        return f"Price changed from {old} to {new}", None
    pct = float((new - old) / old * 100)
    direction = "increased" if pct > 0 else "decreased"
    return f"Price {direction} by {abs(pct):.2f}%", pct


class SupplierStateMachine:
    """Drive ``SupplierLink`` state from successive signals."""

    def __init__(self, policy: MonitorPolicy | None = None) -> None:
        self.policy = policy or MonitorPolicy()

    def apply(self, product: Product, signal: Signal) -> TransitionResult:
        """Apply *signal* to *product* in place and return the result."""
        link = product.supplier
        current = link.status
        at = signal.observed_at

        if current == SupplierStatus.REMOVED:
            logger.debug(
                "Ignoring signal for %s: listing is REMOVED",
                product.product_id,
            )
            product.supplier = replace_link(link, last_checked=at)
            return TransitionResult(current, current, ignored=True)

        result = TransitionResult(current, current)

        # ── Rule 1: unreachable ──────────────────────────
        if not signal.reachable:
            product.unreachable_streak += 1
            if product.unreachable_streak >= self.policy.unreachable_threshold:
                self._enter(product, SupplierStatus.REMOVED, at, result)
                entry = AutomationLogEntry(
                    action=AutomationAction.PRODUCT_REMOVED,
                    timestamp=at,
                    old_value=current.value,
                    new_value=SupplierStatus.REMOVED.value,
                    details="supplier unreachable",
                )
                self._log(product, entry, result)
            else:
                logger.info(
                    "Supplier for %s unreachable (%d/%d)",
                    product.product_id,
                    product.unreachable_streak,
                    self.policy.unreachable_threshold,
                )
                product.supplier = replace_link(product.supplier, last_checked=at)
            return result

        product.unreachable_streak = 0
        updates: dict[str, object] = {
            "last_checked": at,
            "in_stock": signal.in_stock,
            "stock_level": signal.stock_level,
        }
        if signal.supplier_rating is not None:
            updates["supplier_rating"] = signal.supplier_rating
        product.supplier = replace_link(link, **updates)
        if signal.price is not None:
            product.record_price(PricePoint(at, signal.price, link.url))

        # ── Rule 2: out of stock ─────────────────────────
        if not signal.in_stock:
            # Price is held until stock returns so rule 3 sees the full delta
            self._enter(product, SupplierStatus.OUT_OF_STOCK, at, result)
            return result

        # ── Rule 3: price change beyond tolerance ────────
        delta = signal.price_delta
        if (
            delta is not None
            and signal.price is not None
            and signal.previous_price is not None
            and abs(delta) > self.policy.price_tolerance
        ):
            old, new = signal.previous_price, signal.price
            product.supplier = replace_link(
                product.supplier,
                previous_price=old,
                current_price=new,
            )
            self._enter(product, SupplierStatus.PRICE_CHANGED, at, result)
            details, _ = describe_price_change(old, new)
            entry = AutomationLogEntry(
                action=AutomationAction.PRICE_UPDATE,
                timestamp=at,
                old_value=str(old),
                new_value=str(new),
                details=details,
            )
            self._log(product, entry, result)
            return result

        if product.supplier.current_price is None and signal.price is not None:
            # First price ever seen for this link
            product.supplier = replace_link(
                product.supplier, current_price=signal.price,
            )

        # ── Rule 4: nothing to report ────────────────────
        self._enter(product, SupplierStatus.ACTIVE, at, result)
        return result

    def reset_link(
        self,
        product: Product,
        candidate: CandidateListing,
        at: datetime,
    ) -> TransitionResult:
        """Swap the supplier link to *candidate* and restart at ``ACTIVE``.

        This is the explicit reset path out of ``REMOVED`` used by a
        successful auto-heal.
        """
        old = product.supplier
        result = TransitionResult(old.status, SupplierStatus.ACTIVE)
        product.supplier = replace_link(
            old,
            url=candidate.url,
            platform=candidate.platform or old.platform,
            status=SupplierStatus.ACTIVE,
            current_price=candidate.price if candidate.price is not None else old.current_price,
            previous_price=old.current_price,
            in_stock=True,
            stock_level=None,
            supplier_rating=candidate.rating,
            updated_at=at,
        )
        product.unreachable_streak = 0
        product.updated_at = at
        product.record_transition(
            TransitionEvent(at, old.status, SupplierStatus.ACTIVE, candidate.url)
        )
        logger.info(
            "Product %s supplier reset: %s -> %s",
            product.product_id,
            old.url,
            candidate.url,
        )
        return result

    # ── Private helpers ──────────────────────────────────

    def _enter(
        self,
        product: Product,
        target: SupplierStatus,
        at: datetime,
        result: TransitionResult,
    ) -> None:
        link = product.supplier
        result.to_status = target
        if link.status == target:
            return
        product.supplier = replace_link(link, status=target, updated_at=at)
        product.updated_at = at
        product.record_transition(
            TransitionEvent(at, link.status, target, link.url)
        )
        if target == SupplierStatus.ACTIVE and product.needs_review:
            product.clear_review()
        logger.info(
            "Product %s: %s -> %s",
            product.product_id,
            link.status.value,
            target.value,
        )

    @staticmethod
    def _log(
        product: Product,
        entry: AutomationLogEntry,
        result: TransitionResult,
    ) -> None:
        product.automation_log.append(entry)
        result.log_entries.append(entry)
