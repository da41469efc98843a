# supplywatch/storage/product_store.py

"""SQLite-backed document store for product records.

Each product is one JSON document plus a ``version`` counter.  Writes
are conditional on the version the caller loaded, which gives the
engine optimistic per-product mutual exclusion across processes.
"""

import json
import logging
import math
import sqlite3
import threading
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, cast

from supplywatch.config.settings import Settings
from supplywatch.errors import (
    ConcurrentWriteConflict,
    PersistenceUnavailable,
    ProductNotFound,
)
from supplywatch.models.product import Product, SupplierStatus, new_product

logger = logging.getLogger("supplywatch.store")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS products (
    product_id TEXT    PRIMARY KEY,
    user_id    TEXT    NOT NULL,
    status     TEXT    NOT NULL,
    version    INTEGER NOT NULL DEFAULT 1,
    document   TEXT    NOT NULL,
    updated_at TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_products_user
    ON products(user_id);
CREATE INDEX IF NOT EXISTS idx_products_status
    ON products(status);
"""


class ProductStore:
    """Document-oriented read/update of product records keyed by id."""

    def __init__(self, db_path: Path | None = None) -> None:
        path = db_path or Settings.DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(str(path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise PersistenceUnavailable(f"Cannot open {path}: {exc}") from exc
        logger.debug("ProductStore opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    # ── Writes ───────────────────────────────────────────

    def create(self, product: Product) -> Product:
        """Insert a new product; fails if the id already exists."""
        now = datetime.now(timezone.utc)
        if product.created_at is None:
            product.created_at = now
        if product.updated_at is None:
            product.updated_at = now
        doc = json.dumps(product.to_document(), ensure_ascii=False)
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO products "
                    "(product_id, user_id, status, version, document, updated_at) "
                    "VALUES (?, ?, ?, 1, ?, ?)",
                    (
                        product.product_id,
                        product.user_id,
                        product.status.value,
                        doc,
                        now.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Product already exists: {product.product_id}") from exc
        except sqlite3.Error as exc:
            raise PersistenceUnavailable(str(exc)) from exc
        product.version = 1
        logger.info("Created product %s", product.product_id)
        return product

    def save(self, product: Product) -> Product:
        """Conditionally write *product* if nobody wrote since it was loaded.

        The status, supplier fields and log entries go out in one
        statement, so readers never see a partial update.

        Raises:
            ConcurrentWriteConflict: the stored version moved on.
        """
        expected = product.version
        doc = json.dumps(product.to_document(), ensure_ascii=False)
        try:
            with self._lock, self._conn:
                cur = self._conn.execute(
                    "UPDATE products "
                    "SET document = ?, status = ?, user_id = ?, "
                    "    version = version + 1, updated_at = ? "
                    "WHERE product_id = ? AND version = ?",
                    (
                        doc,
                        product.status.value,
                        product.user_id,
                        datetime.now(timezone.utc).isoformat(),
                        product.product_id,
                        expected,
                    ),
                )
                updated = cur.rowcount
        except sqlite3.Error as exc:
            raise PersistenceUnavailable(str(exc)) from exc
        if updated != 1:
            raise ConcurrentWriteConflict(product.product_id, expected)
        product.version = expected + 1
        return product

    # ── Reads ────────────────────────────────────────────

    def load(self, product_id: str) -> Product:
        """Return the stored product, carrying its current version."""
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT document, version FROM products WHERE product_id = ?",
                    (product_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceUnavailable(str(exc)) from exc
        if row is None:
            raise ProductNotFound(product_id)
        return Product.from_document(json.loads(row[0]), version=row[1])

    def exists(self, product_id: str) -> bool:
        try:
            self.load(product_id)
        except ProductNotFound:
            return False
        return True

    def list_ids(
        self,
        user_id: str | None = None,
        statuses: Iterable[SupplierStatus] | None = None,
    ) -> list[str]:
        """Product ids, optionally scoped to a user and/or statuses."""
        query = "SELECT product_id FROM products WHERE 1 = 1"
        params: list[Any] = []
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        if statuses is not None:
            values = [s.value for s in statuses]
            if not values:
                return []
            query += f" AND status IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        query += " ORDER BY product_id"
        try:
            with self._lock:
                rows = self._conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceUnavailable(str(exc)) from exc
        return [r[0] for r in rows]

    def projection(self, product_id: str) -> Mapping[str, Any]:
        """Read-only dashboard view of one product."""
        return self.load(product_id).projection()

    # ── Catalogue import ─────────────────────────────────

    def import_products(
        self,
        filepath: Path,
        baseline_risk: float | None = None,
    ) -> int:
        """Import a JSON product catalogue; existing ids are skipped.

        Each entry needs ``product_id``, ``user_id``, ``title`` and
        ``supplier_url``; ``price``, ``platform``, ``supplier_rating``,
        ``features`` and ``image_urls`` are optional.  Returns the
        number of products created.
        """
        try:
            with open(filepath, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to read %s: %s", filepath, exc)
            return 0
        if not isinstance(data, list):
            logger.warning("Expected a list of products in %s", filepath)
            return 0

        baseline = (
            baseline_risk if baseline_risk is not None else Settings.BASELINE_RISK_SCORE
        )
        created = 0
        entries = [e for e in cast(list[object], data) if isinstance(e, dict)]
        for row in cast(list[dict[str, Any]], entries):
            product = _product_from_row(row, baseline)
            if product is None:
                logger.debug("Skipping incomplete product row: %s", row)
                continue
            try:
                self.create(product)
            except ValueError:
                logger.debug("Product %s already imported", product.product_id)
                continue
            created += 1

        logger.info("Imported %d products from %s", created, filepath)
        return created


def _product_from_row(row: dict[str, Any], baseline: float) -> Product | None:
    required = ("product_id", "user_id", "title", "supplier_url")
    if any(not str(row.get(k, "")).strip() for k in required):
        return None
    pid = str(row["product_id"])

    price: Decimal | None = None
    if row.get("price") is not None:
        try:
            price = Decimal(str(row["price"]))
        except InvalidOperation:
            logger.warning("Skipping %s: unparseable price %r", pid, row["price"])
            return None
        if not price.is_finite() or price < 0:
            logger.warning("Skipping %s: invalid price %s", pid, price)
            return None

    rating: float | None = None
    if row.get("supplier_rating") is not None:
        try:
            rating = float(row["supplier_rating"])
        except (TypeError, ValueError):
            logger.warning(
                "Skipping %s: unparseable supplier rating %r",
                pid,
                row["supplier_rating"],
            )
            return None
        if not math.isfinite(rating) or rating < 0:
            logger.warning("Skipping %s: invalid supplier rating %s", pid, rating)
            return None

    return new_product(
        product_id=pid,
        user_id=str(row["user_id"]),
        title=str(row["title"]),
        supplier_url=str(row["supplier_url"]),
        platform=str(row.get("platform", "")),
        price=price,
        supplier_rating=rating,
        features=[str(f) for f in row.get("features", [])],
        image_urls=[str(i) for i in row.get("image_urls", [])],
        baseline_risk=baseline,
        created_at=datetime.now(timezone.utc),
    )
