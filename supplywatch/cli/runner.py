# supplywatch/cli/runner.py

"""Headless CLI commands: import, replay, rescore and inspection."""

import json
import logging
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from supplywatch.config.policy import EnginePolicy, load_policy
from supplywatch.config.settings import Settings
from supplywatch.errors import ConfigurationError, PersistenceUnavailable, ProductNotFound
from supplywatch.services.candidate_search import (
    CandidateSearch,
    HttpCandidateSearch,
    NullCandidateSearch,
)
from supplywatch.services.image_hasher import HttpImageFetcher
from supplywatch.services.notifier import OperatorNotifier
from supplywatch.services.observation_source import FeedObservationSource, load_feed
from supplywatch.services.pipeline import MonitoringPipeline, PipelineOutcome
from supplywatch.services.replacement_matcher import ReplacementMatcher
from supplywatch.services.scheduler import MonitorScheduler
from supplywatch.storage.product_store import ProductStore

logger = logging.getLogger("supplywatch.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)

_STATUS_STYLES = {
    "ACTIVE": "green",
    "PRICE_CHANGED": "yellow",
    "OUT_OF_STOCK": "magenta",
    "REMOVED": "red",
}


def build_pipeline(
    store: ProductStore,
    policy: EnginePolicy | None = None,
    search: CandidateSearch | None = None,
) -> MonitoringPipeline:
    """Wire a pipeline from settings.

    Uses the HTTP candidate search when ``CANDIDATE_SEARCH_URL`` is set;
    without one every heal attempt ends in a review flag.
    """
    policy = policy or load_policy()
    if search is None:
        search = (
            HttpCandidateSearch() if Settings.CANDIDATE_SEARCH_URL
            else NullCandidateSearch()
        )
    matcher = ReplacementMatcher(
        search,
        policy.match,
        image_fetcher=HttpImageFetcher(hash_size=policy.match.hash_size),
    )
    return MonitoringPipeline(store, matcher, policy, OperatorNotifier())


def _open_store(db_path: str | None) -> ProductStore | None:
    try:
        return ProductStore(Path(db_path) if db_path else None)
    except PersistenceUnavailable as exc:
        logger.critical("Cannot open product store: %s", exc)
        _err.print(f"[red]Cannot open product store: {exc}[/red]")
        return None


def _risk_style(score: float) -> str:
    if score >= Settings.HIGH_RISK_THRESHOLD:
        return "bold red"
    if score >= Settings.HEAL_RISK_THRESHOLD:
        return "yellow"
    return "green"


def _print_outcomes(title: str, outcomes: list[PipelineOutcome]) -> None:
    """Render a Rich table of pipeline outcomes to stdout."""
    table = Table(title=title, show_lines=False, title_style="bold cyan")
    table.add_column("Product", style="bold")
    table.add_column("Observed", style="dim")
    table.add_column("Transition")
    table.add_column("Risk", justify="right")
    table.add_column("Action", style="magenta")
    table.add_column("Notes", style="dim")

    for o in outcomes:
        if o.transition is not None and o.transition.changed:
            transition = (
                f"{o.transition.from_status.value} → {o.transition.to_status.value}"
            )
        else:
            transition = "—"
        notes = o.rejected or o.error
        if o.duplicate:
            notes = "duplicate"
        elif o.healed:
            notes = "healed"
        elif o.flagged:
            notes = notes or "flagged for review"
        risk = (
            f"[{_risk_style(o.risk_score)}]{o.risk_score:.2f}[/]"
            if o.risk_score is not None
            else "—"
        )
        table.add_row(
            o.product_id,
            o.observed_at.isoformat() if o.observed_at else "—",
            transition,
            risk,
            o.action.value if o.action else "—",
            notes,
        )

    Console().print(table)


def run_import(filepath: str, db_path: str | None = None) -> int:
    """Import a JSON product catalogue into the store."""
    store = _open_store(db_path)
    if store is None:
        return 1
    path = Path(filepath)
    if not path.exists():
        _err.print(f"[red]File not found: {path}[/red]")
        store.close()
        return 1

    _err.print(f"[bold]Importing products from {path}...[/bold]")
    created = store.import_products(path)
    store.close()
    _err.print(f"[green]✓ Imported {created:,} products[/green]")
    return 0


async def run_replay(
    filepath: str,
    db_path: str | None = None,
    workers: int | None = None,
) -> int:
    """Push a recorded observation feed through the worker pool."""
    path = Path(filepath)
    if not path.exists():
        _err.print(f"[red]File not found: {path}[/red]")
        return 1
    try:
        observations = load_feed(path)
    except (OSError, ValueError) as exc:
        _err.print(f"[red]Cannot read feed: {exc}[/red]")
        return 1
    store = _open_store(db_path)
    if store is None:
        return 1

    try:
        pipeline = build_pipeline(store)
    except ConfigurationError as exc:
        _err.print(f"[red]Invalid configuration: {exc}[/red]")
        store.close()
        return 1

    scheduler = MonitorScheduler(
        pipeline,
        FeedObservationSource([]),
        worker_count=workers,
        periodic=False,
    )
    _err.print(
        f"[bold]Replaying {len(observations):,} observations[/bold] "
        f"[dim]workers={scheduler.worker_count}[/dim]"
    )
    async with scheduler:
        for obs in sorted(observations, key=lambda o: o.observed_at):
            await scheduler.submit_observation(obs)
        await scheduler.join()

    store.close()
    outcomes = list(scheduler.outcomes)
    _print_outcomes("Replay Results", outcomes)

    failed = sum(scheduler.failures.values())
    rejected = sum(1 for o in outcomes if o.rejected)
    _err.print(
        f"[green]✓ {sum(1 for o in outcomes if o.ingested)} applied[/green], "
        f"{sum(1 for o in outcomes if o.duplicate)} duplicate, "
        f"{rejected} rejected, {failed} failed"
    )
    return 1 if failed else 0


async def run_rescore(db_path: str | None = None, user_id: str | None = None) -> int:
    """Run one rescoring and policy pass over every product."""
    store = _open_store(db_path)
    if store is None:
        return 1
    try:
        pipeline = build_pipeline(store)
    except ConfigurationError as exc:
        _err.print(f"[red]Invalid configuration: {exc}[/red]")
        store.close()
        return 1

    scheduler = MonitorScheduler(pipeline, FeedObservationSource([]), periodic=False)
    async with scheduler:
        queued = await scheduler.run_rescore_cycle(user_id)
        _err.print(f"[bold]Rescoring {queued:,} products...[/bold]")
        await scheduler.join()

    store.close()
    _print_outcomes("Rescore Results", list(scheduler.outcomes))
    return 1 if sum(scheduler.failures.values()) else 0


def _plain(value: Any) -> Any:
    """Unwrap read-only projection mappings for JSON output."""
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_plain(v) for v in value]
    return value


def show_product(
    product_id: str,
    output_format: str = "table",
    db_path: str | None = None,
) -> int:
    """Print the dashboard projection of one product."""
    store = _open_store(db_path)
    if store is None:
        return 1
    try:
        view = store.projection(product_id)
    except ProductNotFound:
        _err.print(f"[red]Unknown product: {product_id}[/red]")
        return 1
    finally:
        store.close()

    if output_format == "json":
        json.dump(_plain(view), sys.stdout, ensure_ascii=False, indent=2)
        sys.stdout.write("\n")
        return 0

    supplier = view["monitored_supplier"]
    insight = view["ai_insights"]
    summary = Table(title=f"Product {product_id}", show_header=False, title_style="bold cyan")
    summary.add_column("Field", style="bold")
    summary.add_column("Value")
    status = supplier["status"]
    summary.add_row("Status", f"[{_STATUS_STYLES.get(status, 'white')}]{status}[/]")
    summary.add_row("Supplier", supplier["url"])
    summary.add_row("Price", supplier["current_price"] or "—")
    summary.add_row("Previous price", supplier["previous_price"] or "—")
    summary.add_row("In stock", "yes" if supplier["in_stock"] else "no")
    score = insight["risk_score"]
    summary.add_row("Risk score", f"[{_risk_style(score)}]{score:.2f}[/]")
    summary.add_row("Predicted removal", insight["predicted_removal_date"] or "—")
    if view["needs_review"]:
        summary.add_row("Review", f"[red]{view['review_reason']}[/red]")

    log = Table(title="Automation Log", show_lines=True, title_style="bold cyan")
    log.add_column("#", style="dim", width=4)
    log.add_column("When", style="dim")
    log.add_column("Action", style="magenta")
    log.add_column("Old")
    log.add_column("New")
    log.add_column("Details", style="dim")
    for idx, entry in enumerate(view["automation_log"], 1):
        log.add_row(
            str(idx),
            entry["timestamp"],
            entry["action"],
            entry["old_value"] or "—",
            entry["new_value"] or "—",
            entry["details"],
        )

    console = Console()
    console.print(summary)
    console.print(log)
    return 0


def list_products(user_id: str | None = None, db_path: str | None = None) -> int:
    """Print a Rich table of stored products."""
    store = _open_store(db_path)
    if store is None:
        return 1
    try:
        products = [store.load(pid) for pid in store.list_ids(user_id)]
    except PersistenceUnavailable as exc:
        _err.print(f"[red]Store error: {exc}[/red]")
        return 1
    finally:
        store.close()

    if not products:
        _err.print("[yellow]No products found.[/yellow]")
        return 0

    table = Table(title="Monitored Products", show_lines=False, title_style="bold cyan")
    table.add_column("Product", style="bold")
    table.add_column("User", style="dim")
    table.add_column("Title", max_width=40)
    table.add_column("Status")
    table.add_column("Price", justify="right", style="green")
    table.add_column("Risk", justify="right")
    table.add_column("Log", justify="right", style="dim")

    for p in products:
        status = p.status.value
        price = p.supplier.current_price
        table.add_row(
            p.product_id,
            p.user_id,
            p.title[:40],
            f"[{_STATUS_STYLES[status]}]{status}[/]",
            f"{price:,.2f}" if price is not None else "N/A",
            f"[{_risk_style(p.insight.risk_score)}]{p.insight.risk_score:.2f}[/]",
            str(len(p.automation_log)),
        )

    Console().print(table)
    return 0
