"""CLI entry point for the behavioral analytics engine."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

import click

from .core.config import Settings, load_settings


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _echo(result: Any) -> None:
    if hasattr(result, "to_dict"):
        result = result.to_dict()
    click.echo(json.dumps(result, indent=2, default=str))


@asynccontextmanager
async def _engine_scope(opts: dict[str, Any]) -> AsyncIterator[Any]:
    """Build an engine over a trades file (memory) or PostgreSQL."""
    from .core.entitlements import StaticEntitlementGate
    from .core.models import Trade
    from .market_data.finnhub import FinnhubClient
    from .services.engine import build_cache_backend, build_engine
    from .storage.memory import MemoryBehaviorRepository, MemoryTradeStore
    from .storage.postgres.connection import open_database
    from .storage.postgres.repos import SqlBehaviorRepository, SqlTradeStore

    settings: Settings = opts["settings"]
    gate = StaticEntitlementGate()
    provider = (
        FinnhubClient.from_config(settings.market_data)
        if settings.market_data.is_configured else None
    )
    if provider is not None:
        await provider.open()

    try:
        trades_path: str | None = opts["trades_path"]
        if trades_path:
            rows = json.loads(Path(trades_path).read_text())
            trade_store = MemoryTradeStore(Trade.model_validate(r) for r in rows)
            yield build_engine(
                settings,
                trade_store=trade_store,
                repo=MemoryBehaviorRepository(),
                gate=gate,
                provider=provider,
                cache_backend=build_cache_backend(settings),
            )
            return

        async with open_database(settings.postgres_url, use_null_pool=True) as db:
            async with db.session() as session:
                yield build_engine(
                    settings,
                    trade_store=SqlTradeStore(session),
                    repo=SqlBehaviorRepository(session),
                    gate=gate,
                    provider=provider,
                    cache_backend=build_cache_backend(settings, db.sessions),
                )
    finally:
        if provider is not None:
            await provider.close()


def _run(ctx: click.Context, fn: Any) -> None:
    import asyncio

    from .observability.logger import new_analysis_id

    async def runner() -> None:
        new_analysis_id()
        async with _engine_scope(ctx.obj) as engine:
            _echo(await fn(engine))

    asyncio.run(runner())


@click.group()
@click.option("--config", default=None, help="Config file path (TOML)")
@click.option(
    "--trades",
    "trades_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file of trades to analyse in memory instead of PostgreSQL",
)
@click.option("--log-level", default=None, help="Override log level")
@click.pass_context
def main(ctx: click.Context, config: str | None, trades_path: str | None, log_level: str | None) -> None:
    """Behavioral trading-pattern analytics."""
    from .observability.logger import setup_logging

    settings = load_settings(config)
    setup_logging(
        level=log_level or settings.observability.log_level,
        format=settings.observability.log_format,
    )
    ctx.obj = {"settings": settings, "trades_path": trades_path}


@main.command("analyze-revenge")
@click.argument("user_id")
@click.pass_context
def analyze_revenge(ctx: click.Context, user_id: str) -> None:
    """Rebuild revenge trading events from the full trade history."""
    _run(ctx, lambda engine: engine.revenge.analyze_history(user_id))


@main.command("analyze-overconfidence")
@click.argument("user_id")
@click.option("--start", default=None, help="Start date (ISO 8601)")
@click.option("--end", default=None, help="End date (ISO 8601)")
@click.pass_context
def analyze_overconfidence(ctx: click.Context, user_id: str, start: str | None, end: str | None) -> None:
    """Rebuild overconfidence events for a date range."""
    _run(ctx, lambda engine: engine.overconfidence.analyze_history(
        user_id, _parse_date(start), _parse_date(end),
    ))


@main.command("analyze-loss-aversion")
@click.argument("user_id")
@click.option("--start", default=None, help="Start date (ISO 8601)")
@click.option("--end", default=None, help="End date (ISO 8601)")
@click.pass_context
def analyze_loss_aversion(ctx: click.Context, user_id: str, start: str | None, end: str | None) -> None:
    """Run a loss aversion analysis and store the result."""
    _run(ctx, lambda engine: engine.loss_aversion.analyze(
        user_id, _parse_date(start), _parse_date(end),
    ))


@main.command("top-missed")
@click.argument("user_id")
@click.option("--limit", default=20, type=int, help="Number of trades to return")
@click.option("--start", default=None, help="Start date (ISO 8601)")
@click.option("--end", default=None, help="End date (ISO 8601)")
@click.option("--refresh", is_flag=True, help="Bypass the cached result")
@click.pass_context
def top_missed(
    ctx: click.Context,
    user_id: str,
    limit: int,
    start: str | None,
    end: str | None,
    refresh: bool,
) -> None:
    """Winning trades ranked by missed upside."""
    _run(ctx, lambda engine: engine.loss_aversion.top_missed_trades(
        user_id, limit, _parse_date(start), _parse_date(end), force_refresh=refresh,
    ))


@main.command("revenge-report")
@click.argument("user_id")
@click.option("--page", default=1, type=int)
@click.option("--limit", default=20, type=int)
@click.pass_context
def revenge_report(ctx: click.Context, user_id: str, page: int, limit: int) -> None:
    """Paginated revenge events with statistics."""
    _run(ctx, lambda engine: engine.behavioral.revenge_analysis(
        user_id, page=page, limit=limit,
    ))


@main.command("cache-sweep")
@click.pass_context
def cache_sweep(ctx: click.Context) -> None:
    """Delete expired cache entries once."""

    async def sweep(engine: Any) -> dict[str, int]:
        return {"removed": await engine.cache.sweep_expired()}

    _run(ctx, sweep)


@main.command("cache-stats")
@click.option("--user", "user_id", default=None, help="Limit to one user")
@click.pass_context
def cache_stats(ctx: click.Context, user_id: str | None) -> None:
    """Show cache entry counts."""
    _run(ctx, lambda engine: engine.cache.stats(user_id))
