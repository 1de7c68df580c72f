"""
Cache Commands - Inspect and maintain the durable listing cache.

Each invocation is a fresh process, so only the durable tier carries data
between commands. Values written here are always persistent.

Usage:
    nyumba cache set listings:mbeya '["p1", "p2"]' --ttl-ms 60000
    nyumba cache get listings:mbeya
    nyumba cache stats --format json
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import click

from nyumba.cache import MISSING, MultiLevelCache, MultiLevelCacheConfig, build_cache
from nyumba.cache.exceptions import CacheConfigError

logger = logging.getLogger("nyumba.cli.cache")


def open_cache(ctx) -> MultiLevelCache:
    """Build a cache from the merged CLI configuration."""
    try:
        config = MultiLevelCacheConfig.from_dict(ctx.config.get("cache", {}))
    except CacheConfigError as e:
        raise click.UsageError(f"Invalid cache configuration: {e}")
    logger.debug(f"Opening cache with durable store at {config.durable_path}")
    return build_cache(config)


def parse_value(raw: str) -> Any:
    """Interpret a command-line value as JSON, falling back to the raw string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@click.group("cache")
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Durable cache directory (overrides configuration).",
)
@click.pass_obj
def cache(ctx, cache_dir: Optional[Path]):
    """
    Inspect and maintain the durable listing cache.

    \b
    Examples:
        nyumba cache set listings:mbeya '["p1"]' --ttl-ms 60000
        nyumba cache get listings:mbeya
        nyumba cache cleanup
    """
    if cache_dir is not None:
        ctx.config.setdefault("cache", {})["durable_path"] = str(cache_dir)


@cache.command("get")
@click.argument("key")
@click.pass_obj
def get_command(ctx, key: str):
    """Print the cached value for KEY as JSON."""
    value = open_cache(ctx).get(key, MISSING)
    if value is MISSING:
        click.echo(f"Not found: {key}", err=True)
        raise SystemExit(1)
    click.echo(json.dumps(value))


@cache.command("set")
@click.argument("key")
@click.argument("value")
@click.option(
    "--ttl-ms",
    type=int,
    default=None,
    help="Time to live in milliseconds (default from configuration).",
)
@click.pass_obj
def set_command(ctx, key: str, value: str, ttl_ms: Optional[int]):
    """
    Store VALUE under KEY in the durable cache.

    VALUE is parsed as JSON when possible, otherwise stored as a string.
    """
    store = open_cache(ctx)
    try:
        store.set(key, parse_value(value), ttl_ms=ttl_ms, persistent=True)
    except CacheConfigError as e:
        raise click.BadParameter(str(e), param_hint="--ttl-ms")
    click.echo(f"Stored {key}")


@cache.command("delete")
@click.argument("key")
@click.pass_obj
def delete_command(ctx, key: str):
    """Remove KEY from every tier."""
    open_cache(ctx).delete(key)
    click.echo(f"Deleted {key}")


@cache.command("clear")
@click.confirmation_option(prompt="Remove every cached entry?")
@click.pass_obj
def clear_command(ctx):
    """Remove every entry owned by the cache."""
    open_cache(ctx).clear()
    click.echo("Cache cleared")


@cache.command("cleanup")
@click.pass_obj
def cleanup_command(ctx):
    """Remove expired and corrupt entries."""
    removed = open_cache(ctx).cleanup()
    click.echo(f"Removed {removed} expired entries")


@cache.command("stats")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    help="Output format (default: text).",
)
@click.pass_obj
def stats_command(ctx, output_format: str):
    """Show entry counts for each tier."""
    stats = open_cache(ctx).get_stats()

    if output_format == "json":
        click.echo(json.dumps(stats.to_dict(), indent=2))
        return

    click.echo(f"\n{'=' * 40}")
    click.echo("  Cache Statistics")
    click.echo(f"{'=' * 40}")
    click.echo(f"  L1 entries: {stats.l1_size}/{stats.l1_max_size}")
    click.echo(f"  L2 entries: {stats.l2_size}")
    click.echo(f"  L3 entries: {stats.l3_size}")
    click.echo(f"  Hit rate:   {stats.hit_rate:.1%}")
    click.echo()
