"""
Search Commands - Query a listings file with the trie and spatial index.

Listings are read from a JSON or YAML file holding either a list of
listing objects or a mapping with a ``listings`` list. Each listing needs an
``id``; text search uses ``title``, ``city`` and ``amenities``; spatial search
uses ``latitude``/``longitude`` (or ``lat``/``lng``), top-level or under
``location``.

Usage:
    nyumba search suggest mod --listings listings.json
    nyumba search nearby -6.7924 39.2083 --radius-km 2 --listings listings.yaml
"""

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
import yaml

from nyumba.cache.exceptions import CacheConfigError
from nyumba.search import SearchTrie, SpatialIndex, filter_by_distance

logger = logging.getLogger("nyumba.cli.search")

listings_option = click.option(
    "--listings",
    "-l",
    "listings_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="JSON or YAML file of listings.",
)

format_option = click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    help="Output format (default: text).",
)


def load_listings(path: Path) -> List[Dict[str, Any]]:
    """Read listings from a JSON or YAML file."""
    try:
        with open(path) as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise click.ClickException(f"Could not parse {path}: {e}")

    if isinstance(data, dict):
        data = data.get("listings")
    if not isinstance(data, list):
        raise click.ClickException(f"{path} does not contain a list of listings")

    listings = [item for item in data if isinstance(item, dict) and "id" in item]
    skipped = len(data) - len(listings)
    if skipped:
        logger.warning(f"Skipped {skipped} entries without an id in {path}")
    logger.debug(f"Loaded {len(listings)} listings from {path}")
    return listings


def listing_coordinates(listing: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """(lat, lng) of a listing, or None when it has no usable location."""
    sources = [listing]
    if isinstance(listing.get("location"), dict):
        sources.append(listing["location"])

    for source in sources:
        lat = source.get("latitude", source.get("lat"))
        lng = source.get("longitude", source.get("lng"))
        if lat is None or lng is None:
            continue
        try:
            coords = float(lat), float(lng)
        except (TypeError, ValueError):
            return None
        if not all(math.isfinite(c) for c in coords):
            return None
        return coords
    return None


def build_trie(listings: List[Dict[str, Any]]) -> SearchTrie:
    trie = SearchTrie()
    for listing in listings:
        trie.add_property(listing)
    return trie


def emit(result: Any, output_format: str, lines: List[str]):
    if output_format == "json":
        click.echo(json.dumps(result, indent=2))
    elif lines:
        for line in lines:
            click.echo(line)
    else:
        click.echo("No matches")


@click.group("search")
def search():
    """
    Query a listings file with the search structures.

    \b
    Examples:
        nyumba search suggest mod --listings listings.json
        nyumba search find park --listings listings.json
        nyumba search nearby -6.79 39.21 --radius-km 2 --exact --listings listings.json
    """
    pass


@search.command("suggest")
@click.argument("prefix")
@listings_option
@click.option(
    "--limit",
    "-n",
    type=int,
    default=None,
    help="Maximum suggestions (default from configuration).",
)
@format_option
@click.pass_obj
def suggest(ctx, prefix: str, listings_path: Path, limit: Optional[int], output_format: str):
    """Autocomplete PREFIX against listing titles, cities and amenities."""
    if limit is None:
        limit = int(ctx.config.get("search", {}).get("suggestion_limit", 10))

    trie = build_trie(load_listings(listings_path))
    suggestions = trie.get_suggestions(prefix, limit=limit)
    emit(suggestions, output_format, suggestions)


@search.command("find")
@click.argument("prefix")
@listings_option
@format_option
def find(prefix: str, listings_path: Path, output_format: str):
    """List listings with a word starting with PREFIX."""
    listings = load_listings(listings_path)
    titles = {str(item["id"]): item.get("title", "") for item in listings}

    ids = sorted(build_trie(listings).search(prefix))
    emit(ids, output_format, [f"{i}  {titles.get(i, '')}".rstrip() for i in ids])


@search.command("nearby", context_settings={"ignore_unknown_options": True})
@click.argument("lat", type=float)
@click.argument("lng", type=float)
@listings_option
@click.option(
    "--radius-km",
    "-r",
    type=float,
    default=1.0,
    help="Search radius in kilometres (default: 1).",
)
@click.option(
    "--exact",
    is_flag=True,
    default=False,
    help="Drop grid candidates farther than the radius.",
)
@format_option
@click.pass_obj
def nearby(
    ctx,
    lat: float,
    lng: float,
    listings_path: Path,
    radius_km: float,
    exact: bool,
    output_format: str,
):
    """
    List listings near LAT LNG.

    Without --exact the result is every listing in the grid cells covering
    the radius, which can include listings somewhat outside it.
    """
    grid_size = ctx.config.get("search", {}).get("grid_size", 0.01)
    try:
        index = SpatialIndex(grid_size=float(grid_size))
    except CacheConfigError as e:
        raise click.UsageError(f"Invalid search configuration: {e}")

    locations: Dict[str, Tuple[float, float]] = {}
    for listing in load_listings(listings_path):
        coords = listing_coordinates(listing)
        if coords is None:
            continue
        property_id = str(listing["id"])
        if property_id in locations:
            logger.warning(f"Skipping duplicate listing id {property_id} in {listings_path}")
            continue
        locations[property_id] = coords
        index.add_property(property_id, *coords)

    try:
        ids = index.find_nearby(lat, lng, radius_km)
    except CacheConfigError as e:
        raise click.UsageError(str(e))
    if exact:
        ids = filter_by_distance(lat, lng, radius_km, locations, candidates=ids)

    result = sorted(ids)
    emit(result, output_format, result)
