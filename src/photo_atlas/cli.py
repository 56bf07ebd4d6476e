"""CLI interface for photo-atlas."""

import asyncio
import json
import logging
import sys
from datetime import datetime, time
from typing import Iterable, List, Optional

import click

from . import __version__
from .catalog.catalog_store import CatalogStore
from .catalog.config import TagCategory
from .catalog.errors import CatalogError
from .catalog.extractor import MetadataExtractor
from .catalog.geocode import NominatimFetcher, ReverseGeocoder
from .catalog.ingest import Ingestor
from .catalog.locator import ProximityLocator
from .catalog.matcher import EventMatcher
from .catalog.models import Asset, EventExtension, ProgressEvent, Tag, parse_iso_bound
from .config import CONFIG_FILE_PATH, AtlasConfig, get_default_config

logger = logging.getLogger(__name__)

db_path_option = click.option("--db-path", default=None, help="Catalog database file (default from config)")
output_format_option = click.option(
    "--output-format", type=click.Choice(["text", "json"]), default="text", help="Output format"
)


def _config(ctx: click.Context) -> AtlasConfig:
    if "config" not in ctx.obj:
        ctx.obj["config"] = get_default_config()
    return ctx.obj["config"]


def _open_store(ctx: click.Context, db_path: Optional[str]) -> CatalogStore:
    config = _config(ctx)
    if db_path is None:
        config.ensure_db_dir()
        db_path = config.db_path
    return CatalogStore(db_path)


def _parse_when(text: str, end_of_day: bool = False) -> datetime:
    """Parse an ISO date or timestamp; a bare end date covers the whole day."""
    try:
        value = parse_iso_bound(text)
    except ValueError:
        raise click.BadParameter(f"Not an ISO-8601 date or timestamp: {text}")
    if end_of_day and len(text.strip()) == 10:
        value = datetime.combine(value.date(), time(23, 59, 59))
    return value


def _echo_assets(assets: List[Asset], output_format: str) -> None:
    if output_format == "json":
        click.echo(json.dumps([asset.to_dict() for asset in assets], indent=2, default=str))
        return
    if not assets:
        click.echo("No results found.")
        return
    click.echo(f"Found {len(assets)} results:")
    for i, asset in enumerate(assets, 1):
        click.echo(f"\n{i}. {asset.relative_path} ({asset.kind.value})")
        if asset.capture_time:
            click.echo(f"   Taken: {asset.capture_time.isoformat(sep=' ')}")
        if asset.has_location:
            source = f" [{asset.location_source.value}]" if asset.location_source else ""
            click.echo(f"   Location: {asset.latitude:.6f}, {asset.longitude:.6f}{source}")
        if asset.note:
            click.echo(f"   Note: {asset.note}")


def _echo_tag_tree(roots: Iterable[Tag]) -> None:
    stack = [(tag, 0) for tag in reversed(list(roots))]
    while stack:
        tag, depth = stack.pop()
        details = ""
        if tag.landmark is not None and tag.landmark.has_coordinates:
            details = f" @ {tag.landmark.latitude:.5f},{tag.landmark.longitude:.5f} r={tag.landmark.radius:g}m"
        elif tag.event is not None and tag.event.has_window:
            details = f" {tag.event.start_time.isoformat(sep=' ')} ~ {tag.event.end_time.isoformat(sep=' ')}"
        click.echo(f"{'  ' * depth}[{tag.id}] {tag.name} ({tag.category.value}){details}")
        stack.extend((child, depth + 1) for child in reversed(tag.children))


def _fail(ctx: click.Context, error: Exception) -> None:
    logger.error(f"Command failed: {error}", exc_info=ctx.obj.get("debug"))
    click.echo(f"Error: {error}", err=True)
    ctx.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="photo-atlas")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--debug", is_flag=True, help="Enable debug mode.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """photo-atlas - catalog photos and videos by time, place and tag."""
    # Ensure ctx.obj exists
    if ctx.obj is None:
        ctx.obj = {}

    # Configure logging
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug

    if debug:
        logger.debug("Debug mode enabled")
    elif verbose:
        logger.info("Verbose mode enabled")


@cli.command()
@click.pass_context
def info(ctx: click.Context) -> None:
    """Display system and package information."""
    import platform
    config = _config(ctx)
    click.echo(f"photo-atlas v{__version__}")
    click.echo(f"Python {platform.python_version()} on {platform.system()} {platform.release()}")
    click.echo(f"Config file: {CONFIG_FILE_PATH}")
    click.echo(f"Database: {config.db_path}")

    if ctx.obj.get("verbose"):
        for key, value in config.to_dict().items():
            click.echo(f"  {key}: {value}")


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--rescan", is_flag=True, help="Visit directories that were already scanned")
@click.option("--workers", type=int, default=None, help="Parallel metadata readers")
@db_path_option
@click.pass_context
def scan(ctx, directory, rescan, workers, db_path):
    """Scan DIRECTORY and add new photos and videos to the catalog."""
    config = _config(ctx)
    store = _open_store(ctx, db_path)
    ingestor = Ingestor(
        store,
        extractor=MetadataExtractor(timeout=config.extraction_timeout),
        locator=ProximityLocator(max_delta=config.proximity_window),
        max_workers=workers or config.max_workers,
        batch_size=config.batch_size,
    )

    def report(event: ProgressEvent) -> None:
        if not ctx.obj.get("verbose"):
            return
        if event.phase == "directory":
            click.echo(f"  Visited {event.count} directories")
        else:
            click.echo(f"  {event.phase}: {event.current}/{event.total}")

    click.echo(f"Scanning directory: {directory}")
    click.echo(f"Database: {store.db_path}")
    try:
        result = ingestor.scan(directory, skip_scanned=not rescan, progress=report)
    except CatalogError as e:
        _fail(ctx, e)
        return

    if result.skipped_directory:
        click.echo("Directory already scanned; use --rescan to scan it again.")
        return
    click.echo(f"Photos: {result.total_photos} found, {result.new_photos} new")
    click.echo(f"Videos: {result.total_videos} found, {result.new_videos} new")
    click.echo(f"Skipped (already cataloged): {result.skipped_files}")
    click.echo(f"Inferred locations: {result.inferred_locations}")
    click.echo(f"Auto-tag assignments: {result.tag_assignments}")


@cli.group()
def query():
    """Query cataloged assets."""
    pass


@query.command("range")
@click.argument("start")
@click.argument("end")
@db_path_option
@output_format_option
@click.pass_context
def query_range(ctx, start, end, db_path, output_format):
    """Assets captured between START and END (ISO-8601)."""
    store = _open_store(ctx, db_path)
    assets = store.query_by_time_range(_parse_when(start), _parse_when(end, end_of_day=True))
    _echo_assets(assets, output_format)


@query.command("area")
@click.option("--north", type=float, required=True)
@click.option("--south", type=float, required=True)
@click.option("--east", type=float, required=True)
@click.option("--west", type=float, required=True)
@db_path_option
@output_format_option
@click.pass_context
def query_area(ctx, north, south, east, west, db_path, output_format):
    """Assets inside a bounding box."""
    store = _open_store(ctx, db_path)
    _echo_assets(store.query_by_area(north, south, east, west), output_format)


@query.command("dir")
@click.argument("directory", default="")
@db_path_option
@output_format_option
@click.pass_context
def query_dir(ctx, directory, db_path, output_format):
    """Assets directly inside DIRECTORY (relative to the library root)."""
    store = _open_store(ctx, db_path)
    _echo_assets(store.query_by_directory(directory.strip("/")), output_format)


@query.command("tags")
@click.argument("tag_ids", nargs=-1, type=int, required=True)
@db_path_option
@output_format_option
@click.pass_context
def query_tags(ctx, tag_ids, db_path, output_format):
    """Assets carrying any of TAG_IDS."""
    store = _open_store(ctx, db_path)
    _echo_assets(store.query_by_tags(tag_ids), output_format)


@query.command("lookup")
@click.argument("relative_path")
@db_path_option
@output_format_option
@click.pass_context
def query_lookup(ctx, relative_path, db_path, output_format):
    """Show one asset and its tags by RELATIVE_PATH."""
    store = _open_store(ctx, db_path)
    directory, _, filename = relative_path.strip("/").rpartition("/")
    asset = store.get_asset(directory, filename)
    if asset is None:
        click.echo(f"Not in catalog: {relative_path}", err=True)
        ctx.exit(1)
        return
    tags = store.get_asset_tags(asset.id)
    if output_format == "json":
        data = asset.to_dict()
        data["tags"] = [{"id": tag.id, "name": tag.name, "category": tag.category.value} for tag in tags]
        click.echo(json.dumps(data, indent=2, default=str))
        return
    _echo_assets([asset], output_format)
    if tags:
        click.echo(f"   Tags: {', '.join(tag.name for tag in tags)}")


@cli.group()
def tags():
    """Manage the tag tree."""
    pass


@tags.command("list")
@click.option("--category", default=None, help="face, event, landmark or common")
@db_path_option
@output_format_option
@click.pass_context
def tags_list(ctx, category, db_path, output_format):
    """Show the tag tree."""
    store = _open_store(ctx, db_path)
    try:
        roots = store.get_tag_tree(category)
    except ValueError as e:
        _fail(ctx, e)
        return
    if output_format == "json":
        click.echo(json.dumps([tag.to_dict() for tag in roots], indent=2, default=str))
    elif not roots:
        click.echo("No tags.")
    else:
        _echo_tag_tree(roots)


@tags.command("add")
@click.argument("name")
@click.option("--category", default="common", help="face, event, landmark or common")
@click.option("--parent", "parent_id", type=int, default=None, help="Parent tag id")
@click.option("--note", default="", help="Free-form note")
@click.option("--color", default=None, help="Display colour, e.g. #3498db")
@db_path_option
@click.pass_context
def tags_add(ctx, name, category, parent_id, note, color, db_path):
    """Create a tag called NAME."""
    store = _open_store(ctx, db_path)
    kwargs = {"color": color} if color else {}
    try:
        tag_id = store.create_tag(name, category, parent_id=parent_id, note=note, **kwargs)
    except (CatalogError, ValueError) as e:
        _fail(ctx, e)
        return
    click.echo(f"Created tag {tag_id}: {name}")


@tags.command("landmark")
@click.argument("tag_id", type=int)
@click.argument("latitude", type=float)
@click.argument("longitude", type=float)
@click.argument("radius", type=float)
@click.option("--address", default=None, help="Postal address")
@db_path_option
@click.pass_context
def tags_landmark(ctx, tag_id, latitude, longitude, radius, address, db_path):
    """Set the geofence of landmark TAG_ID (RADIUS in meters)."""
    store = _open_store(ctx, db_path)
    try:
        store.set_landmark_geofence(tag_id, latitude, longitude, radius, address=address)
    except CatalogError as e:
        _fail(ctx, e)
        return
    click.echo(f"Landmark {tag_id} set to {latitude}, {longitude} (r={radius:g}m)")


@tags.command("event")
@click.argument("tag_id", type=int)
@click.option("--start", default=None, help="Window start (ISO-8601)")
@click.option("--end", default=None, help="Window end (ISO-8601; a bare date covers the day)")
@click.option("--landmark", "landmark_id", type=int, default=None, help="Landmark tag id")
@db_path_option
@click.pass_context
def tags_event(ctx, tag_id, start, end, landmark_id, db_path):
    """Set the time window and landmark of event TAG_ID."""
    store = _open_store(ctx, db_path)
    try:
        if start is not None or end is not None:
            # A bound left off the command line keeps its stored value
            tag = store.get_tag(tag_id)
            current = tag.event if tag is not None and tag.event is not None else EventExtension()
            store.set_event_window(
                tag_id,
                _parse_when(start) if start else current.start_time,
                _parse_when(end, end_of_day=True) if end else current.end_time,
            )
        if landmark_id is not None:
            store.set_event_landmark(tag_id, landmark_id)
    except CatalogError as e:
        _fail(ctx, e)
        return
    click.echo(f"Event {tag_id} updated")


@tags.command("move")
@click.argument("tag_id", type=int)
@click.option("--parent", "parent_id", type=int, default=None, help="New parent id (omit for a root)")
@db_path_option
@click.pass_context
def tags_move(ctx, tag_id, parent_id, db_path):
    """Move TAG_ID under another tag."""
    store = _open_store(ctx, db_path)
    try:
        store.move_tag(tag_id, parent_id)
    except CatalogError as e:
        _fail(ctx, e)
        return
    click.echo(f"Moved tag {tag_id} under {parent_id if parent_id is not None else 'the root'}")


@tags.command("delete")
@click.argument("tag_id", type=int)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@db_path_option
@click.pass_context
def tags_delete(ctx, tag_id, yes, db_path):
    """Delete TAG_ID together with all of its descendants."""
    store = _open_store(ctx, db_path)
    if not yes:
        click.confirm(f"Delete tag {tag_id} and all of its descendants?", abort=True)
    try:
        removed = store.delete_tag(tag_id)
    except CatalogError as e:
        _fail(ctx, e)
        return
    click.echo(f"Deleted {removed} tags")


@tags.command("match")
@click.argument("when")
@click.argument("latitude", type=float)
@click.argument("longitude", type=float)
@db_path_option
@click.pass_context
def tags_match(ctx, when, latitude, longitude, db_path):
    """Show which event and landmark tags apply at WHEN and a location."""
    store = _open_store(ctx, db_path)
    tag_ids = EventMatcher(store).match(_parse_when(when), latitude, longitude)
    if not tag_ids:
        click.echo("No matching tags.")
        return
    for tag_id in tag_ids:
        tag = store.get_tag(tag_id)
        click.echo(f"[{tag_id}] {tag.name} ({tag.category.value})")


@cli.command()
@db_path_option
@click.pass_context
def stats(ctx, db_path):
    """Show catalog statistics."""
    store = _open_store(ctx, db_path)
    stats = store.get_stats()

    click.echo("Catalog Statistics:")
    click.echo(f"  Database file: {store.db_path}")
    click.echo(f"  Library root: {store.library_root or '(not scanned yet)'}")
    click.echo(f"  Total photos: {stats.get('total_photos', 0)}")
    click.echo(f"  Total videos: {stats.get('total_videos', 0)}")
    click.echo(f"  Geotagged: {stats.get('geotagged', 0)} ({stats.get('inferred_locations', 0)} inferred)")
    click.echo(f"  Directories: {stats.get('directories', 0)}")
    click.echo(f"  Tags: {stats.get('tags', 0)}")

    if ctx.obj.get("verbose"):
        for category in TagCategory:
            click.echo(f"    {category.value}: {len(store.list_tags(category))}")
        click.echo(f"  Tag assignments: {stats.get('assignments', 0)}")


@cli.command()
@click.argument("latitude", type=float)
@click.argument("longitude", type=float)
@click.pass_context
def geocode(ctx, latitude, longitude):
    """Look up the place name of a coordinate."""
    config = _config(ctx)
    geocoder = ReverseGeocoder(
        NominatimFetcher(user_agent=config.geocode_user_agent, language=config.geocode_language),
        min_interval=config.geocode_interval,
        backoff=config.geocode_backoff,
    )
    click.echo(asyncio.run(geocoder.get_place_name(latitude, longitude)))


def main() -> None:
    """Entry point for the CLI."""
    try:
        cli(obj={})
    except Exception as e:
        click.echo(f"Fatal error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
