"""Command-line interface for maintaining the local feed cache."""

import asyncio
import logging
import sys
from typing import Optional

import typer
from typing_extensions import Annotated

from feed_cache.config.settings import settings
from feed_cache.core.background import BackgroundTaskRunner
from feed_cache.core.hot_tags import REACHES, TIMEFRAMES, HotTagsService
from feed_cache.core.post_streams import PostStreamService
from feed_cache.core.user_streams import USER_STREAM_SOURCES, UserStreamService
from feed_cache.remote.client import RemoteIndexClient
from feed_cache.storage.cache_store import CacheStore
from feed_cache.utils.logging_utils import setup_logging

app = typer.Typer(help="Feed cache - local cache and sync layer for the remote index")

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    setup_logging(debug=verbose or settings.DEBUG)


def is_user_stream(stream_id: str) -> bool:
    _, _, source = stream_id.rpartition(":")
    return source in USER_STREAM_SOURCES and stream_id.count(":") == 1


async def _init_db(database_url: Optional[str]) -> None:
    async with CacheStore(database_url) as store:
        logger.info(f"Cache tables ready ({len(store.tables)} tables at {store.database_url})")


async def _clear(database_url: Optional[str]) -> None:
    async with CacheStore(database_url) as store:
        await store.clear_all()


async def _warm(stream_id: str, viewer_id: Optional[str], limit: int, database_url: Optional[str]) -> int:
    background = BackgroundTaskRunner("cli")
    async with CacheStore(database_url) as store, RemoteIndexClient() as client:
        try:
            if is_user_stream(stream_id):
                page = await UserStreamService(store, client, background).get_or_fetch_stream_slice(
                    stream_id, viewer_id=viewer_id, limit=limit
                )
                count = len(page.users) if page else 0
            else:
                page = await PostStreamService(store, client, background).get_or_fetch_slice(
                    stream_id, viewer_id=viewer_id, limit=limit
                )
                count = len(page.posts) if page else 0
            await background.drain()
        finally:
            await background.close()
    return count


async def _hot_tags(timeframe: str, reach: str, user_id: Optional[str], limit: int,
                    database_url: Optional[str]) -> list:
    background = BackgroundTaskRunner("cli")
    async with CacheStore(database_url) as store, RemoteIndexClient() as client:
        try:
            tags = await HotTagsService(store, client, background).get_or_fetch(
                timeframe=timeframe, reach=reach, user_id=user_id, limit=limit
            )
            await background.drain()
        finally:
            await background.close()
    return tags


@app.command("init-db")
def init_db(
    database_url: Annotated[Optional[str], typer.Option("--database-url", help="SQLAlchemy async URL (overrides settings)")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose output")] = False,
) -> None:
    """Create every cache table."""
    _configure_logging(verbose)
    asyncio.run(_init_db(database_url))
    typer.echo("Cache tables created.")


@app.command()
def clear(
    database_url: Annotated[Optional[str], typer.Option("--database-url", help="SQLAlchemy async URL (overrides settings)")] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose output")] = False,
) -> None:
    """Empty every cache table (same as a logout reset)."""
    _configure_logging(verbose)
    if not yes and not typer.confirm("Remove all cached data?"):
        raise typer.Abort()
    asyncio.run(_clear(database_url))
    typer.echo("Cache cleared.")


@app.command()
def warm(
    stream_id: Annotated[str, typer.Argument(help="Stream id, e.g. 'timeline:all:all' or '<user_id>:followers'")],
    viewer: Annotated[Optional[str], typer.Option("--viewer", help="Viewer user id")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Page size")] = settings.STREAM_PAGE_LIMIT,
    database_url: Annotated[Optional[str], typer.Option("--database-url", help="SQLAlchemy async URL (overrides settings)")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose output")] = False,
) -> None:
    """Load the first page of a stream into the cache."""
    _configure_logging(verbose)
    try:
        count = asyncio.run(_warm(stream_id, viewer, limit, database_url))
    except Exception as e:
        logger.critical(f"Warming {stream_id} failed: {e}", exc_info=True)
        sys.exit(1)
    typer.echo(f"{stream_id}: {count} entries cached")


@app.command("hot-tags")
def hot_tags(
    timeframe: Annotated[str, typer.Option("--timeframe", "-t", help=f"One of {', '.join(TIMEFRAMES)}")] = "today",
    reach: Annotated[str, typer.Option("--reach", "-r", help=f"One of {', '.join(REACHES)}")] = "all",
    user_id: Annotated[Optional[str], typer.Option("--user", help="User id for reach other than 'all'")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of tags")] = settings.HOT_TAGS_LIMIT,
    database_url: Annotated[Optional[str], typer.Option("--database-url", help="SQLAlchemy async URL (overrides settings)")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose output")] = False,
) -> None:
    """Print the hot tags leaderboard, refreshing the cached snapshot."""
    _configure_logging(verbose)
    if timeframe not in TIMEFRAMES or reach not in REACHES:
        raise typer.BadParameter(f"timeframe must be one of {TIMEFRAMES} and reach one of {REACHES}")
    tags = asyncio.run(_hot_tags(timeframe, reach, user_id, limit, database_url))
    for tag in tags:
        typer.echo(f"{tag.label}\t{tag.tagged_count}\t{tag.taggers_count}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
