import argparse
import asyncio
import inspect
import logging
import sys

import httpx

from utils import config
from utils.feeds import extract_tracks_from_feed, migrate_feeds, refresh_feeds
from utils.normalize import generate_slug, normalize_item_guid
from utils.playlist import fetch_playlist, iter_import_playlist
from utils.repair import repair_tracks
from utils.resolver import apply_resolution, iter_resolve_remote_items, needs_resolution
from utils.store import FeedStore, MusicTrackStore, write_json, write_report

logger = logging.getLogger("cli")


def _client():
    return httpx.AsyncClient(timeout=httpx.Timeout(15.0), follow_redirects=True)


def cmd_migrate_feeds(args):
    results = migrate_feeds(FeedStore(config.feeds_path()))
    logger.info(f"Migrated {results['migrated']}, skipped {results['skipped']}, errors {len(results['errors'])}")
    return 1 if results["errors"] else 0


async def cmd_refresh_feeds(args):
    async with _client() as client:
        results = await refresh_feeds(client, FeedStore(config.feeds_path()), config.parsed_feeds_path(), delay=args.delay)
    logger.info(f"Parsed {results['success']}/{results['total']} feeds ({results['failed']} failed)")
    return 0


async def cmd_parse_playlist(args):
    async with _client() as client:
        playlist = await fetch_playlist(client, args.url)

    analysis = playlist["analysis"]
    logger.info(f"📈 {analysis['totalRemoteItems']} remote items across {analysis['uniqueFeeds']} feeds")
    for index, feed in enumerate(analysis["feedDistribution"][:10], start=1):
        logger.info(f"   {index}. {feed['feedGuid'][:8]}... ({feed['trackCount']} tracks)")

    name = generate_slug(playlist["title"]) or "playlist"
    output = config.DATA_DIR / "playlists" / f"{name}-remote-items.json"
    write_json(output, playlist)
    logger.info(f"✅ Saved remote items to {output}")
    return 0


async def cmd_import_playlist(args):
    store = MusicTrackStore(config.music_tracks_path())
    summary = None
    async with _client() as client:
        async for event in iter_import_playlist(client, args.url, store, delay=args.delay):
            summary = event.get("summary", summary)
    if summary and summary["failures"]:
        write_report(config.DATA_DIR, "playlist-import-failures", summary)
    return 0


async def cmd_resolve(args):
    store = MusicTrackStore(config.music_tracks_path())
    pending = [t for t in store.tracks if needs_resolution(t)]
    if args.limit:
        pending = pending[:args.limit]
    logger.info(f"🔗 {len(pending)} tracks need remote item resolution")
    if not pending:
        return 0

    by_pair = {}
    for track in pending:
        key = (track["feedGuid"].strip(), normalize_item_guid(track["itemGuid"]))
        by_pair.setdefault(key, []).append(track)

    updated, failed = 0, []
    async with _client() as client:
        async for item, resolved, failure in iter_resolve_remote_items(client, pending, delay=args.delay):
            if failure:
                failed.append(failure)
                continue
            for track in by_pair.get((resolved["feedGuid"], resolved["itemGuid"]), []):
                if apply_resolution(track, resolved):
                    updated += 1

    logger.info(f"✅ Updated {updated} tracks, ❌ {len(failed)} failed")
    if not args.dry_run and updated:
        store.save(backup=True)
    if failed:
        write_report(config.DATA_DIR, "resolve-failures", {"failed": failed})
    return 0


def cmd_fix_data(args):
    store = MusicTrackStore(config.music_tracks_path())
    repaired, stats = repair_tracks(store.tracks)
    for name, value in stats.items():
        logger.info(f"   {name}: {value}")
    if not args.dry_run:
        store.replace_tracks(repaired, backup=True)
        logger.info("✅ music-tracks.json repaired")
    return 0


async def cmd_extract(args):
    store = MusicTrackStore(config.music_tracks_path())
    async with _client() as client:
        result = await extract_tracks_from_feed(client, args.url, extraction_method="cli-extraction")
    stored = store.add_tracks(result["tracks"])
    logger.info(f"✅ Stored {len(stored)} tracks from \"{result['feed']['title']}\"")
    return 0


def _parse_args(argv=None):
    p = argparse.ArgumentParser(description="V4V music feed tools.")
    p.add_argument("--quiet", action="store_true", help="Only log warnings and errors.")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("migrate-feeds", help="Add the built-in feed list to feeds.json.")

    s = sub.add_parser("refresh-feeds", help="Parse every managed feed into parsed-feeds.json.")
    s.add_argument("--delay", type=float, default=None, help="Seconds between feeds.")

    s = sub.add_parser("parse-playlist", help="Extract the remote items of a playlist feed.")
    s.add_argument("url")

    s = sub.add_parser("import-playlist", help="Resolve a playlist's remote items into music-tracks.json.")
    s.add_argument("url")
    s.add_argument("--delay", type=float, default=None, help="Seconds between lookups.")

    s = sub.add_parser("resolve", help="Resolve stored tracks that are missing audio or titles.")
    s.add_argument("--limit", type=int, default=0, help="Resolve at most N tracks.")
    s.add_argument("--delay", type=float, default=None, help="Seconds between lookups.")
    s.add_argument("--dry-run", action="store_true", help="Do not write music-tracks.json.")

    s = sub.add_parser("fix-data", help="Normalize and de-duplicate music-tracks.json.")
    s.add_argument("--dry-run", action="store_true", help="Report only.")

    s = sub.add_parser("extract", help="Add every track of a music feed to music-tracks.json.")
    s.add_argument("url")

    return p.parse_args(argv)


COMMANDS = {
    "migrate-feeds": cmd_migrate_feeds,
    "refresh-feeds": cmd_refresh_feeds,
    "parse-playlist": cmd_parse_playlist,
    "import-playlist": cmd_import_playlist,
    "resolve": cmd_resolve,
    "fix-data": cmd_fix_data,
    "extract": cmd_extract,
}


def main(argv=None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.WARNING if args.quiet else config.LOG_LEVEL,
        format="%(asctime)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    command = COMMANDS[args.command]
    try:
        if inspect.iscoroutinefunction(command):
            return asyncio.run(command(args))
        return command(args)
    except httpx.HTTPError as e:
        logger.error(f"❌ HTTP error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
