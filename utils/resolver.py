"""
Remote item resolution.

A <podcast:remoteItem feedGuid itemGuid> only points at a track. Resolving it
means: look the feed up by GUID on Podcast Index, find the episode with the
matching item GUID (direct lookup first, then the feed's episode list), and
as a last resort parse the feed's RSS ourselves.
"""
import asyncio
import logging
from datetime import datetime, timezone

import httpx

from utils import config
from utils.make import now_iso
from utils.normalize import (
    clean_html,
    is_placeholder_artist,
    is_placeholder_title,
    normalize_item_guid,
    parse_duration,
)
from utils.podcastindex import (
    PodcastIndexError,
    fetch_episode_by_guid,
    fetch_episodes_by_feed_id,
    fetch_feed_by_guid,
)
from utils.rss import FeedParseError, fetch_feed, find_item_by_guid

logger = logging.getLogger(__name__)

FEED_NOT_FOUND = "feed-not-found"
EPISODE_NOT_FOUND = "episode-not-found"
NETWORK = "network"
ERROR = "error"


class ResolutionError(Exception):
    def __init__(self, reason, message="", transient=False):
        super().__init__(message or reason)
        self.reason = reason
        self.transient = transient


async def _with_retries(call, retries, backoff, label):
    for attempt in range(1, retries + 1):
        try:
            return await call()
        except (httpx.TransportError, PodcastIndexError) as e:
            transient = isinstance(e, httpx.TransportError) or e.transient
            if not transient:
                raise ResolutionError(ERROR, f"{label}: {e}") from e
            if attempt == retries:
                raise ResolutionError(NETWORK, f"{label}: {e}", transient=True) from e
            logger.warning(f"⚠️ {label} failed (attempt {attempt}/{retries}): {e}")
            await asyncio.sleep(attempt * backoff)


def _iso_from_unix(value):
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _feed_artist(feed):
    return feed.get("author") or feed.get("ownerName") or feed.get("title") or "Unknown Artist"


def _from_episode(episode, feed, feed_guid, item_guid):
    return {
        "title": episode.get("title") or "Unknown Title",
        "artist": _feed_artist(feed),
        "album": feed.get("title") or "",
        "feedTitle": feed.get("title") or "",
        "feedGuid": feed_guid,
        "itemGuid": item_guid,
        "feedUrl": feed.get("url") or feed.get("originalUrl") or "",
        "feedId": str(feed.get("id") or ""),
        "audioUrl": episode.get("enclosureUrl"),
        "duration": parse_duration(episode.get("duration")) or 0,
        "image": episode.get("image") or episode.get("feedImage") or feed.get("artwork") or feed.get("image"),
        "episodeDate": _iso_from_unix(episode.get("datePublished")),
        "description": clean_html(episode.get("description")),
        "explicit": bool(episode.get("explicit")),
        "resolvedVia": "podcast-index",
    }


def _from_rss_item(item, rss_feed, feed, feed_guid, item_guid):
    artist = rss_feed.get("artist")
    if is_placeholder_artist(artist):
        artist = _feed_artist(feed)
    return {
        "title": item.get("title") or "Unknown Title",
        "artist": artist,
        "album": rss_feed.get("title") or feed.get("title") or "",
        "feedTitle": rss_feed.get("title") or feed.get("title") or "",
        "feedGuid": feed_guid,
        "itemGuid": item_guid,
        "feedUrl": feed.get("url") or "",
        "feedId": str(feed.get("id") or ""),
        "audioUrl": item.get("audioUrl"),
        "duration": item.get("duration") or 0,
        "image": item.get("image") or rss_feed.get("image") or feed.get("artwork") or feed.get("image"),
        "episodeDate": item.get("pubDate"),
        "description": item.get("description"),
        "explicit": item.get("explicit", False),
        "resolvedVia": "rss",
    }


async def resolve_remote_item(client, feed_guid, item_guid, feed_cache=None, retries=None, backoff=None):
    retries = max(retries or config.RESOLVE_RETRIES, 1)
    backoff = config.RESOLVE_BACKOFF_SECONDS if backoff is None else backoff
    feed_cache = {} if feed_cache is None else feed_cache
    feed_guid = (feed_guid or "").strip()
    item_guid = normalize_item_guid(item_guid)
    if not feed_guid or not item_guid:
        raise ResolutionError(ERROR, "feedGuid and itemGuid are required")

    # --- 1. Feed lookup (memoized for the whole batch) ---
    if feed_guid not in feed_cache:
        feed_cache[feed_guid] = await _with_retries(
            lambda: fetch_feed_by_guid(client, feed_guid), retries, backoff, f"feed {feed_guid}"
        )
    feed = feed_cache[feed_guid]
    if not feed:
        raise ResolutionError(FEED_NOT_FOUND, f"No feed found for GUID {feed_guid}")

    # --- 2. Direct episode lookup ---
    episode = await _with_retries(
        lambda: fetch_episode_by_guid(client, item_guid, feed_id=feed["id"]),
        retries, backoff, f"episode {item_guid}",
    )
    if episode:
        return _from_episode(episode, feed, feed_guid, item_guid)

    # --- 3. Linear search through the feed's episode list ---
    episodes = await _with_retries(
        lambda: fetch_episodes_by_feed_id(client, feed["id"]),
        retries, backoff, f"episodes of feed {feed['id']}",
    )
    for candidate in episodes:
        if (candidate.get("guid") or "").strip() == item_guid:
            return _from_episode(candidate, feed, feed_guid, item_guid)

    # --- 4. Parse the RSS directly ---
    feed_url = feed.get("url") or feed.get("originalUrl")
    if feed_url:
        try:
            rss_feed = await _with_retries(
                lambda: fetch_feed(client, feed_url), retries, backoff, f"rss {feed_url}"
            )
        except (httpx.HTTPError, FeedParseError) as e:
            logger.warning(f"⚠️ RSS fallback failed for {feed_url}: {e}")
            rss_feed = None
        if rss_feed:
            item = find_item_by_guid(rss_feed, item_guid)
            if item:
                return _from_rss_item(item, rss_feed, feed, feed_guid, item_guid)

    raise ResolutionError(EPISODE_NOT_FOUND, f"Episode {item_guid} not found in feed {feed_guid}")


def _failure(feed_guid, item_guid, reason, error, transient):
    return {
        "feedGuid": feed_guid,
        "itemGuid": item_guid,
        "reason": reason,
        "error": error,
        "transient": transient,
    }


async def iter_resolve_remote_items(client, items, delay=None, retries=None, backoff=None):
    """
    Resolve remote items one at a time, yielding (item, resolved, failure).
    Duplicate feedGuid/itemGuid pairs are resolved once.
    """
    delay = config.RESOLVE_DELAY_SECONDS if delay is None else delay
    feed_cache = {}
    seen = set()
    unique = []
    for item in items:
        key = ((item.get("feedGuid") or "").strip(), normalize_item_guid(item.get("itemGuid")))
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)

    for index, item in enumerate(unique):
        if index and delay:
            await asyncio.sleep(delay)
        feed_guid = item.get("feedGuid")
        item_guid = normalize_item_guid(item.get("itemGuid"))
        try:
            resolved = await resolve_remote_item(
                client, feed_guid, item_guid, feed_cache=feed_cache, retries=retries, backoff=backoff
            )
            logger.info(f"✅ {index + 1}/{len(unique)} Resolved \"{resolved['title']}\" via {resolved['resolvedVia']}")
            yield item, resolved, None
        except ResolutionError as e:
            logger.warning(f"❌ {index + 1}/{len(unique)} {feed_guid}/{item_guid}: {e.reason} ({e})")
            yield item, None, _failure(feed_guid, item_guid, e.reason, str(e), e.transient)
        except httpx.HTTPError as e:
            logger.error(f"❌ {index + 1}/{len(unique)} {feed_guid}/{item_guid}: {e}")
            yield item, None, _failure(feed_guid, item_guid, ERROR, str(e) or type(e).__name__, False)


async def resolve_remote_items(client, items, delay=None, retries=None, backoff=None):
    resolved, failed = [], []
    async for _item, result, failure in iter_resolve_remote_items(client, items, delay, retries, backoff):
        if result:
            resolved.append(result)
        else:
            failed.append(failure)
    return resolved, failed


def needs_resolution(track):
    if not track.get("feedGuid") or not normalize_item_guid(track.get("itemGuid")):
        return False
    return not track.get("audioUrl") or is_placeholder_title(track.get("title"))


def apply_resolution(track, resolved, overwrite_placeholders=True):
    """Copy resolved metadata onto a stored track without clobbering good data. Returns updated fields."""
    updated = []
    for field in ("title", "artist", "album", "feedTitle", "feedUrl", "feedId", "audioUrl",
                  "duration", "image", "episodeDate", "description"):
        value = resolved.get(field)
        if not value:
            continue
        current = track.get(field)
        replace = not current
        if overwrite_placeholders and field == "title" and is_placeholder_title(current):
            replace = True
        if overwrite_placeholders and field == "artist" and is_placeholder_artist(current):
            replace = True
        if replace and current != value:
            track[field] = value
            updated.append(field)
    if updated:
        track["lastUpdated"] = now_iso()
    return updated
