import asyncio
import logging
from pathlib import Path

import httpx

from utils import config
from utils.make import now_iso
from utils.rss import FeedParseError, build_album, fetch_feed
from utils.store import FeedExistsError, FeedStore, write_json

logger = logging.getLogger(__name__)

CDN_BASE = "https://re-podtards-cdn-new.b-cdn.net/feeds"

# (originalUrl, cdnUrl, type)
FEED_MAPPINGS = [
    ("https://www.doerfelverse.com/feeds/music-from-the-doerfelverse.xml", f"{CDN_BASE}/music-from-the-doerfelverse.xml", "album"),
    ("https://www.doerfelverse.com/feeds/bloodshot-lies-album.xml", f"{CDN_BASE}/bloodshot-lies-album.xml", "album"),
    ("https://www.doerfelverse.com/feeds/intothedoerfelverse.xml", f"{CDN_BASE}/intothedoerfelverse.xml", "album"),
    ("https://www.doerfelverse.com/feeds/wrath-of-banjo.xml", f"{CDN_BASE}/wrath-of-banjo.xml", "album"),
    ("https://www.doerfelverse.com/feeds/ben-doerfel.xml", f"{CDN_BASE}/ben-doerfel.xml", "album"),
    ("https://www.doerfelverse.com/feeds/18sundays.xml", f"{CDN_BASE}/18sundays.xml", "album"),
    ("https://www.sirtjthewrathful.com/wp-content/uploads/2023/08/Nostalgic.xml", f"{CDN_BASE}/nostalgic.xml", "album"),
    ("https://www.sirtjthewrathful.com/wp-content/uploads/2023/08/CityBeach.xml", f"{CDN_BASE}/citybeach.xml", "album"),
    ("https://www.thisisjdog.com/media/ring-that-bell.xml", f"{CDN_BASE}/ring-that-bell.xml", "album"),
    ("https://ableandthewolf.com/static/media/feed.xml", f"{CDN_BASE}/ableandthewolf-feed.xml", "album"),
    ("https://static.staticsave.com/mspfiles/deathdreams.xml", f"{CDN_BASE}/deathdreams.xml", "album"),
    ("https://wavlake.com/feed/artist/18bcbf10-6701-4ffb-b255-bc057390d738", f"{CDN_BASE}/wavlake-artist-18bcbf10-6701-4ffb-b255-bc057390d738.xml", "publisher"),
    ("https://wavlake.com/feed/artist/aa909244-7555-4b52-ad88-7233860c6fb4", f"{CDN_BASE}/wavlake-artist-aa909244-7555-4b52-ad88-7233860c6fb4.xml", "publisher"),
]


def migrate_feeds(store: FeedStore, mappings=None):
    mappings = FEED_MAPPINGS if mappings is None else mappings
    migrated, skipped, errors = 0, 0, []

    existing = {f["originalUrl"] for f in store.all_feeds()}
    logger.info(f"🚀 Starting migration of {len(mappings)} feeds...")

    for original_url, cdn_url, feed_type in mappings:
        if original_url in existing:
            skipped += 1
            logger.info(f"⏭️ Skipping existing feed: {original_url}")
            continue
        try:
            store.add_feed(original_url, feed_type, cdn_url=cdn_url)
            existing.add(original_url)
            migrated += 1
            logger.info(f"✅ Migrated: {original_url}")
        except (FeedExistsError, ValueError, OSError) as e:
            errors.append(f"Failed to migrate {original_url}: {e}")
            logger.error(f"❌ Failed to migrate {original_url}: {e}")

    return {"total": len(mappings), "migrated": migrated, "skipped": skipped, "errors": errors}


async def parse_album_feed(client: httpx.AsyncClient, url: str) -> dict:
    feed = await fetch_feed(client, url)
    if not feed["items"]:
        raise FeedParseError(f"No tracks found in feed: {url}")
    return build_album(feed)


async def parse_publisher_feed(client: httpx.AsyncClient, url: str) -> dict:
    """A publisher feed has no items, only remoteItems pointing at its album feeds."""
    feed = await fetch_feed(client, url)
    if not feed["remoteFeeds"]:
        raise FeedParseError(f"No albums found in publisher feed: {url}")
    return {
        "title": feed.get("title") or "Unknown Artist",
        "artist": feed.get("artist") or "Unknown Artist",
        "description": feed.get("description") or "",
        "coverArt": feed.get("image"),
        "link": feed.get("link"),
        "feedGuid": feed.get("podcastGuid"),
        "medium": feed.get("medium"),
        "funding": feed.get("funding", []),
        "value": feed.get("value", []),
        "albums": feed["remoteFeeds"],
    }


async def refresh_feeds(client: httpx.AsyncClient, store: FeedStore, parsed_path: Path, delay=None):
    """Parse every managed feed and rewrite parsed-feeds.json. Feed statuses are updated as we go."""
    delay = config.RESOLVE_DELAY_SECONDS if delay is None else delay
    entries = []
    feeds = store.all_feeds()

    for index, feed in enumerate(feeds):
        if index and delay:
            await asyncio.sleep(delay)
        url = feed.get("cdnUrl") or feed["originalUrl"]
        store.update_feed(feed["id"], status="processing")
        entry = {
            "id": feed["id"],
            "originalUrl": feed["originalUrl"],
            "type": feed.get("type", "album"),
            "tier": feed.get("tier") or feed.get("type", "album"),
            "lastParsed": now_iso(),
        }
        try:
            if entry["type"] == "publisher":
                publisher = await parse_publisher_feed(client, url)
                entry.update(parseStatus="success", parsedData={"publisher": publisher})
                store.update_feed(
                    feed["id"], status="active", title=publisher["title"], artist=publisher["artist"],
                    albumCount=len(publisher["albums"]), lastFetched=now_iso(), lastError=None,
                )
                logger.info(f"✅ {index + 1}/{len(feeds)} Parsed publisher \"{publisher['title']}\" ({len(publisher['albums'])} albums)")
            else:
                album = await parse_album_feed(client, url)
                entry.update(parseStatus="success", parsedData={"album": album})
                store.update_feed(
                    feed["id"], status="active", title=album["title"], artist=album["artist"],
                    albumCount=1, lastFetched=now_iso(), lastError=None,
                )
                logger.info(f"✅ {index + 1}/{len(feeds)} Parsed \"{album['title']}\" ({len(album['tracks'])} tracks)")
        except (httpx.HTTPError, FeedParseError) as e:
            entry.update(parseStatus="error", parseError=str(e))
            store.update_feed(feed["id"], status="error", lastError=str(e))
            logger.error(f"❌ {index + 1}/{len(feeds)} Failed to parse {url}: {e}")
        entries.append(entry)

    write_json(parsed_path, {"feeds": entries, "lastUpdated": now_iso()}, backup=True)
    succeeded = sum(1 for e in entries if e["parseStatus"] == "success")
    return {"total": len(entries), "success": succeeded, "failed": len(entries) - succeeded}


async def extract_tracks_from_feed(client: httpx.AsyncClient, url: str, extraction_method="rss-extraction"):
    """Track records for every item in a music feed that has an enclosure."""
    feed = await fetch_feed(client, url)
    publisher_guid = (feed.get("publisher") or {}).get("feedGuid")
    value = feed.get("value") or None
    tracks = []
    for item in feed["items"]:
        if not item.get("audioUrl"):
            continue
        tracks.append({
            "title": item["title"],
            "artist": feed["artist"],
            "album": feed["title"],
            "feedTitle": feed["title"],
            "feedGuid": feed.get("podcastGuid"),
            "itemGuid": item.get("guid"),
            "publisherFeedGuid": publisher_guid,
            "episodeId": item.get("guid") or "",
            "episodeTitle": item["title"],
            "episodeDate": item.get("pubDate"),
            "episodeGuid": item.get("guid"),
            "feedUrl": url,
            "feedId": feed.get("podcastGuid") or url,
            "audioUrl": item["audioUrl"],
            "image": item.get("image") or feed.get("image"),
            "duration": item.get("duration") or 0,
            "description": item.get("description"),
            "explicit": item.get("explicit", False),
            "valueForValue": {"recipients": value} if value else None,
            "source": "rss-feed",
            "extractionMethod": extraction_method,
        })
    return {"feed": feed, "tracks": tracks}
