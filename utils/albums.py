import json
import logging
import time
from pathlib import Path

from utils import config
from utils.normalize import generate_slug

logger = logging.getLogger(__name__)

# path -> (data, loaded_at)
_parsed_feeds_cache = {}


class ParsedFeedsMissing(FileNotFoundError):
    pass


class ParsedFeedsInvalid(ValueError):
    pass


def load_parsed_feeds(path: Path, max_age=None):
    """parsed-feeds.json, cached for ALBUMS_CACHE_SECONDS or until the file changes on disk."""
    path = Path(path)
    max_age = config.ALBUMS_CACHE_SECONDS if max_age is None else max_age
    if not path.exists():
        raise ParsedFeedsMissing(f"Parsed feeds data not found at: {path}")

    now = time.time()
    cached = _parsed_feeds_cache.get(str(path))
    if cached:
        data, loaded_at = cached
        if now - loaded_at < max_age and path.stat().st_mtime <= loaded_at:
            return data

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ParsedFeedsInvalid(f"Invalid JSON in parsed feeds data: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("feeds"), list):
        raise ParsedFeedsInvalid("Invalid data structure: expected an object with a 'feeds' array")

    _parsed_feeds_cache[str(path)] = (data, now)
    logger.info(f"Refreshed cached parsed feeds data ({len(data['feeds'])} feeds)")
    return data


def clear_cache():
    _parsed_feeds_cache.clear()


def _str(value, default=""):
    return value if isinstance(value, str) else default


def _make_album_track(track):
    return {
        "title": _str(track.get("title")),
        "duration": _str(track.get("duration"), "0:00"),
        "url": _str(track.get("url")),
        "trackNumber": track.get("trackNumber") if isinstance(track.get("trackNumber"), int) else 0,
        "subtitle": _str(track.get("subtitle")),
        "summary": _str(track.get("summary")),
        "image": _str(track.get("image")),
        "explicit": track.get("explicit") if isinstance(track.get("explicit"), bool) else False,
        "keywords": [k for k in track.get("keywords") or [] if isinstance(k, str)],
    }


def extract_albums(parsed):
    albums = []
    for feed in parsed.get("feeds", []):
        album = (feed.get("parsedData") or {}).get("album")
        if feed.get("parseStatus") != "success" or not album:
            continue
        title = _str(album.get("title"))
        albums.append({
            "id": generate_slug(title),
            "title": title,
            "artist": _str(album.get("artist")),
            "description": _str(album.get("description")),
            "coverArt": _str(album.get("coverArt")),
            "releaseDate": _str(album.get("releaseDate")),
            "tracks": [_make_album_track(t) for t in album.get("tracks") or [] if isinstance(t, dict)],
            "podroll": album.get("podroll") or None,
            "publisher": album.get("publisher") or None,
            "funding": album.get("funding") or None,
            "feedId": _str(feed.get("id")),
            "feedUrl": _str(feed.get("originalUrl")),
            "tier": _str(feed.get("tier")) or _str(feed.get("type")),
            "lastUpdated": _str(feed.get("lastParsed")),
        })
    return albums


def _matches_kind(album, kind):
    count = len(album["tracks"])
    if kind == "albums":
        return count > 6
    if kind == "eps":
        return 1 < count <= 6
    if kind == "singles":
        return count == 1
    if kind == "playlist":
        return count > 1
    return True


def filter_albums(albums, tier="all", feed_id=None, kind="all", tier_feed_ids=None):
    if tier and tier != "all":
        if tier_feed_ids is not None:
            albums = [a for a in albums if a["feedId"] in tier_feed_ids]
        else:
            albums = [a for a in albums if a.get("tier") == tier]
    if feed_id:
        albums = [a for a in albums if a["feedId"] == feed_id]
    if kind and kind != "all":
        albums = [a for a in albums if _matches_kind(a, kind)]
    return albums


def dedupe_albums(albums):
    unique = {}
    for album in albums:
        key = f"{album['title'].lower()}|{album['artist'].lower()}"
        unique.setdefault(key, album)
    return list(unique.values())


def paginate(items, offset=0, limit=50):
    offset = max(offset, 0)
    if limit == 0:
        return items[offset:]
    return items[offset:offset + limit]


def find_album(albums, slug):
    slug = generate_slug(slug)
    return next((a for a in albums if a["id"] == slug), None)
