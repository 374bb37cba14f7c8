import hashlib
import logging
import time
from typing import Optional

import httpx

from utils import config

logger = logging.getLogger(__name__)

_artwork_cache = {}


class PodcastIndexError(RuntimeError):
    def __init__(self, message, status_code=None, transient=False):
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


def auth_headers(api_key=None, api_secret=None, now=None):
    api_key = api_key or config.PODCAST_INDEX_API_KEY
    api_secret = api_secret or config.PODCAST_INDEX_API_SECRET
    if not api_key or not api_secret:
        raise PodcastIndexError("❌ PODCAST_INDEX_API_KEY or PODCAST_INDEX_API_SECRET is missing. Check your .env")

    auth_date = str(int(now if now is not None else time.time()))
    digest = hashlib.sha1((api_key + api_secret + auth_date).encode("utf-8")).hexdigest()
    return {
        "X-Auth-Date": auth_date,
        "X-Auth-Key": api_key,
        "Authorization": digest,
        "User-Agent": config.USER_AGENT,
    }


def _is_ok(data):
    return str(data.get("status", "")).lower() == "true"


async def _get(client: httpx.AsyncClient, path: str, params: dict) -> Optional[dict]:
    """
    GET a Podcast Index endpoint. Returns the decoded body, or None when the
    API says the thing does not exist. Rate limiting and server errors raise
    a transient PodcastIndexError so callers can retry.
    """
    resp = await client.get(
        f"{config.PODCAST_INDEX_BASE_URL}/{path}",
        params=params,
        headers=auth_headers(),
        timeout=config.PODCAST_INDEX_TIMEOUT,
    )

    if resp.status_code in (400, 404):
        return None
    if resp.status_code == 429 or resp.status_code >= 500:
        raise PodcastIndexError(
            f"Podcast Index {path} returned {resp.status_code}",
            status_code=resp.status_code,
            transient=True,
        )
    if resp.status_code != 200:
        raise PodcastIndexError(f"Podcast Index {path} returned {resp.status_code}", status_code=resp.status_code)

    try:
        return resp.json()
    except ValueError as e:
        raise PodcastIndexError(f"Podcast Index {path} returned invalid JSON: {e}") from e


async def fetch_feed_by_guid(client, feed_guid: str) -> Optional[dict]:
    data = await _get(client, "podcasts/byguid", {"guid": feed_guid})
    if not data or not _is_ok(data):
        return None
    feed = data.get("feed")
    # Unknown GUIDs come back as status=true with an empty feed list
    if not isinstance(feed, dict) or not feed.get("id"):
        return None
    return feed


async def fetch_episode_by_guid(client, item_guid: str, feed_id=None, feed_guid=None) -> Optional[dict]:
    params = {"guid": item_guid}
    if feed_id:
        params["feedid"] = feed_id
    elif feed_guid:
        params["feedguid"] = feed_guid

    data = await _get(client, "episodes/byguid", params)
    if not data or not _is_ok(data):
        return None
    episode = data.get("episode")
    if not isinstance(episode, dict) or not episode:
        return None
    return episode


async def fetch_episodes_by_feed_id(client, feed_id, max_results: int = 1000) -> list:
    data = await _get(client, "episodes/byfeedid", {"id": feed_id, "max": max_results})
    if not data or not _is_ok(data):
        return []
    return data.get("items") or []


async def fetch_episodes_by_feed_url(client, feed_url: str, max_results: int = 1000) -> dict:
    data = await _get(client, "episodes/byfeedurl", {"url": feed_url, "max": max_results})
    if not data or not _is_ok(data):
        return {"feed": None, "items": []}
    return {"feed": data.get("feed"), "items": data.get("items") or []}


async def resolve_artwork(client, feed_guid: str, item_guid: str = None) -> Optional[str]:
    cache_key = f"{feed_guid}:{item_guid or 'feed'}"
    cached = _artwork_cache.get(cache_key)
    if cached and time.time() - cached[1] < config.ARTWORK_CACHE_SECONDS:
        return cached[0]

    artwork = None
    feed = await fetch_feed_by_guid(client, feed_guid)
    if feed and item_guid:
        episode = await fetch_episode_by_guid(client, item_guid, feed_id=feed["id"])
        if episode and (episode.get("image") or "").strip():
            artwork = episode["image"]
    if not artwork and feed:
        artwork = (feed.get("artwork") or feed.get("image") or "").strip() or None

    if artwork:
        logger.info(f"✅ Found artwork for {cache_key}: {artwork}")
    else:
        logger.warning(f"❌ No artwork found for {cache_key}")

    now = time.time()
    _prune_artwork_cache(now)
    _artwork_cache[cache_key] = (artwork, now)
    return artwork


def _prune_artwork_cache(now):
    for key in [k for k, (_, stamp) in _artwork_cache.items() if now - stamp >= config.ARTWORK_CACHE_SECONDS]:
        del _artwork_cache[key]
    # Entries are inserted in time order, so the first keys are the oldest
    while len(_artwork_cache) >= config.ARTWORK_CACHE_MAX_ENTRIES > 0:
        del _artwork_cache[next(iter(_artwork_cache))]


def clear_artwork_cache():
    _artwork_cache.clear()
