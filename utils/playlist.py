import logging
from collections import Counter

import httpx

from utils.make import now_iso
from utils.resolver import iter_resolve_remote_items
from utils.rss import fetch_feed_text, parse_feed, parse_remote_items

logger = logging.getLogger(__name__)


def analyze_remote_items(remote_items):
    per_feed = Counter(item["feedGuid"] for item in remote_items)
    return {
        "totalRemoteItems": len(remote_items),
        "uniqueFeeds": len(per_feed),
        "uniquePairs": len({(i["feedGuid"], i["itemGuid"]) for i in remote_items}),
        "feedDistribution": [
            {"feedGuid": feed_guid, "trackCount": count}
            for feed_guid, count in per_feed.most_common()
        ],
    }


async def fetch_playlist(client: httpx.AsyncClient, url: str):
    xml_text = await fetch_feed_text(client, url)
    feed = parse_feed(xml_text)
    # Playlists keep their remote items at channel level; fall back to every remoteItem in the document
    remote_items = feed["remoteItems"] or parse_remote_items(xml_text)
    return {
        "title": feed["title"],
        "url": url,
        "image": feed.get("image"),
        "remoteItems": remote_items,
        "analysis": analyze_remote_items(remote_items),
    }


async def iter_import_playlist(client, url, store, delay=None, retries=None, backoff=None):
    """
    Resolve every remote item of a playlist feed and store the tracks.
    Yields progress events: info, track, failed, summary.
    """
    playlist = await fetch_playlist(client, url)
    yield {"info": {"playlist": playlist["title"], "url": url, **playlist["analysis"]}}

    resolved_count, failed = 0, []
    async for item, resolved, failure in iter_resolve_remote_items(
        client, playlist["remoteItems"], delay=delay, retries=retries, backoff=backoff
    ):
        if failure:
            failed.append(failure)
            yield {"failed": failure}
            continue
        track = store.add_track({
            **resolved,
            "source": "playlist",
            "playlist": playlist["title"],
            "extractionMethod": "remote-item-resolution",
            "discoveredAt": now_iso(),
        }, save=False)
        resolved_count += 1
        yield {"track": track}

    store.save(backup=True)
    yield {"summary": {
        "playlist": playlist["title"],
        "resolved": resolved_count,
        "failed": len(failed),
        "failures": failed,
    }}
