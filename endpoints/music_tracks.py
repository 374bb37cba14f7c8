import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse

from endpoints.dependencies import get_http_client_factory, get_track_store
from utils.feeds import extract_tracks_from_feed
from utils.rss import FeedParseError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _extract_and_store(client, store, feed_url, method):
    result = await extract_tracks_from_feed(client, feed_url, extraction_method=method)
    stored = store.add_tracks(result["tracks"])
    store.save_extraction_result({
        "feedUrl": feed_url,
        "feedId": result["feed"].get("podcastGuid") or method,
        "musicTracks": [t["id"] for t in stored],
        "relatedFeeds": [i["feedGuid"] for i in result["feed"]["remoteItems"]],
        "extractionStats": {
            "totalItems": len(result["feed"]["items"]),
            "tracksFound": len(result["tracks"]),
        },
        "extractionMethod": method,
        "success": True,
    })
    return result, stored


@router.get("/api/music-tracks/database")
async def get_music_tracks(
    artist: Optional[str] = None,
    title: Optional[str] = None,
    feed_id: Optional[str] = Query(None, alias="feedId"),
    episode_id: Optional[str] = Query(None, alias="episodeId"),
    source: Optional[str] = None,
    has_v4v: Optional[bool] = Query(None, alias="hasV4VData"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=500, alias="pageSize"),
    extract_from_feed: Optional[str] = Query(None, alias="extractFromFeed"),
    store=Depends(get_track_store),
    client_factory=Depends(get_http_client_factory),
):
    if extract_from_feed:
        logger.info(f"Extracting tracks from feed {extract_from_feed}")
        try:
            async with client_factory() as client:
                _result, stored = await _extract_and_store(client, store, extract_from_feed, "api-extraction")
            logger.info(f"✅ Stored {len(stored)} tracks from {extract_from_feed}")
        except (httpx.HTTPError, FeedParseError) as e:
            logger.error(f"❌ Failed to extract tracks from {extract_from_feed}: {e}")

    filters = {}
    for name, value in (("artist", artist), ("title", title), ("feedId", feed_id),
                        ("episodeId", episode_id), ("source", source)):
        if value:
            filters[name] = value
    if has_v4v is not None:
        filters["hasV4VData"] = has_v4v

    result = store.search(filters, page=page, page_size=page_size)
    return {
        "success": True,
        "data": {
            "tracks": result["tracks"],
            "pagination": {
                "total": result["total"],
                "page": result["page"],
                "pageSize": result["pageSize"],
                "totalPages": result["totalPages"],
            },
            "filters": result["filters"],
            "statistics": store.statistics(),
        },
    }


@router.post("/api/music-tracks/database")
async def post_music_tracks(
    body: dict = Body(...),
    store=Depends(get_track_store),
    client_factory=Depends(get_http_client_factory),
):
    action = body.get("action")
    data = body.get("data") or {}

    if action == "extractAndStore":
        feed_urls = data.get("feedUrls")
        if not isinstance(feed_urls, list) or not feed_urls:
            return JSONResponse({"error": "feedUrls array is required"}, status_code=400)

        results, errors = [], []
        async with client_factory() as client:
            for feed_url in feed_urls:
                try:
                    result, stored = await _extract_and_store(client, store, feed_url, "bulk-extraction")
                    results.append({
                        "feedUrl": feed_url,
                        "success": True,
                        "tracksStored": len(stored),
                        "totalTracks": len(result["tracks"]),
                        "relatedFeeds": len(result["feed"]["remoteItems"]),
                    })
                except (httpx.HTTPError, FeedParseError) as e:
                    logger.error(f"❌ Extraction failed for {feed_url}: {e}")
                    errors.append({"feedUrl": feed_url, "error": str(e)})

        return {
            "success": True,
            "summary": {
                "totalFeeds": len(feed_urls),
                "successfulFeeds": len(results),
                "failedFeeds": len(errors),
                "totalTracksStored": sum(r["tracksStored"] for r in results),
            },
            "results": results,
            "errors": errors,
            "statistics": store.statistics(),
        }

    if action == "updateTrack":
        track_id = data.get("trackId")
        updates = data.get("updates")
        if not track_id or not isinstance(updates, dict):
            return JSONResponse({"error": "trackId and updates are required"}, status_code=400)
        track = store.update_track(track_id, updates)
        if track is None:
            return JSONResponse({"error": "Track not found"}, status_code=404)
        return {"success": True, "data": track}

    return JSONResponse(
        {"error": "Invalid action", "timestamp": datetime.now(timezone.utc).isoformat()},
        status_code=400,
    )
