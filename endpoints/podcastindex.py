import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from endpoints.dependencies import get_http_client_factory
from utils.podcastindex import PodcastIndexError, fetch_episodes_by_feed_url, resolve_artwork

logger = logging.getLogger(__name__)

router = APIRouter()


def _upstream_error(e):
    status_code = 503 if e.status_code is None else 502
    return JSONResponse({"error": "Failed to fetch from Podcast Index", "detail": str(e)}, status_code=status_code)


@router.get("/api/podcastindex")
async def podcastindex_episodes(
    feed_url: Optional[str] = Query(None, alias="feedUrl"),
    client_factory=Depends(get_http_client_factory),
):
    if not feed_url:
        return JSONResponse({"error": "Feed URL is required"}, status_code=400)
    try:
        async with client_factory() as client:
            data = await fetch_episodes_by_feed_url(client, feed_url)
    except PodcastIndexError as e:
        logger.error(f"❌ Podcast Index lookup failed for {feed_url}: {e}")
        return _upstream_error(e)
    except httpx.TransportError as e:
        logger.error(f"❌ Podcast Index unreachable: {e}")
        return JSONResponse({"error": "Failed to fetch from Podcast Index"}, status_code=502)
    return JSONResponse(data, headers={"Cache-Control": "public, max-age=3600"})


@router.get("/api/artwork")
async def artwork(
    feed_guid: Optional[str] = Query(None, alias="feedGuid"),
    item_guid: Optional[str] = Query(None, alias="itemGuid"),
    client_factory=Depends(get_http_client_factory),
):
    if not feed_guid:
        return JSONResponse({"error": "Missing feedGuid parameter"}, status_code=400)
    try:
        async with client_factory() as client:
            url = await resolve_artwork(client, feed_guid, item_guid)
    except PodcastIndexError as e:
        return _upstream_error(e)
    except httpx.TransportError as e:
        logger.error(f"❌ Podcast Index unreachable: {e}")
        return JSONResponse({"error": "Failed to fetch from Podcast Index"}, status_code=502)

    if not url:
        return JSONResponse({"error": "No artwork found", "feedGuid": feed_guid, "itemGuid": item_guid}, status_code=404)
    return {"artwork": url, "feedGuid": feed_guid, "itemGuid": item_guid}
