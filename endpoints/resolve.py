import json
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse

from endpoints.dependencies import get_http_client_factory, get_track_store
from utils.playlist import iter_import_playlist
from utils.resolver import ResolutionError, resolve_remote_item
from utils.rss import FeedParseError

logger = logging.getLogger(__name__)

router = APIRouter()


def _event(payload):
    return "data: " + json.dumps(payload) + "\n\n"


@router.get("/api/resolve-music-track")
async def resolve_music_track(
    feed_guid: Optional[str] = Query(None, alias="feedGuid"),
    item_guid: Optional[str] = Query(None, alias="itemGuid"),
    client_factory=Depends(get_http_client_factory),
):
    if not feed_guid or not item_guid:
        return JSONResponse({"error": "Missing feedGuid or itemGuid parameter"}, status_code=400)

    logger.info(f"Resolving track with feedGuid: {feed_guid} itemGuid: {item_guid}")
    try:
        async with client_factory() as client:
            track = await resolve_remote_item(client, feed_guid, item_guid)
    except ResolutionError as e:
        return {
            "success": False,
            "reason": e.reason,
            "message": str(e),
            "feedGuid": feed_guid,
            "itemGuid": item_guid,
        }
    return {"success": True, "track": track}


@router.post("/api/add-playlist-to-database")
async def add_playlist_to_database(
    body: dict = Body(...),
    store=Depends(get_track_store),
    client_factory=Depends(get_http_client_factory),
):
    playlist_url = (body.get("playlistUrl") or "").strip()
    if not playlist_url:
        return JSONResponse({"error": "playlistUrl is required"}, status_code=400)

    async def event_generator():
        try:
            async with client_factory() as client:
                async for event in iter_import_playlist(client, playlist_url, store):
                    yield _event(event)
        except (httpx.HTTPError, FeedParseError) as e:
            logger.error(f"❌ Playlist import failed for {playlist_url}: {e}")
            yield _event({"error": f"Playlist import failed: {e}"})
        yield "data: [DONE]\n\n"

    return StreamingResponse(event_generator(), media_type="text/event-stream")
