import logging

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from endpoints.dependencies import get_feed_store
from utils.feeds import migrate_feeds
from utils.store import FeedExistsError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/admin/migrate-feeds")
async def migrate(feed_store=Depends(get_feed_store)):
    results = migrate_feeds(feed_store)
    errors = results.pop("errors")
    body = {
        "success": True,
        "message": "Feed migration completed",
        "results": {**results, "errors": len(errors)},
    }
    if errors:
        body["errors"] = errors
    return body


@router.get("/api/feeds")
async def list_feeds(feed_store=Depends(get_feed_store)):
    feeds = feed_store.all_feeds()
    return {"feeds": feeds, "total": len(feeds)}


@router.post("/api/feeds")
async def add_feed(body: dict = Body(...), feed_store=Depends(get_feed_store)):
    url = (body.get("url") or "").strip()
    feed_type = body.get("type") or "album"
    if not url.startswith(("http://", "https://")):
        return JSONResponse({"error": "A valid feed url is required"}, status_code=400)
    if feed_type not in ("album", "publisher"):
        return JSONResponse({"error": "type must be 'album' or 'publisher'"}, status_code=400)
    try:
        feed = feed_store.add_feed(url, feed_type, tier=body.get("tier"))
    except FeedExistsError as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    logger.info(f"✅ Added feed {feed['id']}")
    return JSONResponse({"success": True, "feed": feed}, status_code=201)


@router.delete("/api/feeds/{feed_id}")
async def remove_feed(feed_id: str, feed_store=Depends(get_feed_store)):
    if not feed_store.remove_feed(feed_id):
        return JSONResponse({"error": "Feed not found"}, status_code=404)
    return {"success": True}
