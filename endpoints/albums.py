import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from endpoints.dependencies import get_feed_store, get_parsed_feeds_path
from utils.albums import (
    ParsedFeedsInvalid,
    ParsedFeedsMissing,
    dedupe_albums,
    extract_albums,
    filter_albums,
    find_album,
    load_parsed_feeds,
    paginate,
)

logger = logging.getLogger(__name__)

router = APIRouter()

CACHE_HEADERS = {
    "Cache-Control": "public, max-age=180, s-maxage=180, stale-while-revalidate=300",
    "X-Content-Type-Options": "nosniff",
}


def _empty(error, status_code):
    return JSONResponse(
        {
            "albums": [],
            "totalCount": 0,
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
            "error": error,
        },
        status_code=status_code,
    )


def _load_albums(parsed_path: Path):
    return extract_albums(load_parsed_feeds(parsed_path))


@router.get("/api/albums")
async def get_albums(
    limit: int = Query(50, ge=0),
    offset: int = Query(0, ge=0),
    tier: str = Query("all"),
    feed_id: Optional[str] = Query(None, alias="feedId"),
    kind: str = Query("all", alias="filter"),
    parsed_path: Path = Depends(get_parsed_feeds_path),
    feed_store=Depends(get_feed_store),
):
    try:
        albums = _load_albums(parsed_path)
    except ParsedFeedsMissing as e:
        logger.warning(str(e))
        return _empty("Parsed feeds data not found", 404)
    except ParsedFeedsInvalid as e:
        logger.error(str(e))
        return _empty(str(e), 500)

    tier_feed_ids = None
    if tier != "all":
        managed = feed_store.all_feeds()
        if managed:
            tier_feed_ids = {f["id"] for f in managed if (f.get("tier") or f.get("type")) == tier}

    albums = filter_albums(albums, tier=tier, feed_id=feed_id, kind=kind, tier_feed_ids=tier_feed_ids)
    unique = dedupe_albums(albums)
    total = len(unique)
    page = paginate(unique, offset, limit)

    logger.info(f"✅ Albums API: Returning {len(page)}/{total} albums (tier: {tier}, filter: {kind}, offset: {offset}, limit: {limit})")

    return JSONResponse(
        {
            "albums": page,
            "totalCount": total,
            "hasMore": False if limit == 0 else offset + limit < total,
            "offset": offset,
            "limit": limit,
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
        },
        headers={**CACHE_HEADERS, "ETag": f'"{int(Path(parsed_path).stat().st_mtime)}-{total}"'},
    )


@router.get("/api/albums/{slug}")
async def get_album(slug: str, parsed_path: Path = Depends(get_parsed_feeds_path)):
    try:
        albums = _load_albums(parsed_path)
    except ParsedFeedsMissing:
        return JSONResponse({"error": "Parsed feeds data not found"}, status_code=404)
    except ParsedFeedsInvalid as e:
        return JSONResponse({"error": str(e)}, status_code=500)

    album = find_album(albums, slug)
    if not album:
        return JSONResponse({"error": "Album not found"}, status_code=404)
    return JSONResponse({"album": album, "lastUpdated": album["lastUpdated"]}, headers=CACHE_HEADERS)
