import logging
import sys
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from endpoints.admin import router as admin_router
from endpoints.albums import router as albums_router
from endpoints.music_tracks import router as music_tracks_router
from endpoints.podcastindex import router as podcastindex_router
from endpoints.resolve import router as resolve_router
from utils import config

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

app = FastAPI(title="V4V Music API")
app.include_router(albums_router)
app.include_router(music_tracks_router)
app.include_router(admin_router)
app.include_router(resolve_router)
app.include_router(podcastindex_router)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        {"error": "Internal server error", "timestamp": datetime.now(timezone.utc).isoformat()},
        status_code=500,
    )


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "podcastIndexConfigured": bool(config.PODCAST_INDEX_API_KEY and config.PODCAST_INDEX_API_SECRET),
        "dataDir": str(config.DATA_DIR),
    }
