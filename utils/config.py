import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()  # must be called first

PODCAST_INDEX_API_KEY = os.getenv("PODCAST_INDEX_API_KEY")
PODCAST_INDEX_API_SECRET = os.getenv("PODCAST_INDEX_API_SECRET")
PODCAST_INDEX_BASE_URL = os.getenv("PODCAST_INDEX_BASE_URL", "https://api.podcastindex.org/api/1.0")
USER_AGENT = os.getenv("USER_AGENT", "v4v-music-api/1.0")

DATA_DIR = Path(os.getenv("DATA_DIR", "data"))

# --- Tuning Levers ---
RESOLVE_DELAY_SECONDS = float(os.getenv("RESOLVE_DELAY_SECONDS", 0.1))
RESOLVE_RETRIES = int(os.getenv("RESOLVE_RETRIES", 3))
RESOLVE_BACKOFF_SECONDS = float(os.getenv("RESOLVE_BACKOFF_SECONDS", 1.0))
ALBUMS_CACHE_SECONDS = int(os.getenv("ALBUMS_CACHE_SECONDS", 300))
ARTWORK_CACHE_SECONDS = int(os.getenv("ARTWORK_CACHE_SECONDS", 3600))
ARTWORK_CACHE_MAX_ENTRIES = int(os.getenv("ARTWORK_CACHE_MAX_ENTRIES", 1000))

# Seconds
PODCAST_INDEX_TIMEOUT = 10.0
RSS_TIMEOUT = 15.0

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ALLOW_ORIGINS = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]


def music_tracks_path() -> Path:
    return DATA_DIR / "music-tracks.json"


def feeds_path() -> Path:
    return DATA_DIR / "feeds.json"


def parsed_feeds_path() -> Path:
    return DATA_DIR / "parsed-feeds.json"
