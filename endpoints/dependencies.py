from functools import lru_cache

import httpx

from utils import config
from utils.store import FeedStore, MusicTrackStore


@lru_cache()
def get_track_store() -> MusicTrackStore:
    return MusicTrackStore(config.music_tracks_path())


@lru_cache()
def get_feed_store() -> FeedStore:
    return FeedStore(config.feeds_path())


def get_parsed_feeds_path():
    return config.parsed_feeds_path()


def get_http_client_factory():
    # Streaming routes open the client inside their generator
    def factory():
        return httpx.AsyncClient(timeout=httpx.Timeout(15.0), follow_redirects=True)
    return factory
