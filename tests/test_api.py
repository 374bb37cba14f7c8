import json

import httpx
import pytest
from fastapi.testclient import TestClient

from endpoints.dependencies import (
    get_feed_store,
    get_http_client_factory,
    get_parsed_feeds_path,
    get_track_store,
)
from main import app
from tests.conftest import ALBUM_FEED_URL, ALBUM_XML, PLAYLIST_URL, PLAYLIST_XML, FakePodcastIndex
from utils import config
from utils.rss import build_album, parse_feed
from utils.store import FeedStore, MusicTrackStore, generate_feed_id, write_json


@pytest.fixture
def fake_index(pi_feed, pi_episode):
    return FakePodcastIndex(
        feeds={"album-feed-guid": pi_feed},
        episodes={"item-guid-1": pi_episode},
        feed_episodes={"920666": [pi_episode]},
        rss={ALBUM_FEED_URL: ALBUM_XML, PLAYLIST_URL: PLAYLIST_XML},
    )


@pytest.fixture
def track_store(tmp_path):
    return MusicTrackStore(tmp_path / "music-tracks.json")


@pytest.fixture
def feed_store(tmp_path):
    return FeedStore(tmp_path / "feeds.json")


@pytest.fixture
def parsed_path(tmp_path):
    return tmp_path / "parsed-feeds.json"


@pytest.fixture
def client(pi_config, fake_index, track_store, feed_store, parsed_path):
    app.dependency_overrides[get_track_store] = lambda: track_store
    app.dependency_overrides[get_feed_store] = lambda: feed_store
    app.dependency_overrides[get_parsed_feeds_path] = lambda: parsed_path
    app.dependency_overrides[get_http_client_factory] = lambda: (
        lambda: httpx.AsyncClient(transport=httpx.MockTransport(fake_index))
    )
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def parsed_feeds(parsed_path):
    single = {
        "title": "Ring That Bell",
        "artist": "J-Dog",
        "coverArt": "https://cdn.test/bell.jpg",
        "tracks": [{"title": "Ring That Bell", "duration": "2:45", "url": "https://cdn.test/bell.mp3", "trackNumber": 1}],
    }
    write_json(parsed_path, {
        "feeds": [
            {
                "id": generate_feed_id(ALBUM_FEED_URL),
                "originalUrl": ALBUM_FEED_URL,
                "type": "album",
                "tier": "featured",
                "parseStatus": "success",
                "lastParsed": "2025-01-01T00:00:00+00:00",
                "parsedData": {"album": build_album(parse_feed(ALBUM_XML))},
            },
            {
                "id": "ring-that-bell",
                "originalUrl": "https://feeds.test/bell.xml",
                "type": "album",
                "parseStatus": "success",
                "lastParsed": "2025-01-01T00:00:00+00:00",
                "parsedData": {"album": single},
            },
        ],
        "lastUpdated": "2025-01-01T00:00:00+00:00",
    })
    return parsed_path


def _events(response):
    chunks = [c for c in response.text.split("\n\n") if c.strip()]
    assert all(c.startswith("data: ") for c in chunks)
    payloads = [c[len("data: "):] for c in chunks]
    assert payloads[-1] == "[DONE]"
    return [json.loads(p) for p in payloads[:-1]]


def test_health(client):
    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert body["podcastIndexConfigured"] is True


# --- albums ---

def test_albums_missing_data(client):
    resp = client.get("/api/albums")

    assert resp.status_code == 404
    assert resp.json()["error"] == "Parsed feeds data not found"
    assert resp.json()["albums"] == []


def test_albums_invalid_data(client, parsed_path):
    parsed_path.write_text("{oops")

    assert client.get("/api/albums").status_code == 500


def test_albums_list(client, parsed_feeds):
    resp = client.get("/api/albums", params={"limit": 1})

    assert resp.status_code == 200
    body = resp.json()
    assert body["totalCount"] == 2
    assert body["hasMore"] is True
    assert [a["title"] for a in body["albums"]] == ["Stay Awhile"]
    assert resp.headers["etag"].endswith('-2"')
    assert "max-age" in resp.headers["cache-control"]


def test_albums_limit_zero_returns_everything(client, parsed_feeds):
    body = client.get("/api/albums", params={"limit": 0, "offset": 1}).json()

    assert [a["title"] for a in body["albums"]] == ["Ring That Bell"]
    assert body["hasMore"] is False


def test_albums_filters(client, parsed_feeds):
    singles = client.get("/api/albums", params={"filter": "singles"}).json()
    assert [a["title"] for a in singles["albums"]] == ["Ring That Bell"]

    by_feed = client.get("/api/albums", params={"feedId": "ring-that-bell"}).json()
    assert by_feed["totalCount"] == 1

    featured = client.get("/api/albums", params={"tier": "featured"}).json()
    assert [a["title"] for a in featured["albums"]] == ["Stay Awhile"]


def test_albums_tier_uses_managed_feeds(client, parsed_feeds, feed_store):
    feed_store.add_feed("https://feeds.test/bell.xml", tier="featured")
    feed_store.add_feed(ALBUM_FEED_URL, tier="archive")

    featured = client.get("/api/albums", params={"tier": "featured"}).json()

    assert featured["albums"] == []
    archive = client.get("/api/albums", params={"tier": "archive"}).json()
    assert [a["title"] for a in archive["albums"]] == ["Stay Awhile"]


def test_album_by_slug(client, parsed_feeds):
    resp = client.get("/api/albums/stay-awhile")

    assert resp.status_code == 200
    album = resp.json()["album"]
    assert album["artist"] == "Able and The Wolf"
    assert len(album["tracks"]) == 3
    assert client.get("/api/albums/unknown-album").status_code == 404


# --- music tracks ---

def test_music_tracks_empty(client):
    body = client.get("/api/music-tracks/database").json()

    assert body["success"] is True
    assert body["data"]["tracks"] == []
    assert body["data"]["pagination"]["total"] == 0
    assert body["data"]["statistics"]["totalTracks"] == 0


def test_music_tracks_extract_from_feed(client, track_store):
    body = client.get("/api/music-tracks/database", params={"extractFromFeed": ALBUM_FEED_URL}).json()

    assert body["data"]["pagination"]["total"] == 2
    assert len(track_store.load()["extractions"]) == 1

    filtered = client.get("/api/music-tracks/database", params={"title": "awhile", "hasV4VData": "true"}).json()
    assert [t["title"] for t in filtered["data"]["tracks"]] == ["Stay Awhile"]
    assert filtered["data"]["filters"] == {"title": "awhile", "hasV4VData": True}


def test_music_tracks_pagination(client, track_store):
    track_store.add_tracks([{"title": f"Song {n}", "artist": "A"} for n in range(5)])

    body = client.get("/api/music-tracks/database", params={"page": 2, "pageSize": 2}).json()

    assert [t["title"] for t in body["data"]["tracks"]] == ["Song 2", "Song 3"]
    assert body["data"]["pagination"]["totalPages"] == 3


def test_extract_and_store(client):
    resp = client.post("/api/music-tracks/database", json={
        "action": "extractAndStore",
        "data": {"feedUrls": [ALBUM_FEED_URL, "https://feeds.test/gone.xml"]},
    })

    body = resp.json()
    assert body["summary"] == {"totalFeeds": 2, "successfulFeeds": 1, "failedFeeds": 1, "totalTracksStored": 2}
    assert body["errors"][0]["feedUrl"] == "https://feeds.test/gone.xml"
    assert body["statistics"]["totalTracks"] == 2


def test_extract_and_store_requires_feed_urls(client):
    resp = client.post("/api/music-tracks/database", json={"action": "extractAndStore", "data": {}})
    assert resp.status_code == 400


def test_update_track(client, track_store):
    track = track_store.add_track({"title": "Track 1", "artist": "A", "feedGuid": "f", "itemGuid": "i"})

    resp = client.post("/api/music-tracks/database", json={
        "action": "updateTrack",
        "data": {"trackId": track["id"], "updates": {"title": "Real Title"}},
    })

    assert resp.json()["data"]["title"] == "Real Title"
    missing = client.post("/api/music-tracks/database", json={
        "action": "updateTrack", "data": {"trackId": "nope", "updates": {}},
    })
    assert missing.status_code == 404
    bad = client.post("/api/music-tracks/database", json={"action": "updateTrack", "data": {}})
    assert bad.status_code == 400


def test_invalid_action(client):
    resp = client.post("/api/music-tracks/database", json={"action": "dropEverything"})

    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid action"


# --- feeds admin ---

def test_migrate_and_list_feeds(client):
    resp = client.post("/api/admin/migrate-feeds")

    assert resp.json()["success"] is True
    assert resp.json()["results"]["migrated"] == 13
    assert resp.json()["results"]["errors"] == 0
    assert client.get("/api/feeds").json()["total"] == 13

    again = client.post("/api/admin/migrate-feeds").json()
    assert again["results"]["skipped"] == 13


def test_add_and_remove_feed(client):
    resp = client.post("/api/feeds", json={"url": ALBUM_FEED_URL, "type": "album"})
    assert resp.status_code == 201
    feed_id = resp.json()["feed"]["id"]

    assert client.post("/api/feeds", json={"url": ALBUM_FEED_URL}).status_code == 409
    assert client.post("/api/feeds", json={"url": "ftp://nope"}).status_code == 400
    assert client.post("/api/feeds", json={"url": "https://a.test/x.xml", "type": "video"}).status_code == 400

    assert client.delete(f"/api/feeds/{feed_id}").json() == {"success": True}
    assert client.delete(f"/api/feeds/{feed_id}").status_code == 404


# --- resolution ---

def test_resolve_music_track(client):
    body = client.get("/api/resolve-music-track", params={"feedGuid": "album-feed-guid", "itemGuid": "item-guid-1"}).json()

    assert body["success"] is True
    assert body["track"]["audioUrl"] == "https://cdn.test/stay-awhile.mp3"


def test_resolve_music_track_failure(client):
    body = client.get("/api/resolve-music-track", params={"feedGuid": "nope", "itemGuid": "x"}).json()

    assert body["success"] is False
    assert body["reason"] == "feed-not-found"
    assert body["feedGuid"] == "nope"


def test_resolve_music_track_requires_params(client):
    assert client.get("/api/resolve-music-track", params={"feedGuid": "x"}).status_code == 400


def test_add_playlist_streams_progress(client, fake_index, track_store):
    fake_index.feeds["feed-a"] = {"id": 42, "title": "Feed A", "author": "Artist A"}
    fake_index.episodes["track-a1"] = {"title": "A1", "enclosureUrl": "https://cdn.test/a1.mp3"}
    fake_index.episodes["track-a2"] = {"title": "A2", "enclosureUrl": "https://cdn.test/a2.mp3"}

    resp = client.post("/api/add-playlist-to-database", json={"playlistUrl": PLAYLIST_URL})

    assert resp.headers["content-type"].startswith("text/event-stream")
    events = _events(resp)
    assert events[0]["info"]["playlist"] == "Homegrown Hits"
    assert [e["track"]["title"] for e in events if "track" in e] == ["A1", "A2"]
    assert events[-1]["summary"]["resolved"] == 2
    assert events[-1]["summary"]["failed"] == 1
    assert len(track_store.tracks) == 2


def test_add_playlist_reports_fetch_errors(client):
    resp = client.post("/api/add-playlist-to-database", json={"playlistUrl": "https://feeds.test/missing.xml"})

    events = _events(resp)
    assert len(events) == 1
    assert events[0]["error"].startswith("Playlist import failed")


def test_add_playlist_requires_url(client):
    assert client.post("/api/add-playlist-to-database", json={}).status_code == 400


# --- podcast index passthrough ---

def test_podcastindex_episodes(client):
    body = client.get("/api/podcastindex", params={"feedUrl": ALBUM_FEED_URL}).json()

    assert body["feed"]["id"] == 920666
    assert body["items"][0]["guid"] == "item-guid-1"


def test_podcastindex_requires_feed_url(client):
    assert client.get("/api/podcastindex").status_code == 400


def test_podcastindex_without_credentials(client, monkeypatch):
    monkeypatch.setattr(config, "PODCAST_INDEX_API_KEY", None)

    assert client.get("/api/podcastindex", params={"feedUrl": ALBUM_FEED_URL}).status_code == 503


def test_artwork(client):
    body = client.get("/api/artwork", params={"feedGuid": "album-feed-guid", "itemGuid": "item-guid-1"}).json()
    assert body["artwork"] == "https://ableandthewolf.com/track1.jpg"

    assert client.get("/api/artwork", params={"feedGuid": "unknown"}).status_code == 404
    assert client.get("/api/artwork").status_code == 400


def test_unhandled_errors_return_500(tmp_path):
    def broken_store():
        raise RuntimeError("disk on fire")

    app.dependency_overrides[get_track_store] = broken_store
    try:
        with TestClient(app, raise_server_exceptions=False) as c:
            resp = c.get("/api/music-tracks/database")
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 500
    assert resp.json()["error"] == "Internal server error"
