import asyncio

import httpx
import pytest

from endpoints import dependencies
from utils import albums, config, podcastindex

PI_BASE_URL = "https://api.podcastindex.test/api/1.0"

ALBUM_FEED_URL = "https://feeds.test/stay-awhile.xml"
PLAYLIST_URL = "https://feeds.test/playlist.xml"

ALBUM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd" xmlns:podcast="https://podcastindex.org/namespace/1.0">
<channel>
  <title>Stay Awhile</title>
  <itunes:author>Able and The Wolf</itunes:author>
  <description>Debut album</description>
  <link>https://ableandthewolf.com</link>
  <language>en</language>
  <pubDate>Fri, 01 Sep 2023 12:00:00 GMT</pubDate>
  <itunes:image href="https://ableandthewolf.com/cover.jpg"/>
  <podcast:guid>album-feed-guid</podcast:guid>
  <podcast:medium>music</podcast:medium>
  <podcast:funding url="https://ableandthewolf.com/support">Support the band</podcast:funding>
  <podcast:value type="lightning" method="keysend">
    <podcast:valueRecipient name="Able and The Wolf" type="node" address="03abc" split="95"/>
    <podcast:valueRecipient name="Podcastindex.org" address="03def" split="5" fee="true"/>
  </podcast:value>
  <podcast:podroll>
    <podcast:remoteItem feedGuid="podroll-feed-guid" feedUrl="https://feeds.test/friends.xml" title="Friends of the Band"/>
  </podcast:podroll>
  <podcast:publisher>
    <podcast:remoteItem medium="publisher" feedGuid="publisher-feed-guid" feedUrl="https://feeds.test/publisher.xml"/>
  </podcast:publisher>
  <item>
    <title>Stay Awhile</title>
    <guid isPermaLink="false">item-guid-1</guid>
    <enclosure url="https://cdn.test/stay-awhile.mp3" type="audio/mpeg" length="1234"/>
    <itunes:duration>00:03:25</itunes:duration>
    <itunes:image href="https://ableandthewolf.com/track1.jpg"/>
    <pubDate>Fri, 01 Sep 2023 12:00:00 GMT</pubDate>
    <description>&lt;p&gt;First &amp;amp; best&lt;/p&gt;</description>
  </item>
  <item>
    <guid isPermaLink="false">item-guid-2</guid>
    <enclosure url="https://cdn.test/untitled.mp3" type="audio/mpeg" length="99"/>
    <itunes:duration>185</itunes:duration>
  </item>
  <item>
    <title>Liner Notes</title>
    <guid isPermaLink="false">item-guid-3</guid>
  </item>
</channel>
</rss>
"""

PLAYLIST_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:podcast="https://podcastindex.org/namespace/1.0">
<channel>
  <title>Homegrown Hits</title>
  <podcast:medium>musicL</podcast:medium>
  <podcast:remoteItem feedGuid="feed-a" itemGuid="track-a1"/>
  <podcast:remoteItem feedGuid="feed-a" itemGuid="track-a2" feedUrl="https://feeds.test/a.xml"/>
  <podcast:remoteItem feedGuid="feed-a" itemGuid="track-a1"/>
  <podcast:remoteItem feedGuid="missing-feed" itemGuid="track-x"/>
  <podcast:remoteItem feedGuid="feed-b" itemGuid=""/>
</channel>
</rss>
"""


PUBLISHER_URL = "https://feeds.test/publisher.xml"

PUBLISHER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd" xmlns:podcast="https://podcastindex.org/namespace/1.0">
<channel>
  <title>Able and The Wolf</title>
  <itunes:author>Able and The Wolf</itunes:author>
  <itunes:image href="https://ableandthewolf.com/artist.jpg"/>
  <podcast:guid>publisher-feed-guid</podcast:guid>
  <podcast:medium>publisher</podcast:medium>
  <podcast:remoteItem medium="music" feedGuid="album-feed-guid" feedUrl="https://feeds.test/stay-awhile.xml"/>
  <podcast:remoteItem medium="music" feedGuid="second-album-guid" feedUrl="https://feeds.test/second.xml"/>
</channel>
</rss>
"""


class FakePodcastIndex:
    """MockTransport handler serving canned Podcast Index and RSS responses."""

    def __init__(self, feeds=None, episodes=None, feed_episodes=None, rss=None):
        self.feeds = feeds or {}
        self.episodes = episodes or {}
        self.feed_episodes = feed_episodes or {}
        self.rss = rss or {}
        self.calls = []

    def __call__(self, request):
        url = str(request.url)
        params = request.url.params
        if url.startswith(PI_BASE_URL):
            endpoint = request.url.path.split("/api/1.0/", 1)[1]
            self.calls.append(endpoint)
            if endpoint == "podcasts/byguid":
                return httpx.Response(200, json={"status": "true", "feed": self.feeds.get(params["guid"]) or []})
            if endpoint == "episodes/byguid":
                return httpx.Response(200, json={"status": "true", "episode": self.episodes.get(params["guid"]) or []})
            if endpoint == "episodes/byfeedid":
                return httpx.Response(200, json={"status": "true", "items": self.feed_episodes.get(params["id"], [])})
            if endpoint == "episodes/byfeedurl":
                feed = next((f for f in self.feeds.values() if f.get("url") == params["url"]), None)
                if feed is None:
                    return httpx.Response(400, json={"status": "false", "description": "Feed url not found."})
                items = self.feed_episodes.get(str(feed["id"]), [])
                return httpx.Response(200, json={"status": "true", "feed": feed, "items": items})
            return httpx.Response(404)

        self.calls.append(url)
        if url in self.rss:
            return httpx.Response(200, text=self.rss[url])
        return httpx.Response(404, text="not found")


def run_with_client(handler, make_coro):
    async def main():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await make_coro(client)
    return asyncio.run(main())


@pytest.fixture(autouse=True)
def clean_caches():
    albums.clear_cache()
    podcastindex.clear_artwork_cache()
    dependencies.get_track_store.cache_clear()
    dependencies.get_feed_store.cache_clear()
    yield
    albums.clear_cache()
    podcastindex.clear_artwork_cache()


@pytest.fixture
def pi_config(monkeypatch):
    monkeypatch.setattr(config, "PODCAST_INDEX_API_KEY", "test-key")
    monkeypatch.setattr(config, "PODCAST_INDEX_API_SECRET", "test-secret")
    monkeypatch.setattr(config, "PODCAST_INDEX_BASE_URL", PI_BASE_URL)
    monkeypatch.setattr(config, "RESOLVE_DELAY_SECONDS", 0)
    monkeypatch.setattr(config, "RESOLVE_BACKOFF_SECONDS", 0)


@pytest.fixture
def pi_feed():
    return {
        "id": 920666,
        "title": "Stay Awhile",
        "author": "Able and The Wolf",
        "url": ALBUM_FEED_URL,
        "artwork": "https://ableandthewolf.com/cover.jpg",
    }


@pytest.fixture
def pi_episode():
    return {
        "id": 1,
        "title": "Stay Awhile",
        "guid": "item-guid-1",
        "enclosureUrl": "https://cdn.test/stay-awhile.mp3",
        "duration": 205,
        "image": "https://ableandthewolf.com/track1.jpg",
        "datePublished": 1693569600,
        "description": "<p>First</p>",
        "explicit": 0,
    }
