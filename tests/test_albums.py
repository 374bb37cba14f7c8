import json

import pytest

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


def _album_entry(feed_id, title, track_count, artist="Able and The Wolf", tier="album", status="success"):
    return {
        "id": feed_id,
        "originalUrl": f"https://feeds.test/{feed_id}.xml",
        "type": "album",
        "tier": tier,
        "parseStatus": status,
        "lastParsed": "2025-01-01T00:00:00+00:00",
        "parsedData": {"album": {
            "title": title,
            "artist": artist,
            "description": "",
            "coverArt": f"https://cdn.test/{feed_id}.jpg",
            "releaseDate": "Fri, 01 Sep 2023 12:00:00 GMT",
            "tracks": [
                {"title": f"Song {n}", "duration": "3:00", "url": f"https://cdn.test/{feed_id}-{n}.mp3", "trackNumber": n}
                for n in range(1, track_count + 1)
            ],
            "podroll": [],
            "funding": [{"url": "https://support.test", "message": "Tip"}],
        }},
    }


@pytest.fixture
def parsed():
    return {
        "feeds": [
            _album_entry("full-album", "Stay Awhile", 8, tier="featured"),
            _album_entry("ep", "Bloodshot Lies", 4),
            _album_entry("single", "Ring That Bell", 1, artist="J-Dog"),
            _album_entry("broken", "Broken", 3, status="error"),
            _album_entry("dupe", "stay awhile", 8, artist="ABLE AND THE WOLF"),
        ],
        "lastUpdated": "2025-01-01T00:00:00+00:00",
    }


def test_extract_albums_skips_failed_feeds(parsed):
    albums = extract_albums(parsed)

    assert [a["feedId"] for a in albums] == ["full-album", "ep", "single", "dupe"]
    first = albums[0]
    assert first["id"] == "stay-awhile"
    assert first["feedUrl"] == "https://feeds.test/full-album.xml"
    assert first["tier"] == "featured"
    assert first["podroll"] is None
    assert first["funding"] == [{"url": "https://support.test", "message": "Tip"}]
    assert first["tracks"][0] == {
        "title": "Song 1",
        "duration": "3:00",
        "url": "https://cdn.test/full-album-1.mp3",
        "trackNumber": 1,
        "subtitle": "",
        "summary": "",
        "image": "",
        "explicit": False,
        "keywords": [],
    }


def test_dedupe_albums_by_title_and_artist(parsed):
    unique = dedupe_albums(extract_albums(parsed))

    assert [a["feedId"] for a in unique] == ["full-album", "ep", "single"]


@pytest.mark.parametrize("kind, expected", [
    ("all", ["full-album", "ep", "single", "dupe"]),
    ("albums", ["full-album", "dupe"]),
    ("eps", ["ep"]),
    ("singles", ["single"]),
    ("playlist", ["full-album", "ep", "dupe"]),
])
def test_filter_albums_by_kind(parsed, kind, expected):
    albums = filter_albums(extract_albums(parsed), kind=kind)
    assert [a["feedId"] for a in albums] == expected


def test_filter_albums_by_tier_and_feed(parsed):
    albums = extract_albums(parsed)

    assert [a["feedId"] for a in filter_albums(albums, tier="featured")] == ["full-album"]
    assert [a["feedId"] for a in filter_albums(albums, tier="featured", tier_feed_ids={"ep"})] == ["ep"]
    assert [a["feedId"] for a in filter_albums(albums, feed_id="single")] == ["single"]


def test_paginate():
    items = list(range(10))

    assert paginate(items, 0, 3) == [0, 1, 2]
    assert paginate(items, 8, 3) == [8, 9]
    assert paginate(items, 4, 0) == [4, 5, 6, 7, 8, 9]
    assert paginate(items, 20, 5) == []


def test_find_album(parsed):
    albums = extract_albums(parsed)

    assert find_album(albums, "stay-awhile")["feedId"] == "full-album"
    assert find_album(albums, "Ring That Bell")["feedId"] == "single"
    assert find_album(albums, "nope") is None


def test_load_parsed_feeds_errors(tmp_path):
    with pytest.raises(ParsedFeedsMissing):
        load_parsed_feeds(tmp_path / "missing.json")

    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ParsedFeedsInvalid):
        load_parsed_feeds(bad)

    wrong = tmp_path / "wrong.json"
    wrong.write_text(json.dumps({"albums": []}))
    with pytest.raises(ParsedFeedsInvalid):
        load_parsed_feeds(wrong)


def test_load_parsed_feeds_is_cached(tmp_path, parsed):
    path = tmp_path / "parsed-feeds.json"
    path.write_text(json.dumps(parsed))

    first = load_parsed_feeds(path)

    assert load_parsed_feeds(path) is first
    assert load_parsed_feeds(path, max_age=0) is not first
