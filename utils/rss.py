import html
import logging
import re
from typing import Optional

import feedparser
import httpx

from utils import config
from utils.normalize import clean_html, fix_encoding, format_duration, parse_duration

logger = logging.getLogger(__name__)

# feedparser covers RSS/iTunes structure; the podcast: namespace tags are pulled out with regexes.
_ATTR_RE = re.compile(r"""([\w:.-]+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_ITEM_START_RE = re.compile(r"<item[\s>]", re.IGNORECASE)
_REMOTE_ITEM_RE = re.compile(r"<podcast:remoteItem\b([^>]*?)/?>", re.IGNORECASE)
_PODROLL_RE = re.compile(r"<podcast:podroll\b[^>]*>(.*?)</podcast:podroll>", re.IGNORECASE | re.DOTALL)
_VALUE_RE = re.compile(r"<podcast:value\b([^>]*)>(.*?)</podcast:value>", re.IGNORECASE | re.DOTALL)
_RECIPIENT_RE = re.compile(r"<podcast:valueRecipient\b([^>]*?)/?>", re.IGNORECASE)
_FUNDING_RE = re.compile(r"<podcast:funding\b([^>]*)>(.*?)</podcast:funding>", re.IGNORECASE | re.DOTALL)
_PODCAST_GUID_RE = re.compile(r"<podcast:guid>\s*(.*?)\s*</podcast:guid>", re.IGNORECASE | re.DOTALL)
_MEDIUM_RE = re.compile(r"<podcast:medium>\s*(.*?)\s*</podcast:medium>", re.IGNORECASE | re.DOTALL)


class FeedParseError(ValueError):
    pass


def _attrs(tag_body):
    return {
        name: html.unescape(double or single)
        for name, double, single in _ATTR_RE.findall(tag_body)
    }


def _channel_header(xml_text):
    return _ITEM_START_RE.split(xml_text, maxsplit=1)[0]


def _explicit(value):
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("yes", "true", "explicit")


def parse_remote_items(xml_text):
    remote_items = []
    for match in _REMOTE_ITEM_RE.finditer(xml_text or ""):
        attrs = _attrs(match.group(1))
        feed_guid = (attrs.get("feedGuid") or "").strip()
        item_guid = (attrs.get("itemGuid") or "").strip()
        if not feed_guid or not item_guid:
            continue
        item = {"feedGuid": feed_guid, "itemGuid": item_guid}
        if attrs.get("feedUrl"):
            item["feedUrl"] = attrs["feedUrl"]
        if attrs.get("medium"):
            item["medium"] = attrs["medium"]
        remote_items.append(item)
    return remote_items


def parse_feed_references(xml_text):
    """remoteItems that point at a whole feed (podroll entries, a publisher's albums)."""
    references = []
    for match in _REMOTE_ITEM_RE.finditer(xml_text or ""):
        attrs = _attrs(match.group(1))
        feed_guid = (attrs.get("feedGuid") or "").strip()
        feed_url = (attrs.get("feedUrl") or "").strip()
        if not feed_guid and not feed_url:
            continue
        ref = {"feedGuid": feed_guid or None, "feedUrl": feed_url or None}
        for name in ("itemGuid", "title", "description", "medium"):
            if (attrs.get(name) or "").strip():
                ref[name] = attrs[name].strip()
        references.append(ref)
    return references


def parse_value_recipients(xml_text):
    recipients = []
    match = _VALUE_RE.search(xml_text or "")
    if not match:
        return recipients

    block_attrs = _attrs(match.group(1))
    for r in _RECIPIENT_RE.finditer(match.group(2)):
        attrs = _attrs(r.group(1))
        try:
            split = int(attrs.get("split") or 0)
        except ValueError:
            split = 0
        recipients.append({
            "name": attrs.get("name") or "",
            "type": attrs.get("type") or block_attrs.get("type") or "node",
            "address": attrs.get("address"),
            "split": split,
            "customKey": attrs.get("customKey"),
            "customValue": attrs.get("customValue"),
            "fee": attrs.get("fee", "").lower() == "true",
            "method": block_attrs.get("method"),
        })
    return recipients


def _parse_publisher(header):
    for match in _REMOTE_ITEM_RE.finditer(header):
        attrs = _attrs(match.group(1))
        if attrs.get("medium") == "publisher" and attrs.get("feedGuid"):
            publisher = {"feedGuid": attrs["feedGuid"].strip(), "medium": "publisher"}
            if attrs.get("feedUrl"):
                publisher["feedUrl"] = attrs["feedUrl"]
            return publisher
    return None


def _parse_funding(header):
    return [
        {"url": _attrs(m.group(1)).get("url"), "message": clean_html(m.group(2))}
        for m in _FUNDING_RE.finditer(header)
        if _attrs(m.group(1)).get("url")
    ]


def _entry_to_item(entry, index):
    enclosure = next((e for e in entry.get("enclosures", []) if e.get("href")), {})
    length = str(enclosure.get("length") or "")
    return {
        "title": fix_encoding((entry.get("title") or "").strip()) or f"Track {index}",
        "guid": (entry.get("id") or "").strip() or None,
        "audioUrl": enclosure.get("href"),
        "audioType": enclosure.get("type"),
        "audioLength": int(length) if length.isdigit() else 0,
        "duration": parse_duration(entry.get("itunes_duration")),
        "image": (entry.get("image") or {}).get("href"),
        "pubDate": entry.get("published"),
        "description": clean_html(entry.get("summary")),
        "subtitle": clean_html(entry.get("subtitle")),
        "explicit": _explicit(entry.get("itunes_explicit")),
        "keywords": [t["term"] for t in entry.get("tags", []) if t.get("term")],
    }


def parse_feed(xml_text):
    """
    Parse a Podcasting 2.0 music feed into a plain dict: channel metadata,
    items, remote items (playlist entries), podroll, publisher, value and funding.
    """
    parsed = feedparser.parse(xml_text)
    channel = parsed.get("feed", {})
    entries = parsed.get("entries", [])

    if not channel.get("title") and not entries:
        raise FeedParseError(f"Not a feed: {parsed.get('bozo_exception') or 'no channel or items'}")
    if parsed.get("bozo"):
        logger.warning(f"⚠️ Feed may be malformed: {parsed.get('bozo_exception')}")

    header = _channel_header(xml_text)

    podroll = []
    podroll_match = _PODROLL_RE.search(header)
    if podroll_match:
        podroll = parse_feed_references(podroll_match.group(1))
        header = header.replace(podroll_match.group(0), "")

    publisher = _parse_publisher(header)
    remote_items = [i for i in parse_remote_items(header) if i.get("medium") != "publisher"]
    # Feed-level references without an itemGuid, e.g. the albums listed by a publisher feed
    remote_feeds = [
        r for r in parse_feed_references(header)
        if not r.get("itemGuid") and r.get("medium") != "publisher"
    ]

    title = fix_encoding((channel.get("title") or "").strip())
    artist = (channel.get("author") or "").strip()
    if not artist and " - " in title:
        artist = title.split(" - ", 1)[0].strip()

    guid_match = _PODCAST_GUID_RE.search(header)
    medium_match = _MEDIUM_RE.search(header)

    return {
        "title": title,
        "artist": fix_encoding(artist) or "Unknown Artist",
        "description": clean_html(channel.get("subtitle") or channel.get("summary")) or "",
        "image": (channel.get("image") or {}).get("href"),
        "link": channel.get("link") or "",
        "language": channel.get("language"),
        "explicit": _explicit(channel.get("itunes_explicit")),
        "pubDate": channel.get("published") or channel.get("updated"),
        "podcastGuid": guid_match.group(1) if guid_match else None,
        "medium": medium_match.group(1).lower() if medium_match else None,
        "value": parse_value_recipients(header),
        "funding": _parse_funding(header),
        "podroll": podroll,
        "publisher": publisher,
        "remoteItems": remote_items,
        "remoteFeeds": remote_feeds,
        "items": [_entry_to_item(entry, i) for i, entry in enumerate(entries, start=1)],
    }


def find_item_by_guid(feed, guid) -> Optional[dict]:
    if not guid:
        return None
    guid = guid.strip()
    for item in feed.get("items", []):
        if (item.get("guid") or "") == guid:
            return item
    lowered = guid.lower()
    for item in feed.get("items", []):
        if (item.get("guid") or "").lower() == lowered:
            return item
    return None


def build_album(feed):
    """Album entry in the parsed-feeds.json shape."""
    return {
        "title": feed.get("title") or "Unknown Album",
        "artist": feed.get("artist") or "Unknown Artist",
        "description": feed.get("description") or "",
        "coverArt": feed.get("image"),
        "releaseDate": feed.get("pubDate"),
        "link": feed.get("link"),
        "feedGuid": feed.get("podcastGuid"),
        "medium": feed.get("medium"),
        "language": feed.get("language"),
        "explicit": feed.get("explicit", False),
        "funding": feed.get("funding", []),
        "podroll": feed.get("podroll", []),
        "publisher": feed.get("publisher"),
        "value": feed.get("value", []),
        "tracks": [
            {
                "title": item["title"],
                "duration": format_duration(item.get("duration")),
                "url": item.get("audioUrl") or "",
                "trackNumber": i,
                "subtitle": item.get("subtitle") or "",
                "summary": item.get("description") or "",
                "image": item.get("image") or "",
                "explicit": item.get("explicit", False),
                "keywords": item.get("keywords", []),
                "guid": item.get("guid"),
            }
            for i, item in enumerate(feed.get("items", []), start=1)
        ],
    }


async def fetch_feed_text(client: httpx.AsyncClient, url: str) -> str:
    resp = await client.get(
        url,
        headers={"User-Agent": config.USER_AGENT},
        timeout=config.RSS_TIMEOUT,
        follow_redirects=True,
    )
    resp.raise_for_status()
    return resp.text


async def fetch_feed(client: httpx.AsyncClient, url: str) -> dict:
    return parse_feed(await fetch_feed_text(client, url))
