import hashlib
from datetime import datetime, timezone

from utils.normalize import fix_encoding, normalize_item_guid, parse_duration, track_key


def now_iso():
    return datetime.now(timezone.utc).isoformat()


def make_track_id(t):
    key = "|".join(track_key(t))
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]


def make_track(t):
    track = dict(t)
    track.update({
        "title": fix_encoding((t.get("title") or "").strip()),
        "artist": fix_encoding((t.get("artist") or "").strip()),
        "album": fix_encoding(t.get("album") or t.get("feedTitle") or ""),
        "episodeId": t.get("episodeId") or "",
        "episodeTitle": t.get("episodeTitle") or "",
        "episodeDate": t.get("episodeDate"),
        "episodeGuid": normalize_item_guid(t.get("episodeGuid")),
        "feedGuid": (t.get("feedGuid") or "").strip() or None,
        "itemGuid": normalize_item_guid(t.get("itemGuid")),
        "publisherFeedGuid": t.get("publisherFeedGuid"),
        "feedUrl": t.get("feedUrl") or "",
        "feedId": str(t.get("feedId") or ""),
        "feedTitle": fix_encoding(t.get("feedTitle") or ""),
        "audioUrl": t.get("audioUrl") or t.get("enclosureUrl") or None,
        "image": t.get("image") or t.get("artworkUrl") or None,
        "duration": parse_duration(t.get("duration")) or 0,
        "startTime": parse_duration(t.get("startTime")) or 0,
        "endTime": parse_duration(t.get("endTime")) or 0,
        "description": t.get("description"),
        "explicit": bool(t.get("explicit", False)),
        "valueForValue": t.get("valueForValue"),
        "source": t.get("source") or "unknown",
        "extractionMethod": t.get("extractionMethod") or "",
        "discoveredAt": t.get("discoveredAt") or now_iso(),
        "lastUpdated": t.get("lastUpdated") or now_iso(),
    })
    track.pop("enclosureUrl", None)
    track.pop("artworkUrl", None)
    if not track["endTime"] and track["duration"]:
        track["endTime"] = track["startTime"] + track["duration"]
    track["id"] = t.get("id") or make_track_id(track)
    return track
