import json
import logging
import math
import os
import re
import shutil
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

from utils.make import make_track, now_iso
from utils.merge import merge_track
from utils.normalize import track_key

logger = logging.getLogger(__name__)


class FeedExistsError(ValueError):
    pass


def _timestamp():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")


def read_json(path: Path, default=None):
    path = Path(path)
    if not path.exists():
        return default
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_json(path: Path, data, backup=False):
    """Atomic write; with backup=True the previous file is copied to <dir>/backups/ first."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if backup and path.exists():
        backup_dir = path.parent / "backups"
        backup_dir.mkdir(exist_ok=True)
        backup_path = backup_dir / f"{path.stem}-backup-{_timestamp()}{path.suffix}"
        shutil.copyfile(path, backup_path)
        logger.info(f"✅ Created backup: {backup_path}")

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def write_report(data_dir: Path, name: str, payload) -> Path:
    report_path = Path(data_dir) / "reports" / f"{name}-{_timestamp()}.json"
    write_json(report_path, payload)
    logger.info(f"📝 Report written to {report_path}")
    return report_path


class MusicTrackStore:
    """The music-tracks.json "database"."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._data = None
        self._index = None

    def load(self, force=False):
        with self._lock:
            if self._data is not None and not force:
                return self._data
            raw = read_json(self.path, default=[])
            if isinstance(raw, list):
                raw = {"musicTracks": raw}
            raw.setdefault("musicTracks", [])
            raw.setdefault("extractions", [])
            raw.setdefault("metadata", {})
            self._data = raw
            self._index = None
            return self._data

    def save(self, backup=False):
        with self._lock:
            data = self.load()
            data["metadata"].update({
                "lastUpdated": now_iso(),
                "totalTracks": len(data["musicTracks"]),
                "version": 1,
            })
            write_json(self.path, data, backup=backup)

    @property
    def tracks(self):
        return self.load()["musicTracks"]

    def get_track(self, track_id):
        return next((t for t in self.tracks if t.get("id") == track_id), None)

    def _identity_index(self):
        if self._index is None:
            self._index = {}
            for t in self.tracks:
                self._index.setdefault(track_key(t), t)
        return self._index

    def find_track(self, track):
        """The stored track with the same identity as `track`, whatever its stored id."""
        with self._lock:
            found = self._identity_index().get(track_key(track))
            if found is None and track.get("id"):
                found = self.get_track(track["id"])
            return found

    def add_track(self, raw, save=True):
        """Add or merge one track. Re-adding the same track only fills its empty fields."""
        with self._lock:
            track = make_track(raw)
            existing = self.find_track(track)
            if existing is None:
                self.tracks.append(track)
                self._identity_index().setdefault(track_key(track), track)
                result = track
            else:
                if merge_track(existing, track):
                    existing["lastUpdated"] = now_iso()
                    # Filled fields can change the identity of a track that had no GUID pair
                    self._index = None
                result = existing
            if save:
                self.save()
            return result

    def add_tracks(self, raws):
        with self._lock:
            stored = [self.add_track(raw, save=False) for raw in raws]
            self.save()
            return stored

    def update_track(self, track_id, updates):
        with self._lock:
            track = self.get_track(track_id)
            if track is None:
                return None
            updates = {k: v for k, v in updates.items() if k != "id"}
            track.update(updates)
            self._index = None
            track["lastUpdated"] = now_iso()
            self.save()
            return track

    def replace_tracks(self, tracks, backup=True):
        with self._lock:
            self.load()["musicTracks"] = list(tracks)
            self._index = None
            self.save(backup=backup)

    def search(self, filters=None, page=1, page_size=20):
        filters = filters or {}
        page = max(page, 1)
        page_size = max(page_size, 1)

        def matches(t):
            if filters.get("artist") and filters["artist"].lower() not in (t.get("artist") or "").lower():
                return False
            if filters.get("title") and filters["title"].lower() not in (t.get("title") or "").lower():
                return False
            for field in ("feedId", "episodeId", "source"):
                if filters.get(field) and str(t.get(field) or "") != filters[field]:
                    return False
            if "hasV4VData" in filters and filters["hasV4VData"] is not None:
                if bool(t.get("valueForValue")) != filters["hasV4VData"]:
                    return False
            return True

        found = [t for t in self.tracks if matches(t)]
        start = (page - 1) * page_size
        return {
            "tracks": found[start:start + page_size],
            "total": len(found),
            "page": page,
            "pageSize": page_size,
            "totalPages": math.ceil(len(found) / page_size),
            "filters": filters,
        }

    def statistics(self):
        tracks = self.tracks
        sources = {}
        for t in tracks:
            sources[t.get("source") or "unknown"] = sources.get(t.get("source") or "unknown", 0) + 1
        return {
            "totalTracks": len(tracks),
            "totalEpisodes": len({t.get("episodeId") or t.get("episodeGuid") for t in tracks} - {None, ""}),
            "totalFeeds": len({t.get("feedGuid") or t.get("feedUrl") for t in tracks} - {None, ""}),
            "tracksWithAudio": sum(1 for t in tracks if t.get("audioUrl")),
            "tracksWithV4VData": sum(1 for t in tracks if t.get("valueForValue")),
            "tracksMissingDuration": sum(1 for t in tracks if not t.get("duration")),
            "sources": sources,
            "lastUpdated": self.load()["metadata"].get("lastUpdated"),
        }

    def save_extraction_result(self, result):
        with self._lock:
            entry = dict(result)
            entry.setdefault("extractedAt", now_iso())
            self.load()["extractions"].append(entry)
            self.save()
            return entry


def generate_feed_id(url: str) -> str:
    parsed = urlparse(url)
    host = re.sub(r"[^a-zA-Z0-9]", "-", parsed.hostname or "feed")
    path = re.sub(r"[^a-zA-Z0-9_-]", "-", parsed.path).strip("-")
    return re.sub(r"-+", "-", f"{host}-{path}".lower()).strip("-")


class FeedStore:
    """The managed feed list in feeds.json."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _load(self):
        data = read_json(self.path, default=None) or {}
        return data.get("feeds", [])

    def _save(self, feeds):
        write_json(self.path, {"feeds": feeds, "lastUpdated": now_iso(), "version": 1})

    def all_feeds(self):
        with self._lock:
            return self._load()

    def get_feed(self, feed_id):
        return next((f for f in self.all_feeds() if f["id"] == feed_id), None)

    def add_feed(self, url, feed_type="album", cdn_url=None, tier=None):
        with self._lock:
            feeds = self._load()
            feed_id = generate_feed_id(url)
            if any(f["id"] == feed_id or f["originalUrl"] == url for f in feeds):
                raise FeedExistsError(f"Feed already exists: {url}")
            stamp = now_iso()
            feed = {
                "id": feed_id,
                "originalUrl": url,
                "cdnUrl": cdn_url if cdn_url and cdn_url != url else None,
                "type": feed_type,
                "tier": tier or feed_type,
                "status": "pending",
                "addedAt": stamp,
                "updatedAt": stamp,
            }
            feeds.append(feed)
            self._save(feeds)
            return feed

    def update_feed(self, feed_id, **changes):
        with self._lock:
            feeds = self._load()
            for feed in feeds:
                if feed["id"] == feed_id:
                    feed.update(changes)
                    feed["updatedAt"] = now_iso()
                    self._save(feeds)
                    return feed
            return None

    def remove_feed(self, feed_id):
        with self._lock:
            feeds = self._load()
            kept = [f for f in feeds if f["id"] != feed_id]
            if len(kept) == len(feeds):
                return False
            self._save(kept)
            return True

    def active_feed_urls(self):
        return [f.get("cdnUrl") or f["originalUrl"] for f in self.all_feeds() if f.get("status") == "active"]


