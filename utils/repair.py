from utils.make import make_track
from utils.merge import combine_and_deduplicate_tracks


def repair_tracks(tracks):
    """
    Normalize every stored track (itemGuid objects, string durations, mojibake,
    missing ids) and drop duplicates. Returns (tracks, stats).
    """
    stats = {
        "before": len(tracks),
        "guidsNormalized": 0,
        "durationsParsed": 0,
        "encodingFixed": 0,
        "idsAssigned": 0,
        "duplicatesRemoved": 0,
    }

    repaired = []
    for raw in tracks:
        track = make_track(raw)
        if isinstance(raw.get("itemGuid"), dict):
            stats["guidsNormalized"] += 1
        if isinstance(raw.get("duration"), str):
            stats["durationsParsed"] += 1
        if track["title"] != (raw.get("title") or "").strip() or track["artist"] != (raw.get("artist") or "").strip():
            stats["encodingFixed"] += 1
        if not raw.get("id"):
            stats["idsAssigned"] += 1
        repaired.append(track)

    unique = combine_and_deduplicate_tracks(repaired)
    stats["duplicatesRemoved"] = len(repaired) - len(unique)
    stats["after"] = len(unique)
    return unique, stats
