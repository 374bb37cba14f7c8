from utils.normalize import track_key

# Fields that are never copied from a later duplicate onto the kept record
_IDENTITY_FIELDS = {"id", "discoveredAt"}


def _is_empty(value):
    if isinstance(value, bool):
        return False
    return value is None or value == "" or value == 0 or value == [] or value == {}


def merge_track(existing, track):
    """Fill the empty fields of `existing` from `track`. Returns the names of filled fields."""
    filled = []
    for field, value in track.items():
        if field in _IDENTITY_FIELDS or _is_empty(value):
            continue
        if _is_empty(existing.get(field)):
            existing[field] = value
            filled.append(field)
    return filled


def combine_and_deduplicate_tracks(track_lists):
    """Merge tracks sharing a feedGuid/itemGuid pair. Tracks without one are all kept."""
    merged = {}
    unique = []

    for track in track_lists:
        key = track_key(track)

        if key[0] != "guid":
            unique.append(dict(track))
        elif key not in merged:
            merged[key] = dict(track)
            unique.append(merged[key])
        else:
            merge_track(merged[key], track)

    return unique
