import html
import re
from typing import Optional

PLACEHOLDER_TITLES = {"unknown title", "unknown track", "untitled"}
PLACEHOLDER_ARTISTS = {"unknown artist", "unknown", ""}
_PLACEHOLDER_TRACK_RE = re.compile(r"^track \d+$", re.IGNORECASE)

# Byte sequences that show up when UTF-8 text was decoded as cp1252/latin-1
_MOJIBAKE_MARKERS = ("Ã", "â€", "ðŸ", "Â", "âœ", "â„")


def normalize_item_guid(value) -> Optional[str]:
    """itemGuid is stored either as a plain string or as {"_": guid, "isPermaLink": ...}."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("_") or value.get("#text") or value.get("guid")
        if value is None:
            return None
    value = str(value).strip()
    return value or None


def parse_duration(value) -> Optional[int]:
    """Seconds from a number, a numeric string, "MM:SS" or "HH:MM:SS"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(round(value)) if value >= 0 else None

    text = str(value).strip()
    if not text:
        return None
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return int(round(float(text)))

    parts = text.split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        numbers = [int(p.strip()) for p in parts]
    except ValueError:
        return None
    if any(n < 0 for n in numbers):
        return None

    seconds = 0
    for n in numbers:
        seconds = seconds * 60 + n
    return seconds


def format_duration(seconds) -> str:
    seconds = parse_duration(seconds) or 0
    return f"{seconds // 60}:{seconds % 60:02d}"


def normalize_text(text) -> str:
    if not text:
        return ""
    text = str(text).lower().strip()
    text = re.sub(r"[^\w\s]", "", text)
    return re.sub(r"\s+", " ", text).strip()


def fix_encoding(text):
    if not isinstance(text, str) or not any(m in text for m in _MOJIBAKE_MARKERS):
        return text
    for codec in ("cp1252", "latin-1"):
        try:
            return text.encode(codec).decode("utf-8")
        except UnicodeError:
            continue
    return text


def clean_html(text) -> Optional[str]:
    if not text:
        return None
    text = re.sub(r"<[^>]*>", "", str(text))
    text = html.unescape(text).replace("\xa0", " ")
    return text.strip() or None


def generate_slug(title) -> str:
    slug = str(title or "").lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def is_placeholder_title(title) -> bool:
    if not title:
        return True
    title = str(title).strip()
    return title.lower() in PLACEHOLDER_TITLES or bool(_PLACEHOLDER_TRACK_RE.match(title))


def is_placeholder_artist(artist) -> bool:
    return not artist or str(artist).strip().lower() in PLACEHOLDER_ARTISTS


def track_key(t):
    """Identity of a track: its GUID pair when it has one, otherwise everything that tells it apart."""
    feed_guid = (t.get("feedGuid") or "").strip().lower()
    item_guid = (normalize_item_guid(t.get("itemGuid")) or "").lower()
    if feed_guid and item_guid:
        return ("guid", feed_guid, item_guid)
    audio_url = (t.get("audioUrl") or t.get("enclosureUrl") or "").strip()
    return ("text", feed_guid, normalize_text(t.get("title")), normalize_text(t.get("artist")), audio_url)
