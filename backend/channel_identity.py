"""
Channel Identity

Derives stable channel identifiers that survive repeated imports of the same
provider feed, plus the name normalization shared with fuzzy matching.

    tvg:<declared id>      when the playlist declares a tvg-id
    hash:<16 hex chars>    sha256 of normalized name + canonical stream key
"""
import re
import hashlib
from typing import Optional
from urllib.parse import urlsplit

TVG_PREFIX = "tvg:"
HASH_PREFIX = "hash:"
HASH_LENGTH = 16

# Quality / edition markers dropped from names
QUALITY_TOKENS = ("hd", "sd", "fhd", "uhd", "4k", "hevc", "h.264", "h264", "+1", "+2")

_TOKEN_ALTERNATION = "|".join(re.escape(t) for t in QUALITY_TOKENS)
_BRACKETED_TOKEN_RE = re.compile(rf"[\(\[]\s*(?:{_TOKEN_ALTERNATION})\s*[\)\]]")
_STANDALONE_TOKEN_RE = re.compile(rf"(?<![a-z0-9])(?:{_TOKEN_ALTERNATION})(?![a-z0-9])")
_WHITESPACE_RE = re.compile(r"\s+")

# Path tokens that change between refreshes (timestamps, session hashes)
_HEX_TOKEN_RE = re.compile(r"[0-9a-f]{32,}", re.IGNORECASE)
_DIGIT_RUN_RE = re.compile(r"\d{10,}")
_VARIABLE_PLACEHOLDER = "{var}"

LIKELY_SAME_PATH_SIMILARITY = 0.8


def normalize_name(name: str) -> str:
    """
    Normalize a channel name for identity and matching.

    Lowercases, drops quality markers (HD, 4K, +1, ...) standing alone or in
    brackets, removes punctuation and collapses whitespace:
        "BBC One HD"      -> "bbc one"
        "Sky News [FHD]"  -> "sky news"
        "E4 +1"           -> "e4"
    """
    normalized = name.lower()
    normalized = _BRACKETED_TOKEN_RE.sub(" ", normalized)
    normalized = _STANDALONE_TOKEN_RE.sub(" ", normalized)
    normalized = _WHITESPACE_RE.sub(" ", normalized)
    normalized = "".join(c for c in normalized if c.isalnum() or c == " ")
    return _WHITESPACE_RE.sub(" ", normalized).strip()


def extract_stream_key(stream_url: str) -> str:
    """
    Canonical host + path for a stream URL.

    Query strings are dropped and long digit runs / hex tokens in the path
    are replaced with a placeholder, so a mirror URL that differs only by a
    timestamp or session token maps to the same key.
    """
    parts = urlsplit(stream_url)
    host = parts.hostname or ""
    path = _HEX_TOKEN_RE.sub(_VARIABLE_PLACEHOLDER, parts.path)
    path = _DIGIT_RUN_RE.sub(_VARIABLE_PLACEHOLDER, path)
    return f"{host}{path}".lower()


def _short_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def generate_channel_id(tvg_id: Optional[str], name: str, stream_url: str) -> str:
    """Stable id for a channel; deterministic and never random."""
    if tvg_id is not None:
        declared = tvg_id.strip()
        if declared:
            return f"{TVG_PREFIX}{declared}"

    combined = f"{normalize_name(name)}|{extract_stream_key(stream_url)}"
    return f"{HASH_PREFIX}{_short_hash(combined)}"


def string_similarity(a: str, b: str) -> float:
    """Cheap similarity in [0, 1]: containment ratio, else common-prefix ratio."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    longer, shorter = (a, b) if len(a) > len(b) else (b, a)
    if shorter in longer:
        return len(shorter) / len(longer)

    common_prefix = 0
    for x, y in zip(longer, shorter):
        if x != y:
            break
        common_prefix += 1
    return common_prefix / len(longer)


def are_likely_same(a: tuple, b: tuple) -> bool:
    """
    Best-effort duplicate check over (name, stream_url) pairs.

    True when normalized names match, or when both URLs share a host and
    their paths are highly similar. Not used for canonical identity.
    """
    name_a, url_a = a
    name_b, url_b = b

    normalized_a = normalize_name(name_a)
    if normalized_a and normalized_a == normalize_name(name_b):
        return True

    parts_a = urlsplit(url_a)
    parts_b = urlsplit(url_b)
    if parts_a.hostname and parts_a.hostname == parts_b.hostname:
        return string_similarity(parts_a.path, parts_b.path) > LIKELY_SAME_PATH_SIMILARITY

    return False
