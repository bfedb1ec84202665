import re

_URL_PATTERNS = [
    re.compile(r"store\.steampowered\.com/app/(\d+)", re.IGNORECASE),
    re.compile(r"steamcommunity\.com/app/(\d+)", re.IGNORECASE),
    re.compile(r"steam://run/(\d+)", re.IGNORECASE),
    re.compile(r"/app/(\d+)", re.IGNORECASE),
]
_NUMERIC = re.compile(r"^\d+$")


def parse_source_ref(source_ref: str) -> int | None:
    """
    Extract a catalog id from a bare id or a store/community URL.

    Returns None when ``source_ref`` does not contain an id, in which case
    callers treat it as a title.
    """
    ref = source_ref.strip()
    if _NUMERIC.match(ref):
        value = int(ref)
        return value if value > 0 else None

    for pattern in _URL_PATTERNS:
        match = pattern.search(ref)
        if match:
            value = int(match.group(1))
            if value > 0:
                return value
    return None
