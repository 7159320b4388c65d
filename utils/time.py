import time
from datetime import datetime, timezone

def utc_ms() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)

def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)

def parse_duration(value) -> int:
    """Duration in ms from an int or a string like '500ms', '30s', '30m', '1h'."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    s = str(value).strip()
    if s.isdigit():
        return int(s)
    if s.endswith("ms"):
        return int(s[:-2])
    if s.endswith("s"):
        return int(s[:-1]) * 1000
    if s.endswith("m"):
        return int(s[:-1]) * 60_000
    if s.endswith("h"):
        return int(s[:-1]) * 3_600_000
    raise ValueError(f"unknown duration: {value!r}")
