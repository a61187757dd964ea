"""Duration and timestamp helpers for the Monitoring API formats."""
import re
from datetime import datetime, timedelta, timezone

from gcm_exporter.errors import TimestampError

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?"
    r"([Zz]|[+-]\d{2}:\d{2})$"
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration string such as "240s", "1h30m" or "1.5m".

    Raises:
        ValueError: if the string is not a valid duration
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    sign = 1.0
    if text[0] in "+-":
        if text[0] == "-":
            sign = -1.0
        text = text[1:]

    if text == "0":
        return timedelta(0)

    seconds = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART_RE.match(text, pos)
        if not match:
            raise ValueError(f"invalid duration {value!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0:
        raise ValueError(f"invalid duration {value!r}")

    return timedelta(seconds=sign * seconds)


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp, truncating sub-microsecond precision."""
    match = _TIMESTAMP_RE.match(value or "")
    if not match:
        raise TimestampError(f"invalid RFC 3339 timestamp {value!r}")

    date_part, time_part, fraction, zone = match.groups()
    fraction = (fraction or "0")[:6].ljust(6, "0")
    if zone in ("Z", "z"):
        zone = "+00:00"

    try:
        parsed = datetime.fromisoformat(f"{date_part}T{time_part}.{fraction}{zone}")
    except ValueError as e:
        raise TimestampError(f"invalid RFC 3339 timestamp {value!r}: {e}") from e

    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format an aware datetime as the UTC RFC 3339 string the API expects."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
