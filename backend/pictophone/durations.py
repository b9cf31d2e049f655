"""Duration strings ("1d2h30m") and naive-UTC timestamps."""

import re
from datetime import datetime, timedelta, timezone

_DURATION_RE = re.compile(r'(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?')


def utcnow() -> datetime:
    # Stored columns are naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_duration(value: str) -> timedelta:
    if not value or not isinstance(value, str) or not value.strip():
        raise ValueError('Duration must be a non-empty string')
    text = value.strip().lower()
    match = _DURATION_RE.fullmatch(text)
    if not match:
        raise ValueError(f'Invalid duration format: {value!r}. Use e.g. "1h", "30m", "2h30m", "1d2h30m"')
    days, hours, minutes, seconds = (int(part or 0) for part in match.groups())
    delta = timedelta(days=days, hours=hours, minutes=minutes, seconds=seconds)
    if not delta:
        raise ValueError('Duration must be greater than 0')
    return delta


def format_duration(delta: timedelta, round_off: bool = True) -> str:
    """Inverse of parse_duration. With round_off, drop units that no longer matter."""
    total = int(delta.total_seconds())
    if total < 0:
        return '-' + format_duration(-delta, round_off)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)

    parts = []
    if days:
        parts.append(f'{days}d')
    if round_off and days > 2:
        return ''.join(parts)
    if hours:
        parts.append(f'{hours}h')
    if round_off and hours > 9:
        return ''.join(parts)
    if minutes:
        parts.append(f'{minutes}m')
    if round_off and minutes > 9:
        return ''.join(parts)
    if seconds:
        parts.append(f'{seconds}s')
    return ''.join(parts) or '0s'
