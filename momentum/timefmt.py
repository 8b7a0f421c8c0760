"""Time formatting and elapsed-time helpers. All internal arithmetic is in milliseconds."""
from datetime import datetime, timedelta, timezone

_ONE_MS = timedelta(milliseconds=1)


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_ms(later: datetime, earlier: datetime) -> int:
    return (ensure_utc(later) - ensure_utc(earlier)) // _ONE_MS


def seconds_until(expires_at: datetime, now: datetime) -> int:
    return max(0, elapsed_ms(expires_at, now) // 1000)


def is_expired(expires_at: datetime, now: datetime) -> bool:
    return ensure_utc(now) > ensure_utc(expires_at)


def format_time(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins}m"


def format_duration(seconds: int) -> str:
    minutes, secs = divmod(seconds, 60)
    return f"{minutes:02d}:{secs:02d}"


def _split(seconds: int) -> tuple[int, int, int]:
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return hours, minutes, secs


def format_focus_time(seconds: int) -> str:
    hours, minutes, secs = _split(seconds)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_focus_time_compact(seconds: int) -> str:
    hours, minutes, secs = _split(seconds)
    if hours > 0:
        return f"{hours}h{minutes}m{secs}s"
    if minutes > 0:
        return f"{minutes}m{secs}s"
    return f"{secs}s"
