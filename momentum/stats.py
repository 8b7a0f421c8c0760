import os
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from momentum.models import CompletionHistory, DayTrend, StatsResponse
from momentum.timefmt import format_focus_time


def _get_timezone():
    name = os.environ.get("MOMENTUM_TZ")
    return ZoneInfo(name) if name else timezone.utc


def compute_stats(history: list[CompletionHistory], now: datetime, tz=None,
                  chain_id: Optional[str] = None) -> StatsResponse:
    """Today's sessions and a 7-day trend, bucketed by local day of completion."""
    tz = tz or _get_timezone()
    today_start = now.astimezone(tz).replace(hour=0, minute=0, second=0, microsecond=0)

    day_buckets = defaultdict(list)
    for record in history:
        if chain_id and record.chain_id != chain_id:
            continue
        day_key = record.completed_at.astimezone(tz).strftime("%Y-%m-%d")
        day_buckets[day_key].append(record)

    last_7_days = []
    for d in range(7):
        day = today_start - timedelta(days=d)
        records = day_buckets.get(day.strftime("%Y-%m-%d"), [])
        last_7_days.append(DayTrend(
            date=day.strftime("%d-%m-%Y"),
            session_count=len(records),
            successful_sessions=sum(1 for r in records if r.was_successful),
            focus_seconds=sum(r.actual_focus_time for r in records),
        ))

    today = last_7_days[0]
    return StatsResponse(
        today_sessions=today.session_count,
        today_successful_sessions=today.successful_sessions,
        today_focus_seconds=today.focus_seconds,
        today_focus_display=format_focus_time(today.focus_seconds),
        last_7_days=last_7_days,
    )
