from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from record_store import RecordStore
from records import RECORD_PERIOD, PeriodRecord
from timeutil import get_local_tz, local_date

RELATIVE_WINDOWS = {
    "week": 7,
    "month": 30,
}


def _sort_key(record: PeriodRecord) -> Tuple[str, str, str]:
    return (record.local_date, record.start_utc, record.title_id)


def periods_for_date(store: RecordStore, day: date) -> List[PeriodRecord]:
    items = store.scan(RECORD_PERIOD, local_date=day.isoformat())
    return sorted((PeriodRecord.from_item(item) for item in items), key=_sort_key)


def periods_for_range(store: RecordStore, start: date, end: date) -> List[PeriodRecord]:
    if end < start:
        raise ValueError(f"结束日期 {end} 早于开始日期 {start}")
    items = store.scan(RECORD_PERIOD, local_date_range=(start.isoformat(), end.isoformat()))
    return sorted((PeriodRecord.from_item(item) for item in items), key=_sort_key)


def local_today(local_tz: Optional[ZoneInfo] = None, now: Optional[datetime] = None) -> date:
    if local_tz is None:
        local_tz = get_local_tz()
    if now is None:
        now = datetime.now(timezone.utc)
    return local_date(now, local_tz)


def relative_range(
    window: str,
    local_tz: Optional[ZoneInfo] = None,
    now: Optional[datetime] = None,
) -> Tuple[date, date]:
    if window not in RELATIVE_WINDOWS:
        raise ValueError(f"不支持的时间窗口: {window}，可选 week 或 month")
    today = local_today(local_tz, now)
    return today - timedelta(days=RELATIVE_WINDOWS[window]), today


def period_to_dict(record: PeriodRecord) -> Dict[str, Any]:
    return {
        "title": record.title_name or f"appid {record.title_id}",
        "title_id": record.title_id,
        "local_date": record.local_date,
        "utc_day": record.utc_day,
        "sequence": record.sequence,
        "start": record.start_local,
        "end": record.end_local,
        "start_utc": record.start_utc,
        "end_utc": record.end_utc,
        "duration_minutes": record.duration_minutes,
    }


def summarize(periods: List[PeriodRecord]) -> Dict[str, Any]:
    total_minutes = sum(p.duration_minutes for p in periods)
    return {
        "total_hours": round(total_minutes / 60, 1),
        "total_minutes": total_minutes,
        "period_count": len(periods),
        "periods": [period_to_dict(p) for p in periods],
    }


def daily_summary(store: RecordStore, day: date) -> Dict[str, Any]:
    return {"date": day.isoformat(), **summarize(periods_for_date(store, day))}


def range_summary(store: RecordStore, start: date, end: date) -> Dict[str, Any]:
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "period": f"{start.isoformat()} to {end.isoformat()}",
        **summarize(periods_for_range(store, start, end)),
    }
