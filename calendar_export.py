from __future__ import annotations

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Tuple

from records import PeriodRecord


def _slug(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "-", name)


def _display_time(local_iso_value: str) -> str:
    dt = datetime.fromisoformat(local_iso_value)
    hour = dt.hour % 12 or 12
    return f"{hour}:{dt.minute:02d} {'PM' if dt.hour >= 12 else 'AM'}"


def _format_duration(minutes: int) -> str:
    hours, rest = divmod(minutes, 60)
    if hours:
        return f"{hours}h {rest}m"
    return f"{rest}m"


def period_to_calendar_event(record: PeriodRecord, index: int, time_zone: str) -> Dict[str, object]:
    title = record.title_name or f"appid {record.title_id}"
    start_display = _display_time(record.start_local)
    end_display = _display_time(record.end_local)
    return {
        "id": f"{_slug(title)}-{record.local_date}-P{index}",
        "summary": f"🎮 {title}",
        "description": (
            f"🎮 {title}\n"
            f"⏱️ 游戏时长: {_format_duration(record.duration_minutes)}\n"
            f"🕐 {start_display} - {end_display}"
        ),
        "start": {"dateTime": record.start_local, "timeZone": time_zone},
        "end": {"dateTime": record.end_local, "timeZone": time_zone},
        "date": record.local_date,
    }


def periods_to_calendar_events(periods: List[PeriodRecord], time_zone: str) -> List[Dict[str, object]]:
    """
    同一游戏同一本地日期的时段按开始时间编号（P1、P2...），保证事件 id 稳定
    """
    counters: Dict[Tuple[str, str], int] = {}
    events: List[Dict[str, object]] = []
    for record in sorted(periods, key=lambda p: (p.local_date, p.start_utc, p.title_id)):
        key = (record.title_id, record.local_date)
        counters[key] = counters.get(key, 0) + 1
        events.append(period_to_calendar_event(record, counters[key], time_zone))
    return events


def export_events_to_json(
    events: List[Dict[str, object]],
    output_path: Path,
) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(events, f, ensure_ascii=False, indent=2)
