from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

DEFAULT_LOCAL_TZ = "America/New_York"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def get_local_tz(name: str = DEFAULT_LOCAL_TZ) -> ZoneInfo:
    return ZoneInfo(name)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        raise ValueError(f"不接受不带时区的时间: {dt!r}")
    return dt.astimezone(timezone.utc)


def utc_iso(dt: datetime) -> str:
    """`2026-01-22T02:30:00.000Z`"""
    return ensure_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def local_iso(dt: datetime, tz: ZoneInfo) -> str:
    """`2026-01-21T21:30:00-05:00`"""
    return ensure_utc(dt).astimezone(tz).isoformat(timespec="seconds")


def parse_iso(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def utc_date(dt: datetime) -> date:
    return ensure_utc(dt).date()


def local_date(dt: datetime, tz: ZoneInfo) -> date:
    return ensure_utc(dt).astimezone(tz).date()


def parse_day(value: str) -> date:
    """严格解析 `YYYY-MM-DD`"""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise ValueError(f"日期格式无效: {value!r}，应为 YYYY-MM-DD") from exc


def ceil_to_block(dt: datetime, block: timedelta) -> datetime:
    """将时间向上取整到 UTC 纪元网格上的下一个块边界。

    已经落在边界上的时间原样返回。
    """
    offset = (ensure_utc(dt) - _EPOCH) % block
    if not offset:
        return ensure_utc(dt)
    return ensure_utc(dt) - offset + block
