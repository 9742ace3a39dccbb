from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
from zoneinfo import ZoneInfo

import pytest

from errors import StoreUnavailable, StoreWriteFailure
from record_store import SqliteRecordStore
from records import SampleRecord
from timeutil import local_date, utc_date, utc_iso

EASTERN = ZoneInfo("America/New_York")


@pytest.fixture
def eastern() -> ZoneInfo:
    return EASTERN


@pytest.fixture
def store(tmp_path):
    s = SqliteRecordStore(tmp_path / "records.sqlite")
    yield s
    s.close()


class FlakyStore:
    """包装真实存储，对指定 title 或 record_id 的写入抛出 StoreWriteFailure"""

    def __init__(
        self,
        inner,
        failing_titles: Optional[Set[str]] = None,
        unavailable: bool = False,
        failing_record_ids: Optional[Set[str]] = None,
    ) -> None:
        self.inner = inner
        self.failing_titles = failing_titles or set()
        self.failing_record_ids = failing_record_ids or set()
        self.unavailable = unavailable
        self.put_calls = 0

    def ping(self) -> None:
        if self.unavailable:
            raise StoreUnavailable("connection refused")
        self.inner.ping()

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        return self.inner.get(record_id)

    def put(self, item: Dict[str, Any]) -> None:
        self.put_calls += 1
        if item.get("title_id") in self.failing_titles or item.get("record_id") in self.failing_record_ids:
            raise StoreWriteFailure(item["record_id"], "disk I/O error")
        self.inner.put(item)

    def delete(self, record_id: str) -> None:
        self.inner.delete(record_id)

    def scan(self, record_type: str, **filters: Any) -> List[Dict[str, Any]]:
        return self.inner.scan(record_type, **filters)

    def close(self) -> None:
        self.inner.close()


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def local(*args: int) -> datetime:
    return datetime(*args, tzinfo=EASTERN)


def make_sample(
    title_id: str,
    when: datetime,
    delta: int = 30,
    title_name: Optional[str] = None,
) -> SampleRecord:
    return SampleRecord(
        title_id=title_id,
        title_name=title_name or f"Game {title_id}",
        sampled_at=utc_iso(when),
        delta_minutes=delta,
        total_minutes=1000 + delta,
        local_date=local_date(when, EASTERN).isoformat(),
        utc_date=utc_date(when).isoformat(),
    )


def seed_samples(store, samples: List[SampleRecord]) -> None:
    for sample in samples:
        store.put(sample.to_item())
