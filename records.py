from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

RECORD_POINTER = "pointer"
RECORD_SAMPLE = "sample"
RECORD_PERIOD = "period"


def pointer_record_id(title_id: str) -> str:
    return f"LATEST_{title_id}"


def sample_record_id(sampled_at: str, title_id: str) -> str:
    return f"{sampled_at}_{title_id}"


def period_record_id(utc_day: str, title_id: str, sequence: int) -> str:
    return f"DAILY_{utc_day}_{title_id}_PERIOD_{sequence}"


@dataclass
class PointerRecord:
    title_id: str
    title_name: Optional[str]
    total_minutes: int
    sampled_at: str

    @property
    def record_id(self) -> str:
        return pointer_record_id(self.title_id)

    def to_item(self) -> Dict[str, Any]:
        item = asdict(self)
        item["record_id"] = self.record_id
        item["record_type"] = RECORD_POINTER
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "PointerRecord":
        return cls(
            title_id=str(item["title_id"]),
            title_name=item.get("title_name"),
            total_minutes=int(item["total_minutes"]),
            sampled_at=str(item["sampled_at"]),
        )


@dataclass
class SampleRecord:
    title_id: str
    title_name: Optional[str]
    sampled_at: str
    delta_minutes: int
    total_minutes: int
    local_date: str
    utc_date: str

    @property
    def record_id(self) -> str:
        return sample_record_id(self.sampled_at, self.title_id)

    def to_item(self) -> Dict[str, Any]:
        item = asdict(self)
        item["record_id"] = self.record_id
        item["record_type"] = RECORD_SAMPLE
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "SampleRecord":
        return cls(
            title_id=str(item["title_id"]),
            title_name=item.get("title_name"),
            sampled_at=str(item["sampled_at"]),
            delta_minutes=int(item["delta_minutes"]),
            total_minutes=int(item.get("total_minutes", 0)),
            local_date=str(item["local_date"]),
            utc_date=str(item["utc_date"]),
        )


@dataclass
class PeriodRecord:
    title_id: str
    title_name: Optional[str]
    utc_day: str
    sequence: int
    start_utc: str
    end_utc: str
    start_local: str
    end_local: str
    duration_minutes: int
    local_date: str
    block_count: int
    sample_minutes: int

    @property
    def record_id(self) -> str:
        return period_record_id(self.utc_day, self.title_id, self.sequence)

    def to_item(self) -> Dict[str, Any]:
        item = asdict(self)
        item["record_id"] = self.record_id
        item["record_type"] = RECORD_PERIOD
        # 所有记录类型统一按 utc_date 列过滤
        item["utc_date"] = self.utc_day
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "PeriodRecord":
        return cls(
            title_id=str(item["title_id"]),
            title_name=item.get("title_name"),
            utc_day=str(item["utc_day"]),
            sequence=int(item["sequence"]),
            start_utc=str(item["start_utc"]),
            end_utc=str(item["end_utc"]),
            start_local=str(item["start_local"]),
            end_local=str(item["end_local"]),
            duration_minutes=int(item["duration_minutes"]),
            local_date=str(item["local_date"]),
            block_count=int(item.get("block_count", 0)),
            sample_minutes=int(item.get("sample_minutes", 0)),
        )
