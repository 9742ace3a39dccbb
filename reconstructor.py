from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from errors import PlaytimeError
from record_store import RecordStore, write_with_retry
from records import RECORD_PERIOD, RECORD_SAMPLE, PeriodRecord, SampleRecord
from timeutil import ceil_to_block, get_local_tz, local_date, local_iso, parse_iso, utc_iso

logger = logging.getLogger(__name__)

BLOCK = timedelta(minutes=30)
MAX_GAP = timedelta(minutes=90)


@dataclass(frozen=True)
class Block:
    start: datetime
    end: datetime
    sample_minutes: int = 0


@dataclass
class PlayPeriod:
    start: datetime
    end: datetime
    block_count: int
    sample_minutes: int

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


@dataclass
class ReconstructionResult:
    day: str
    dry_run: bool = False
    periods_written: int = 0
    titles_processed: List[str] = field(default_factory=list)
    titles_skipped: List[str] = field(default_factory=list)
    orphans_deleted: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    periods: List[PeriodRecord] = field(default_factory=list)


@dataclass
class _TitleOutcome:
    records: List[PeriodRecord]
    written: int = 0
    orphans_deleted: int = 0
    skipped: bool = False


def default_processing_day(now: Optional[datetime] = None) -> date:
    """昨天的 UTC 日期"""
    if now is None:
        now = datetime.now(timezone.utc)
    return (now.astimezone(timezone.utc) - timedelta(days=1)).date()


def snap_to_block(instant: datetime, block: timedelta = BLOCK, sample_minutes: int = 0) -> Block:
    end = ceil_to_block(instant, block)
    return Block(start=end - block, end=end, sample_minutes=sample_minutes)


def blocks_from_samples(samples: Iterable[SampleRecord], block: timedelta = BLOCK) -> List[Block]:
    """
    样本按时间排序后对齐到块，落在同一个块里的连续样本合并为一个块
    """
    ordered = sorted(samples, key=lambda s: parse_iso(s.sampled_at))
    blocks: List[Block] = []
    for sample in ordered:
        snapped = snap_to_block(parse_iso(sample.sampled_at), block, sample.delta_minutes)
        if blocks and blocks[-1].start == snapped.start and blocks[-1].end == snapped.end:
            last = blocks[-1]
            blocks[-1] = Block(last.start, last.end, last.sample_minutes + snapped.sample_minutes)
            continue
        blocks.append(snapped)
    return blocks


def merge_blocks(blocks: List[Block], max_gap: timedelta = MAX_GAP) -> List[PlayPeriod]:
    """
    将按开始时间排序的块合并成游玩时段

    相邻两个块的开始时间相差不超过 max_gap 时延长当前时段，
    否则结束当前时段并开启新时段。
    """
    periods: List[PlayPeriod] = []
    current: Optional[PlayPeriod] = None
    last_start: Optional[datetime] = None
    for block in blocks:
        if current is not None and last_start is not None and block.start - last_start <= max_gap:
            current.end = max(current.end, block.end)
            current.block_count += 1
            current.sample_minutes += block.sample_minutes
        else:
            if current is not None:
                periods.append(current)
            current = PlayPeriod(
                start=block.start,
                end=block.end,
                block_count=1,
                sample_minutes=block.sample_minutes,
            )
        last_start = block.start
    if current is not None:
        periods.append(current)
    return periods


def reconstruct_title(
    samples: List[SampleRecord],
    utc_day: date,
    local_tz: ZoneInfo,
    block: timedelta = BLOCK,
    max_gap: timedelta = MAX_GAP,
) -> List[PeriodRecord]:
    if not samples:
        return []
    title_id = samples[0].title_id
    title_name = next((s.title_name for s in samples if s.title_name), None)
    periods = merge_blocks(blocks_from_samples(samples, block), max_gap)
    records: List[PeriodRecord] = []
    for index, period in enumerate(periods, start=1):
        records.append(
            PeriodRecord(
                title_id=title_id,
                title_name=title_name,
                utc_day=utc_day.isoformat(),
                sequence=index,
                start_utc=utc_iso(period.start),
                end_utc=utc_iso(period.end),
                start_local=local_iso(period.start, local_tz),
                end_local=local_iso(period.end, local_tz),
                duration_minutes=period.duration_minutes,
                # 每个时段单独计算本地日期，跨本地午夜的批次会落到两个日期上
                local_date=local_date(period.start, local_tz).isoformat(),
                block_count=period.block_count,
                sample_minutes=period.sample_minutes,
            )
        )
    return records


def _process_title(
    store: RecordStore,
    title_id: str,
    samples: List[SampleRecord],
    existing_ids: List[str],
    utc_day: date,
    local_tz: ZoneInfo,
    block: timedelta,
    max_gap: timedelta,
    recompute: bool,
    dry_run: bool,
    write_attempts: int,
    write_backoff_seconds: float,
) -> _TitleOutcome:
    records = reconstruct_title(samples, utc_day, local_tz, block, max_gap)
    outcome = _TitleOutcome(records=records)
    new_ids = {record.record_id for record in records}
    if not recompute and existing_ids and new_ids <= set(existing_ids):
        outcome.skipped = True
        return outcome

    if dry_run:
        for record in records:
            logger.info("[DRY RUN] 将写入: %s", json.dumps(record.to_item(), ensure_ascii=False))
        return outcome

    for record in records:
        write_with_retry(store, record.to_item(), write_attempts, write_backoff_seconds)
        outcome.written += 1

    if recompute:
        orphans = [record_id for record_id in existing_ids if record_id not in new_ids]
        for record_id in orphans:
            store.delete(record_id)
            outcome.orphans_deleted += 1
        if orphans:
            logger.info("[%s] 删除了 %s 条过期时段记录", title_id, len(orphans))
    return outcome


def reconstruct_day(
    store: RecordStore,
    utc_day: date,
    local_tz: Optional[ZoneInfo] = None,
    block: timedelta = BLOCK,
    max_gap: timedelta = MAX_GAP,
    recompute: bool = False,
    dry_run: bool = False,
    max_workers: int = 4,
    write_attempts: int = 3,
    write_backoff_seconds: float = 0.5,
) -> ReconstructionResult:
    """
    将某个 UTC 日的增量样本重建为游玩时段并写入存储

    - 默认模式下，推导出的时段记录都已存在的游戏直接跳过，缺失的会补写
    - recompute=True 时从同一批样本重新推导并覆盖，多余的旧记录会被删除
    - dry_run=True 时只记录日志，不写入
    """
    if local_tz is None:
        local_tz = get_local_tz()
    day_str = utc_day.isoformat()
    result = ReconstructionResult(day=day_str, dry_run=dry_run)

    store.ping()
    samples_by_title: Dict[str, List[SampleRecord]] = {}
    for item in store.scan(RECORD_SAMPLE, utc_date=day_str):
        sample = SampleRecord.from_item(item)
        if sample.delta_minutes <= 0:
            continue
        samples_by_title.setdefault(sample.title_id, []).append(sample)

    existing_by_title: Dict[str, List[str]] = {}
    for item in store.scan(RECORD_PERIOD, utc_date=day_str):
        existing_by_title.setdefault(str(item["title_id"]), []).append(str(item["record_id"]))

    logger.info(
        "处理 UTC 日期 %s%s: %s 个游戏有样本",
        day_str,
        " [DRY RUN]" if dry_run else "",
        len(samples_by_title),
    )

    title_ids = set(samples_by_title)
    if recompute:
        title_ids |= set(existing_by_title)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(
                _process_title,
                store,
                title_id,
                samples_by_title.get(title_id, []),
                existing_by_title.get(title_id, []),
                utc_day,
                local_tz,
                block,
                max_gap,
                recompute,
                dry_run,
                write_attempts,
                write_backoff_seconds,
            ): title_id
            for title_id in sorted(title_ids)
        }
        for future in as_completed(futures):
            title_id = futures[future]
            try:
                outcome = future.result()
            except PlaytimeError as exc:
                logger.error("[%s] 重建失败，重新运行即可补齐: %s", title_id, exc)
                result.failures[title_id] = str(exc)
                continue
            except Exception as exc:
                logger.exception("[%s] 重建时出现未知错误", title_id)
                result.failures[title_id] = str(exc)
                continue
            result.periods.extend(outcome.records)
            if outcome.skipped:
                logger.info("[%s] %s 的时段记录已存在，跳过", title_id, day_str)
                result.titles_skipped.append(title_id)
                continue
            result.titles_processed.append(title_id)
            result.periods_written += outcome.written
            result.orphans_deleted += outcome.orphans_deleted
            total = sum(r.duration_minutes for r in outcome.records)
            name = outcome.records[0].title_name if outcome.records else title_id
            logger.info(
                "%s%s: %s 分钟，共 %s 个时段",
                "[DRY RUN] " if dry_run else "",
                name,
                total,
                len(outcome.records),
            )

    result.titles_processed.sort()
    result.titles_skipped.sort()
    result.periods.sort(key=lambda r: (r.title_id, r.sequence))
    logger.info(
        "%s 处理完成: 写入 %s 个时段，跳过 %s 个游戏，%s 个失败",
        day_str,
        result.periods_written,
        len(result.titles_skipped),
        len(result.failures),
    )
    return result
