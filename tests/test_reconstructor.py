from __future__ import annotations

from datetime import date, timedelta

import pytest

from conftest import FlakyStore, local, make_sample, seed_samples, utc
from errors import StoreUnavailable
from reconstructor import (
    Block,
    blocks_from_samples,
    default_processing_day,
    merge_blocks,
    reconstruct_day,
    reconstruct_title,
    snap_to_block,
)
from records import RECORD_PERIOD, PeriodRecord

DAY = date(2026, 1, 22)


def _block(start, minutes: int = 30) -> Block:
    return Block(start=start, end=start + timedelta(minutes=minutes))


def test_snap_rounds_up_to_block_end():
    block = snap_to_block(utc(2026, 1, 22, 2, 54))
    assert block.end == utc(2026, 1, 22, 3, 0)
    assert block.start == utc(2026, 1, 22, 2, 30)


def test_snap_keeps_instant_on_boundary():
    block = snap_to_block(utc(2026, 1, 22, 3, 0))
    assert block.start == utc(2026, 1, 22, 2, 30)
    assert block.end == utc(2026, 1, 22, 3, 0)


def test_samples_in_same_window_collapse_to_one_block():
    samples = [
        make_sample("730", utc(2026, 1, 22, 2, 41), delta=10),
        make_sample("730", utc(2026, 1, 22, 2, 54), delta=13),
    ]
    blocks = blocks_from_samples(samples)
    assert len(blocks) == 1
    assert blocks[0].sample_minutes == 23


def test_blocks_sorted_regardless_of_input_order():
    samples = [
        make_sample("730", utc(2026, 1, 22, 4, 10)),
        make_sample("730", utc(2026, 1, 22, 2, 54)),
    ]
    blocks = blocks_from_samples(samples)
    assert [b.start for b in blocks] == [utc(2026, 1, 22, 2, 30), utc(2026, 1, 22, 4, 0)]


def test_merge_blocks_exactly_90_minutes_apart_is_one_period():
    t0 = utc(2026, 1, 22, 2, 30)
    periods = merge_blocks([_block(t0), _block(t0 + timedelta(minutes=90))])
    assert len(periods) == 1
    assert periods[0].start == t0
    assert periods[0].end == t0 + timedelta(minutes=120)
    assert periods[0].block_count == 2


def test_merge_blocks_91_minutes_apart_splits():
    t0 = utc(2026, 1, 22, 2, 30)
    periods = merge_blocks([_block(t0), _block(t0 + timedelta(minutes=91))])
    assert len(periods) == 2
    assert periods[0].end == t0 + timedelta(minutes=30)
    assert periods[1].start == t0 + timedelta(minutes=91)


def test_merge_blocks_empty():
    assert merge_blocks([]) == []


def test_merge_uses_custom_gap():
    t0 = utc(2026, 1, 22, 2, 30)
    blocks = [_block(t0), _block(t0 + timedelta(minutes=60))]
    assert len(merge_blocks(blocks, max_gap=timedelta(minutes=30))) == 2
    assert len(merge_blocks(blocks, max_gap=timedelta(minutes=60))) == 1


def test_contiguous_session_accounts_every_block(eastern):
    start = utc(2026, 1, 22, 14, 5)
    samples = [make_sample("730", start + timedelta(minutes=30 * i)) for i in range(6)]
    records = reconstruct_title(samples, DAY, eastern)
    assert len(records) == 1
    assert records[0].duration_minutes == 6 * 30
    assert records[0].block_count == 6
    assert sum(r.duration_minutes for r in records) == 30 * len(blocks_from_samples(samples))


def test_missed_poll_is_bridged_but_raw_blocks_stay_visible(eastern):
    samples = [
        make_sample("730", utc(2026, 1, 22, 14, 5), delta=25),
        make_sample("730", utc(2026, 1, 22, 15, 5), delta=30),
    ]
    records = reconstruct_title(samples, DAY, eastern)
    assert len(records) == 1
    record = records[0]
    assert record.start_utc == "2026-01-22T14:00:00.000Z"
    assert record.end_utc == "2026-01-22T15:30:00.000Z"
    assert record.duration_minutes == 90
    blocks = blocks_from_samples(samples)
    assert record.block_count == len(blocks) == 2
    assert record.sample_minutes == sum(b.sample_minutes for b in blocks) == 55
    assert record.duration_minutes > 30 * record.block_count


def test_single_isolated_sample_is_one_block_period(eastern):
    records = reconstruct_title([make_sample("730", utc(2026, 1, 22, 12, 10))], DAY, eastern)
    assert len(records) == 1
    assert records[0].duration_minutes == 30
    assert records[0].start_utc == "2026-01-22T12:00:00.000Z"
    assert records[0].end_utc == "2026-01-22T12:30:00.000Z"


def test_local_date_of_period_crossing_into_next_utc_day(eastern):
    records = reconstruct_title([make_sample("730", utc(2026, 1, 22, 2, 54))], DAY, eastern)
    record = records[0]
    assert record.end_utc == "2026-01-22T03:00:00.000Z"
    assert record.end_local == "2026-01-21T22:00:00-05:00"
    assert record.local_date == "2026-01-21"
    assert record.utc_day == "2026-01-22"


def test_evening_samples_merge_into_one_period(eastern):
    samples = [
        make_sample("730", local(2026, 1, 21, 21, 54)),
        make_sample("730", local(2026, 1, 21, 22, 24)),
        make_sample("730", local(2026, 1, 21, 22, 54)),
    ]
    records = reconstruct_title(samples, DAY, eastern)
    assert len(records) == 1
    assert records[0].start_local == "2026-01-21T21:30:00-05:00"
    assert records[0].end_local == "2026-01-21T23:00:00-05:00"
    assert records[0].duration_minutes == 90


def test_two_hour_gap_gives_two_periods(eastern):
    samples = [
        make_sample("730", local(2026, 1, 21, 21, 54)),
        make_sample("730", local(2026, 1, 21, 23, 54)),
    ]
    records = reconstruct_title(samples, DAY, eastern)
    assert [r.duration_minutes for r in records] == [30, 30]
    assert [r.sequence for r in records] == [1, 2]
    assert records[1].start_local == "2026-01-21T23:30:00-05:00"


def test_local_midnight_does_not_split_period(eastern):
    samples = [
        make_sample("730", local(2026, 1, 21, 23, 54)),
        make_sample("730", local(2026, 1, 22, 0, 24)),
    ]
    records = reconstruct_title(samples, DAY, eastern)
    assert len(records) == 1
    assert records[0].duration_minutes == 60
    assert records[0].local_date == "2026-01-21"
    assert records[0].end_local == "2026-01-22T00:30:00-05:00"


def test_one_utc_batch_can_yield_two_local_dates(eastern):
    samples = [
        make_sample("730", utc(2026, 1, 22, 2, 54)),
        make_sample("730", utc(2026, 1, 22, 15, 10)),
    ]
    records = reconstruct_title(samples, DAY, eastern)
    assert [r.local_date for r in records] == ["2026-01-21", "2026-01-22"]


def test_period_durations_are_positive_multiples_of_block(eastern):
    times = [utc(2026, 1, 22, h, m) for h, m in [(1, 5), (1, 40), (2, 59), (6, 1), (6, 29), (20, 30)]]
    records = reconstruct_title([make_sample("730", t) for t in times], DAY, eastern)
    assert records
    for record in records:
        assert record.duration_minutes > 0
        assert record.duration_minutes % 30 == 0
    for earlier, later in zip(records, records[1:]):
        assert earlier.end_utc <= later.start_utc


def test_reconstruct_day_writes_one_record_per_period(store, eastern):
    seed_samples(
        store,
        [
            make_sample("730", local(2026, 1, 21, 21, 54), title_name="Counter-Strike 2"),
            make_sample("730", local(2026, 1, 21, 23, 54), title_name="Counter-Strike 2"),
            make_sample("570", utc(2026, 1, 22, 12, 5), title_name="Dota 2"),
        ],
    )
    result = reconstruct_day(store, DAY, local_tz=eastern, max_workers=2)

    assert result.periods_written == 3
    assert result.failures == {}
    assert result.titles_processed == ["570", "730"]
    ids = sorted(item["record_id"] for item in store.scan(RECORD_PERIOD))
    assert ids == [
        "DAILY_2026-01-22_570_PERIOD_1",
        "DAILY_2026-01-22_730_PERIOD_1",
        "DAILY_2026-01-22_730_PERIOD_2",
    ]
    stored = PeriodRecord.from_item(store.get("DAILY_2026-01-22_570_PERIOD_1"))
    assert stored.title_name == "Dota 2"
    assert stored.local_date == "2026-01-22"


def test_reconstruct_day_ignores_other_utc_days(store, eastern):
    seed_samples(store, [make_sample("730", utc(2026, 1, 23, 1, 0))])
    result = reconstruct_day(store, DAY, local_tz=eastern)
    assert result.periods == []
    assert store.scan(RECORD_PERIOD) == []


def test_reconstruct_day_without_samples_is_not_an_error(store, eastern):
    result = reconstruct_day(store, DAY, local_tz=eastern)
    assert result.periods_written == 0
    assert result.failures == {}


def test_rerun_is_noop_and_identical(store, eastern):
    seed_samples(
        store,
        [
            make_sample("730", utc(2026, 1, 22, 2, 54)),
            make_sample("730", utc(2026, 1, 22, 3, 24)),
        ],
    )
    reconstruct_day(store, DAY, local_tz=eastern)
    first = store.scan(RECORD_PERIOD)

    second_result = reconstruct_day(store, DAY, local_tz=eastern)
    assert second_result.titles_skipped == ["730"]
    assert second_result.periods_written == 0
    assert store.scan(RECORD_PERIOD) == first


def test_recompute_is_deterministic_and_removes_orphans(store, eastern):
    seed_samples(store, [make_sample("730", utc(2026, 1, 22, 2, 54))])
    reconstruct_day(store, DAY, local_tz=eastern)
    first = store.scan(RECORD_PERIOD)

    stale = PeriodRecord.from_item(first[0])
    stale.sequence = 2
    store.put(stale.to_item())

    result = reconstruct_day(store, DAY, local_tz=eastern, recompute=True)
    assert result.orphans_deleted == 1
    assert store.scan(RECORD_PERIOD) == first


def test_dry_run_writes_nothing(store, eastern):
    seed_samples(store, [make_sample("730", utc(2026, 1, 22, 2, 54))])
    result = reconstruct_day(store, DAY, local_tz=eastern, dry_run=True)
    assert len(result.periods) == 1
    assert result.periods_written == 0
    assert store.scan(RECORD_PERIOD) == []


def test_failed_title_does_not_affect_others_and_heals_on_rerun(store, eastern):
    seed_samples(
        store,
        [
            make_sample("730", utc(2026, 1, 22, 2, 54)),
            make_sample("570", utc(2026, 1, 22, 10, 0)),
        ],
    )
    flaky = FlakyStore(store, failing_titles={"570"})
    result = reconstruct_day(flaky, DAY, local_tz=eastern, write_backoff_seconds=0)

    assert set(result.failures) == {"570"}
    assert result.titles_processed == ["730"]
    assert [item["title_id"] for item in store.scan(RECORD_PERIOD)] == ["730"]

    healed = reconstruct_day(store, DAY, local_tz=eastern)
    assert healed.titles_processed == ["570"]
    assert healed.titles_skipped == ["730"]
    assert len(store.scan(RECORD_PERIOD)) == 2


def test_store_unavailable_aborts_run(store, eastern):
    with pytest.raises(StoreUnavailable):
        reconstruct_day(FlakyStore(store, unavailable=True), DAY, local_tz=eastern)


def test_default_processing_day_is_yesterday_utc():
    assert default_processing_day(utc(2026, 1, 22, 5, 10)) == date(2026, 1, 21)
