from __future__ import annotations

import logging
import signal
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional
from zoneinfo import ZoneInfo

from config_loader import AppConfig, open_store
from errors import PlaytimeError, UpstreamUnavailable
from record_store import RecordStore, write_with_retry
from records import RECORD_SAMPLE, PointerRecord, SampleRecord, pointer_record_id
from steam_api import SteamApiClient, parse_owned_game
from timeutil import get_local_tz, local_date, utc_date, utc_iso

logger = logging.getLogger(__name__)


@dataclass
class SamplerResult:
    sampled_at: str
    titles_seen: int = 0
    samples_written: int = 0
    pointers_written: int = 0
    failures: Dict[str, str] = field(default_factory=dict)


@dataclass
class _TitleOutcome:
    title_id: str
    sampled: bool = False
    skipped: bool = False


@contextmanager
def _steam_client(api_key: str) -> Iterator[SteamApiClient]:
    client = SteamApiClient(api_key=api_key)
    try:
        yield client
    finally:
        client.close()


def resolve_steamid(cfg: AppConfig, client: SteamApiClient) -> str:
    player = cfg.steam.player
    if player.steamid:
        return player.steamid
    if not player.vanity_url:
        raise RuntimeError("未配置 steamid 或 vanity_url，无法确定要采样的账号。")
    steamid = client.resolve_vanity_url(player.vanity_url)
    if steamid is None:
        raise RuntimeError(f"无法通过 vanity_url={player.vanity_url} 解析 steamid")
    return steamid


def _title_key(raw: Any, index: int) -> str:
    if isinstance(raw, dict) and raw.get("appid") is not None:
        return str(raw.get("appid"))
    return f"#{index}"


def _diff_baseline(store: RecordStore, pointer: PointerRecord) -> int:
    """
    计算增量的基准累计时长

    指针写入失败时，已落库的样本比指针更新，以样本中的 total_minutes 为准
    """
    baseline = pointer.total_minutes
    for item in store.scan(RECORD_SAMPLE, title_id=pointer.title_id):
        sample = SampleRecord.from_item(item)
        if sample.sampled_at > pointer.sampled_at:
            baseline = max(baseline, sample.total_minutes)
    return baseline


def sample_title(
    store: RecordStore,
    raw_game: Any,
    now: datetime,
    local_tz: ZoneInfo,
    write_attempts: int = 3,
    write_backoff_seconds: float = 0.5,
) -> _TitleOutcome:
    game = parse_owned_game(raw_game)
    outcome = _TitleOutcome(title_id=game.title_id)
    current = game.playtime_forever
    if current <= 0:
        outcome.skipped = True
        return outcome

    previous = current
    existing = store.get(pointer_record_id(game.title_id))
    if existing is not None:
        previous = _diff_baseline(store, PointerRecord.from_item(existing))
    delta = max(0, current - previous)
    if current < previous:
        logger.warning(
            "[%s] 累计时长从 %s 降到 %s，视为计数器重置，本次增量记为 0",
            game.title_id,
            previous,
            current,
        )

    sampled_at = utc_iso(now)
    # 样本写入失败时不推进指针，下次运行会重新计算同一段增量
    if delta > 0:
        sample = SampleRecord(
            title_id=game.title_id,
            title_name=game.name,
            sampled_at=sampled_at,
            delta_minutes=delta,
            total_minutes=current,
            local_date=local_date(now, local_tz).isoformat(),
            utc_date=utc_date(now).isoformat(),
        )
        write_with_retry(store, sample.to_item(), write_attempts, write_backoff_seconds)
        outcome.sampled = True
        logger.info("%s: +%s 分钟", game.name or game.title_id, delta)

    pointer = PointerRecord(
        title_id=game.title_id,
        title_name=game.name,
        total_minutes=current,
        sampled_at=sampled_at,
    )
    write_with_retry(store, pointer.to_item(), write_attempts, write_backoff_seconds)
    return outcome


def run_sampler_once(
    store: RecordStore,
    client: SteamApiClient,
    steamid: str,
    now: Optional[datetime] = None,
    local_tz: Optional[ZoneInfo] = None,
    max_workers: int = 4,
    write_attempts: int = 3,
    write_backoff_seconds: float = 0.5,
) -> SamplerResult:
    """
    执行一次采样

    - 存储不可用时直接抛出 StoreUnavailable，本次不写入任何记录
    - 上游不可用时抛出 UpstreamUnavailable，等待下一个周期
    - 单个游戏的失败只记录到结果中，不影响其他游戏
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if local_tz is None:
        local_tz = get_local_tz()

    store.ping()
    games_raw: List[Any] = client.get_owned_games_raw(steamid)
    result = SamplerResult(sampled_at=utc_iso(now))
    logger.info("获取到 %s 个游戏，开始处理...", len(games_raw))

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(
                sample_title,
                store,
                raw,
                now,
                local_tz,
                write_attempts,
                write_backoff_seconds,
            ): _title_key(raw, index)
            for index, raw in enumerate(games_raw)
        }
        for future in as_completed(futures):
            title_key = futures[future]
            try:
                outcome = future.result()
            except PlaytimeError as exc:
                logger.error("[%s] 采样失败，本周期跳过: %s", title_key, exc)
                result.failures[title_key] = str(exc)
                continue
            except Exception as exc:
                logger.exception("[%s] 采样时出现未知错误", title_key)
                result.failures[title_key] = str(exc)
                continue
            if outcome.skipped:
                continue
            result.titles_seen += 1
            result.pointers_written += 1
            if outcome.sampled:
                result.samples_written += 1

    logger.info(
        "采样完成: %s 个游戏，%s 条新样本，%s 个失败",
        result.titles_seen,
        result.samples_written,
        len(result.failures),
    )
    return result


def run_sampler_loop(cfg: AppConfig) -> None:
    store = open_store(cfg.storage)

    stop_event = threading.Event()

    def _handle_signal(signum, frame):  # type: ignore[no-untyped-def]
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        with _steam_client(cfg.steam.api_key) as client:
            steamid = resolve_steamid(cfg, client)
            interval = cfg.polling.interval_seconds

            while not stop_event.is_set():
                try:
                    run_sampler_once(
                        store,
                        client,
                        steamid,
                        local_tz=cfg.timezone.zone,
                        max_workers=cfg.polling.max_workers,
                        write_attempts=cfg.storage.write_attempts,
                        write_backoff_seconds=cfg.storage.write_backoff_seconds,
                    )
                except UpstreamUnavailable as exc:
                    logger.warning("Steam API 暂不可用，等待下一个周期: %s", exc)
                except PlaytimeError as exc:
                    logger.error("本次采样中止: %s", exc)
                stop_event.wait(interval)
    finally:
        store.close()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    from config_loader import load_config

    run_sampler_loop(load_config())
