from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

import tomllib
from dotenv import load_dotenv
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from timeutil import DEFAULT_LOCAL_TZ


@dataclass
class SteamPlayerConfig:
    steamid: Optional[str]
    vanity_url: Optional[str]


@dataclass
class SteamConfig:
    api_key: str
    player: SteamPlayerConfig


@dataclass
class PollingConfig:
    interval_seconds: int
    max_workers: int


@dataclass
class StorageConfig:
    backend: str
    database_path: Path
    dsn: Optional[str]
    write_attempts: int
    write_backoff_seconds: float


@dataclass
class ReconstructionConfig:
    block_minutes: int
    max_gap_minutes: int

    @property
    def block(self) -> timedelta:
        return timedelta(minutes=self.block_minutes)

    @property
    def max_gap(self) -> timedelta:
        return timedelta(minutes=self.max_gap_minutes)


@dataclass
class TimezoneConfig:
    local_tz: str

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.local_tz)


@dataclass
class AppConfig:
    steam: SteamConfig
    polling: PollingConfig
    storage: StorageConfig
    reconstruction: ReconstructionConfig
    timezone: TimezoneConfig


def _positive_int(section: dict, key: str, default: int, label: str) -> int:
    value = int(section.get(key, default))
    if value <= 0:
        raise ValueError(f"{label} 必须为正整数。")
    return value


def load_config(config_path: Path | None = None, require_steam: bool = True) -> AppConfig:
    base_dir = Path(__file__).resolve().parent
    if config_path is None:
        config_path = base_dir / "config.toml"

    env_path = base_dir / ".env"
    if env_path.is_file():
        load_dotenv(env_path)

    if not config_path.is_file():
        raise FileNotFoundError(f"未找到配置文件: {config_path}")

    with config_path.open("rb") as f:
        raw = tomllib.load(f)

    steam_section = raw.get("steam", {})
    polling_section = raw.get("polling", {})
    storage_section = raw.get("storage", {})
    reconstruction_section = raw.get("reconstruction", {})
    timezone_section = raw.get("timezone", {})

    api_key_env_var = steam_section.get("api_key_env_var", "STEAM_WEB_API_KEY")
    api_key_from_env = os.getenv(api_key_env_var, "").strip()
    api_key_from_file = str(steam_section.get("api_key", "")).strip()

    api_key = api_key_from_env or api_key_from_file
    if require_steam and not api_key:
        raise ValueError(
            f"未配置 Steam Web API Key，请在环境变量 {api_key_env_var} 或 config.toml 中填写。"
        )

    steamid = str(steam_section.get("steamid", "")).strip() or None
    vanity_url = str(steam_section.get("vanity_url", "")).strip() or None
    if require_steam and not steamid and not vanity_url:
        raise ValueError("steam.steamid 与 steam.vanity_url 至少需要配置一个。")

    interval_seconds = _positive_int(polling_section, "interval_seconds", 1800, "polling.interval_seconds")
    max_workers = _positive_int(polling_section, "max_workers", 4, "polling.max_workers")

    backend = str(storage_section.get("backend", "sqlite")).strip().lower()
    if backend not in ("sqlite", "postgres"):
        raise ValueError(f"storage.backend 只支持 sqlite 或 postgres，当前为: {backend}")
    database_path_raw = str(storage_section.get("database_path", "data/playtime_records.sqlite"))
    database_path = (base_dir / database_path_raw).resolve()
    dsn = os.getenv("DATABASE_URL") or os.getenv("PG_CONN_STR") or storage_section.get("dsn") or None
    if backend == "postgres" and not dsn:
        raise ValueError("storage.backend = postgres 时需要设置 DATABASE_URL 或 storage.dsn。")
    write_attempts = _positive_int(storage_section, "write_attempts", 3, "storage.write_attempts")
    write_backoff_seconds = float(storage_section.get("write_backoff_seconds", 0.5))
    if write_backoff_seconds < 0:
        raise ValueError("storage.write_backoff_seconds 不能为负数。")

    block_minutes = _positive_int(reconstruction_section, "block_minutes", 30, "reconstruction.block_minutes")
    max_gap_minutes = _positive_int(reconstruction_section, "max_gap_minutes", 90, "reconstruction.max_gap_minutes")

    local_tz = str(timezone_section.get("local_tz", DEFAULT_LOCAL_TZ)).strip()
    try:
        ZoneInfo(local_tz)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"timezone.local_tz 无效: {local_tz}") from exc

    return AppConfig(
        steam=SteamConfig(
            api_key=api_key,
            player=SteamPlayerConfig(steamid=steamid, vanity_url=vanity_url),
        ),
        polling=PollingConfig(interval_seconds=interval_seconds, max_workers=max_workers),
        storage=StorageConfig(
            backend=backend,
            database_path=database_path,
            dsn=dsn,
            write_attempts=write_attempts,
            write_backoff_seconds=write_backoff_seconds,
        ),
        reconstruction=ReconstructionConfig(
            block_minutes=block_minutes,
            max_gap_minutes=max_gap_minutes,
        ),
        timezone=TimezoneConfig(local_tz=local_tz),
    )


def open_store(storage: StorageConfig):
    if storage.backend == "postgres":
        from pg_record_store import PgRecordStore

        return PgRecordStore(storage.dsn)

    from record_store import SqliteRecordStore

    return SqliteRecordStore(storage.database_path)
