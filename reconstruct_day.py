from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from config_loader import load_config, open_store
from errors import StoreUnavailable
from reconstructor import default_processing_day, reconstruct_day
from timeutil import parse_day

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="把某个 UTC 日的采样重建为游玩时段")
    parser.add_argument("--date", help="UTC 日期 YYYY-MM-DD，默认昨天")
    parser.add_argument("--recompute", action="store_true", help="覆盖已有时段记录并删除多余记录")
    parser.add_argument("--dry-run", action="store_true", help="只打印将写入的记录")
    parser.add_argument("--config", help="config.toml 路径")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    cfg = load_config(Path(args.config) if args.config else None, require_steam=False)
    utc_day = parse_day(args.date) if args.date else default_processing_day()

    try:
        store = open_store(cfg.storage)
    except StoreUnavailable as exc:
        logger.error("存储不可用，本次重建中止: %s", exc)
        return 1

    try:
        result = reconstruct_day(
            store,
            utc_day,
            local_tz=cfg.timezone.zone,
            block=cfg.reconstruction.block,
            max_gap=cfg.reconstruction.max_gap,
            recompute=args.recompute,
            dry_run=args.dry_run,
            max_workers=cfg.polling.max_workers,
            write_attempts=cfg.storage.write_attempts,
            write_backoff_seconds=cfg.storage.write_backoff_seconds,
        )
    except StoreUnavailable as exc:
        logger.error("存储不可用，本次重建中止: %s", exc)
        return 1
    finally:
        store.close()

    return 0 if not result.failures else 2


if __name__ == "__main__":
    sys.exit(main())
