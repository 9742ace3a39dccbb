from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from calendar_export import export_events_to_json, periods_to_calendar_events
from config_loader import load_config, open_store
from query_service import periods_for_range, relative_range
from timeutil import parse_day

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="导出游玩时段为日历事件 JSON")
    parser.add_argument("--start", help="本地日期 YYYY-MM-DD，默认 7 天前")
    parser.add_argument("--end", help="本地日期 YYYY-MM-DD，默认今天")
    parser.add_argument("--output", default="web/calendar_events.json")
    parser.add_argument("--config", help="config.toml 路径")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    cfg = load_config(Path(args.config) if args.config else None, require_steam=False)
    default_start, default_end = relative_range("week", cfg.timezone.zone)
    start = parse_day(args.start) if args.start else default_start
    end = parse_day(args.end) if args.end else default_end

    store = open_store(cfg.storage)
    try:
        periods = periods_for_range(store, start, end)
    finally:
        store.close()

    events = periods_to_calendar_events(periods, cfg.timezone.local_tz)
    output_path = Path(args.output)
    if not output_path.is_absolute():
        output_path = Path(__file__).resolve().parent / output_path
    export_events_to_json(events, output_path)
    logger.info("已导出 %s 个日历事件到 %s", len(events), output_path)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    main()
