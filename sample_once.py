from __future__ import annotations

import logging
import sys

from config_loader import load_config, open_store
from errors import StoreUnavailable, UpstreamUnavailable
from sampler import resolve_steamid, run_sampler_once
from steam_api import SteamApiClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def main() -> int:
    cfg = load_config()
    try:
        store = open_store(cfg.storage)
    except StoreUnavailable as exc:
        logger.error("存储不可用，本次采样中止: %s", exc)
        return 1

    client = SteamApiClient(api_key=cfg.steam.api_key)
    try:
        steamid = resolve_steamid(cfg, client)
        result = run_sampler_once(
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
        return 1
    except StoreUnavailable as exc:
        logger.error("存储不可用，本次采样中止: %s", exc)
        return 1
    finally:
        client.close()
        store.close()

    return 0 if not result.failures else 2


if __name__ == "__main__":
    sys.exit(main())
