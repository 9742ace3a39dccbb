from __future__ import annotations

import logging
from datetime import date
from functools import lru_cache
from typing import Any, Dict, Iterator, Optional
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config_loader import AppConfig, load_config, open_store
from errors import PlaytimeError, StoreUnavailable
from query_service import daily_summary, local_today, range_summary, relative_range
from record_store import RecordStore
from timeutil import parse_day

logger = logging.getLogger(__name__)


app = FastAPI(title="Steam Playtime Periods API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)


class BadQuery(ValueError):
    pass


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return load_config(require_steam=False)


def get_local_tz() -> ZoneInfo:
    return get_config().timezone.zone


def get_store() -> Iterator[RecordStore]:
    store = open_store(get_config().storage)
    try:
        yield store
    finally:
        store.close()


@app.exception_handler(BadQuery)
async def _bad_query(request: Request, exc: BadQuery) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(StoreUnavailable)
async def _store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error("存储不可用: %s", exc)
    return JSONResponse(status_code=503, content={"error": f"数据库连接失败: {exc}"})


@app.exception_handler(PlaytimeError)
async def _playtime_error(request: Request, exc: PlaytimeError) -> JSONResponse:
    logger.error("查询失败: %s", exc)
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("查询时出现未知错误")
    return JSONResponse(status_code=500, content={"error": "服务器内部错误"})


def _parse_param(name: str, value: str) -> date:
    try:
        return parse_day(value)
    except ValueError as exc:
        raise BadQuery(f"参数 {name} 无效: {exc}") from exc


@app.get("/api/periods")
def get_periods(
    date_param: Optional[str] = Query(None, alias="date", description="本地日期 YYYY-MM-DD"),
    start: Optional[str] = Query(None, description="范围开始（含）YYYY-MM-DD"),
    end: Optional[str] = Query(None, description="范围结束（含）YYYY-MM-DD"),
    period: Optional[str] = Query(None, description="week 或 month，截止到今天"),
    store: RecordStore = Depends(get_store),
    local_tz: ZoneInfo = Depends(get_local_tz),
) -> Dict[str, Any]:
    if date_param is not None:
        return daily_summary(store, _parse_param("date", date_param))

    if start is not None or end is not None:
        if start is None or end is None:
            raise BadQuery("start 和 end 需要同时提供")
        start_day = _parse_param("start", start)
        end_day = _parse_param("end", end)
        if end_day < start_day:
            raise BadQuery(f"end ({end}) 早于 start ({start})")
        return range_summary(store, start_day, end_day)

    if period is not None:
        try:
            start_day, end_day = relative_range(period, local_tz)
        except ValueError as exc:
            raise BadQuery(str(exc)) from exc
        return range_summary(store, start_day, end_day)

    return daily_summary(store, local_today(local_tz))
