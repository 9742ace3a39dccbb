from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from errors import StoreUnavailable, StoreWriteFailure

logger = logging.getLogger(__name__)

TABLE_NAME = "playtime_records"


class RecordStore(Protocol):
    def ping(self) -> None: ...

    def get(self, record_id: str) -> Optional[Dict[str, Any]]: ...

    def put(self, item: Dict[str, Any]) -> None: ...

    def delete(self, record_id: str) -> None: ...

    def scan(
        self,
        record_type: str,
        title_id: Optional[str] = None,
        local_date: Optional[str] = None,
        utc_date: Optional[str] = None,
        local_date_range: Optional[Tuple[str, str]] = None,
    ) -> List[Dict[str, Any]]: ...

    def close(self) -> None: ...


def build_filters(
    record_type: str,
    title_id: Optional[str],
    local_date: Optional[str],
    utc_date: Optional[str],
    local_date_range: Optional[Tuple[str, str]],
    placeholder: str,
) -> Tuple[str, List[Any]]:
    clauses = [f"record_type = {placeholder}"]
    params: List[Any] = [record_type]
    if title_id is not None:
        clauses.append(f"title_id = {placeholder}")
        params.append(title_id)
    if local_date is not None:
        clauses.append(f"local_date = {placeholder}")
        params.append(local_date)
    if utc_date is not None:
        clauses.append(f"utc_date = {placeholder}")
        params.append(utc_date)
    if local_date_range is not None:
        clauses.append(f"local_date BETWEEN {placeholder} AND {placeholder}")
        params.extend(local_date_range)
    return " AND ".join(clauses), params


def item_columns(item: Dict[str, Any]) -> Tuple[str, str, Optional[str], Optional[str], Optional[str], str]:
    return (
        str(item["record_id"]),
        str(item["record_type"]),
        item.get("title_id"),
        item.get("local_date"),
        item.get("utc_date"),
        json.dumps(item, sort_keys=True, ensure_ascii=False),
    )


class SqliteRecordStore:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._init_schema()
        except (OSError, sqlite3.Error) as exc:
            raise StoreUnavailable(f"cannot open {self._db_path}: {exc}") from exc

    def _init_schema(self) -> None:
        self._conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                record_id   TEXT PRIMARY KEY,
                record_type TEXT NOT NULL,
                title_id    TEXT,
                local_date  TEXT,
                utc_date    TEXT,
                item        TEXT NOT NULL
            );
            """
        )
        self._conn.execute(
            f"""
            CREATE INDEX IF NOT EXISTS idx_records_type_dates
            ON {TABLE_NAME} (record_type, utc_date, local_date);
            """
        )
        self._conn.commit()

    def ping(self) -> None:
        try:
            with self._lock:
                self._conn.execute("SELECT 1;").fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailable(str(exc)) from exc

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT item FROM {TABLE_NAME} WHERE record_id = ?;",
                (record_id,),
            ).fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    def put(self, item: Dict[str, Any]) -> None:
        columns = item_columns(item)
        try:
            with self._lock:
                self._conn.execute(
                    f"""
                    INSERT INTO {TABLE_NAME} (
                        record_id, record_type, title_id, local_date, utc_date, item
                    )
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT (record_id) DO UPDATE SET
                        record_type = excluded.record_type,
                        title_id = excluded.title_id,
                        local_date = excluded.local_date,
                        utc_date = excluded.utc_date,
                        item = excluded.item;
                    """,
                    columns,
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreWriteFailure(columns[0], str(exc)) from exc

    def delete(self, record_id: str) -> None:
        try:
            with self._lock:
                self._conn.execute(
                    f"DELETE FROM {TABLE_NAME} WHERE record_id = ?;", (record_id,)
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreWriteFailure(record_id, str(exc)) from exc

    def scan(
        self,
        record_type: str,
        title_id: Optional[str] = None,
        local_date: Optional[str] = None,
        utc_date: Optional[str] = None,
        local_date_range: Optional[Tuple[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        where, params = build_filters(
            record_type, title_id, local_date, utc_date, local_date_range, "?"
        )
        with self._lock:
            rows = self._conn.execute(
                f"SELECT item FROM {TABLE_NAME} WHERE {where} ORDER BY record_id ASC;",
                params,
            ).fetchall()
        return [json.loads(row[0]) for row in rows]

    def close(self) -> None:
        self._conn.close()


def write_with_retry(
    store: RecordStore,
    item: Dict[str, Any],
    attempts: int = 3,
    backoff_seconds: float = 0.5,
) -> None:
    """
    写入单条记录，失败时按指数退避重试

    所有尝试都失败后抛出 StoreWriteFailure。
    """
    delay = backoff_seconds
    for attempt in range(1, attempts + 1):
        try:
            store.put(item)
            return
        except StoreWriteFailure as exc:
            if attempt == attempts:
                raise
            logger.warning(
                "写入记录失败 (%s/%s)，%.1fs 后重试: %s", attempt, attempts, delay, exc
            )
            time.sleep(delay)
            delay *= 2
