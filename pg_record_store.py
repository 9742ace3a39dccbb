from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Tuple

import psycopg
from psycopg.types.json import Jsonb

from errors import StoreUnavailable, StoreWriteFailure
from record_store import TABLE_NAME, build_filters, item_columns


def _get_pg_dsn() -> str:
    dsn = os.getenv("DATABASE_URL") or os.getenv("PG_CONN_STR") or ""
    if not dsn:
        raise ValueError("未找到数据库连接字符串，请设置环境变量 DATABASE_URL 或 PG_CONN_STR，或在项目根目录提供 .env。")
    return dsn


class PgRecordStore:
    def __init__(self, dsn: Optional[str] = None) -> None:
        self._dsn = dsn or _get_pg_dsn()
        try:
            self._conn = psycopg.connect(self._dsn, autocommit=True)
            self.ensure_schema()
        except psycopg.Error as exc:
            raise StoreUnavailable(f"数据库连接失败: {exc}") from exc

    def ensure_schema(self) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                    record_id   TEXT PRIMARY KEY,
                    record_type TEXT  NOT NULL,
                    title_id    TEXT,
                    local_date  TEXT,
                    utc_date    TEXT,
                    item        JSONB NOT NULL
                );
                """
            )
            cur.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_records_type_dates
                ON {TABLE_NAME} (record_type, utc_date, local_date);
                """
            )

    def ping(self) -> None:
        try:
            with self._conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        except psycopg.Error as exc:
            raise StoreUnavailable(str(exc)) from exc

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        with self._conn.cursor() as cur:
            cur.execute(
                f"SELECT item FROM {TABLE_NAME} WHERE record_id = %s;",
                (record_id,),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return dict(row[0])

    def put(self, item: Dict[str, Any]) -> None:
        record_id, record_type, title_id, local_date, utc_date, _ = item_columns(item)
        try:
            with self._conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {TABLE_NAME} (
                        record_id, record_type, title_id, local_date, utc_date, item
                    )
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (record_id) DO UPDATE SET
                        record_type = EXCLUDED.record_type,
                        title_id = EXCLUDED.title_id,
                        local_date = EXCLUDED.local_date,
                        utc_date = EXCLUDED.utc_date,
                        item = EXCLUDED.item;
                    """,
                    (record_id, record_type, title_id, local_date, utc_date, Jsonb(item)),
                )
        except psycopg.Error as exc:
            raise StoreWriteFailure(record_id, str(exc)) from exc

    def delete(self, record_id: str) -> None:
        try:
            with self._conn.cursor() as cur:
                cur.execute(
                    f"DELETE FROM {TABLE_NAME} WHERE record_id = %s;", (record_id,)
                )
        except psycopg.Error as exc:
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
            record_type, title_id, local_date, utc_date, local_date_range, "%s"
        )
        with self._conn.cursor() as cur:
            cur.execute(
                f"SELECT item FROM {TABLE_NAME} WHERE {where} ORDER BY record_id ASC;",
                params,
            )
            rows = cur.fetchall()
        return [dict(row[0]) for row in rows]

    def close(self) -> None:
        self._conn.close()
