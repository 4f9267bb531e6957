"""Supabase データベース操作モジュール.

app_rankings テーブル (appId, keyword, country, date で一意) の読み書きを行う。
rank = 0 は圏外として保存されている。
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Iterable

from supabase import create_client

from rankmatrix.config import (
    APPS_TABLE,
    FETCH_PAGE_SIZE,
    RANKINGS_TABLE,
    SUPABASE_SCHEMA,
    SUPABASE_SECRET_KEY,
    SUPABASE_URL,
)
from rankmatrix.models import KeywordCountryKey, RankObservation, Subject

logger = logging.getLogger(__name__)

_client = None

# 再アップロード時に同じ行 ID になるよう、一意キーから UUID を作る
_ID_NAMESPACE = uuid.UUID("6f1c1d2e-8a4b-4c55-9d3e-2b7a0e5f4c61")


def _get_client():
    global _client
    if _client is None:
        if not SUPABASE_URL or not SUPABASE_SECRET_KEY:
            raise RuntimeError("SUPABASE_URL / SUPABASE_SECRET_KEY が未設定です")
        _client = create_client(SUPABASE_URL, SUPABASE_SECRET_KEY)
    return _client


def _table(name: str):
    """設定スキーマのテーブルを参照する."""
    return _get_client().schema(SUPABASE_SCHEMA).table(name)


def record_to_observation(row: dict) -> RankObservation:
    """app_rankings の 1 行を RankObservation に変換する."""
    rank = row.get("rank")
    return RankObservation(
        entity=KeywordCountryKey.of(row["keyword"], row["country"]),
        subject_id=row["appId"],
        observed_on=date.fromisoformat(str(row["date"])[:10]),
        rank=rank if rank and rank > 0 else None,
        score=row.get("score"),
        traffic=row.get("traffic"),
    )


def observation_to_record(obs: RankObservation) -> dict:
    """RankObservation を app_rankings の 1 行に変換する."""
    day = obs.observed_on.isoformat()
    row_id = uuid.uuid5(
        _ID_NAMESPACE, "\x1f".join((obs.subject_id, obs.keyword, obs.country, day))
    )
    return {
        "id": str(row_id),
        "appId": obs.subject_id,
        "keyword": obs.keyword,
        "country": obs.country,
        "rank": obs.rank or 0,
        "score": obs.score,
        "traffic": obs.traffic,
        "date": day,
    }


def fetch_apps() -> list[Subject]:
    """全アプリを名前順で取得する."""
    resp = (
        _table(APPS_TABLE)
        .select("id, name, platform, brands:brandId(name)")
        .order("name")
        .execute()
    )

    subjects = []
    for row in resp.data:
        brand = row.get("brands", {}) or {}
        subjects.append(Subject(
            id=row["id"],
            name=row.get("name", ""),
            platform=row.get("platform"),
            brand=brand.get("name"),
        ))
    return subjects


def fetch_rankings(
    app_ids: Iterable[str] | None = None, since: date | None = None
) -> list[RankObservation]:
    """順位履歴をページングしながら全件取得する.

    Args:
        app_ids: 取得対象のアプリ ID. 省略時は全アプリ
        since: この日付以降のみ取得
    """
    app_ids = list(app_ids) if app_ids is not None else None
    rows: list[dict] = []
    offset = 0
    while True:
        query = _table(RANKINGS_TABLE).select(
            "appId, keyword, country, rank, score, traffic, date"
        )
        if app_ids is not None:
            query = query.in_("appId", app_ids)
        if since is not None:
            query = query.gte("date", since.isoformat())
        # 同じ日付の行は id 順 (ページ間で順序を固定)
        resp = (
            query.order("date").order("id")
            .range(offset, offset + FETCH_PAGE_SIZE - 1)
            .execute()
        )
        rows.extend(resp.data)
        if len(resp.data) < FETCH_PAGE_SIZE:
            break
        offset += FETCH_PAGE_SIZE

    logger.info("%s から %d 件取得", RANKINGS_TABLE, len(rows))
    return [record_to_observation(r) for r in rows]


def upsert_rankings(observations: Iterable[RankObservation]) -> None:
    """順位を一括 upsert する. 同じ (appId, keyword, country, date) は上書き."""
    # 同一キーが複数あると upsert が失敗するため、ファイル内の重複は後勝ちで畳む
    records = {
        (o.subject_id, o.entity, o.observed_on): observation_to_record(o)
        for o in observations
    }
    if not records:
        return
    (
        _table(RANKINGS_TABLE)
        .upsert(list(records.values()), on_conflict="appId,keyword,country,date")
        .execute()
    )
    logger.info("%s に %d 件 upsert", RANKINGS_TABLE, len(records))
