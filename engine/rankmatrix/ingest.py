"""エクスポート取り込み — 正規化してストアへ upsert する.

ファイル単位の構造的エラー (必須カラムなし・空ファイル) は 1 件も書き込まずに中断し、
行単位の不備はスキップして件数を集計に載せる。
"""

from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from typing import Iterable

from rankmatrix.config import INGEST_MAX_WORKERS
from rankmatrix.errors import IngestError
from rankmatrix.models import IngestSummary, RankObservation
from rankmatrix.normalizer import parse_export
from rankmatrix.store import ObservationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Upload:
    """アップロード 1 ファイル分."""

    subject_id: str
    text: str
    source: str = "<upload>"
    observed_on: date | None = None


def ingest_text(
    store: ObservationStore,
    text: str,
    subject_id: str,
    observed_on: date | None = None,
    source: str = "<upload>",
) -> IngestSummary:
    """1 ファイルを正規化してストアに取り込む.

    Raises:
        IngestError: 構造的エラー. この場合ストアは変更されない
    """
    parsed = parse_export(text, subject_id, observed_on=observed_on, source=source)
    summary = IngestSummary(subject_id=subject_id, source=source)

    def _counted(observations: Iterable[RankObservation]):
        for obs in observations:
            summary.processed += 1
            yield obs

    summary.created, summary.overwritten = store.put_many(_counted(parsed.observations))
    summary.warnings = list(parsed.warnings)

    logger.info(
        "取り込み完了: source=%s, subject=%s, 処理=%d, 新規=%d, 上書き=%d, スキップ=%d",
        source, subject_id, summary.processed, summary.created,
        summary.overwritten, summary.skipped,
    )
    return summary


def ingest_batch(
    store: ObservationStore,
    uploads: Iterable[Upload],
    max_workers: int = INGEST_MAX_WORKERS,
) -> list[IngestSummary | IngestError]:
    """複数ファイルを取り込む.

    アプリごとの履歴は独立しているため、アプリ単位で並列に書き込む。
    同じアプリのファイルは渡された順に 1 つずつ取り込むので、後のファイルが勝つ。
    1 ファイルの構造的エラーは他のファイルの取り込みを止めない。

    Returns:
        uploads と同じ順の IngestSummary (成功) または IngestError (失敗)
    """
    uploads = list(uploads)
    groups: dict[str, list[int]] = defaultdict(list)
    for i, upload in enumerate(uploads):
        groups[upload.subject_id].append(i)

    results: list[IngestSummary | IngestError | None] = [None] * len(uploads)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [
            executor.submit(_ingest_sequential, store, [uploads[i] for i in indexes])
            for indexes in groups.values()
        ]
        for indexes, future in zip(groups.values(), futures):
            for i, result in zip(indexes, future.result()):
                results[i] = result

    failed = sum(1 for r in results if isinstance(r, IngestError))
    logger.info("一括取り込み: %d ファイル, アプリ %d 件, 失敗 %d", len(results), len(groups), failed)
    return results


def _ingest_sequential(
    store: ObservationStore, uploads: list[Upload]
) -> list[IngestSummary | IngestError]:
    """同じアプリのファイルを順番に取り込む."""
    results: list[IngestSummary | IngestError] = []
    for u in uploads:
        try:
            results.append(ingest_text(store, u.text, u.subject_id, u.observed_on, u.source))
        except IngestError as e:
            logger.error("取り込み失敗: source=%s, error=%s", u.source, e)
            results.append(e)
    return results
