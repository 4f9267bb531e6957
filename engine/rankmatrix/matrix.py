"""順位マトリクス生成モジュール.

指定日について、行 = キーワード×国 / 列 = アプリ の表を作り、
各セルに今回順位・前回順位・変動を付ける。ストアは読むだけで変更しない。
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Sequence

from rankmatrix.config import MAX_STALENESS_DAYS
from rankmatrix.models import (
    EMPTY_CELL,
    KeywordCountryKey,
    Matrix,
    MatrixCell,
    MatrixRow,
    Subject,
)
from rankmatrix.store import ObservationStore

logger = logging.getLogger(__name__)


class MatrixBuilder:
    """ObservationStore から順位マトリクスを組み立てる."""

    def __init__(self, store: ObservationStore, max_staleness_days: int = MAX_STALENESS_DAYS):
        self.store = store
        self.max_staleness_days = max_staleness_days

    def build(
        self,
        target_date: date,
        subjects: Sequence[Subject] | None = None,
        country: str | None = None,
        platform: str | None = None,
        compare_days: int | None = None,
    ) -> Matrix:
        """指定日のマトリクスを作る.

        Args:
            target_date: 対象日
            subjects: 列にするアプリ (この順で並ぶ). 省略時はストア内の全アプリ
            country: 行を絞り込む国コード
            platform: 列を絞り込むプラットフォーム
            compare_days: 指定時は N 日前時点の順位と比較する. 省略時は直前の観測と比較

        Returns:
            Matrix. 行は国 → キーワード順
        """
        if subjects is None:
            subjects = [Subject(id=sid, name=sid) for sid in sorted(self.store.subject_ids())]
        columns = tuple(s for s in subjects if platform is None or s.platform == platform)
        column_ids = [s.id for s in columns]
        baseline = target_date - timedelta(days=compare_days) if compare_days else None

        keys = sorted(
            self.store.entity_keys(column_ids, country),
            key=lambda k: (k.country, k.keyword),
        )
        rows = tuple(
            MatrixRow(
                key=key,
                cells={sid: self.cell(key, sid, target_date, baseline) for sid in column_ids},
            )
            for key in keys
        )

        logger.debug(
            "マトリクス生成: date=%s, country=%s, rows=%d, columns=%d",
            target_date, country, len(rows), len(columns),
        )
        return Matrix(
            date=target_date,
            columns=columns,
            rows=rows,
            countries=tuple(self.countries()),
            baseline=baseline,
        )

    def cell(
        self,
        entity: KeywordCountryKey,
        subject_id: str,
        target_date: date,
        baseline: date | None = None,
    ) -> MatrixCell:
        """1 セル分の順位と変動を求める."""
        latest = self.store.latest_at_or_before(entity, subject_id, target_date)
        if latest is None:
            return EMPTY_CELL

        if (target_date - latest.observed_on).days > self.max_staleness_days:
            # 対象日に観測なし → 「前回 N 位」として表示
            return MatrixCell.compare(None, latest.rank)

        if baseline is not None:
            bound = min(baseline, latest.observed_on - timedelta(days=1))
            previous = self.store.latest_at_or_before(entity, subject_id, bound)
        else:
            previous = self.store.previous_before(entity, subject_id, target_date)

        return MatrixCell.compare(latest.rank, previous.rank if previous else None)

    def countries(self) -> list[str]:
        """観測のある国コード一覧 (昇順)."""
        return sorted(self.store.countries())

    def subjects_for_country(
        self,
        country: str,
        subjects: Sequence[Subject],
        platform: str | None = None,
    ) -> list[Subject]:
        """指定国で 1 件以上観測のあるアプリだけを返す."""
        observed = self.store.subject_ids(country)
        return [
            s for s in subjects
            if s.id in observed and (platform is None or s.platform == platform)
        ]
