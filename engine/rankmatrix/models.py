"""データモデル定義."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date

from rankmatrix.config import RANK_TIER_MID, RANK_TIER_TOP

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True, order=True)
class KeywordCountryKey:
    """マトリクスの行キー (キーワード × 国)."""

    keyword: str  # 正規化済み (小文字・空白1つ)
    country: str  # 2文字の国コード (大文字)

    @classmethod
    def of(cls, keyword: str, country: str) -> KeywordCountryKey:
        """表記ゆれを吸収してキーを作る."""
        normalized = _WHITESPACE.sub(" ", keyword.strip()).lower()
        return cls(keyword=normalized, country=country.strip().upper())

    def __str__(self) -> str:
        return f"{self.keyword} ({self.country})"


@dataclass(frozen=True)
class SeriesKey:
    """1 本の順位履歴を特定するキー."""

    entity: KeywordCountryKey
    subject_id: str


@dataclass(frozen=True)
class RankObservation:
    """ある日付の順位1件."""

    entity: KeywordCountryKey
    subject_id: str  # アプリ ID
    observed_on: date
    rank: int | None  # None = 圏外
    score: int | None = None
    traffic: int | None = None

    @property
    def keyword(self) -> str:
        return self.entity.keyword

    @property
    def country(self) -> str:
        return self.entity.country

    @property
    def series_key(self) -> SeriesKey:
        return SeriesKey(self.entity, self.subject_id)


@dataclass(frozen=True)
class Subject:
    """マトリクスの列 (アプリ)."""

    id: str
    name: str
    platform: str | None = None  # "ios" / "android" など
    brand: str | None = None


def rank_tier(rank: int | None) -> str | None:
    """順位帯を返す. 表示色の決定に使う."""
    if not rank:
        return None
    if rank <= RANK_TIER_TOP:
        return "top"
    if rank <= RANK_TIER_MID:
        return "mid"
    return "low"


@dataclass(frozen=True)
class MatrixCell:
    """1 セル分の順位と変動. 保存はせず都度計算する."""

    current_rank: int | None
    previous_rank: int | None
    delta: int | None  # 正 = 改善 (順位の数字が小さくなった)

    @classmethod
    def compare(cls, current: int | None, previous: int | None) -> MatrixCell:
        delta = None
        if current is not None and previous is not None:
            delta = previous - current
        return cls(current_rank=current, previous_rank=previous, delta=delta)

    @property
    def dropped_out(self) -> bool:
        """前回は順位があり、今回は圏外."""
        return self.current_rank is None and self.previous_rank is not None

    @property
    def tier(self) -> str | None:
        return rank_tier(self.current_rank)

    def to_dict(self) -> dict:
        return {
            "rank": self.current_rank,
            "prevRank": self.previous_rank,
            "change": self.delta,
            "tier": self.tier,
        }


EMPTY_CELL = MatrixCell(current_rank=None, previous_rank=None, delta=None)


@dataclass(frozen=True)
class MatrixRow:
    """マトリクスの1行 (キーワード × 国)."""

    key: KeywordCountryKey
    cells: dict[str, MatrixCell] = field(default_factory=dict, hash=False)

    @property
    def keyword(self) -> str:
        return self.key.keyword

    @property
    def country(self) -> str:
        return self.key.country

    def cell(self, subject_id: str) -> MatrixCell:
        return self.cells.get(subject_id, EMPTY_CELL)


@dataclass(frozen=True)
class Matrix:
    """指定日のキーワード × アプリの順位表."""

    date: date
    columns: tuple[Subject, ...]
    rows: tuple[MatrixRow, ...]
    countries: tuple[str, ...]
    baseline: date | None = None  # 比較期間指定時の比較日

    @property
    def column_ids(self) -> tuple[str, ...]:
        return tuple(s.id for s in self.columns)

    def to_dict(self) -> dict:
        """JSON 応答用の dict に変換する."""
        return {
            "date": self.date.isoformat(),
            "prevDate": self.baseline.isoformat() if self.baseline else None,
            "countries": list(self.countries),
            "apps": [
                {"id": s.id, "name": s.name, "platform": s.platform, "brand": s.brand}
                for s in self.columns
            ],
            "keywordRows": [
                {
                    "keyword": row.keyword,
                    "country": row.country,
                    "appRankings": {
                        sid: row.cell(sid).to_dict() for sid in self.column_ids
                    },
                }
                for row in self.rows
            ],
        }


@dataclass
class IngestSummary:
    """1 ファイル分の取り込み結果."""

    subject_id: str
    source: str
    processed: int = 0
    created: int = 0
    overwritten: int = 0
    warnings: list = field(default_factory=list)  # MalformedRowWarning

    @property
    def skipped(self) -> int:
        return len(self.warnings)


@dataclass(frozen=True)
class HistoryStats:
    """1 系列の順位履歴の集計."""

    total_records: int
    average_position: int | None
    best_position: int | None
    worst_position: int | None
    current_position: int | None
    previous_position: int | None
    position_change: int | None  # 正 = 改善
    average_traffic: int | None
    first_recorded: date
    last_recorded: date
    days_tracked: int
    trend: str | None  # "improving" / "declining" / "stable"
