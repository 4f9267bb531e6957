"""順位履歴のインメモリストア.

(キーワード×国, アプリ) ごとに日付順の系列を持ち、
「指定日以前の最新」「その1つ前」を二分探索で返す。
書き込みは put 経由のみ。同じ系列への書き込みは系列ごとのロックで直列化する。
"""

from __future__ import annotations

import logging
import threading
from bisect import bisect_right, insort
from datetime import date
from typing import Iterable, Iterator

from rankmatrix.models import KeywordCountryKey, RankObservation, SeriesKey

logger = logging.getLogger(__name__)


class _Series:
    """1 系列分の履歴. dates は常に昇順."""

    __slots__ = ("dates", "by_date")

    def __init__(self) -> None:
        self.dates: list[date] = []
        self.by_date: dict[date, RankObservation] = {}

    def upsert(self, obs: RankObservation) -> bool:
        """追加または上書きする. 上書きなら True."""
        existed = obs.observed_on in self.by_date
        # 読み取り側は dates → by_date の順に参照するため、先に by_date を埋める
        self.by_date[obs.observed_on] = obs
        if not existed:
            insort(self.dates, obs.observed_on)
        return existed

    def index_at_or_before(self, day: date) -> int:
        return bisect_right(self.dates, day) - 1

    def at(self, idx: int) -> RankObservation | None:
        if idx < 0:
            return None
        return self.by_date[self.dates[idx]]


class ObservationStore:
    """順位観測の唯一の保持者."""

    def __init__(self) -> None:
        self._series: dict[SeriesKey, _Series] = {}
        self._locks: dict[SeriesKey, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # --- 書き込み ---

    def put(self, observation: RankObservation) -> None:
        """(行キー, アプリ, 日付) 単位で upsert する. 同一キーは後勝ち."""
        self._upsert(observation)

    def put_many(self, observations: Iterable[RankObservation]) -> tuple[int, int]:
        """まとめて upsert する.

        Returns:
            (新規件数, 上書き件数)
        """
        created = overwritten = 0
        for obs in observations:
            if self._upsert(obs):
                overwritten += 1
            else:
                created += 1
        return created, overwritten

    def _upsert(self, obs: RankObservation) -> bool:
        series, lock = self._series_for_write(obs.series_key)
        with lock:
            return series.upsert(obs)

    def _series_for_write(self, key: SeriesKey) -> tuple[_Series, threading.Lock]:
        with self._registry_lock:
            series = self._series.get(key)
            if series is None:
                series = self._series[key] = _Series()
                self._locks[key] = threading.Lock()
            return series, self._locks[key]

    # --- 読み取り ---

    def latest_at_or_before(
        self, entity: KeywordCountryKey, subject_id: str, day: date
    ) -> RankObservation | None:
        """指定日以前で最も新しい観測を返す."""
        series = self._series.get(SeriesKey(entity, subject_id))
        if series is None:
            return None
        return series.at(series.index_at_or_before(day))

    def previous_before(
        self, entity: KeywordCountryKey, subject_id: str, day: date
    ) -> RankObservation | None:
        """latest_at_or_before が返す観測の、1 つ前の観測を返す.

        「前日」ではなく「直前に観測された日」である点に注意。
        """
        series = self._series.get(SeriesKey(entity, subject_id))
        if series is None:
            return None
        idx = series.index_at_or_before(day)
        if idx < 0:
            return None
        return series.at(idx - 1)

    def most_recent_ever(
        self, entity: KeywordCountryKey, subject_id: str
    ) -> RankObservation | None:
        """日付に関係なく最新の観測を返す."""
        series = self._series.get(SeriesKey(entity, subject_id))
        if series is None or not series.dates:
            return None
        return series.at(len(series.dates) - 1)

    def history(self, entity: KeywordCountryKey, subject_id: str) -> tuple[RankObservation, ...]:
        """系列全体を日付昇順で返す."""
        series = self._series.get(SeriesKey(entity, subject_id))
        if series is None:
            return ()
        return tuple(series.by_date[d] for d in list(series.dates))

    def series_keys(self) -> list[SeriesKey]:
        with self._registry_lock:
            return list(self._series)

    def entity_keys(
        self, subject_ids: Iterable[str] | None = None, country: str | None = None
    ) -> set[KeywordCountryKey]:
        """観測のある行キーの和集合を返す."""
        wanted = set(subject_ids) if subject_ids is not None else None
        country = country.upper() if country else None
        return {
            key.entity
            for key in self.series_keys()
            if (wanted is None or key.subject_id in wanted)
            and (country is None or key.entity.country == country)
        }

    def subject_ids(self, country: str | None = None) -> set[str]:
        country = country.upper() if country else None
        return {
            key.subject_id
            for key in self.series_keys()
            if country is None or key.entity.country == country
        }

    def countries(self) -> set[str]:
        return {key.entity.country for key in self.series_keys()}

    def __iter__(self) -> Iterator[RankObservation]:
        """全観測を系列ごと・日付昇順で返す."""
        for key in self.series_keys():
            yield from self.history(key.entity, key.subject_id)

    def __len__(self) -> int:
        return sum(len(self._series[key].dates) for key in self.series_keys())

    def __contains__(self, obs: object) -> bool:
        if not isinstance(obs, RankObservation):
            return False
        series = self._series.get(obs.series_key)
        return series is not None and obs.observed_on in series.by_date
