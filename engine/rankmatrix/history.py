"""1 系列の順位履歴の集計."""

from __future__ import annotations

from typing import Sequence

from rankmatrix.models import HistoryStats, RankObservation


def summarize_history(observations: Sequence[RankObservation]) -> HistoryStats | None:
    """順位履歴から統計値を求める.

    Args:
        observations: 同一系列の観測 (順不同)

    Returns:
        HistoryStats。観測が無ければ None。
    """
    if not observations:
        return None

    history = sorted(observations, key=lambda o: o.observed_on)
    positions = [o.rank for o in history if o.rank is not None]
    traffic = [o.traffic for o in history if o.traffic is not None]

    current = history[-1].rank
    previous = history[-2].rank if len(history) > 1 else None
    change = previous - current if current is not None and previous is not None else None

    first, last = history[0].observed_on, history[-1].observed_on

    return HistoryStats(
        total_records=len(history),
        average_position=round(sum(positions) / len(positions)) if positions else None,
        best_position=min(positions) if positions else None,
        worst_position=max(positions) if positions else None,
        current_position=current,
        previous_position=previous,
        position_change=change,
        average_traffic=round(sum(traffic) / len(traffic)) if traffic else None,
        first_recorded=first,
        last_recorded=last,
        days_tracked=max((last - first).days, 1),
        trend=_trend(positions),
    )


def _trend(positions: list[int]) -> str | None:
    """最小二乗法の傾きで傾向を判定する. 順位の数字が下がる = 改善."""
    n = len(positions)
    if n < 2:
        return None
    sum_x = n * (n - 1) / 2
    sum_y = sum(positions)
    sum_xy = sum(i * p for i, p in enumerate(positions))
    sum_xx = (n - 1) * n * (2 * n - 1) / 6
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    if slope < 0:
        return "improving"
    if slope > 0:
        return "declining"
    return "stable"
