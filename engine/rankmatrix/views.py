"""マトリクス行の絞り込み・並び替え.

すべて純粋関数。絞り込み → 並び替えの順に適用する。
判定には表示中の列 (active_columns) のセルだけを使う。
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Sequence

from rankmatrix.models import Matrix, MatrixCell, MatrixRow

# 順位なしを最後尾に並べるための番兵 (実在する順位より必ず大きい)
_NO_RANK = float("inf")


class FilterMode(str, Enum):
    ALL = "all"
    CHANGED = "changed"
    DROPS = "drops"
    GAINS = "gains"


class SortOrder(str, Enum):
    ALPHABETICAL = "alphabetical"
    BIGGEST_DROPS = "biggest_drops"
    BIGGEST_GAINS = "biggest_gains"
    BEST_RANK = "best_rank"


def _active_cells(row: MatrixRow, active_columns: Sequence[str]) -> list[MatrixCell]:
    return [row.cells[sid] for sid in active_columns if sid in row.cells]


def _deltas(row: MatrixRow, active_columns: Sequence[str]) -> list[int]:
    return [c.delta for c in _active_cells(row, active_columns) if c.delta is not None]


def _matches(row: MatrixRow, active_columns: Sequence[str], mode: FilterMode) -> bool:
    if mode is FilterMode.ALL:
        return True
    deltas = _deltas(row, active_columns)
    if mode is FilterMode.CHANGED:
        return any(d != 0 for d in deltas)
    if mode is FilterMode.DROPS:
        return any(d < 0 for d in deltas)
    return any(d > 0 for d in deltas)


def filter_rows(
    rows: Iterable[MatrixRow],
    active_columns: Sequence[str],
    mode: FilterMode | str = FilterMode.ALL,
    search: str | None = None,
) -> list[MatrixRow]:
    """条件に合う行だけを返す. 該当なしは空リスト.

    search を指定するとキーワードの部分一致 (大文字小文字無視) でも絞り込む。
    """
    mode = FilterMode(mode)
    needle = search.strip().casefold() if search else ""
    return [
        row for row in rows
        if _matches(row, active_columns, mode)
        and (not needle or needle in row.keyword.casefold())
    ]


def _alphabetical_key(row: MatrixRow) -> tuple[str, str]:
    return row.keyword.casefold(), row.country


def sort_rows(
    rows: Iterable[MatrixRow],
    active_columns: Sequence[str],
    order: SortOrder | str = SortOrder.ALPHABETICAL,
) -> list[MatrixRow]:
    """行を並び替える. 同順位はキーワード → 国の昇順."""
    order = SortOrder(order)

    if order is SortOrder.BIGGEST_DROPS:
        def key(row):
            worst = min(_deltas(row, active_columns), default=0)
            return min(worst, 0), _alphabetical_key(row)
    elif order is SortOrder.BIGGEST_GAINS:
        def key(row):
            best = max(_deltas(row, active_columns), default=0)
            return -max(best, 0), _alphabetical_key(row)
    elif order is SortOrder.BEST_RANK:
        def key(row):
            ranks = [
                c.current_rank for c in _active_cells(row, active_columns)
                if c.current_rank is not None
            ]
            return min(ranks, default=_NO_RANK), _alphabetical_key(row)
    else:
        key = _alphabetical_key

    return sorted(rows, key=key)


def apply_view(
    source: Matrix | Iterable[MatrixRow],
    active_columns: Sequence[str] | None = None,
    mode: FilterMode | str = FilterMode.ALL,
    order: SortOrder | str = SortOrder.ALPHABETICAL,
    search: str | None = None,
) -> list[MatrixRow]:
    """絞り込み → 並び替えを続けて適用する.

    active_columns を省略した場合、Matrix ならその全列を使う。
    """
    if isinstance(source, Matrix):
        rows: Iterable[MatrixRow] = source.rows
        if active_columns is None:
            active_columns = source.column_ids
    else:
        rows = source
    active_columns = list(active_columns or ())
    return sort_rows(filter_rows(rows, active_columns, mode, search), active_columns, order)
