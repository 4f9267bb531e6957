"""views モジュールのユニットテスト."""

from datetime import date

import pytest

from rankmatrix.models import KeywordCountryKey, Matrix, MatrixCell, MatrixRow, Subject
from rankmatrix.views import FilterMode, SortOrder, apply_view, filter_rows, sort_rows

COLUMNS = ["app-a", "app-b"]


def _row(keyword: str, country: str = "US", **cells) -> MatrixRow:
    """cells は app_id=(今回, 前回)."""
    return MatrixRow(
        key=KeywordCountryKey.of(keyword, country),
        cells={sid.replace("_", "-"): MatrixCell.compare(*ranks) for sid, ranks in cells.items()},
    )


ROWS = [
    _row("zebra", app_a=(5, 10), app_b=(20, 20)),  # +5
    _row("apple", app_a=(30, 10)),  # -20
    _row("mango", app_a=(3, 3), app_b=(7, None)),  # 変動なし
    _row("Banana", "GB", app_a=(12, 14), app_b=(40, 30)),  # +2 / -10
    _row("cherry", app_a=(None, 8)),  # 圏外落ち
    _row("apple", "DE", app_b=(2, 9)),  # +7 (app-b のみ)
]


def _keys(rows):
    return [(r.keyword, r.country) for r in rows]


class TestFilterRows:
    """filter_rows のテスト."""

    def test_all(self):
        assert filter_rows(ROWS, COLUMNS, FilterMode.ALL) == ROWS

    def test_changed(self):
        assert _keys(filter_rows(ROWS, COLUMNS, "changed")) == [
            ("zebra", "US"), ("apple", "US"), ("banana", "GB"), ("apple", "DE"),
        ]

    def test_drops(self):
        assert _keys(filter_rows(ROWS, COLUMNS, "drops")) == [("apple", "US"), ("banana", "GB")]

    def test_gains(self):
        assert _keys(filter_rows(ROWS, COLUMNS, "gains")) == [
            ("zebra", "US"), ("banana", "GB"), ("apple", "DE"),
        ]

    def test_only_active_columns(self):
        """非表示列の変動は判定に使わないこと."""
        assert _keys(filter_rows(ROWS, ["app-a"], "drops")) == [("apple", "US")]
        assert _keys(filter_rows(ROWS, ["app-b"], "gains")) == [("apple", "DE")]

    def test_no_active_columns(self):
        for mode in ("changed", "drops", "gains"):
            assert filter_rows(ROWS, [], mode) == []
        assert filter_rows(ROWS, [], "all") == ROWS

    def test_composition(self):
        """drops ⊆ changed ⊆ all."""
        for columns in (COLUMNS, ["app-a"], ["app-b"], []):
            all_rows = filter_rows(ROWS, columns, "all")
            changed = filter_rows(ROWS, columns, "changed")
            for mode in ("drops", "gains"):
                assert all(r in changed for r in filter_rows(ROWS, columns, mode))
            assert all(r in all_rows for r in changed)

    def test_search(self):
        assert _keys(filter_rows(ROWS, COLUMNS, "all", search="APP")) == [
            ("apple", "US"), ("apple", "DE"),
        ]

    def test_no_matches(self):
        assert filter_rows(ROWS, COLUMNS, "all", search="nothing") == []

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            filter_rows(ROWS, COLUMNS, "losers")


class TestSortRows:
    """sort_rows のテスト."""

    def test_alphabetical(self):
        assert _keys(sort_rows(ROWS, COLUMNS, SortOrder.ALPHABETICAL)) == [
            ("apple", "DE"), ("apple", "US"), ("banana", "GB"),
            ("cherry", "US"), ("mango", "US"), ("zebra", "US"),
        ]

    def test_biggest_drops(self):
        """最大の下落順. 下落なしは 0 扱いでアルファベット順."""
        assert _keys(sort_rows(ROWS, COLUMNS, "biggest_drops")) == [
            ("apple", "US"), ("banana", "GB"),
            ("apple", "DE"), ("cherry", "US"), ("mango", "US"), ("zebra", "US"),
        ]

    def test_biggest_gains(self):
        assert _keys(sort_rows(ROWS, COLUMNS, "biggest_gains")) == [
            ("apple", "DE"), ("zebra", "US"), ("banana", "GB"),
            ("apple", "US"), ("cherry", "US"), ("mango", "US"),
        ]

    def test_best_rank(self):
        """最良順位順. 順位なしは最後."""
        assert _keys(sort_rows(ROWS, COLUMNS, "best_rank")) == [
            ("apple", "DE"), ("mango", "US"), ("zebra", "US"),
            ("banana", "GB"), ("apple", "US"), ("cherry", "US"),
        ]

    def test_best_rank_active_columns_only(self):
        assert _keys(sort_rows(ROWS, ["app-a"], "best_rank")) == [
            ("mango", "US"), ("zebra", "US"), ("banana", "GB"), ("apple", "US"),
            ("apple", "DE"), ("cherry", "US"),
        ]

    def test_resort_is_permutation(self):
        by_rank = sort_rows(ROWS, COLUMNS, "best_rank")
        resorted = sort_rows(by_rank, COLUMNS, "alphabetical")

        assert len(resorted) == len(ROWS)
        assert sorted(_keys(resorted)) == sorted(_keys(ROWS))
        assert resorted == sort_rows(ROWS, COLUMNS, "alphabetical")

    def test_empty(self):
        assert sort_rows([], COLUMNS, "biggest_drops") == []


class TestApplyView:
    """apply_view のテスト."""

    def test_filter_then_sort(self):
        rows = apply_view(ROWS, COLUMNS, mode="drops", order="biggest_drops")

        assert _keys(rows) == [("apple", "US"), ("banana", "GB")]

    def test_matrix_uses_all_columns(self):
        matrix = Matrix(
            date=date(2025, 10, 7),
            columns=(Subject("app-a", "A"), Subject("app-b", "B")),
            rows=tuple(ROWS),
            countries=("DE", "GB", "US"),
        )

        assert apply_view(matrix, mode="gains", order="alphabetical") == apply_view(
            ROWS, COLUMNS, mode="gains", order="alphabetical"
        )

    def test_empty_result(self):
        assert apply_view(ROWS, [], mode="changed") == []
