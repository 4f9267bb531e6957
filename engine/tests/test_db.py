"""db モジュールのモックテスト."""

from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from rankmatrix.models import KeywordCountryKey, RankObservation


def _chain(data=None) -> MagicMock:
    """Supabase のクエリビルダー (メソッドチェーン) を模したモック."""
    chain = MagicMock()
    for name in ("select", "insert", "upsert", "in_", "gte", "order", "range"):
        getattr(chain, name).return_value = chain
    chain.execute.return_value = MagicMock(data=data or [])
    return chain


def _obs(keyword="cat food", rank=3, day=date(2025, 10, 7)) -> RankObservation:
    return RankObservation(
        entity=KeywordCountryKey.of(keyword, "US"),
        subject_id="app-1",
        observed_on=day,
        rank=rank,
        score=40,
        traffic=900,
    )


class TestUpsertRankings:
    """upsert_rankings のテスト."""

    @patch("rankmatrix.db._table")
    def test_upsert_records(self, mock_table):
        from rankmatrix.db import upsert_rankings

        mock_chain = _chain()
        mock_table.return_value = mock_chain

        upsert_rankings([_obs()])

        mock_table.assert_called_once_with("app_rankings")
        records = mock_chain.upsert.call_args.args[0]
        assert mock_chain.upsert.call_args.kwargs == {"on_conflict": "appId,keyword,country,date"}
        assert len(records) == 1
        record = records[0]
        assert record["appId"] == "app-1"
        assert record["keyword"] == "cat food"
        assert record["country"] == "US"
        assert record["rank"] == 3
        assert record["date"] == "2025-10-07"

    @patch("rankmatrix.db._table")
    def test_unranked_saved_as_zero(self, mock_table):
        from rankmatrix.db import upsert_rankings

        mock_chain = _chain()
        mock_table.return_value = mock_chain

        upsert_rankings([_obs(rank=None)])

        assert mock_chain.upsert.call_args.args[0][0]["rank"] == 0

    @patch("rankmatrix.db._table")
    def test_duplicate_keys_collapsed(self, mock_table):
        """同一キーは後勝ちで 1 件にまとめること."""
        from rankmatrix.db import upsert_rankings

        mock_chain = _chain()
        mock_table.return_value = mock_chain

        upsert_rankings([_obs(rank=3), _obs(rank=5), _obs(keyword="dog toys")])

        records = mock_chain.upsert.call_args.args[0]
        assert [(r["keyword"], r["rank"]) for r in records] == [("cat food", 5), ("dog toys", 3)]

    @patch("rankmatrix.db._table")
    def test_skip_empty(self, mock_table):
        from rankmatrix.db import upsert_rankings

        upsert_rankings([])
        mock_table.assert_not_called()


class TestFetchRankings:
    """fetch_rankings のテスト."""

    @patch("rankmatrix.db._table")
    def test_fetch_and_convert(self, mock_table):
        from rankmatrix.db import fetch_rankings

        mock_chain = _chain([
            {"appId": "app-1", "keyword": "Cat Food", "country": "us", "rank": 8,
             "score": None, "traffic": 100, "date": "2025-10-07T00:00:00"},
            {"appId": "app-2", "keyword": "dog toys", "country": "GB", "rank": 0,
             "score": 12, "traffic": None, "date": "2025-10-06"},
        ])
        mock_table.return_value = mock_chain

        observations = fetch_rankings(app_ids=["app-1", "app-2"], since=date(2025, 10, 1))

        mock_chain.in_.assert_called_once_with("appId", ["app-1", "app-2"])
        mock_chain.gte.assert_called_once_with("date", "2025-10-01")
        mock_chain.range.assert_called_once_with(0, 999)
        assert [c.args for c in mock_chain.order.call_args_list] == [("date",), ("id",)]
        assert observations[0].entity == KeywordCountryKey("cat food", "US")
        assert observations[0].observed_on == date(2025, 10, 7)
        assert observations[0].rank == 8
        assert observations[1].rank is None

    @patch("rankmatrix.db.FETCH_PAGE_SIZE", 2)
    @patch("rankmatrix.db._table")
    def test_paging(self, mock_table):
        from rankmatrix.db import fetch_rankings

        row = {"appId": "app-1", "keyword": "cat food", "country": "US", "rank": 1,
               "date": "2025-10-07"}
        mock_chain = _chain()
        mock_chain.execute.side_effect = [
            MagicMock(data=[row, row]),
            MagicMock(data=[row]),
        ]
        mock_table.return_value = mock_chain

        observations = fetch_rankings()

        assert len(observations) == 3
        assert [c.args for c in mock_chain.range.call_args_list] == [(0, 1), (2, 3)]
        assert [c.args for c in mock_chain.order.call_args_list] == [("date",), ("id",)] * 2
        mock_chain.in_.assert_not_called()


class TestFetchApps:
    """fetch_apps のテスト."""

    @patch("rankmatrix.db._table")
    def test_subjects(self, mock_table):
        from rankmatrix.db import fetch_apps

        mock_table.return_value = _chain([
            {"id": "app-1", "name": "Photo Lab", "platform": "ios", "brands": {"name": "Acme"}},
            {"id": "app-2", "name": "Video Lab", "platform": "android", "brands": None},
        ])

        subjects = fetch_apps()

        mock_table.assert_called_once_with("apps")
        assert [(s.id, s.platform, s.brand) for s in subjects] == [
            ("app-1", "ios", "Acme"),
            ("app-2", "android", None),
        ]


class TestRecordConversion:
    """observation_to_record のテスト."""

    def test_stable_id(self):
        """同じキーなら再アップロードでも同じ行 ID になること."""
        from rankmatrix.db import observation_to_record

        assert observation_to_record(_obs(rank=3))["id"] == observation_to_record(_obs(rank=9))["id"]
        assert observation_to_record(_obs())["id"] != observation_to_record(_obs("dog toys"))["id"]

    @patch("rankmatrix.db.SUPABASE_URL", "")
    @patch("rankmatrix.db._client", None)
    def test_missing_credentials(self):
        from rankmatrix.db import _table

        with pytest.raises(RuntimeError):
            _table("app_rankings")
