"""順位マトリクス — コマンドラインエントリーポイント.

サブコマンド:
  ingest  エクスポート (ファイル / URL) を正規化して app_rankings に upsert
  matrix  app_rankings から指定日のマトリクスを作り、絞り込み・並び替えて JSON 出力

使い方:
  python -m rankmatrix.main ingest --app APP_ID rankings.csv https://example.com/export.tsv
  python -m rankmatrix.main matrix --date 2025-10-07 --country US --filter drops --sort biggest_drops
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
import time
from datetime import date, datetime

from rankmatrix.config import COMPARE_PERIODS, INGEST_MAX_WORKERS, LOG_DIR
from rankmatrix.db import fetch_apps, fetch_rankings, upsert_rankings
from rankmatrix.errors import IngestError
from rankmatrix.ingest import Upload, ingest_batch
from rankmatrix.matrix import MatrixBuilder
from rankmatrix.sources import load_export
from rankmatrix.store import ObservationStore
from rankmatrix.views import FilterMode, SortOrder, apply_view

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """ロギングの初期設定. 標準出力は JSON 出力用に空けておく."""
    log_file = LOG_DIR / f"rankmatrix_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"日付は YYYY-MM-DD 形式で指定してください: {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rankmatrix", description="順位マトリクス")
    sub = parser.add_subparsers(dest="command", required=True)

    p_ingest = sub.add_parser("ingest", help="順位エクスポートを取り込む")
    p_ingest.add_argument("--app", required=True, help="取り込み先のアプリ ID")
    p_ingest.add_argument("--date", type=_parse_date, help="日付カラムが無い場合の日付 (既定: 今日)")
    p_ingest.add_argument("--dry-run", action="store_true", help="DB に書き込まない")
    p_ingest.add_argument("--workers", type=int, default=INGEST_MAX_WORKERS)
    p_ingest.add_argument("sources", nargs="+", help="ファイルパスまたは URL")

    p_matrix = sub.add_parser("matrix", help="順位マトリクスを出力する")
    p_matrix.add_argument("--date", type=_parse_date, default=date.today())
    p_matrix.add_argument("--country", help="国コード (既定: 最初の国)")
    p_matrix.add_argument("--platform", help="列にするアプリのプラットフォーム")
    p_matrix.add_argument("--filter", choices=[m.value for m in FilterMode], default="all")
    p_matrix.add_argument("--sort", choices=[o.value for o in SortOrder], default="alphabetical")
    p_matrix.add_argument("--search", help="キーワードの部分一致")
    p_matrix.add_argument("--compare", type=int, choices=COMPARE_PERIODS,
                          help="N 日前と比較 (省略時は直前の観測と比較)")
    return parser


def run_ingest(args: argparse.Namespace) -> int:
    """エクスポートを取り込み、DB に反映する."""
    start_time = time.time()
    uploads = []
    error_count = 0
    for location in args.sources:
        text = load_export(location)
        if text is None:
            error_count += 1
            logger.warning("スキップ: %s", location)
            continue
        uploads.append(Upload(
            subject_id=args.app, text=text, source=location, observed_on=args.date,
        ))

    store = ObservationStore()
    results = ingest_batch(store, uploads, max_workers=args.workers)

    processed = skipped = 0
    for result in results:
        if isinstance(result, IngestError):
            error_count += 1
            continue
        processed += result.processed
        skipped += result.skipped

    if args.dry_run:
        logger.info("dry-run: DB 書き込みを省略 (%d 件)", len(store))
    else:
        upsert_rankings(store)

    elapsed = time.time() - start_time
    logger.info("=== 取り込み完了 ===")
    logger.info("処理: %d 行, スキップ: %d 行, エラー: %d ファイル, 所要時間: %.1f 秒",
                processed, skipped, error_count, elapsed)
    return 1 if error_count else 0


def run_matrix(args: argparse.Namespace) -> int:
    """マトリクスを作って標準出力に JSON を書く."""
    store = ObservationStore()
    store.put_many(fetch_rankings())
    builder = MatrixBuilder(store)

    country = args.country.upper() if args.country else None
    if country is None:
        countries = builder.countries()
        if not countries:
            logger.warning("順位データがありません。終了します。")
            return 0
        country = countries[0]

    subjects = builder.subjects_for_country(country, fetch_apps(), platform=args.platform)
    matrix = builder.build(args.date, subjects=subjects, country=country, compare_days=args.compare)
    rows = apply_view(matrix, mode=args.filter, order=args.sort, search=args.search)
    logger.info("マトリクス: country=%s, 列=%d, 行=%d/%d",
                country, len(subjects), len(rows), len(matrix.rows))

    payload = dataclasses.replace(matrix, rows=tuple(rows)).to_dict()
    payload["country"] = country
    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")
    return 0


def run(argv: list[str] | None = None) -> int:
    """メイン処理."""
    args = build_parser().parse_args(argv)
    setup_logging()
    if args.command == "ingest":
        return run_ingest(args)
    return run_matrix(args)


if __name__ == "__main__":
    sys.exit(run())
