"""設定モジュール — 環境変数・定数定義."""

import os
from pathlib import Path

from dotenv import load_dotenv

# .env はリポジトリルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- Supabase ---
# 未設定でも import は通す。クライアント生成時に検証する
SUPABASE_URL: str = os.environ.get("SUPABASE_URL", "")
SUPABASE_SECRET_KEY: str = os.environ.get("SUPABASE_SECRET_KEY", "")
SUPABASE_SCHEMA: str = os.environ.get("SUPABASE_SCHEMA", "public")

RANKINGS_TABLE = "app_rankings"
APPS_TABLE = "apps"
FETCH_PAGE_SIZE = 1000

# --- エクスポート取得 ---
REQUEST_TIMEOUT = 30  # 秒
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

# --- 順位表示 ---
RANK_TIER_TOP = 10  # 1〜10位
RANK_TIER_MID = 50  # 11〜50位
COMPARE_PERIODS = (1, 7, 30)  # 日
# 対象日から何日前までの観測を「当日の順位」とみなすか
MAX_STALENESS_DAYS = 0

# --- 取り込み ---
INGEST_MAX_WORKERS = int(os.environ.get("INGEST_MAX_WORKERS", "4"))

# --- ログ ---
LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
LOG_DIR.mkdir(exist_ok=True)
