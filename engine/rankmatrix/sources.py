"""順位エクスポートの読み込みモジュール.

取得元:
  1. http(s) URL — ツールのエクスポート URL を requests で取得
  2. ローカルファイル — UTF-8 (BOM 付きも可)
"""

from __future__ import annotations

import logging
from pathlib import Path

import requests

from rankmatrix.config import REQUEST_TIMEOUT, USER_AGENT

logger = logging.getLogger(__name__)


def fetch_export(url: str) -> str | None:
    """エクスポート URL から本文を取得する.

    Returns:
        本文。失敗時は None。
    """
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "text/csv,text/tab-separated-values,text/html;q=0.9,*/*;q=0.8",
    }

    try:
        resp = requests.get(url, headers=headers, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error("エクスポート取得失敗: url=%s, error=%s", url, e)
        return None

    # Content-Type に charset が無いと requests は ISO-8859-1 とみなす
    if resp.encoding is None or resp.encoding.lower() == "iso-8859-1":
        resp.encoding = resp.apparent_encoding or "utf-8"
    return resp.text


def read_export_file(path: str | Path) -> str:
    """ローカルのエクスポートファイルを読む."""
    return Path(path).read_text(encoding="utf-8-sig")


def load_export(location: str) -> str | None:
    """URL / ファイルパスのどちらでも本文を返す. 取得失敗時は None."""
    if location.startswith(("http://", "https://")):
        return fetch_export(location)
    try:
        return read_export_file(location)
    except OSError as e:
        logger.error("ファイル読み込み失敗: path=%s, error=%s", location, e)
        return None
