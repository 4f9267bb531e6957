"""順位エクスポート (CSV / TSV / HTML) の正規化モジュール.

処理フロー:
  1. 先頭行から区切り文字を判定 (タブ > カンマ > セミコロン > 空白)
  2. ヘッダー行をエイリアス表と照合してカラム位置を 1 回だけ解決
  3. 各行を RankObservation に変換 (遅延評価・1 パスのみ)

必須カラム (keyword / country / rank) が解決できない場合は
MissingRequiredColumnError を即座に送出し、1 件も出力しない。
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterator

from bs4 import BeautifulSoup

from rankmatrix.errors import EmptyFileError, MalformedRowWarning, MissingRequiredColumnError
from rankmatrix.models import KeywordCountryKey, RankObservation

logger = logging.getLogger(__name__)

# フィールド -> 受け付けるヘッダー名 (小文字). 先に書いたものほど優先
COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "keyword": ("keyword", "query", "search term", "term"),
    "country": ("country", "market", "location", "region", "geo"),
    "rank": ("rank", "position", "pos"),
    "score": ("score", "difficulty", "kd"),
    "traffic": ("traffic", "volume", "visits"),
    "date": ("date", "day"),
}
REQUIRED_FIELDS = ("keyword", "country", "rank")

# 部分一致させると誤爆する短いエイリアス
_EXACT_ONLY = frozenset({"pos", "kd", "geo", "day", "term"})

_COUNTRY_PATTERN = re.compile(r"^[A-Z]{2}$")
_DATE_FORMATS = ("%Y/%m/%d", "%d.%m.%Y", "%Y%m%d")
_QUOTES = "\"'"


@dataclass(frozen=True)
class ColumnMap:
    """ヘッダー解決結果 (フィールド名 -> カラム位置)."""

    keyword: int
    country: int
    rank: int
    score: int | None = None
    traffic: int | None = None
    date: int | None = None
    width: int = 0


@dataclass
class ParsedExport:
    """正規化済みエクスポート.

    observations は 1 回しか消費できない。warnings は消費に合わせて増える。
    """

    subject_id: str
    source: str
    columns: ColumnMap
    delimiter: str | None
    observations: Iterator[RankObservation]
    warnings: list[MalformedRowWarning] = field(default_factory=list)


def detect_delimiter(first_line: str) -> str | None:
    """先頭行から区切り文字を判定する. None は空白区切り."""
    for candidate in ("\t", ",", ";"):
        if candidate in first_line:
            return candidate
    return None


def resolve_columns(header: list[str], source: str = "<upload>") -> ColumnMap:
    """ヘッダー行の各カラムを論理フィールドに割り当てる.

    完全一致 → 部分一致の順で照合し、1 カラムは 1 フィールドにしか割り当てない。

    Raises:
        MissingRequiredColumnError: keyword / country / rank のいずれかが無い
    """
    cells = [_clean(h).lower() for h in header]
    resolved: dict[str, int] = {}
    claimed: set[int] = set()

    # 1. 完全一致
    for name, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            idx = _find(cells, claimed, lambda c, a=alias: c == a)
            if idx is not None:
                resolved[name] = idx
                claimed.add(idx)
                break

    # 2. 部分一致 (単語の先頭から一致するもののみ. "updated" は "date" にしない)
    for name, aliases in COLUMN_ALIASES.items():
        if name in resolved:
            continue
        for alias in aliases:
            if alias in _EXACT_ONLY:
                continue
            pattern = _word_prefix(alias)
            idx = _find(cells, claimed, lambda c, p=pattern: p.search(c) is not None)
            if idx is not None:
                resolved[name] = idx
                claimed.add(idx)
                break

    for name in REQUIRED_FIELDS:
        if name not in resolved:
            logger.error("必須カラムなし: field=%s, header=%s, source=%s", name, header, source)
            raise MissingRequiredColumnError(name, source)

    return ColumnMap(
        keyword=resolved["keyword"],
        country=resolved["country"],
        rank=resolved["rank"],
        score=resolved.get("score"),
        traffic=resolved.get("traffic"),
        date=resolved.get("date"),
        width=len(cells),
    )


def _word_prefix(alias: str) -> re.Pattern:
    return re.compile(r"(?<![a-z])" + re.escape(alias))


def _find(cells: list[str], claimed: set[int], match) -> int | None:
    for i, cell in enumerate(cells):
        if i not in claimed and cell and match(cell):
            return i
    return None


def parse_export(
    text: str,
    subject_id: str,
    observed_on: date | None = None,
    delimiter: str | None = None,
    source: str = "<upload>",
) -> ParsedExport:
    """エクスポート本文を RankObservation の遅延シーケンスに変換する.

    Args:
        text: ファイル本文
        subject_id: 取り込み先のアプリ ID
        observed_on: 日付カラムが無い・壊れている行に使う日付 (既定: 今日)
        delimiter: 区切り文字. 省略時は先頭行から自動判定
        source: ログ・エラー表示用のファイル名

    Raises:
        EmptyFileError: ヘッダー行が無い
        MissingRequiredColumnError: 必須カラムが解決できない
    """
    text = text.lstrip("\ufeff")
    fallback_date = observed_on or date.today()

    if _looks_like_html(text):
        rows = _html_rows(text)
        delimiter = None
        whitespace = False
    else:
        if delimiter is None:
            first_line = next((line for line in text.splitlines() if line.strip()), "")
            delimiter = detect_delimiter(first_line)
        whitespace = delimiter is None
        rows = _whitespace_rows(text) if whitespace else _delimited_rows(text, delimiter)

    header = _read_header(rows)
    if header is None:
        logger.error("空のファイル: source=%s", source)
        raise EmptyFileError(source)
    _, header_cells = header
    columns = resolve_columns(header_cells, source)

    warnings: list[MalformedRowWarning] = []

    def _generate() -> Iterator[RankObservation]:
        for line_number, cells in rows:
            if cells is None:
                w = MalformedRowWarning(line_number, "CSV として解析できない行", "")
                logger.warning("%s: %s", source, w)
                warnings.append(w)
                continue
            if whitespace:
                cells = _align_whitespace_cells(cells, columns)
            try:
                obs = _to_observation(cells, columns, subject_id, fallback_date, line_number)
            except MalformedRowWarning as w:
                logger.warning("%s: %s", source, w)
                warnings.append(w)
                continue
            if obs is not None:
                yield obs

    logger.info(
        "エクスポート解析開始: source=%s, subject=%s, delimiter=%r",
        source, subject_id, delimiter,
    )
    return ParsedExport(
        subject_id=subject_id,
        source=source,
        columns=columns,
        delimiter=delimiter,
        observations=_generate(),
        warnings=warnings,
    )


def _read_header(rows: Iterator[tuple[int, list[str] | None]]) -> tuple[int, list[str]] | None:
    """空行・解析不能行を読み飛ばして最初の行をヘッダーとして返す."""
    for line_number, cells in rows:
        if cells is not None and any(_clean(c) for c in cells):
            return line_number, cells
    return None


def _delimited_rows(text: str, delimiter: str) -> Iterator[tuple[int, list[str] | None]]:
    """物理行ごとに分割する. 解析できない行は cells=None で返す.

    閉じていないクォートが後続行を飲み込まないよう、1 行ずつ csv.reader に渡す。
    """
    for i, line in enumerate(io.StringIO(text, newline=None), start=1):
        try:
            cells = next(csv.reader([line], delimiter=delimiter), [])
        except csv.Error as e:
            logger.debug("CSV 解析エラー: line=%d, error=%s", i, e)
            cells = None
        yield i, cells


def _whitespace_rows(text: str) -> Iterator[tuple[int, list[str]]]:
    for i, line in enumerate(io.StringIO(text), start=1):
        yield i, line.split()


def _align_whitespace_cells(tokens: list[str], columns: ColumnMap) -> list[str]:
    """空白区切り行をヘッダーの並びに合わせる.

    キーワードが先頭カラムのときのみ適用する。キーワードには空白が含まれうるため、
    末尾側の 2 文字大文字トークンを国コードとみなし、それより前をすべてキーワードとする。
    """
    if not tokens or columns.keyword != 0:
        return tokens
    country_idx = next(
        (i for i in range(len(tokens) - 1, 0, -1) if _COUNTRY_PATTERN.match(tokens[i])),
        None,
    )
    if country_idx is None:
        return tokens

    cells = [""] * max(columns.width, columns.country + 1)
    cells[columns.keyword] = " ".join(tokens[:country_idx])
    cells[columns.country] = tokens[country_idx]
    for offset, token in enumerate(tokens[country_idx + 1:], start=columns.country + 1):
        if offset >= len(cells):
            break
        cells[offset] = token
    return cells


def _looks_like_html(text: str) -> bool:
    head = text.lstrip()[:1]
    return head == "<" and "<table" in text.lower()


def _html_rows(html: str) -> Iterator[tuple[int, list[str]]]:
    """HTML の最初の <table> から行を取り出す."""
    soup = BeautifulSoup(html, "html.parser")
    table = soup.find("table")
    if table is None:
        return iter(())
    rows = []
    for tr in table.find_all("tr"):
        cells = [cell.get_text(" ", strip=True) for cell in tr.find_all(["th", "td"])]
        rows.append(cells)
    return iter(list(enumerate(rows, start=1)))


def _to_observation(
    cells: list[str],
    columns: ColumnMap,
    subject_id: str,
    fallback_date: date,
    line_number: int,
) -> RankObservation | None:
    """1 行を変換する. 完全な空行は None、復旧不能な行は MalformedRowWarning."""
    cleaned = [_clean(c) for c in cells]
    if not any(cleaned):
        return None

    raw = "|".join(cleaned)
    if len(cleaned) <= max(columns.keyword, columns.country, columns.rank):
        raise MalformedRowWarning(line_number, "カラム数不足", raw)

    keyword = cleaned[columns.keyword]
    if not keyword:
        raise MalformedRowWarning(line_number, "キーワードが空", raw)

    country = cleaned[columns.country].upper()
    if not _COUNTRY_PATTERN.match(country):
        raise MalformedRowWarning(line_number, f"国コード不正: {country!r}", raw)

    observed_on = _parse_date(_cell(cleaned, columns.date)) or fallback_date

    return RankObservation(
        entity=KeywordCountryKey.of(keyword, country),
        subject_id=subject_id,
        observed_on=observed_on,
        rank=parse_rank(cleaned[columns.rank]),
        score=parse_int(_cell(cleaned, columns.score)),
        traffic=parse_int(_cell(cleaned, columns.traffic)),
    )


def _cell(cells: list[str], idx: int | None) -> str | None:
    if idx is None or idx >= len(cells):
        return None
    return cells[idx]


def _clean(value: str) -> str:
    """前後の空白と囲みクォートを除去する."""
    return value.strip().strip(_QUOTES).strip()


def _compact(value: str) -> str:
    """桁区切り (カンマ・空白) を取り除く."""
    return value.strip().replace(",", "").replace("\u00a0", "").replace(" ", "")


def parse_int(value: str | None) -> int | None:
    """桁区切りを無視して整数化する. 小数は四捨五入、不正値は None."""
    if value is None:
        return None
    v = _compact(value)
    if not v or v == "-":
        return None
    try:
        return int(v)
    except ValueError:
        pass
    try:
        return round(float(v))
    except (ValueError, OverflowError):
        return None


def parse_rank(value: str | None) -> int | None:
    """順位を整数化する. "#12" 形式も可.

    0 以下・整数でない値 ("12.7" など) は圏外 (None)。"12.0" は 12 とみなす。
    """
    if value is None:
        return None
    v = _compact(value.replace("#", ""))
    try:
        rank = int(v)
    except ValueError:
        try:
            number = float(v)
        except ValueError:
            return None
        if not number.is_integer():
            return None
        rank = int(number)
    if rank <= 0:
        return None
    return rank


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None
