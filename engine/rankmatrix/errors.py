"""取り込み時の例外・警告定義."""

from __future__ import annotations


class IngestError(Exception):
    """ファイル単位で取り込みを中断する構造的エラー."""

    def __init__(self, message: str, source: str = "<upload>"):
        super().__init__(message)
        self.source = source


class MissingRequiredColumnError(IngestError):
    """必須カラム (keyword / country / rank) がヘッダーに見つからない."""

    def __init__(self, field: str, source: str = "<upload>"):
        super().__init__(f"必須カラムが見つかりません: {field}", source)
        self.field = field


class EmptyFileError(IngestError):
    """ヘッダー行すら存在しない."""

    def __init__(self, source: str = "<upload>"):
        super().__init__("ファイルが空です", source)


class MalformedRowWarning(UserWarning):
    """復旧できない1行. 送出せず集計に回す."""

    def __init__(self, line_number: int, reason: str, raw: str = ""):
        super().__init__(f"{line_number} 行目をスキップ: {reason}")
        self.line_number = line_number
        self.reason = reason
        self.raw = raw
