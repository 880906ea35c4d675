"""Error types for mini-kvstore.

このモジュールは、ストア操作で発生するエラーの種類を定義します。
呼び出し側が「存在しない」「期限切れ」「既に存在する」などを
区別して分岐できるよう、エラーは種類ごとに別クラスになっています。
"""


class StoreError(Exception):
    """すべてのストアエラーの基底クラス.

    Attributes:
        key: エラーの対象となったキー（キーに関係しないエラーではNone）
    """

    kind = "StoreError"

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class InvalidArgumentError(StoreError):
    """キー長・値サイズ・TTL・バッチエントリの形式が不正."""

    kind = "InvalidArgument"


class KeyExistsError(StoreError):
    """createで既に存在するキーを指定した."""

    kind = "KeyExists"


class KeyNotFoundError(StoreError):
    """read/deleteで存在しないキーを指定した."""

    kind = "KeyNotFound"


class KeyExpiredError(StoreError):
    """read/deleteで期限切れのキーを指定した（キーは削除済み）."""

    kind = "KeyExpired"


class BatchLimitExceededError(StoreError):
    kind = "BatchLimitExceeded"


class LockUnavailableError(StoreError):
    """スコープロックを取得できなかった."""

    kind = "LockUnavailable"


class StorageError(StoreError):
    """バックエンドファイルの読み込み・書き込みに失敗した."""

    kind = "StorageFailure"
