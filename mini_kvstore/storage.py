"""In-memory record mapping for mini-kvstore.

このモジュールは、キーとレコードの対応（メモリ上のスナップショット）、
レコードのシリアライズ形式、およびキー・値のサイズ制限を担当します。

ファイルへの保存は persistence、期限切れの判定は expiry の責任です。
"""

import json
from dataclasses import dataclass, field
from typing import Any

from mini_kvstore.errors import InvalidArgumentError, StorageError

# キー長の上限（Unicodeコードポイント数）
MAX_KEY_LENGTH = 32
# 値のシリアライズ後サイズの上限（UTF-8バイト数）
MAX_VALUE_SIZE = 16 * 1024


@dataclass
class Record:
    """ストアのレコード.

    Attributes:
        value: 保存される値（JSONにシリアライズ可能な任意の値）
        expiration: 有効期限（エポックからのミリ秒、Noneの場合は期限なし）
    """

    value: Any
    expiration: int | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "expiration": self.expiration}

    @classmethod
    def from_dict(cls, key: str, data: Any) -> "Record":
        """ファイルから読み込んだ1件分のデータをRecordに変換.

        Raises:
            StorageError: レコードの形式が不正な場合
        """
        if not isinstance(data, dict) or "value" not in data:
            raise StorageError(f"Malformed record for key '{key}'", key=key)

        expiration = data.get("expiration")
        # boolはintのサブクラスなので明示的に除外する
        if expiration is not None and (
            isinstance(expiration, bool) or not isinstance(expiration, int)
        ):
            raise StorageError(f"Malformed expiration for key '{key}'", key=key)

        return cls(value=data["value"], expiration=expiration)


def validate_key(key: Any) -> str:
    """キーの型と長さを検証する.

    Raises:
        InvalidArgumentError: 文字列でない、または32文字を超える場合
    """
    if not isinstance(key, str):
        raise InvalidArgumentError(f"Key must be a string, got {type(key).__name__}")
    if len(key) > MAX_KEY_LENGTH:
        raise InvalidArgumentError(
            f"Key length exceeds {MAX_KEY_LENGTH} characters.", key=key
        )
    return key


def serialized_size(value: Any) -> int:
    """値をコンパクトなJSONにした時のUTF-8バイト数を返す.

    Raises:
        InvalidArgumentError: JSONにシリアライズできない場合
    """
    try:
        encoded = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(f"Value is not serializable: {e}") from e
    return len(encoded.encode("utf-8"))


def validate_value(value: Any, key: str | None = None) -> None:
    if serialized_size(value) > MAX_VALUE_SIZE:
        raise InvalidArgumentError("Value exceeds 16KB.", key=key)


class DataStore:
    """キーとレコードのインメモリマッピング.

    責務:
    - レコードの保存・取得・削除
    - ファイル形式（dict）との相互変換

    有効期限のチェックは呼び出し側（ExpiryManager）の責任です。
    """

    def __init__(self) -> None:
        self._data: dict[str, Record] = {}

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str) -> Record | None:
        return self._data.get(key)

    def put(self, key: str, record: Record) -> None:
        self._data[key] = record

    def delete(self, key: str) -> bool:
        try:
            self._data.pop(key)
            return True
        except KeyError:
            return False

    def exists(self, key: str) -> bool:
        return key in self._data

    def get_all_keys(self) -> list[str]:
        """全てのキー一覧を取得する（スナップショット）"""
        return list(self._data.keys())

    def replace(self, records: dict[str, Record]) -> None:
        """マッピング全体を置き換える（ロード時に使用）."""
        self._data = dict(records)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """ファイルに書き出す形式に変換."""
        return {key: record.to_dict() for key, record in self._data.items()}

    @staticmethod
    def records_from_dict(data: Any) -> dict[str, Record]:
        """ファイルから読み込んだオブジェクトをレコードのマッピングに変換.

        Raises:
            StorageError: ルートがオブジェクトでない、またはレコードが不正な場合
        """
        if not isinstance(data, dict):
            raise StorageError("Store file root must be a JSON object")
        return {key: Record.from_dict(key, value) for key, value in data.items()}
