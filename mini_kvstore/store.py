"""File-backed key-value store with TTL for mini-kvstore.

このモジュールは、ストアの公開API（create / read / delete / batch_create /
cleanup_expired_keys / ロックラッパ）を担当します。

状態を変更する操作は、成功を返す前に必ずマッピング全体をファイルに保存します。
ファイルの読み込みは構築時（open）と明示的な load() 呼び出しの時だけです。

使い方:
    store = await KeyValueStore.open("data/keystore.json")
    await store.create("user:1", {"name": "test"}, ttl=5)
    value = await store.read("user:1")
"""

import inspect
import logging
import math
from collections.abc import Awaitable, Callable, Mapping, Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from mini_kvstore.config import DEFAULT_BATCH_LIMIT, DEFAULT_FILE_PATH, StoreConfig
from mini_kvstore.errors import (
    BatchLimitExceededError,
    InvalidArgumentError,
    KeyExistsError,
    KeyExpiredError,
    KeyNotFoundError,
    StorageError,
)
from mini_kvstore.expiry import DEFAULT_SWEEP_INTERVAL, ExpiryManager, ExpirySweeper
from mini_kvstore.locking import DEFAULT_LOCK_TIMEOUT, FileLock
from mini_kvstore.persistence import JsonFilePersistence
from mini_kvstore.storage import DataStore, Record, validate_key, validate_value

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchEntry:
    """batch_create() に渡す1件分のエントリ."""

    key: str
    value: Any
    ttl: float | None = None


def _validate_ttl(ttl: Any, key: str) -> None:
    if ttl is None:
        return
    # boolはintのサブクラスなので明示的に除外する
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
        raise InvalidArgumentError(f"TTL must be a number of seconds, got {ttl!r}", key=key)
    if not math.isfinite(ttl) or ttl <= 0:
        raise InvalidArgumentError(f"TTL must be a positive number of seconds, got {ttl!r}", key=key)


def _unpack_entry(entry: Any, index: int) -> tuple[Any, Any, Any]:
    if isinstance(entry, BatchEntry):
        return entry.key, entry.value, entry.ttl
    if isinstance(entry, Mapping) and "key" in entry and "value" in entry:
        return entry["key"], entry["value"], entry.get("ttl")
    raise InvalidArgumentError(f"Malformed batch entry at index {index}")


class KeyValueStore:
    """1つのファイルに永続化されるキー・バリューストア.

    責務:
    - キーごとのCRUD + TTLの状態管理
    - 変更のたびのファイル全体の保存
    - 複数操作をまとめるためのスコープロック

    ライフサイクル:
    1. open(): インスタンスを作成し、ファイルを読み込む（なければ作成）
    2. create/read/delete/...: 操作
    3. close(): バックグラウンドスイープを開始していれば停止
    """

    def __init__(
        self,
        file_path: str | Path | None = None,
        batch_limit: int | None = DEFAULT_BATCH_LIMIT,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """ストアを初期化（ファイルはまだ読み込まない）.

        Args:
            file_path: バックエンドファイル。Noneの場合はパッケージ横の keystore.json
            batch_limit: batch_create() の最大件数。Noneの場合は無制限
            lock_timeout: lock() / with_lock() のデフォルトの待ち時間（秒）
            clock: 現在時刻（エポックからのミリ秒）を返す関数
        """
        self.file_path = Path(file_path) if file_path is not None else DEFAULT_FILE_PATH
        self.batch_limit = batch_limit
        self._records = DataStore()
        self._expiry = ExpiryManager(self._records, clock)
        self._persistence = JsonFilePersistence(self.file_path)
        self._lock = FileLock(self.file_path, lock_timeout)
        self._sweeper: ExpirySweeper | None = None

    @classmethod
    async def open(
        cls,
        file_path: str | Path | None = None,
        batch_limit: int | None = DEFAULT_BATCH_LIMIT,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        clock: Callable[[], int] | None = None,
    ) -> "KeyValueStore":
        """ストアを作成してファイルを読み込む.

        Raises:
            StorageError: ファイルが存在するが読めない、またはパースできない場合
        """
        store = cls(file_path, batch_limit=batch_limit, lock_timeout=lock_timeout, clock=clock)
        await store.load()
        return store

    @classmethod
    async def from_config(
        cls, config: StoreConfig, clock: Callable[[], int] | None = None
    ) -> "KeyValueStore":
        return await cls.open(
            config.file_path,
            batch_limit=config.batch_limit,
            lock_timeout=config.lock_timeout,
            clock=clock,
        )

    async def __aenter__(self) -> "KeyValueStore":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def load(self) -> None:
        """ファイルを読み込み、メモリ上のマッピングを置き換える."""
        await self._persistence.load(self._records)

    async def create(self, key: str, value: Any, ttl: float | None = None) -> None:
        """キーを作成する.

        Args:
            key: 32文字以内のキー
            value: JSONにシリアライズ可能な値（16KB以内）
            ttl: 有効期間（秒）。Noneの場合は期限なし

        Raises:
            InvalidArgumentError: キー・値・TTLが不正な場合
            KeyExistsError: キーが既に存在する場合（期限切れかどうかは問わない）
            StorageError: 保存に失敗した場合（メモリ上の追加は取り消される）
        """
        validate_key(key)
        validate_value(value, key=key)
        _validate_ttl(ttl, key)

        if self._records.exists(key):
            raise KeyExistsError("Key already exists.", key=key)

        record = Record(value=value, expiration=self._expiry.expiration_for(ttl))
        self._records.put(key, record)
        try:
            await self._persistence.save(self._records)
        except StorageError:
            if self._records.get(key) is record:
                self._records.delete(key)
            raise

    async def read(self, key: str) -> Any:
        """キーの値を取得する.

        Raises:
            KeyNotFoundError: キーが存在しない場合
            KeyExpiredError: キーが期限切れの場合（キーは削除・保存される）
        """
        if not self._records.exists(key):
            raise KeyNotFoundError("Key not found.", key=key)

        # Passive expiry
        if self._expiry.check_and_remove_expired(key):
            await self._persistence.save(self._records)
            raise KeyExpiredError("Key expired.", key=key)

        return self._records.get(key).value

    async def delete(self, key: str) -> None:
        """キーを削除する.

        期限切れのキーも削除されるが、その場合は KeyExpiredError を送出して
        既に論理的に存在しなかったことを呼び出し側に伝える。

        Raises:
            KeyNotFoundError: キーが存在しない場合
            KeyExpiredError: キーが期限切れだった場合
        """
        record = self._records.get(key)
        if record is None:
            raise KeyNotFoundError("Key not found.", key=key)

        if self._expiry.check_and_remove_expired(key):
            await self._persistence.save(self._records)
            raise KeyExpiredError("Key expired and deleted.", key=key)

        self._records.delete(key)
        try:
            await self._persistence.save(self._records)
        except StorageError:
            if not self._records.exists(key):
                self._records.put(key, record)
            raise

    async def batch_create(self, entries: Sequence[BatchEntry | Mapping[str, Any]]) -> None:
        """複数のキーを順番に作成する.

        各エントリは create() と同じ規則で検証・保存される。トランザクションでは
        ないため、途中で失敗した場合はそれまでのエントリが確定したまま残り、
        残りのエントリは処理されない。

        Raises:
            BatchLimitExceededError: エントリ数が batch_limit を超える場合（何も変更しない）
            InvalidArgumentError: エントリの形式が不正な場合
        """
        entries = list(entries)
        if self.batch_limit is not None and len(entries) > self.batch_limit:
            raise BatchLimitExceededError(f"Batch limit of {self.batch_limit} exceeded.")

        for index, entry in enumerate(entries):
            key, value, ttl = _unpack_entry(entry, index)
            await self.create(key, value, ttl)

        logger.debug(f"Batch of {len(entries)} entries created")

    async def cleanup_expired_keys(self) -> int:
        """期限切れのキーを一括削除する.

        1件以上削除した場合のみ、最後に1回だけ保存する。

        Returns:
            削除したキーの数
        """
        removed = self._expiry.remove_expired()
        if not removed:
            return 0

        logger.info(f"{len(removed)} expired keys cleaned.")
        await self._persistence.save(self._records)
        return len(removed)

    def lock(self, timeout: float | None = None) -> AbstractAsyncContextManager[None]:
        """ファイルに紐づいた排他ロックを保持する非同期コンテキストマネージャを返す.

        使い方:
            async with store.lock():
                await store.load()
                ...
        """
        return self._lock.hold(timeout)

    async def with_lock(
        self, fn: Callable[[], "Awaitable[T] | T"], timeout: float | None = None
    ) -> T:
        """ロックを保持したまま fn() を実行し、その結果を返す.

        fnが例外を送出してもロックは必ず解放される。ロックを取得できない
        場合、fnは呼び出されない。

        Raises:
            LockUnavailableError: ロックを取得できなかった場合
        """
        async with self._lock.hold(timeout):
            result = fn()
            if inspect.isawaitable(result):
                result = await result
            return result

    async def start_sweeper(self, interval: float = DEFAULT_SWEEP_INTERVAL) -> ExpirySweeper:
        """Active expiryのバックグラウンドタスクを開始する."""
        if self._sweeper is None:
            self._sweeper = ExpirySweeper(self, interval)
        await self._sweeper.start()
        return self._sweeper

    async def close(self) -> None:
        if self._sweeper is not None:
            await self._sweeper.stop()
            self._sweeper = None
