"""Expiry management for mini-kvstore records.

このモジュールは、レコードの有効期限管理（Passive + Active expiration）を担当します。

- Passive expiry: read/delete の際にキーの期限をチェックして削除（ExpiryManager）
- Active expiry: バックグラウンドタスクで定期的に期限切れキーを一括削除（ExpirySweeper）

Active expiry は補助的なもので、正しさは Passive expiry だけで保証されます。
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from mini_kvstore.errors import StoreError
from mini_kvstore.storage import DataStore, Record

if TYPE_CHECKING:
    from mini_kvstore.store import KeyValueStore

logger = logging.getLogger(__name__)

# Active expiryのデフォルト間隔（秒）
DEFAULT_SWEEP_INTERVAL = 1.0


def now_ms() -> int:
    """現在時刻をエポックからのミリ秒で返す."""
    return int(time.time() * 1000)


class ExpiryManager:
    """レコードの有効期限判定と削除.

    責務:
    - 期限の計算（TTL秒 → 絶対時刻ミリ秒）
    - 単一キーの期限チェックと削除（Passive）
    - 期限切れキーの一括削除（cleanup_expired_keys から使用）

    ファイルへの保存は行わない。保存は呼び出し側（KeyValueStore）の責任。
    """

    def __init__(self, store: DataStore, clock: Callable[[], int] | None = None) -> None:
        """マネージャを初期化.

        Args:
            store: DataStoreのインスタンス
            clock: 現在時刻（ミリ秒）を返す関数。Noneの場合はシステム時刻
        """
        self._store = store
        self._clock = clock or now_ms

    def now(self) -> int:
        return self._clock()

    def expiration_for(self, ttl: float | None) -> int | None:
        """TTL（秒）から有効期限の絶対時刻（ミリ秒）を計算する."""
        if ttl is None:
            return None
        return self.now() + round(ttl * 1000)

    def is_expired(self, record: Record) -> bool:
        # 期限ちょうどはまだ有効
        return record.expiration is not None and self.now() > record.expiration

    def check_and_remove_expired(self, key: str) -> bool:
        """キーが期限切れかチェックし、期限切れなら削除する.

        Returns:
            True: 期限切れで削除した
            False: 期限内、期限未設定、またはキーが存在しない
        """
        record = self._store.get(key)
        if record is None or not self.is_expired(record):
            return False

        self._store.delete(key)
        return True

    def remove_expired(self) -> list[str]:
        """全キーを1回走査し、期限切れのレコードをすべて削除する.

        Returns:
            削除したキーのリスト
        """
        return [key for key in self._store.get_all_keys() if self.check_and_remove_expired(key)]


class ExpirySweeper:
    """Active expiry: 期限切れキーを定期的に一括削除するバックグラウンドタスク.

    ライフサイクル:
    1. __init__(store, interval): インスタンスを作成
    2. start(): バックグラウンドタスクを開始
    3. stop(): タスクを停止

    schedule_once(delay) で1回だけの遅延スイープも実行できる。
    """

    def __init__(self, store: "KeyValueStore", interval: float = DEFAULT_SWEEP_INTERVAL) -> None:
        if interval <= 0:
            raise ValueError("Sweep interval must be positive")
        self._store = store
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Active expiryタスクを開始.

        Raises:
            RuntimeError: 既に実行中の場合
        """
        if self._running:
            raise RuntimeError("Active expiry is already running")

        logger.info("Starting active expiry task")
        self._running = True
        self._task = asyncio.create_task(self._run_active_expiry())

    async def stop(self) -> None:
        """Active expiryタスクを停止し、完了を待つ.

        タスクが実行中でない場合は何もしない。
        """
        if not self._running:
            return

        logger.info("Stopping active expiry task...")
        self._running = False

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.info("Active expiry task stopped")

        self._task = None

    def schedule_once(self, delay: float) -> asyncio.Task[int]:
        """delay秒後に1回だけスイープを実行するタスクを作成する.

        キャンセルの仕組みはなく、結果は呼び出し側が必要な場合のみ参照する。
        """
        return asyncio.create_task(self._sweep_later(delay))

    async def _sweep_later(self, delay: float) -> int:
        await asyncio.sleep(delay)
        return await self._sweep()

    async def _run_active_expiry(self) -> None:
        """内部: Active expiryのメインループ."""
        try:
            logger.info("Active expiry task started")

            while self._running:
                await asyncio.sleep(self._interval)
                await self._sweep()

        except asyncio.CancelledError:
            logger.info("Active expiry task cancelled")
            raise

        finally:
            logger.info("Active expiry task finished")

    async def _sweep(self) -> int:
        try:
            return await self._store.cleanup_expired_keys()
        except StoreError:
            # バックグラウンドのスイープ失敗はループを止めない
            logger.exception("Active expiry sweep failed")
            return 0
