"""Scoped file lock for mini-kvstore.

このモジュールは、バックエンドファイルに紐づいたプロセス外部から見える
排他ロックを担当します。ロックは `<ファイル名>.lock` というサイドカー
ファイルに対して portalocker で取得します。

ロックは常に排他で、再入不可です。同一プロセス内の別ハンドルからの
取得も待機（またはタイムアウト）になります。
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import portalocker

from mini_kvstore.errors import LockUnavailableError

logger = logging.getLogger(__name__)

# ロック取得のデフォルトタイムアウト（秒）
DEFAULT_LOCK_TIMEOUT = 10.0
# ロック再試行の間隔（秒）
LOCK_CHECK_INTERVAL = 0.05


def lock_path_for(path: str | Path) -> Path:
    """バックエンドファイルに対応するロックファイルのパスを返す."""
    path = Path(path)
    return path.with_name(path.name + ".lock")


class FileLock:
    """バックエンドファイル単位の排他ロック.

    使い方:
        lock = FileLock("keystore.json")
        async with lock.hold(timeout=1.0):
            ...  # 他のロック保持者から見てアトミックに実行される
    """

    def __init__(self, path: str | Path, timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        """ロックを初期化.

        Args:
            path: バックエンドファイルのパス
            timeout: hold()でタイムアウトを省略した場合の待ち時間（秒）
        """
        self.path = lock_path_for(path)
        self.timeout = timeout

    @asynccontextmanager
    async def hold(self, timeout: float | None = None) -> AsyncIterator[None]:
        """ロックを取得し、ブロックを抜ける時に必ず解放する.

        Args:
            timeout: 取得の待ち時間（秒）。0の場合は保持されていれば即座に失敗

        Raises:
            LockUnavailableError: タイムアウトまでにロックを取得できなかった場合
        """
        timeout = self.timeout if timeout is None else timeout
        lock = portalocker.Lock(
            str(self.path),
            mode="a",
            timeout=timeout,
            check_interval=LOCK_CHECK_INTERVAL,
            fail_when_locked=False,
        )

        # 待機中もイベントループをブロックしない
        try:
            await asyncio.to_thread(lock.acquire)
        except portalocker.exceptions.LockException as e:
            raise LockUnavailableError(
                f"Could not acquire lock {self.path} within {timeout}s"
            ) from e

        logger.debug(f"Lock acquired: {self.path}")
        try:
            yield
        finally:
            lock.release()
            logger.debug(f"Lock released: {self.path}")
