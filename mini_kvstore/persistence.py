"""JSON file persistence for mini-kvstore.

このモジュールは、レコードのマッピング全体を1つのJSONファイルとして
読み込み・保存する処理を担当します。

ファイル形式:
    {
      "<key>": {"value": <任意のJSON値>, "expiration": <ミリ秒 | null>},
      ...
    }

保存のたびにファイル全体を上書きします（差分書き込みはしません）。
ファイルI/Oは asyncio.to_thread() で実行するため、呼び出し側のタスクは
I/Oの完了を待つ間イベントループに制御を返します。
"""

import asyncio
import json
import logging
from pathlib import Path

from mini_kvstore.errors import StorageError
from mini_kvstore.storage import DataStore

logger = logging.getLogger(__name__)


class JsonFilePersistence:
    """バックエンドファイルの読み込み・保存.

    責務:
    - load(): ファイルを読み込んでDataStoreの内容を置き換える
    - save(): DataStoreの内容全体をファイルに書き出す
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        # 同一プロセス内の保存を直列化する
        self._write_lock = asyncio.Lock()

    async def load(self, store: DataStore) -> None:
        """ファイルを読み込み、storeの内容を置き換える.

        ファイルが存在しない場合は空のストアとして扱い、即座に保存して
        ファイルを作成する。

        Raises:
            StorageError: ファイルが読めない、またはパースできない場合
        """
        try:
            text = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        except FileNotFoundError:
            logger.info(f"File not found. Creating new store at {self.path}")
            store.replace({})
            await self.save(store)
            return
        except UnicodeDecodeError as e:
            raise StorageError(f"Failed to decode store file {self.path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to read store file {self.path}: {e}") from e

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise StorageError(f"Failed to parse store file {self.path}: {e}") from e

        store.replace(DataStore.records_from_dict(data))
        logger.info(f"Store loaded from file {self.path} ({len(store)} keys)")

    async def save(self, store: DataStore) -> None:
        """storeの内容全体をファイルに上書き保存する.

        スナップショットは書き込みロックの内側で取得するため、
        最後に完了した保存が常に最新のメモリ上の状態を反映する。

        Raises:
            StorageError: シリアライズまたは書き込みに失敗した場合
        """
        async with self._write_lock:
            try:
                payload = json.dumps(store.to_dict(), ensure_ascii=False, indent=2)
            except (TypeError, ValueError) as e:
                raise StorageError(f"Failed to serialize store: {e}") from e

            try:
                await asyncio.to_thread(self.path.write_text, payload, encoding="utf-8")
            except OSError as e:
                raise StorageError(f"Failed to write store file {self.path}: {e}") from e

        logger.debug(f"Store saved to {self.path} ({len(store)} keys)")
