"""Command handler for mini-kvstore.

このモジュールは、コマンドライン引数で渡されたコマンドのルーティングと実行、
および結果の文字列への変換を担当します。

ストアのエラー（StoreError）はそのまま呼び出し側に伝播させ、
コマンドの形式エラーだけを CommandError として送出します。
"""

import json
from typing import Any

from mini_kvstore.store import KeyValueStore


def _parse_value(raw: str) -> Any:
    """値をJSONとして解釈する。JSONでなければ文字列のまま扱う."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


class CommandHandler:
    """ストアコマンドのハンドラ.

    責務:
    - コマンドのルーティングと実行
    - 引数の検証と変換
    - 結果の出力用文字列への変換
    """

    def __init__(self, store: KeyValueStore) -> None:
        """ハンドラを初期化.

        Args:
            store: KeyValueStoreのインスタンス
        """
        self._store = store

    async def execute(self, command: list[str]) -> str:
        """コマンドを実行する"""
        if not command:
            raise CommandError("ERR empty command")

        # コマンド名を大文字に正規化
        cmd_name = command[0].upper()
        args = command[1:]

        # ルーティング
        if cmd_name == "CREATE":
            return await self.execute_create(args)
        elif cmd_name == "READ":
            return await self.execute_read(args)
        elif cmd_name == "DELETE":
            return await self.execute_delete(args)
        elif cmd_name == "BATCH":
            return await self.execute_batch(args)
        elif cmd_name == "CLEANUP":
            return await self.execute_cleanup(args)
        else:
            raise CommandError(f"ERR unknown command '{cmd_name}'")

    async def execute_create(self, args: list[str]) -> str:
        """CREATE key value [ttl]"""
        if len(args) not in (2, 3):
            raise CommandError("ERR wrong number of arguments for 'create' command")

        key = args[0]
        value = _parse_value(args[1])

        ttl = None
        if len(args) == 3:
            try:
                ttl = float(args[2])
            except ValueError:
                raise CommandError("ERR ttl is not a number")

        await self._store.create(key, value, ttl)
        return "OK"

    async def execute_read(self, args: list[str]) -> str:
        """READ key"""
        if len(args) != 1:
            raise CommandError("ERR wrong number of arguments for 'read' command")

        value = await self._store.read(args[0])
        return json.dumps(value, ensure_ascii=False)

    async def execute_delete(self, args: list[str]) -> str:
        """DELETE key"""
        if len(args) != 1:
            raise CommandError("ERR wrong number of arguments for 'delete' command")

        await self._store.delete(args[0])
        return "OK"

    async def execute_batch(self, args: list[str]) -> str:
        """BATCH json-array

        例: BATCH '[{"key": "a", "value": 1, "ttl": 5}]'
        """
        if len(args) != 1:
            raise CommandError("ERR wrong number of arguments for 'batch' command")

        try:
            entries = json.loads(args[0])
        except json.JSONDecodeError:
            raise CommandError("ERR batch entries must be a JSON array")
        if not isinstance(entries, list):
            raise CommandError("ERR batch entries must be a JSON array")

        await self._store.batch_create(entries)
        return "OK"

    async def execute_cleanup(self, args: list[str]) -> str:
        """CLEANUP: 削除したキーの数を返す"""
        if args:
            raise CommandError("ERR wrong number of arguments for 'cleanup' command")

        removed = await self._store.cleanup_expired_keys()
        return str(removed)


class CommandError(Exception):
    """コマンド形式のエラー.

    引数不足、TTLの型エラー、未知のコマンド等を表す。

    例:
        raise CommandError("ERR unknown command 'FOO'")
        raise CommandError("ERR wrong number of arguments for 'read' command")
    """

    pass
