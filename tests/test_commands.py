"""Tests for CommandHandler and the command-line entry point."""

import asyncio
import json
from pathlib import Path

import pytest

from mini_kvstore.__main__ import main, run
from mini_kvstore.commands import CommandError, CommandHandler
from mini_kvstore.config import StoreConfig
from mini_kvstore.errors import KeyExpiredError, KeyNotFoundError
from mini_kvstore.store import KeyValueStore


class TestCommandRouting:
    """コマンドルーティングのテスト."""

    @pytest.mark.asyncio
    async def test_execute_handles_lowercase_commands(self, store: KeyValueStore) -> None:
        """小文字のコマンドも正しく処理される."""
        handler = CommandHandler(store)

        assert await handler.execute(["create", "k", "v"]) == "OK"
        assert await handler.execute(["READ", "k"]) == '"v"'

    @pytest.mark.asyncio
    async def test_execute_raises_error_for_empty_command(self, store: KeyValueStore) -> None:
        with pytest.raises(CommandError, match="empty command"):
            await CommandHandler(store).execute([])

    @pytest.mark.asyncio
    async def test_execute_raises_error_for_unknown_command(self, store: KeyValueStore) -> None:
        """未知のコマンドに対してCommandErrorをraiseする."""
        with pytest.raises(CommandError, match="unknown command"):
            await CommandHandler(store).execute(["UNKNOWNCOMMAND"])

    @pytest.mark.parametrize(
        "command",
        [["CREATE", "k"], ["READ"], ["DELETE", "a", "b"], ["BATCH"], ["CLEANUP", "x"]],
    )
    @pytest.mark.asyncio
    async def test_execute_raises_error_for_wrong_number_of_args(
        self, store: KeyValueStore, command: list[str]
    ) -> None:
        """引数の数が不正な場合にCommandErrorをraiseする."""
        with pytest.raises(CommandError, match="wrong number of arguments"):
            await CommandHandler(store).execute(command)


class TestStoreCommands:
    """各コマンドのテスト."""

    @pytest.mark.asyncio
    async def test_create_parses_json_values(self, store: KeyValueStore) -> None:
        handler = CommandHandler(store)

        await handler.execute(["CREATE", "obj", '{"name": "test"}'])
        await handler.execute(["CREATE", "num", "42"])
        await handler.execute(["CREATE", "text", "hello world"])

        assert await store.read("obj") == {"name": "test"}
        assert await store.read("num") == 42
        assert await store.read("text") == "hello world"

    @pytest.mark.asyncio
    async def test_create_with_ttl(self, store: KeyValueStore, clock) -> None:
        handler = CommandHandler(store)
        await handler.execute(["CREATE", "k", "v", "5"])

        clock.advance(6)

        with pytest.raises(KeyExpiredError):
            await handler.execute(["READ", "k"])

    @pytest.mark.asyncio
    async def test_create_with_non_numeric_ttl(self, store: KeyValueStore) -> None:
        with pytest.raises(CommandError, match="ttl"):
            await CommandHandler(store).execute(["CREATE", "k", "v", "soon"])

    @pytest.mark.asyncio
    async def test_delete(self, store: KeyValueStore) -> None:
        handler = CommandHandler(store)
        await handler.execute(["CREATE", "k", "v"])

        assert await handler.execute(["DELETE", "k"]) == "OK"
        with pytest.raises(KeyNotFoundError):
            await handler.execute(["READ", "k"])

    @pytest.mark.asyncio
    async def test_batch(self, store: KeyValueStore) -> None:
        handler = CommandHandler(store)
        entries = [{"key": "a", "value": 1}, {"key": "b", "value": [2], "ttl": 5}]

        assert await handler.execute(["BATCH", json.dumps(entries)]) == "OK"
        assert await store.read("b") == [2]

    @pytest.mark.parametrize("raw", ["not json", '{"key": "a"}'])
    @pytest.mark.asyncio
    async def test_batch_requires_json_array(self, store: KeyValueStore, raw: str) -> None:
        with pytest.raises(CommandError, match="JSON array"):
            await CommandHandler(store).execute(["BATCH", raw])

    @pytest.mark.asyncio
    async def test_cleanup_returns_count(self, store: KeyValueStore, clock) -> None:
        handler = CommandHandler(store)
        await handler.execute(["CREATE", "k", "v", "1"])
        clock.advance(2)

        assert await handler.execute(["CLEANUP"]) == "1"
        assert await handler.execute(["CLEANUP"]) == "0"


class TestMain:
    """python -m mini_kvstore のテスト."""

    def test_roundtrip(self, store_path: Path, capsys) -> None:
        assert main(["--file", str(store_path), "create", "k", '{"a": 1}']) == 0
        assert capsys.readouterr().out.strip() == "OK"

        assert main(["--file", str(store_path), "read", "k"]) == 0
        assert json.loads(capsys.readouterr().out) == {"a": 1}

        assert main(["--file", str(store_path), "--lock", "delete", "k"]) == 0
        assert capsys.readouterr().out.strip() == "OK"

    def test_store_error_exits_nonzero(self, store_path: Path, capsys) -> None:
        assert main(["--file", str(store_path), "read", "missing"]) == 1
        assert capsys.readouterr().err.strip() == "ERR KeyNotFound: Key not found."

    def test_command_error_exits_nonzero(self, store_path: Path, capsys) -> None:
        assert main(["--file", str(store_path), "frobnicate"]) == 1
        assert "unknown command" in capsys.readouterr().err

    def test_batch_limit_option(self, store_path: Path, capsys) -> None:
        entries = json.dumps([{"key": "a", "value": 1}, {"key": "b", "value": 2}])

        assert main(["--file", str(store_path), "--batch-limit", "1", "batch", entries]) == 1
        assert "BatchLimitExceeded" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_locked_run_keeps_writes_made_while_waiting(self, store_path: Path) -> None:
        """--lock re-reads the file after acquiring the lock."""
        holder = await KeyValueStore.open(store_path)
        config = StoreConfig(file_path=store_path)

        async with holder.lock():
            task = asyncio.create_task(run(config, ["CREATE", "cli", "1"], use_lock=True))
            # runがストアを開いてロック待ちになるまで待つ
            await asyncio.sleep(0.2)
            await holder.create("other", 2)

        assert await task == "OK"
        assert set(json.loads(store_path.read_text(encoding="utf-8"))) == {"cli", "other"}
