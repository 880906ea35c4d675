"""mini-kvstore entry point.

このモジュールは、mini-kvstoreのコマンドラインのエントリポイントです。
`python -m mini_kvstore [options] COMMAND [ARGS...]` で実行します。

例:
    python -m mini_kvstore --file data.json create user:1 '{"name": "test"}' 5
    python -m mini_kvstore --file data.json read user:1
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from mini_kvstore.commands import CommandError, CommandHandler
from mini_kvstore.config import StoreConfig, parse_batch_limit
from mini_kvstore.errors import StoreError
from mini_kvstore.store import KeyValueStore


def setup_logging(level: str = "WARNING") -> None:
    """ログ設定を初期化（標準出力はコマンドの結果用に空けておく）."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mini_kvstore")
    parser.add_argument("--file", type=Path, default=None, help="backing JSON file")
    parser.add_argument("--batch-limit", type=parse_batch_limit, default=argparse.SUPPRESS)
    parser.add_argument("--lock", action="store_true", help="run the command under the file lock")
    parser.add_argument("--log-level", default="WARNING")
    parser.add_argument("command", nargs=argparse.REMAINDER)
    return parser


async def run(config: StoreConfig, command: list[str], use_lock: bool = False) -> str:
    """ストアを開いてコマンドを1つ実行し、出力文字列を返す."""
    store = await KeyValueStore.from_config(config)
    handler = CommandHandler(store)

    if use_lock:
        async with store.lock():
            # 待機中に他のロック保持者が書き込んだ内容を読み直す
            await store.load()
            return await handler.execute(command)
    return await handler.execute(command)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    config = StoreConfig.from_env()
    if args.file is not None:
        config.file_path = args.file
    if "batch_limit" in args:
        config.batch_limit = args.batch_limit

    try:
        output = asyncio.run(run(config, args.command, use_lock=args.lock))
    except CommandError as e:
        print(str(e), file=sys.stderr)
        return 1
    except StoreError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"ERR {e.kind}: {e}", file=sys.stderr)
        return 1

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
