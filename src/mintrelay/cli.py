"""
Command line interface for the relayer.

    mintrelay run                 relay deposits until interrupted
    mintrelay export-db OUT       write {"processed": {...}} to OUT
    mintrelay import-db IN        mark every id in IN as processed
    mintrelay abandoned           list dead-lettered messages
    mintrelay message-id ...      compute a message id offline
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .bridge import Relayer, compute_message_id
from .config import RelayerConfig
from .errors import ConfigurationError, StorageError
from .logging import LogConfig, LogLevel, get_logger, setup_logging
from .storage import IdempotencyStore

logger = get_logger("mintrelay")


def _configure_logging(level: str, format_type: str, log_file: Optional[str]) -> None:
    try:
        log_level = LogLevel.parse(level)
    except ValueError:
        log_level = LogLevel.INFO
    setup_logging(LogConfig(level=log_level, format_type=format_type, log_file=log_file))


async def _run(config: RelayerConfig) -> None:
    store = IdempotencyStore.open(config.db_path)
    try:
        if config.legacy_db_path:
            imported = store.load_json(config.legacy_db_path)
            if imported:
                logger.info(f"Imported {imported} processed id(s) from {config.legacy_db_path}")

        relayer = Relayer.from_config(config, store)
        logger.info(f"Relayer address: {config.relayer_address or relayer.submitter.client.address}")

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                pass

        await relayer.start()
        try:
            await stop_event.wait()
        finally:
            await relayer.stop()
    finally:
        store.close()


def cmd_run(args: argparse.Namespace) -> int:
    config = RelayerConfig.from_env()
    _configure_logging(args.log_level or config.log_level, config.log_format, config.log_file)
    logger.info("Relayer starting")
    asyncio.run(_run(config))
    return 0


def _db_path(args: argparse.Namespace) -> str:
    return args.db or os.environ.get("RELAYER_DB") or "relayer-db.sqlite3"


def cmd_export_db(args: argparse.Namespace) -> int:
    with IdempotencyStore.open(_db_path(args)) as store:
        if args.output == "-":
            json.dump(store.export_document(), sys.stdout, indent=2)
            sys.stdout.write("\n")
        else:
            store.write_json(args.output)
            logger.info(f"Exported {len(store.processed_ids())} processed id(s) to {args.output}")
    return 0


def cmd_import_db(args: argparse.Namespace) -> int:
    try:
        with open(args.input, encoding="utf-8") as fh:
            document = json.load(fh)
    except (OSError, ValueError) as e:
        raise StorageError(f"Cannot read {args.input}: {e}", operation="import", cause=e)
    with IdempotencyStore.open(_db_path(args)) as store:
        count = store.import_document(document)
        store.flush()
    logger.info(f"Imported {count} processed id(s) from {args.input}")
    return 0


def cmd_abandoned(args: argparse.Namespace) -> int:
    with IdempotencyStore.open(_db_path(args)) as store:
        rows = store.abandoned()
    for row in rows:
        print(json.dumps(row))
    return 0


def cmd_message_id(args: argparse.Namespace) -> int:
    print(compute_message_id(args.src_chain_id, args.bridge, args.token, args.nonce))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mintrelay", description="Relay BridgeRequest deposits to executeMint"
    )
    parser.add_argument("--env-file", help="Load environment variables from this file")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Relay deposits until interrupted")
    run.add_argument("--log-level", help="Override LOG_LEVEL")
    run.set_defaults(func=cmd_run)

    export = sub.add_parser("export-db", help="Export processed message ids as JSON")
    export.add_argument("output", help="Output file, '-' for stdout")
    export.add_argument("--db", help="Store path (default RELAYER_DB)")
    export.set_defaults(func=cmd_export_db)

    imp = sub.add_parser("import-db", help="Import a processed-ids JSON document")
    imp.add_argument("input", help="JSON file with a 'processed' mapping")
    imp.add_argument("--db", help="Store path (default RELAYER_DB)")
    imp.set_defaults(func=cmd_import_db)

    abandoned = sub.add_parser("abandoned", help="List dead-lettered messages")
    abandoned.add_argument("--db", help="Store path (default RELAYER_DB)")
    abandoned.set_defaults(func=cmd_abandoned)

    mid = sub.add_parser("message-id", help="Compute a message id")
    mid.add_argument("--src-chain-id", type=int, required=True)
    mid.add_argument("--bridge", required=True, help="Source bridge address")
    mid.add_argument("--token", required=True, help="Token address")
    mid.add_argument("--nonce", type=int, required=True)
    mid.set_defaults(func=cmd_message_id)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    load_dotenv(args.env_file)

    try:
        return args.func(args)
    except ConfigurationError as e:
        logger.critical(f"Missing or invalid configuration: {e.message}")
        return 1
    except StorageError as e:
        logger.critical(f"Storage failure: {e.message}")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
