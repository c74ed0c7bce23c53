"""
Command line entry point

    atom-transfer test                      one hard-coded transfer
    atom-transfer send [input] [output]     process a workbook
    atom-transfer                           print usage
"""

import argparse
import asyncio
import os
import sys
from typing import List, Optional

from loguru import logger

from .batch_orchestrator import BatchOrchestrator
from .config import SenderConfig
from .errors import ConfigError, InvalidDestinationError, RowSourceError
from .ledger_client import LedgerClient
from .logging_config import setup_logging
from .row_store import ExcelRowStore, default_output_path
from .transaction_history import TransferHistoryDB
from .transfer_engine import Sent, Skipped, TransferExecutor, TransferRequest


DEFAULT_INPUT_FILE = 'cosmos_addresses.xlsx'

# Test transfer settings (the seed can also come from ATOM_TEST_SEED)
PLACEHOLDER_SEED = 'your seed phrase here replace with real one'
TEST_ADDRESS = 'cosmos1example123456789abcdefghijklmnopqrstuvwxyz'

USAGE = f"""\
ATOM sender: drains source wallets into destination addresses from an Excel workbook

Usage:
  atom-transfer test                       Send one test transaction
  atom-transfer send [input] [output]      Process a workbook
                                           (default input: {DEFAULT_INPUT_FILE})

Workbook format (first sheet, no header row):
  Column A: destination Cosmos address (cosmos1...)
  Column B: seed phrase of the source wallet (blank = same as the row above)
  Column C: result, written by the sender

Results are written to <input>_atom_sent.xlsx unless an output file is given.

WARNING:
  - Each source wallet is drained: balance minus the fee reserve is sent
  - Seed phrases in the workbook control real funds, keep the file private
  - Test with a small amount first
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='atom-transfer',
        description='Drain Cosmos Hub wallets listed in an Excel workbook',
    )
    parser.add_argument('--config', help='YAML configuration file (default: sender_config.yaml)')
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        type=str.upper,
        help='Console log level (default: LOG_LEVEL or INFO)',
    )

    subparsers = parser.add_subparsers(dest='command')

    test_parser = subparsers.add_parser('test', help='Send one test transaction')
    test_parser.add_argument('--to', default=TEST_ADDRESS, help='Destination address for the test transfer')

    send_parser = subparsers.add_parser('send', help='Process a workbook')
    send_parser.add_argument('input', nargs='?', default=DEFAULT_INPUT_FILE, help='Input workbook')
    send_parser.add_argument('output', nargs='?', help='Output workbook (default: <input>_atom_sent.xlsx)')

    return parser


def print_send_warnings(config: SenderConfig, input_path: str, output_path: str):
    print("=" * 60)
    print("📤 ATOM SENDER")
    print("=" * 60)
    print("⚠ WARNING: this sends REAL ATOM on Cosmos Hub mainnet!")
    print(f"⚠ Every source wallet is drained except {config.reserved_display} kept for fees")
    print(f"📖 Input: {input_path}")
    print(f"💾 Output: {output_path}")
    print(f"🔗 Endpoint: {config.rest_endpoint} (chain {config.chain_id})")
    print(f"⏱ Starting in {config.start_delay_seconds:g}s, press Ctrl+C to cancel")


async def run_test(config: SenderConfig, to_address: str, seed: Optional[str] = None) -> int:
    """
    Send one test transaction

    Returns:
        Process exit code
    """
    seed = seed if seed is not None else os.getenv('ATOM_TEST_SEED', PLACEHOLDER_SEED)
    if seed.strip() == PLACEHOLDER_SEED:
        print("⚠ Set ATOM_TEST_SEED to a real seed phrase before running the test transfer")
        return 1

    try:
        request = TransferRequest.create(
            request_id='TEST',
            seed_phrase=seed,
            destination_address=to_address,
            fee_reserve=config.reserved_for_fees,
            prefix=config.prefix,
        )
    except InvalidDestinationError as e:
        print(f"✗ {e}")
        return 1

    print("🧪 Test ATOM transfer")
    async with LedgerClient(config) as client:
        outcome = await TransferExecutor(client, config).execute(request)

    print(f"Result: {outcome.result_text}")
    return 0 if isinstance(outcome, (Sent, Skipped)) else 1


async def run_send(
    config: SenderConfig,
    input_path: str,
    output_path: Optional[str] = None,
    sleep=asyncio.sleep
) -> int:
    """
    Process a workbook

    Returns:
        Process exit code
    """
    output_path = output_path or default_output_path(input_path)
    print_send_warnings(config, input_path, output_path)
    await sleep(config.start_delay_seconds)

    try:
        store = ExcelRowStore(input_path, output_path)
    except RowSourceError as e:
        logger.error(f"✗ {e}")
        return 1

    history = TransferHistoryDB(config.history_db_path) if config.history_db_path else None
    try:
        async with LedgerClient(config) as client:
            if not await client.check_endpoint_status():
                logger.warning("⚠ Endpoint health check failed, continuing anyway")

            executor = TransferExecutor(client, config, history=history)
            orchestrator = BatchOrchestrator(executor, store, config, sleep=sleep)
            progress = await orchestrator.run()

        logger.info(f"✓ Done: {progress.succeeded} sent, {progress.skipped} skipped, {progress.failed} failed")
        if history:
            stats = history.get_statistics()
            logger.info(f"📊 History: {stats['confirmed']} confirmed, {stats['unresolved']} unresolved, "
                        f"{stats['total_sent']} {config.denom} sent in total")
    finally:
        if history:
            history.close()

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        print(USAGE)
        return 0

    try:
        config = SenderConfig.load(args.config)
    except ConfigError as e:
        logger.error(f"✗ Invalid configuration: {e}")
        return 1
    setup_logging(args.log_level or config.log_level, config.log_file)

    try:
        if args.command == 'test':
            return asyncio.run(run_test(config, args.to))
        return asyncio.run(run_send(config, args.input, args.output))
    except KeyboardInterrupt:
        logger.warning("⚠ Interrupted, results up to the last saved row are in the output file")
        return 130


if __name__ == '__main__':
    sys.exit(main())
