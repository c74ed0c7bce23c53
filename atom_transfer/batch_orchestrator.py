"""
Batch Orchestrator

Processes workbook rows strictly in order: one transfer is fully resolved
(confirmed, skipped or failed) before the next row starts, so sequence
numbers are consumed in order and rate limit budgets are shared fairly.

Per row:
- no address -> empty result, not counted
- address without the chain prefix -> INVALID_ADDRESS
- no seed phrase on this or any earlier row -> NO_SEED_PHRASE
- otherwise SUCCESS: <hash> / SKIP: <reason> / FAILED: <reason>

Results are checkpointed to the sink every N processed rows and once more
at the end (also when the run is interrupted).
"""

import asyncio
from dataclasses import dataclass, asdict
from itertools import accumulate
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from .config import SenderConfig
from .errors import InvalidDestinationError, TransferError
from .row_store import RowState
from .transfer_engine import Failed, Sent, Skipped, TransferExecutor, TransferRequest


INVALID_ADDRESS = 'INVALID_ADDRESS'
NO_SEED_PHRASE = 'NO_SEED_PHRASE'


@dataclass
class BatchProgress:
    """Run counters (only ever increase)"""
    total_rows: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    checkpoints: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


def resolve_credentials(rows: Sequence[RowState]) -> List[Tuple[RowState, str]]:
    """
    Pair every row with the seed phrase it should use

    A blank seed cell inherits the latest non-blank seed above it.
    """
    # Every row feeds the fold, including rows with no or an invalid address
    # whose own transfer is never attempted.
    seeds = accumulate(
        (row.credential_override for row in rows),
        lambda previous, current: current or previous,
    )
    return list(zip(rows, seeds))


class BatchOrchestrator:
    """Drive the transfer executor over every row of a row store"""

    def __init__(
        self,
        executor: TransferExecutor,
        store,
        config: SenderConfig,
        sleep=asyncio.sleep
    ):
        """
        Args:
            executor: Transfer executor
            store: Row sink with set_result(index, text) and flush()
            config: Sender configuration
            sleep: Injected sleep coroutine (inter-transaction delay)
        """
        self.executor = executor
        self.store = store
        self.config = config
        self.sleep = sleep

    def _log_settings(self, total: int):
        cfg = self.config
        logger.info(f"🚀 Processing {total} rows from the workbook...")
        logger.info(f"💰 Every address receives the source balance minus {cfg.reserved_display} for fees")
        logger.info("⏱ Transactions are confirmed on chain in real time")
        logger.info("🔄 Rate limiting:")
        logger.info(f"   - Delay between transactions: {cfg.delay_between_transactions:g}s")
        logger.info(f"   - Max attempts per transaction: {cfg.max_retries}")
        logger.info(f"   - Delay between attempts: {cfg.retry_delay_seconds:g}s (exponential backoff)")

    def _flush(self, progress: BatchProgress):
        self.store.flush()
        progress.checkpoints += 1

    async def run(self, rows: Optional[Sequence[RowState]] = None) -> BatchProgress:
        """
        Process every row

        Args:
            rows: Rows to process (defaults to store.rows())

        Returns:
            Final BatchProgress
        """
        rows = list(rows if rows is not None else self.store.rows())
        progress = BatchProgress(total_rows=len(rows))
        self._log_settings(len(rows))

        try:
            for row, seed in resolve_credentials(rows):
                if not row.has_destination:
                    self.store.set_result(row.index, '')
                    continue

                progress.processed += 1
                logger.info(f"[{progress.processed}/{progress.total_rows}] Row {row.excel_row}: {row.destination}")

                attempted = await self._process_row(row, seed, progress)

                if progress.processed % self.config.checkpoint_every == 0:
                    logger.info(f"💾 Saving progress at {progress.processed} processed rows...")
                    self._flush(progress)

                if attempted and self.config.delay_between_transactions > 0 and progress.processed < progress.total_rows:
                    logger.info(f"   ⏳ Waiting {self.config.delay_between_transactions:g}s between transactions...")
                    await self.sleep(self.config.delay_between_transactions)
        finally:
            self._flush(progress)
            self._log_summary(progress)

        return progress

    async def _process_row(self, row: RowState, seed: str, progress: BatchProgress) -> bool:
        """
        Process one row and store its result

        Returns:
            True if a transfer was attempted (network touched)
        """
        try:
            request = TransferRequest.create(
                request_id=f"ROW_{row.excel_row}",
                seed_phrase=seed,
                destination_address=row.destination,
                fee_reserve=self.config.reserved_for_fees,
                prefix=self.config.prefix,
            )
        except InvalidDestinationError:
            self.store.set_result(row.index, INVALID_ADDRESS)
            progress.failed += 1
            logger.error(f"✗ Invalid Cosmos address: {row.destination}")
            return False

        if not seed:
            self.store.set_result(row.index, NO_SEED_PHRASE)
            progress.failed += 1
            logger.error(f"✗ No seed phrase for row {row.excel_row}")
            return False

        try:
            outcome = await self.executor.execute(request)
        except TransferError as e:
            self.store.set_result(row.index, f"FAILED: {e}")
            progress.failed += 1
            logger.error(f"✗ Transfer to {row.destination} failed: {e}")
            return True
        except Exception as e:
            self.store.set_result(row.index, f"FAILED: {type(e).__name__}: {e}")
            progress.failed += 1
            logger.exception(f"✗ Unexpected error on row {row.excel_row}: {e}")
            return True

        self.store.set_result(row.index, outcome.result_text)

        if isinstance(outcome, Sent):
            progress.succeeded += 1
            logger.info(f"✅ ATOM sent to {row.destination}")
        elif isinstance(outcome, Skipped):
            progress.skipped += 1
            logger.info(f"⏭ Skip: {outcome.reason}")
        elif isinstance(outcome, Failed):
            progress.failed += 1
            logger.error(f"✗ Failed to send ATOM to {row.destination}: {outcome.reason}")
        else:
            raise TypeError(f"Unknown transfer outcome: {outcome!r}")

        return True

    def _log_summary(self, progress: BatchProgress):
        logger.info("📊 Processing summary:")
        logger.info(f"   Rows processed: {progress.processed}")
        logger.info(f"   Successful transfers: {progress.succeeded}")
        logger.info(f"   Failed transfers: {progress.failed}")
        logger.info(f"   Skipped transfers: {progress.skipped}")
        logger.debug(f"Final progress: {progress.to_dict()}")
