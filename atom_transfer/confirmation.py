"""
Confirmation Watcher

Polls the ledger for the final status of a broadcast transaction.

The wait is bounded by a wall-clock deadline. Query errors are treated as
"not visible yet" and never extend or reset the deadline.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from loguru import logger

from .errors import TransferError


@dataclass(frozen=True)
class Confirmed:
    gas_used: Optional[int] = None
    height: Optional[int] = None

    def describe(self) -> str:
        return "confirmed"


@dataclass(frozen=True)
class Rejected:
    code: int
    log: str = ''

    def describe(self) -> str:
        return f"Transaction failed on chain with code {self.code}"


@dataclass(frozen=True)
class TimedOut:
    elapsed: float

    def describe(self) -> str:
        return "Transaction not confirmed in time"


ConfirmationResult = Union[Confirmed, Rejected, TimedOut]


class ConfirmationWatcher:
    """Wait for a transaction to be included in a block"""

    DEFAULT_TIMEOUT_SECONDS = 120.0
    DEFAULT_INTERVAL_SECONDS = 5.0

    def __init__(
        self,
        client,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            client: LedgerClient (anything with async query_tx_status)
            interval: Seconds between polls
            sleep: Injected sleep coroutine
            clock: Injected monotonic clock
        """
        self.client = client
        self.interval = interval
        self.sleep = sleep
        self.clock = clock

    async def check_once(self, tx_hash: str) -> Optional[ConfirmationResult]:
        """
        Poll once

        Returns:
            Confirmed / Rejected, or None while the transaction is not visible
        """
        status = await self.client.query_tx_status(tx_hash)
        if status.pending:
            return None
        if status.code == 0:
            return Confirmed(gas_used=status.gas_used, height=status.height)
        return Rejected(code=status.code, log=status.log)

    async def wait(self, tx_hash: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> ConfirmationResult:
        """
        Wait for the final status of a transaction

        Args:
            tx_hash: Transaction hash returned by the broadcast
            timeout: Hard deadline in seconds

        Returns:
            Confirmed, Rejected or TimedOut
        """
        start = self.clock()
        logger.info(f"   🔍 Waiting for confirmation: {tx_hash}")

        while True:
            elapsed = self.clock() - start
            if elapsed >= timeout:
                break

            try:
                result = await self.check_once(tx_hash)
            except TransferError as e:
                logger.warning(f"   ⚠ Error checking transaction: {e}")
                result = None

            if isinstance(result, Confirmed):
                logger.info(f"   ✓ Transaction confirmed in {round(self.clock() - start)}s")
                return result
            if isinstance(result, Rejected):
                logger.error(f"   ✗ Transaction failed with code: {result.code}")
                return result

            remaining = timeout - (self.clock() - start)
            if remaining <= 0:
                break
            logger.debug(f"   ⏳ Not confirmed yet, checking again in {self.interval:g}s")
            await self.sleep(min(self.interval, remaining))

        elapsed = self.clock() - start
        logger.warning(f"   ⏰ Timeout: transaction not confirmed within {timeout:g}s")
        return TimedOut(elapsed=elapsed)
