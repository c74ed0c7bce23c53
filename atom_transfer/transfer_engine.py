"""
Transfer Engine

Drains one source wallet into one destination address.

Process:
1. Parse seed phrase and derive the source account
2. Reconcile earlier unconfirmed broadcasts (transfer history)
3. Query balance and fresh account sequence
4. Compute amount = balance - fee reserve (skip when nothing is left)
5. Sign and broadcast a single MsgSend
6. Wait for on-chain confirmation
7. Retry rate limited / transient failures with exponential backoff
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, ClassVar, Optional, Union

from loguru import logger

from .config import SenderConfig
from .confirmation import ConfirmationWatcher, Confirmed, Rejected
from .errors import (
    ConfirmationTimeoutError,
    MalformedCredentialError,
    RateLimitedError,
    RetryBudgetExhaustedError,
    RetryableError,
    SubmissionRejectedError,
    TransferError,
)
from .ledger_client import Fee, TransferMessage
from .signer import Account, Credential, derive_account, validate_destination


class TransferState(str, Enum):
    PREPARING = "preparing"
    DERIVING = "deriving"
    QUERYING = "querying"
    COMPUTING = "computing"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    SKIPPED_INSUFFICIENT_FUNDS = "skipped_insufficient_funds"
    FAILED_PERMANENT = "failed_permanent"


@dataclass(frozen=True)
class TransferRequest:
    """Drain request for one workbook row"""
    request_id: str
    seed_phrase: str = field(repr=False)
    destination_address: str
    fee_reserve: int

    @classmethod
    def create(
        cls,
        request_id: str,
        seed_phrase: str,
        destination_address: str,
        fee_reserve: int,
        prefix: str = "cosmos"
    ) -> 'TransferRequest':
        """Build a request, rejecting destinations without the chain prefix"""
        validate_destination(destination_address, prefix)
        return cls(
            request_id=request_id,
            seed_phrase=seed_phrase,
            destination_address=destination_address,
            fee_reserve=fee_reserve,
        )


@dataclass(frozen=True)
class _Outcome:
    from_address: str
    to_address: str
    started_at: datetime
    completed_at: datetime


@dataclass(frozen=True)
class Sent(_Outcome):
    """Transfer broadcast and confirmed"""
    tx_hash: str
    amount_sent: int
    gas_used: int
    reconciled: bool = False

    status: ClassVar[str] = "SUCCESS"

    @property
    def result_text(self) -> str:
        return f"SUCCESS: {self.tx_hash}"


@dataclass(frozen=True)
class Skipped(_Outcome):
    """Nothing to send"""
    reason: str

    status: ClassVar[str] = "SKIP"

    @property
    def result_text(self) -> str:
        return f"SKIP: {self.reason}"


@dataclass(frozen=True)
class Failed(_Outcome):
    """Terminal failure; tx_hash is set when a broadcast happened but was not confirmed"""
    reason: str
    tx_hash: Optional[str] = None
    amount_sent: int = 0
    rejected_code: Optional[int] = None

    status: ClassVar[str] = "FAILED"

    @property
    def result_text(self) -> str:
        if self.tx_hash:
            return f"FAILED: {self.reason} (tx: {self.tx_hash})"
        return f"FAILED: {self.reason}"


TransferOutcome = Union[Sent, Skipped, Failed]


class TransferExecutor:
    """
    Single transfer state machine

    States: preparing -> deriving -> querying -> computing -> submitting
    -> confirming -> succeeded | skipped_insufficient_funds | failed_permanent

    Rate limited and transient failures while querying or submitting send
    the machine back to querying (fresh balance and sequence), up to
    max_retries attempts in total.
    """

    def __init__(
        self,
        client,
        config: SenderConfig,
        watcher: Optional[ConfirmationWatcher] = None,
        history=None,
        derive: Callable[[Credential, str], Account] = derive_account,
        sleep=asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        """
        Initialize executor

        Args:
            client: LedgerClient
            config: Sender configuration
            watcher: Confirmation watcher (built from client when omitted)
            history: Optional TransferHistoryDB for audit and reconciliation
            derive: Account derivation function
            sleep: Injected sleep coroutine (backoff and polling)
            clock: Injected monotonic clock
            now: Injected wall clock for outcome timestamps
        """
        self.client = client
        self.config = config
        self.watcher = watcher or ConfirmationWatcher(
            client,
            interval=config.confirmation_interval_seconds,
            sleep=sleep,
            clock=clock,
        )
        self.history = history
        self.derive = derive
        self.sleep = sleep
        self.now = now
        self.state = TransferState.PREPARING

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt number `attempt` (1-based)"""
        return self.config.retry_delay_seconds * (2 ** (attempt - 1))

    async def _sleep_with_backoff(self, attempt: int):
        delay = self.backoff_delay(attempt)
        logger.info(f"   ⏳ Waiting {delay:g}s before attempt {attempt + 1}...")
        await self.sleep(delay)

    async def execute(self, request: TransferRequest) -> TransferOutcome:
        """
        Drain the source wallet of a request

        Args:
            request: Transfer request

        Returns:
            Sent, Skipped or Failed (never raises for per-row errors)
        """
        started_at = self.now()
        self.state = TransferState.PREPARING
        to_address = request.destination_address

        # Preparing -> Deriving
        try:
            credential = Credential.parse(request.seed_phrase)
            self.state = TransferState.DERIVING
            account = self.derive(credential, self.config.prefix)
        except MalformedCredentialError as e:
            self.state = TransferState.FAILED_PERMANENT
            logger.error(f"✗ Invalid seed phrase for {request.request_id}: {e}")
            return self._finish(request, Failed(
                from_address='',
                to_address=to_address,
                started_at=started_at,
                completed_at=self.now(),
                reason=str(e),
            ))

        logger.info(f"   From: {credential.masked} ({account.address})")
        logger.info(f"   To: {to_address}")

        reconciled = await self._reconcile(request, account, started_at)
        if reconciled is not None:
            return self._finish(request, reconciled)

        last_error: Optional[TransferError] = None
        max_attempts = max(1, self.config.max_retries)

        for attempt in range(1, max_attempts + 1):
            logger.info(f"🚀 Preparing ATOM transfer (attempt {attempt}/{max_attempts})")
            try:
                outcome = await self._attempt(request, account, started_at)
                return self._finish(request, outcome)

            except RetryableError as e:
                last_error = e
                logger.error(f"   ✗ Transfer error (attempt {attempt}): {e}")
                if self.history:
                    self.history.record_error(request.request_id, type(e).__name__, str(e))

                if attempt < max_attempts:
                    if isinstance(e, RateLimitedError):
                        logger.warning("   🔄 Rate limit detected, retrying...")
                    else:
                        logger.warning("   🔄 Temporary error detected, retrying...")
                    await self._sleep_with_backoff(attempt)
                    continue

            except SubmissionRejectedError as e:
                logger.error(f"   ✗ Transaction rejected by chain: {e}")
                return self._fail(request, account, started_at, str(e))

            except TransferError as e:
                logger.error(f"   ✗ Transfer failed: {e}")
                return self._fail(request, account, started_at, str(e))

            except Exception as e:
                logger.exception(f"   ✗ Unexpected error while sending to {to_address}: {e}")
                return self._fail(request, account, started_at, f"Unexpected error: {type(e).__name__}: {e}")

        exhausted = RetryBudgetExhaustedError(max_attempts, last_error)
        logger.error(f"   ✗ All attempts failed for {to_address}: {exhausted}")
        return self._fail(request, account, started_at, str(exhausted))

    async def _attempt(
        self,
        request: TransferRequest,
        account: Account,
        started_at: datetime
    ) -> TransferOutcome:
        denom = self.config.denom

        # Deriving -> Querying (sequence always re-read: a previous attempt may have advanced it)
        self.state = TransferState.QUERYING
        logger.info(f"   🔗 Connecting to: {self.config.rest_endpoint}")
        await self.client.connect()
        balance = await self.client.get_balance(account.address, denom)
        meta = await self.client.get_account_meta(account.address)
        logger.info(f"   💰 Current balance: {balance} {denom}")
        logger.info(f"   🔢 Account #{meta.account_number}, sequence {meta.sequence}")

        # Querying -> Computing
        self.state = TransferState.COMPUTING
        amount_to_send = balance - request.fee_reserve
        logger.info(f"   🔒 Reserved for fees: {request.fee_reserve} {denom}")
        logger.info(f"   📤 Amount to send: {amount_to_send} {denom}")

        if amount_to_send <= 0:
            self.state = TransferState.SKIPPED_INSUFFICIENT_FUNDS
            reason = f"Insufficient balance for transfer (need {request.fee_reserve} {denom} for fees)"
            logger.info(f"   ⏭ Skip: {reason}")
            return Skipped(
                from_address=account.address,
                to_address=request.destination_address,
                started_at=started_at,
                completed_at=self.now(),
                reason=reason,
            )

        # Computing -> Submitting
        self.state = TransferState.SUBMITTING
        message = TransferMessage(
            from_address=account.address,
            to_address=request.destination_address,
            amount=amount_to_send,
            denom=denom,
        )
        fee = Fee(amount=self.config.fee_amount, denom=denom, gas_limit=self.config.gas_limit)

        logger.info("   📤 Broadcasting transaction...")
        submitted = await self.client.submit(account, message, fee, meta)
        logger.info(f"   📋 Transaction hash: {submitted.tx_hash}")

        if self.history:
            self.history.record_broadcast(
                request.request_id,
                account.address,
                request.destination_address,
                amount_to_send,
                submitted.tx_hash,
            )

        # Submitting -> Confirming
        self.state = TransferState.CONFIRMING
        result = await self.watcher.wait(submitted.tx_hash, self.config.confirmation_timeout_seconds)

        if isinstance(result, Confirmed):
            self.state = TransferState.SUCCEEDED
            logger.info("   ✅ Transfer confirmed")
            return Sent(
                from_address=account.address,
                to_address=request.destination_address,
                started_at=started_at,
                completed_at=self.now(),
                tx_hash=submitted.tx_hash,
                amount_sent=amount_to_send,
                gas_used=result.gas_used or submitted.gas_used,
            )

        self.state = TransferState.FAILED_PERMANENT
        if isinstance(result, Rejected):
            logger.error(f"   ✗ Transaction {submitted.tx_hash} failed on chain (code {result.code})")
        else:
            timeout_error = ConfirmationTimeoutError(submitted.tx_hash, self.config.confirmation_timeout_seconds)
            logger.warning(f"   ⚠ {timeout_error}, will be reconciled on the next run")
            if self.history:
                self.history.record_error(request.request_id, type(timeout_error).__name__, str(timeout_error))

        return Failed(
            from_address=account.address,
            to_address=request.destination_address,
            started_at=started_at,
            completed_at=self.now(),
            reason=result.describe(),
            tx_hash=submitted.tx_hash,
            amount_sent=amount_to_send,
            rejected_code=result.code if isinstance(result, Rejected) else None,
        )

    async def _reconcile(
        self,
        request: TransferRequest,
        account: Account,
        started_at: datetime
    ) -> Optional[Sent]:
        """
        Check earlier unconfirmed broadcasts for the same source and destination

        A broadcast that has since been confirmed counts as this row's
        transfer. Anything else falls through to a fresh transfer, which
        reuses the current account sequence so the old and new
        transactions cannot both be included.
        """
        if not self.history:
            return None

        for record in self.history.find_unconfirmed(account.address, request.destination_address):
            tx_hash = record['tx_hash']
            logger.info(f"   🔍 Reconciling earlier broadcast {tx_hash}")
            try:
                result = await self.watcher.check_once(tx_hash)
            except TransferError as e:
                logger.warning(f"   ⚠ Could not reconcile {tx_hash}: {e}")
                continue

            if isinstance(result, Confirmed):
                self.history.mark_confirmed(tx_hash)
                logger.info(f"   ✓ Earlier broadcast {tx_hash} is confirmed, not sending again")
                self.state = TransferState.SUCCEEDED
                return Sent(
                    from_address=account.address,
                    to_address=request.destination_address,
                    started_at=started_at,
                    completed_at=self.now(),
                    tx_hash=tx_hash,
                    amount_sent=int(record['amount'] or 0),
                    gas_used=result.gas_used or 0,
                    reconciled=True,
                )
            if isinstance(result, Rejected):
                self.history.update_status(tx_hash, 'failed', result.describe())

        return None

    def _fail(self, request: TransferRequest, account: Account, started_at: datetime, reason: str) -> Failed:
        self.state = TransferState.FAILED_PERMANENT
        return self._finish(request, Failed(
            from_address=account.address,
            to_address=request.destination_address,
            started_at=started_at,
            completed_at=self.now(),
            reason=reason,
        ))

    def _finish(self, request: TransferRequest, outcome: TransferOutcome) -> TransferOutcome:
        if self.history:
            self.history.record_outcome(request.request_id, outcome)
        return outcome
