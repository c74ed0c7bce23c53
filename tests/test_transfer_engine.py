"""
Tests for the single transfer state machine.

Covers the drain arithmetic, skip rule, retry/backoff policy, terminal
failures, confirmation outcomes and reconciliation through the history DB.
"""

import asyncio
from dataclasses import replace

import pytest

from atom_transfer.errors import (
    InvalidDestinationError,
    RateLimitedError,
    SubmissionRejectedError,
    TransferError,
    TransientNetworkError,
)
from atom_transfer.ledger_client import TxStatus
from atom_transfer.transaction_history import TransferHistoryDB
from atom_transfer.transfer_engine import (
    Failed,
    Sent,
    Skipped,
    TransferRequest,
    TransferState,
)

from conftest import DEST_1, SEED_A


def make_request(seed=SEED_A, destination=DEST_1, reserve=20_000):
    return TransferRequest.create(
        request_id="ROW_1",
        seed_phrase=seed,
        destination_address=destination,
        fee_reserve=reserve,
    )


# =============================================================================
# Request construction
# =============================================================================


class TestTransferRequest:
    def test_rejects_destination_without_prefix(self):
        with pytest.raises(InvalidDestinationError):
            make_request(destination="osmo1abcdef")

    def test_seed_not_in_repr(self):
        request = make_request()
        assert SEED_A not in repr(request)


# =============================================================================
# Amount computation
# =============================================================================


class TestDrainAmount:
    @pytest.mark.parametrize("balance", [0, 19_999, 20_000])
    def test_skips_when_balance_does_not_cover_reserve(self, make_executor, ledger, balance):
        ledger.balance = balance
        executor = make_executor()

        outcome = asyncio.run(executor.execute(make_request()))

        assert isinstance(outcome, Skipped)
        assert outcome.result_text == "SKIP: Insufficient balance for transfer (need 20000 uatom for fees)"
        assert ledger.submitted == []
        assert executor.state == TransferState.SKIPPED_INSUFFICIENT_FUNDS

    def test_sends_balance_minus_reserve_to_exact_destination(self, make_executor, ledger):
        ledger.balance = 1_020_000
        executor = make_executor()

        outcome = asyncio.run(executor.execute(make_request()))

        assert isinstance(outcome, Sent)
        _, message, fee, meta = ledger.submitted[0]
        assert message.amount == 1_000_000
        assert message.to_address == DEST_1
        assert message.denom == "uatom"
        assert fee.amount == 5000
        assert fee.gas_limit == 200000
        assert meta.account_number == 7
        assert outcome.amount_sent == 1_000_000
        assert outcome.result_text == "SUCCESS: HASH1"
        assert executor.state == TransferState.SUCCEEDED

    def test_one_unit_above_reserve_is_sent(self, make_executor, ledger):
        ledger.balance = 20_001
        outcome = asyncio.run(make_executor().execute(make_request()))

        assert isinstance(outcome, Sent)
        assert ledger.submitted[0][1].amount == 1

    def test_gas_used_comes_from_confirmation(self, make_executor):
        outcome = asyncio.run(make_executor().execute(make_request()))
        assert outcome.gas_used == 75000


# =============================================================================
# Retry policy
# =============================================================================


class TestRetryPolicy:
    def test_backoff_doubles(self, make_executor):
        executor = make_executor()
        assert [executor.backoff_delay(n) for n in (1, 2, 3)] == [5.0, 10.0, 20.0]

    def test_rate_limited_twice_then_success(self, make_executor, ledger, fake_time):
        ledger.balance_errors = [RateLimitedError("429"), RateLimitedError("429")]

        outcome = asyncio.run(make_executor().execute(make_request()))

        assert isinstance(outcome, Sent)
        assert fake_time.sleeps == [5.0, 10.0]
        assert len(ledger.submitted) == 1

    def test_submit_rate_limited_twice_then_success(self, make_executor, ledger, fake_time):
        ledger.submit_errors = [RateLimitedError("429"), RateLimitedError("429")]

        outcome = asyncio.run(make_executor().execute(make_request()))

        assert isinstance(outcome, Sent)
        assert fake_time.sleeps == [5.0, 10.0]
        meta_calls = [c for c in ledger.calls if c[0] == 'get_account_meta']
        assert len(meta_calls) == 3
        assert len(ledger.submitted) == 1

    def test_budget_exhausted_after_max_attempts(self, make_executor, ledger, fake_time):
        ledger.balance_errors = [RateLimitedError("Too Many Requests")] * 3

        outcome = asyncio.run(make_executor().execute(make_request()))

        assert isinstance(outcome, Failed)
        assert "after 3 attempts" in outcome.reason
        assert "Too Many Requests" in outcome.reason
        assert fake_time.sleeps == [5.0, 10.0]
        assert ledger.submitted == []

    def test_attempts_never_exceed_budget(self, make_executor, ledger, config):
        ledger.balance_errors = [TransientNetworkError("reset")] * 10
        executor = make_executor(cfg=replace(config, max_retries=4))

        asyncio.run(executor.execute(make_request()))

        balance_calls = [c for c in ledger.calls if c[0] == 'get_balance']
        assert len(balance_calls) == 4

    def test_sequence_requeried_after_transient_submit_error(self, make_executor, ledger):
        ledger.submit_errors = [TransientNetworkError("Account sequence mismatch")]

        outcome = asyncio.run(make_executor().execute(make_request()))

        assert isinstance(outcome, Sent)
        meta_calls = [c for c in ledger.calls if c[0] == 'get_account_meta']
        assert len(meta_calls) == 2

    def test_non_retryable_error_fails_without_retry(self, make_executor, ledger, fake_time):
        ledger.balance_errors = [TransferError("Bad status on response: 400")]

        outcome = asyncio.run(make_executor().execute(make_request()))

        assert isinstance(outcome, Failed)
        assert outcome.reason == "Bad status on response: 400"
        assert fake_time.sleeps == []


# =============================================================================
# Terminal failures
# =============================================================================


class TestTerminalFailures:
    def test_malformed_credential_fails_before_network(self, make_executor, ledger):
        executor = make_executor()

        outcome = asyncio.run(executor.execute(make_request(seed="not a real seed phrase")))

        assert isinstance(outcome, Failed)
        assert outcome.from_address == ''
        assert ledger.calls == []
        assert executor.state == TransferState.FAILED_PERMANENT

    def test_submission_rejected_is_not_retried(self, make_executor, ledger, fake_time):
        ledger.submit_errors = [SubmissionRejectedError(5, "insufficient funds")]

        outcome = asyncio.run(make_executor().execute(make_request()))

        assert isinstance(outcome, Failed)
        assert "code 5" in outcome.reason
        assert fake_time.sleeps == []
        assert outcome.tx_hash is None

    def test_unexpected_error_becomes_failed_outcome(self, make_executor, ledger, fake_time):
        ledger.submit_errors = [TypeError("bad signing argument")]
        executor = make_executor()

        outcome = asyncio.run(executor.execute(make_request()))

        assert isinstance(outcome, Failed)
        assert outcome.reason == "Unexpected error: TypeError: bad signing argument"
        assert fake_time.sleeps == []
        assert executor.state == TransferState.FAILED_PERMANENT

    def test_rejected_on_chain(self, make_executor, ledger):
        ledger.tx_statuses["HASH1"] = [TxStatus(pending=False, code=11, log="out of gas")]

        outcome = asyncio.run(make_executor().execute(make_request()))

        assert isinstance(outcome, Failed)
        assert outcome.reason == "Transaction failed on chain with code 11"
        assert outcome.rejected_code == 11
        assert outcome.tx_hash == "HASH1"

    def test_confirmation_timeout_keeps_tx_hash(self, make_executor, ledger, fake_time):
        ledger.tx_statuses["HASH1"] = [TxStatus.not_found()]

        outcome = asyncio.run(make_executor().execute(make_request()))

        assert isinstance(outcome, Failed)
        assert outcome.tx_hash == "HASH1"
        assert outcome.rejected_code is None
        assert outcome.result_text == "FAILED: Transaction not confirmed in time (tx: HASH1)"
        assert fake_time.now == pytest.approx(120.0)
        assert len(ledger.submitted) == 1


# =============================================================================
# History and reconciliation
# =============================================================================


class TestReconciliation:
    @pytest.fixture
    def history(self):
        db = TransferHistoryDB(":memory:")
        yield db
        db.close()

    def test_outcome_recorded(self, make_executor, history):
        asyncio.run(make_executor(history=history).execute(make_request()))

        record = history.get_transfer("HASH1")
        assert record['status'] == 'confirmed'
        assert record['amount'] == 1_000_000

    def test_timeout_recorded_as_unconfirmed(self, make_executor, ledger, history):
        ledger.tx_statuses["HASH1"] = [TxStatus.not_found()]

        asyncio.run(make_executor(history=history).execute(make_request()))

        assert history.get_transfer("HASH1")['status'] == 'unconfirmed'
        error_types = [e['error_type'] for e in history.get_errors("ROW_1")]
        assert 'ConfirmationTimeoutError' in error_types

    def test_confirmed_earlier_broadcast_is_not_sent_again(self, make_executor, ledger, history):
        history.record_broadcast("ROW_1", "cosmos1srcabandon", DEST_1, 1_000_000, "OLDHASH")

        outcome = asyncio.run(make_executor(history=history).execute(make_request()))

        assert isinstance(outcome, Sent)
        assert outcome.reconciled is True
        assert outcome.tx_hash == "OLDHASH"
        assert outcome.amount_sent == 1_000_000
        assert ledger.submitted == []
        assert history.get_transfer("OLDHASH")['status'] == 'confirmed'

    def test_still_missing_broadcast_falls_through_to_new_transfer(self, make_executor, ledger, history):
        history.record_broadcast("ROW_1", "cosmos1srcabandon", DEST_1, 1_000_000, "OLDHASH")
        ledger.tx_statuses["OLDHASH"] = [TxStatus.not_found()]

        outcome = asyncio.run(make_executor(history=history).execute(make_request()))

        assert isinstance(outcome, Sent)
        assert outcome.reconciled is False
        assert len(ledger.submitted) == 1

    def test_rejected_earlier_broadcast_marked_failed(self, make_executor, ledger, history):
        history.record_broadcast("ROW_1", "cosmos1srcabandon", DEST_1, 1_000_000, "OLDHASH")
        ledger.tx_statuses["OLDHASH"] = [TxStatus(pending=False, code=5)]

        asyncio.run(make_executor(history=history).execute(make_request()))

        assert history.get_transfer("OLDHASH")['status'] == 'failed'
        assert len(ledger.submitted) == 1

    def test_retryable_errors_logged(self, make_executor, ledger, history):
        ledger.balance_errors = [RateLimitedError("429")]

        asyncio.run(make_executor(history=history).execute(make_request()))

        errors = history.get_errors("ROW_1")
        assert [e['error_type'] for e in errors] == ['RateLimitedError']
