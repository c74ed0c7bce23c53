"""
Pytest fixtures for the ATOM sender test suite.

Provides:
- FakeLedgerClient: scripted balances, sequences, broadcasts and tx statuses
- FakeTime: injected sleep/clock pair that never waits
- FakeRowStore: in-memory row source and result sink
- fake_derive: account derivation without key material
"""

from typing import Dict, List, Optional

import pytest

from atom_transfer.config import SenderConfig
from atom_transfer.ledger_client import AccountMeta, SubmitResult, TxStatus
from atom_transfer.row_store import RowState
from atom_transfer.signer import Account


# Valid BIP-39 test vectors (checksums pass)
SEED_A = "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"
SEED_B = "legal winner thank year wave sausage worth useful legal winner thank yellow"
SEED_C = "zoo zoo zoo zoo zoo zoo zoo zoo zoo zoo zoo wrong"

DEST_1 = "cosmos1destinationaaaaaaaaaaaaaaaaaaaaaaaaaaa"
DEST_2 = "cosmos1destinationbbbbbbbbbbbbbbbbbbbbbbbbbbb"


def fake_derive(credential, prefix="cosmos") -> Account:
    first_word = credential.phrase.split(" ")[0]
    return Account(address=f"{prefix}1src{first_word}", prefix=prefix, credential=credential)


class FakeTime:
    """Monotonic clock advanced only by sleep"""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeLedgerClient:
    """
    Scripted LedgerClient

    balance_errors / submit_errors are raised in order before the call succeeds.
    tx_statuses maps a hash to a list of TxStatus or exceptions; the last
    entry repeats. Unknown hashes are confirmed immediately.
    """

    def __init__(self, balance: int = 1_020_000):
        self.balance = balance
        self.balances: Dict[str, int] = {}
        self.sequence = 0
        self.balance_errors: List[Exception] = []
        self.submit_errors: List[Exception] = []
        self.tx_statuses: Dict[str, list] = {}
        self.submitted: List = []
        self.calls: List[tuple] = []
        self.connected = False

    async def connect(self):
        self.connected = True
        self.calls.append(('connect',))
        return self

    async def close(self):
        self.connected = False

    async def get_balance(self, address: str, denom: str) -> int:
        self.calls.append(('get_balance', address, denom))
        if self.balance_errors:
            raise self.balance_errors.pop(0)
        return self.balances.get(address, self.balance)

    async def get_account_meta(self, address: str) -> AccountMeta:
        self.calls.append(('get_account_meta', address))
        return AccountMeta(account_number=7, sequence=self.sequence)

    async def submit(self, account, message, fee, meta) -> SubmitResult:
        self.calls.append(('submit', message.to_address, message.amount))
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        self.submitted.append((account, message, fee, meta))
        self.sequence += 1
        return SubmitResult(tx_hash=f"HASH{len(self.submitted)}", gas_used=80000)

    async def query_tx_status(self, tx_hash: str) -> TxStatus:
        self.calls.append(('query_tx_status', tx_hash))
        script = self.tx_statuses.get(tx_hash)
        if not script:
            return TxStatus(pending=False, code=0, gas_used=75000, height=100)
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    def network_calls(self) -> List[tuple]:
        return [c for c in self.calls if c[0] != 'connect']


class FakeRowStore:
    """In-memory row sink; every flush keeps a snapshot of the results"""

    def __init__(self, rows):
        self._rows = [
            RowState(index=i, destination=address, credential_override=seed or '')
            for i, (address, seed) in enumerate(rows)
        ]
        self.results: Dict[int, str] = {}
        self.snapshots: List[Dict[int, str]] = []

    @property
    def flush_count(self) -> int:
        return len(self.snapshots)

    def rows(self) -> List[RowState]:
        return list(self._rows)

    def set_result(self, index: int, text: str):
        self.results[index] = text

    def get_result(self, index: int) -> Optional[str]:
        return self.results.get(index)

    def flush(self):
        self.snapshots.append(dict(self.results))


@pytest.fixture
def config() -> SenderConfig:
    return SenderConfig(history_db_path=None, start_delay_seconds=0)


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def ledger() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def make_store():
    return FakeRowStore


@pytest.fixture
def make_executor(ledger, config, fake_time):
    """Build a TransferExecutor wired to the fakes"""
    from atom_transfer.transfer_engine import TransferExecutor

    def _make(cfg: Optional[SenderConfig] = None, history=None, client=None):
        return TransferExecutor(
            client or ledger,
            cfg or config,
            history=history,
            derive=fake_derive,
            sleep=fake_time.sleep,
            clock=fake_time.clock,
        )

    return _make
