"""
ATOM Transfer

Drains Cosmos Hub source wallets into destination addresses listed in an
Excel workbook, one confirmed transaction at a time.

Components:
- ledger_client: REST/RPC access to a Cosmos node (balances, sequences, broadcast)
- signer: Seed phrase validation, account derivation, MsgSend signing
- confirmation: Bounded polling for on-chain inclusion
- transfer_engine: Per-row drain state machine with retry/backoff
- batch_orchestrator: Sequential row processing with checkpoints
- row_store: Excel workbook row source and result sink
- transaction_history: SQLite audit log and reconciliation
- config / logging_config: Settings and loguru sinks

Result column values:
- SUCCESS: <tx hash>
- SKIP: <reason>
- FAILED: <reason>
- INVALID_ADDRESS / NO_SEED_PHRASE
"""

from .batch_orchestrator import (
    BatchOrchestrator,
    BatchProgress,
    resolve_credentials,
)
from .config import SenderConfig
from .confirmation import (
    ConfirmationWatcher,
    Confirmed,
    Rejected,
    TimedOut,
)
from .errors import (
    ConfigError,
    ConfirmationTimeoutError,
    InvalidDestinationError,
    MalformedCredentialError,
    RateLimitedError,
    RetryBudgetExhaustedError,
    RetryableError,
    RowSourceError,
    SubmissionRejectedError,
    TransferError,
    TransientNetworkError,
)
from .ledger_client import LedgerClient
from .row_store import ExcelRowStore, RowState
from .signer import Credential, derive_account
from .transaction_history import TransferHistoryDB
from .transfer_engine import (
    Failed,
    Sent,
    Skipped,
    TransferExecutor,
    TransferRequest,
    TransferState,
)

__all__ = [
    # Engine
    'TransferExecutor',
    'TransferRequest',
    'TransferState',
    'Sent',
    'Skipped',
    'Failed',

    # Batch
    'BatchOrchestrator',
    'BatchProgress',
    'resolve_credentials',
    'ExcelRowStore',
    'RowState',

    # Ledger
    'LedgerClient',
    'ConfirmationWatcher',
    'Confirmed',
    'Rejected',
    'TimedOut',
    'Credential',
    'derive_account',

    # History
    'TransferHistoryDB',

    # Configuration
    'SenderConfig',

    # Errors
    'TransferError',
    'MalformedCredentialError',
    'InvalidDestinationError',
    'RetryableError',
    'RateLimitedError',
    'TransientNetworkError',
    'SubmissionRejectedError',
    'ConfirmationTimeoutError',
    'ConfigError',
    'RetryBudgetExhaustedError',
    'RowSourceError',
]

__version__ = '1.0.0'
