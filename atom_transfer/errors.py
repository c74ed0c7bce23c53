"""
Transfer Errors

Exception hierarchy shared by the ledger client, the confirmation watcher,
the transfer executor and the batch orchestrator.

Retryable (handled with exponential backoff):
- RateLimitedError: HTTP 429 or provider throttling text
- TransientNetworkError: timeouts, dropped connections, 5xx responses

Terminal for the row:
- MalformedCredentialError, InvalidDestinationError,
  SubmissionRejectedError, ConfirmationTimeoutError,
  RetryBudgetExhaustedError

Terminal for the run:
- RowSourceError, ConfigError
"""

from typing import Optional


class TransferError(Exception):
    """Base class for every error raised by atom_transfer"""


class MalformedCredentialError(TransferError):
    """Seed phrase cannot be parsed into an account"""


class InvalidDestinationError(TransferError):
    """Destination address does not match the ledger address prefix"""

    def __init__(self, address: str, prefix: str):
        self.address = address
        self.prefix = prefix
        super().__init__(f"Invalid destination address {address!r} (expected prefix {prefix}1)")


class RetryableError(TransferError):
    """Errors that the executor retries with backoff"""


class RateLimitedError(RetryableError):
    """Endpoint throttled the request"""


class TransientNetworkError(RetryableError):
    """Network blip: timeout, reset connection, 5xx"""


class SubmissionRejectedError(TransferError):
    """Chain refused the transaction at broadcast time"""

    def __init__(self, code: int, log: str = ""):
        self.code = code
        self.log = log
        message = f"Transaction rejected with code {code}"
        if log:
            message += f": {log[:200]}"
        super().__init__(message)


class ConfirmationTimeoutError(TransferError):
    """Broadcast succeeded but the transaction was not seen in time"""

    def __init__(self, tx_hash: str, timeout: float):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(f"Transaction {tx_hash} not confirmed within {timeout:.0f}s")


class RetryBudgetExhaustedError(TransferError):
    """All attempts failed with retryable errors"""

    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        self.attempts = attempts
        self.last_error = last_error
        detail = str(last_error) if last_error else "All attempts failed"
        super().__init__(f"{detail} (after {attempts} attempts)")


class RowSourceError(TransferError):
    """Input workbook missing or unreadable"""


class ConfigError(TransferError):
    """Configuration value has the wrong type or is out of range"""
