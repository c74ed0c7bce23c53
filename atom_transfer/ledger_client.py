"""
Ledger Client

Thin async client for one Cosmos Hub node:
- Balance and account (sequence) queries over the REST (LCD) API
- Sign-and-broadcast of a single MsgSend (BROADCAST_MODE_SYNC)
- Transaction status lookup over the Tendermint RPC
- Endpoint health probe

Every failure is translated into the atom_transfer error hierarchy so the
executor only ever sees RateLimitedError / TransientNetworkError (retryable)
or a terminal TransferError.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import httpx
from loguru import logger

from .config import SenderConfig
from .errors import (
    RateLimitedError,
    SubmissionRejectedError,
    TransferError,
    TransientNetworkError,
)
from .signer import Account


# Substrings providers use when throttling (lower case)
RATE_LIMIT_MARKERS = (
    '429',
    'too many requests',
    'rate limit',
    'ratelimit',
    'bad status on response: 429',
)

# CheckTx code for "account sequence mismatch" - fixed by re-querying the account
SEQUENCE_MISMATCH_CODE = 32


@dataclass(frozen=True)
class AccountMeta:
    """On-chain account state needed for signing"""
    account_number: int
    sequence: int


@dataclass(frozen=True)
class TransferMessage:
    """Single bank MsgSend"""
    from_address: str
    to_address: str
    amount: int
    denom: str


@dataclass(frozen=True)
class Fee:
    """Flat fee and gas limit attached to a transaction"""
    amount: int
    denom: str
    gas_limit: int


@dataclass(frozen=True)
class SubmitResult:
    """Broadcast acknowledgement"""
    tx_hash: str
    gas_used: int


@dataclass(frozen=True)
class TxStatus:
    """Transaction status as reported by the RPC node"""
    pending: bool
    code: Optional[int] = None
    gas_used: Optional[int] = None
    height: Optional[int] = None
    log: str = ''

    @classmethod
    def not_found(cls) -> 'TxStatus':
        return cls(pending=True)


def is_rate_limit_message(text: str) -> bool:
    lowered = (text or '').lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


def classify_http_error(error: Exception) -> TransferError:
    """
    Map an httpx error onto the transfer error hierarchy

    Args:
        error: Exception raised by httpx

    Returns:
        TransferError subclass instance (not raised)
    """
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        body = error.response.text[:200]
        message = f"Bad status on response: {status} {body}".strip()

        if status == 429 or is_rate_limit_message(body):
            return RateLimitedError(message)
        if status >= 500 or status == 408:
            return TransientNetworkError(message)
        return TransferError(message)

    if isinstance(error, httpx.TransportError):
        return TransientNetworkError(f"{type(error).__name__}: {error}")

    if is_rate_limit_message(str(error)):
        return RateLimitedError(str(error))

    return TransientNetworkError(str(error))


def _json_object(response: httpx.Response, what: str) -> Dict:
    """Decode a JSON object body; anything else counts as a transient node fault"""
    try:
        data = response.json()
    except ValueError as e:
        raise TransientNetworkError(f"Malformed {what}: {e}") from e
    if not isinstance(data, dict):
        raise TransientNetworkError(f"Malformed {what}: expected a JSON object, got {type(data).__name__}")
    return data


def _to_int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _extract_base_account(account: Dict) -> Dict:
    """Find the BaseAccount fields inside plain, module or vesting accounts"""
    if 'account_number' in account:
        return account
    for value in account.values():
        if isinstance(value, dict):
            found = _extract_base_account(value)
            if found:
                return found
    return {}


class LedgerClient:
    """
    Async Cosmos node client

    Features:
    - Lazy connection (httpx.AsyncClient shared across calls)
    - Rate limit detection (HTTP 429 and throttling text)
    - Uniform error translation
    """

    def __init__(
        self,
        config: SenderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize ledger client

        Args:
            config: Sender configuration (endpoints, chain id, denom)
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        self.rest_endpoint = config.rest_endpoint.rstrip('/')
        self.rpc_endpoint = config.rpc_endpoint.rstrip('/')
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def connect(self) -> 'LedgerClient':
        if self._http is None:
            logger.debug(f"🔗 Connecting to {self.rest_endpoint}")
            self._http = httpx.AsyncClient(
                timeout=self.config.http_timeout_seconds,
                transport=self._transport,
                headers={'Accept': 'application/json'},
            )
        return self

    async def close(self):
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> 'LedgerClient':
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        await self.connect()
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise classify_http_error(e) from e
        return response

    async def _get_json(self, url: str, params: Optional[Dict] = None) -> Dict:
        response = await self._request('GET', url, params=params)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise classify_http_error(e) from e
        return _json_object(response, f"response from {url}")

    async def check_endpoint_status(self) -> bool:
        """
        Check that the RPC endpoint answers /status

        Returns:
            True if the endpoint responded with node info
        """
        logger.info(f"🔍 Checking RPC endpoint status: {self.rpc_endpoint}")
        try:
            data = await self._get_json(f"{self.rpc_endpoint}/status")
        except TransferError as e:
            logger.warning(f"✗ RPC endpoint check failed: {e}")
            return False

        network = data.get('result', {}).get('node_info', {}).get('network', 'unknown')
        logger.info(f"✓ RPC endpoint healthy - chain id: {network}")
        if network != 'unknown' and network != self.config.chain_id:
            logger.warning(f"⚠ Endpoint reports chain {network}, configured chain is {self.config.chain_id}")
        return True

    async def get_balance(self, address: str, denom: str) -> int:
        """
        Query spendable balance of one denom

        Args:
            address: Account address
            denom: Denomination (e.g. uatom)

        Returns:
            Amount in minor units
        """
        data = await self._get_json(
            f"{self.rest_endpoint}/cosmos/bank/v1beta1/balances/{address}/by_denom",
            params={'denom': denom},
        )
        balance = data.get('balance') or {}
        return _to_int(balance.get('amount'), 0)

    async def get_account_meta(self, address: str) -> AccountMeta:
        """
        Query account number and current sequence

        Accounts unknown to the chain report (0, 0).
        """
        url = f"{self.rest_endpoint}/cosmos/auth/v1beta1/accounts/{address}"
        response = await self._request('GET', url)

        if response.status_code == 404:
            logger.debug(f"Account {address} not found on chain, using sequence 0")
            return AccountMeta(account_number=0, sequence=0)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise classify_http_error(e) from e
        data = _json_object(response, "account response")

        base = _extract_base_account(data.get('account') or {})
        return AccountMeta(
            account_number=_to_int(base.get('account_number')),
            sequence=_to_int(base.get('sequence')),
        )

    async def submit(
        self,
        account: Account,
        message: TransferMessage,
        fee: Fee,
        meta: AccountMeta
    ) -> SubmitResult:
        """
        Sign and broadcast a transfer

        Args:
            account: Signing account (must match message.from_address)
            message: Transfer message
            fee: Fee and gas limit
            meta: Fresh account number / sequence

        Returns:
            SubmitResult with the transaction hash

        Raises:
            SubmissionRejectedError: CheckTx refused the transaction
            RateLimitedError / TransientNetworkError: retryable failures
        """
        tx_bytes = account.sign_transfer(
            to_address=message.to_address,
            amount=message.amount,
            denom=message.denom,
            fee_amount=fee.amount,
            gas_limit=fee.gas_limit,
            account_number=meta.account_number,
            sequence=meta.sequence,
            chain_id=self.config.chain_id,
        )

        data = await self._post_broadcast(tx_bytes)
        tx_response = data.get('tx_response') or {}
        tx_hash = tx_response.get('txhash')
        code = _to_int(tx_response.get('code'), 0)
        raw_log = tx_response.get('raw_log') or ''

        if code == SEQUENCE_MISMATCH_CODE:
            raise TransientNetworkError(f"Account sequence mismatch: {raw_log[:200]}")
        if code != 0:
            if is_rate_limit_message(raw_log):
                raise RateLimitedError(raw_log[:200])
            raise SubmissionRejectedError(code, raw_log)
        if not tx_hash:
            raise TransientNetworkError("Broadcast response did not contain a transaction hash")

        return SubmitResult(tx_hash=tx_hash.upper(), gas_used=_to_int(tx_response.get('gas_used')))

    async def _post_broadcast(self, tx_bytes: str) -> Dict:
        url = f"{self.rest_endpoint}/cosmos/tx/v1beta1/txs"
        payload = {'tx_bytes': tx_bytes, 'mode': 'BROADCAST_MODE_SYNC'}
        response = await self._request('POST', url, json=payload)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise classify_http_error(e) from e
        return _json_object(response, "broadcast response")

    async def query_tx_status(self, tx_hash: str) -> TxStatus:
        """
        Look up a transaction through the Tendermint RPC

        Args:
            tx_hash: Hex transaction hash

        Returns:
            TxStatus (pending while the node does not know the transaction)
        """
        response = await self._request('GET', f"{self.rpc_endpoint}/tx", params={'hash': f"0x{tx_hash}"})

        if response.status_code == 429:
            raise RateLimitedError(f"Bad status on response: 429 {response.text[:200]}")

        data = _json_object(response, f"tx response (status {response.status_code})")

        result = data.get('result') or {}
        tx_result = result.get('tx_result')
        if tx_result is not None:
            return TxStatus(
                pending=False,
                code=_to_int(tx_result.get('code'), 0),
                gas_used=_to_int(tx_result.get('gas_used')),
                height=_to_int(result.get('height')),
                log=tx_result.get('log') or '',
            )

        error = data.get('error') or {}
        error_text = f"{error.get('message', '')} {error.get('data', '')}"
        if 'not found' in error_text.lower():
            return TxStatus.not_found()

        if response.status_code >= 400:
            raise TransientNetworkError(f"Bad status on response: {response.status_code} {error_text.strip()[:200]}")

        return TxStatus.not_found()
