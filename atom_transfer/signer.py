"""
Signer

Seed phrase handling and Cosmos account derivation.

A Credential wraps a BIP-39 mnemonic. It derives exactly one Account
under m/44'/118'/0'/0/0 and is never logged in full. Signing is delegated
to mospy, which builds and signs the protobuf transaction bytes.
"""

from dataclasses import dataclass, field

from loguru import logger
from mnemonic import Mnemonic
from mospy import Account as MospyAccount
from mospy import Transaction

from .errors import InvalidDestinationError, MalformedCredentialError


COSMOS_SLIP44 = 118
ADDRESS_INDEX = 0
DERIVATION_PATH = f"m/44'/{COSMOS_SLIP44}'/0'/0/{ADDRESS_INDEX}"

_wordlist = Mnemonic("english")


@dataclass(frozen=True)
class Credential:
    """Seed phrase for one source wallet"""
    phrase: str = field(repr=False)

    @classmethod
    def parse(cls, raw: str) -> 'Credential':
        """
        Normalise and validate a seed phrase

        Args:
            raw: Seed phrase as typed in the workbook

        Returns:
            Credential

        Raises:
            MalformedCredentialError: if the phrase is not a valid BIP-39 mnemonic
        """
        phrase = " ".join(str(raw or "").split()).lower()
        if not phrase:
            raise MalformedCredentialError("Seed phrase is empty")

        words = phrase.split(" ")
        if len(words) not in (12, 15, 18, 21, 24):
            raise MalformedCredentialError(f"Seed phrase has {len(words)} words (expected 12/15/18/21/24)")

        if not _wordlist.check(phrase):
            raise MalformedCredentialError("Seed phrase failed BIP-39 wordlist/checksum validation")

        return cls(phrase=phrase)

    @property
    def masked(self) -> str:
        words = self.phrase.split(" ")
        return f"{words[0]} ... ({len(words)} words)"

    def __repr__(self):
        return f"Credential({self.masked})"


@dataclass(frozen=True)
class Account:
    """Source account derived from a credential"""
    address: str
    prefix: str
    credential: Credential = field(repr=False)

    def sign_transfer(
        self,
        to_address: str,
        amount: int,
        denom: str,
        fee_amount: int,
        gas_limit: int,
        account_number: int,
        sequence: int,
        chain_id: str,
        memo: str = "",
    ) -> str:
        """
        Build and sign a single MsgSend transaction

        Returns:
            Base64 encoded transaction bytes ready for broadcast
        """
        wallet = MospyAccount(
            seed_phrase=self.credential.phrase,
            hrp=self.prefix,
            slip44=COSMOS_SLIP44,
            address_index=ADDRESS_INDEX,
            account_number=account_number,
            next_sequence=sequence,
        )

        tx = Transaction(
            account=wallet,
            gas=gas_limit,
            memo=memo,
            chain_id=chain_id,
        )
        tx.set_fee(denom=denom, amount=fee_amount)
        tx.add_msg(
            tx_type="transfer",
            sender=wallet,
            recipient=to_address,
            amount=amount,
            denom=denom,
        )

        logger.debug(f"Signed MsgSend {amount}{denom} -> {to_address} (seq {sequence})")
        return tx.get_tx_bytes_as_string()


def derive_account(credential: Credential, prefix: str = "cosmos") -> Account:
    """
    Derive the source account for a credential

    Args:
        credential: Parsed seed phrase
        prefix: Bech32 address prefix

    Returns:
        Account
    """
    try:
        wallet = MospyAccount(
            seed_phrase=credential.phrase,
            hrp=prefix,
            slip44=COSMOS_SLIP44,
            address_index=ADDRESS_INDEX,
        )
        address = wallet.address
    except (ValueError, TypeError) as e:
        raise MalformedCredentialError(f"Could not derive account from seed phrase: {e}") from e

    return Account(address=address, prefix=prefix, credential=credential)


def is_valid_address(address, prefix: str = "cosmos") -> bool:
    """Destination must be a string carrying the chain's bech32 prefix"""
    return isinstance(address, str) and address.startswith(f"{prefix}1")


def validate_destination(address, prefix: str = "cosmos") -> str:
    if not is_valid_address(address, prefix):
        raise InvalidDestinationError(str(address), prefix)
    return address
