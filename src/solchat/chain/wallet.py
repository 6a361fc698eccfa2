"""
Local wallet provider.

Stands in for a browser wallet: it "logs in" by loading a Solana CLI keypair file (a JSON array of
64 integers: the ed25519 seed followed by the public key) and signs serialized transactions with
PyNaCl.  An optional approval callback lets the UI ask the user before each signature; declining
raises :class:`WalletRejectedError`.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import (
    Callable,
    List,
    Optional,
)

from nacl.signing import SigningKey

from solchat.chain.transaction import (
    attach_signature,
    base58_encode,
    split_transaction,
)

logger = logging.getLogger(__name__)


class WalletError(RuntimeError):
    """Base class for wallet failures."""


class WalletNotConnectedError(WalletError):
    """No wallet is available to sign."""


class WalletRejectedError(WalletError):
    """The user declined to sign."""


@dataclass
class ConnectedWallet:
    """A wallet the user has connected; only its address is public."""

    address: str


class KeypairWallet(ConnectedWallet):
    """Wallet backed by an in-memory ed25519 keypair."""

    def __init__(self, signing_key: SigningKey) -> None:
        super().__init__(address=base58_encode(bytes(signing_key.verify_key)))
        self._signing_key = signing_key

    @classmethod
    def from_secret(cls, secret: bytes) -> "KeypairWallet":
        """Build from a 64-byte secret (seed + public key) or a 32-byte seed."""
        if len(secret) not in (32, 64):
            raise ValueError("Keypair secret must be 32 or 64 bytes")
        signing_key = SigningKey(secret[:32])
        if len(secret) == 64 and bytes(signing_key.verify_key) != secret[32:]:
            raise ValueError("Keypair public key does not match its seed")
        return cls(signing_key)

    @classmethod
    def from_file(cls, path: str | Path) -> "KeypairWallet":
        """Load a Solana CLI keypair file."""
        raw = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
        return cls.from_secret(bytes(raw))

    @classmethod
    def generate(cls) -> "KeypairWallet":
        return cls(SigningKey.generate())

    def sign_message(self, message: bytes) -> bytes:
        return self._signing_key.sign(message).signature

    def sign_transaction(self, transaction: bytes) -> bytes:
        """Sign a serialized single-signer transaction, returning it with the signature set."""
        _, message = split_transaction(transaction)
        return attach_signature(transaction, self.sign_message(message))


class LocalWalletProvider:
    """Auth/wallet surface: ``authenticated``, ``login``, ``logout``, ``wallets``, signing."""

    def __init__(
        self,
        keypair_path: str | Path | None = None,
        approve: Optional[Callable[[ConnectedWallet, bytes], bool]] = None,
        wallet: Optional[KeypairWallet] = None,
    ) -> None:
        self._keypair_path = keypair_path
        self._approve = approve
        self._wallet = wallet

    @property
    def authenticated(self) -> bool:
        return self._wallet is not None

    @property
    def wallets(self) -> List[ConnectedWallet]:
        return [self._wallet] if self._wallet is not None else []

    @property
    def active_wallet(self) -> Optional[KeypairWallet]:
        return self._wallet

    def login(self) -> bool:
        """Load the configured keypair.  Returns whether a wallet is now connected."""
        if self._wallet is not None:
            return True
        if not self._keypair_path:
            logger.warning("No wallet keypair configured")
            return False
        try:
            self._wallet = KeypairWallet.from_file(self._keypair_path)
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Failed to load wallet keypair %s: %s", self._keypair_path, exc)
            return False
        logger.info("Wallet connected: %s", self._wallet.address)
        return True

    def logout(self) -> None:
        self._wallet = None

    def sign_transaction(self, transaction: bytes, wallet: ConnectedWallet) -> bytes:
        """
        Sign *transaction* with *wallet*.

        Raises
        ------
        WalletNotConnectedError
            If *wallet* is not the connected wallet.
        WalletRejectedError
            If the approval callback declines.
        """
        if self._wallet is None or wallet.address != self._wallet.address:
            raise WalletNotConnectedError("No wallet connected")
        if self._approve is not None and not self._approve(wallet, transaction):
            raise WalletRejectedError("User rejected the signature request")
        return self._wallet.sign_transaction(transaction)
