"""Tests for base58, the transfer wire format and keypair signing."""

import json
import struct
from pathlib import Path

import pytest
from nacl.signing import (
    SigningKey,
    VerifyKey,
)

from conftest import (
    ADDR_2,
    BLOCKHASH,
)
from solchat.chain.transaction import (
    base58_decode,
    base58_encode,
    build_transfer_transaction,
    decode_compact_u16,
    decode_public_key,
    encode_compact_u16,
    is_valid_address,
    split_transaction,
    transaction_signature,
)
from solchat.chain.wallet import (
    ConnectedWallet,
    KeypairWallet,
    LocalWalletProvider,
    WalletNotConnectedError,
    WalletRejectedError,
)


def test_base58_known_values() -> None:
    assert base58_encode(b"hello world") == "StV1DL6CwTryKyV"
    assert base58_decode("StV1DL6CwTryKyV") == b"hello world"
    assert base58_encode(bytes(32)) == "1" * 32
    assert base58_decode("1" * 32) == bytes(32)
    assert base58_encode(b"\x00\x01") == "12"


def test_public_key_validation() -> None:
    assert is_valid_address(ADDR_2)
    assert not is_valid_address("StV1DL6CwTryKyV")  # valid base58, wrong length
    assert not is_valid_address("0OIl" * 8)  # characters outside the alphabet
    with pytest.raises(ValueError):
        decode_public_key("")


@pytest.mark.parametrize(
    "value, encoded",
    [(0, b"\x00"), (127, b"\x7f"), (128, b"\x80\x01"), (16384, b"\x80\x80\x01")],
)
def test_compact_u16(value: int, encoded: bytes) -> None:
    assert encode_compact_u16(value) == encoded
    assert decode_compact_u16(encoded) == (value, len(encoded))


def test_transfer_wire_layout() -> None:
    wallet = KeypairWallet.generate()

    tx = build_transfer_transaction(wallet.address, ADDR_2, 500_000_000, BLOCKHASH)

    assert tx[0] == 1
    assert tx[1:65] == bytes(64)
    message = tx[65:]
    assert message[:3] == bytes([1, 0, 1])
    assert message[3] == 3
    assert message[4:36] == decode_public_key(wallet.address)
    assert message[36:68] == decode_public_key(ADDR_2)
    assert message[68:100] == bytes(32)
    assert message[100:132] == base58_decode(BLOCKHASH)
    assert message[132] == 1  # one instruction
    assert message[133] == 2  # system program index
    assert message[134:137] == bytes([2, 0, 1])
    assert message[137] == 12
    assert message[138:] == struct.pack("<IQ", 2, 500_000_000)


def test_self_transfer_deduplicates_keys() -> None:
    wallet = KeypairWallet.generate()

    message = build_transfer_transaction(wallet.address, wallet.address, 1, BLOCKHASH)[65:]

    assert message[3] == 2
    # keys end at 68, blockhash at 100, then count, program index, accounts
    assert message[100:102] == bytes([1, 1])
    assert message[102:105] == bytes([2, 0, 0])


def test_transfer_requires_positive_amount() -> None:
    wallet = KeypairWallet.generate()
    with pytest.raises(ValueError):
        build_transfer_transaction(wallet.address, ADDR_2, 0, BLOCKHASH)


def test_signed_transaction_verifies() -> None:
    wallet = KeypairWallet.generate()
    unsigned = build_transfer_transaction(wallet.address, ADDR_2, 1_000, BLOCKHASH)

    signed = wallet.sign_transaction(unsigned)

    signatures, message = split_transaction(signed)
    VerifyKey(decode_public_key(wallet.address)).verify(message, signatures[0])
    assert transaction_signature(signed) == base58_encode(signatures[0])
    assert len(signed) == len(unsigned)


def test_keypair_file_round_trip(tmp_path: Path) -> None:
    signing_key = SigningKey.generate()
    secret = bytes(signing_key) + bytes(signing_key.verify_key)
    path = tmp_path / "id.json"
    path.write_text(json.dumps(list(secret)), encoding="utf-8")

    wallet = KeypairWallet.from_file(path)

    assert wallet.address == base58_encode(bytes(signing_key.verify_key))


def test_keypair_with_mismatched_public_key() -> None:
    secret = bytes(SigningKey.generate()) + bytes(32)
    with pytest.raises(ValueError):
        KeypairWallet.from_secret(secret)


def test_wallet_provider_login_and_signing(tmp_path: Path) -> None:
    signing_key = SigningKey.generate()
    path = tmp_path / "id.json"
    path.write_text(json.dumps(list(bytes(signing_key) + bytes(signing_key.verify_key))), encoding="utf-8")
    provider = LocalWalletProvider(path)

    assert not provider.authenticated
    assert provider.login()
    assert provider.authenticated
    wallet = provider.wallets[0]
    unsigned = build_transfer_transaction(wallet.address, ADDR_2, 10, BLOCKHASH)
    assert provider.sign_transaction(unsigned, wallet) != unsigned

    provider.logout()
    assert provider.wallets == []
    with pytest.raises(WalletNotConnectedError):
        provider.sign_transaction(unsigned, wallet)


def test_wallet_provider_without_keypair() -> None:
    provider = LocalWalletProvider()

    assert not provider.login()
    with pytest.raises(WalletNotConnectedError):
        provider.sign_transaction(b"", ConnectedWallet(address=ADDR_2))


def test_wallet_provider_rejection() -> None:
    wallet = KeypairWallet.generate()
    provider = LocalWalletProvider(wallet=wallet, approve=lambda _wallet, _tx: False)
    unsigned = build_transfer_transaction(wallet.address, ADDR_2, 10, BLOCKHASH)

    with pytest.raises(WalletRejectedError):
        provider.sign_transaction(unsigned, wallet)
