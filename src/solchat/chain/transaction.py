"""
SOL transfer transactions in the legacy wire format.

Only what the chat needs: a single System Program ``Transfer`` instruction, one signer (the fee
payer), serialized with an empty signature slot so an external wallet can sign it.

Legacy transaction layout::

    compact-u16 signature count | 64-byte signatures | message

    message = header(3 bytes) | compact-u16 key count | 32-byte keys
              | 32-byte recent blockhash | compact-u16 instruction count | instructions
"""

import struct
from typing import List

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_INDEX = {char: index for index, char in enumerate(_BASE58_ALPHABET)}

SYSTEM_PROGRAM_ID = bytes(32)  # 11111111111111111111111111111111
SIGNATURE_LENGTH = 64
PUBLIC_KEY_LENGTH = 32
_TRANSFER_INSTRUCTION = 2


def base58_decode(value: str) -> bytes:
    if not value:
        return b""
    num = 0
    for char in value:
        if char not in _BASE58_INDEX:
            raise ValueError("Invalid base58 character")
        num = num * 58 + _BASE58_INDEX[char]
    combined = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    pad = len(value) - len(value.lstrip("1"))
    return b"\x00" * pad + combined


def base58_encode(data: bytes) -> str:
    if not data:
        return ""
    num = int.from_bytes(data, "big")
    encoded = ""
    while num > 0:
        num, rem = divmod(num, 58)
        encoded = _BASE58_ALPHABET[rem] + encoded
    pad = len(data) - len(data.lstrip(b"\x00"))
    return "1" * pad + encoded


def decode_public_key(address: str) -> bytes:
    """Decode a base58 address; raises ``ValueError`` unless it is 32 bytes."""
    key = base58_decode(address.strip())
    if len(key) != PUBLIC_KEY_LENGTH:
        raise ValueError(f"Invalid Solana address: {address!r}")
    return key


def is_valid_address(address: str) -> bool:
    try:
        decode_public_key(address)
    except ValueError:
        return False
    return True


def encode_compact_u16(value: int) -> bytes:
    """Solana's variable-length ("shortvec") encoding of a u16."""
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"compact-u16 out of range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_compact_u16(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Return ``(value, next_offset)``."""
    value = 0
    for shift_index in range(3):
        byte = data[offset]
        offset += 1
        value |= (byte & 0x7F) << (7 * shift_index)
        if not byte & 0x80:
            return value, offset
    raise ValueError("compact-u16 too long")


def build_transfer_message(
    from_address: str, to_address: str, lamports: int, recent_blockhash: str
) -> bytes:
    """Serialize the message of a single-transfer transaction paid by *from_address*."""
    if lamports <= 0:
        raise ValueError("Transfer amount must be positive")
    from_key = decode_public_key(from_address)
    to_key = decode_public_key(to_address)
    blockhash = base58_decode(recent_blockhash)
    if len(blockhash) != 32:
        raise ValueError("Invalid recent blockhash")

    # Signer/writable first, then writable recipient, then the read-only program.
    keys: List[bytes] = [from_key]
    if to_key != from_key:
        keys.append(to_key)
    keys.append(SYSTEM_PROGRAM_ID)
    header = bytes([1, 0, 1])

    from_index = 0
    to_index = keys.index(to_key)
    program_index = len(keys) - 1
    data = struct.pack("<IQ", _TRANSFER_INSTRUCTION, lamports)
    instruction = (
        bytes([program_index])
        + encode_compact_u16(2)
        + bytes([from_index, to_index])
        + encode_compact_u16(len(data))
        + data
    )

    return (
        header
        + encode_compact_u16(len(keys))
        + b"".join(keys)
        + blockhash
        + encode_compact_u16(1)
        + instruction
    )


def serialize_unsigned(message: bytes) -> bytes:
    """Wrap *message* in a transaction with one zeroed signature slot."""
    return encode_compact_u16(1) + bytes(SIGNATURE_LENGTH) + message


def split_transaction(transaction: bytes) -> tuple[List[bytes], bytes]:
    """Return ``(signatures, message)`` of a serialized legacy transaction."""
    count, offset = decode_compact_u16(transaction)
    signatures = []
    for _ in range(count):
        signatures.append(transaction[offset : offset + SIGNATURE_LENGTH])
        offset += SIGNATURE_LENGTH
    message = transaction[offset:]
    if not message or len(signatures) != count or any(len(s) != SIGNATURE_LENGTH for s in signatures):
        raise ValueError("Malformed transaction")
    return signatures, message


def attach_signature(transaction: bytes, signature: bytes, index: int = 0) -> bytes:
    """Place *signature* into slot *index* of a serialized transaction."""
    if len(signature) != SIGNATURE_LENGTH:
        raise ValueError("Signature must be 64 bytes")
    signatures, message = split_transaction(transaction)
    signatures[index] = signature
    return encode_compact_u16(len(signatures)) + b"".join(signatures) + message


def transaction_signature(transaction: bytes) -> str:
    """Base58 id of a signed transaction (its first signature)."""
    signatures, _ = split_transaction(transaction)
    return base58_encode(signatures[0])


def build_transfer_transaction(
    from_address: str, to_address: str, lamports: int, recent_blockhash: str
) -> bytes:
    """Unsigned, serialized transfer transaction ready for a wallet."""
    return serialize_unsigned(
        build_transfer_message(from_address, to_address, lamports, recent_blockhash)
    )
