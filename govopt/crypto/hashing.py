"""
Governance Engine Hashing Module

Provides hash functions used throughout the engine:
- keccak256: proposal ids, vote commitments and history leaves
"""

from typing import Union

from Crypto.Hash import keccak as _keccak


def _to_bytes(data: Union[bytes, str]) -> bytes:
    if isinstance(data, str):
        if data.startswith('0x') or data.startswith('0X'):
            return bytes.fromhex(data[2:])
        try:
            return bytes.fromhex(data)
        except ValueError:
            # Plain text string
            return data.encode('utf-8')
    return bytes(data)


def keccak256(data: Union[bytes, str]) -> bytes:
    """
    Compute Keccak-256 hash.

    Args:
        data: Input bytes, hex string, or plain text

    Returns:
        32-byte hash
    """
    k = _keccak.new(digest_bits=256)
    k.update(_to_bytes(data))
    return k.digest()


def keccak256_hex(data: Union[bytes, str]) -> str:
    """
    Compute Keccak-256 hash and return as hex string.

    Returns:
        Hex string with 0x prefix
    """
    return '0x' + keccak256(data).hex()


def hex_to_digest(value: str) -> bytes:
    """
    Parse a 0x-prefixed (or bare) 64-char hex string into 32 bytes.

    Raises:
        ValueError: if the value is not a 32-byte hex digest
    """
    if not isinstance(value, str):
        raise ValueError("Digest must be a hex string")
    raw = value[2:] if value[:2] in ('0x', '0X') else value
    if len(raw) != 64:
        raise ValueError(f"Digest must be 32 bytes, got {len(raw) // 2}")
    return bytes.fromhex(raw)
