"""
Address helpers for EVM trace analysis.

Addresses are carried around as lowercase 0x-prefixed hex strings. Storage
slots and stack operands are 256-bit integers, so an address is frequently
compared against its left-padded word form.

Formats:
- Normalized: 0x7a8b9c0d1e2f3a4b5c6d7e8f9a0b1c2d3e4f5a6b
- Checksum:   0x7A8b9C0d1E2f3A4b5C6D7e8F9a0B1c2D3e4F5A6b
"""

from __future__ import annotations

from eth_utils import keccak, to_checksum_address, to_normalized_address

from .constants import (
    ADDRESS_LENGTH,
    P256_VERIFY_PRECOMPILE,
    PRECOMPILE_RANGE,
    UINT256_MAX,
    ZERO_ADDRESS,
)

_ADDRESS_MASK = (1 << (8 * ADDRESS_LENGTH)) - 1


def normalize_address(address: str | bytes | int | None) -> str:
    """
    Normalize an address to lowercase 0x-prefixed hex.

    Args:
        address: Hex string (any case, with or without checksum), 20 raw
            bytes, or an integer word whose low 20 bytes hold the address

    Returns:
        Normalized address; ``None`` and empty values map to the zero address

    Raises:
        ValueError: If the value cannot be interpreted as an address
    """
    if address is None or address == "" or address == b"":
        return ZERO_ADDRESS
    if isinstance(address, int):
        return word_to_address(address)
    if isinstance(address, (bytes, bytearray)):
        if len(address) != ADDRESS_LENGTH:
            raise ValueError(f"Address must be {ADDRESS_LENGTH} bytes, got {len(address)}")
        return "0x" + bytes(address).hex()
    try:
        return to_normalized_address(address)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid address: {address!r}") from exc


def word_to_address(word: int) -> str:
    """Take the low 20 bytes of a stack word as an address."""
    if word < 0 or word > UINT256_MAX:
        raise ValueError(f"Word out of uint256 range: {word}")
    return "0x" + (word & _ADDRESS_MASK).to_bytes(ADDRESS_LENGTH, "big").hex()


def address_to_word(address: str) -> int:
    """Left-padded 256-bit word of an address."""
    return int(normalize_address(address), 16)


def is_zero_address(address: str | None) -> bool:
    return address is None or normalize_address(address) == ZERO_ADDRESS


def is_precompile(address: str) -> bool:
    """Known precompiled contracts: 0x01-0x11 and the P-256 verifier at 0x100."""
    value = address_to_word(address)
    return value in PRECOMPILE_RANGE or value == P256_VERIFY_PRECOMPILE


def checksum(address: str) -> str:
    """EIP-55 form, for human-facing output only."""
    return to_checksum_address(normalize_address(address))


def address_prefix(data: bytes) -> str:
    """
    First 20 bytes of packed ``address ++ payload`` data.

    Used for initCode (factory) and paymasterAndData (paymaster). Data of 20
    bytes or fewer carries no entity and yields the zero address.
    """
    if len(data) <= ADDRESS_LENGTH:
        return ZERO_ADDRESS
    return "0x" + data[:ADDRESS_LENGTH].hex()


def compute_create2_address(deployer: str, salt: int, init_code: bytes) -> str:
    """Address produced by CREATE2: keccak(0xff ++ deployer ++ salt ++ keccak(init_code))[12:]."""
    preimage = (
        b"\xff"
        + bytes.fromhex(normalize_address(deployer)[2:])
        + salt.to_bytes(32, "big")
        + keccak(init_code)
    )
    return "0x" + keccak(preimage)[12:].hex()


def hex_to_bytes(value: str | bytes | None) -> bytes:
    """Decode 0x-prefixed hex (or pass bytes through)."""
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = value[2:] if value.lower().startswith("0x") else value
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise ValueError(f"Invalid hex data: {value!r}") from exc


def parse_word(value: int | str) -> int:
    """Parse an int or a hex/decimal string into a uint256."""
    if isinstance(value, bool):
        raise ValueError("Boolean is not a valid word")
    if isinstance(value, int):
        word = value
    else:
        text = value.strip()
        word = int(text, 16) if text.lower().startswith("0x") else int(text)
    if word < 0 or word > UINT256_MAX:
        raise ValueError(f"Word out of uint256 range: {value!r}")
    return word
