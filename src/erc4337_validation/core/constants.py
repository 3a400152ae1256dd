"""
ERC-4337 Validation Constants

EVM opcodes, precompile addresses, entry point selectors and the opcode
groups the validation rules are expressed in.
"""

from __future__ import annotations

from enum import IntEnum


class Opcode(IntEnum):
    """EVM opcodes referenced by the validation rules."""

    KECCAK256 = 0x20
    BALANCE = 0x31
    ORIGIN = 0x32
    GASPRICE = 0x3A
    EXTCODESIZE = 0x3B
    EXTCODECOPY = 0x3C
    EXTCODEHASH = 0x3F
    BLOCKHASH = 0x40
    COINBASE = 0x41
    TIMESTAMP = 0x42
    NUMBER = 0x43
    PREVRANDAO = 0x44  # DIFFICULTY before the merge
    GASLIMIT = 0x45
    SELFBALANCE = 0x47
    BASEFEE = 0x48
    SLOAD = 0x54
    SSTORE = 0x55
    GAS = 0x5A
    TLOAD = 0x5C
    TSTORE = 0x5D
    CREATE = 0xF0
    CALL = 0xF1
    CALLCODE = 0xF2
    DELEGATECALL = 0xF4
    CREATE2 = 0xF5
    STATICCALL = 0xFA
    INVALID = 0xFE
    SELFDESTRUCT = 0xFF


def opcode_name(opcode: int) -> str:
    """Mnemonic for an opcode byte, or its hex form when unknown."""
    try:
        return Opcode(opcode).name
    except ValueError:
        return f"0x{opcode:02x}"


# Accepts "SLOAD", "sload", "DIFFICULTY", "0x54" or 84
_OPCODE_ALIASES = {"DIFFICULTY": Opcode.PREVRANDAO, "SHA3": Opcode.KECCAK256}


def parse_opcode(value: int | str) -> int:
    if isinstance(value, int):
        if not 0 <= value <= 0xFF:
            raise ValueError(f"Opcode out of range: {value}")
        return value
    text = value.strip()
    if text.lower().startswith("0x"):
        return parse_opcode(int(text, 16))
    upper = text.upper()
    if upper in _OPCODE_ALIASES:
        return int(_OPCODE_ALIASES[upper])
    try:
        return int(Opcode[upper])
    except KeyError:
        raise ValueError(f"Unknown opcode mnemonic: {value}") from None


# ==================== Opcode Groups ====================

CALL_OPCODES = frozenset({
    Opcode.CALL,
    Opcode.DELEGATECALL,
    Opcode.CALLCODE,
    Opcode.STATICCALL,
})

# Opcodes whose stack carries a value operand (third item from the top)
VALUE_CALL_OPCODES = frozenset({Opcode.CALL, Opcode.CALLCODE})

EXTCODE_OPCODES = frozenset({
    Opcode.EXTCODESIZE,
    Opcode.EXTCODEHASH,
    Opcode.EXTCODECOPY,
})

STORAGE_READ_OPCODES = frozenset({Opcode.SLOAD, Opcode.TLOAD})
STORAGE_WRITE_OPCODES = frozenset({Opcode.SSTORE, Opcode.TSTORE})
STORAGE_OPCODES = STORAGE_READ_OPCODES | STORAGE_WRITE_OPCODES
TRANSIENT_STORAGE_OPCODES = frozenset({Opcode.TLOAD, Opcode.TSTORE})

# [OP-011]
BANNED_OPCODES = frozenset({
    Opcode.GASPRICE,
    Opcode.GASLIMIT,
    Opcode.PREVRANDAO,
    Opcode.TIMESTAMP,
    Opcode.BASEFEE,
    Opcode.BLOCKHASH,
    Opcode.NUMBER,
    Opcode.SELFBALANCE,
    Opcode.BALANCE,
    Opcode.ORIGIN,
    Opcode.GAS,
    Opcode.CREATE,
    Opcode.COINBASE,
    Opcode.INVALID,
    Opcode.SELFDESTRUCT,
})

# [OP-080] allowed when executed by a staked entity
STAKED_ONLY_OPCODES = frozenset({Opcode.BALANCE, Opcode.SELFBALANCE})


# ==================== Addresses & Selectors ====================

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# ecrecover .. BLS12-381 map_fp2_to_g2
PRECOMPILE_RANGE = range(0x01, 0x11 + 1)
# RIP-7212 secp256r1 signature verification
P256_VERIFY_PRECOMPILE = 0x100

# IEntryPoint.depositTo(address)
DEPOSIT_TO_SELECTOR = bytes.fromhex("b760faf9")

ADDRESS_LENGTH = 20
WORD_SIZE = 32
UINT256_MAX = 2**256 - 1

# 0.5 native token units, one day
DEFAULT_MIN_STAKE_VALUE = 5 * 10**17
DEFAULT_MIN_UNSTAKE_DELAY = 86_400
DEFAULT_MAPPING_SEARCH_DEPTH = 128
