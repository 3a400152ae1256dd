"""
UserOperation and Entity Resolution (ERC-4337).

A UserOperation is what an account owner signs instead of a transaction.
Validating it runs code of up to four participants ("entities"):
- Account: the sender, a smart contract wallet
- Factory: deploys the account on its first operation (from initCode)
- Paymaster: sponsors gas fees (from paymasterAndData)
- Aggregator: reserved, signature aggregation is not supported

Factory, paymaster and aggregator may post stake with the entry point; a
staked entity is trusted with relaxed storage and opcode rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from .address_utils import (
    address_prefix,
    hex_to_bytes,
    is_zero_address,
    normalize_address,
    parse_word,
)
from .config import DEFAULT_CONFIG, ValidationConfig
from .constants import ZERO_ADDRESS
from .interfaces import DepositInfo, StakeRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserOperation:
    """
    ERC-4337 UserOperation struct.

    Only ``sender``, ``init_code`` and ``paymaster_and_data`` matter to the
    validation rules; the remaining fields are carried for completeness.
    """

    sender: str  # Smart account address
    nonce: int = 0
    init_code: bytes = b""  # factory address + factory calldata
    call_data: bytes = b""
    call_gas_limit: int = 0
    verification_gas_limit: int = 0
    pre_verification_gas: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    paymaster_and_data: bytes = b""  # paymaster address + paymaster data
    signature: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "sender", normalize_address(self.sender))

    @property
    def has_init_code(self) -> bool:
        return len(self.init_code) > 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserOperation":
        """Build from the JSON-RPC shape (camelCase, hex strings)."""

        def field_value(snake: str, camel: str, default: Any = None) -> Any:
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        def word(snake: str, camel: str) -> int:
            value = field_value(snake, camel, 0)
            return parse_word(value) if value is not None else 0

        def packed(snake: str, camel: str, address_key: str, data_key: str) -> bytes:
            # v0.7 RPC ops split initCode / paymasterAndData into address + data
            value = field_value(snake, camel)
            if value is not None:
                return hex_to_bytes(value)
            address = data.get(address_key)
            if not address or is_zero_address(normalize_address(address)):
                return b""
            return bytes.fromhex(normalize_address(address)[2:]) + hex_to_bytes(data.get(data_key))

        sender = field_value("sender", "sender")
        if not sender:
            raise ValueError("UserOperation requires a sender")

        return cls(
            sender=sender,
            nonce=word("nonce", "nonce"),
            init_code=packed("init_code", "initCode", "factory", "factoryData"),
            call_data=hex_to_bytes(field_value("call_data", "callData")),
            call_gas_limit=word("call_gas_limit", "callGasLimit"),
            verification_gas_limit=word("verification_gas_limit", "verificationGasLimit"),
            pre_verification_gas=word("pre_verification_gas", "preVerificationGas"),
            max_fee_per_gas=word("max_fee_per_gas", "maxFeePerGas"),
            max_priority_fee_per_gas=word("max_priority_fee_per_gas", "maxPriorityFeePerGas"),
            paymaster_and_data=packed(
                "paymaster_and_data", "paymasterAndData", "paymaster", "paymasterData"
            ),
            signature=hex_to_bytes(field_value("signature", "signature")),
        )


@dataclass(frozen=True)
class Entities:
    """Participants whose code runs during validation, with stake status."""

    account: str
    factory: str = ZERO_ADDRESS
    paymaster: str = ZERO_ADDRESS
    aggregator: str = ZERO_ADDRESS
    is_factory_staked: bool = False
    is_paymaster_staked: bool = False
    is_aggregator_staked: bool = False

    def __post_init__(self) -> None:
        for name in ("account", "factory", "paymaster", "aggregator"):
            object.__setattr__(self, name, normalize_address(getattr(self, name)))

    @property
    def has_factory(self) -> bool:
        return not is_zero_address(self.factory)

    @property
    def has_paymaster(self) -> bool:
        return not is_zero_address(self.paymaster)

    def addresses(self) -> frozenset[str]:
        """Non-zero entity addresses."""
        return frozenset(
            address
            for address in (self.account, self.factory, self.paymaster, self.aggregator)
            if not is_zero_address(address)
        )

    def is_entity(self, address: str) -> bool:
        return address != ZERO_ADDRESS and address in self.addresses()

    def is_staked(self, address: str) -> bool:
        """Whether ``address`` is a staked factory, paymaster or aggregator."""
        if address == ZERO_ADDRESS:
            return False
        return (
            (address == self.factory and self.is_factory_staked)
            or (address == self.paymaster and self.is_paymaster_staked)
            or (address == self.aggregator and self.is_aggregator_staked)
        )

    @property
    def any_staked(self) -> bool:
        """Factory or paymaster has stake (unlocks STO-031..033)."""
        return (self.has_factory and self.is_factory_staked) or (
            self.has_paymaster and self.is_paymaster_staked
        )

    def title_of(self, address: str) -> str:
        if address == ZERO_ADDRESS:
            return "unknown"
        if address == self.account:
            return "account"
        if address == self.factory:
            return "factory"
        if address == self.paymaster:
            return "paymaster"
        if address == self.aggregator:
            return "aggregator"
        return "unknown"


def is_staked(info: DepositInfo, config: ValidationConfig = DEFAULT_CONFIG) -> bool:
    """Stake and unstake delay both meet the configured minimums."""
    return (
        info.stake >= config.min_stake_value
        and info.unstake_delay_sec >= config.min_unstake_delay
    )


def resolve_entities(
    user_op: UserOperation,
    entry_point: str,
    stake_registry: StakeRegistry,
    config: ValidationConfig = DEFAULT_CONFIG,
) -> Entities:
    """
    Derive the participants of a UserOperation and their stake status.

    Args:
        user_op: Operation under validation
        entry_point: Entry point the stake registry lookups are scoped to
        stake_registry: Source of deposit info
        config: Stake thresholds

    Returns:
        Entities; absent factory/paymaster are the zero address and unstaked
    """
    entry_point = normalize_address(entry_point)
    factory = address_prefix(user_op.init_code)
    paymaster = address_prefix(user_op.paymaster_and_data)

    def staked(address: str) -> bool:
        if is_zero_address(address):
            return False
        return is_staked(stake_registry.deposit_info(entry_point, address), config)

    entities = Entities(
        account=user_op.sender,
        factory=factory,
        paymaster=paymaster,
        is_factory_staked=staked(factory),
        is_paymaster_staked=staked(paymaster),
    )

    present = [a for a in (entities.account, factory, paymaster) if not is_zero_address(a)]
    if len(set(present)) != len(present):
        logger.warning(
            "UserOperation entities share an address: account=%s factory=%s paymaster=%s",
            entities.account,
            factory,
            paymaster,
            extra={"event": "entities.address_collision"},
        )

    logger.debug(
        "Resolved entities",
        extra={
            "event": "entities.resolved",
            "account": entities.account,
            "factory": factory,
            "factory_staked": entities.is_factory_staked,
            "paymaster": paymaster,
            "paymaster_staked": entities.is_paymaster_staked,
        },
    )
    return entities
