"""
Shared fixtures for the ERC-4337 validation tests
"""

import pytest

from erc4337_validation.core.config import ValidationConfig
from erc4337_validation.core.static_providers import StaticChainState, StaticStakeRegistry
from erc4337_validation.core.validator import UserOperationValidator
from tests.erc4337_tests.trace_builder import (
    ACCOUNT,
    ENTRY_POINT,
    FACTORY,
    ONE_ETHER,
    OTHER,
    PAYMASTER,
    SENDER_CREATOR,
    STAKE_DELAY,
    TOKEN,
    TraceBuilder,
)


@pytest.fixture
def trace():
    """Fresh trace builder rooted at the entry point"""
    return TraceBuilder()


@pytest.fixture
def stake_registry():
    """No entity is staked until a test says so"""
    return StaticStakeRegistry()


@pytest.fixture
def staked_registry():
    """Factory and paymaster both staked"""
    registry = StaticStakeRegistry()
    registry.set_deposit(FACTORY, ONE_ETHER, STAKE_DELAY)
    registry.set_deposit(PAYMASTER, ONE_ETHER, STAKE_DELAY)
    return registry


@pytest.fixture
def chain_state():
    """Every well-known contract is deployed except the account"""
    state = StaticChainState()
    for address in (ENTRY_POINT, FACTORY, PAYMASTER, TOKEN, OTHER, SENDER_CREATOR):
        state.set_code(address, 1024)
    return state


@pytest.fixture
def deployed_chain_state(chain_state):
    chain_state.set_code(ACCOUNT, 512)
    return chain_state


@pytest.fixture
def config():
    return ValidationConfig(metrics_enabled=False)


@pytest.fixture
def make_validator(config):
    """Build a validator over the given collaborators"""

    def _make(stake_registry, chain_state, **kwargs):
        kwargs.setdefault("config", config)
        return UserOperationValidator(stake_registry=stake_registry, chain_state=chain_state, **kwargs)

    return _make
