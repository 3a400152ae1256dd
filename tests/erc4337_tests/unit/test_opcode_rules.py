"""
Tests for opcode, call and CREATE2 rules.
"""

import pytest

from erc4337_validation.core.constants import BANNED_OPCODES, DEPOSIT_TO_SELECTOR, Opcode
from erc4337_validation.core.opcode_rules import OpcodePolicyValidator
from erc4337_validation.core.user_operation import Entities
from erc4337_validation.core.validation_exceptions import (
    InvalidOpcodeError,
    PolicyViolationError,
    RuleCode,
)
from tests.erc4337_tests.trace_builder import (
    ACCOUNT,
    EMPTY,
    ENTRY_POINT,
    FACTORY,
    PAYMASTER,
    TOKEN,
    TraceBuilder,
    word,
)


class TestOpcodeRules:
    """Banned instructions and their exceptions."""

    def setup_method(self):
        self.entities = Entities(
            account=ACCOUNT,
            factory=FACTORY,
            paymaster=PAYMASTER,
            is_paymaster_staked=True,
        )

    def _validator(self, chain_state, has_init_code=False):
        return OpcodePolicyValidator(self.entities, ENTRY_POINT, has_init_code, chain_state)

    @pytest.mark.parametrize(
        "opcode",
        sorted(BANNED_OPCODES - {Opcode.GAS, Opcode.BALANCE, Opcode.SELFBALANCE}),
    )
    def test_banned_opcode_rejected(self, chain_state, opcode):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).op(opcode)

        with pytest.raises(InvalidOpcodeError) as exc_info:
            self._validator(chain_state).validate("account", builder.build())
        assert exc_info.value.rule is RuleCode.OP_011
        assert exc_info.value.contract == ACCOUNT

    def test_gas_before_call_allowed(self, chain_state):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).op(Opcode.GAS).call(TOKEN)
        assert self._validator(chain_state).validate("account", builder.build()) == 1

    def test_gas_before_other_instruction_rejected(self, chain_state):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).op(Opcode.GAS).sload(1)

        with pytest.raises(InvalidOpcodeError) as exc_info:
            self._validator(chain_state).validate("account", builder.build())
        assert exc_info.value.rule is RuleCode.OP_012
        assert exc_info.value.opcode == "GAS"

    def test_gas_as_last_step_rejected(self, chain_state):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).op(Opcode.GAS)
        with pytest.raises(InvalidOpcodeError):
            self._validator(chain_state).validate("account", builder.build())

    @pytest.mark.parametrize("opcode", [Opcode.BALANCE, Opcode.SELFBALANCE])
    def test_balance_from_staked_entity(self, chain_state, opcode):
        builder = TraceBuilder()
        builder.enter(PAYMASTER).op(opcode, stack=(word(TOKEN),))
        assert self._validator(chain_state).validate("paymaster", builder.build()) == 0

    @pytest.mark.parametrize("opcode", [Opcode.BALANCE, Opcode.SELFBALANCE])
    def test_balance_from_unstaked_address(self, chain_state, opcode):
        builder = TraceBuilder()
        builder.enter(PAYMASTER).call(TOKEN).op(opcode, address=TOKEN, depth=3)

        with pytest.raises(InvalidOpcodeError) as exc_info:
            self._validator(chain_state).validate("paymaster", builder.build())
        assert exc_info.value.rule is RuleCode.OP_080
        assert exc_info.value.contract == TOKEN

    def test_out_of_gas_rejected(self, chain_state):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).op(Opcode.SLOAD, stack=(1,), oog=True)

        with pytest.raises(PolicyViolationError) as exc_info:
            self._validator(chain_state).validate("account", builder.build())
        assert exc_info.value.rule is RuleCode.OP_020


class TestCallRules:
    """OP-041, OP-052 and OP-061."""

    def setup_method(self):
        self.entities = Entities(account=ACCOUNT, factory=FACTORY, paymaster=PAYMASTER)

    def _validator(self, chain_state):
        return OpcodePolicyValidator(self.entities, ENTRY_POINT, False, chain_state)

    @pytest.mark.parametrize("target", ["0x" + "00" * 19 + "04", "0x" + "00" * 18 + "0100"])
    def test_precompile_call_allowed(self, chain_state, target):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).call(target, data=b"\x12" * 96, opcode=Opcode.STATICCALL)
        assert self._validator(chain_state).validate("account", builder.build()) == 1

    def test_call_without_code_rejected(self, chain_state):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).call(EMPTY)

        with pytest.raises(PolicyViolationError) as exc_info:
            self._validator(chain_state).validate("account", builder.build())
        assert exc_info.value.rule is RuleCode.OP_041
        assert exc_info.value.details["target"] == EMPTY

    def test_unreserved_low_address_without_code_rejected(self, chain_state):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).call("0x" + "00" * 18 + "0200")
        with pytest.raises(PolicyViolationError) as exc_info:
            self._validator(chain_state).validate("account", builder.build())
        assert exc_info.value.rule is RuleCode.OP_041

    def test_call_to_undeployed_account_allowed(self, chain_state):
        builder = TraceBuilder()
        builder.enter(PAYMASTER).call(ACCOUNT, opcode=Opcode.STATICCALL)
        assert self._validator(chain_state).validate("paymaster", builder.build()) == 1

    def test_extcode_without_code_rejected(self, chain_state):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).op(Opcode.EXTCODESIZE, stack=(word(EMPTY),))

        with pytest.raises(PolicyViolationError) as exc_info:
            self._validator(chain_state).validate("account", builder.build())
        assert exc_info.value.rule is RuleCode.OP_041

    def test_extcode_with_code_allowed(self, chain_state):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).op(Opcode.EXTCODEHASH, stack=(word(TOKEN),))
        assert self._validator(chain_state).validate("account", builder.build()) == 0

    def test_value_to_entry_point_from_account(self, chain_state):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).call(ENTRY_POINT, value=10**15)
        assert self._validator(chain_state).validate("account", builder.build()) == 1

    def test_value_to_other_contract_rejected(self, chain_state):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).call(TOKEN, value=1)

        with pytest.raises(PolicyViolationError) as exc_info:
            self._validator(chain_state).validate("account", builder.build())
        assert exc_info.value.rule is RuleCode.OP_061

    def test_value_from_paymaster_rejected(self, chain_state):
        builder = TraceBuilder()
        builder.enter(PAYMASTER).call(ENTRY_POINT, value=1, data=DEPOSIT_TO_SELECTOR)

        with pytest.raises(PolicyViolationError) as exc_info:
            self._validator(chain_state).validate("paymaster", builder.build())
        assert exc_info.value.rule is RuleCode.OP_061

    @pytest.mark.parametrize("caller,entity", [(ACCOUNT, "account"), (FACTORY, "factory")])
    def test_deposit_to_entry_point(self, chain_state, caller, entity):
        builder = TraceBuilder()
        builder.enter(caller).call(ENTRY_POINT, value=5, data=DEPOSIT_TO_SELECTOR + b"\x00" * 32)
        assert self._validator(chain_state).validate(entity, builder.build()) == 1

    def test_other_entry_point_selector_rejected(self, chain_state):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).call(ENTRY_POINT, data=bytes.fromhex("70a08231") + b"\x00" * 32)

        with pytest.raises(PolicyViolationError) as exc_info:
            self._validator(chain_state).validate("account", builder.build())
        assert exc_info.value.rule is RuleCode.OP_052
        assert exc_info.value.details["selector"] == "0x70a08231"

    def test_empty_call_to_entry_point_only_from_account(self, chain_state):
        allowed = TraceBuilder()
        allowed.enter(ACCOUNT).call(ENTRY_POINT)
        assert self._validator(chain_state).validate("account", allowed.build()) == 1

        rejected = TraceBuilder()
        rejected.enter(PAYMASTER).call(ENTRY_POINT)
        with pytest.raises(PolicyViolationError) as exc_info:
            self._validator(chain_state).validate("paymaster", rejected.build())
        assert exc_info.value.rule is RuleCode.OP_052


class TestCreate2Rules:
    """OP-031: one CREATE2 deploying the sender."""

    def setup_method(self):
        self.entities = Entities(account=ACCOUNT, factory=FACTORY)

    def test_single_create2_of_sender(self, chain_state):
        builder = TraceBuilder()
        builder.enter(FACTORY).create2(result=ACCOUNT)
        validator = OpcodePolicyValidator(self.entities, ENTRY_POINT, True, chain_state)
        assert validator.validate("factory", builder.build()) == 1
        assert validator.create2_count == 1

    def test_second_create2_rejected(self, chain_state):
        builder = TraceBuilder()
        builder.enter(FACTORY).create2(result=ACCOUNT).create2(salt=1, result=ACCOUNT)
        validator = OpcodePolicyValidator(self.entities, ENTRY_POINT, True, chain_state)

        with pytest.raises(PolicyViolationError) as exc_info:
            validator.validate("factory", builder.build())
        assert exc_info.value.rule is RuleCode.OP_031
        assert exc_info.value.details["count"] == 2

    def test_create2_count_spans_sub_traces(self, chain_state):
        factory = TraceBuilder()
        factory.enter(FACTORY).create2(result=ACCOUNT)
        account = TraceBuilder()
        account.enter(ACCOUNT).create2(result=ACCOUNT)
        validator = OpcodePolicyValidator(self.entities, ENTRY_POINT, True, chain_state)

        validator.validate("factory", factory.build())
        with pytest.raises(PolicyViolationError):
            validator.validate("account", account.build())

    def test_create2_of_other_address_rejected(self, chain_state):
        builder = TraceBuilder()
        builder.enter(FACTORY).create2(result=TOKEN)
        validator = OpcodePolicyValidator(self.entities, ENTRY_POINT, True, chain_state)

        with pytest.raises(PolicyViolationError) as exc_info:
            validator.validate("factory", builder.build())
        assert exc_info.value.details["created"] == TOKEN

    def test_create2_without_init_code_rejected(self, chain_state):
        builder = TraceBuilder()
        builder.enter(FACTORY).create2(result=ACCOUNT)
        validator = OpcodePolicyValidator(self.entities, ENTRY_POINT, False, chain_state)

        with pytest.raises(PolicyViolationError) as exc_info:
            validator.validate("factory", builder.build())
        assert exc_info.value.rule is RuleCode.OP_031

    def test_plain_create_is_banned(self, chain_state):
        builder = TraceBuilder()
        builder.enter(FACTORY).op(Opcode.CREATE, stack=(0, 0, 0))
        validator = OpcodePolicyValidator(self.entities, ENTRY_POINT, True, chain_state)

        with pytest.raises(InvalidOpcodeError) as exc_info:
            validator.validate("factory", builder.build())
        assert exc_info.value.rule is RuleCode.OP_011
