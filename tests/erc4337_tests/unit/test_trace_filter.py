"""
Tests for attributing trace steps to entities.
"""

from erc4337_validation.core.constants import Opcode
from erc4337_validation.core.trace_filter import filter_entity_traces, find_start_depth
from erc4337_validation.core.user_operation import Entities
from tests.erc4337_tests.trace_builder import (
    ACCOUNT,
    ENTRY_POINT,
    FACTORY,
    OTHER,
    PAYMASTER,
    SENDER_CREATOR,
    TOKEN,
    TraceBuilder,
)


class TestTraceFilter:
    """Per-entity sub-traces."""

    def setup_method(self):
        self.entities = Entities(account=ACCOUNT, factory=FACTORY, paymaster=PAYMASTER)

    def test_start_depth_defaults_to_zero(self):
        builder = TraceBuilder()
        builder.current = ACCOUNT
        builder.sload(1)
        assert find_start_depth(builder.build(), ENTRY_POINT) == 0

    def test_orchestrator_frame_is_ignored(self):
        builder = TraceBuilder()
        builder.orchestrator(Opcode.SSTORE, (1, 2))
        builder.enter(ACCOUNT).sload(1)
        builder.orchestrator(Opcode.SLOAD, (5,))

        traces = filter_entity_traces(builder.build(), self.entities, ENTRY_POINT)

        assert traces.start_depth == 1
        assert len(traces.account) == 1
        assert traces.account[0].address == ACCOUNT
        assert traces.paymaster == ()
        assert traces.factory == ()

    def test_nested_calls_attributed_to_caller(self):
        builder = TraceBuilder()
        builder.enter(ACCOUNT).call(TOKEN).sload(3, address=TOKEN, depth=3)
        builder.enter(PAYMASTER, opcode=Opcode.STATICCALL).sload(4).call(OTHER)
        builder.step(Opcode.SLOAD, (9,), address=OTHER, depth=3)

        traces = filter_entity_traces(builder.build(), self.entities, ENTRY_POINT)

        assert [step.address for step in traces.account] == [ACCOUNT, TOKEN]
        assert [step.address for step in traces.paymaster] == [PAYMASTER, PAYMASTER, OTHER]
        assert traces.step_count == 5

    def test_order_preserved(self):
        builder = TraceBuilder()
        builder.enter(ACCOUNT)
        for slot in range(5):
            builder.sload(slot)

        traces = filter_entity_traces(builder.build(), self.entities, ENTRY_POINT)
        assert [step.stack_item(0) for step in traces.account] == [0, 1, 2, 3, 4]

    def test_calls_to_other_targets_dropped(self):
        builder = TraceBuilder()
        builder.enter(OTHER).sload(1)
        builder.enter(ACCOUNT).sload(2)

        traces = filter_entity_traces(builder.build(), self.entities, ENTRY_POINT)
        assert traces.step_count == 1

    def test_factory_through_sender_creator(self):
        builder = TraceBuilder()
        builder.enter(SENDER_CREATOR).call(FACTORY)
        builder.step(Opcode.SSTORE, (1, 1), address=FACTORY, depth=3)

        without_creator = filter_entity_traces(builder.build(), self.entities, ENTRY_POINT)
        with_creator = filter_entity_traces(builder.build(), self.entities, ENTRY_POINT, SENDER_CREATOR)

        assert without_creator.factory == ()
        assert len(with_creator.factory) == 2

    def test_factory_called_directly(self):
        builder = TraceBuilder()
        builder.enter(FACTORY).sload(0)

        traces = filter_entity_traces(builder.build(), self.entities, ENTRY_POINT)
        assert len(traces.factory) == 1
        assert [name for name, _ in traces.items()] == ["account", "factory", "paymaster"]

    def test_no_paymaster_never_matches_zero_target(self):
        entities = Entities(account=ACCOUNT)
        builder = TraceBuilder()
        builder.enter("0x" + "00" * 20).sload(1, address=OTHER)

        traces = filter_entity_traces(builder.build(), entities, ENTRY_POINT)
        assert traces.step_count == 0
