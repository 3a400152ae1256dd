"""
Tests for the erc4337-validate command line interface.
"""

import json

import yaml
from click.testing import CliRunner

from erc4337_validation.cli.validate_commands import (
    EXIT_ACCEPTED,
    EXIT_MALFORMED,
    EXIT_VIOLATION,
    cli,
)
from tests.erc4337_tests.trace_builder import ACCOUNT, ENTRY_POINT, TOKEN, mapping_slot, word


def _steps(*entity_steps):
    return [
        {"address": ENTRY_POINT, "op": "CALL", "depth": 1, "stack": [0, 0, 0, 0, 0, ACCOUNT, 1000]},
        *entity_steps,
    ]


def _write_fixture(path, steps):
    data = {
        "entryPoint": ENTRY_POINT,
        "userOp": {"sender": ACCOUNT},
        "code": {ACCOUNT: 100, TOKEN: 100},
        "labels": {TOKEN: "USDC"},
        "steps": steps,
    }
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def _write_state_access_fixture(path, mappings=None):
    data = {
        "entryPoint": ENTRY_POINT,
        "userOp": {"sender": ACCOUNT},
        "code": {ACCOUNT: 100, TOKEN: 100},
        "stateAccesses": [
            {"kind": "CALL", "account": ACCOUNT, "accessor": ENTRY_POINT, "depth": 1},
            {
                "kind": "CALL",
                "account": TOKEN,
                "accessor": ACCOUNT,
                "depth": 2,
                "data": "0xa9059cbb",
                "storageAccesses": [{
                    "account": TOKEN,
                    "slot": hex(mapping_slot(word(ACCOUNT), 3)),
                    "newValue": "0x7",
                    "isWrite": True,
                }],
            },
        ],
    }
    if mappings is not None:
        data["mappings"] = mappings
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


class TestCheckCommand:
    """Verdict output and exit codes."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_accepted(self, tmp_path):
        fixture = _write_fixture(tmp_path / "ok.json", _steps(
            {"address": ACCOUNT, "op": "SLOAD", "depth": 2, "stack": [1]},
        ))
        result = self.runner.invoke(cli, ["--log-level", "CRITICAL", "check", fixture])

        assert result.exit_code == EXIT_ACCEPTED
        assert "UserOperation accepted" in result.output

    def test_accepted_json(self, tmp_path):
        fixture = _write_fixture(tmp_path / "ok.json", _steps(
            {"address": ACCOUNT, "op": "SLOAD", "depth": 2, "stack": [1]},
        ))
        result = self.runner.invoke(cli, ["--json-output", "--log-level", "CRITICAL", "check", fixture])

        assert result.exit_code == EXIT_ACCEPTED
        payload = json.loads(result.output)
        assert payload["valid"] is True
        assert payload["step_counts"]["account"] == 1

    def test_violation(self, tmp_path):
        fixture = _write_fixture(tmp_path / "bad.json", _steps(
            {"address": ACCOUNT, "op": "TIMESTAMP", "depth": 2},
        ))
        result = self.runner.invoke(cli, ["--log-level", "CRITICAL", "check", fixture])

        assert result.exit_code == EXIT_VIOLATION
        assert "OP-011" in result.output

    def test_storage_violation_json(self, tmp_path):
        fixture = _write_fixture(tmp_path / "bad.json", _steps(
            {"address": TOKEN, "op": "SSTORE", "depth": 3, "stack": [5, 9]},
        ))
        result = self.runner.invoke(cli, ["--json-output", "--log-level", "CRITICAL", "check", fixture])

        assert result.exit_code == EXIT_VIOLATION
        violation = json.loads(result.output)["violation"]
        assert violation["rule"] == "STO-033"
        assert violation["details"]["label"] == "USDC"
        assert violation["details"]["slot"] == hex(9)

    def test_malformed_fixture(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text(yaml.safe_dump({"entryPoint": ENTRY_POINT}), encoding="utf-8")
        result = self.runner.invoke(cli, ["--log-level", "CRITICAL", "check", str(path)])

        assert result.exit_code == EXIT_MALFORMED

    def test_malformed_trace(self, tmp_path):
        fixture = _write_fixture(tmp_path / "shallow.json", _steps(
            {"address": ACCOUNT, "op": "CALL", "depth": 2, "stack": [1]},
        ))
        result = self.runner.invoke(cli, ["--json-output", "--log-level", "CRITICAL", "check", fixture])

        assert result.exit_code == EXIT_MALFORMED
        assert json.loads(result.output)["violation"]["error"] == "MalformedTraceError"

    def test_mapping_search_depth_override(self, tmp_path):
        fixture = _write_fixture(tmp_path / "ok.json", _steps(
            {"address": ACCOUNT, "op": "SLOAD", "depth": 2, "stack": [1]},
        ))
        result = self.runner.invoke(
            cli, ["--log-level", "CRITICAL", "check", "--mapping-search-depth", "4", fixture]
        )
        assert result.exit_code == EXIT_ACCEPTED

    def test_state_access_fixture_with_mappings(self, tmp_path):
        fixture = _write_state_access_fixture(
            tmp_path / "balances.yaml", mappings={TOKEN: [{"key": ACCOUNT, "parentSlot": 3}]}
        )
        result = self.runner.invoke(cli, ["--json-output", "--log-level", "CRITICAL", "check", fixture])

        assert result.exit_code == EXIT_ACCEPTED
        assert json.loads(result.output)["valid"] is True

    def test_state_access_fixture_without_mappings(self, tmp_path):
        fixture = _write_state_access_fixture(tmp_path / "balances.yaml")
        result = self.runner.invoke(cli, ["--json-output", "--log-level", "CRITICAL", "check", fixture])

        assert result.exit_code == EXIT_VIOLATION
        assert json.loads(result.output)["violation"]["rule"] == "STO-033"

    def test_missing_file(self, tmp_path):
        result = self.runner.invoke(cli, ["check", str(tmp_path / "absent.json")])
        assert result.exit_code != EXIT_ACCEPTED


class TestRulesCommand:
    """Rule catalogue listing."""

    def test_rules_table(self):
        result = CliRunner().invoke(cli, ["--log-level", "CRITICAL", "rules"])
        assert result.exit_code == 0
        assert "STO-021" in result.output
        assert "OP-080" in result.output

    def test_rules_json(self):
        result = CliRunner().invoke(cli, ["--json-output", "--log-level", "CRITICAL", "rules"])
        codes = [rule["code"] for rule in json.loads(result.output)]
        assert codes[0] == "STO-010"
        assert len(codes) == 13
