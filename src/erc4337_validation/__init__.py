"""
ERC-4337 Validation - Bundler rule enforcement for UserOperation traces

Decides whether the recorded validation trace of a UserOperation obeys the
storage, opcode and call restrictions a neutral bundler enforces before
including the operation in a bundle.

Main Components:
- Entity resolution: account, factory, paymaster and their stake
- Trace filtering: attribute instruction steps to entities
- Mapping slot resolution: recover mapping keys from raw storage slots
- Storage and opcode rules: classify every access, call and instruction

For the rule catalogue run: erc4337-validate rules
"""

__version__ = "0.1.0"
__author__ = "ERC-4337 Validation Team"

__all__ = []
