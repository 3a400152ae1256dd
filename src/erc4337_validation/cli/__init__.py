"""Command line interface for the ERC-4337 validation engine."""
