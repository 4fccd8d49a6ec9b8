"""Sponsored cross-chain token transfers through ERC-4337 smart accounts."""

__version__ = "0.1.0"
