"""
Chain account resolution.

Usage:
    from bridgeflow.core.accounts import build_account_resolver, LocalKeySigner

    resolver = build_account_resolver(LocalKeySigner(key))
    handle = await resolver.resolve(43113)
"""

from .models import ChainAccountResolver, SignerCapability, SmartAccountHandle
from .resolver import CachedAccountResolver, build_account_resolver, settings_handle_factory
from .local_signer import LocalKeySigner

__all__ = [
    "ChainAccountResolver",
    "SignerCapability",
    "SmartAccountHandle",
    "CachedAccountResolver",
    "build_account_resolver",
    "settings_handle_factory",
    "LocalKeySigner",
]
