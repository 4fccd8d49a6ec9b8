"""
Chain account resolvers.

Handles are resolved once per chain and cached; the cache is read without
locking and only creation is serialized per chain.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from ...config import Settings, settings as default_settings
from ...providers.bundler import BundlerConfig, BundlerProvider
from ...providers.paymaster import PaymasterConfig, PaymasterProvider
from ..errors import AccountResolutionError, ChainMismatchError
from .models import ChainAccountResolver, SignerCapability, SmartAccountHandle

logger = logging.getLogger(__name__)

HandleFactory = Callable[[int], Awaitable[SmartAccountHandle]]


class CachedAccountResolver(ChainAccountResolver):
    """Resolver that memoizes handles produced by an async factory."""

    def __init__(self, factory: HandleFactory) -> None:
        self._factory = factory
        self._handles: Dict[int, SmartAccountHandle] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    def cached(self, chain_id: int) -> Optional[SmartAccountHandle]:
        return self._handles.get(chain_id)

    async def resolve(self, chain_id: int) -> SmartAccountHandle:
        handle = self._handles.get(chain_id)
        if handle is not None:
            return handle

        lock = self._locks.setdefault(chain_id, asyncio.Lock())
        async with lock:
            handle = self._handles.get(chain_id)
            if handle is not None:
                return handle

            try:
                handle = await self._factory(chain_id)
            except AccountResolutionError:
                raise
            except Exception as exc:
                raise AccountResolutionError(chain_id, str(exc)) from exc

            if handle.chain_id != chain_id:
                raise ChainMismatchError(chain_id, handle.chain_id, what="account handle")

            self._handles[chain_id] = handle
            logger.info(f"Resolved smart account {handle.address} on chain {chain_id}")
            return handle

    def invalidate(self, chain_id: Optional[int] = None) -> None:
        """Drop cached handles (all of them when chain_id is None)."""
        if chain_id is None:
            self._handles.clear()
        else:
            self._handles.pop(chain_id, None)

    async def close(self) -> None:
        for handle in list(self._handles.values()):
            await handle.bundler.close()
            await handle.paymaster.close()


def settings_handle_factory(
    signer: SignerCapability,
    config: Optional[Settings] = None,
) -> HandleFactory:
    """
    Factory building handles from configured chain endpoints.

    Account provisioning happens elsewhere; the account address comes from
    configuration.
    """
    config = config or default_settings

    async def factory(chain_id: int) -> SmartAccountHandle:
        endpoints = config.endpoints_for(chain_id)
        if endpoints is None:
            raise AccountResolutionError(chain_id, "chain is not configured")
        if not endpoints.bundler_url or not endpoints.paymaster_url:
            raise AccountResolutionError(chain_id, "bundler or paymaster URL missing")

        address = config.account_address_for(chain_id)
        if not address:
            raise AccountResolutionError(chain_id, "no smart account address configured")

        return SmartAccountHandle(
            chain_id=chain_id,
            address=address,
            signer=signer,
            paymaster=PaymasterProvider(
                PaymasterConfig(
                    rpc_url=endpoints.paymaster_url,
                    chain_id=chain_id,
                    rpc_method=config.erc4337_paymaster_rpc_method,
                )
            ),
            bundler=BundlerProvider(BundlerConfig(rpc_url=endpoints.bundler_url, chain_id=chain_id)),
            entry_point=config.erc4337_entrypoint_address,
        )

    return factory


def build_account_resolver(
    signer: SignerCapability,
    config: Optional[Settings] = None,
) -> CachedAccountResolver:
    return CachedAccountResolver(settings_handle_factory(signer, config))
