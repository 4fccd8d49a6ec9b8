"""
Builds unsigned user operations for a chain's smart account.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..accounts.models import ChainAccountResolver
from .nonce_manager import NonceManager, get_nonce_manager
from .userop import UnsignedOperation
from .userop_builder import build_execute_call_data

logger = logging.getLogger(__name__)


class OperationBuilder:
    """
    Turns (chain, contract, encoded call) into an UnsignedOperation.

    The inner call is wrapped in the smart account's execute call. Gas and
    sponsorship fields are left empty for the sponsor to fill in.
    """

    def __init__(
        self,
        resolver: ChainAccountResolver,
        nonce_manager: Optional[NonceManager] = None,
    ) -> None:
        self.resolver = resolver
        self.nonce_manager = nonce_manager or get_nonce_manager()

    async def build(
        self,
        target_chain: int,
        contract_address: str,
        encoded_call: str,
        *,
        nonce: Optional[int] = None,
        value_wei: int = 0,
    ) -> UnsignedOperation:
        """
        Build an operation calling `contract_address` from the chain's account.

        Args:
            target_chain: Chain the operation executes on
            contract_address: Contract the smart account calls
            encoded_call: ABI-encoded call (hex)
            nonce: Pre-reserved nonce; reserved from the NonceManager when omitted
            value_wei: Native value forwarded with the call

        Raises:
            ValueError: If the calldata is empty
            AccountResolutionError: If no smart account exists for the chain
        """
        if not encoded_call or encoded_call in ("0x", "0X"):
            raise ValueError("Operation calldata must not be empty")

        handle = await self.resolver.resolve(target_chain)

        if nonce is None:
            nonce = await self.nonce_manager.get_next_nonce(
                address=handle.address,
                chain_id=target_chain,
                fetch=handle.get_nonce,
            )

        op = UnsignedOperation(
            sender=handle.address,
            target=contract_address,
            call_data=build_execute_call_data(contract_address, value_wei, encoded_call),
            chain_id=target_chain,
            nonce=nonce,
        )
        logger.debug(f"Built operation on chain {target_chain} to {contract_address} (nonce {nonce})")
        return op

    async def reserve_nonce(self, target_chain: int) -> int:
        """Reserve the next nonce for the chain's account."""
        handle = await self.resolver.resolve(target_chain)
        return await self.nonce_manager.get_next_nonce(
            address=handle.address,
            chain_id=target_chain,
            fetch=handle.get_nonce,
        )

    async def release_nonce(self, target_chain: int, nonce: int) -> None:
        handle = self.resolver.cached(target_chain) or await self.resolver.resolve(target_chain)
        await self.nonce_manager.release_nonce(handle.address, target_chain, nonce)

    async def confirm_nonce(self, target_chain: int, nonce: int) -> None:
        handle = self.resolver.cached(target_chain) or await self.resolver.resolve(target_chain)
        await self.nonce_manager.confirm_nonce(handle.address, target_chain, nonce)
