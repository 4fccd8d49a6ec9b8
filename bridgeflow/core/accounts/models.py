"""
Smart-account handles and the capabilities they carry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ...providers.bundler import BundlerProvider
    from ...providers.paymaster import PaymasterProvider


@runtime_checkable
class SignerCapability(Protocol):
    """
    Something that can put the user's signature on a message.

    For a browser wallet this is the user-facing prompt; `sign_message`
    should raise (or return an empty string) when the user declines.
    """

    address: str

    async def sign_message(self, message: bytes) -> str:
        ...


@dataclass(frozen=True)
class SmartAccountHandle:
    """A ready-to-use smart account on one chain."""
    chain_id: int
    address: str
    signer: SignerCapability
    paymaster: "PaymasterProvider"
    bundler: "BundlerProvider"
    entry_point: str

    async def get_nonce(self) -> int:
        return await self.bundler.get_nonce(self.address, self.entry_point)


class ChainAccountResolver(ABC):
    """Resolves a chain id to a smart-account handle."""

    @abstractmethod
    async def resolve(self, chain_id: int) -> SmartAccountHandle:
        """
        Return the handle for `chain_id`.

        Raises:
            AccountResolutionError: If no smart account exists for the chain
        """
        pass

    async def close(self) -> None:
        """Release provider connections held by resolved handles."""
        pass

    def cached(self, chain_id: int) -> Optional[SmartAccountHandle]:
        """Handle already resolved for `chain_id`, without any I/O."""
        return None
