"""
Nonce management for concurrent user operations.

Several operations for the same smart account can be built before any of
them lands (approve and send-to-bridge share the source account, and
concurrent transfers may share an account too). Nonces are reserved here so
no two operations are signed with the same one.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional, Set


NonceFetcher = Callable[[], Awaitable[int]]


@dataclass
class NonceState:
    """Tracks nonce state for an account on a chain."""
    address: str
    chain_id: int
    confirmed_nonce: int                        # Last seen on-chain
    pending_nonce: int                          # Next available for use
    reserved_nonces: Set[int] = field(default_factory=set)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NonceManager:
    """
    Reserves EntryPoint nonces per (chain, account).

    Features:
    - Tracks reserved nonces to avoid conflicts
    - Syncs with the EntryPoint on each reservation
    - Releases nonces of operations that were never submitted
    """

    def __init__(self) -> None:
        self._states: Dict[str, NonceState] = {}  # key: "{chain_id}:{address}"
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_key(self, chain_id: int, address: str) -> str:
        return f"{chain_id}:{address.lower()}"

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def get_next_nonce(
        self,
        address: str,
        chain_id: int,
        fetch: NonceFetcher,
        sync: bool = True,
    ) -> int:
        """
        Reserve the next available nonce for an account.

        Args:
            address: The smart account address
            chain_id: The chain ID
            fetch: Returns the current EntryPoint nonce
            sync: Whether to sync with on-chain state first

        Returns:
            The reserved nonce
        """
        key = self._get_key(chain_id, address)
        lock = self._get_lock(key)

        async with lock:
            if key not in self._states or sync:
                on_chain_nonce = await fetch()

                if key not in self._states:
                    self._states[key] = NonceState(
                        address=address.lower(),
                        chain_id=chain_id,
                        confirmed_nonce=on_chain_nonce,
                        pending_nonce=on_chain_nonce,
                    )
                else:
                    # Update confirmed nonce, but don't decrease pending
                    state = self._states[key]
                    state.confirmed_nonce = on_chain_nonce
                    state.reserved_nonces = {
                        n for n in state.reserved_nonces if n >= on_chain_nonce
                    }
                    if on_chain_nonce > state.pending_nonce:
                        state.pending_nonce = on_chain_nonce
                    state.last_updated = datetime.now(timezone.utc)

            state = self._states[key]

            nonce = state.pending_nonce
            while nonce in state.reserved_nonces:
                nonce += 1

            state.reserved_nonces.add(nonce)
            state.pending_nonce = nonce + 1

            return nonce

    async def release_nonce(
        self,
        address: str,
        chain_id: int,
        nonce: int,
    ) -> None:
        """Release a reserved nonce (the operation was never submitted)."""
        key = self._get_key(chain_id, address)

        async with self._get_lock(key):
            if key in self._states:
                state = self._states[key]
                state.reserved_nonces.discard(nonce)

                # If we released the highest nonce, we can reduce pending
                if nonce == state.pending_nonce - 1:
                    while state.pending_nonce > state.confirmed_nonce:
                        if state.pending_nonce - 1 not in state.reserved_nonces:
                            state.pending_nonce -= 1
                        else:
                            break

    async def confirm_nonce(
        self,
        address: str,
        chain_id: int,
        nonce: int,
    ) -> None:
        """Mark a nonce as consumed on-chain."""
        key = self._get_key(chain_id, address)

        async with self._get_lock(key):
            if key in self._states:
                state = self._states[key]
                state.reserved_nonces.discard(nonce)
                if nonce >= state.confirmed_nonce:
                    state.confirmed_nonce = nonce + 1


# Singleton instance
_nonce_manager: Optional[NonceManager] = None


def get_nonce_manager() -> NonceManager:
    """Get the singleton nonce manager instance."""
    global _nonce_manager
    if _nonce_manager is None:
        _nonce_manager = NonceManager()
    return _nonce_manager
