"""
Tests for NonceManager reservations.
"""

import asyncio

import pytest

from bridgeflow.core.execution.nonce_manager import NonceManager

ADDRESS = "0x1111111111111111111111111111111111111111"


def _fetcher(value: int):
    async def fetch() -> int:
        return value

    return fetch


@pytest.mark.asyncio
async def test_concurrent_reservations_are_unique():
    manager = NonceManager()

    nonces = await asyncio.gather(
        *(manager.get_next_nonce(ADDRESS, 1, _fetcher(0)) for _ in range(5))
    )

    assert sorted(nonces) == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_release_of_highest_nonce_rewinds_pending():
    manager = NonceManager()
    first = await manager.get_next_nonce(ADDRESS, 1, _fetcher(0))
    second = await manager.get_next_nonce(ADDRESS, 1, _fetcher(0))

    await manager.release_nonce(ADDRESS, 1, second)
    await manager.release_nonce(ADDRESS, 1, first)

    assert await manager.get_next_nonce(ADDRESS, 1, _fetcher(0)) == 0


@pytest.mark.asyncio
async def test_sync_moves_past_confirmed_nonces():
    manager = NonceManager()
    await manager.get_next_nonce(ADDRESS, 1, _fetcher(0))
    await manager.confirm_nonce(ADDRESS, 1, 0)

    assert await manager.get_next_nonce(ADDRESS, 1, _fetcher(5)) == 5


@pytest.mark.asyncio
async def test_accounts_are_tracked_per_chain():
    manager = NonceManager()

    assert await manager.get_next_nonce(ADDRESS, 1, _fetcher(3)) == 3
    assert await manager.get_next_nonce(ADDRESS, 2, _fetcher(0)) == 0
    assert await manager.get_next_nonce(ADDRESS, 1, _fetcher(0)) == 4
