"""
Tests for the Operation Builder and nonce reservations.
"""

import pytest

from bridgeflow.core.errors import AccountResolutionError
from bridgeflow.core.execution.nonce_manager import NonceManager
from bridgeflow.core.execution.operation_builder import OperationBuilder
from bridgeflow.core.execution.userop_builder import build_erc20_approve_call, get_execute_selector

from conftest import SMART_ACCOUNT, SOURCE_CHAIN

TOKEN = "0x57F1c63497AEe0bE305B8852b354CEc793da43bB"
BRIDGE = "0xA7a034e0e5958C4F1b9051597e715d13059866f8"


@pytest.mark.asyncio
async def test_build_wraps_call_in_account_execute(network):
    builder = OperationBuilder(network.resolver, NonceManager())
    call = build_erc20_approve_call(BRIDGE, 10_000_000)

    op = await builder.build(SOURCE_CHAIN, TOKEN, call)

    assert op.sender == SMART_ACCOUNT
    assert op.chain_id == SOURCE_CHAIN
    assert op.target == TOKEN
    assert op.call_data.startswith(get_execute_selector())
    assert call[2:] in op.call_data
    assert op.sponsorship_data is None
    assert op.call_gas_limit == 0


@pytest.mark.asyncio
async def test_build_uses_given_nonce_without_querying(network):
    builder = OperationBuilder(network.resolver, NonceManager())

    op = await builder.build(SOURCE_CHAIN, TOKEN, "0x1234", nonce=7)

    assert op.nonce == 7
    assert network.bundlers[SOURCE_CHAIN].nonce_queries == 0


@pytest.mark.asyncio
async def test_consecutive_builds_get_distinct_nonces(network):
    network.bundlers[SOURCE_CHAIN].nonce = 4
    builder = OperationBuilder(network.resolver, NonceManager())

    first = await builder.build(SOURCE_CHAIN, TOKEN, "0x1234")
    second = await builder.build(SOURCE_CHAIN, TOKEN, "0x5678")

    assert (first.nonce, second.nonce) == (4, 5)


@pytest.mark.asyncio
async def test_released_nonce_is_reused(network):
    builder = OperationBuilder(network.resolver, NonceManager())

    nonce = await builder.reserve_nonce(SOURCE_CHAIN)
    await builder.release_nonce(SOURCE_CHAIN, nonce)

    assert await builder.reserve_nonce(SOURCE_CHAIN) == nonce


@pytest.mark.asyncio
@pytest.mark.parametrize("call", ["", "0x"])
async def test_empty_calldata_is_rejected(network, call):
    builder = OperationBuilder(network.resolver, NonceManager())

    with pytest.raises(ValueError):
        await builder.build(SOURCE_CHAIN, TOKEN, call)

    assert network.resolutions == []


@pytest.mark.asyncio
async def test_unknown_chain_raises_account_resolution_error(network):
    builder = OperationBuilder(network.resolver, NonceManager())

    with pytest.raises(AccountResolutionError) as exc_info:
        await builder.build(999, TOKEN, "0x1234")

    assert exc_info.value.chain_id == 999
