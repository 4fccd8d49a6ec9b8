"""
Tests for the bundler JSON-RPC provider.
"""

import json

import httpx
import pytest

from bridgeflow.config import DEFAULT_ENTRYPOINT_ADDRESS
from bridgeflow.core.errors import StepTimeoutError
from bridgeflow.core.execution.userop import SignedOperation, UnsignedOperation
from bridgeflow.core.recovery import NetworkError, RateLimitError
from bridgeflow.providers.bundler import BundlerConfig, BundlerError, BundlerProvider

USER_OP_HASH = "0x" + "ab" * 32


def _provider(handler) -> BundlerProvider:
    return BundlerProvider(
        BundlerConfig(rpc_url="https://bundler.test/rpc", chain_id=43113),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def _signed() -> SignedOperation:
    op = UnsignedOperation(
        sender="0x1111111111111111111111111111111111111111",
        target="0x2222222222222222222222222222222222222222",
        call_data="0x1234",
        chain_id=43113,
        nonce=2,
        sponsorship_data="0xab",
    )
    return SignedOperation(operation=op, signature="0x99")


@pytest.mark.asyncio
async def test_send_user_operation_posts_rpc_payload():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": USER_OP_HASH})

    result = await _provider(handler).send_user_operation(_signed(), DEFAULT_ENTRYPOINT_ADDRESS)

    assert result == USER_OP_HASH
    assert seen[0]["method"] == "eth_sendUserOperation"
    user_op, entry_point = seen[0]["params"]
    assert user_op["nonce"] == "0x2"
    assert user_op["signature"] == "0x99"
    assert entry_point == DEFAULT_ENTRYPOINT_ADDRESS


@pytest.mark.asyncio
async def test_rpc_error_raises_bundler_error():
    def handler(request):
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32500, "message": "AA21 didn't pay prefund"}},
        )

    with pytest.raises(BundlerError, match="AA21"):
        await _provider(handler).send_user_operation(_signed(), DEFAULT_ENTRYPOINT_ADDRESS)


@pytest.mark.asyncio
async def test_wait_for_receipt_polls_until_available():
    responses = [
        {"jsonrpc": "2.0", "id": 1, "result": None},
        {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "temporarily unavailable"}},
        {
            "jsonrpc": "2.0",
            "id": 1,
            "result": {"success": True, "receipt": {"transactionHash": "0xtx", "blockNumber": "0x10"}},
        },
    ]

    def handler(request):
        return httpx.Response(200, json=responses.pop(0))

    sleeps = []

    async def sleep(seconds):
        sleeps.append(seconds)

    receipt = await _provider(handler).wait_for_receipt(
        USER_OP_HASH, timeout_seconds=60, poll_interval_seconds=2, sleep=sleep
    )

    assert receipt.success
    assert receipt.transaction_hash == "0xtx"
    assert receipt.block_number == 16
    assert sleeps == [2, 2]


@pytest.mark.asyncio
async def test_wait_for_receipt_times_out():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None})

    async def sleep(seconds):
        return None

    with pytest.raises(StepTimeoutError) as exc_info:
        await _provider(handler).wait_for_receipt(USER_OP_HASH, timeout_seconds=0, sleep=sleep)

    assert exc_info.value.user_op_hash == USER_OP_HASH
    assert exc_info.value.chain_id == 43113


@pytest.mark.asyncio
async def test_get_nonce_calls_entrypoint():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0x" + "0" * 62 + "05"})

    nonce = await _provider(handler).get_nonce(
        "0x1111111111111111111111111111111111111111", DEFAULT_ENTRYPOINT_ADDRESS
    )

    assert nonce == 5
    call, block = seen[0]["params"]
    assert seen[0]["method"] == "eth_call"
    assert call["to"] == DEFAULT_ENTRYPOINT_ADDRESS
    assert block == "latest"


@pytest.mark.asyncio
async def test_unconfigured_bundler_is_not_ready():
    provider = BundlerProvider(BundlerConfig(rpc_url="", chain_id=1))

    assert not await provider.ready()
    assert (await provider.health_check())["status"] == "disabled"
    with pytest.raises(BundlerError):
        await provider.send_user_operation(_signed(), DEFAULT_ENTRYPOINT_ADDRESS)


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "3"}, text="slow down")

    with pytest.raises(RateLimitError) as exc_info:
        await _provider(handler).send_user_operation(_signed(), DEFAULT_ENTRYPOINT_ADDRESS)

    assert exc_info.value.retry_after == 3.0


@pytest.mark.asyncio
async def test_transport_failure_raises_network_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(NetworkError, match="eth_sendUserOperation"):
        await _provider(handler).send_user_operation(_signed(), DEFAULT_ENTRYPOINT_ADDRESS)


@pytest.mark.asyncio
async def test_malformed_body_raises_bundler_error():
    def handler(request):
        return httpx.Response(200, text="<html>bad gateway</html>")

    with pytest.raises(BundlerError, match="Malformed"):
        await _provider(handler).send_user_operation(_signed(), DEFAULT_ENTRYPOINT_ADDRESS)


@pytest.mark.asyncio
async def test_receipt_lookup_returns_none_until_included():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None})

    assert await _provider(handler).get_user_operation_receipt(USER_OP_HASH) is None


@pytest.mark.asyncio
async def test_get_token_balance_calls_balance_of():
    token = "0x2c852e740B62308c46DD29B982FBb650D063Bd07"
    owner = "0x1111111111111111111111111111111111111111"
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0x" + f"{2_500_000:064x}"})

    balance = await _provider(handler).get_token_balance(token, owner)

    assert balance == 2_500_000
    call, _ = seen[0]["params"]
    assert call["to"] == token
    assert call["data"] == "0x70a08231" + "0" * 24 + owner[2:]


@pytest.mark.asyncio
async def test_invalid_call_result_raises_bundler_error():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": 5})

    with pytest.raises(BundlerError):
        await _provider(handler).get_token_balance("0x" + "33" * 20, "0x" + "11" * 20)
