"""
Tests for chain account resolution and the local signer.
"""

import asyncio

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from bridgeflow.config import ChainEndpoints, Settings
from bridgeflow.core.accounts import (
    CachedAccountResolver,
    LocalKeySigner,
    SignerCapability,
    build_account_resolver,
)
from bridgeflow.core.errors import AccountResolutionError, ChainMismatchError, SigningRejected
from bridgeflow.providers.bundler import BundlerProvider
from bridgeflow.providers.paymaster import PaymasterProvider

from conftest import SOURCE_CHAIN, TEST_PRIVATE_KEY


@pytest.mark.asyncio
async def test_handles_are_cached_per_chain(network):
    first = await network.resolver.resolve(SOURCE_CHAIN)
    second = await network.resolver.resolve(SOURCE_CHAIN)

    assert first is second
    assert network.resolutions == [SOURCE_CHAIN]
    assert network.resolver.cached(SOURCE_CHAIN) is first


@pytest.mark.asyncio
async def test_concurrent_resolution_creates_one_handle(network):
    handles = await asyncio.gather(*(network.resolver.resolve(SOURCE_CHAIN) for _ in range(10)))

    assert all(h is handles[0] for h in handles)
    assert network.resolutions == [SOURCE_CHAIN]


@pytest.mark.asyncio
async def test_factory_errors_become_account_resolution_errors(network):
    with pytest.raises(AccountResolutionError) as exc_info:
        await network.resolver.resolve(1)

    assert exc_info.value.chain_id == 1
    assert network.resolver.cached(1) is None


@pytest.mark.asyncio
async def test_handle_for_wrong_chain_is_rejected(network):
    async def wrong_chain(chain_id):
        return await network._factory(SOURCE_CHAIN)

    resolver = CachedAccountResolver(wrong_chain)

    with pytest.raises(ChainMismatchError):
        await resolver.resolve(11155111)


@pytest.mark.asyncio
async def test_invalidate_forces_new_resolution(network):
    await network.resolver.resolve(SOURCE_CHAIN)
    network.resolver.invalidate(SOURCE_CHAIN)
    await network.resolver.resolve(SOURCE_CHAIN)

    assert network.resolutions == [SOURCE_CHAIN, SOURCE_CHAIN]


@pytest.mark.asyncio
async def test_settings_resolver_builds_providers(signer):
    config = Settings(
        chains={SOURCE_CHAIN: ChainEndpoints(name="fuji", bundler_url="https://b.test", paymaster_url="https://p.test")},
        smart_account_address="0x1111111111111111111111111111111111111111",
    )
    resolver = build_account_resolver(signer, config)

    handle = await resolver.resolve(SOURCE_CHAIN)

    assert isinstance(handle.bundler, BundlerProvider)
    assert isinstance(handle.paymaster, PaymasterProvider)
    assert handle.paymaster.chain_id == SOURCE_CHAIN
    assert handle.address == "0x1111111111111111111111111111111111111111"
    await resolver.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "chains, address",
    [
        ({}, "0x1111111111111111111111111111111111111111"),
        ({SOURCE_CHAIN: ChainEndpoints(name="fuji")}, "0x1111111111111111111111111111111111111111"),
        ({SOURCE_CHAIN: ChainEndpoints(name="fuji", bundler_url="https://b", paymaster_url="https://p")}, ""),
    ],
)
async def test_settings_resolver_rejects_incomplete_configuration(signer, chains, address):
    resolver = build_account_resolver(signer, Settings(chains=chains, smart_account_address=address))

    with pytest.raises(AccountResolutionError):
        await resolver.resolve(SOURCE_CHAIN)


@pytest.mark.asyncio
async def test_local_signer_produces_personal_sign_signature():
    signer = LocalKeySigner(TEST_PRIVATE_KEY)
    message = b"\x01" * 32

    signature = await signer.sign_message(message)

    assert isinstance(signer, SignerCapability)
    assert signature.startswith("0x")
    assert Account.recover_message(encode_defunct(primitive=message), signature=signature) == signer.address


def test_local_signer_requires_key():
    with pytest.raises(SigningRejected):
        LocalKeySigner("")
