"""
ERC-4337 Bundler Provider.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .base import JsonRpcProvider
from ..core.errors import StepTimeoutError
from ..core.recovery.errors import RecoverableError
from ..core.execution.userop import SignedOperation, UserOpReceipt
from ..core.execution.userop_builder import build_entrypoint_get_nonce_call, build_erc20_balance_of_call

logger = logging.getLogger(__name__)


class BundlerError(Exception):
    """Bundler provider error."""
    pass


@dataclass
class BundlerConfig:
    rpc_url: str
    chain_id: int


class BundlerProvider(JsonRpcProvider):
    """Bundler JSON-RPC client bound to a single chain."""

    name = "bundler"
    timeout_s = 20
    error_class = BundlerError

    def __init__(self, config: BundlerConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        super().__init__(config.rpc_url, client)
        self.chain_id = config.chain_id

    async def send_user_operation(
        self,
        signed_op: SignedOperation,
        entry_point: str,
    ) -> str:
        if not await self.ready():
            raise BundlerError(f"Bundler for chain {self.chain_id} is not configured")

        result = await self._rpc_call(
            "eth_sendUserOperation",
            [signed_op.to_rpc_dict(), entry_point],
        )
        if not isinstance(result, str):
            raise BundlerError("Invalid bundler response for eth_sendUserOperation")
        return result

    async def get_user_operation_receipt(self, user_op_hash: str) -> Optional[UserOpReceipt]:
        if not await self.ready():
            raise BundlerError(f"Bundler for chain {self.chain_id} is not configured")

        result = await self._rpc_call(
            "eth_getUserOperationReceipt",
            [user_op_hash],
        )
        if not result:
            return None
        return UserOpReceipt.from_rpc(user_op_hash, result)

    async def wait_for_receipt(
        self,
        user_op_hash: str,
        timeout_seconds: float,
        poll_interval_seconds: float = 2.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> UserOpReceipt:
        """Poll for a receipt until one arrives or the timeout elapses."""
        sleep = sleep or asyncio.sleep
        deadline = time.monotonic() + timeout_seconds

        while True:
            try:
                receipt = await self.get_user_operation_receipt(user_op_hash)
                if receipt is not None:
                    return receipt
            except (BundlerError, RecoverableError, httpx.HTTPError) as exc:
                logger.warning(f"Error checking user operation {user_op_hash}: {exc}")

            if time.monotonic() >= deadline:
                raise StepTimeoutError(
                    f"No receipt for {user_op_hash} after {timeout_seconds:.0f}s",
                    chain_id=self.chain_id,
                    user_op_hash=user_op_hash,
                )
            await sleep(poll_interval_seconds)

    async def call(self, to: str, data: str, block: str = "latest") -> str:
        """eth_call through the bundler's node passthrough."""
        result = await self._rpc_call("eth_call", [{"to": to, "data": data}, block])
        if not isinstance(result, str) or not result.startswith("0x"):
            raise BundlerError(f"Invalid eth_call response from {to}")
        return result

    async def get_nonce(self, sender: str, entry_point: str, key: int = 0) -> int:
        """Current EntryPoint nonce for the account."""
        result = await self.call(entry_point, build_entrypoint_get_nonce_call(sender, key))
        return int(result, 16) if result != "0x" else 0

    async def get_token_balance(self, token_address: str, owner: str) -> int:
        """ERC-20 balance of `owner`, in base units."""
        result = await self.call(token_address, build_erc20_balance_of_call(owner))
        return int(result, 16) if result != "0x" else 0

    async def health_check(self) -> Dict[str, Any]:
        status = await super().health_check()
        status["chain_id"] = self.chain_id
        return status
