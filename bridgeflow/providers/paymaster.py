"""
ERC-4337 Paymaster Provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .base import JsonRpcProvider
from ..core.execution.userop import UnsignedOperation


class PaymasterError(Exception):
    """Paymaster provider error."""
    pass


@dataclass
class PaymasterConfig:
    rpc_url: str
    chain_id: int
    rpc_method: str = "pm_sponsorUserOperation"


class PaymasterProvider(JsonRpcProvider):
    """Fee sponsor endpoint for a single chain."""

    name = "paymaster"
    timeout_s = 20
    error_class = PaymasterError

    def __init__(self, config: PaymasterConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        super().__init__(config.rpc_url, client)
        self.chain_id = config.chain_id
        self.rpc_method = config.rpc_method

    async def sponsor_user_operation(
        self,
        user_op: UnsignedOperation,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Ask the paymaster to cover `user_op`.

        Returns a dict holding at least `paymasterAndData`, plus any gas
        values the paymaster calculated.
        """
        if not await self.ready():
            raise PaymasterError(f"Paymaster for chain {self.chain_id} is not configured")

        params: list[Any] = [user_op.to_rpc_dict()]
        if context:
            params.append(context)
        result = await self._rpc_call(self.rpc_method, params)
        if isinstance(result, dict):
            paymaster_and_data = result.get("paymasterAndData") or result.get("paymaster_and_data")
            if paymaster_and_data and paymaster_and_data != "0x":
                return {**result, "paymasterAndData": paymaster_and_data}
        if isinstance(result, str) and result not in ("", "0x"):
            return {"paymasterAndData": result}
        raise PaymasterError("Paymaster returned no sponsorship data")
