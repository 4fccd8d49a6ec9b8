"""
Fee sponsorship for user operations.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ...config import settings
from ...providers.paymaster import PaymasterError
from ..accounts.models import ChainAccountResolver
from ..errors import ChainMismatchError, SponsorshipDeclined
from ..recovery.errors import RecoverableError
from .userop import UnsignedOperation

logger = logging.getLogger(__name__)

SPONSORED_MODE = "SPONSORED"


class SponsorshipResolver:
    """
    Attaches sponsorship data from the paymaster of the operation's chain.

    Always uses the flat SPONSORED mode: the sponsor covers the operation
    within its configured limits, or declines. Declines are surfaced, never
    retried.
    """

    def __init__(
        self,
        resolver: ChainAccountResolver,
        account_name: Optional[str] = None,
        account_version: Optional[str] = None,
    ) -> None:
        self.resolver = resolver
        self.account_name = account_name or settings.smart_account_name
        self.account_version = account_version or settings.smart_account_version

    def sponsorship_context(self) -> Dict[str, Any]:
        return {
            "mode": SPONSORED_MODE,
            "calculateGasLimits": True,
            "smartAccountInfo": {
                "name": self.account_name,
                "version": self.account_version,
            },
        }

    async def sponsor(self, op: UnsignedOperation) -> UnsignedOperation:
        """
        Return a copy of `op` with sponsorship data attached.

        Raises:
            SponsorshipDeclined: If the sponsor rejects or cannot be reached
            ChainMismatchError: If the resolved paymaster serves another chain
        """
        handle = await self.resolver.resolve(op.chain_id)
        paymaster = handle.paymaster
        if paymaster.chain_id != op.chain_id:
            raise ChainMismatchError(op.chain_id, paymaster.chain_id, what="paymaster")

        try:
            result = await paymaster.sponsor_user_operation(op, self.sponsorship_context())
        except PaymasterError as exc:
            logger.warning(f"Paymaster on chain {op.chain_id} declined operation: {exc}")
            raise SponsorshipDeclined(op.chain_id, str(exc)) from exc
        except (httpx.HTTPError, RecoverableError) as exc:
            logger.warning(f"Paymaster on chain {op.chain_id} unreachable: {exc}")
            raise SponsorshipDeclined(op.chain_id, f"sponsor unreachable: {exc}") from exc

        try:
            sponsored = op.with_sponsorship(result["paymasterAndData"], result)
        except (KeyError, TypeError, ValueError) as exc:
            raise SponsorshipDeclined(op.chain_id, f"malformed sponsor response: {exc}") from exc
        logger.info(f"Sponsored operation on chain {op.chain_id} (nonce {op.nonce})")
        return sponsored
