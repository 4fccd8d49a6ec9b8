"""
Local-key signer for development and scripted use.

Signs with EIP-191 personal_sign, the same scheme a browser wallet uses for
the batch root.
"""

import asyncio

from eth_account import Account
from eth_account.messages import encode_defunct

from ..errors import SigningRejected


class LocalKeySigner:
    """SignerCapability backed by a private key held in memory."""

    def __init__(self, private_key: str) -> None:
        if not private_key:
            raise SigningRejected("No private key available for signing")
        self._account = Account.from_key(private_key)
        self.address = self._account.address

    async def sign_message(self, message: bytes) -> str:
        signed = await asyncio.to_thread(
            self._account.sign_message, encode_defunct(primitive=message)
        )
        signature = signed.signature.hex()
        return signature if signature.startswith("0x") else f"0x{signature}"
