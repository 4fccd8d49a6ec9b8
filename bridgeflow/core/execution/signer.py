"""
Multi-chain batch signing.

All operations of one logical transfer are signed with a single user
interaction: each operation's userOpHash (already bound to its chain id)
becomes a Merkle leaf, the user signs the root once, and every operation
carries the root signature plus its own inclusion proof.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, List, Optional, Sequence, Tuple

from eth_abi import encode
from eth_utils import decode_hex, encode_hex, keccak, to_checksum_address

from ...config import settings
from ..accounts.models import ChainAccountResolver, SignerCapability
from ..errors import ChainMismatchError, SigningRejected, SponsorshipDeclined
from .merkle import MerkleTree
from .userop import SignedOperation, UnsignedOperation

logger = logging.getLogger(__name__)

BatchItem = Tuple[UnsignedOperation, int]


def batch_leaf(user_op_hash: bytes, valid_until: int, valid_after: int) -> bytes:
    """keccak256(abi.encodePacked(uint48 validUntil, uint48 validAfter, bytes32 userOpHash))."""
    return keccak(valid_until.to_bytes(6, "big") + valid_after.to_bytes(6, "big") + user_op_hash)


class MultiChainSigner:
    """Produces one signature set for a batch of chain-specific operations."""

    def __init__(
        self,
        resolver: ChainAccountResolver,
        entry_point: Optional[str] = None,
        module_address: Optional[str] = None,
        valid_for_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.resolver = resolver
        self.entry_point = entry_point or settings.erc4337_entrypoint_address
        self.module_address = module_address or settings.erc4337_multichain_module_address
        self.valid_for_seconds = (
            settings.signature_valid_for_seconds if valid_for_seconds is None else valid_for_seconds
        )
        self._clock = clock

    async def sign_batch(self, items: Sequence[BatchItem]) -> List[SignedOperation]:
        """
        Sign every operation in `items` with one signer interaction.

        Returns signed operations in input order. Nothing is returned unless
        every operation was signed.

        Raises:
            ChainMismatchError: If an operation's chain id differs from its pair
            SponsorshipDeclined: If an operation carries no sponsorship data
            SigningRejected: If the signer is unavailable or declines
        """
        if not items:
            return []

        for index, (op, chain_id) in enumerate(items):
            if op.chain_id != chain_id:
                raise ChainMismatchError(chain_id, op.chain_id, what=f"operation {index}")
            if not op.is_sponsored:
                raise SponsorshipDeclined(chain_id, f"operation {index} has no sponsorship data")

        signer = await self._batch_signer([chain_id for _, chain_id in items])

        valid_after = 0
        valid_until = int(self._clock()) + self.valid_for_seconds if self.valid_for_seconds else 0

        # Freeze a snapshot of each operation; later edits to the inputs
        # must not change what was signed.
        snapshots = [replace(op) for op, _ in items]
        leaves = [batch_leaf(op.hash(self.entry_point), valid_until, valid_after) for op in snapshots]
        tree = MerkleTree(leaves)

        try:
            root_signature = await signer.sign_message(tree.root)
        except SigningRejected:
            raise
        except Exception as exc:
            raise SigningRejected(f"Signer failed: {exc}") from exc
        if not root_signature or root_signature == "0x":
            raise SigningRejected("Signer returned an empty signature")
        try:
            signature_bytes = decode_hex(root_signature)
        except (TypeError, ValueError) as exc:
            raise SigningRejected(f"Signer returned a malformed signature: {exc}") from exc

        logger.info(f"Signed batch of {len(snapshots)} operations (root {encode_hex(tree.root)})")

        module = to_checksum_address(self.module_address)
        signed = []
        for index, op in enumerate(snapshots):
            module_signature = encode(
                ["uint48", "uint48", "bytes32", "bytes32[]", "bytes"],
                [valid_until, valid_after, tree.root, tree.proof(index), signature_bytes],
            )
            envelope = encode(["bytes", "address"], [module_signature, module])
            signed.append(SignedOperation(operation=op, signature=encode_hex(envelope)))
        return signed

    async def _batch_signer(self, chain_ids: Sequence[int]) -> SignerCapability:
        signer: Optional[SignerCapability] = None
        for chain_id in dict.fromkeys(chain_ids):
            handle = await self.resolver.resolve(chain_id)
            if handle.signer is None:
                raise SigningRejected(f"No signer available on chain {chain_id}")
            if signer is None:
                signer = handle.signer
            elif handle.signer.address.lower() != signer.address.lower():
                raise SigningRejected("Batch spans accounts owned by different signers")
        assert signer is not None
        return signer
