"""
Keccak Merkle tree with sorted pair hashing.

Matches the tree the multichain validation module verifies against: pairs
are sorted before hashing and an odd node is carried up unchanged.
"""

from typing import List, Sequence

from eth_utils import keccak


def _hash_pair(a: bytes, b: bytes) -> bytes:
    return keccak(a + b) if a <= b else keccak(b + a)


class MerkleTree:
    def __init__(self, leaves: Sequence[bytes]) -> None:
        if not leaves:
            raise ValueError("Merkle tree needs at least one leaf")
        self.leaves: List[bytes] = list(leaves)
        self.layers: List[List[bytes]] = [self.leaves]
        while len(self.layers[-1]) > 1:
            self.layers.append(self._next_layer(self.layers[-1]))

    @staticmethod
    def _next_layer(layer: List[bytes]) -> List[bytes]:
        parents = []
        for i in range(0, len(layer), 2):
            if i + 1 < len(layer):
                parents.append(_hash_pair(layer[i], layer[i + 1]))
            else:
                parents.append(layer[i])
        return parents

    @property
    def root(self) -> bytes:
        return self.layers[-1][0]

    def proof(self, index: int) -> List[bytes]:
        if not 0 <= index < len(self.leaves):
            raise IndexError(f"Leaf index {index} out of range")
        proof = []
        for layer in self.layers[:-1]:
            sibling = index ^ 1
            if sibling < len(layer):
                proof.append(layer[sibling])
            index //= 2
        return proof


def verify_proof(leaf: bytes, proof: Sequence[bytes], root: bytes) -> bool:
    computed = leaf
    for node in proof:
        computed = _hash_pair(computed, node)
    return computed == root
