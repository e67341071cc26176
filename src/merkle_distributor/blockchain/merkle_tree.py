"""
merkle_distributor/blockchain/merkle_tree.py

Binary keccak256 merkle tree with sorted-pair hashing.

Construction rules (proofs depend on them bit-for-bit):
- Leaves are 32-byte digests, kept in the order given.
- Adjacent nodes are paired left to right; a pair is hashed as
  keccak256(min(a, b) || max(a, b)), so proofs carry no left/right bits.
- When a level has an odd count, the last node is paired with itself.
  Its proof element at that level is the node's own hash, which keeps
  every proof in a tree exactly ceil(log2(N)) elements long.

Usage:
    from merkle_distributor.blockchain.merkle_tree import MerkleTree

    tree = MerkleTree([leaf0, leaf1, leaf2])
    proof = tree.get_proof_by_index(2)
    assert MerkleTree.verify(proof, tree.root, leaf2)
"""

import logging
import string
from typing import Dict, List, Optional, Sequence, Union

from eth_utils import keccak

from ..config import HASH_SIZE

logger = logging.getLogger("merkle_distributor.blockchain.merkle_tree")

HashLike = Union[bytes, bytearray, str]


class EmptyTreeError(ValueError):
    """Raised when a tree is built from zero leaves."""
    pass


# ============================================================================
# HASH HELPERS
# ============================================================================

def keccak256(data: bytes) -> bytes:
    """Keccak-256 digest of data."""
    return keccak(data)


def combine_hashes(a: bytes, b: bytes) -> bytes:
    """Hash two nodes in sorted (commutative) order."""
    if a <= b:
        return keccak(a + b)
    return keccak(b + a)


def coerce_hash(value: HashLike) -> Optional[bytes]:
    """
    Convert a 32-byte hash given as bytes or hex string to bytes.

    Returns:
        The 32 bytes, or None if value is not a well-formed hash
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value) if len(value) == HASH_SIZE else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if text[:2] in ("0x", "0X"):
        text = text[2:]
    if len(text) != HASH_SIZE * 2 or not all(c in string.hexdigits for c in text):
        return None
    return bytes.fromhex(text)


def to_bytes32(value: HashLike) -> bytes:
    """Like coerce_hash, but raise ValueError on malformed input."""
    result = coerce_hash(value)
    if result is None:
        raise ValueError(f"Expected a 32-byte hash, got {value!r}")
    return result


def to_hex(value: bytes) -> str:
    """0x-prefixed lowercase hex of value."""
    return "0x" + value.hex()


# ============================================================================
# MERKLE TREE
# ============================================================================

class MerkleTree:
    """
    Immutable merkle tree over 32-byte leaf hashes.

    A new entitlement set means a new tree; there is no add/remove.
    """

    def __init__(self, leaves: Sequence[HashLike]):
        """
        Build the tree.

        Args:
            leaves: Leaf hashes (bytes or hex strings), in index order

        Raises:
            EmptyTreeError: If leaves is empty
            ValueError: If a leaf is not a 32-byte hash
        """
        if not leaves:
            raise EmptyTreeError("Cannot build a merkle tree with no leaves")

        self.leaves: List[bytes] = [to_bytes32(leaf) for leaf in leaves]
        self.layers: List[List[bytes]] = self._build_layers(self.leaves)

        # First position of each leaf, for proof lookup by value
        self._positions: Dict[bytes, int] = {}
        for i, leaf in enumerate(self.leaves):
            self._positions.setdefault(leaf, i)

        logger.debug(
            f"Built merkle tree: {len(self.leaves)} leaves, depth {self.depth}, "
            f"root {to_hex(self.root)[:18]}..."
        )

    @staticmethod
    def _build_layers(leaves: List[bytes]) -> List[List[bytes]]:
        """Build all levels bottom-up; layers[-1] holds only the root."""
        layers = [list(leaves)]
        current_level = layers[0]

        while len(current_level) > 1:
            next_level = []
            for i in range(0, len(current_level), 2):
                left = current_level[i]
                # If odd number, duplicate last element
                right = current_level[i + 1] if i + 1 < len(current_level) else left
                next_level.append(combine_hashes(left, right))
            layers.append(next_level)
            current_level = next_level

        return layers

    def __len__(self) -> int:
        return len(self.leaves)

    @property
    def root(self) -> bytes:
        return self.layers[-1][0]

    @property
    def depth(self) -> int:
        """Number of hashing levels above the leaves (= proof length)."""
        return len(self.layers) - 1

    def get_root(self) -> bytes:
        return self.root

    def get_hex_root(self) -> str:
        return to_hex(self.root)

    def index_of(self, leaf: HashLike) -> int:
        """
        Position of a leaf in the tree.

        Raises:
            ValueError: If the leaf is not in the tree
        """
        leaf_bytes = coerce_hash(leaf)
        if leaf_bytes is None or leaf_bytes not in self._positions:
            raise ValueError("Element does not exist in merkle tree")
        return self._positions[leaf_bytes]

    def get_proof_by_index(self, leaf_index: int) -> List[bytes]:
        """
        Get the sibling path for a leaf, leaf to root.

        Args:
            leaf_index: Position of the leaf

        Returns:
            List of sibling hashes (length == depth)

        Raises:
            ValueError: If leaf_index is out of range
        """
        if not 0 <= leaf_index < len(self.leaves):
            raise ValueError(
                f"Leaf index {leaf_index} out of range for {len(self.leaves)} leaves"
            )

        proof = []
        idx = leaf_index
        for layer in self.layers[:-1]:
            sibling_idx = idx ^ 1
            if sibling_idx < len(layer):
                proof.append(layer[sibling_idx])
            else:
                # Odd case: paired with ourselves
                proof.append(layer[idx])
            idx //= 2

        return proof

    def get_proof(self, leaf: HashLike) -> List[bytes]:
        """Get the sibling path for a leaf given by value."""
        return self.get_proof_by_index(self.index_of(leaf))

    def get_hex_proof(self, leaf: HashLike) -> List[str]:
        return [to_hex(node) for node in self.get_proof(leaf)]

    @staticmethod
    def verify(proof: Sequence[HashLike], root: HashLike, leaf: HashLike) -> bool:
        """
        Verify a merkle proof.

        Args:
            proof: Sibling hashes, leaf to root
            root: Expected root
            leaf: Leaf hash being proven

        Returns:
            True if folding the proof over leaf reproduces root
        """
        expected_root = coerce_hash(root)
        computed = coerce_hash(leaf)
        if expected_root is None or computed is None:
            return False

        for element in proof:
            sibling = coerce_hash(element)
            if sibling is None:
                return False
            computed = combine_hashes(computed, sibling)

        return computed == expected_root
