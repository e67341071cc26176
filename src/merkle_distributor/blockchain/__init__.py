"""
merkle_distributor/blockchain/

Merkle tree construction and proof verification for entitlement snapshots.

Trees live off-ledger: only their root is committed to the distributor.
"""

from .merkle_tree import (
    MerkleTree,
    EmptyTreeError,
    keccak256,
    combine_hashes,
    coerce_hash,
    to_bytes32,
    to_hex,
)

from .balance_tree import (
    BalanceTree,
    encode_leaf,
    hash_leaf,
    verify_claim,
)

__all__ = [
    # Generic tree
    "MerkleTree",
    "EmptyTreeError",
    "keccak256",
    "combine_hashes",
    "coerce_hash",
    "to_bytes32",
    "to_hex",
    # Entitlement leaves
    "BalanceTree",
    "encode_leaf",
    "hash_leaf",
    "verify_claim",
]
