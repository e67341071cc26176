"""
merkle_distributor - Cumulative merkle distributor

Distributes a pool of funds to accounts whose entitlements are committed to
as a single merkle root:
- Off-ledger: balance map -> merkle tree -> root + per-account proofs
- On-ledger: claim ledger tracking the cumulative amount paid per account,
  with root rotation that never resets what was already paid

Usage:
    from merkle_distributor import MerkleDistributor, parse_balance_map

    info = parse_balance_map({account_a: 200, account_b: 300, account_c: 250})

    distributor = MerkleDistributor.deploy(deployer, maintainer, info.merkle_root)
    distributor.deposit(deployer, info.token_total_int)

    claim = info.get_claim(account_a)
    distributor.claim(account_a, claim.index, account_a, claim.amount_int, claim.proof)

REST API Usage:
    from merkle_distributor.api import DistributorAPI

    api = DistributorAPI(distributor, host="0.0.0.0", port=8080, distribution=info)
    trio.run(api.start)
"""

from .blockchain import (
    MerkleTree,
    BalanceTree,
    EmptyTreeError,
    hash_leaf,
    verify_claim,
)
from .protocol import (
    MerkleDistributor,
    LedgerState,
    ClaimedEvent,
    ClaimInfo,
    MerkleDistributorInfo,
    parse_balance_map,
    verify_distribution_info,
    LedgerStore,
    DistributorError,
    InvalidProofError,
    NotOwnerError,
    NotMaintainerError,
    InsufficientFundsError,
    TransferFailedError,
    BalanceMapError,
)
from .identity import InvalidAddressError, normalize_address
from .config import (
    DistributorConfig,
    ZERO_BYTES32,
    ZERO_ADDRESS,
    VERSION,
)

__version__ = VERSION

__all__ = [
    # Tree
    "MerkleTree",
    "BalanceTree",
    "EmptyTreeError",
    "hash_leaf",
    "verify_claim",
    # Distribution
    "MerkleDistributor",
    "LedgerState",
    "ClaimedEvent",
    "ClaimInfo",
    "MerkleDistributorInfo",
    "parse_balance_map",
    "verify_distribution_info",
    "LedgerStore",
    # Errors
    "DistributorError",
    "InvalidProofError",
    "NotOwnerError",
    "NotMaintainerError",
    "InsufficientFundsError",
    "TransferFailedError",
    "BalanceMapError",
    "InvalidAddressError",
    # Identity / config
    "normalize_address",
    "DistributorConfig",
    "ZERO_BYTES32",
    "ZERO_ADDRESS",
    "__version__",
]
