"""
merkle_distributor/protocol/

Distribution protocol: balance map parsing, the cumulative claim ledger
and its persistence.
"""

from .balance_map import (
    BalanceMapError,
    ClaimInfo,
    MerkleDistributorInfo,
    parse_amount,
    parse_balance_map,
    to_hex_quantity,
    verify_distribution_info,
)
from .distributor import (
    MerkleDistributor,
    LedgerState,
    LedgerEvent,
    ClaimedEvent,
    DepositedEvent,
    MerkleRootUpdatedEvent,
    MaintainerUpdatedEvent,
    OwnershipTransferredEvent,
    EmergencyWithdrawalEvent,
    DistributorError,
    InvalidProofError,
    NotOwnerError,
    NotMaintainerError,
    InsufficientFundsError,
    TransferFailedError,
    AlreadyInitializedError,
    NotInitializedError,
    ZeroAddressError,
    ReentrantCallError,
)
from .storage import (
    LedgerStore,
    StorageError,
    load_distribution_info,
    save_distribution_info,
)

__all__ = [
    # Balance map
    "BalanceMapError",
    "ClaimInfo",
    "MerkleDistributorInfo",
    "parse_amount",
    "parse_balance_map",
    "to_hex_quantity",
    "verify_distribution_info",
    # Ledger
    "MerkleDistributor",
    "LedgerState",
    "LedgerEvent",
    "ClaimedEvent",
    "DepositedEvent",
    "MerkleRootUpdatedEvent",
    "MaintainerUpdatedEvent",
    "OwnershipTransferredEvent",
    "EmergencyWithdrawalEvent",
    # Errors
    "DistributorError",
    "InvalidProofError",
    "NotOwnerError",
    "NotMaintainerError",
    "InsufficientFundsError",
    "TransferFailedError",
    "AlreadyInitializedError",
    "NotInitializedError",
    "ZeroAddressError",
    "ReentrantCallError",
    # Storage
    "LedgerStore",
    "StorageError",
    "load_distribution_info",
    "save_distribution_info",
]
