"""
merkle_distributor/config.py

Configuration constants and data classes for merkle_distributor.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


# Hash and integer widths of the leaf wire format
HASH_SIZE = 32                      # keccak256 digest
ADDRESS_SIZE = 20                   # EVM-style account identifier
UINT256_SIZE = 32                   # big-endian uint256
UINT256_MAX = 2 ** 256 - 1

# Placeholder root of a freshly deployed ledger (never a live distribution)
ZERO_BYTES32 = "0x" + "00" * HASH_SIZE
ZERO_ADDRESS = "0x" + "00" * ADDRESS_SIZE

# Error messages (callers match on the exact text)
ERR_INVALID_PROOF = "MerkleDistributor: Invalid proof."
ERR_NOT_OWNER = "Ownable: caller is not the owner"
ERR_NOT_MAINTAINER = "onlyMaintainer: caller is not the maintainer"
ERR_INSUFFICIENT_BALANCE = "Address: insufficient balance"
ERR_TRANSFER_FAILED = "Address: unable to send value, recipient may have reverted"
ERR_ALREADY_INITIALIZED = "Initializable: contract is already initialized"
ERR_NOT_INITIALIZED = "MerkleDistributor: not initialized"
ERR_ZERO_OWNER = "Ownable: new owner is the zero address"
ERR_REENTRANT_CALL = "ReentrancyGuard: reentrant call"

# Recent ledger events kept in memory (older ones are dropped)
EVENT_LOG_SIZE = 1000

# Default storage paths
DEFAULT_STATE_DIR = Path.home() / ".merkle_distributor"
DEFAULT_STATE_FILE = DEFAULT_STATE_DIR / "ledger.json"

# REST API defaults
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 8080

# Environment variables
ENV_STATE = "MERKLE_DISTRIBUTOR_STATE"
ENV_API_HOST = "MERKLE_DISTRIBUTOR_API_HOST"
ENV_API_PORT = "MERKLE_DISTRIBUTOR_API_PORT"
ENV_LOG_LEVEL = "MERKLE_DISTRIBUTOR_LOG_LEVEL"
ENV_DISTRIBUTION = "MERKLE_DISTRIBUTOR_DISTRIBUTION"

VERSION = "0.1.0"


@dataclass
class APIConfig:
    """Configuration for the REST API server."""
    host: str = DEFAULT_API_HOST
    port: int = DEFAULT_API_PORT
    enable_metrics: bool = True


@dataclass
class DistributorConfig:
    """Top-level configuration shared by the CLI and the API server."""
    state_path: Path = DEFAULT_STATE_FILE
    distribution_path: Optional[Path] = None  # published MerkleDistributorInfo JSON
    log_level: str = "INFO"
    api: APIConfig = field(default_factory=APIConfig)

    @classmethod
    def from_env(cls) -> "DistributorConfig":
        """
        Build configuration from environment variables.

        Unset variables fall back to the defaults above.
        """
        config = cls()

        state = os.environ.get(ENV_STATE)
        if state:
            config.state_path = Path(state).expanduser()

        distribution = os.environ.get(ENV_DISTRIBUTION)
        if distribution:
            config.distribution_path = Path(distribution).expanduser()

        log_level = os.environ.get(ENV_LOG_LEVEL)
        if log_level:
            config.log_level = log_level.upper()

        host = os.environ.get(ENV_API_HOST)
        if host:
            config.api.host = host

        port = os.environ.get(ENV_API_PORT)
        if port:
            try:
                config.api.port = int(port)
            except ValueError:
                raise ValueError(f"Invalid {ENV_API_PORT}: {port!r}")

        return config
