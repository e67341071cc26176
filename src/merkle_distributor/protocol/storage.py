"""
merkle_distributor/protocol/storage.py

Local disk persistence for ledger state and published distributions.

Only the ledger state is the distributor's own storage. Distribution files
(MerkleDistributorInfo JSON) belong to the off-ledger tooling and are read
here purely for convenience of the CLI and API.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..config import DEFAULT_STATE_FILE
from .balance_map import MerkleDistributorInfo
from .distributor import LedgerState, MerkleDistributor

logger = logging.getLogger("merkle_distributor.protocol.storage")


class StorageError(Exception):
    """Raised when stored data cannot be read or written."""
    pass


def _write_json_atomic(path: Path, data: Dict[str, Any]) -> None:
    """Write JSON so readers see either the old or the new file, never half."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w") as f:
        json.dump(data, f, indent=2, sort_keys=True)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Corrupt JSON in {path}: {e}")
        raise StorageError(f"Corrupt JSON in {path}: {e}") from e


class LedgerStore:
    """
    JSON file holding one LedgerState.

    Usage:
        store = LedgerStore(Path("ledger.json"))
        distributor = store.load_distributor()
        distributor.deposit(funder, 750)
        store.save(distributor)
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else DEFAULT_STATE_FILE

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, source: Union[MerkleDistributor, LedgerState]) -> None:
        """Persist a distributor (or a bare state) to disk."""
        state = source.snapshot() if isinstance(source, MerkleDistributor) else source
        try:
            _write_json_atomic(self.path, state.to_dict())
        except OSError as e:
            logger.error(f"Failed to save ledger state to {self.path}: {e}")
            raise StorageError(f"Failed to save ledger state: {e}") from e
        logger.debug(f"Saved ledger state to {self.path}")

    def load(self) -> Optional[LedgerState]:
        """
        Load the stored state.

        Returns:
            LedgerState, or None if nothing has been stored yet

        Raises:
            StorageError: If the file exists but cannot be parsed
        """
        if not self.path.exists():
            return None
        data = _read_json(self.path)
        try:
            return LedgerState.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Invalid ledger state in {self.path}: {e}")
            raise StorageError(f"Invalid ledger state in {self.path}: {e}") from e

    def load_distributor(self, payout=None) -> MerkleDistributor:
        """
        Resume a distributor from disk.

        Raises:
            StorageError: If no state is stored or it is unreadable
        """
        state = self.load()
        if state is None:
            raise StorageError(f"No ledger state at {self.path}")
        return MerkleDistributor(payout=payout, state=state)


def save_distribution_info(info: MerkleDistributorInfo, path: Union[str, Path]) -> None:
    _write_json_atomic(Path(path), info.to_dict())


def load_distribution_info(path: Union[str, Path]) -> MerkleDistributorInfo:
    """
    Read a published distribution (merkleRoot/tokenTotal/claims JSON).

    Raises:
        StorageError: If the file is malformed
    """
    data = _read_json(Path(path))
    try:
        return MerkleDistributorInfo.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise StorageError(f"Invalid distribution file {path}: {e}") from e
