"""
merkle_distributor/protocol/distributor.py

Cumulative merkle distributor ledger.

Holds the current merkle root, the owner/maintainer pair, the custodied
balance and, per account, the cumulative amount already claimed. Accounts
prove an entitlement (index, account, amount) against the current root and
receive the difference between that amount and what they already claimed.

Root rotation replaces the root but never the claimed amounts, so a newer
snapshot carrying a larger total entitlement pays out only the top-up.

Every operation runs under one lock and either fully applies or raises
with no state change.

Usage:
    from merkle_distributor.protocol.distributor import MerkleDistributor

    distributor = MerkleDistributor.deploy(deployer, maintainer, info.merkle_root)
    distributor.deposit(funder, info.token_total_int)

    claim = info.get_claim(account)
    event = distributor.claim(anyone, claim.index, account, claim.amount_int, claim.proof)
    event.amount   # transferred delta (0 for a repeated claim)
"""

import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Union

from ..blockchain.balance_tree import verify_claim
from ..blockchain.merkle_tree import HashLike, to_bytes32, to_hex
from ..config import (
    ERR_ALREADY_INITIALIZED,
    ERR_INSUFFICIENT_BALANCE,
    ERR_INVALID_PROOF,
    ERR_NOT_INITIALIZED,
    ERR_NOT_MAINTAINER,
    ERR_NOT_OWNER,
    ERR_REENTRANT_CALL,
    ERR_TRANSFER_FAILED,
    ERR_ZERO_OWNER,
    EVENT_LOG_SIZE,
    UINT256_MAX,
    ZERO_ADDRESS,
    ZERO_BYTES32,
)
from ..identity.address import is_zero_address, normalize_address

logger = logging.getLogger("merkle_distributor.protocol.distributor")

Address = Union[str, bytes]
PayoutHook = Callable[[str, int], None]


# ============================================================================
# ERRORS
# ============================================================================

class DistributorError(Exception):
    """Base class for ledger errors. str(exc) is the fixed message."""
    message = "MerkleDistributor: error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class InvalidProofError(DistributorError):
    """Leaf and proof do not resolve to the current root."""
    message = ERR_INVALID_PROOF


class NotOwnerError(DistributorError):
    message = ERR_NOT_OWNER


class NotMaintainerError(DistributorError):
    message = ERR_NOT_MAINTAINER


class InsufficientFundsError(DistributorError):
    """Ledger balance is below the amount to transfer."""
    message = ERR_INSUFFICIENT_BALANCE


class TransferFailedError(DistributorError):
    """The payout hook refused the transfer."""
    message = ERR_TRANSFER_FAILED


class AlreadyInitializedError(DistributorError):
    message = ERR_ALREADY_INITIALIZED


class NotInitializedError(DistributorError):
    message = ERR_NOT_INITIALIZED


class ZeroAddressError(DistributorError):
    message = ERR_ZERO_OWNER


class ReentrantCallError(DistributorError):
    """The ledger was called back from inside its own payout hook."""
    message = ERR_REENTRANT_CALL


# ============================================================================
# EVENTS
# ============================================================================

@dataclass(frozen=True)
class LedgerEvent:
    """Base class for events emitted by the ledger."""

    @property
    def name(self) -> str:
        return type(self).__name__.replace("Event", "")

    def to_dict(self) -> Dict[str, Any]:
        data = {"event": self.name}
        data.update(self.__dict__)
        return data


@dataclass(frozen=True)
class ClaimedEvent(LedgerEvent):
    """Emitted by every successful claim; amount is the transferred delta."""
    index: int
    account: str
    amount: int


@dataclass(frozen=True)
class DepositedEvent(LedgerEvent):
    sender: str
    amount: int


@dataclass(frozen=True)
class MerkleRootUpdatedEvent(LedgerEvent):
    previous_root: str
    new_root: str


@dataclass(frozen=True)
class MaintainerUpdatedEvent(LedgerEvent):
    previous_maintainer: str
    new_maintainer: str


@dataclass(frozen=True)
class OwnershipTransferredEvent(LedgerEvent):
    previous_owner: str
    new_owner: str


@dataclass(frozen=True)
class EmergencyWithdrawalEvent(LedgerEvent):
    destination: str
    amount: int


# ============================================================================
# LEDGER STATE
# ============================================================================

@dataclass
class LedgerState:
    """Persistent state of one distributor."""
    merkle_root: str = ZERO_BYTES32
    owner: str = ZERO_ADDRESS
    maintainer: str = ZERO_ADDRESS
    balance: int = 0
    claimed_amount: Dict[str, int] = field(default_factory=dict)
    initialized: bool = False
    updated_at: int = 0

    def copy(self) -> "LedgerState":
        return LedgerState(
            merkle_root=self.merkle_root,
            owner=self.owner,
            maintainer=self.maintainer,
            balance=self.balance,
            claimed_amount=dict(self.claimed_amount),
            initialized=self.initialized,
            updated_at=self.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        # Amounts are uint256; keep them as decimal strings in JSON
        return {
            "merkle_root": self.merkle_root,
            "owner": self.owner,
            "maintainer": self.maintainer,
            "balance": str(self.balance),
            "claimed_amount": {a: str(v) for a, v in self.claimed_amount.items()},
            "initialized": self.initialized,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerState":
        return cls(
            merkle_root=to_hex(to_bytes32(data["merkle_root"])),
            owner=normalize_address(data["owner"]),
            maintainer=normalize_address(data["maintainer"]),
            balance=int(data["balance"]),
            claimed_amount={
                normalize_address(a): int(v)
                for a, v in data.get("claimed_amount", {}).items()
            },
            initialized=bool(data.get("initialized", True)),
            updated_at=int(data.get("updated_at", 0)),
        )


# ============================================================================
# DISTRIBUTOR
# ============================================================================

class MerkleDistributor:
    """
    Thread-safe cumulative claim ledger.

    Every mutating method takes the calling identity first (the transaction
    sender). Access control:
    - owner: set_maintainer, emergency_withdraw_new, transfer_ownership,
      renounce_ownership
    - maintainer: set_merkle_root
    - anyone: claim (on behalf of any account), deposit

    Funds leave the ledger only through the payout hook, called as
    payout(recipient, amount) while the lock is held. If the hook raises,
    the operation fails with TransferFailedError and nothing changes. A hook
    that calls back into a mutating operation gets ReentrantCallError.
    """

    def __init__(
        self,
        payout: Optional[PayoutHook] = None,
        state: Optional[LedgerState] = None,
        event_log_size: int = EVENT_LOG_SIZE,
    ):
        """
        Create a ledger.

        Args:
            payout: Funds transfer hook; defaults to recording payouts in
                self.paid_out
            state: Existing state to resume from (e.g. loaded from storage)
            event_log_size: Number of recent events kept in self.events
        """
        self._state = state.copy() if state is not None else LedgerState()
        self._payout = payout or self._record_payout
        self._lock = threading.RLock()
        # Set while the payout hook runs; the RLock alone would let it re-enter
        self._in_payout = False

        self.paid_out: Dict[str, int] = defaultdict(int)
        self.events: Deque[LedgerEvent] = deque(maxlen=event_log_size)
        self._subscribers: List[Callable[[LedgerEvent], None]] = []

    @classmethod
    def deploy(
        cls,
        deployer: Address,
        maintainer: Address,
        merkle_root: HashLike = ZERO_BYTES32,
        payout: Optional[PayoutHook] = None,
    ) -> "MerkleDistributor":
        """Create and initialize a ledger; the deployer becomes owner."""
        distributor = cls(payout=payout)
        distributor.initialize(deployer, maintainer, merkle_root)
        return distributor

    def _record_payout(self, recipient: str, amount: int) -> None:
        self.paid_out[recipient] += amount

    # ========================================================================
    # EVENTS
    # ========================================================================

    def subscribe(self, callback: Callable[[LedgerEvent], None]) -> None:
        """Register a callback invoked with every emitted event."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[LedgerEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _notify(self, event: LedgerEvent) -> None:
        """Deliver a committed event; subscriber errors do not undo it."""
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event subscriber failed on {event.name}: {e}")

    # ========================================================================
    # GUARDS
    # ========================================================================

    def _require_not_in_payout(self) -> None:
        if self._in_payout:
            logger.warning("Rejected ledger call made from inside the payout hook")
            raise ReentrantCallError()

    def _require_initialized(self) -> None:
        self._require_not_in_payout()
        if not self._state.initialized:
            raise NotInitializedError()

    def _require_owner(self, caller: str) -> None:
        self._require_initialized()
        if caller != self._state.owner or is_zero_address(caller):
            logger.warning(f"Rejected owner-only call from {caller}")
            raise NotOwnerError()

    def _require_maintainer(self, caller: str) -> None:
        self._require_initialized()
        if caller != self._state.maintainer:
            logger.warning(f"Rejected maintainer-only call from {caller}")
            raise NotMaintainerError()

    def _send_value(self, recipient: str, amount: int) -> None:
        """Transfer amount out of custody via the payout hook (no state change)."""
        if self._state.balance < amount:
            raise InsufficientFundsError()
        self._in_payout = True
        try:
            self._payout(recipient, amount)
        except Exception as e:
            logger.error(f"Payout of {amount} to {recipient} failed: {e}")
            raise TransferFailedError() from e
        finally:
            self._in_payout = False

    def _commit(self, event: LedgerEvent) -> None:
        self._state.updated_at = int(time.time())
        self.events.append(event)

    # ========================================================================
    # VIEWS
    # ========================================================================

    @property
    def is_initialized(self) -> bool:
        return self._state.initialized

    @property
    def owner(self) -> str:
        return self._state.owner

    @property
    def maintainer(self) -> str:
        return self._state.maintainer

    @property
    def merkle_root(self) -> str:
        return self._state.merkle_root

    @property
    def balance(self) -> int:
        return self._state.balance

    def claimed_amount(self, account: Address) -> int:
        """Cumulative amount already paid to account (0 if never claimed)."""
        return self._state.claimed_amount.get(normalize_address(account), 0)

    def snapshot(self) -> LedgerState:
        """Consistent copy of the current state."""
        with self._lock:
            return self._state.copy()

    # ========================================================================
    # INITIALIZATION
    # ========================================================================

    def initialize(self, caller: Address, maintainer: Address, merkle_root: HashLike) -> None:
        """
        Initialize the ledger. Runs exactly once.

        Args:
            caller: Deployer; becomes owner
            maintainer: Identity allowed to rotate the root
            merkle_root: Initial root (ZERO_BYTES32 for "no distribution yet")

        Raises:
            AlreadyInitializedError: On a second call
        """
        owner = normalize_address(caller)
        maintainer = normalize_address(maintainer)
        root = to_hex(to_bytes32(merkle_root))

        with self._lock:
            self._require_not_in_payout()
            if self._state.initialized:
                raise AlreadyInitializedError()

            self._state.owner = owner
            self._state.maintainer = maintainer
            self._state.merkle_root = root
            self._state.balance = 0
            self._state.claimed_amount = {}
            self._state.initialized = True
            self._state.updated_at = int(time.time())

        logger.info(
            f"Distributor initialized: owner={owner} maintainer={maintainer} root={root}"
        )

    # ========================================================================
    # OWNER OPERATIONS
    # ========================================================================

    def set_maintainer(self, caller: Address, new_maintainer: Address) -> None:
        """Replace the maintainer. Owner only."""
        caller = normalize_address(caller)
        new_maintainer = normalize_address(new_maintainer)

        with self._lock:
            self._require_owner(caller)
            previous = self._state.maintainer
            self._state.maintainer = new_maintainer
            event = MaintainerUpdatedEvent(previous, new_maintainer)
            self._commit(event)

        logger.info(f"Maintainer updated: {previous} -> {new_maintainer}")
        self._notify(event)

    def transfer_ownership(self, caller: Address, new_owner: Address) -> None:
        """Hand ownership to new_owner. Owner only; zero address rejected."""
        caller = normalize_address(caller)
        new_owner = normalize_address(new_owner)

        with self._lock:
            self._require_owner(caller)
            if is_zero_address(new_owner):
                raise ZeroAddressError()
            event = self._set_owner(new_owner)

        self._notify(event)

    def renounce_ownership(self, caller: Address) -> None:
        """
        Give up ownership for good.

        Owner-only operations (including emergency withdrawal) become
        unavailable afterwards.
        """
        caller = normalize_address(caller)

        with self._lock:
            self._require_owner(caller)
            event = self._set_owner(ZERO_ADDRESS)

        self._notify(event)

    def _set_owner(self, new_owner: str) -> OwnershipTransferredEvent:
        previous = self._state.owner
        self._state.owner = new_owner
        event = OwnershipTransferredEvent(previous, new_owner)
        self._commit(event)
        logger.info(f"Ownership transferred: {previous} -> {new_owner}")
        return event

    def emergency_withdraw_new(self, caller: Address, destination: Address) -> int:
        """
        Move the whole balance to destination. Owner only.

        Claimed amounts are untouched.

        Returns:
            Amount withdrawn
        """
        caller = normalize_address(caller)
        destination = normalize_address(destination)

        with self._lock:
            self._require_owner(caller)
            amount = self._state.balance
            if amount > 0:
                self._send_value(destination, amount)
            self._state.balance = 0
            event = EmergencyWithdrawalEvent(destination, amount)
            self._commit(event)

        logger.info(f"Emergency withdrawal of {amount} to {destination}")
        self._notify(event)
        return amount

    # ========================================================================
    # MAINTAINER OPERATIONS
    # ========================================================================

    def set_merkle_root(self, caller: Address, new_root: HashLike) -> None:
        """
        Rotate to a new entitlement snapshot. Maintainer only.

        Claimed amounts carry over: entitlements in the new tree are totals
        against which earlier claims are netted.
        """
        caller = normalize_address(caller)
        root = to_hex(to_bytes32(new_root))

        with self._lock:
            self._require_maintainer(caller)
            previous = self._state.merkle_root
            self._state.merkle_root = root
            event = MerkleRootUpdatedEvent(previous, root)
            self._commit(event)

        logger.info(f"Merkle root rotated: {previous} -> {root}")
        self._notify(event)

    # ========================================================================
    # PUBLIC OPERATIONS
    # ========================================================================

    def deposit(self, sender: Address, amount: int) -> None:
        """Add funds to custody. Anyone may deposit."""
        sender = normalize_address(sender)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValueError(f"Deposit amount must be a non-negative integer, got {amount!r}")

        with self._lock:
            self._require_initialized()
            if self._state.balance + amount > UINT256_MAX:
                raise ValueError("Deposit would overflow uint256 balance")
            self._state.balance += amount
            balance = self._state.balance
            event = DepositedEvent(sender, amount)
            self._commit(event)

        logger.info(f"Deposit of {amount} from {sender} (balance {balance})")
        self._notify(event)

    def claim(
        self,
        caller: Address,
        index: int,
        account: Address,
        amount: int,
        proof: Sequence[HashLike],
    ) -> ClaimedEvent:
        """
        Claim the unpaid part of a cumulative entitlement.

        Anyone may submit a claim; funds always go to account.

        Args:
            caller: Submitter of the claim
            index: Leaf index in the current tree
            account: Entitled account
            amount: Cumulative entitlement in the current tree
            proof: Sibling hashes for the leaf

        Returns:
            ClaimedEvent carrying the transferred delta (0 when the
            entitlement is already fulfilled)

        Raises:
            InvalidProofError: Leaf not committed to by the current root
            InsufficientFundsError: Balance below the delta
            TransferFailedError: Payout hook refused the transfer
        """
        caller = normalize_address(caller)
        account = normalize_address(account)

        with self._lock:
            self._require_initialized()

            if not verify_claim(index, account, amount, proof, self._state.merkle_root):
                logger.warning(
                    f"Invalid proof from {caller}: index={index} account={account} "
                    f"amount={amount}"
                )
                raise InvalidProofError()

            already_claimed = self._state.claimed_amount.get(account, 0)
            delta = amount - already_claimed if amount > already_claimed else 0

            if delta > 0:
                try:
                    self._send_value(account, delta)
                except InsufficientFundsError:
                    logger.warning(
                        f"Claim of {delta} for {account} exceeds balance {self._state.balance}"
                    )
                    raise

            self._state.claimed_amount[account] = max(already_claimed, amount)
            self._state.balance -= delta
            event = ClaimedEvent(index=index, account=account, amount=delta)
            self._commit(event)

        logger.info(f"Claimed: index={index} account={account} transferred={delta}")
        self._notify(event)
        return event

    def get_stats(self) -> Dict[str, Any]:
        """Summary used by the API and CLI."""
        with self._lock:
            return {
                "initialized": self._state.initialized,
                "owner": self._state.owner,
                "maintainer": self._state.maintainer,
                "merkle_root": self._state.merkle_root,
                "balance": self._state.balance,
                "claimants": len(self._state.claimed_amount),
                "total_claimed": sum(self._state.claimed_amount.values()),
                "updated_at": self._state.updated_at,
            }
