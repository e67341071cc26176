"""
merkle_distributor/protocol/balance_map.py

Turns an account -> amount balance map into a published distribution:
merkle root, total token amount, and a claim package (index, amount,
proof) per account.

Index assignment is deterministic: accounts are ordered by their 20 address
bytes, so the same map always yields the same indices and root no matter
how the input was ordered.

Usage:
    from merkle_distributor.protocol.balance_map import parse_balance_map

    info = parse_balance_map({
        "0x1111111111111111111111111111111111111111": 200,
        "0x2222222222222222222222222222222222222222": "300",
    })
    info.merkle_root   # '0x...'
    info.token_total   # '0x01f4'
    info.claims[account].proof
"""

import logging
import string
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ..blockchain.balance_tree import BalanceTree, verify_claim
from ..config import UINT256_MAX
from ..identity.address import address_to_bytes, normalize_address

logger = logging.getLogger("merkle_distributor.protocol.balance_map")


class BalanceMapError(ValueError):
    """Raised when a balance map cannot be turned into a distribution."""
    pass


# ============================================================================
# AMOUNT ENCODING
# ============================================================================

def parse_amount(value: Any) -> int:
    """
    Parse an entitlement amount.

    Accepts non-negative ints, decimal strings and 0x-prefixed hex strings.
    Floats and bools are rejected even when integral.

    Raises:
        BalanceMapError: If value is not a non-negative uint256
    """
    if isinstance(value, bool):
        raise BalanceMapError(f"Invalid amount: {value!r}")

    if isinstance(value, int):
        amount = value
    elif isinstance(value, str):
        text = value.strip()
        if text[:2] in ("0x", "0X"):
            digits = text[2:]
            if not digits or not all(c in string.hexdigits for c in digits):
                raise BalanceMapError(f"Invalid hex amount: {value!r}")
            amount = int(digits, 16)
        elif text and text.isascii() and text.isdigit():
            amount = int(text)
        else:
            raise BalanceMapError(f"Invalid amount: {value!r}")
    else:
        raise BalanceMapError(
            f"Amount must be an integer or integer string, got {type(value).__name__}"
        )

    if amount < 0:
        raise BalanceMapError(f"Amount must be non-negative, got {amount}")
    if amount > UINT256_MAX:
        raise BalanceMapError(f"Amount exceeds uint256: {amount}")
    return amount


def to_hex_quantity(value: int) -> str:
    """
    Minimal even-length hex encoding of a big integer.

    Examples:
        0   -> '0x00'
        200 -> '0xc8'
        750 -> '0x02ee'
    """
    digits = format(value, "x")
    if len(digits) % 2:
        digits = "0" + digits
    return "0x" + digits


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class ClaimInfo:
    """Claim package handed to one account."""
    index: int
    amount: str                      # minimal hex quantity
    proof: List[str]                 # hex sibling hashes, leaf to root
    flags: Optional[Dict[str, bool]] = None

    @property
    def amount_int(self) -> int:
        return int(self.amount, 16)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "index": self.index,
            "amount": self.amount,
            "proof": list(self.proof),
        }
        if self.flags is not None:
            data["flags"] = dict(self.flags)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClaimInfo":
        return cls(
            index=int(data["index"]),
            amount=data["amount"],
            proof=list(data["proof"]),
            flags=data.get("flags"),
        )


@dataclass
class MerkleDistributorInfo:
    """Everything published off-ledger for one entitlement snapshot."""
    merkle_root: str
    token_total: str                 # minimal hex quantity
    claims: Dict[str, ClaimInfo] = field(default_factory=dict)

    @property
    def token_total_int(self) -> int:
        return int(self.token_total, 16)

    def get_claim(self, account: Union[str, bytes]) -> Optional[ClaimInfo]:
        """Claim package for an account (any address spelling), or None."""
        return self.claims.get(normalize_address(account))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "merkleRoot": self.merkle_root,
            "tokenTotal": self.token_total,
            "claims": {account: c.to_dict() for account, c in self.claims.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MerkleDistributorInfo":
        return cls(
            merkle_root=data["merkleRoot"],
            token_total=data["tokenTotal"],
            claims={
                normalize_address(account): ClaimInfo.from_dict(c)
                for account, c in data["claims"].items()
            },
        )


# ============================================================================
# PARSER
# ============================================================================

def _iter_entries(balances: Union[Mapping[str, Any], Iterable[Dict[str, Any]]]):
    """
    Yield (account, raw_amount, reasons) from either input format.

    Formats:
        {account: amount}
        [{"address": account, "earnings": amount, "reasons": "a,b"}]
    """
    if isinstance(balances, Mapping):
        for account, amount in balances.items():
            yield account, amount, None
        return

    for entry in balances:
        if not isinstance(entry, Mapping) or "address" not in entry or "earnings" not in entry:
            raise BalanceMapError(f"Malformed balance entry: {entry!r}")
        yield entry["address"], entry["earnings"], entry.get("reasons")


def parse_balance_map(
    balances: Union[Mapping[str, Any], Iterable[Dict[str, Any]]]
) -> MerkleDistributorInfo:
    """
    Build the distribution for a balance map.

    Args:
        balances: account -> amount mapping, or a list of
            {"address", "earnings", "reasons"} records

    Returns:
        MerkleDistributorInfo with root, token total and per-account claims

    Raises:
        InvalidAddressError: If an account is malformed
        BalanceMapError: On duplicate accounts, bad amounts or empty input
    """
    data_by_address: Dict[str, Dict[str, Any]] = {}

    for account, raw_amount, reasons in _iter_entries(balances):
        parsed = normalize_address(account)
        if parsed in data_by_address:
            raise BalanceMapError(f"Duplicate address: {parsed}")

        amount = parse_amount(raw_amount)
        flags = None
        if reasons is not None:
            flags = {r.strip(): True for r in str(reasons).split(",") if r.strip()}

        data_by_address[parsed] = {"amount": amount, "flags": flags}

    if not data_by_address:
        raise BalanceMapError("Balance map is empty")

    sorted_addresses = sorted(data_by_address, key=address_to_bytes)

    tree = BalanceTree([
        {"account": address, "amount": data_by_address[address]["amount"]}
        for address in sorted_addresses
    ])

    claims: Dict[str, ClaimInfo] = {}
    token_total = 0
    for index, address in enumerate(sorted_addresses):
        entry = data_by_address[address]
        token_total += entry["amount"]
        claims[address] = ClaimInfo(
            index=index,
            amount=to_hex_quantity(entry["amount"]),
            proof=tree.get_proof(index, address, entry["amount"]),
            flags=entry["flags"],
        )

    info = MerkleDistributorInfo(
        merkle_root=tree.get_hex_root(),
        token_total=to_hex_quantity(token_total),
        claims=claims,
    )

    logger.info(
        f"Parsed balance map: {len(claims)} accounts, total {token_total}, "
        f"root {info.merkle_root}"
    )
    return info


def verify_distribution_info(info: MerkleDistributorInfo) -> bool:
    """
    Independently check a published distribution.

    Rebuilds the tree from the claims, and checks that indices are dense,
    that the root and token total match, and that every proof verifies.
    """
    if not info.claims:
        logger.warning("Distribution has no claims")
        return False

    by_index = sorted(info.claims.items(), key=lambda item: item[1].index)
    indices = [c.index for _, c in by_index]
    if indices != list(range(len(by_index))):
        logger.warning(f"Claim indices are not dense 0..{len(by_index) - 1}")
        return False

    tree = BalanceTree([
        {"account": account, "amount": claim.amount_int}
        for account, claim in by_index
    ])
    if tree.get_hex_root() != info.merkle_root.lower():
        logger.warning(
            f"Root mismatch: published {info.merkle_root}, rebuilt {tree.get_hex_root()}"
        )
        return False

    total = sum(claim.amount_int for _, claim in by_index)
    if total != info.token_total_int:
        logger.warning(f"Token total mismatch: published {info.token_total_int}, sum {total}")
        return False

    for account, claim in by_index:
        if not verify_claim(claim.index, account, claim.amount_int, claim.proof, info.merkle_root):
            logger.warning(f"Invalid proof for {account} at index {claim.index}")
            return False

    return True
