"""
merkle_distributor/identity/address.py

Account identity helpers.

Accounts are 20-byte EVM-style addresses. Every address entering the package
is normalized to its EIP-55 checksum form, so two spellings of the same
account always map to the same ledger entry.
"""

import logging
from typing import Union

from eth_utils import is_hex_address, to_canonical_address, to_checksum_address

from ..config import ADDRESS_SIZE, ZERO_ADDRESS

logger = logging.getLogger("merkle_distributor.identity.address")


class InvalidAddressError(ValueError):
    """Raised when a value is not a well-formed 20-byte address."""
    pass


def is_valid_address(value: Union[str, bytes]) -> bool:
    """Check whether value can be normalized to an address."""
    if isinstance(value, (bytes, bytearray)):
        return len(value) == ADDRESS_SIZE
    if not isinstance(value, str):
        return False
    return is_hex_address(value.strip())


def normalize_address(value: Union[str, bytes]) -> str:
    """
    Normalize an address to its checksum form.

    Args:
        value: Hex address (any letter case, 0x-prefixed) or 20 raw bytes

    Returns:
        Checksummed address string

    Raises:
        InvalidAddressError: If value is not a 20-byte address
    """
    if not is_valid_address(value):
        raise InvalidAddressError(f"Invalid address: {value!r}")
    if isinstance(value, (bytes, bytearray)):
        return to_checksum_address(bytes(value))
    return to_checksum_address(value.strip())


def address_to_bytes(value: Union[str, bytes]) -> bytes:
    """Return the 20 canonical bytes of an address."""
    return to_canonical_address(normalize_address(value))


def is_zero_address(value: Union[str, bytes]) -> bool:
    """Check whether value is the zero address."""
    return normalize_address(value) == ZERO_ADDRESS
