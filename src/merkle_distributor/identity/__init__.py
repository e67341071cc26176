"""
merkle_distributor/identity/

Account identity - normalizes 20-byte addresses to their checksum form.
"""

from .address import (
    InvalidAddressError,
    is_valid_address,
    normalize_address,
    address_to_bytes,
    is_zero_address,
)

__all__ = [
    "InvalidAddressError",
    "is_valid_address",
    "normalize_address",
    "address_to_bytes",
    "is_zero_address",
]
