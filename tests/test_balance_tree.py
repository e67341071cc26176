"""
merkle_distributor/tests/test_balance_tree.py

Unit tests for entitlement leaves and the BalanceTree.
"""

import pytest
from eth_utils import keccak, to_checksum_address

from merkle_distributor.blockchain.balance_tree import (
    BalanceTree,
    encode_leaf,
    hash_leaf,
    verify_claim,
)
from merkle_distributor.blockchain.merkle_tree import EmptyTreeError, combine_hashes, to_hex
from merkle_distributor.config import UINT256_MAX, ZERO_BYTES32
from merkle_distributor.identity.address import InvalidAddressError


ALICE = to_checksum_address("0x" + "11" * 20)
BOB = to_checksum_address("0x" + "22" * 20)
CAROL = to_checksum_address("0x" + "33" * 20)


@pytest.fixture
def balances():
    return [
        {"account": ALICE, "amount": 100},
        {"account": BOB, "amount": 101},
        {"account": CAROL, "amount": 0},
    ]


@pytest.fixture
def tree(balances):
    return BalanceTree(balances)


# ============================================================================
# Leaf encoding
# ============================================================================

class TestLeafEncoding:
    """Test the 84-byte leaf pre-image."""

    def test_layout(self):
        """Test index, address and amount are packed big-endian."""
        encoded = encode_leaf(1, ALICE, 200)

        assert len(encoded) == 84
        assert encoded[:32] == (1).to_bytes(32, "big")
        assert encoded[32:52] == bytes.fromhex("11" * 20)
        assert encoded[52:] == (200).to_bytes(32, "big")

    def test_hash_is_keccak_of_encoding(self):
        """Test leaf hash is keccak256 of the packed encoding."""
        assert hash_leaf(0, BOB, 5) == keccak(encode_leaf(0, BOB, 5))

    def test_address_spelling_does_not_matter(self):
        """Test lowercase and checksum spellings hash the same."""
        assert hash_leaf(3, ALICE.lower(), 7) == hash_leaf(3, ALICE, 7)
        assert hash_leaf(3, bytes.fromhex("11" * 20), 7) == hash_leaf(3, ALICE, 7)

    def test_uint256_bounds(self):
        """Test the full uint256 range is accepted and nothing beyond."""
        assert len(encode_leaf(UINT256_MAX, ALICE, UINT256_MAX)) == 84

        with pytest.raises(ValueError):
            encode_leaf(-1, ALICE, 1)
        with pytest.raises(ValueError):
            encode_leaf(0, ALICE, UINT256_MAX + 1)
        with pytest.raises(ValueError):
            encode_leaf(0, ALICE, True)

    def test_invalid_account(self):
        """Test malformed accounts are rejected."""
        with pytest.raises(InvalidAddressError):
            encode_leaf(0, "0x1234", 1)


# ============================================================================
# Claim verification
# ============================================================================

class TestVerifyClaim:
    """Test the pure verify_claim predicate."""

    def test_valid_claims(self, tree, balances):
        """Test every entry's proof verifies against the root."""
        root = tree.get_hex_root()
        for i, b in enumerate(balances):
            proof = tree.get_proof(i, b["account"], b["amount"])
            assert verify_claim(i, b["account"], b["amount"], proof, root)
            assert BalanceTree.verify_proof(i, b["account"], b["amount"], proof, tree.get_root())

    def test_wrong_amount(self, tree):
        """Test changing the amount breaks the proof."""
        proof = tree.get_proof(0, ALICE, 100)
        assert not verify_claim(0, ALICE, 101, proof, tree.get_hex_root())

    def test_wrong_index(self, tree):
        """Test changing the index breaks the proof."""
        proof = tree.get_proof(1, BOB, 101)
        assert not verify_claim(0, BOB, 101, proof, tree.get_hex_root())

    def test_wrong_account(self, tree):
        """Test another account cannot reuse a proof."""
        proof = tree.get_proof(0, ALICE, 100)
        assert not verify_claim(0, BOB, 100, proof, tree.get_hex_root())

    def test_zero_root_never_verifies(self, tree):
        """Test nothing verifies against the zero placeholder root."""
        proof = tree.get_proof(0, ALICE, 100)
        assert not verify_claim(0, ALICE, 100, proof, ZERO_BYTES32)

    def test_out_of_range_values_are_false(self, tree):
        """Test impossible leaves yield False instead of raising."""
        root = tree.get_hex_root()
        assert not verify_claim(-1, ALICE, 100, [], root)
        assert not verify_claim(0, ALICE, UINT256_MAX + 1, [], root)

    def test_malformed_root_or_proof_is_false(self, tree):
        """Test malformed hashes yield False."""
        proof = tree.get_proof(0, ALICE, 100)
        assert not verify_claim(0, ALICE, 100, proof, "0xnope")
        assert not verify_claim(0, ALICE, 100, proof[:1] + ["0x12"], tree.get_hex_root())

    def test_single_entry_tree(self):
        """Test a one-entry tree: root is the leaf, proof is empty."""
        tree = BalanceTree([{"account": ALICE, "amount": 42}])

        assert tree.get_root() == hash_leaf(0, ALICE, 42)
        assert tree.get_proof(0, ALICE, 42) == []
        assert verify_claim(0, ALICE, 42, [], tree.get_hex_root())


# ============================================================================
# BalanceTree
# ============================================================================

class TestBalanceTree:
    """Test BalanceTree construction and proof lookup."""

    def test_empty(self):
        """Test an empty balance list is rejected."""
        with pytest.raises(EmptyTreeError):
            BalanceTree([])

    def test_root_matches_manual_construction(self, tree):
        """Test the three-entry root against hand-combined leaves."""
        l0 = hash_leaf(0, ALICE, 100)
        l1 = hash_leaf(1, BOB, 101)
        l2 = hash_leaf(2, CAROL, 0)
        expected = combine_hashes(combine_hashes(l0, l1), combine_hashes(l2, l2))

        assert tree.get_root() == expected
        assert tree.get_hex_root() == to_hex(expected)

    def test_proof_for_missing_leaf(self, tree):
        """Test proof for a leaf that is not at that index."""
        with pytest.raises(ValueError):
            tree.get_proof(0, ALICE, 999)
        with pytest.raises(ValueError):
            tree.get_proof(5, ALICE, 100)

    def test_accounts_normalized(self):
        """Test accounts are stored in checksum form."""
        tree = BalanceTree([{"account": ALICE.lower(), "amount": 1}])
        assert tree.balances[0]["account"] == ALICE
        assert len(tree) == 1

    def test_proofs_are_hex(self, tree):
        """Test proofs come back as 0x hex strings."""
        proof = tree.get_proof(2, CAROL, 0)
        assert len(proof) == 2
        assert all(p.startswith("0x") and len(p) == 66 for p in proof)
        # Duplicated node proves against itself
        assert proof[0] == to_hex(hash_leaf(2, CAROL, 0))
