"""
merkle_distributor/examples/epoch_distribution.py

Example of running a cumulative distribution over several epochs.

This shows how an operator uses merkle_distributor to:
1. Publish an entitlement snapshot (root + per-account proofs)
2. Deploy and fund the ledger
3. Let accounts claim, including third-party claims
4. Rotate to a new snapshot with larger cumulative totals
5. Top up only the new money and pay out the deltas

Usage:
    python examples/epoch_distribution.py
    python examples/epoch_distribution.py serve   # also run the REST API
"""

import logging

import trio
from eth_utils import to_checksum_address

from merkle_distributor import MerkleDistributor, parse_balance_map, verify_distribution_info
from merkle_distributor.api import DistributorAPI

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [OPERATOR] %(levelname)s: %(message)s'
)
logger = logging.getLogger(__name__)


OPERATOR = to_checksum_address("0x" + "0a" * 20)
ROOT_MAINTAINER = to_checksum_address("0x" + "0b" * 20)
RELAYER = to_checksum_address("0x" + "0c" * 20)

ACCOUNTS = [to_checksum_address("0x" + f"{i:02x}" * 20) for i in range(0x11, 0x16)]

# Cumulative earnings at the end of each epoch
EPOCHS = [
    {ACCOUNTS[0]: 200, ACCOUNTS[1]: 300, ACCOUNTS[2]: 250},
    {ACCOUNTS[0]: 260, ACCOUNTS[1]: 300, ACCOUNTS[2]: 400, ACCOUNTS[3]: 90},
    {ACCOUNTS[0]: 260, ACCOUNTS[1]: 420, ACCOUNTS[2]: 400, ACCOUNTS[3]: 150, ACCOUNTS[4]: 10},
]


def run_epochs():
    """Run every epoch; returns the ledger and the last distribution."""
    distributor = MerkleDistributor.deploy(OPERATOR, ROOT_MAINTAINER)
    funded = 0
    info = None

    for epoch, balances in enumerate(EPOCHS, start=1):
        info = parse_balance_map(balances)
        assert verify_distribution_info(info)

        distributor.set_merkle_root(ROOT_MAINTAINER, info.merkle_root)

        # Only the growth of the cumulative total is new money
        top_up = info.token_total_int - funded
        distributor.deposit(OPERATOR, top_up)
        funded += top_up

        for account in balances:
            claim = info.get_claim(account)
            event = distributor.claim(
                RELAYER, claim.index, account, claim.amount_int, claim.proof
            )
            logger.info(
                f"Epoch {epoch}: {account} entitled to {claim.amount_int}, "
                f"received {event.amount}"
            )

        logger.info(
            f"Epoch {epoch} done: root {info.merkle_root[:18]}..., "
            f"funded {funded}, balance {distributor.balance}"
        )

    for account, paid in sorted(distributor.paid_out.items()):
        logger.info(f"Total paid to {account}: {paid}")

    return distributor, info


async def serve(distributor, info):
    """Expose the final state over the REST API."""
    api = DistributorAPI(distributor, host="127.0.0.1", port=8080, distribution=info)
    logger.info("REST API on http://127.0.0.1:8080 (try /status, /proof/<account>)")
    await api.start()


if __name__ == "__main__":
    import sys

    mode = sys.argv[1] if len(sys.argv) > 1 else "run"

    distributor, info = run_epochs()
    if mode == "serve":
        trio.run(serve, distributor, info)
