"""
merkle_distributor/tests/test_api_metrics.py

Unit tests for REST API and Prometheus metrics.
"""

import json
import threading
from unittest.mock import Mock

import pytest
from eth_utils import to_checksum_address

from merkle_distributor.api import DistributorAPI, Request, Response
from merkle_distributor.metrics import DistributorMetrics
from merkle_distributor.protocol.balance_map import parse_balance_map
from merkle_distributor.protocol.distributor import (
    ClaimedEvent,
    DepositedEvent,
    MerkleDistributor,
    NotOwnerError,
)
from merkle_distributor.protocol.storage import StorageError


OWNER = to_checksum_address("0x" + "aa" * 20)
MAINTAINER = to_checksum_address("0x" + "bb" * 20)
ALICE = to_checksum_address("0x" + "11" * 20)
BOB = to_checksum_address("0x" + "22" * 20)
CAROL = to_checksum_address("0x" + "33" * 20)


@pytest.fixture
def info():
    return parse_balance_map({ALICE: 200, BOB: 300, CAROL: 250})


@pytest.fixture
def distributor(info):
    d = MerkleDistributor.deploy(OWNER, MAINTAINER, info.merkle_root)
    d.deposit(OWNER, 750)
    return d


@pytest.fixture
def api(distributor, info):
    return DistributorAPI(distributor, distribution=info)


def make_request(method="GET", path="/", body=None, path_params=None):
    raw = b"" if body is None else json.dumps(body).encode("utf-8")
    return Request(
        method=method,
        path=path,
        query={},
        headers={},
        body=raw,
        path_params=path_params or {},
    )


def claim_body(info, account, **overrides):
    c = info.get_claim(account)
    body = {"index": c.index, "account": account, "amount": c.amount, "proof": c.proof}
    body.update(overrides)
    return body


class TestDistributorMetrics:
    """Test DistributorMetrics class."""

    def test_init(self, distributor):
        """Test DistributorMetrics initialization."""
        metrics = DistributorMetrics(distributor)

        assert metrics.distributor is distributor
        assert metrics._claims == 0
        assert metrics._claimed_amount == 0

    def test_counts_events(self, distributor, info):
        """Test counters follow ledger events."""
        metrics = DistributorMetrics(distributor)
        c = info.get_claim(ALICE)

        distributor.claim(ALICE, c.index, ALICE, c.amount_int, c.proof)
        distributor.claim(ALICE, c.index, ALICE, c.amount_int, c.proof)
        distributor.deposit(OWNER, 10)
        distributor.set_merkle_root(MAINTAINER, info.merkle_root)
        distributor.emergency_withdraw_new(OWNER, OWNER)

        stats = metrics.get_stats()
        assert stats["claims"] == 2
        assert stats["zero_claims"] == 1
        assert stats["claimed_amount"] == 200
        assert stats["deposited_amount"] == 10
        assert stats["root_rotations"] == 1
        assert stats["withdrawn_amount"] == 560

    def test_record_rejection(self, distributor):
        """Test rejections are counted per error type."""
        metrics = DistributorMetrics(distributor)
        metrics.record_rejection(NotOwnerError())
        metrics.record_rejection(NotOwnerError())

        assert metrics.get_stats()["rejected"] == {"NotOwnerError": 2}

    def test_collect_prometheus_format(self, distributor, info):
        """Test collecting metrics in Prometheus format."""
        metrics = DistributorMetrics(distributor)
        metrics.record_rejection(NotOwnerError())

        output = metrics.collect()

        assert "# HELP merkle_distributor_balance" in output
        assert "# TYPE merkle_distributor_balance gauge" in output
        assert "merkle_distributor_balance 750" in output
        assert "merkle_distributor_claims_total 0" in output
        assert 'merkle_distributor_rejected_total{error="NotOwnerError"} 1' in output
        assert f'merkle_root="{info.merkle_root}"' in output

    def test_reset_counters(self, distributor, info):
        """Test resetting counters."""
        metrics = DistributorMetrics(distributor)
        c = info.get_claim(BOB)
        distributor.claim(BOB, c.index, BOB, c.amount_int, c.proof)

        metrics.reset_counters()

        assert metrics._claims == 0
        assert metrics._claimed_amount == 0
        assert metrics.get_stats()["rejected"] == {}

    def test_concurrent_updates(self, distributor):
        """Test counters fed from many threads lose no increments."""
        metrics = DistributorMetrics(distributor)

        def worker():
            for _ in range(1000):
                metrics.record_event(ClaimedEvent(0, ALICE, 2))
                metrics.record_event(DepositedEvent(OWNER, 3))
                metrics.record_rejection(NotOwnerError())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = metrics.get_stats()
        assert stats["claims"] == 8000
        assert stats["claimed_amount"] == 16000
        assert stats["deposited_amount"] == 24000
        assert stats["rejected"] == {"NotOwnerError": 8000}


class TestDistributorAPIRoutes:
    """Test DistributorAPI route handlers."""

    def test_api_init(self, distributor):
        """Test DistributorAPI initialization."""
        api = DistributorAPI(distributor, host="127.0.0.1", port=8080)

        assert api.distributor is distributor
        assert api.host == "127.0.0.1"
        assert api.port == 8080
        assert api.enable_metrics is True
        assert api.metrics is not None

    def test_api_init_without_metrics(self, distributor):
        """Test DistributorAPI initialization without metrics."""
        api = DistributorAPI(distributor, enable_metrics=False)
        assert api.metrics is None

    async def test_handle_health_healthy(self, api):
        """Test health endpoint when initialized."""
        response = await api._handle_health(make_request(path="/health"))

        assert response.status == 200
        assert json.loads(response.body)["status"] == "healthy"

    async def test_handle_health_unhealthy(self):
        """Test health endpoint before initialization."""
        api = DistributorAPI(MerkleDistributor())
        response = await api._handle_health(make_request(path="/health"))

        assert response.status == 503
        assert json.loads(response.body)["status"] == "unhealthy"

    async def test_handle_status(self, api, info):
        """Test status endpoint."""
        response = await api._handle_status(make_request(path="/status"))

        data = json.loads(response.body)
        assert response.status == 200
        assert data["balance"] == "750"
        assert data["merkle_root"] == info.merkle_root
        assert data["owner"] == OWNER
        assert data["distribution_loaded"] is True

    async def test_handle_merkle_root(self, api, info):
        """Test merkle root endpoint."""
        response = await api._handle_merkle_root(make_request(path="/merkle-root"))

        data = json.loads(response.body)
        assert data["merkle_root"] == info.merkle_root
        assert data["maintainer"] == MAINTAINER

    async def test_handle_proof(self, api, info):
        """Test proof lookup for an account."""
        request = make_request(path=f"/proof/{BOB.lower()}", path_params={"account": BOB.lower()})
        response = await api._handle_proof(request)

        data = json.loads(response.body)
        assert response.status == 200
        assert data["index"] == 1
        assert data["amount"] == "0x012c"
        assert data["proof"] == info.get_claim(BOB).proof
        assert data["merkle_root"] == info.merkle_root

    async def test_handle_proof_unknown_account(self, api):
        """Test proof lookup for an account without a claim."""
        other = to_checksum_address("0x" + "44" * 20)
        response = await api._handle_proof(make_request(path_params={"account": other}))
        assert response.status == 404

    async def test_handle_proof_no_distribution(self, distributor):
        """Test proof lookup without a loaded distribution."""
        api = DistributorAPI(distributor)
        response = await api._handle_proof(make_request(path_params={"account": ALICE}))
        assert response.status == 404

    async def test_handle_claim(self, api, distributor, info):
        """Test claim submission transfers the entitlement."""
        request = make_request("POST", "/claim", claim_body(info, ALICE))
        response = await api._handle_claim(request)

        data = json.loads(response.body)
        assert response.status == 200
        assert data["amount"] == "200"
        assert data["claimed_amount"] == "200"
        assert distributor.paid_out[ALICE] == 200

    async def test_handle_claim_invalid_proof(self, api, info):
        """Test claim with an inflated amount is rejected and counted."""
        request = make_request("POST", "/claim", claim_body(info, ALICE, amount="1000"))
        response = await api._handle_claim(request)

        assert response.status == 400
        assert json.loads(response.body)["error"] == "MerkleDistributor: Invalid proof."
        assert api.metrics.get_stats()["rejected"] == {"InvalidProofError": 1}

    async def test_handle_claim_missing_field(self, api, info):
        """Test claim without a proof."""
        body = claim_body(info, ALICE)
        del body["proof"]
        response = await api._handle_claim(make_request("POST", "/claim", body))

        assert response.status == 400
        assert "proof" in json.loads(response.body)["error"]

    async def test_handle_claim_bad_json(self, api):
        """Test claim with an unparseable body."""
        request = Request(method="POST", path="/claim", query={}, headers={}, body=b"{nope")
        response = await api._handle_claim(request)
        assert response.status == 400

    async def test_handle_claim_persists(self, distributor, info):
        """Test successful claims are saved through the store."""
        store = Mock()
        api = DistributorAPI(distributor, store=store)

        await api._handle_claim(make_request("POST", "/claim", claim_body(info, CAROL)))

        store.save.assert_called_once_with(distributor)

    async def test_handle_claim_store_failure(self, distributor, info):
        """Test a claim that cannot be saved is reported as a server error."""
        store = Mock()
        store.save.side_effect = StorageError("disk full")
        api = DistributorAPI(distributor, store=store)

        response = await api._handle_claim(make_request("POST", "/claim", claim_body(info, CAROL)))

        assert response.status == 500
        assert "not persisted" in json.loads(response.body)["error"]
        assert "disk full" in json.loads(response.body)["error"]

    async def test_handle_claimed(self, api, info):
        """Test claimed amount lookup."""
        await api._handle_claim(make_request("POST", "/claim", claim_body(info, BOB)))
        response = await api._handle_claimed(make_request(path_params={"account": BOB}))

        assert json.loads(response.body) == {"account": BOB, "claimed_amount": "300"}

    async def test_handle_claimed_invalid_address(self, api):
        """Test claimed amount lookup with a malformed address."""
        response = await api._handle_claimed(make_request(path_params={"account": "0x12"}))
        assert response.status == 400

    async def test_handle_deposit(self, api, distributor):
        """Test deposit endpoint."""
        request = make_request("POST", "/deposit", {"sender": OWNER, "amount": "0x32"})
        response = await api._handle_deposit(request)

        assert response.status == 201
        assert json.loads(response.body)["balance"] == "800"
        assert distributor.balance == 800

    async def test_handle_deposit_negative(self, api):
        """Test deposit with a negative amount."""
        request = make_request("POST", "/deposit", {"sender": OWNER, "amount": -5})
        response = await api._handle_deposit(request)
        assert response.status == 400

    async def test_handle_deposit_overflow(self, api, distributor):
        """Test a deposit past the uint256 balance limit is a client error."""
        request = make_request("POST", "/deposit", {"sender": OWNER, "amount": str(2 ** 256 - 1)})
        response = await api._handle_deposit(request)

        assert response.status == 400
        assert "overflow" in json.loads(response.body)["error"]
        assert distributor.balance == 750

    async def test_handle_deposit_store_failure(self, distributor):
        """Test a deposit that cannot be saved is reported as a server error."""
        store = Mock()
        store.save.side_effect = StorageError("disk full")
        api = DistributorAPI(distributor, store=store)

        request = make_request("POST", "/deposit", {"sender": OWNER, "amount": 5})
        response = await api._handle_deposit(request)

        assert response.status == 500
        assert json.loads(response.body)["error"].startswith("Deposit applied but not persisted")

    async def test_handle_metrics(self, api):
        """Test metrics endpoint."""
        response = await api._handle_metrics(make_request(path="/metrics"))

        assert response.status == 200
        assert "text/plain" in response.headers["Content-Type"]
        assert b"merkle_distributor_balance" in response.body

    async def test_handle_metrics_disabled(self, distributor):
        """Test metrics endpoint when disabled."""
        api = DistributorAPI(distributor, enable_metrics=False)
        response = await api._handle_metrics(make_request(path="/metrics"))
        assert response.status == 404

    async def test_route_with_path_params(self, api):
        """Test routing fills path parameters."""
        response = await api._route_request(make_request(path=f"/claimed/{ALICE}"))

        assert response.status == 200
        assert json.loads(response.body)["account"] == ALICE

    async def test_route_not_found(self, api):
        """Test unknown routes."""
        response = await api._route_request(make_request(path="/nope"))
        assert response.status == 404

    def test_match_path(self, api):
        """Test path pattern matching."""
        assert api._match_path("/proof/{account}", "/proof/0xabc") == (True, {"account": "0xabc"})
        assert api._match_path("/proof/{account}", "/claimed/0xabc") == (False, {})


class TestResponse:
    """Test Response helpers."""

    def test_json(self):
        response = Response.json({"a": 1}, status=201)
        assert response.status == 201
        assert response.headers["Content-Type"] == "application/json"
        assert json.loads(response.body) == {"a": 1}

    def test_error(self):
        response = Response.error("bad")
        assert response.status == 400
        assert json.loads(response.body) == {"error": "bad"}
