"""
HTTP API tests against a container with fake chains and treasury.
"""

import pytest
from fastapi.testclient import TestClient

from funding_pipeline.api.main import create_app
from funding_pipeline.container import ServiceContainer
from funding_pipeline.models import Chain
from funding_pipeline.services.chains import ChainRegistry
from funding_pipeline.services.reward_service import RewardService

from conftest import REQUESTER, FakePriceFeed, FakeTreasury, make_settings


ADMIN_KEY = "admin-secret"


def build_container(tmp_path, adapters, treasury, **overrides) -> ServiceContainer:
    settings = make_settings(
        f"sqlite:///{tmp_path / 'api.db'}",
        auto_create_tables=True,
        admin_api_key=ADMIN_KEY,
        **overrides
    )
    price_feed = FakePriceFeed()
    return ServiceContainer(
        settings,
        registry=ChainRegistry(adapters.values()),
        price_feed=price_feed,
        reward_service=RewardService(settings, price_feed, treasury),
    )


@pytest.fixture
def treasury():
    return FakeTreasury()


@pytest.fixture
def client(tmp_path, adapters, treasury):
    container = build_container(tmp_path, adapters, treasury)
    with TestClient(create_app(container)) as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_KEY}"}


def request_deposit(client, chain="ETH", address=REQUESTER):
    response = client.post("/api/request-deposit", json={"userAddress": address, "chain": chain})
    assert response.status_code == 200, response.text
    return response.json()["data"]


class TestDepositEndpoints:
    def test_request_deposit(self, client):
        data = request_deposit(client, chain="eth")

        assert data["depositAddress"] == "eth-addr-0"
        assert data["qrData"] == "ethereum:eth-addr-0"
        assert data["chain"] == "ETH"
        assert data["minConfirmations"] == 1
        assert data["expiresAt"].endswith("Z")
        assert data["depositId"]

    def test_each_request_gets_its_own_address(self, client):
        first = request_deposit(client, chain="SOL")
        second = request_deposit(client, chain="SOL")

        assert first["depositAddress"] != second["depositAddress"]

    def test_invalid_requester_address(self, client):
        response = client.post("/api/request-deposit", json={"userAddress": "0x1234", "chain": "ETH"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "INVALID_ADDRESS"

    def test_requester_with_bad_checksum_is_rejected(self, client):
        response = client.post(
            "/api/request-deposit",
            json={"userAddress": "0xf39fd6e51aad88F6F4ce6aB8827279cffFb92266", "chain": "ETH"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_ADDRESS"

    def test_unsupported_chain(self, client):
        response = client.post("/api/request-deposit", json={"userAddress": REQUESTER, "chain": "DOGE"})

        assert response.status_code == 400
        assert response.json()["error"] == "UNSUPPORTED_CHAIN"

    def test_missing_field_is_validation_error(self, client):
        response = client.post("/api/request-deposit", json={"chain": "ETH"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert body["details"]["errors"]

    def test_status_flow_until_reward(self, client, adapters, treasury):
        deposit = request_deposit(client)

        pending = client.get("/api/check-status", params={"depositId": deposit["depositId"]})
        assert pending.status_code == 200
        assert pending.json()["data"]["status"] == "pending"

        adapters[Chain.ETH].fund(deposit["depositAddress"], "1", confirmations=3, tx_hash="0xfund")
        confirmed = client.get("/api/check-status", params={"depositId": deposit["depositId"]}).json()["data"]
        assert confirmed["status"] == "confirmed"
        assert confirmed["fundedAmount"] == "1"
        assert confirmed["confirmations"] == 3
        assert confirmed["explorerUrl"] == "https://etherscan.io/tx/0xfund"

        rewarded = client.get("/api/check-status", params={"depositId": deposit["depositId"]}).json()["data"]
        assert rewarded["status"] == "reward_sent"
        assert rewarded["rewardTxHash"] == "0xreward1"
        assert rewarded["rewardAmount"] == "2000"
        assert len(treasury.transfers) == 1

    def test_unknown_deposit_is_404(self, client):
        response = client.get("/api/check-status", params={"depositId": "missing"})

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_missing_deposit_id_is_400(self, client):
        response = client.get("/api/check-status")

        assert response.status_code == 400
        assert response.json()["details"] == {"field": "depositId"}

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"] == {"database": "healthy", "chains": "BTC,ETH,SOL"}
        assert body["rewardConfigured"] is True
        assert body["workersRunning"] is False
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestAdminEndpoints:
    def test_requires_admin_key(self, client):
        assert client.get("/api/admin/address-pool").status_code == 401

        response = client.get(
            "/api/admin/address-pool", headers={"Authorization": "Bearer wrong-key"}
        )
        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "UNAUTHORIZED"

    def test_pre_generate_and_pool_stats(self, client, admin_headers):
        response = client.post(
            "/api/admin/pre-generate-addresses",
            json={"chain": "sol", "count": 3},
            headers=admin_headers
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["generated"] == 3
        assert data["pool"] == {"total": 3, "unused": 3, "used": 0}

        request_deposit(client, chain="SOL")
        pool = client.get("/api/admin/address-pool", headers=admin_headers).json()["data"]
        assert pool["SOL"] == {"total": 3, "unused": 2, "used": 1}

    def test_batch_check_and_process_queue(self, client, adapters, admin_headers, treasury):
        deposit = request_deposit(client)
        adapters[Chain.ETH].fund(deposit["depositAddress"], "2", confirmations=1)

        checked = client.post("/api/admin/batch-check-fundings", headers=admin_headers).json()["data"]
        assert checked["checked"] == 1
        assert checked["confirmed"] == 1

        processed = client.post("/api/admin/process-reward-queue", headers=admin_headers).json()["data"]
        assert processed["completed"] == 1
        assert treasury.transfers[0][1] == 4000 * 10 ** 18

        info = client.get("/api/admin/reward-info", headers=admin_headers).json()["data"]
        assert info["rewardConfigured"] is True
        assert info["queue"]["completed"]["count"] == 1
        assert info["token"]["symbol"] == "RWD"

    def test_retry_failed_rewards(self, client, adapters, admin_headers, treasury):
        deposit = request_deposit(client)
        adapters[Chain.ETH].fund(deposit["depositAddress"], "1", confirmations=1)
        treasury.balance_raw = 0

        client.post("/api/admin/batch-check-fundings", headers=admin_headers)
        client.post("/api/admin/process-reward-queue", headers=admin_headers)

        retried = client.post("/api/admin/retry-failed-rewards", headers=admin_headers).json()["data"]
        assert retried["retried"] == 1
        assert len(retried["queueIds"]) == 1

        treasury.balance_raw = 10 ** 30
        client.post("/api/admin/process-reward-queue", headers=admin_headers)
        status = client.get("/api/check-status", params={"depositId": deposit["depositId"]}).json()["data"]
        assert status["status"] == "reward_sent"

    def test_reward_estimate(self, client, admin_headers):
        response = client.get(
            "/api/admin/reward-estimate", params={"amount": "0.5", "chain": "sol"}, headers=admin_headers
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["chain"] == "SOL"
        assert data["rewardAmount"] == "50"

    def test_chain_status(self, client, adapters, admin_headers):
        adapters[Chain.BTC].fail_height = True

        data = client.get("/api/admin/chain-status", headers=admin_headers).json()["data"]
        by_chain = {status["chain"]: status for status in data["chains"]}
        assert by_chain["ETH"] == {"chain": "ETH", "connected": True, "height": 100}
        assert by_chain["BTC"]["connected"] is False

        single = client.get("/api/admin/chain-status", params={"chain": "sol"}, headers=admin_headers)
        assert single.json()["data"]["chain"] == "SOL"

    def test_worker_status_reports_heartbeats(self, client, admin_headers):
        client.post("/api/admin/batch-check-fundings", headers=admin_headers)

        data = client.get("/api/admin/worker-status", headers=admin_headers).json()["data"]
        assert data["summary"]["total"] == 1
        assert data["workers"][0]["workerName"] == "chain_monitor"
        assert data["manager"]["running"] is False


class TestRateLimiting:
    def test_limit_applies_per_client(self, tmp_path, adapters, treasury):
        container = build_container(
            tmp_path, adapters, treasury, rate_limit_enabled=True, rate_limit_max=2
        )
        with TestClient(create_app(container)) as client:
            assert client.get("/api/health").status_code == 200
            assert client.get("/api/health").status_code == 200
            limited = client.get("/api/health")

        assert limited.status_code == 429
        assert "Retry-After" in limited.headers


class TestRewardNotConfigured:
    def test_admin_reward_routes_unavailable(self, tmp_path, adapters):
        settings = make_settings(f"sqlite:///{tmp_path / 'api.db'}", auto_create_tables=True)
        container = ServiceContainer(
            settings, registry=ChainRegistry(adapters.values()), price_feed=FakePriceFeed()
        )
        with TestClient(create_app(container)) as client:
            response = client.post("/api/admin/process-reward-queue")
            health = client.get("/api/health").json()

        assert response.status_code == 503
        assert response.json()["error"] == "CONFIGURATION_ERROR"
        assert health["rewardConfigured"] is False
