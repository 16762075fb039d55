from certmanager.api.deps import get_chain
from certmanager.core.config import settings
from certmanager.main import api
from certmanager.services.blockchain import get_chain_client
from tests.conftest import CONTRACT_ADDRESS

CHAIN = "/api/v1/blockchain"
CERTS = "/api/v1/certificates"

TX_HASH = "0x" + "ab" * 32


def _anchor_result(chain_id=7):
    return {"transaction_hash": TX_HASH, "block_number": 12, "gas_used": 210000, "status": 1, "certificate_id": chain_id}


def _anchor(client, chain, cert, headers, chain_status="pending"):
    chain.create_certificate.return_value = _anchor_result()
    chain.get_certificate.return_value = {"status": chain_status, "certificate_hash": cert["blockchain"]["certificate_hash"]}
    return client.post(f"{CHAIN}/certificates/{cert['certificate_id']}/anchor", headers=headers)


def test_anchor_certificate(client, users, chain, issued_certificate):
    resp = _anchor(client, chain, issued_certificate, users.creator.headers, chain_status="issued")
    assert resp.status_code == 200
    data = resp.json()
    assert data["anchored"] is True
    assert data["created"] is True
    assert data["transaction_hash"] == TX_HASH
    assert data["chain_certificate_id"] == 7
    assert data["contract_address"] == CONTRACT_ADDRESS
    assert data["on_chain"]["status"] == "issued"

    cert_hash, cid, metadata = chain.create_certificate.call_args.args
    assert cert_hash == issued_certificate["blockchain"]["certificate_hash"]
    assert cid == issued_certificate["ipfs"]["cid"]
    assert metadata["certificateId"] == issued_certificate["certificate_id"]

    # idempotente: não cria de novo
    resp = client.post(f"{CHAIN}/certificates/{issued_certificate['certificate_id']}/anchor", headers=users.creator.headers)
    assert resp.json()["created"] is False
    assert chain.create_certificate.call_count == 1

    cert = client.get(f"{CERTS}/{issued_certificate['certificate_id']}", headers=users.creator.headers).json()
    assert cert["blockchain"]["anchored"] is True
    assert cert["blockchain"]["block_number"] == 12
    assert cert["history"][-1]["action"] == "anchored"


def test_anchor_rules(client, users, chain, create_certificate, issued_certificate):
    draft = create_certificate()
    resp = _anchor(client, chain, draft, users.creator.headers)
    assert resp.status_code == 409
    assert resp.json()["code"] == "INVALID_TRANSITION"

    assert _anchor(client, chain, issued_certificate, users.other_creator.headers).status_code == 403
    assert _anchor(client, chain, issued_certificate, users.verifier.headers).status_code == 403
    chain.create_certificate.assert_not_called()


def test_sync_replays_missing_chain_steps(client, users, chain, issued_certificate):
    cid = issued_certificate["certificate_id"]
    _anchor(client, chain, issued_certificate, users.creator.headers)
    chain.verify_certificate.return_value = {"transaction_hash": "0x01"}
    chain.issue_certificate.return_value = {"transaction_hash": "0x02"}

    resp = client.post(f"{CHAIN}/certificates/{cid}/sync", headers=users.issuer.headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["chain_status_before"] == "pending"
    assert data["chain_status"] == "issued"
    assert [op["operation"] for op in data["operations"]] == ["verify", "issue"]
    chain.verify_certificate.assert_called_once_with(7, True)
    chain.issue_certificate.assert_called_once_with(7)

    history = client.get(f"{CERTS}/{cid}/history", headers=users.creator.headers).json()
    assert history[-1]["action"] == "synced"


def test_sync_revocation(client, users, chain, issued_certificate):
    cid = issued_certificate["certificate_id"]
    _anchor(client, chain, issued_certificate, users.creator.headers, chain_status="issued")
    client.post(f"{CERTS}/{cid}/revoke", json={"reason": "Fraud"}, headers=users.issuer.headers)
    chain.revoke_certificate.return_value = {"transaction_hash": "0x03"}

    data = client.post(f"{CHAIN}/certificates/{cid}/sync", headers=users.admin.headers).json()
    assert [op["operation"] for op in data["operations"]] == ["revoke"]
    chain.revoke_certificate.assert_called_once_with(7, "Fraud")


def test_sync_in_step_is_a_noop(client, users, chain, issued_certificate):
    cid = issued_certificate["certificate_id"]
    _anchor(client, chain, issued_certificate, users.creator.headers, chain_status="issued")

    data = client.post(f"{CHAIN}/certificates/{cid}/sync", headers=users.verifier.headers).json()
    assert data["operations"] == []
    assert data["chain_status"] == "issued"


def test_sync_errors(client, users, chain, create_certificate, issued_certificate):
    cid = issued_certificate["certificate_id"]
    resp = client.post(f"{CHAIN}/certificates/{cid}/sync", headers=users.issuer.headers)
    assert resp.status_code == 409
    assert resp.json()["code"] == "NOT_ANCHORED"

    _anchor(client, chain, issued_certificate, users.creator.headers, chain_status="rejected")
    resp = client.post(f"{CHAIN}/certificates/{cid}/sync", headers=users.issuer.headers)
    assert resp.status_code == 409
    assert resp.json()["code"] == "CHAIN_OUT_OF_SYNC"

    assert client.post(f"{CHAIN}/certificates/{cid}/sync", headers=users.creator.headers).status_code == 403


def test_batch_anchor(client, users, chain, create_certificate, issued_certificate):
    draft = create_certificate()
    chain.create_certificate.return_value = _anchor_result(chain_id=3)

    payload = {"certificate_ids": [issued_certificate["certificate_id"], draft["certificate_id"], "CERT-NOPE-000000"]}
    assert client.post(f"{CHAIN}/batch/anchor", json=payload, headers=users.issuer.headers).status_code == 403

    data = client.post(f"{CHAIN}/batch/anchor", json=payload, headers=users.admin.headers).json()
    assert data["total"] == 3
    assert data["successful"] == 1
    assert data["failed"] == 2
    assert data["results"][0]["chain_certificate_id"] == 3


def test_certificate_blockchain_info(client, users, chain, create_certificate):
    cert = create_certificate()
    resp = client.get(f"{CHAIN}/certificates/{cert['certificate_id']}/blockchain-info", headers=users.creator.headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["anchored"] is False
    assert data["on_chain"] is None
    chain.get_certificate.assert_not_called()

    resp = client.get(
        f"{CHAIN}/certificates/{cert['certificate_id']}/blockchain-info", headers=users.other_creator.headers
    )
    assert resp.status_code == 403


def test_verify_hash_checks_contract(client, users, chain, issued_certificate):
    _anchor(client, chain, issued_certificate, users.creator.headers, chain_status="issued")
    chain.verify_hash.return_value = True

    cert_hash = issued_certificate["blockchain"]["certificate_hash"]
    data = client.get(f"{CHAIN}/verify-hash/{cert_hash}").json()
    assert data["verified"] is True
    assert data["on_chain"] is True
    assert data["certificate_id"] == issued_certificate["certificate_id"]
    chain.verify_hash.assert_called_once_with(cert_hash)


def test_network_endpoints(client, users, chain):
    chain.network_status.return_value = {"connected": True, "network": {"name": "Ganache", "chain_id": 1337}}
    chain.gas_prices.return_value = {"standard": {"wei": "1", "gwei": "0.000000001"}}
    chain.contract_info.return_value = {"address": CONTRACT_ADDRESS, "network": "Ganache"}

    assert client.get(f"{CHAIN}/network-status").status_code == 401
    assert client.get(f"{CHAIN}/network-status", headers=users.creator.headers).json()["connected"] is True
    assert "standard" in client.get(f"{CHAIN}/gas-prices", headers=users.creator.headers).json()
    assert client.get(f"{CHAIN}/contract-info", headers=users.creator.headers).json()["address"] == CONTRACT_ADDRESS


def test_estimate_gas(client, users, chain, create_certificate):
    chain.estimate_gas.return_value = {"operation": "createCertificate", "gas_limit": "150000"}

    resp = client.post(f"{CHAIN}/estimate-gas", json={"operation": "createCertificate"}, headers=users.creator.headers)
    assert resp.status_code == 200
    chain.estimate_gas.assert_called_once_with("createCertificate", b"\x00" * 32, "bafy-estimate", "{}")

    cert = create_certificate()
    resp = client.post(
        f"{CHAIN}/estimate-gas",
        json={"operation": "issueCertificate", "certificate_id": cert["certificate_id"]},
        headers=users.creator.headers,
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "NOT_ANCHORED"


def test_transaction_info(client, users, chain):
    resp = client.get(f"{CHAIN}/transaction/0x1234", headers=users.creator.headers)
    assert resp.status_code == 400

    chain.transaction_info.return_value = {"hash": TX_HASH, "status": 1, "confirmations": 3}
    resp = client.get(f"{CHAIN}/transaction/{TX_HASH}", headers=users.creator.headers)
    assert resp.status_code == 200
    assert resp.json()["confirmations"] == 3


def test_contract_stats(client, users, chain, issued_certificate):
    _anchor(client, chain, issued_certificate, users.creator.headers)
    chain.total_certificates.return_value = 5

    assert client.get(f"{CHAIN}/contract-stats", headers=users.creator.headers).status_code == 403
    data = client.get(f"{CHAIN}/contract-stats", headers=users.admin.headers).json()
    assert data["on_chain_total"] == 5
    assert data["local_total"] == 1
    assert data["local_anchored"] == 1


def test_contract_roles(client, users, chain):
    account = "0x742d35Cc6634C0532925a3b8D4C9db96C4b4d8b6"
    chain.grant_role.return_value = {"transaction_hash": TX_HASH, "block_number": 2, "gas_used": 50000, "status": 1}
    chain.has_role.return_value = True

    resp = client.post(f"{CHAIN}/roles/grant", json={"role": "verifier", "account": account}, headers=users.admin.headers)
    assert resp.status_code == 200
    assert resp.json()["transaction_hash"] == TX_HASH
    chain.grant_role.assert_called_once_with("verifier", account)

    resp = client.get(f"{CHAIN}/roles/check", params={"role": "verifier", "account": account}, headers=users.admin.headers)
    assert resp.json()["has_role"] is True

    resp = client.post(f"{CHAIN}/roles/grant", json={"role": "admin", "account": account}, headers=users.admin.headers)
    assert resp.status_code == 422
    resp = client.post(f"{CHAIN}/roles/grant", json={"role": "issuer", "account": account}, headers=users.issuer.headers)
    assert resp.status_code == 403


def test_unconfigured_blockchain_returns_503(client, users, monkeypatch):
    monkeypatch.setattr(settings, "BLOCKCHAIN_RPC_URL", "")
    get_chain_client.cache_clear()
    del api.dependency_overrides[get_chain]

    resp = client.get(f"{CHAIN}/network-status", headers=users.creator.headers)
    assert resp.status_code == 503
    assert resp.json()["code"] == "BLOCKCHAIN_UNAVAILABLE"
