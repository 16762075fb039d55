import json

import httpx
import pytest

from certmanager.core.errors import IPFSError, NotFoundError
from certmanager.services.ipfs import LocalIPFSStore, PinataClient

PINATA_API = "https://api.pinata.example"
GATEWAY = "https://gateway.example.com/ipfs/"


def _pinata(handler, **kwargs):
    return PinataClient(
        api_url=PINATA_API,
        gateway_url=GATEWAY,
        jwt=kwargs.pop("jwt", "test-jwt"),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_pinata_pin_json_sends_metadata():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"IpfsHash": "bafyjson", "PinSize": 42, "Timestamp": "2024-01-15T00:00:00Z"})

    client = _pinata(handler)
    result = client.pin_json({"hello": "world"}, name="certificate-CERT-1", keyvalues={"type": "academic"})

    assert result == {"cid": "bafyjson", "size": 42, "timestamp": "2024-01-15T00:00:00Z"}
    request = seen[0]
    assert request.url.path == "/pinning/pinJSONToIPFS"
    assert request.headers["Authorization"] == "Bearer test-jwt"
    body = json.loads(request.content)
    assert body["pinataContent"] == {"hello": "world"}
    assert body["pinataMetadata"] == {"name": "certificate-CERT-1", "keyvalues": {"type": "academic"}}
    assert body["pinataOptions"] == {"cidVersion": 1}


def test_pinata_uses_api_key_headers_without_jwt():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"message": "Congratulations! You are communicating with the Pinata API!"})

    client = _pinata(handler, jwt="", api_key="key", secret_api_key="secret")
    assert client.test_authentication()["authenticated"] is True
    assert seen[0].headers["pinata_api_key"] == "key"
    assert seen[0].headers["pinata_secret_api_key"] == "secret"


def test_pinata_file_unpin_and_list():
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path))
        if request.url.path == "/pinning/pinFileToIPFS":
            assert b"certificate.pdf" in request.content
            return httpx.Response(200, json={"IpfsHash": "bafyfile", "PinSize": 3})
        if request.url.path == "/data/pinList":
            assert request.url.params["status"] == "pinned"
            return httpx.Response(200, json={"rows": [
                {"ipfs_pin_hash": "bafyfile", "size": 3, "metadata": {"name": "certificate.pdf"}, "date_pinned": "x"},
            ]})
        return httpx.Response(200, text="OK")

    client = _pinata(handler)
    assert client.pin_file(b"pdf", filename="certificate.pdf")["cid"] == "bafyfile"
    assert client.unpin("bafyfile") is True
    assert client.list_pins(limit=5) == [{"cid": "bafyfile", "size": 3, "name": "certificate.pdf", "pinned_at": "x"}]
    assert ("DELETE", "/pinning/unpin/bafyfile") in calls


def test_pinata_gateway_fetch():
    def handler(request):
        if request.url.path == "/ipfs/bafyjson":
            return httpx.Response(200, json={"certificateId": "CERT-1"})
        if request.url.path == "/ipfs/bafybroken":
            return httpx.Response(200, content=b"not json")
        return httpx.Response(404)

    client = _pinata(handler)
    assert client.get_json("bafyjson") == {"certificateId": "CERT-1"}
    assert client.exists("bafyjson") is True
    assert client.exists("bafymissing") is False
    with pytest.raises(NotFoundError):
        client.get_bytes("bafymissing")
    with pytest.raises(IPFSError):
        client.get_json("bafybroken")


def test_pinata_errors_become_ipfs_errors():
    def handler(request):
        return httpx.Response(401, json={"error": "Invalid authentication"})

    client = _pinata(handler)
    with pytest.raises(IPFSError) as exc:
        client.pin_json({}, name="x")
    assert exc.value.status_code == 502

    status = client.status()
    assert status["connected"] is False
    assert status["backend"] == "pinata"


def test_local_store(tmp_path):
    store = LocalIPFSStore(str(tmp_path))
    pinned = store.pin_json({"b": 2, "a": 1}, name="doc", keyvalues={"k": "v"})
    cid = pinned["cid"]

    assert cid.startswith("local-")
    # endereçado por conteúdo
    assert store.pin_json({"a": 1, "b": 2}, name="again")["cid"] == cid
    assert store.get_json(cid) == {"a": 1, "b": 2}
    assert [p["cid"] for p in store.list_pins()] == [cid]
    assert store.gateway_link(cid) == f"/ipfs/{cid}"

    assert store.unpin(cid) is True
    assert store.exists(cid) is False
    with pytest.raises(NotFoundError):
        store.get_json(cid)
    with pytest.raises(NotFoundError):
        store.get_bytes("../../etc/passwd")


def test_health_reports_ipfs_backend(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["ipfs"]["backend"] == "local"
    assert resp.headers["X-Request-ID"]
