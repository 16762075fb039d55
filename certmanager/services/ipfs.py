# certmanager/services/ipfs.py
"""
Armazenamento off-chain dos certificados.

`PinataClient` fala com a API HTTP do Pinata. Sem credenciais configuradas,
`LocalIPFSStore` guarda o conteúdo em DATA_DIR/ipfs, endereçado por sha256
(`local-<hex>`), com a mesma interface.
"""
from __future__ import annotations

import hashlib
import json
import os
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx
import structlog

from certmanager.core.config import settings
from certmanager.core.errors import IPFSError, NotFoundError

logger = structlog.get_logger()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PinataClient:
    backend = "pinata"

    def __init__(
        self,
        *,
        api_url: str,
        gateway_url: str,
        api_key: str = "",
        secret_api_key: str = "",
        jwt: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        headers = {"Authorization": f"Bearer {jwt}"} if jwt else {
            "pinata_api_key": api_key,
            "pinata_secret_api_key": secret_api_key,
        }
        self.gateway_url = gateway_url.rstrip("/") + "/"
        self._client = httpx.Client(base_url=api_url, headers=headers, timeout=timeout, transport=transport)
        self._gateway = httpx.Client(timeout=timeout, transport=transport, follow_redirects=True)

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            resp = self._client.request(method, url, **kwargs)
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as exc:
            logger.error("ipfs.request_failed", url=url, status=exc.response.status_code, body=exc.response.text[:500])
            raise IPFSError(f"Pinata request failed: {exc.response.status_code}", details={"url": url}) from exc
        except httpx.HTTPError as exc:
            logger.error("ipfs.request_failed", url=url, error=str(exc))
            raise IPFSError(f"Pinata request failed: {exc}", details={"url": url}) from exc

    def gateway_link(self, cid: str) -> str:
        return f"{self.gateway_url}{cid}"

    def test_authentication(self) -> Dict[str, Any]:
        data = self._request("GET", "/data/testAuthentication").json()
        return {"authenticated": True, "message": data.get("message")}

    def pin_json(self, content: Dict[str, Any], *, name: str, keyvalues: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = {
            "pinataContent": content,
            "pinataMetadata": {"name": name, "keyvalues": keyvalues or {}},
            "pinataOptions": {"cidVersion": 1},
        }
        data = self._request("POST", "/pinning/pinJSONToIPFS", json=body).json()
        logger.info("ipfs.pinned_json", cid=data.get("IpfsHash"), name=name)
        return {"cid": data["IpfsHash"], "size": data.get("PinSize"), "timestamp": data.get("Timestamp")}

    def pin_file(self, data: bytes, *, filename: str, keyvalues: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        metadata = json.dumps({"name": filename, "keyvalues": keyvalues or {}})
        resp = self._request(
            "POST",
            "/pinning/pinFileToIPFS",
            files={"file": (filename, data)},
            data={"pinataMetadata": metadata, "pinataOptions": json.dumps({"cidVersion": 1})},
        ).json()
        logger.info("ipfs.pinned_file", cid=resp.get("IpfsHash"), filename=filename)
        return {"cid": resp["IpfsHash"], "size": resp.get("PinSize"), "timestamp": resp.get("Timestamp")}

    def unpin(self, cid: str) -> bool:
        self._request("DELETE", f"/pinning/unpin/{cid}")
        logger.info("ipfs.unpinned", cid=cid)
        return True

    def list_pins(self, *, limit: int = 10, offset: int = 0) -> List[Dict[str, Any]]:
        data = self._request(
            "GET", "/data/pinList", params={"status": "pinned", "pageLimit": limit, "pageOffset": offset}
        ).json()
        return [
            {
                "cid": row.get("ipfs_pin_hash"),
                "size": row.get("size"),
                "name": (row.get("metadata") or {}).get("name"),
                "pinned_at": row.get("date_pinned"),
            }
            for row in data.get("rows", [])
        ]

    def get_bytes(self, cid: str) -> bytes:
        try:
            resp = self._gateway.get(self.gateway_link(cid))
            if resp.status_code == 404:
                raise NotFoundError(f"IPFS content not found: {cid}")
            resp.raise_for_status()
            return resp.content
        except httpx.HTTPError as exc:
            raise IPFSError(f"IPFS gateway request failed: {exc}", details={"cid": cid}) from exc

    def get_json(self, cid: str) -> Dict[str, Any]:
        try:
            return json.loads(self.get_bytes(cid).decode("utf-8"))
        except ValueError as exc:
            raise IPFSError("IPFS content is not valid JSON", details={"cid": cid}) from exc

    def exists(self, cid: str) -> bool:
        try:
            self.get_bytes(cid)
            return True
        except (NotFoundError, IPFSError):
            return False

    def status(self) -> Dict[str, Any]:
        try:
            self.test_authentication()
            return {"backend": self.backend, "connected": True, "gateway": self.gateway_url}
        except IPFSError as exc:
            return {"backend": self.backend, "connected": False, "gateway": self.gateway_url, "error": exc.message}


class LocalIPFSStore:
    backend = "local"

    def __init__(self, root: str, gateway_url: str = "/ipfs/"):
        self.root = root
        self.gateway_url = gateway_url
        os.makedirs(self.root, exist_ok=True)

    def _path(self, cid: str) -> str:
        if not cid.startswith("local-") or not all(c in "0123456789abcdef" for c in cid[6:]):
            raise NotFoundError(f"IPFS content not found: {cid}")
        return os.path.join(self.root, cid)

    def _meta_path(self, cid: str) -> str:
        return self._path(cid) + ".meta.json"

    def _store(self, raw: bytes, name: str, keyvalues: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        cid = "local-" + hashlib.sha256(raw).hexdigest()
        with open(self._path(cid), "wb") as f:
            f.write(raw)
        meta = {"name": name, "keyvalues": keyvalues or {}, "pinned_at": _now_iso(), "size": len(raw)}
        with open(self._meta_path(cid), "w", encoding="utf-8") as f:
            json.dump(meta, f)
        logger.info("ipfs.stored_locally", cid=cid, name=name)
        return {"cid": cid, "size": len(raw), "timestamp": meta["pinned_at"]}

    def gateway_link(self, cid: str) -> str:
        return f"{self.gateway_url}{cid}"

    def test_authentication(self) -> Dict[str, Any]:
        return {"authenticated": True, "message": "local store"}

    def pin_json(self, content: Dict[str, Any], *, name: str, keyvalues: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        raw = json.dumps(content, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return self._store(raw, name, keyvalues)

    def pin_file(self, data: bytes, *, filename: str, keyvalues: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._store(data, filename, keyvalues)

    def unpin(self, cid: str) -> bool:
        removed = False
        for path in (self._path(cid), self._meta_path(cid)):
            if os.path.exists(path):
                os.remove(path)
                removed = True
        if removed:
            logger.info("ipfs.unpinned", cid=cid)
        return removed

    def list_pins(self, *, limit: int = 10, offset: int = 0) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for entry in sorted(os.listdir(self.root)):
            if not entry.endswith(".meta.json"):
                continue
            with open(os.path.join(self.root, entry), encoding="utf-8") as f:
                meta = json.load(f)
            out.append({
                "cid": entry[: -len(".meta.json")],
                "size": meta.get("size"),
                "name": meta.get("name"),
                "pinned_at": meta.get("pinned_at"),
            })
        return out[offset: offset + limit]

    def get_bytes(self, cid: str) -> bytes:
        path = self._path(cid)
        if not os.path.exists(path):
            raise NotFoundError(f"IPFS content not found: {cid}")
        with open(path, "rb") as f:
            return f.read()

    def get_json(self, cid: str) -> Dict[str, Any]:
        try:
            return json.loads(self.get_bytes(cid).decode("utf-8"))
        except ValueError as exc:
            raise IPFSError("IPFS content is not valid JSON", details={"cid": cid}) from exc

    def exists(self, cid: str) -> bool:
        try:
            return os.path.exists(self._path(cid))
        except NotFoundError:
            return False

    def status(self) -> Dict[str, Any]:
        return {"backend": self.backend, "connected": True, "gateway": self.gateway_url}


@lru_cache
def get_ipfs_client():
    if settings.pinata_configured:
        return PinataClient(
            api_url=settings.PINATA_API_URL,
            gateway_url=settings.IPFS_GATEWAY_URL,
            api_key=settings.PINATA_API_KEY,
            secret_api_key=settings.PINATA_SECRET_API_KEY,
            jwt=settings.PINATA_JWT,
            timeout=settings.IPFS_TIMEOUT_SECONDS,
        )
    logger.warning("ipfs.pinata_not_configured", fallback="local")
    return LocalIPFSStore(os.path.join(settings.DATA_DIR, "ipfs"))
