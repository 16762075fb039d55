# certmanager/services/blockchain.py
"""
Cliente web3 do contrato CertificateRegistry.

Transações são assinadas localmente com PRIVATE_KEY e enviadas via
send_raw_transaction; o limite de gás recebe um buffer percentual
(GAS_LIMIT_BUFFER_PCT) sobre a estimativa.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

import structlog
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.logs import DISCARD

from certmanager.core.config import settings
from certmanager.core.errors import BlockchainError, BlockchainUnavailableError, NotFoundError

logger = structlog.get_logger()

_CHAIN_ERRORS = (Web3Exception, ValueError, OSError)

# status do enum Solidity (uint8) -> nome
CHAIN_STATUS = {0: "pending", 1: "approved", 2: "rejected", 3: "issued", 4: "revoked"}

ROLE_GETTERS = {"creator": "CREATOR_ROLE", "verifier": "VERIFIER_ROLE", "issuer": "ISSUER_ROLE"}


def _fn(name, inputs, outputs=(), mutability="nonpayable"):
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


REGISTRY_ABI = [
    _fn("createCertificate", [("_certificateHash", "bytes32"), ("_ipfsCID", "string"), ("_metadata", "string")], [("", "uint256")]),
    _fn("verifyCertificate", [("_certificateId", "uint256"), ("_approved", "bool")]),
    _fn("issueCertificate", [("_certificateId", "uint256")]),
    _fn("revokeCertificate", [("_certificateId", "uint256"), ("_reason", "string")]),
    {
        "type": "function",
        "name": "getCertificate",
        "stateMutability": "view",
        "inputs": [{"name": "_certificateId", "type": "uint256"}],
        "outputs": [{
            "name": "",
            "type": "tuple",
            "components": [
                {"name": "certificateHash", "type": "bytes32"},
                {"name": "ipfsCID", "type": "string"},
                {"name": "status", "type": "uint8"},
                {"name": "creator", "type": "address"},
                {"name": "verifier", "type": "address"},
                {"name": "issuer", "type": "address"},
                {"name": "createdAt", "type": "uint256"},
                {"name": "verifiedAt", "type": "uint256"},
                {"name": "issuedAt", "type": "uint256"},
                {"name": "metadata", "type": "string"},
            ],
        }],
    },
    _fn("getCertificateIdByHash", [("_certificateHash", "bytes32")], [("", "uint256")], "view"),
    _fn("verifyCertificateHash", [("_certificateHash", "bytes32")], [("", "bool")], "view"),
    _fn("getTotalCertificates", [], [("", "uint256")], "view"),
    _fn("hasRole", [("role", "bytes32"), ("account", "address")], [("", "bool")], "view"),
    _fn("grantRole", [("role", "bytes32"), ("account", "address")]),
    _fn("CREATOR_ROLE", [], [("", "bytes32")], "view"),
    _fn("VERIFIER_ROLE", [], [("", "bytes32")], "view"),
    _fn("ISSUER_ROLE", [], [("", "bytes32")], "view"),
    {
        "type": "event",
        "name": "CertificateCreated",
        "anonymous": False,
        "inputs": [
            {"name": "certificateId", "type": "uint256", "indexed": True},
            {"name": "certificateHash", "type": "bytes32", "indexed": True},
            {"name": "ipfsCID", "type": "string", "indexed": False},
            {"name": "creator", "type": "address", "indexed": True},
        ],
    },
    {
        "type": "event",
        "name": "CertificateVerified",
        "anonymous": False,
        "inputs": [
            {"name": "certificateId", "type": "uint256", "indexed": True},
            {"name": "verifier", "type": "address", "indexed": True},
            {"name": "status", "type": "uint8", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "CertificateIssued",
        "anonymous": False,
        "inputs": [
            {"name": "certificateId", "type": "uint256", "indexed": True},
            {"name": "issuer", "type": "address", "indexed": True},
        ],
    },
]


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


def _ts(value: int) -> Optional[datetime]:
    return datetime.fromtimestamp(int(value), tz=timezone.utc) if value else None


def _gwei(wei: int) -> str:
    return str(Web3.from_wei(wei, "gwei"))


class ChainClient:
    def __init__(
        self,
        *,
        rpc_url: str,
        contract_address: str,
        private_key: str = "",
        network: str = "Ganache",
        gas_buffer_pct: int = 20,
        w3: Optional[Web3] = None,
    ):
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self.network = network
        self.gas_buffer_pct = gas_buffer_pct
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.contract = self.w3.eth.contract(address=self.contract_address, abi=REGISTRY_ABI)
        self._private_key = private_key
        self.account = self.w3.eth.account.from_key(private_key).address if private_key else None

    # ------------------------- internos -------------------------

    def _require_signer(self) -> str:
        if not self.account:
            raise BlockchainUnavailableError("No signing key configured for blockchain transactions")
        return self.account

    def _transact(self, label: str, fn) -> Dict[str, Any]:
        sender = self._require_signer()
        try:
            estimate = fn.estimate_gas({"from": sender})
            tx = fn.build_transaction({
                "from": sender,
                "nonce": self.w3.eth.get_transaction_count(sender),
                "gas": estimate * (100 + self.gas_buffer_pct) // 100,
                "gasPrice": self.w3.eth.gas_price,
                "chainId": self.w3.eth.chain_id,
            })
            signed = self.w3.eth.account.sign_transaction(tx, private_key=self._private_key)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            logger.info("chain.tx_sent", op=label, tx_hash=_hex(tx_hash))
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        except _CHAIN_ERRORS as exc:
            logger.error("chain.tx_failed", op=label, error=str(exc))
            raise BlockchainError(f"Blockchain transaction failed: {exc}", details={"operation": label}) from exc

        if receipt["status"] != 1:
            raise BlockchainError("Blockchain transaction reverted", details={"operation": label, "tx_hash": _hex(tx_hash)})
        logger.info("chain.tx_mined", op=label, block=receipt["blockNumber"], gas_used=receipt["gasUsed"])
        return {
            "transaction_hash": _hex(tx_hash),
            "block_number": int(receipt["blockNumber"]),
            "gas_used": int(receipt["gasUsed"]),
            "status": int(receipt["status"]),
            "receipt": receipt,
        }

    def _call(self, label: str, fn):
        try:
            return fn.call()
        except _CHAIN_ERRORS as exc:
            logger.error("chain.call_failed", op=label, error=str(exc))
            raise BlockchainError(f"Blockchain call failed: {exc}", details={"operation": label}) from exc

    # ------------------------- contrato -------------------------

    def create_certificate(self, certificate_hash: str, ipfs_cid: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        hash_bytes = Web3.to_bytes(hexstr=certificate_hash)
        result = self._transact(
            "createCertificate",
            self.contract.functions.createCertificate(hash_bytes, ipfs_cid, json.dumps(metadata, separators=(",", ":"))),
        )
        events = self.contract.events.CertificateCreated().process_receipt(result.pop("receipt"), errors=DISCARD)
        if events:
            result["certificate_id"] = int(events[0]["args"]["certificateId"])
        else:
            result["certificate_id"] = self.certificate_id_by_hash(certificate_hash)
        return result

    def verify_certificate(self, chain_id: int, approved: bool) -> Dict[str, Any]:
        result = self._transact("verifyCertificate", self.contract.functions.verifyCertificate(chain_id, approved))
        result.pop("receipt")
        return result

    def issue_certificate(self, chain_id: int) -> Dict[str, Any]:
        result = self._transact("issueCertificate", self.contract.functions.issueCertificate(chain_id))
        result.pop("receipt")
        return result

    def revoke_certificate(self, chain_id: int, reason: str) -> Dict[str, Any]:
        result = self._transact("revokeCertificate", self.contract.functions.revokeCertificate(chain_id, reason))
        result.pop("receipt")
        return result

    def get_certificate(self, chain_id: int) -> Dict[str, Any]:
        raw = self._call("getCertificate", self.contract.functions.getCertificate(chain_id))
        (cert_hash, cid, status, creator, verifier, issuer, created_at, verified_at, issued_at, metadata) = raw
        return {
            "certificate_hash": _hex(cert_hash),
            "ipfs_cid": cid,
            "status": CHAIN_STATUS.get(int(status), str(status)),
            "creator": creator,
            "verifier": verifier,
            "issuer": issuer,
            "created_at": _ts(created_at),
            "verified_at": _ts(verified_at),
            "issued_at": _ts(issued_at),
            "metadata": metadata,
        }

    def certificate_id_by_hash(self, certificate_hash: str) -> int:
        fn = self.contract.functions.getCertificateIdByHash(Web3.to_bytes(hexstr=certificate_hash))
        return int(self._call("getCertificateIdByHash", fn))

    def verify_hash(self, certificate_hash: str) -> bool:
        fn = self.contract.functions.verifyCertificateHash(Web3.to_bytes(hexstr=certificate_hash))
        return bool(self._call("verifyCertificateHash", fn))

    def total_certificates(self) -> int:
        return int(self._call("getTotalCertificates", self.contract.functions.getTotalCertificates()))

    def role_hash(self, role: str) -> bytes:
        getter = ROLE_GETTERS.get(role.lower())
        if not getter:
            raise BlockchainError(f"Unknown contract role: {role}", status_code=400, code="UNKNOWN_ROLE")
        return self._call(getter, getattr(self.contract.functions, getter)())

    def has_role(self, role: str, account: str) -> bool:
        fn = self.contract.functions.hasRole(self.role_hash(role), Web3.to_checksum_address(account))
        return bool(self._call("hasRole", fn))

    def grant_role(self, role: str, account: str) -> Dict[str, Any]:
        fn = self.contract.functions.grantRole(self.role_hash(role), Web3.to_checksum_address(account))
        result = self._transact("grantRole", fn)
        result.pop("receipt")
        return result

    # -------------------------- rede --------------------------

    def transaction_info(self, tx_hash: str) -> Dict[str, Any]:
        try:
            tx = self.w3.eth.get_transaction(tx_hash)
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound as exc:
            raise NotFoundError(f"Transaction not found: {tx_hash}") from exc
        except _CHAIN_ERRORS as exc:
            raise BlockchainError(f"Failed to retrieve transaction information: {exc}") from exc

        block_number = tx.get("blockNumber")
        timestamp = None
        confirmations = 0
        if block_number is not None:
            block = self.w3.eth.get_block(block_number)
            timestamp = _ts(block["timestamp"])
            confirmations = int(self.w3.eth.block_number) - int(block_number) + 1
        return {
            "hash": _hex(tx_hash),
            "from": tx.get("from"),
            "to": tx.get("to"),
            "value": str(tx.get("value", 0)),
            "gas_price": str(tx.get("gasPrice")) if tx.get("gasPrice") is not None else None,
            "gas_limit": str(tx.get("gas")) if tx.get("gas") is not None else None,
            "gas_used": str(receipt.get("gasUsed")) if receipt else None,
            "block_number": block_number,
            "confirmations": confirmations,
            "status": receipt.get("status") if receipt else None,
            "timestamp": timestamp,
        }

    def network_status(self) -> Dict[str, Any]:
        try:
            status: Dict[str, Any] = {
                "connected": bool(self.w3.is_connected()),
                "network": {"name": self.network, "chain_id": int(self.w3.eth.chain_id)},
                "block_number": int(self.w3.eth.block_number),
                "gas_price": str(self.w3.eth.gas_price),
                "contract_address": self.contract_address,
                "account": self.account,
                "balance": None,
            }
            if self.account:
                balance = self.w3.eth.get_balance(self.account)
                status["balance"] = str(Web3.from_wei(balance, "ether"))
            return status
        except _CHAIN_ERRORS as exc:
            logger.warning("chain.network_status_failed", error=str(exc))
            return {"connected": False, "network": {"name": self.network}, "error": str(exc)}

    def estimate_gas(self, operation: str, *args) -> Dict[str, Any]:
        builders = {
            "createCertificate": self.contract.functions.createCertificate,
            "verifyCertificate": self.contract.functions.verifyCertificate,
            "issueCertificate": self.contract.functions.issueCertificate,
            "revokeCertificate": self.contract.functions.revokeCertificate,
        }
        if operation not in builders:
            raise BlockchainError(f"Unsupported operation: {operation}", status_code=400, code="UNSUPPORTED_OPERATION")
        sender = self.account or self.contract_address
        try:
            gas = int(builders[operation](*args).estimate_gas({"from": sender}))
            price = int(self.w3.eth.gas_price)
        except _CHAIN_ERRORS as exc:
            raise BlockchainError(f"Gas estimation failed: {exc}", details={"operation": operation}) from exc
        cost = gas * price
        return {
            "operation": operation,
            "gas_limit": str(gas),
            "gas_price": str(price),
            "estimated_cost": str(cost),
            "estimated_cost_eth": str(Web3.from_wei(cost, "ether")),
        }

    def gas_prices(self) -> Dict[str, Any]:
        try:
            base = int(self.w3.eth.gas_price)
        except _CHAIN_ERRORS as exc:
            raise BlockchainError(f"Failed to read gas price: {exc}") from exc
        tiers = {"standard": base, "fast": base * 110 // 100, "fastest": base * 120 // 100}
        return {name: {"wei": str(v), "gwei": _gwei(v)} for name, v in tiers.items()}

    def contract_info(self) -> Dict[str, Any]:
        return {
            "address": self.contract_address,
            "network": self.network,
            "functions": sorted(e["name"] for e in REGISTRY_ABI if e["type"] == "function"),
            "events": sorted(e["name"] for e in REGISTRY_ABI if e["type"] == "event"),
            "total_certificates": self.total_certificates(),
        }


@lru_cache
def get_chain_client() -> ChainClient:
    if not settings.blockchain_configured:
        raise BlockchainUnavailableError(
            "Blockchain is not configured (set BLOCKCHAIN_RPC_URL and CONTRACT_ADDRESS)"
        )
    logger.info("chain.connecting", network=settings.BLOCKCHAIN_NETWORK, contract=settings.CONTRACT_ADDRESS)
    return ChainClient(
        rpc_url=settings.BLOCKCHAIN_RPC_URL,
        contract_address=settings.CONTRACT_ADDRESS,
        private_key=settings.PRIVATE_KEY,
        network=settings.BLOCKCHAIN_NETWORK,
        gas_buffer_pct=settings.GAS_LIMIT_BUFFER_PCT,
    )
