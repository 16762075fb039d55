# certmanager/services/anchoring.py
"""Ancoragem on-chain e sincronização do workflow local com o contrato."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from certmanager.core.errors import AppError, InvalidTransitionError
from certmanager.models.certificate import Certificate, CertificateStatus
from certmanager.models.user import User
from certmanager.services import certificates as cert_svc

logger = structlog.get_logger()

S = CertificateStatus

# status local -> status on-chain esperado
_CHAIN_TARGET = {
    S.verified: "approved",
    S.issued: "issued",
    S.revoked: "revoked",
}

# passos que levam o contrato de um status ao seguinte
_CHAIN_STEPS = {
    "pending": ("approved", "verify"),
    "approved": ("issued", "issue"),
    "issued": ("revoked", "revoke"),
}


def _metadata(cert: Certificate) -> Dict[str, Any]:
    return {
        "certificateId": cert.certificate_id,
        "type": cert.type.value,
        "institution": cert.institution_name,
        "title": cert.title,
    }


def anchor(db: Session, chain, cert: Certificate, user: User) -> Tuple[Certificate, bool]:
    """Registra hash + CID no contrato. Devolve (certificado, criado_agora)."""
    if cert.transaction_hash and cert.chain_certificate_id is not None:
        return cert, False
    if cert.status == S.draft:
        raise InvalidTransitionError("anchor", cert.status.value, S.pending_verification.value)
    if not cert.certificate_hash or not cert.ipfs_cid:
        raise AppError("Certificate has no content hash or IPFS CID to anchor", status_code=409, code="NOT_READY")
    result = chain.create_certificate(cert.certificate_hash, cert.ipfs_cid, _metadata(cert))
    return cert_svc.mark_anchored(db, cert, result, chain.contract_address, user), True


def _plan(chain_status: str, target: str) -> List[str]:
    ops: List[str] = []
    current = chain_status
    while current != target:
        step = _CHAIN_STEPS.get(current)
        if step is None:
            raise AppError(
                f"On-chain status '{chain_status}' cannot reach '{target}'",
                status_code=409,
                code="CHAIN_OUT_OF_SYNC",
            )
        current, op = step
        ops.append(op)
    return ops


def sync(db: Session, chain, cert: Certificate, user: User) -> Dict[str, Any]:
    if cert.chain_certificate_id is None:
        raise AppError("Certificate is not anchored on-chain", status_code=409, code="NOT_ANCHORED")
    before = chain.get_certificate(cert.chain_certificate_id)["status"]
    target: Optional[str] = _CHAIN_TARGET.get(cert.status)
    ops = _plan(before, target) if target and before != target else []

    operations: List[Dict[str, Any]] = []
    for op in ops:
        if op == "verify":
            result = chain.verify_certificate(cert.chain_certificate_id, True)
        elif op == "issue":
            result = chain.issue_certificate(cert.chain_certificate_id)
        else:
            result = chain.revoke_certificate(cert.chain_certificate_id, cert.revocation_reason or "revoked")
        operations.append({"operation": op, "transaction_hash": result["transaction_hash"]})

    if operations:
        cert_svc.add_history(
            cert, "synced", user,
            details="On-chain sync: " + ", ".join(f"{o['operation']} ({o['transaction_hash']})" for o in operations),
        )
        db.commit()
        db.refresh(cert)
    logger.info("certificate.synced", certificate_id=cert.certificate_id, from_status=before, operations=len(operations))
    return {
        "certificate_id": cert.certificate_id,
        "local_status": cert.status.value,
        "chain_status_before": before,
        "chain_status": target if operations else before,
        "operations": operations,
    }


def blockchain_info(chain, cert: Certificate) -> Dict[str, Any]:
    info: Dict[str, Any] = {
        "certificate_id": cert.certificate_id,
        "certificate_hash": cert.certificate_hash,
        "transaction_hash": cert.transaction_hash,
        "block_number": cert.block_number,
        "contract_address": cert.contract_address,
        "chain_certificate_id": cert.chain_certificate_id,
        "network": cert.network,
        "anchored": cert.chain_certificate_id is not None,
        "on_chain": None,
    }
    if cert.chain_certificate_id is not None:
        info["on_chain"] = chain.get_certificate(cert.chain_certificate_id)
    return info


def gas_args(operation: str, cert: Optional[Certificate]) -> Tuple[Any, ...]:
    if operation == "createCertificate":
        if cert is None:
            return (b"\x00" * 32, "bafy-estimate", "{}")
        return (bytes.fromhex(cert.certificate_hash[2:]), cert.ipfs_cid or "", "{}")
    if cert is None or cert.chain_certificate_id is None:
        raise AppError(f"{operation} needs an anchored certificate_id", code="NOT_ANCHORED")
    chain_id = cert.chain_certificate_id
    if operation == "verifyCertificate":
        return (chain_id, True)
    if operation == "issueCertificate":
        return (chain_id,)
    return (chain_id, "estimate")


def contract_stats(db: Session, chain) -> Dict[str, Any]:
    anchored = db.scalar(select(func.count(Certificate.id)).where(Certificate.chain_certificate_id.is_not(None))) or 0
    total = db.scalar(select(func.count(Certificate.id))) or 0
    return {
        "contract_address": chain.contract_address,
        "network": chain.network,
        "on_chain_total": chain.total_certificates(),
        "local_total": int(total),
        "local_anchored": int(anchored),
    }
