# certmanager/services/verification.py
from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from certmanager.core import crypto
from certmanager.core.errors import AppError, BlockchainError, NotFoundError
from certmanager.crud.certificate import certificate_crud
from certmanager.db.base import as_utc
from certmanager.models.certificate import Certificate, CertificateStatus
from certmanager.services import certificates as cert_svc

logger = structlog.get_logger()

S = CertificateStatus


def public_view(cert: Certificate) -> Dict[str, Any]:
    return {
        "certificate_id": cert.certificate_id,
        "title": cert.title,
        "type": cert.type.value,
        "recipient_name": cert.recipient_name,
        "institution_name": cert.institution_name,
        "institution_department": cert.institution_department,
        "course_subject": cert.course_subject,
        "course_grade": cert.course_grade,
        "completion_date": cert.completion_date,
        "issue_date": cert.issue_date,
        "expiry_date": cert.expiry_date,
        "status": cert.status.value,
        "issued_at": cert.issued_at,
        "revoked_at": cert.revoked_at,
        "revocation_reason": cert.revocation_reason,
        "certificate_hash": cert.certificate_hash,
        "transaction_hash": cert.transaction_hash,
        "network": cert.network,
        "ipfs_cid": cert.ipfs_cid,
        "verification_url": cert_svc.verification_url(cert.verification_code),
    }


def assess(cert: Certificate) -> Dict[str, Any]:
    """Status público: só certificados emitidos, não revogados e no prazo são válidos."""
    expired = cert_svc.is_expired(cert)
    if cert.status == S.revoked:
        reason = "revoked"
    elif cert.status != S.issued or not cert.is_verified:
        reason = "not_issued"
    elif expired:
        reason = "expired"
    else:
        reason = None
    return {"verified": reason is None, "reason": reason, "expired": expired, "certificate": public_view(cert)}


def verify_by_code(db: Session, code: str) -> Dict[str, Any]:
    cert = certificate_crud.get_by_code(db, code)
    if not cert:
        raise NotFoundError("Certificate not found or verification code is invalid")
    result = assess(cert)
    logger.info("verify.by_code", certificate_id=cert.certificate_id, verified=result["verified"])
    return result


def verify_by_hash(db: Session, certificate_hash: str, chain=None) -> Dict[str, Any]:
    if not crypto.is_certificate_hash(certificate_hash):
        raise AppError("Invalid certificate hash format", code="INVALID_HASH")
    cert = certificate_crud.get_by_hash(db, certificate_hash)
    if not cert:
        raise NotFoundError("No certificate matches this hash")
    result = assess(cert)
    if chain is not None and cert.chain_certificate_id is not None:
        try:
            result["on_chain"] = chain.verify_hash(cert.certificate_hash)
        except BlockchainError as exc:
            logger.warning("verify.chain_lookup_failed", certificate_id=cert.certificate_id, error=exc.message)
    logger.info("verify.by_hash", certificate_id=cert.certificate_id, verified=result["verified"])
    return result


def bulk_verify(db: Session, codes: List[str], hashes: List[str]) -> Dict[str, Any]:
    results: List[Dict[str, Any]] = []
    lookups = [("verification_code", c, certificate_crud.get_by_code) for c in codes]
    lookups += [("certificate_hash", h, certificate_crud.get_by_hash) for h in hashes]
    for kind, identifier, finder in lookups:
        cert = finder(db, identifier)
        if not cert:
            results.append({"type": kind, "identifier": identifier, "verified": False, "status": "not_found"})
            continue
        verdict = assess(cert)
        results.append({
            "type": kind,
            "identifier": identifier,
            "verified": verdict["verified"],
            "certificate_id": cert.certificate_id,
            "status": cert.status.value,
            "recipient_name": cert.recipient_name,
        })
    verified = sum(1 for r in results if r["verified"])
    return {"results": results, "total": len(results), "verified": verified, "not_verified": len(results) - verified}


def code_from_qr(qr_data: str) -> str:
    """Aceita a URL do QR (…/verify/<code>) ou o código puro."""
    data = (qr_data or "").strip()
    if "/verify/" in data:
        path = urlsplit(data).path if "://" in data else data.split("?")[0].split("#")[0]
        data = path.split("/verify/", 1)[1]
    code = data.strip("/").split("/")[0]
    if not code:
        raise AppError("QR payload does not contain a verification code", code="INVALID_QR")
    return code


# ------------------------- integridade -------------------------

def workflow_issues(cert: Certificate) -> List[str]:
    issues: List[str] = []
    if cert.status in (S.verified, S.issued, S.revoked) and not cert.verifier_id:
        issues.append("Certificate approved without verifier")
    if cert.status in (S.issued, S.revoked) and not cert.issuer_id:
        issues.append("Certificate issued without issuer")
    if cert.status in (S.issued, S.revoked) and not cert.verification_code:
        issues.append("Issued certificate without verification code")
    if cert.status == S.revoked and not cert.revocation_reason:
        issues.append("Revoked certificate without reason")
    created = as_utc(cert.created_at)
    verified = as_utc(cert.verified_at)
    issued = as_utc(cert.issued_at)
    if verified and created and verified < created:
        issues.append("Verification timestamp before creation timestamp")
    if issued and verified and issued < verified:
        issues.append("Issue timestamp before verification timestamp")
    return issues


def _check(name: str, valid: bool, message: str, **details) -> Dict[str, Any]:
    return {"name": name, "valid": valid, "message": message, "details": details}


def validate_integrity(ipfs, cert: Certificate) -> Dict[str, Any]:
    checks: List[Dict[str, Any]] = []

    document: Optional[Dict[str, Any]] = None
    if not cert.ipfs_cid:
        checks.append(_check("ipfs", False, "No IPFS content recorded"))
    else:
        try:
            content = ipfs.get_json(cert.ipfs_cid)
            checks.append(_check("ipfs", True, "IPFS content is accessible", cid=cert.ipfs_cid))
        except AppError as exc:
            content = None
            checks.append(_check("ipfs", False, f"IPFS content unavailable: {exc.message}", cid=cert.ipfs_cid))

        if content is not None and cert.ipfs_is_encrypted:
            try:
                document = crypto.decrypt_certificate(content["encrypted"], cert.ipfs_encryption_key or "")
                checks.append(_check("encryption", True, "Encrypted document decrypts with the stored key"))
            except (AppError, KeyError, TypeError) as exc:
                checks.append(_check("encryption", False, f"Decryption failed: {exc}"))

    recomputed = cert_svc.compute_hash(cert)
    hash_ok = recomputed == cert.certificate_hash
    if document is not None:
        hash_ok = hash_ok and cert_svc.hash_from_document(document) == cert.certificate_hash
    checks.append(_check(
        "hash",
        hash_ok,
        "Certificate hash matches its content" if hash_ok else "Certificate hash does not match its content",
        stored=cert.certificate_hash,
        computed=recomputed,
    ))

    issues = workflow_issues(cert)
    checks.append(_check("workflow", not issues, "Workflow integrity valid" if not issues else ", ".join(issues)))

    overall = all(c["valid"] for c in checks)
    logger.info("verify.integrity", certificate_id=cert.certificate_id, overall_valid=overall)
    return {"certificate_id": cert.certificate_id, "status": cert.status.value, "overall_valid": overall, "checks": checks}


def ipfs_check(ipfs, cid: str) -> Dict[str, Any]:
    return {"cid": cid, "accessible": ipfs.exists(cid), "gateway_url": ipfs.gateway_link(cid), "backend": ipfs.backend}


def verification_stats(db: Session, period: str = "30d") -> Dict[str, Any]:
    days = cert_svc.TREND_PERIODS.get(period)
    if days is None:
        raise AppError(f"Invalid period '{period}'", code="INVALID_PERIOD")
    since = dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=days)
    counts = {s.value: 0 for s in S}
    counts.update(certificate_crud.count_by(db, Certificate.status))
    anchored = db.scalar(select(func.count(Certificate.id)).where(Certificate.transaction_hash.is_not(None))) or 0
    recently_issued = db.scalar(select(func.count(Certificate.id)).where(Certificate.issued_at >= since)) or 0
    return {
        "period": period,
        "total_certificates": sum(counts.values()),
        "issued_certificates": counts[S.issued.value],
        "pending_certificates": counts[S.pending_verification.value],
        "revoked_certificates": counts[S.revoked.value],
        "by_status": counts,
        "anchored_certificates": int(anchored),
        "recently_created": certificate_crud.count_since(db, since),
        "recently_issued": int(recently_issued),
    }
