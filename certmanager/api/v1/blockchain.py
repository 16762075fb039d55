# certmanager/api/v1/blockchain.py
from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from certmanager.api.deps import get_chain, get_current_user, get_db
from certmanager.api.permissions import require_permissions, require_roles
from certmanager.core.errors import AppError
from certmanager.core.rbac import PERM_CREATE
from certmanager.models.user import User
from certmanager.schemas.blockchain import BatchAnchorRequest, EstimateGasRequest, RoleGrantRequest
from certmanager.schemas.user import WALLET_PATTERN
from certmanager.services import anchoring
from certmanager.services import certificates as cert_svc
from certmanager.services import verification as verify_svc

router = APIRouter()


@router.get("/contract-info")
def contract_info(chain=Depends(get_chain), _user: User = Depends(get_current_user)):
    return chain.contract_info()


@router.get("/network-status")
def network_status(chain=Depends(get_chain), _user: User = Depends(get_current_user)):
    return chain.network_status()


@router.get("/gas-prices")
def gas_prices(chain=Depends(get_chain), _user: User = Depends(get_current_user)):
    return chain.gas_prices()


@router.post("/estimate-gas")
def estimate_gas(
    payload: EstimateGasRequest,
    db: Session = Depends(get_db),
    chain=Depends(get_chain),
    _user: User = Depends(get_current_user),
):
    cert = cert_svc.get_or_404(db, payload.certificate_id) if payload.certificate_id else None
    return chain.estimate_gas(payload.operation, *anchoring.gas_args(payload.operation, cert))


# ----------------------- certificados -----------------------

@router.post("/certificates/{certificate_id}/anchor")
def anchor_certificate(
    certificate_id: str,
    db: Session = Depends(get_db),
    chain=Depends(get_chain),
    user: User = Depends(require_permissions(PERM_CREATE)),
):
    cert = cert_svc.get_or_404(db, certificate_id)
    cert_svc.ensure_owner_or_admin(user, cert)
    cert, created = anchoring.anchor(db, chain, cert, user)
    return {"anchored": True, "created": created, **anchoring.blockchain_info(chain, cert)}


@router.post("/certificates/{certificate_id}/sync")
def sync_certificate(
    certificate_id: str,
    db: Session = Depends(get_db),
    chain=Depends(get_chain),
    user: User = Depends(require_roles("admin", "verifier", "issuer")),
):
    cert = cert_svc.get_or_404(db, certificate_id)
    return anchoring.sync(db, chain, cert, user)


@router.get("/certificates/{certificate_id}/blockchain-info")
def certificate_blockchain_info(
    certificate_id: str,
    db: Session = Depends(get_db),
    chain=Depends(get_chain),
    user: User = Depends(get_current_user),
):
    cert = cert_svc.get_or_404(db, certificate_id)
    cert_svc.ensure_can_view(user, cert)
    return anchoring.blockchain_info(chain, cert)


@router.post("/batch/anchor")
def batch_anchor(
    payload: BatchAnchorRequest,
    db: Session = Depends(get_db),
    chain=Depends(get_chain),
    admin: User = Depends(require_roles("admin")),
):
    results: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    for certificate_id in payload.certificate_ids:
        try:
            cert = cert_svc.get_or_404(db, certificate_id)
            cert, created = anchoring.anchor(db, chain, cert, admin)
        except AppError as exc:
            errors.append({"certificate_id": certificate_id, "error": exc.message})
            continue
        results.append({
            "certificate_id": cert.certificate_id,
            "created": created,
            "transaction_hash": cert.transaction_hash,
            "chain_certificate_id": cert.chain_certificate_id,
        })
    return {
        "results": results,
        "errors": errors,
        "total": len(payload.certificate_ids),
        "successful": len(results),
        "failed": len(errors),
    }


# -------------------------- consultas --------------------------

@router.get("/verify-hash/{certificate_hash}")
def verify_hash(certificate_hash: str, db: Session = Depends(get_db), chain=Depends(get_chain)):
    result = verify_svc.verify_by_hash(db, certificate_hash, chain=chain)
    return {
        "certificate_hash": certificate_hash.lower(),
        "verified": result["verified"],
        "on_chain": result.get("on_chain"),
        "certificate_id": result["certificate"]["certificate_id"],
        "status": result["certificate"]["status"],
    }


@router.get("/transaction/{tx_hash}")
def transaction_info(tx_hash: str, chain=Depends(get_chain), _user: User = Depends(get_current_user)):
    if not tx_hash.startswith("0x") or len(tx_hash) != 66:
        raise HTTPException(status_code=400, detail="Invalid transaction hash format")
    return chain.transaction_info(tx_hash)


@router.get("/contract-stats")
def contract_stats(db: Session = Depends(get_db), chain=Depends(get_chain), _admin: User = Depends(require_roles("admin"))):
    return anchoring.contract_stats(db, chain)


# -------------------------- papéis --------------------------

@router.post("/roles/grant")
def grant_role(payload: RoleGrantRequest, chain=Depends(get_chain), _admin: User = Depends(require_roles("admin"))):
    result = chain.grant_role(payload.role, payload.account)
    return {"role": payload.role, "account": payload.account, **result}


@router.get("/roles/check")
def check_role(
    role: str = Query(..., pattern="^(creator|verifier|issuer)$"),
    account: str = Query(..., pattern=WALLET_PATTERN),
    chain=Depends(get_chain),
    _admin: User = Depends(require_roles("admin")),
):
    return {"role": role, "account": account, "has_role": chain.has_role(role, account)}
