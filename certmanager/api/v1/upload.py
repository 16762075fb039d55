# certmanager/api/v1/upload.py
from __future__ import annotations

from typing import List, Tuple

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile
from sqlalchemy.orm import Session

from certmanager.api.deps import get_db, get_ipfs
from certmanager.api.permissions import require_permissions
from certmanager.api.v1.certificates import _to_out as _certificate_out
from certmanager.core.config import settings
from certmanager.core.rbac import PERM_CREATE
from certmanager.crud.base import page_count
from certmanager.models.upload import UploadSession
from certmanager.models.user import User
from certmanager.schemas.certificate import BatchCreateResult
from certmanager.schemas.upload import (
    BatchUploadResult,
    CreateFromUploadRequest,
    UploadResult,
    UploadSummary,
    ValidationReport,
)
from certmanager.services import spreadsheet
from certmanager.services import uploads as upload_svc

router = APIRouter()


def _read(file: UploadFile) -> Tuple[bytes, str]:
    data = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB",
        )
    if not data:
        raise HTTPException(status_code=400, detail="The uploaded file is empty")
    return data, file.filename or "upload"


def _summary(s: UploadSession) -> UploadSummary:
    return UploadSummary(
        upload_id=s.upload_id,
        file_name=s.filename,
        file_type=s.file_type,
        size_bytes=s.size_bytes,
        total_rows=s.total_rows,
        valid_rows=s.valid_rows,
        invalid_rows=s.invalid_rows,
        status=s.status,
        batch_id=s.batch_id,
        created_at=s.created_at,
    )


def _to_out(s: UploadSession) -> UploadResult:
    return UploadResult(summary=_summary(s), results=list(s.rows or []), errors=list(s.errors or []))


def _process(db: Session, file: UploadFile, user: User, expected: str | None = None) -> UploadSession:
    data, filename = _read(file)
    kind = spreadsheet.validate_file_type(filename, file.content_type)
    if expected and kind != expected:
        raise HTTPException(status_code=400, detail=f"Expected a {expected.upper()} file")
    result = spreadsheet.parse_file(data, filename, file.content_type)
    return upload_svc.record_session(db, result, size_bytes=len(data), mime_type=file.content_type, user=user)


# -------------------------- upload --------------------------

@router.post("/csv", response_model=UploadResult, status_code=201)
def upload_csv(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(PERM_CREATE)),
):
    return _to_out(_process(db, file, user, expected="csv"))


@router.post("/excel", response_model=UploadResult, status_code=201)
def upload_excel(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(PERM_CREATE)),
):
    return _to_out(_process(db, file, user, expected="xlsx"))


@router.post("/batch", response_model=BatchUploadResult, status_code=201)
def upload_batch(
    files: List[UploadFile] = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(PERM_CREATE)),
):
    if len(files) > settings.MAX_UPLOAD_FILES:
        raise HTTPException(status_code=400, detail=f"Maximum {settings.MAX_UPLOAD_FILES} files per batch")
    out = [_to_out(_process(db, f, user)) for f in files]
    return BatchUploadResult(
        files=out,
        total_files=len(out),
        total_valid_rows=sum(r.summary.valid_rows for r in out),
    )


@router.post("/validate", response_model=ValidationReport)
def validate_upload(
    file: UploadFile = File(...),
    _user: User = Depends(require_permissions(PERM_CREATE)),
):
    data, filename = _read(file)
    result = spreadsheet.parse_file(data, filename, file.content_type)
    return ValidationReport(
        file_name=filename,
        total_rows=result.total_rows,
        valid_rows=result.valid_rows,
        invalid_rows=result.invalid_rows,
        is_valid=result.invalid_rows == 0 and result.valid_rows > 0,
        sample_errors=result.errors[:5],
        recommendations=spreadsheet.recommendations(result),
    )


# -------------------------- templates --------------------------

def _csv_download(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/template/csv", response_class=Response)
def download_template():
    return _csv_download(spreadsheet.template_csv(with_samples=False), "certificate_template.csv")


@router.get("/template/sample", response_class=Response)
def download_sample():
    return _csv_download(spreadsheet.template_csv(with_samples=True), "certificate_sample.csv")


# -------------------- criação de certificados --------------------

@router.post("/create-from-upload", response_model=BatchCreateResult, status_code=201)
def create_from_upload(
    payload: CreateFromUploadRequest,
    db: Session = Depends(get_db),
    ipfs=Depends(get_ipfs),
    user: User = Depends(require_permissions(PERM_CREATE)),
):
    if payload.upload_id:
        session = upload_svc.get_session(db, payload.upload_id, user)
        total = session.valid_rows
        batch_id, created, errors = upload_svc.create_from_session(
            db, ipfs, session, user, title_template=payload.title_template
        )
    elif payload.rows:
        parsed = spreadsheet.parse_rows(payload.rows)
        total = parsed.total_rows
        if not parsed.results:
            raise HTTPException(status_code=400, detail={"message": "No valid rows", "errors": parsed.errors})
        batch_id, created, errors = upload_svc.create_from_rows(
            db, ipfs, parsed.results, user, title_template=payload.title_template
        )
        errors = sorted(
            errors + [{"index": e["row_index"], "error": e["error"]} for e in parsed.errors],
            key=lambda e: e["index"],
        )
    else:
        raise HTTPException(status_code=400, detail="Provide upload_id or rows")

    return BatchCreateResult(
        batch_id=batch_id,
        created=[_certificate_out(c) for c in created],
        errors=errors,
        total=total,
        successful=len(created),
        failed=len(errors),
    )


# -------------------------- histórico --------------------------

@router.get("/history")
def upload_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(PERM_CREATE)),
):
    items, total = upload_svc.list_sessions(db, user, page=page, limit=limit)
    return {
        "items": [_summary(s) for s in items],
        "page": page,
        "limit": limit,
        "total": total,
        "pages": page_count(total, limit),
    }


@router.get("/status/{upload_id}", response_model=UploadResult)
def upload_status(
    upload_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(PERM_CREATE)),
):
    return _to_out(upload_svc.get_session(db, upload_id, user))
