# certmanager/schemas/upload.py
from __future__ import annotations

import string
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from certmanager.schemas.user import WALLET_PATTERN


class CertificateRow(BaseModel):
    """Linha de planilha já normalizada (aliases resolvidos)."""

    studentId: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    institution: str = Field(min_length=2, max_length=200)
    department: Optional[str] = Field(default=None, max_length=100)
    subject: str = Field(min_length=2, max_length=100)
    grade: Optional[str] = Field(default=None, max_length=10)
    credits: Optional[float] = Field(default=None, ge=0, le=999)
    completionDate: Optional[date] = None
    certificateType: Literal["academic", "professional", "training", "achievement"] = "academic"
    duration: Optional[str] = Field(default=None, max_length=50)
    walletAddress: Optional[str] = Field(default=None, pattern=WALLET_PATTERN)

    model_config = {"str_strip_whitespace": True}

    @field_validator("*", mode="before")
    @classmethod
    def _blank_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("certificateType", mode="before")
    @classmethod
    def _default_type(cls, v):
        if v is None or not str(v).strip():
            return "academic"
        return str(v).strip().lower()


class RowError(BaseModel):
    row_index: int
    error: str
    data: Dict[str, Any] = {}


class ParsedRow(BaseModel):
    row_index: int
    data: Dict[str, Any]


class UploadSummary(BaseModel):
    upload_id: str
    file_name: str
    file_type: str
    size_bytes: int
    total_rows: int
    valid_rows: int
    invalid_rows: int
    status: str
    batch_id: Optional[str] = None
    created_at: Optional[datetime] = None


class UploadResult(BaseModel):
    summary: UploadSummary
    results: List[ParsedRow]
    errors: List[RowError]


class BatchUploadResult(BaseModel):
    files: List[UploadResult]
    total_files: int
    total_valid_rows: int


class ValidationReport(BaseModel):
    file_name: str
    total_rows: int
    valid_rows: int
    invalid_rows: int
    is_valid: bool
    sample_errors: List[RowError]
    recommendations: List[str]


class CreateFromUploadRequest(BaseModel):
    upload_id: Optional[str] = None
    rows: Optional[List[Dict[str, Any]]] = Field(default=None, max_length=100)
    title_template: str = Field(default="Certificate - {subject}", max_length=200)

    @field_validator("title_template")
    @classmethod
    def _known_fields(cls, v: str) -> str:
        # só nomes simples de colunas; nada de atributo/índice
        for _, field, _, _ in string.Formatter().parse(v):
            if field is None:
                continue
            if field not in CertificateRow.model_fields:
                raise ValueError(f"Unknown template field: {{{field}}}")
        return v
