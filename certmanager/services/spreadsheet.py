# certmanager/services/spreadsheet.py
"""Leitura de planilhas CSV/XLSX com dados de certificados."""
from __future__ import annotations

import csv
import io
import os
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import ValidationError

from certmanager.core.errors import AppError
from certmanager.schemas.upload import CertificateRow

logger = structlog.get_logger()

SUPPORTED_MIME_TYPES = {
    "text/csv",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
SUPPORTED_EXTENSIONS = {".csv", ".xls", ".xlsx"}

# campo canônico -> cabeçalhos aceitos (já normalizados)
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "studentId": ("studentid", "student_id", "student_number", "id", "roll_no", "roll_number"),
    "name": ("name", "student_name", "full_name", "student"),
    "email": ("email", "email_address", "student_email"),
    "institution": ("institution", "school", "college", "university", "institute"),
    "department": ("department", "dept", "faculty", "school_department"),
    "subject": ("subject", "course", "course_name", "subject_name", "module"),
    "grade": ("grade", "marks", "score", "result", "cgpa", "gpa"),
    "credits": ("credits", "credit_hours", "units", "credit_points"),
    "completionDate": ("completiondate", "completion_date", "date_completed", "graduation_date", "date"),
    "certificateType": ("certificatetype", "certificate_type", "type", "category"),
    "duration": ("duration", "course_duration", "period"),
    "walletAddress": ("walletaddress", "wallet_address", "wallet", "ethereum_address", "address"),
}
REQUIRED_FIELDS = ("studentId", "name", "institution", "subject")

TEMPLATE_HEADERS = [
    "studentId", "name", "email", "institution", "department", "subject", "grade",
    "credits", "completionDate", "certificateType", "duration", "walletAddress",
]
SAMPLE_ROWS = [
    ["STU001", "John Doe", "john.doe@example.com", "University of Technology", "Computer Science",
     "Blockchain Fundamentals", "A", "3", "2024-01-15", "academic", "3 months",
     "0x742d35Cc6634C0532925a3b8D4C9db96C4b4d8b6"],
    ["STU002", "Jane Smith", "jane.smith@example.com", "University of Technology", "Computer Science",
     "Smart Contract Development", "A+", "4", "2024-01-20", "academic", "4 months", ""],
]

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%m/%d/%Y", "%Y/%m/%d", "%d-%m-%Y")


def normalize_header(header: Any) -> str:
    return re.sub(r"\s+", "_", str(header or "").strip().lower())


_ALIAS_LOOKUP = {alias: canonical for canonical, aliases in FIELD_ALIASES.items() for alias in aliases}


@dataclass
class ParseResult:
    file_name: str
    file_type: str
    results: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.results) + len(self.errors)

    @property
    def valid_rows(self) -> int:
        return len(self.results)

    @property
    def invalid_rows(self) -> int:
        return len(self.errors)


def validate_file_type(filename: str, mime_type: Optional[str]) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in SUPPORTED_EXTENSIONS and (mime_type or "") not in SUPPORTED_MIME_TYPES:
        raise AppError("Invalid file type. Please upload CSV or Excel files only.", code="INVALID_FILE_TYPE")
    if ext == ".xls" or (not ext and mime_type == "application/vnd.ms-excel"):
        raise AppError("Legacy .xls workbooks are not supported; save the file as .xlsx", code="INVALID_FILE_TYPE")
    if ext == ".xlsx" or mime_type == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet":
        return "xlsx"
    return "csv"


def map_headers(headers: Iterable[Any]) -> Dict[int, str]:
    """Índice da coluna -> campo canônico; colunas desconhecidas são ignoradas."""
    mapping: Dict[int, str] = {}
    for idx, header in enumerate(headers):
        canonical = _ALIAS_LOOKUP.get(normalize_header(header))
        if canonical and canonical not in mapping.values():
            mapping[idx] = canonical
    missing = [f for f in REQUIRED_FIELDS if f not in mapping.values()]
    if missing:
        raise AppError(
            f"Missing required columns: {', '.join(missing)}",
            code="MISSING_COLUMNS",
            details={"missing": missing, "accepted": {f: list(FIELD_ALIASES[f]) for f in missing}},
        )
    return mapping


def _cell(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if value is None:
        return None
    return str(value).strip()


def _parse_date(value: Any) -> Any:
    if not isinstance(value, str) or not value:
        return value
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return value


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "row"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def validate_row(raw: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(raw)
    if "completionDate" in data:
        data["completionDate"] = _parse_date(data["completionDate"])
    row = CertificateRow.model_validate(data)
    return row.model_dump(mode="json", exclude_none=True)


def _collect(rows: Iterable[List[Any]], mapping: Dict[int, str], result: ParseResult) -> None:
    row_index = 0
    for values in rows:
        cells = [_cell(v) for v in values]
        if not any(c not in (None, "") for c in cells):
            continue
        row_index += 1
        raw = {name: cells[idx] if idx < len(cells) else None for idx, name in mapping.items()}
        try:
            result.results.append({"row_index": row_index, "data": validate_row(raw)})
        except ValidationError as exc:
            result.errors.append({
                "row_index": row_index,
                "error": f"Row {row_index}: {_format_errors(exc)}",
                "data": {k: v for k, v in raw.items() if v not in (None, "")},
            })


def parse_csv(content: bytes, filename: str) -> ParseResult:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")
    reader = csv.reader(io.StringIO(text))
    headers = next(reader, None)
    if not headers:
        raise AppError("The uploaded file is empty", code="EMPTY_FILE")
    result = ParseResult(file_name=filename, file_type="csv")
    _collect(reader, map_headers(headers), result)
    logger.info("upload.csv_parsed", file=filename, total=result.total_rows, invalid=result.invalid_rows)
    return result


def parse_xlsx(content: bytes, filename: str) -> ParseResult:
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as exc:
        raise AppError(f"Could not read Excel file: {exc}", code="INVALID_FILE") from exc
    try:
        sheet = wb.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        headers = next(rows, None)
        if not headers:
            raise AppError("The uploaded file is empty", code="EMPTY_FILE")
        result = ParseResult(file_name=filename, file_type="xlsx")
        _collect((list(r) for r in rows), map_headers(headers), result)
    finally:
        wb.close()
    logger.info("upload.xlsx_parsed", file=filename, total=result.total_rows, invalid=result.invalid_rows)
    return result


def parse_file(content: bytes, filename: str, mime_type: Optional[str]) -> ParseResult:
    kind = validate_file_type(filename, mime_type)
    return parse_xlsx(content, filename) if kind == "xlsx" else parse_csv(content, filename)


def parse_rows(rows: List[Dict[str, Any]]) -> ParseResult:
    """Valida linhas enviadas como JSON (mesmas regras e aliases da planilha)."""
    result = ParseResult(file_name="inline", file_type="json")
    for idx, row in enumerate(rows, start=1):
        raw: Dict[str, Any] = {}
        for key, value in row.items():
            canonical = _ALIAS_LOOKUP.get(normalize_header(key))
            if canonical and canonical not in raw:
                raw[canonical] = _cell(value)
        try:
            result.results.append({"row_index": idx, "data": validate_row(raw)})
        except ValidationError as exc:
            result.errors.append({"row_index": idx, "error": f"Row {idx}: {_format_errors(exc)}", "data": raw})
    return result


def recommendations(result: ParseResult) -> List[str]:
    out: List[str] = []
    if result.invalid_rows > 0:
        out.append("Fix validation errors before proceeding with certificate creation")
    if result.valid_rows == 0:
        out.append("No valid data found. Please check your file format and required fields")
    if any("email" in e["error"] for e in result.errors):
        out.append("Ensure email addresses are in valid format")
    if any("completionDate" in e["error"] or "date" in e["error"].lower() for e in result.errors):
        out.append("Use YYYY-MM-DD format for dates")
    return out


def template_csv(with_samples: bool = False) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(TEMPLATE_HEADERS)
    if with_samples:
        writer.writerows(SAMPLE_ROWS)
    return buf.getvalue()
