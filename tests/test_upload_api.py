import io

from openpyxl import Workbook

from certmanager.core.config import settings
from certmanager.core.errors import IPFSError

UPLOAD = "/api/v1/upload"

CSV = (
    "studentId,name,email,institution,subject,grade,credits,completionDate\n"
    "STU001,John Doe,john.doe@example.com,University of Technology,Blockchain Fundamentals,A,3,2024-01-15\n"
    "STU002,Jane Smith,jane.smith@example.com,University of Technology,Smart Contracts,A+,4.6,\n"
    "STU003,X,bad-email,University of Technology,Solidity,B,2,2024-01-20\n"
)


def _csv_file(content=CSV, name="students.csv"):
    return {"file": (name, content.encode("utf-8"), "text/csv")}


def _xlsx_bytes():
    wb = Workbook()
    ws = wb.active
    ws.append(["Student ID", "Student Name", "College", "Course Name"])
    ws.append(["STU100", "Ada Lovelace", "Analytical College", "Mathematics"])
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_upload_csv(client, users):
    resp = client.post(f"{UPLOAD}/csv", files=_csv_file(), headers=users.creator.headers)
    assert resp.status_code == 201
    data = resp.json()
    summary = data["summary"]
    assert summary["upload_id"].startswith("upload_")
    assert summary["total_rows"] == 3
    assert summary["valid_rows"] == 2
    assert summary["invalid_rows"] == 1
    assert summary["status"] == "processed"
    assert data["errors"][0]["row_index"] == 3


def test_upload_requires_creator_permission(client, users):
    resp = client.post(f"{UPLOAD}/csv", files=_csv_file(), headers=users.verifier.headers)
    assert resp.status_code == 403


def test_upload_rejects_wrong_kind_and_empty_files(client, users):
    headers = users.creator.headers
    resp = client.post(
        f"{UPLOAD}/csv",
        files={"file": ("students.xlsx", _xlsx_bytes(), "application/octet-stream")},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Expected a CSV file"

    resp = client.post(f"{UPLOAD}/csv", files=_csv_file(content=""), headers=headers)
    assert resp.status_code == 400

    resp = client.post(f"{UPLOAD}/csv", files={"file": ("notes.txt", b"hello", "text/plain")}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_FILE_TYPE"


def test_upload_too_large(client, users, monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 64)
    resp = client.post(f"{UPLOAD}/csv", files=_csv_file(), headers=users.creator.headers)
    assert resp.status_code == 413


def test_upload_excel(client, users):
    resp = client.post(
        f"{UPLOAD}/excel",
        files={"file": ("students.xlsx", _xlsx_bytes(), "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")},
        headers=users.creator.headers,
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["summary"]["file_type"] == "xlsx"
    assert data["results"][0]["data"]["institution"] == "Analytical College"


def test_upload_batch(client, users, monkeypatch):
    files = [
        ("files", ("a.csv", CSV.encode("utf-8"), "text/csv")),
        ("files", ("b.xlsx", _xlsx_bytes(), "application/octet-stream")),
    ]
    resp = client.post(f"{UPLOAD}/batch", files=files, headers=users.creator.headers)
    assert resp.status_code == 201
    data = resp.json()
    assert data["total_files"] == 2
    assert data["total_valid_rows"] == 3

    monkeypatch.setattr(settings, "MAX_UPLOAD_FILES", 1)
    resp = client.post(f"{UPLOAD}/batch", files=files, headers=users.creator.headers)
    assert resp.status_code == 400


def test_validate_only_reports(client, users):
    resp = client.post(f"{UPLOAD}/validate", files=_csv_file(), headers=users.creator.headers)
    assert resp.status_code == 200
    report = resp.json()
    assert report["is_valid"] is False
    assert report["valid_rows"] == 2
    assert len(report["sample_errors"]) == 1
    assert "Ensure email addresses are in valid format" in report["recommendations"]

    history = client.get(f"{UPLOAD}/history", headers=users.creator.headers).json()
    assert history["total"] == 0


def test_templates(client):
    resp = client.get(f"{UPLOAD}/template/csv")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "certificate_template.csv" in resp.headers["content-disposition"]
    assert resp.text.startswith("studentId,name,email")

    resp = client.get(f"{UPLOAD}/template/sample")
    assert len(resp.text.strip().splitlines()) == 3


def test_create_from_upload(client, users):
    upload = client.post(f"{UPLOAD}/csv", files=_csv_file(), headers=users.creator.headers).json()
    upload_id = upload["summary"]["upload_id"]

    resp = client.post(
        f"{UPLOAD}/create-from-upload",
        json={"upload_id": upload_id, "title_template": "{subject} - {name}"},
        headers=users.creator.headers,
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["successful"] == 2
    assert data["failed"] == 0
    titles = sorted(c["title"] for c in data["created"])
    assert titles == ["Blockchain Fundamentals - John Doe", "Smart Contracts - Jane Smith"]
    jane = next(c for c in data["created"] if c["recipient"]["student_id"] == "STU002")
    assert jane["course"]["credits"] == 5
    assert jane["completion_date"] is not None
    assert all(c["status"] == "draft" and c["batch_id"] == data["batch_id"] for c in data["created"])

    status = client.get(f"{UPLOAD}/status/{upload_id}", headers=users.creator.headers).json()
    assert status["summary"]["status"] == "consumed"
    assert status["summary"]["batch_id"] == data["batch_id"]

    # uma sessão só gera certificados uma vez
    resp = client.post(
        f"{UPLOAD}/create-from-upload", json={"upload_id": upload_id}, headers=users.creator.headers
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "UPLOAD_CONSUMED"


def test_create_from_rows(client, users):
    rows = [
        {"student_id": "STU010", "Full Name": "Grace Hopper", "school": "Navy College", "course": "Compilers"},
        {"student_id": "STU011", "name": "Z"},
    ]
    resp = client.post(f"{UPLOAD}/create-from-upload", json={"rows": rows}, headers=users.creator.headers)
    assert resp.status_code == 201
    data = resp.json()
    assert data["total"] == 2
    assert data["successful"] == 1
    assert data["errors"][0]["index"] == 2
    assert data["created"][0]["title"] == "Certificate - Compilers"

    resp = client.post(f"{UPLOAD}/create-from-upload", json={}, headers=users.creator.headers)
    assert resp.status_code == 400


def _upload(client, users, content=CSV):
    resp = client.post(f"{UPLOAD}/csv", files=_csv_file(content=content), headers=users.creator.headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["summary"]


def test_create_from_upload_template_validation(client, users):
    upload_id = _upload(client, users)["upload_id"]
    for template in ("{unknown_field}", "{name.upper}", "{name[0]}", "{}", "{subject"):
        resp = client.post(
            f"{UPLOAD}/create-from-upload",
            json={"upload_id": upload_id, "title_template": template},
            headers=users.creator.headers,
        )
        assert resp.status_code == 422, template

    # formato incompatível com o valor só aparece na hora de montar o título
    resp = client.post(
        f"{UPLOAD}/create-from-upload",
        json={"upload_id": upload_id, "title_template": "{credits:d}"},
        headers=users.creator.headers,
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_TEMPLATE"


def test_template_with_optional_column_missing_in_some_rows(client, users):
    content = (
        "studentId,name,institution,subject,grade\n"
        "STU001,John Doe,University of Technology,Blockchain Fundamentals,A\n"
        "STU002,Jane Smith,University of Technology,Smart Contracts,\n"
    )
    upload_id = _upload(client, users, content)["upload_id"]
    resp = client.post(
        f"{UPLOAD}/create-from-upload",
        json={"upload_id": upload_id, "title_template": "{subject} {grade}"},
        headers=users.creator.headers,
    )
    assert resp.status_code == 201
    titles = sorted(c["title"] for c in resp.json()["created"])
    assert titles == ["Blockchain Fundamentals A", "Smart Contracts"]


def test_large_upload_is_created_in_chunks(client, users):
    lines = ["studentId,name,institution,subject"]
    lines += [f"STU{i:04d},Student {i},University of Technology,Distributed Systems" for i in range(105)]
    summary = _upload(client, users, "\n".join(lines) + "\n")
    assert summary["valid_rows"] == 105

    resp = client.post(
        f"{UPLOAD}/create-from-upload", json={"upload_id": summary["upload_id"]}, headers=users.creator.headers
    )
    assert resp.status_code == 201, resp.text
    data = resp.json()
    assert data["successful"] == 105
    assert {c["batch_id"] for c in data["created"]} == {data["batch_id"]}

    status = client.get(f"{UPLOAD}/status/{summary['upload_id']}", headers=users.creator.headers).json()
    assert status["summary"]["status"] == "consumed"


def test_upload_without_valid_rows_is_failed(client, users):
    summary = _upload(client, users, "studentId,name,institution,subject\nSTU001,X,U,S\n")
    assert summary["valid_rows"] == 0
    assert summary["status"] == "failed"

    resp = client.post(
        f"{UPLOAD}/create-from-upload", json={"upload_id": summary["upload_id"]}, headers=users.creator.headers
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "NO_VALID_ROWS"


def test_upload_marked_failed_when_storage_fails_and_can_be_retried(client, users, ipfs, monkeypatch):
    upload_id = _upload(client, users)["upload_id"]

    def _down(*args, **kwargs):
        raise IPFSError("IPFS upload failed")

    monkeypatch.setattr(ipfs, "pin_json", _down)
    resp = client.post(f"{UPLOAD}/create-from-upload", json={"upload_id": upload_id}, headers=users.creator.headers)
    assert resp.status_code == 201
    assert resp.json()["successful"] == 0
    assert resp.json()["failed"] == 2
    status = client.get(f"{UPLOAD}/status/{upload_id}", headers=users.creator.headers).json()
    assert status["summary"]["status"] == "failed"

    monkeypatch.undo()
    resp = client.post(f"{UPLOAD}/create-from-upload", json={"upload_id": upload_id}, headers=users.creator.headers)
    assert resp.json()["successful"] == 2
    status = client.get(f"{UPLOAD}/status/{upload_id}", headers=users.creator.headers).json()
    assert status["summary"]["status"] == "consumed"


def test_upload_sessions_are_private(client, users):
    upload = client.post(f"{UPLOAD}/csv", files=_csv_file(), headers=users.creator.headers).json()
    upload_id = upload["summary"]["upload_id"]

    assert client.get(f"{UPLOAD}/status/{upload_id}", headers=users.other_creator.headers).status_code == 403
    assert client.get(f"{UPLOAD}/status/{upload_id}", headers=users.admin.headers).status_code == 200
    assert client.get(f"{UPLOAD}/status/upload_missing", headers=users.creator.headers).status_code == 404

    assert client.get(f"{UPLOAD}/history", headers=users.creator.headers).json()["total"] == 1
    assert client.get(f"{UPLOAD}/history", headers=users.other_creator.headers).json()["total"] == 0
