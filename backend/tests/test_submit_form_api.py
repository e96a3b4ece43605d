import json

from intake_api.core.config import settings
from intake_api.db.models import AuditEvent, EventType
from intake_api.services.drive_uploader import uploader
from intake_api.services.master_files import FEEDBACK_MASTER, INTAKE_MASTER
from intake_api.services.metadata_store import metadata_store
from intake_api.services.submissions import E2E_FILE_ID


def test_missing_email_is_rejected(client, intake_payload):
    del intake_payload["email"]
    res = client.post("/api/submit-form", json=intake_payload)
    assert res.status_code == 400
    body = res.json()
    assert body["success"] is False
    assert body["error"]["code"] == "VALIDATION_FAILED"
    assert "email" in body["message"]
    assert body["errors"][0]["field"] == "email"
    assert "requestId" in body["meta"]


def test_consent_is_required(client, intake_payload):
    intake_payload["consentAll"] = False
    res = client.post("/api/submit-form", json=intake_payload)
    assert res.status_code == 400
    assert res.json()["message"] == "Consent is required to proceed"


def test_non_object_body(client):
    res = client.post("/api/submit-form", json=["not", "an", "object"])
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "VALIDATION_FAILED"


def test_e2e_header_skips_side_effects(client, intake_payload):
    res = client.post("/api/submit-form", json=intake_payload, headers={"x-e2e-mode": "true"})
    assert res.status_code == 200
    body = res.json()
    assert body == {"success": True, "message": "Form submitted successfully (E2E mode)", "fileId": E2E_FILE_ID}
    assert list(settings.pdf_dir.iterdir()) == []
    assert list(settings.metadata_dir.iterdir()) == []


def test_intake_submission_saves_everything(client, db, intake_payload):
    res = client.post("/api/submit-form", json=dict(intake_payload, medicalConditions="Asthma"))
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["success"] is True
    assert body["filename"].startswith("Client_Intake_Test_User_")
    assert body["fileId"] == "local-" + body["filename"][:-4]
    assert res.headers["X-Request-ID"]

    pdf = settings.pdf_dir / body["filename"]
    assert pdf.read_bytes().startswith(b"%PDF")

    metadata = json.loads((settings.metadata_dir / (body["filename"][:-4] + ".json")).read_text())
    assert metadata["formType"] == "seated"
    assert metadata["clientName"] == "Test User"
    assert metadata["medicalConditions"] == ["Asthma"]

    master = json.loads((settings.pdf_dir / INTAKE_MASTER).read_text())
    assert [e["filename"] for e in master] == [body["filename"]]

    events = db.query(AuditEvent).filter(AuditEvent.event_type == EventType.SUBMISSION_RECEIVED).all()
    assert len(events) == 1
    assert events[0].subject_id == body["filename"]
    assert events[0].payload["storage"] == "local"


def test_feedback_submission(client):
    res = client.post("/api/submit-form", json={
        "formType": "feedback",
        "fullName": "Jo Client",
        "therapistName": "Sam",
        "feelingPost": 9,
        "wouldRecommend": "yes",
    })
    assert res.status_code == 200, res.text
    assert res.json()["filename"].startswith("Post_Session_Feedback_Jo_Client_")

    master = json.loads((settings.pdf_dir / FEEDBACK_MASTER).read_text())
    assert master[0]["wouldRecommend"] == "Yes"
    assert master[0]["therapistName"] == "Sam"


def test_submission_refreshes_analytics(client, admin_headers, intake_payload):
    before = client.get("/api/analytics/summary", headers=admin_headers).json()
    assert before["totalIntakes"] == 0

    client.post("/api/submit-form", json=intake_payload)
    after = client.get("/api/analytics/summary", headers=admin_headers).json()
    assert after["totalIntakes"] == 1


def test_storage_failure(client, intake_payload, monkeypatch):
    monkeypatch.setattr(uploader.cfg, "ALLOW_LOCAL_PDF_FALLBACK", False)
    res = client.post("/api/submit-form", json=intake_payload)
    assert res.status_code == 500
    assert res.json()["error"]["code"] == "STORAGE_FAILED"
    assert not (settings.pdf_dir / INTAKE_MASTER).exists()


def test_corrupt_master_file_does_not_fail_submission(client, intake_payload):
    master = settings.pdf_dir / INTAKE_MASTER
    master.write_text("{not json", encoding="utf-8")

    res = client.post("/api/submit-form", json=intake_payload)
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["success"] is True
    assert (settings.pdf_dir / body["filename"]).read_bytes().startswith(b"%PDF")
    assert (settings.metadata_dir / (body["filename"][:-4] + ".json")).exists()
    assert master.read_text(encoding="utf-8") == "{not json"


def test_metadata_write_failure_does_not_fail_submission(client, db, intake_payload, monkeypatch):
    def disk_full(form_data, filename):
        raise OSError("No space left on device")

    monkeypatch.setattr(metadata_store, "save_metadata", disk_full)
    res = client.post("/api/submit-form", json=intake_payload)
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["success"] is True
    assert (settings.pdf_dir / body["filename"]).read_bytes().startswith(b"%PDF")
    assert not (settings.pdf_dir / INTAKE_MASTER).exists()
    assert db.query(AuditEvent).filter(AuditEvent.event_type == EventType.SUBMISSION_RECEIVED).count() == 0


def test_wizard_run_submission_writes_pdf(client, intake_steps):
    run_id = client.post("/api/wizard/begin").json()["run_id"]
    for number, answers in enumerate(intake_steps, start=1):
        client.post("/api/wizard/step", json={"run_id": run_id, "step": number, "answers": answers})

    res = client.post("/api/wizard/submit", json={"run_id": run_id})
    assert res.status_code == 200, res.text
    body = res.json()
    assert (settings.pdf_dir / body["filename"]).exists()

    resumed = client.post("/api/wizard/resume", json={"run_id": run_id}).json()
    assert resumed["status"] == "submitted"
    assert resumed["file_id"] == body["fileId"]


def test_log_error(client):
    res = client.post("/api/log-error", json={"containerId": "wizard", "error": "TypeError: x", "errorCount": 5})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["message"] == "Error logged successfully"
    assert body["errorId"] == res.headers["X-Request-ID"]

    res = client.post("/api/log-error", json={"error": "no container"})
    assert res.status_code == 400
    assert res.json()["message"] == "Missing required error information"
