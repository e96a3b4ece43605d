from datetime import datetime, timedelta, timezone

import pytest

from intake_api.routes.wizard_runs import STORE
from intake_api.services.drive_uploader import uploader
from intake_api.services.storage import WizardRunStore


def _begin(client, form_type="intake"):
    res = client.post("/api/wizard/begin", json={"form_type": form_type})
    assert res.status_code == 200, res.text
    return res.json()


def _step(client, run_id, step, answers):
    return client.post("/api/wizard/step", json={"run_id": run_id, "step": step, "answers": answers})


def _complete(client, intake_steps):
    run = _begin(client)
    for number, answers in enumerate(intake_steps, start=1):
        res = _step(client, run["run_id"], number, answers)
        assert res.status_code == 200, res.text
    return res.json()


def test_begin_returns_first_step(client):
    run = _begin(client)
    assert run["status"] == "active"
    assert run["done"] is False
    assert run["step"]["step"] == 1
    assert run["step"]["total"] == 5
    assert run["answers"] == {}
    assert len(STORE) == 1


def test_begin_without_body_defaults_to_intake(client):
    res = client.post("/api/wizard/begin")
    assert res.status_code == 200
    assert res.json()["form_type"] == "intake"


def test_begin_unknown_form(client):
    res = client.post("/api/wizard/begin", json={"form_type": "survey"})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "UNKNOWN_FORM"
    assert len(STORE) == 0


def test_unknown_run(client):
    res = client.post("/api/wizard/resume", json={"run_id": "missing"})
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "UNKNOWN_RUN"


def test_invalid_step_keeps_answers(client):
    run = _begin(client)
    res = _step(client, run["run_id"], 1, {"firstName": "Test", "email": "bad"})
    assert res.status_code == 400
    body = res.json()
    assert body["error"]["code"] == "STEP_INVALID"
    assert body["message"] == "Please enter your last name."
    assert body["step"] == 1
    assert "email" in body["validation"]["fields"]

    resumed = client.post("/api/wizard/resume", json={"run_id": run["run_id"]}).json()
    assert resumed["answers"]["firstName"] == "Test"
    assert resumed["step"]["step"] == 1


def test_step_must_match_cursor(client, intake_steps):
    run = _begin(client)
    res = _step(client, run["run_id"], 2, intake_steps[1])
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "FLOW_DIVERGENCE"


def test_full_run_completes_with_payload(client, intake_steps):
    body = _complete(client, intake_steps)
    assert body["status"] == "completed"
    assert body["done"] is True
    assert body["step"] is None
    assert body["payload"]["formType"] == "intake"
    assert body["payload"]["firstName"] == "Test"
    assert body["payload"]["consentAll"] is True


def test_draft_merges_without_moving(client):
    run = _begin(client)
    res = client.post("/api/wizard/draft", json={"run_id": run["run_id"], "answers": {"firstName": "Dee"}})
    assert res.status_code == 200
    assert res.json()["saved"] is True

    client.post("/api/wizard/draft", json={"run_id": run["run_id"], "answers": {"lastName": "Raft"}})
    resumed = client.post("/api/wizard/resume", json={"run_id": run["run_id"]}).json()
    assert resumed["answers"] == {"firstName": "Dee", "lastName": "Raft"}
    assert resumed["step"]["step"] == 1


def test_back_and_goto(client, intake_steps):
    run = _begin(client)
    run_id = run["run_id"]

    res = client.post("/api/wizard/back", json={"run_id": run_id})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "INVALID_STEP"

    _step(client, run_id, 1, intake_steps[0])
    _step(client, run_id, 2, intake_steps[1])

    res = client.post("/api/wizard/back", json={"run_id": run_id})
    assert res.json()["step"]["step"] == 2

    res = client.post("/api/wizard/goto", json={"run_id": run_id, "step": 4})
    assert res.status_code == 400

    res = client.post("/api/wizard/goto", json={"run_id": run_id, "step": 1})
    assert res.status_code == 200
    assert res.json()["step"]["step"] == 1

    res = client.post("/api/wizard/goto", json={"run_id": run_id, "step": 9})
    assert res.json()["error"]["code"] == "INVALID_STEP"


def test_back_reopens_completed_run(client, intake_steps):
    body = _complete(client, intake_steps)
    res = client.post("/api/wizard/back", json={"run_id": body["run_id"]})
    reopened = res.json()
    assert reopened["status"] == "active"
    assert reopened["step"]["step"] == 5
    assert reopened["answers"]["signature"] == "text:Test User"


def test_cancel(client):
    run = _begin(client)
    res = client.post("/api/wizard/cancel", json={"run_id": run["run_id"]})
    assert res.json()["status"] == "cancelled"

    res = client.post("/api/wizard/cancel", json={"run_id": run["run_id"]})
    assert res.status_code == 409

    res = client.post("/api/wizard/draft", json={"run_id": run["run_id"], "answers": {}})
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "STATUS_INACTIVE"


def test_answer_log(client, intake_steps):
    run = _begin(client)
    _step(client, run["run_id"], 1, intake_steps[0])
    _step(client, run["run_id"], 2, {"occupation": "Teacher"})  # fails, answers kept

    res = client.get(f"/api/wizard/runs/{run['run_id']}/answers")
    steps = res.json()["steps"]
    assert [s["step"] for s in steps] == [1, 2]
    assert steps[0]["title"] == "Client Details"
    assert steps[0]["answered_at"] is not None
    assert steps[0]["answers"]["email"] == "test.user@example.com"
    assert steps[1]["answered_at"] is None
    assert steps[1]["answers"] == {"occupation": "Teacher"}


def test_submit_requires_completed_run(client):
    run = _begin(client)
    res = client.post("/api/wizard/submit", json={"run_id": run["run_id"]})
    assert res.status_code == 409


def test_submit_completed_run_in_e2e_mode(client, intake_steps):
    body = _complete(client, intake_steps)
    res = client.post("/api/wizard/submit", json={"run_id": body["run_id"]}, headers={"x-e2e-mode": "true"})
    assert res.status_code == 200, res.text
    result = res.json()
    assert result["success"] is True
    assert result["fileId"] == "e2e-test-mock-id"

    resumed = client.post("/api/wizard/resume", json={"run_id": body["run_id"]}).json()
    assert resumed["status"] == "submitted"
    assert resumed["file_id"] == "e2e-test-mock-id"


def test_submit_is_refused_while_another_submit_runs(client, intake_steps):
    body = _complete(client, intake_steps)
    STORE.update_run(body["run_id"], status="submitting")

    res = client.post("/api/wizard/submit", json={"run_id": body["run_id"]})
    assert res.status_code == 409
    assert "submitting" in res.json()["message"]


def test_failed_submit_leaves_run_completed(client, intake_steps, monkeypatch):
    monkeypatch.setattr(uploader.cfg, "ALLOW_LOCAL_PDF_FALLBACK", False)
    body = _complete(client, intake_steps)

    res = client.post("/api/wizard/submit", json={"run_id": body["run_id"]})
    assert res.status_code == 500
    assert STORE.get_run(body["run_id"])["status"] == "completed"


def test_store_transition_status():
    store = WizardRunStore()
    store.create_run({"run_id": "r1", "status": "completed"})

    assert store.transition_status("r1", "completed", "submitting")["status"] == "submitting"
    assert store.transition_status("r1", "completed", "submitting") is None
    assert store.transition_status("missing", "completed", "submitting") is None
    assert store.get_run("r1")["status"] == "submitting"


def test_store_purges_stale_runs():
    store = WizardRunStore()
    store.create_run({"run_id": "old", "updated_at": "2020-01-01T00:00:00.000Z"})
    store.create_run({"run_id": "new"})

    purged = store.purge_stale(timedelta(hours=1), now=datetime.now(timezone.utc))
    assert purged == 1
    assert store.get_run("old") is None
    assert store.get_run("new") is not None


def test_store_hands_out_copies():
    store = WizardRunStore()
    store.create_run({"run_id": "r1", "answers": {}})
    run = store.get_run("r1")
    run["answers"]["leak"] = True
    assert store.get_run("r1")["answers"] == {}

    with pytest.raises(ValueError):
        store.create_run({"run_id": "r1"})
    with pytest.raises(KeyError):
        store.update_run("nope", status="active")
