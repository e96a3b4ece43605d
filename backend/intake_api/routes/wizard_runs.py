# Uses api/wizard.py (engine) + services/storage.py (persistence) to provide stateful wizard endpoints

from datetime import timedelta
from typing import Any, Dict, Optional
from uuid import uuid4
import base64
import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

# engine bits we REUSE (validation rules live there, not here)
from intake_api.api.wizard import (
    START_STEP,
    assemble_payload,
    describe_step,
    get_form,
    get_step,
    total_steps,
    validate_step,
)
from intake_api.api.deps import get_db
from intake_api.core.config import FORM_SCHEMA_VERSION, settings
from intake_api.core.errors import ApiError, build_meta
from intake_api.services.storage import WizardRun, WizardRunStore, ts_utc_iso
from intake_api.services.submissions import is_e2e_request, process_submission

logger = logging.getLogger(__name__)

router = APIRouter()

# One store instance per process
STORE = WizardRunStore()


# ---------- helpers ----------

def _new_run_id() -> str:
    """URL-safe short id from 16 random bytes (~22 chars)."""
    return base64.urlsafe_b64encode(uuid4().bytes).rstrip(b"=").decode("ascii")


def _require_run(run_id: str) -> WizardRun:
    run = STORE.get_run(run_id)
    if run is None:
        raise ApiError(404, "UNKNOWN_RUN", f"Run '{run_id}' not found.")
    return run


def _require_active(run: WizardRun) -> None:
    if run.get("status") != "active":
        raise ApiError(409, "STATUS_INACTIVE", f"Run is {run.get('status')}.")


def _purge_drafts() -> None:
    purged = STORE.purge_stale(timedelta(hours=settings.DRAFT_TTL_HOURS))
    if purged:
        logger.info("Purged stale wizard drafts", extra={"count": purged})


def _run_view(run: WizardRun) -> Dict[str, Any]:
    """What the client needs to render the run right now."""
    body: Dict[str, Any] = {
        "run_id": run["run_id"],
        "form_type": run["form_type"],
        "status": run["status"],
        "version": run["version"],
        "meta": build_meta(),
    }
    if run["status"] == "active":
        body["done"] = False
        body["step"] = describe_step(run["form_type"], run["cursor"], run["answers"])
        body["answers"] = run["answers"]
    else:
        body["done"] = True
        body["step"] = None
        body["payload"] = run.get("payload")
        body["file_id"] = run.get("file_id")
    return body


# ---------- request models ----------

class BeginRequest(BaseModel):
    form_type: str = "intake"


class RunRequest(BaseModel):
    run_id: str


class DraftRequest(BaseModel):
    run_id: str
    answers: Dict[str, Any] = Field(default_factory=dict)


class StepRequest(BaseModel):
    run_id: str
    step: int
    answers: Dict[str, Any] = Field(default_factory=dict)


class GotoRequest(BaseModel):
    run_id: str
    step: int


# ---------- endpoints ----------

@router.post("/wizard/begin")
def begin_run(req: Optional[BeginRequest] = None):
    """Create a new run and return the first step."""
    req = req or BeginRequest()
    get_form(req.form_type)  # UNKNOWN_FORM before anything is stored
    _purge_drafts()

    record: WizardRun = {
        "run_id": _new_run_id(),
        "form_type": req.form_type,
        "version": FORM_SCHEMA_VERSION,
        "status": "active",
        "cursor": START_STEP,
        "touched": [],
        "history": [],
        "answers": {},
        "payload": None,
        "file_id": None,
    }
    STORE.create_run(record)
    return _run_view(STORE.get_run(record["run_id"]))


@router.post("/wizard/resume")
def resume_run(req: RunRequest):
    """Reattach to an existing run; active runs come back with their saved answers."""
    return _run_view(_require_run(req.run_id))


@router.post("/wizard/draft")
def save_draft(req: DraftRequest):
    """Autosave: merge answers without validating or moving the cursor."""
    run = _require_run(req.run_id)
    _require_active(run)

    answers = {**run["answers"], **req.answers}
    updated = STORE.update_run(run["run_id"], answers=answers)
    return {
        "run_id": updated["run_id"],
        "saved": True,
        "updated_at": updated["updated_at"],
        "meta": build_meta(),
    }


@router.post("/wizard/step")
def submit_step(req: StepRequest):
    """
    Merge the step's answers, validate the current step and advance.
    Answers are kept even when validation fails so nothing typed is lost.
    """
    run = _require_run(req.run_id)
    _require_active(run)

    cursor = run["cursor"]
    if req.step != cursor:
        raise ApiError(400, "FLOW_DIVERGENCE", f"Expected step {cursor}, got {req.step}.")

    form_type = run["form_type"]
    run["answers"] = {**run["answers"], **req.answers}
    state = validate_step(form_type, cursor, run["answers"])

    if not state["valid"]:
        STORE.replace_run(run)
        raise ApiError(400, "STEP_INVALID", state["message"], extra={"validation": state, "step": cursor})

    run["history"].append({"step": cursor, "answered_at": ts_utc_iso()})
    if cursor not in run["touched"]:
        run["touched"].append(cursor)

    if cursor >= total_steps(form_type):
        run["status"] = "completed"
        run["cursor"] = None
        run["payload"] = assemble_payload(form_type, run["answers"])
    else:
        run["cursor"] = cursor + 1

    return _run_view(STORE.replace_run(run))


@router.post("/wizard/back")
def step_back(req: RunRequest):
    """Move one step back. A completed run reopens at its last step."""
    run = _require_run(req.run_id)

    if run["status"] == "completed":
        run["status"] = "active"
        run["cursor"] = total_steps(run["form_type"])
        run["payload"] = None
        return _run_view(STORE.replace_run(run))

    _require_active(run)
    if run["cursor"] <= START_STEP:
        raise ApiError(400, "INVALID_STEP", "Already at the first step.")

    run["cursor"] -= 1
    return _run_view(STORE.replace_run(run))


@router.post("/wizard/goto")
def goto_step(req: GotoRequest):
    """Jump back to an earlier step (progress bar navigation)."""
    run = _require_run(req.run_id)
    _require_active(run)

    get_step(run["form_type"], req.step)  # INVALID_STEP for out-of-range numbers
    if req.step > run["cursor"]:
        raise ApiError(400, "INVALID_STEP", f"Cannot skip ahead to step {req.step}.")

    run["cursor"] = req.step
    return _run_view(STORE.replace_run(run))


@router.post("/wizard/cancel")
def cancel_run(req: RunRequest):
    run = _require_run(req.run_id)
    if run["status"] not in ("active", "completed"):
        raise ApiError(409, "STATUS_INACTIVE", f"Run is {run['status']}.")

    run["status"] = "cancelled"
    run["cursor"] = None
    return _run_view(STORE.replace_run(run))


@router.get("/wizard/runs/{run_id}/answers")
def show_answer_log(run_id: str):
    """Per-step stitched answer log for every step the run has passed."""
    run = _require_run(run_id)
    form = get_form(run["form_type"])

    answered_at = {}
    for item in run["history"]:
        answered_at[item["step"]] = item["answered_at"]  # latest pass wins

    results = []
    for step in form["steps"]:
        num = step["step"]
        values = {f["id"]: run["answers"][f["id"]] for f in step["fields"] if f["id"] in run["answers"]}
        if num not in run["touched"] and not values:
            continue
        results.append({
            "step": num,
            "title": step["title"],
            "answered_at": answered_at.get(num),
            "answers": values if values else {"incomplete": True},
        })

    return {"run_id": run["run_id"], "status": run["status"], "steps": results, "meta": build_meta()}


@router.post("/wizard/submit")
def submit_run(req: RunRequest, request: Request, db: Session = Depends(get_db)):
    """Push a completed run through the same pipeline as /api/submit-form."""
    run = _require_run(req.run_id)
    # only one request may take a run out of "completed"
    claimed = STORE.transition_status(run["run_id"], "completed", "submitting")
    if claimed is None:
        status = (STORE.get_run(run["run_id"]) or run).get("status")
        raise ApiError(409, "STATUS_INACTIVE", f"Run is {status}; only completed runs can be submitted.")

    try:
        result = process_submission(
            dict(claimed["payload"] or {}),
            db,
            request_id=getattr(request.state, "request_id", None),
            e2e=is_e2e_request(request),
        )
    except Exception:
        STORE.transition_status(run["run_id"], "submitting", "completed")
        raise

    STORE.update_run(run["run_id"], status="submitted", file_id=result.get("fileId"))
    return {"run_id": run["run_id"], "done": True, **result, "meta": build_meta()}
