from __future__ import annotations  # deferred evaluation of type hints

from typing import Dict, Optional, List, TypedDict, Literal, Any
import threading   # concurrent requests share one store
import copy        # callers get copies, never the store's own dicts
from datetime import datetime, timedelta, timezone

RunStatus = Literal["active", "completed", "submitting", "submitted", "cancelled"]


class HistoryStep(TypedDict):  # one accepted step of a run
    step: int
    answered_at: str


class WizardRun(TypedDict, total=False):
    run_id: str
    form_type: str
    version: str
    status: RunStatus
    cursor: Optional[int]
    touched: List[int]
    history: List[HistoryStep]
    answers: Dict[str, Any]
    payload: Optional[Dict[str, Any]]
    file_id: Optional[str]
    created_at: str
    updated_at: str


# ---- Helper function ----
def ts_utc_iso() -> str:
    now_utc = datetime.now(timezone.utc)
    return now_utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


# ---- Store Implementation ----

class WizardRunStore:
    def __init__(self) -> None:
        self._runs: Dict[str, WizardRun] = {}   # run_id -> WizardRun
        self._lock = threading.RLock()  # re-entrant so methods may call each other

    def create_run(self, run: WizardRun) -> None:   # insert a brand new run, fails if run_id already exists
        if "run_id" not in run or not run["run_id"]:
            raise ValueError("create_run: run.run_id is required.")

        with self._lock:
            if run["run_id"] in self._runs:
                raise ValueError(f"create_run: run_id '{run['run_id']}' already exists.")

            run = copy.deepcopy(run)
            run.setdefault("created_at", ts_utc_iso())
            run.setdefault("updated_at", run["created_at"])

            self._runs[run["run_id"]] = run

    def get_run(self, run_id: str) -> Optional[WizardRun]:
        with self._lock:
            run = self._runs.get(run_id)
            return copy.deepcopy(run) if run else None

    def update_run(self, run_id: str, **changes: Any) -> WizardRun:
        with self._lock:
            if run_id not in self._runs:
                raise KeyError(f"update_run: run_id '{run_id}' not found")

            record = self._runs[run_id]
            for k, v in changes.items():
                record[k] = copy.deepcopy(v)

            # Always bump updated_at
            record["updated_at"] = ts_utc_iso()
            return copy.deepcopy(record)

    def transition_status(self, run_id: str, expected: RunStatus, new: RunStatus, **changes: Any) -> Optional[WizardRun]:
        """Move a run from expected to new in one step. None when the run is missing or in another status."""
        with self._lock:
            record = self._runs.get(run_id)
            if record is None or record.get("status") != expected:
                return None
            return self.update_run(run_id, status=new, **changes)

    def replace_run(self, run: WizardRun) -> WizardRun:
        if "run_id" not in run or not run["run_id"]:
            raise ValueError("replace_run: run.run_id is required")

        with self._lock:
            run_id = run["run_id"]
            if run_id not in self._runs:
                raise KeyError(f"replace_run: run_id '{run_id}' not found")

            new_run = copy.deepcopy(run)
            new_run["updated_at"] = ts_utc_iso()
            self._runs[run_id] = new_run
            return copy.deepcopy(new_run)

    def delete_run(self, run_id: str) -> bool:
        with self._lock:
            return self._runs.pop(run_id, None) is not None

    def purge_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """Drop runs whose last update is older than max_age. Returns how many went."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            stale = [
                run_id for run_id, run in self._runs.items()
                if now - _parse_ts(run["updated_at"]) > max_age
            ]
            for run_id in stale:
                del self._runs[run_id]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._runs.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)
