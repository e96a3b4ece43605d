"""One flat JSON snapshot per submission under metadata/, used by analytics and master files."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from intake_api.api.wizard import as_list
from intake_api.core.config import settings

logger = logging.getLogger(__name__)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _client_name(form_data: Dict[str, Any]) -> str:
    if form_data.get("fullName"):
        return str(form_data["fullName"]).strip()
    parts = [form_data.get("firstName"), form_data.get("lastName")]
    return " ".join(str(p).strip() for p in parts if p)


def extract_metadata(form_data: Dict[str, Any], filename: str) -> Dict[str, Any]:
    form_type = form_data.get("formType") or "intake"
    is_feedback = form_type == "feedback"

    metadata: Dict[str, Any] = {
        "filename": filename,
        "formType": form_type,
        "category": "feedback" if is_feedback else "intake",
        "clientName": _client_name(form_data),
        "email": (form_data.get("email") or "").strip().lower() or None,
        "mobile": form_data.get("mobile") or None,
        "brand": form_data.get("selectedBrand") or "flexion",
        "submittedAt": form_data.get("submissionDate") or _iso_now(),
    }

    if is_feedback:
        metadata.update({
            "therapistName": form_data.get("therapistName") or None,
            "feelingPre": form_data.get("feelingPre"),
            "feelingPost": form_data.get("feelingPost"),
            "wouldRecommend": form_data.get("wouldRecommend") or None,
            "hasComments": bool(form_data.get("feedbackComments")),
        })
    else:
        metadata.update({
            "dateOfBirth": form_data.get("dateOfBirth") or None,
            "gender": form_data.get("gender") or None,
            "visitGoals": as_list(form_data.get("visitGoals")),
            "referralSource": form_data.get("referralSource") or None,
            "feelingPre": form_data.get("feelingPre"),
            "sleepQuality": form_data.get("sleepQuality"),
            "stressLevel": form_data.get("stressLevel"),
            "takingMedications": form_data.get("takingMedications") or None,
            "hasAllergies": form_data.get("hasAllergies") or None,
            "hasRecentInjuries": form_data.get("hasRecentInjuries") or None,
            "medicalConditions": as_list(form_data.get("medicalConditions")),
            "pregnantBreastfeeding": form_data.get("pregnantBreastfeeding") or None,
            "painLevel": form_data.get("painLevel"),
            "pressurePreference": form_data.get("pressurePreference") or None,
            "bodyAreas": as_list(form_data.get("bodyAreas")),
            "areasToAvoid": form_data.get("areasToAvoid") or None,
            "avoidNotes": form_data.get("avoidNotes") or None,
            "reviewNote": form_data.get("reviewNote") or None,
            "emailOptIn": form_data.get("emailOptIn"),
        })

    return metadata


class MetadataStore:
    def __init__(self, metadata_dir: Optional[Path] = None):
        self.metadata_dir = Path(metadata_dir or settings.metadata_dir)

    def path_for(self, filename: str) -> Path:
        return self.metadata_dir / f"{Path(filename).stem}.json"

    def save_metadata(self, form_data: Dict[str, Any], filename: str) -> Dict[str, Any]:
        metadata = extract_metadata(form_data, filename)
        self.metadata_dir.mkdir(parents=True, exist_ok=True)
        self.path_for(filename).write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        return metadata

    def list_metadata(self) -> List[Dict[str, Any]]:
        if not self.metadata_dir.exists():
            return []

        entries = []
        for path in sorted(self.metadata_dir.glob("*.json")):
            try:
                entries.append(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as exc:
                logger.warning("Failed to parse metadata file", extra={"file": path.name, "error": str(exc)})
        return entries


metadata_store = MetadataStore()
