"""
Master files: master_intakes.json and master_feedback.json under pdfs/.

Each is a JSON array of metadata snapshots keyed by unique filename. Writes
copy the previous file to <name>.backup first; there is no locking, so
concurrent writers follow last-writer-wins.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional

from intake_api.core.config import settings
from intake_api.services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)

FEEDBACK_MASTER = "master_feedback.json"
INTAKE_MASTER = "master_intakes.json"


class MasterFileError(Exception):
    """A master file exists but cannot be read or written."""


def is_feedback(entry: Dict[str, Any]) -> bool:
    return entry.get("formType") == "feedback"


class MasterFileManager:
    def __init__(self, pdf_dir: Optional[Path] = None, metadata: Optional[MetadataStore] = None):
        self.pdf_dir = Path(pdf_dir or settings.pdf_dir)
        self.metadata = metadata or MetadataStore()

    @property
    def feedback_path(self) -> Path:
        return self.pdf_dir / FEEDBACK_MASTER

    @property
    def intakes_path(self) -> Path:
        return self.pdf_dir / INTAKE_MASTER

    def master_path(self, form_type: Optional[str]) -> Path:
        # seated, table and every other intake variant share one file
        return self.feedback_path if form_type == "feedback" else self.intakes_path

    def read_master(self, path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise MasterFileError(f"Failed to read master file: {exc}") from exc

        if not isinstance(data, list):
            logger.warning("Master file was not an array, converting", extra={"path": str(path)})
            data = [data]
        return data

    def write_master(self, path: Path, entries: List[Dict[str, Any]]) -> None:
        try:
            if path.exists():
                shutil.copyfile(path, path.with_name(path.name + ".backup"))
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(entries, indent=2), encoding="utf-8")
        except OSError as exc:
            raise MasterFileError(f"Failed to write master file: {exc}") from exc
        logger.info("Master file updated", extra={"path": str(path), "count": len(entries)})

    @staticmethod
    def entry_exists(entries: List[Dict[str, Any]], filename: Optional[str]) -> bool:
        return any(e.get("filename") == filename for e in entries)

    def append(self, metadata: Dict[str, Any], form_type: Optional[str]) -> Dict[str, Any]:
        """Add one snapshot. Never raises: the PDF and metadata file already exist."""
        path = self.master_path(form_type)
        try:
            entries = self.read_master(path)
            if self.entry_exists(entries, metadata.get("filename")):
                logger.warning("Master entry already exists, skipping duplicate",
                               extra={"pdfFile": metadata.get("filename")})
                return {"success": True, "isDuplicate": True, "count": len(entries)}

            entries.append(metadata)
            self.write_master(path, entries)
            return {"success": True, "isDuplicate": False, "count": len(entries)}
        except MasterFileError as exc:
            logger.warning("Master file update failed; it can be re-aggregated later",
                           extra={"path": str(path), "error": str(exc)})
            return {"success": False, "error": str(exc)}

    def _split_metadata(self):
        feedback, intakes = [], []
        snapshots = self.metadata.list_metadata()
        for entry in snapshots:
            (feedback if is_feedback(entry) else intakes).append(entry)
        return snapshots, feedback, intakes

    def rebuild(self) -> Dict[str, Any]:
        """Regenerate both masters from metadata/, replacing what is there."""
        snapshots, feedback, intakes = self._split_metadata()
        self.write_master(self.feedback_path, feedback)
        self.write_master(self.intakes_path, intakes)
        return {
            "success": True,
            "message": f"Rebuilt master files from {len(snapshots)} metadata files",
            "feedbackCount": len(feedback),
            "intakeCount": len(intakes),
        }

    def sync(self) -> Dict[str, Any]:
        """Merge metadata/ into the existing masters; existing entries stay, duplicates are skipped."""
        _, feedback, intakes = self._split_metadata()
        added = 0
        counts = {}
        for path, incoming in ((self.feedback_path, feedback), (self.intakes_path, intakes)):
            entries = self.read_master(path)
            known = {e.get("filename") for e in entries}
            for entry in incoming:
                if entry.get("filename") in known:
                    continue
                entries.append(entry)
                known.add(entry.get("filename"))
                added += 1
            self.write_master(path, entries)
            counts[path.name] = len(entries)

        return {
            "success": True,
            "message": f"Master files synced ({added} new entries)",
            "feedbackCount": counts[FEEDBACK_MASTER],
            "intakeCount": counts[INTAKE_MASTER],
            "added": added,
        }


master_files = MasterFileManager()
