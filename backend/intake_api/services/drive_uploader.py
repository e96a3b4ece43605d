"""PDF storage: Google Drive via a service account, or the local pdfs/ directory."""

import io
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from intake_api.core.config import Settings, settings

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/drive.file"]


class UploadError(Exception):
    """Neither Drive nor the local fallback could store the file."""


def build_drive_service(cfg: Settings):
    """Authenticate with the service account key (inline JSON wins over a key file)."""
    if cfg.GOOGLE_SERVICE_ACCOUNT_KEY:
        creds = Credentials.from_service_account_info(json.loads(cfg.GOOGLE_SERVICE_ACCOUNT_KEY), scopes=SCOPES)
    else:
        creds = Credentials.from_service_account_file(cfg.GOOGLE_SERVICE_ACCOUNT_KEY_PATH, scopes=SCOPES)
    return build("drive", "v3", credentials=creds, cache_discovery=False)


class DriveUploader:
    def __init__(self, cfg: Settings = settings, service_factory: Optional[Callable[[Settings], Any]] = None):
        self.cfg = cfg
        self._service_factory = service_factory or build_drive_service
        self._service = None

    def _drive(self):
        if self._service is None:
            self._service = self._service_factory(self.cfg)
        return self._service

    def upload_to_drive(self, pdf: bytes, filename: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {"name": filename, "mimeType": "application/pdf"}
        if self.cfg.GOOGLE_DRIVE_FOLDER_ID:
            body["parents"] = [self.cfg.GOOGLE_DRIVE_FOLDER_ID]

        media = MediaIoBaseUpload(io.BytesIO(pdf), mimetype="application/pdf", resumable=False)
        created = self._drive().files().create(
            body=body,
            media_body=media,
            fields="id, name, webViewLink",
            supportsAllDrives=True,
        ).execute()

        logger.info("Uploaded PDF to Google Drive", extra={"pdfFile": filename, "fileId": created.get("id")})
        return {
            "success": True,
            "fileId": created.get("id"),
            "filename": filename,
            "storage": "drive",
            "webViewLink": created.get("webViewLink"),
        }

    def save_locally(self, pdf: bytes, filename: str) -> Dict[str, Any]:
        pdf_dir = Path(self.cfg.pdf_dir)
        pdf_dir.mkdir(parents=True, exist_ok=True)
        path = pdf_dir / filename
        path.write_bytes(pdf)

        logger.info("Saved PDF locally", extra={"pdfFile": filename, "path": str(path)})
        return {
            "success": True,
            "fileId": f"local-{path.stem}",
            "filename": filename,
            "storage": "local",
            "path": str(path),
        }

    def upload_pdf(self, pdf: bytes, filename: str) -> Dict[str, Any]:
        """Drive first when configured; local copy when Drive is absent or fails and fallback is on."""
        if self.cfg.google_drive_configured:
            try:
                return self.upload_to_drive(pdf, filename)
            except (HttpError, GoogleAuthError, httplib2.HttpLib2Error, OSError, ValueError) as exc:
                logger.error("Google Drive upload failed", extra={"pdfFile": filename, "error": str(exc)})
                if not self.cfg.ALLOW_LOCAL_PDF_FALLBACK:
                    raise UploadError(f"Drive upload failed: {exc}") from exc

        if not self.cfg.ALLOW_LOCAL_PDF_FALLBACK:
            raise UploadError("No PDF storage method configured")

        return self.save_locally(pdf, filename)


uploader = DriveUploader()
