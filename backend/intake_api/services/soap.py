"""SOAP note drafting through the OpenAI Responses API."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from intake_api.core.config import Settings, settings
from intake_api.core.errors import ApiError
from intake_api.services.validation import SoapRequest, sanitize_string

logger = logging.getLogger(__name__)

NOT_REPORTED = "NR"

INSTRUCTIONS = " ".join([
    "You are a clinical documentation assistant for massage therapy notes.",
    "Create a concise SOAP note in medical shorthand using only the provided information.",
    "Do not add new symptoms, diagnoses, vitals, or medications.",
    "If something is not provided, use NR (not reported).",
    "Output exactly 4 lines labeled S:, O:, A:, P:.",
    "Keep it brief and editable, no markdown or extra commentary.",
])


def normalize_list(items: Any) -> List[str]:
    if not isinstance(items, list):
        return []
    return [i.strip() for i in items if isinstance(i, str) and i.strip()][:10]


def format_list(title: str, items: List[str]) -> str:
    return f"{title}: {', '.join(items)}" if items else ""


def build_prompt(req: SoapRequest) -> str:
    def clean(value: Optional[str], limit: int) -> str:
        return sanitize_string(value, limit) or NOT_REPORTED

    session_type = sanitize_string(req.sessionType, 60)
    other = sanitize_string(req.sessionTypeOtherText, 120)
    if session_type == "Other" and other:
        session_type = other

    pain = f"{req.painScale}/10" if req.painScale else NOT_REPORTED

    lines = [
        "Session info:",
        f"- Client: {clean(req.clientName, 100)}",
        f"- Date: {clean(req.sessionDate, 40)}",
        f"- Type: {session_type or NOT_REPORTED}",
        f"- Duration: {clean(req.sessionDuration, 40)}",
        "",
        "Freeform summary:",
        clean(req.freeText, 3000),
        "",
        "Quick prompts:",
        format_list("Subjective symptoms", normalize_list(req.subjectiveSymptoms)),
        f"Pain scale: {pain}",
        format_list("Aggravating factors", normalize_list(req.aggravatingFactors)),
        format_list("Relieving factors", normalize_list(req.relievingFactors)),
        f"Subjective notes: {clean(req.subjectiveNotes, 800)}",
        format_list("Objective findings", normalize_list(req.objectiveFindings)),
        f"Objective notes: {clean(req.objectiveNotes, 800)}",
        format_list("Assessment impression", normalize_list(req.assessmentImpression)),
        f"Assessment notes: {clean(req.assessmentNotes, 800)}",
        format_list("Treatment provided", normalize_list(req.treatmentProvided)),
        format_list("Home care", normalize_list(req.homeCare)),
        f"Plan notes: {clean(req.planNotes, 800)}",
    ]
    return "\n".join(lines)


def extract_text(result: Dict[str, Any]) -> str:
    """Pull the note out of whichever response shape the API returned."""
    if not isinstance(result, dict):
        return ""

    text = result.get("output_text")
    if isinstance(text, str) and text.strip():
        return text.strip()

    parts = []
    for item in result.get("output") or []:
        for content in (item or {}).get("content") or []:
            if isinstance(content, dict) and isinstance(content.get("text"), str):
                parts.append(content["text"])
    if "".join(parts).strip():
        return "\n".join(parts).strip()

    choices = result.get("choices") or []
    if choices:
        message = (choices[0] or {}).get("message") or {}
        if isinstance(message.get("content"), str) and message["content"].strip():
            return message["content"].strip()

    content = result.get("content")
    if isinstance(content, list):
        joined = "\n".join(c.get("text", "") for c in content if isinstance(c, dict)).strip()
        if joined:
            return joined
    elif content:
        return str(content).strip()

    return ""


class SoapNoteGenerator:
    def __init__(self, cfg: Settings = settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cfg = cfg
        self.transport = transport  # tests pass httpx.MockTransport

    async def generate(self, req: SoapRequest) -> str:
        if not self.cfg.openai_configured:
            raise ApiError(503, "AI_NOT_CONFIGURED", "AI generation is not configured. Please set OPENAI_API_KEY.")

        body = {
            "model": self.cfg.OPENAI_MODEL or "gpt-4o",
            "instructions": INSTRUCTIONS,
            "input": build_prompt(req),
            "max_output_tokens": 500,
            "temperature": 0.2,
        }
        headers = {"Authorization": f"Bearer {self.cfg.OPENAI_API_KEY}"}

        try:
            async with httpx.AsyncClient(timeout=60.0, transport=self.transport) as client:
                response = await client.post(f"{self.cfg.OPENAI_BASE_URL}/responses", json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("SOAP generation request failed", extra={"error": str(exc)})
            raise ApiError(502, "AI_UPSTREAM_ERROR", "AI request failed") from exc

        try:
            result = response.json()
        except ValueError:
            result = {}
        if not isinstance(result, dict):
            result = {}

        if response.is_error:
            error = result.get("error")
            message = (error.get("message") if isinstance(error, dict) else None) or "AI request failed"
            logger.error("SOAP generation rejected upstream", extra={"status": response.status_code})
            raise ApiError(502, "AI_UPSTREAM_ERROR", message)

        note = extract_text(result)
        if not note:
            raise ApiError(502, "AI_EMPTY_RESPONSE", "AI response was empty. Please try again.")
        return note


soap_generator = SoapNoteGenerator()
