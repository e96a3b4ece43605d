"""
Submission PDF rendering.

Builds an A4 reportlab document for an intake or feedback submission: brand
header, one section per wizard step, the signature block and a
confidentiality footer on every page.
"""

import base64
import html
import io
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape
from zoneinfo import ZoneInfo

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.utils import ImageReader
from reportlab.platypus import Image, PageBreak, Paragraph, SimpleDocTemplate, Spacer

from intake_api.api.wizard import as_list
from intake_api.core.config import settings

logger = logging.getLogger(__name__)

BRAND_NAME = "Flexion and Flow"
BRAND_COLOR = colors.HexColor("#9D4EDD")
MARGIN = 50
FOOTER_TEXT = "This document contains confidential health information and should be stored securely."

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


def _styles() -> Dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "brand": ParagraphStyle("Brand", parent=base["Title"], fontSize=20, textColor=BRAND_COLOR, spaceAfter=4),
        "title": ParagraphStyle("FormTitle", parent=base["Heading2"], fontSize=16, alignment=1,
                                textColor=BRAND_COLOR, spaceAfter=12),
        "stamp": ParagraphStyle("Stamp", parent=base["Normal"], fontSize=9, alignment=2,
                                textColor=colors.HexColor("#666666"), spaceAfter=8),
        "section": ParagraphStyle("Section", parent=base["Heading3"], fontSize=12, textColor=BRAND_COLOR,
                                  spaceBefore=12, spaceAfter=6),
        "field": ParagraphStyle("Field", parent=base["Normal"], fontSize=10, leading=13, spaceAfter=3),
        "item": ParagraphStyle("Item", parent=base["Normal"], fontSize=10, leftIndent=12, leading=13),
        "signature": ParagraphStyle("TypedSignature", parent=base["Normal"], fontName="Times-Italic",
                                    fontSize=28, leading=34, spaceBefore=4),
        "signed": ParagraphStyle("Signed", parent=base["Normal"], fontSize=9,
                                 textColor=colors.HexColor("#666666"), spaceBefore=6),
    }


def _text(value: Any) -> str:
    # values may already carry HTML entities from sanitation; normalise before escaping for Paragraph markup
    return escape(html.unescape(str(value)))


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_local(moment: datetime) -> str:
    """e.g. 'Saturday, 18 October 2025 at 02:30 pm' in the clinic's timezone."""
    local = moment.astimezone(ZoneInfo(settings.ANALYTICS_TIMEZONE))
    return local.strftime("%A, %d %B %Y at %I:%M %p").replace("AM", "am").replace("PM", "pm")


def decode_image(data: str) -> bytes:
    """Strip a data-URL prefix and decode; raises ValueError when the bytes are not an image."""
    raw = base64.b64decode(_DATA_URL_PREFIX.sub("", data), validate=False)
    try:
        ImageReader(io.BytesIO(raw)).getSize()
    except Exception as exc:  # reportlab/PIL raise assorted types for bad image data
        raise ValueError(f"not a readable image: {exc}") from exc
    return raw


def fitted_image(raw: bytes, max_width: float, max_height: float) -> Image:
    width, height = ImageReader(io.BytesIO(raw)).getSize()
    scale = min(max_width / width, max_height / height, 1.0)
    return Image(io.BytesIO(raw), width=width * scale, height=height * scale)


class _Builder:
    def __init__(self, styles: Dict[str, ParagraphStyle]):
        self.styles = styles
        self.story: List[Any] = []

    def section(self, title: str) -> None:
        self.story.append(Paragraph(_text(title), self.styles["section"]))

    def field(self, label: str, value: Any) -> None:
        shown = "Not provided" if value is None or value == "" else value
        self.story.append(Paragraph(
            f'<font color="#333333">{_text(label)}:</font> {_text(shown)}', self.styles["field"]
        ))

    def field_list(self, label: str, items: List[Any]) -> None:
        if not items:
            self.field(label, "None")
            return
        self.story.append(Paragraph(f'<font color="#333333">{_text(label)}:</font>', self.styles["field"]))
        for item in items:
            line = item if isinstance(item, str) else json.dumps(item)
            self.story.append(Paragraph(f"- {_text(line)}", self.styles["item"]))
        self.story.append(Spacer(1, 4))


def _intake_sections(b: _Builder, data: Dict[str, Any]) -> None:
    b.section("Client Details")
    b.field("Full name", data.get("fullName"))
    if data.get("preferredName"):
        b.field("Preferred name", data["preferredName"])
    b.field("Email", data.get("email") or "Not provided")
    b.field("Mobile", data.get("mobile"))
    for key, label in (
        ("dateOfBirth", "Date of birth"),
        ("gender", "Gender"),
        ("pronouns", "Pronouns"),
        ("pronounsSelfDescribe", "Pronouns (self-described)"),
        ("occupation", "Occupation"),
    ):
        if data.get(key):
            b.field(label, data[key])

    if data.get("emergencyName") or data.get("emergencyPhone"):
        b.section("Emergency Contact")
        b.field("Name", data.get("emergencyName") or "Not provided")
        if data.get("emergencyRelationship"):
            b.field("Relationship", data["emergencyRelationship"])
        b.field("Phone", data.get("emergencyPhone") or "Not provided")

    b.section("Visit Details")
    goals = as_list(data.get("visitGoals"))
    if goals:
        b.field("What brings you in", ", ".join(goals))
    for key, label in (
        ("visitGoalOther", "Other visit reason"),
        ("referralSource", "How did you hear about us"),
        ("referral_person", "Referred by"),
    ):
        if data.get(key):
            b.field(label, data[key])

    b.section("Lifestyle")
    for key, label in (
        ("sleepQuality", "Sleep quality (1-10)"),
        ("stressLevel", "Stress level (1-10)"),
        ("exerciseFrequency", "Exercise frequency"),
        ("exerciseDetails", "Exercise details"),
        ("previousMassage", "Previous massage experience"),
        ("last_treatment_when", "Last treatment"),
        ("previousMassageDetails", "Previous massage details"),
    ):
        if data.get(key):
            b.field(label, data[key])

    b.section("Health History")
    b.field("Taking medications", data.get("takingMedications") or "Not specified")
    if data.get("takingMedications") == "Yes" and data.get("medicationsList"):
        b.field("Medications", data["medicationsList"])
    b.field("Has allergies", data.get("hasAllergies") or "Not specified")
    if data.get("hasAllergies") == "Yes" and data.get("allergiesList"):
        b.field("Allergies", data["allergiesList"])
    if data.get("hasRecentInjuries"):
        b.field("Recent accidents, injuries or surgeries", data["hasRecentInjuries"])

    conditions = as_list(data.get("medicalConditions"))
    if conditions:
        b.field_list("Medical conditions", conditions)
    else:
        b.field("Medical conditions", "None reported")
    if data.get("conditionsDetails"):
        b.field("Condition details", data["conditionsDetails"])
    if data.get("seenOtherProvider"):
        b.field("Seen another healthcare provider", data["seenOtherProvider"])

    b.field("Pregnant / breastfeeding", data.get("pregnantBreastfeeding") or "Not specified")
    if data.get("pregnantBreastfeeding") == "Yes" and data.get("pregnancy_weeks"):
        b.field("Weeks along", data["pregnancy_weeks"])
    if data.get("additionalHealthInfo"):
        b.field("Additional health info", data["additionalHealthInfo"])

    checks = as_list(data.get("healthChecks"))
    if checks:
        b.field_list("Health issues flagged", checks)
    if data.get("reviewNote"):
        b.field("Health review notes", data["reviewNote"])

    b.section("Pain & Signals")
    if data.get("painLevel") not in (None, ""):
        b.field("Pain level (0-10)", str(data["painLevel"]))
    elif data.get("painNotSure"):
        b.field("Pain level", "Not sure")
    else:
        b.field("Pain level", "Not reported")
    if data.get("painCause"):
        b.field("Symptom cause", data["painCause"])
    descriptors = as_list(data.get("painDescriptors"))
    if descriptors:
        b.field("Symptom descriptors", ", ".join(descriptors))
    if data.get("painDescriptorOther"):
        b.field("Other symptom details", data["painDescriptorOther"])
    if data.get("worseToday"):
        b.field("Worse than usual today", data["worseToday"])
    b.field("Pressure preference", data.get("pressurePreference") or "Not specified")
    if data.get("areasToAvoid"):
        b.field("Areas to avoid", data["areasToAvoid"])
    areas = as_list(data.get("bodyAreas"))
    if areas:
        b.field("Body areas of discomfort", ", ".join(areas))

    if data.get("muscleMapImage"):
        try:
            raw = decode_image(data["muscleMapImage"])
        except ValueError as exc:
            logger.warning("Could not embed body map image", extra={"error": str(exc)})
            b.field("Body map image", "Could not embed image")
        else:
            b.story.append(PageBreak())
            b.story.append(Paragraph("Body Map with Marked Areas", b.styles["title"]))
            b.story.append(fitted_image(raw, 350, 500))
    elif data.get("muscleMapMarks"):
        marks = data["muscleMapMarks"]
        try:
            marks = json.loads(marks) if isinstance(marks, str) else marks
        except ValueError:
            logger.warning("Could not parse body map marks")
            marks = None
        if isinstance(marks, list) and marks:
            b.field("Discomfort areas marked", f"{len(marks)} area(s) marked on body map")

    if data.get("avoidNotes"):
        b.field("Avoid notes", data["avoidNotes"])
    if data.get("otherHealthConcernText"):
        b.field("Other health concern", data["otherHealthConcernText"])

    b.section("Consent & Agreement")
    b.field("Privacy & treatment consent", "Agreed" if data.get("consentAll") else "Not agreed")
    b.field("Medical care disclaimer", "Acknowledged" if data.get("medicalCareDisclaimer") else "Not acknowledged")
    if data.get("emailOptIn") is not None:
        b.field("Email communications opt-in", "Yes" if data["emailOptIn"] else "No")


def _feedback_sections(b: _Builder, data: Dict[str, Any]) -> None:
    b.section("Contact Details")
    b.field("Full name", data.get("fullName"))
    if data.get("mobile"):
        b.field("Mobile", data["mobile"])
    if data.get("email"):
        b.field("Email", data["email"])

    b.section("Session Details")
    if data.get("therapistName"):
        b.field("Therapist", data["therapistName"])
    if data.get("feelingPre"):
        b.field("Pre-session feeling (1-10)", data["feelingPre"])

    b.section("Feedback")
    b.field("Post-session feeling (1-10)", data.get("feelingPost") or "Not provided")
    b.field("Would recommend", data.get("wouldRecommend") or "Not provided")
    if data.get("feedbackComments"):
        b.field("Additional comments", data["feedbackComments"])


def _signature_block(b: _Builder, data: Dict[str, Any]) -> None:
    b.story.append(Spacer(1, 18))
    b.story.append(Paragraph("Signature:", b.styles["field"]))

    sig = str(data.get("signature") or "")
    if sig.startswith("text:"):
        b.story.append(Paragraph(_text(sig[5:]), b.styles["signature"]))
    elif sig:
        try:
            img = fitted_image(decode_image(sig), 200, 50)
            img.hAlign = "LEFT"
            b.story.append(img)
        except ValueError as exc:
            logger.warning("Error adding signature to PDF", extra={"error": str(exc)})
            b.story.append(Paragraph("[Signature image error]", b.styles["field"]))

    signed = parse_timestamp(data.get("signedAt")) or parse_timestamp(data.get("submissionDate"))
    b.story.append(Paragraph(f"Signed: {format_local(signed or datetime.now(timezone.utc))}", b.styles["signed"]))


def _footer(canvas, doc) -> None:
    canvas.saveState()
    canvas.setFont("Helvetica", 8)
    canvas.setFillColor(colors.HexColor("#999999"))
    canvas.drawCentredString(A4[0] / 2, 30, FOOTER_TEXT)
    canvas.restoreState()


def form_title(form_type: Optional[str]) -> str:
    return "Post-Session Feedback" if form_type == "feedback" else "Client Intake Form"


def generate_pdf(form_data: Dict[str, Any]) -> bytes:
    """Render one submission to PDF bytes."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=MARGIN,
        leftMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=MARGIN,
        title=form_title(form_data.get("formType")),
        author=BRAND_NAME,
    )

    styles = _styles()
    b = _Builder(styles)
    b.story.append(Paragraph(BRAND_NAME, styles["brand"]))
    b.story.append(Paragraph(form_title(form_data.get("formType")), styles["title"]))

    submitted = parse_timestamp(form_data.get("submissionDate")) or datetime.now(timezone.utc)
    b.story.append(Paragraph(f"Submitted: {format_local(submitted)}", styles["stamp"]))

    if form_data.get("formType") == "feedback":
        _feedback_sections(b, form_data)
    else:
        _intake_sections(b, form_data)

    _signature_block(b, form_data)

    doc.build(b.story, onFirstPage=_footer, onLaterPages=_footer)
    return buffer.getvalue()


def build_filename(form_data: Dict[str, Any], now: Optional[datetime] = None) -> str:
    """{Client_Intake|Post_Session_Feedback}_{Client_Name}_{YYYY-MM-DD}_{HHMMSS}.pdf"""
    now = now or datetime.now()
    name = html.unescape(str(form_data.get("fullName") or form_data.get("name") or "Client"))
    client = re.sub(r"\s+", "_", re.sub(r"[^A-Za-z0-9\s]", "", name).strip()) or "Client"
    prefix = "Post_Session_Feedback" if form_data.get("formType") == "feedback" else "Client_Intake"
    return f"{prefix}_{client}_{now:%Y-%m-%d}_{now:%H%M%S}.pdf"
