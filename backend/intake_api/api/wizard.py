# Wizard engine: form definitions, visibility rules and per-step validation (no state kept here)
import re
from datetime import date
from typing import Any, Dict, List, Optional, TypedDict

from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter
from pydantic import BaseModel, Field

from intake_api.core.errors import ApiError, build_meta

router = APIRouter()  # stateless helpers; the stateful run endpoints live in routes/wizard_runs.py


class ValidationState(TypedDict):
    valid: bool
    message: str
    fields: List[str]


YES_NO = ["Yes", "No"]

REFERRAL_SOURCES = [
    "Google search",
    "Social media",
    "Word of mouth",
    "I was referred by someone",
    "Walked past",
    "Other",
]

EXERCISE_FREQUENCIES = [
    "Never / Rarely",
    "1-2 times per week",
    "3-4 times per week",
    "5+ times per week",
]

PRESSURE_PREFERENCES = ["Light", "Medium", "Firm", "Deep", "Not sure"]

GENDERS = ["Female", "Male", "Non-binary", "Other", "Prefer not to say"]


FORM_DEFINITIONS: Dict[str, Dict[str, Any]] = {
    "intake": {
        "title": "Client Intake Form",
        "steps": [
            {
                "step": 1,
                "title": "Client Details",
                "fields": [
                    {"id": "firstName", "type": "text", "required": True, "max_length": 50,
                     "message": "Please enter your first name."},
                    {"id": "lastName", "type": "text", "required": True, "max_length": 50,
                     "message": "Please enter your last name."},
                    {"id": "email", "type": "email", "required": True,
                     "message": "Please enter your email address.",
                     "format_message": "Please enter a valid email address."},
                    {"id": "mobile", "type": "phone", "required": True,
                     "message": "Please enter your phone number.",
                     "format_message": "Please enter a valid phone number."},
                    {"id": "dateOfBirth", "type": "date", "required": True,
                     "message": "Please enter your date of birth.",
                     "format_message": "Please enter your date of birth in DD/MM/YYYY format."},
                    {"id": "preferredName", "type": "text", "max_length": 50},
                    {"id": "gender", "type": "single_choice", "options": GENDERS},
                    {"id": "pronouns", "type": "text", "max_length": 50},
                    {"id": "emergencyName", "type": "text", "max_length": 100},
                    {"id": "emergencyRelationship", "type": "text", "max_length": 50},
                    {"id": "emergencyPhone", "type": "phone",
                     "format_message": "Please enter a valid emergency contact phone number."},
                ],
            },
            {
                "step": 2,
                "title": "About Your Visit",
                "fields": [
                    {"id": "visitGoals", "type": "multi_choice", "required": True,
                     "message": "Please select at least one reason for your visit."},
                    {"id": "visitGoalOther", "type": "text", "max_length": 200},
                    {"id": "referralSource", "type": "single_choice", "required": True,
                     "options": REFERRAL_SOURCES,
                     "message": "Please tell us how you heard about us."},
                    {"id": "referral_person", "type": "text", "max_length": 100,
                     "show_when": {"field": "referralSource",
                                   "in": ["Word of mouth", "I was referred by someone"]}},
                    {"id": "occupation", "type": "text", "required": True, "max_length": 100,
                     "message": "Please enter your occupation."},
                    {"id": "sleepQuality", "type": "scale", "min": 1, "max": 10,
                     "message": "Please indicate your sleep quality."},
                    {"id": "stressLevel", "type": "scale", "min": 1, "max": 10,
                     "message": "Please indicate your stress levels."},
                    {"id": "exerciseFrequency", "type": "single_choice", "required": True,
                     "options": EXERCISE_FREQUENCIES,
                     "message": "Please select how often you exercise."},
                    {"id": "exerciseDetails", "type": "long_text", "max_length": 500,
                     "show_when": {"field": "exerciseFrequency", "not_in": ["Never / Rarely"]}},
                    {"id": "previousMassage", "type": "single_choice", "required": True,
                     "options": YES_NO,
                     "message": "Please indicate if you have previous massage experience."},
                    {"id": "last_treatment_when", "type": "text", "max_length": 100,
                     "show_when": {"field": "previousMassage", "equals": "Yes"}},
                    {"id": "previousMassageDetails", "type": "long_text", "max_length": 500,
                     "show_when": {"field": "previousMassage", "equals": "Yes"}},
                    {"id": "feelingPre", "type": "scale", "min": 1, "max": 10,
                     "message": "Please rate how you are feeling today."},
                ],
            },
            {
                "step": 3,
                "title": "Health History",
                "fields": [
                    {"id": "takingMedications", "type": "single_choice", "required": True,
                     "options": YES_NO,
                     "message": "Please indicate if you are taking any medications."},
                    {"id": "medicationsList", "type": "long_text", "max_length": 1000,
                     "show_when": {"field": "takingMedications", "equals": "Yes"}},
                    {"id": "hasAllergies", "type": "single_choice", "required": True,
                     "options": YES_NO,
                     "message": "Please indicate if you have any allergies."},
                    {"id": "allergiesList", "type": "long_text", "max_length": 1000,
                     "show_when": {"field": "hasAllergies", "equals": "Yes"}},
                    {"id": "hasRecentInjuries", "type": "single_choice", "required": True,
                     "options": YES_NO,
                     "message": "Please indicate if you have had recent accidents, injuries or surgeries."},
                    {"id": "medicalConditions", "type": "multi_choice", "required": True,
                     "message": "Please select at least one option from the medical conditions list."},
                    {"id": "conditionsDetails", "type": "long_text", "max_length": 1000},
                    {"id": "seenOtherProvider", "type": "single_choice", "required": True,
                     "options": YES_NO,
                     "message": "Please indicate if you have seen another healthcare provider.",
                     "show_when": {"field": "medicalConditions", "any_except": ["None"]}},
                    {"id": "pregnantBreastfeeding", "type": "single_choice", "required": True,
                     "options": YES_NO,
                     "message": "Please indicate if you are pregnant or breastfeeding."},
                    {"id": "pregnancy_weeks", "type": "text", "max_length": 10,
                     "show_when": {"field": "pregnantBreastfeeding", "equals": "Yes"}},
                    {"id": "additionalHealthInfo", "type": "long_text", "max_length": 2000},
                ],
            },
            {
                # Pain & signals: every field is optional
                "step": 4,
                "title": "Pain & Signals",
                "fields": [
                    {"id": "painLevel", "type": "scale", "min": 0, "max": 10,
                     "message": "Pain level must be between 0 and 10."},
                    {"id": "painNotSure", "type": "boolean"},
                    {"id": "painCause", "type": "text", "max_length": 200},
                    {"id": "painDescriptors", "type": "multi_choice"},
                    {"id": "painDescriptorOther", "type": "text", "max_length": 200},
                    {"id": "worseToday", "type": "single_choice", "options": YES_NO},
                    {"id": "pressurePreference", "type": "single_choice", "options": PRESSURE_PREFERENCES},
                    {"id": "areasToAvoid", "type": "long_text", "max_length": 500},
                    {"id": "bodyAreas", "type": "multi_choice"},
                    {"id": "muscleMapMarks", "type": "long_text", "max_length": 10000},
                    {"id": "muscleMapImage", "type": "signature"},
                    {"id": "avoidNotes", "type": "long_text", "max_length": 500},
                ],
            },
            {
                "step": 5,
                "title": "Consent & Agreement",
                "fields": [
                    {"id": "consentAll", "type": "boolean", "required": True,
                     "message": "Please confirm you have read and agreed to the Privacy Policy."},
                    {"id": "medicalCareDisclaimer", "type": "boolean", "required": True,
                     "message": "Please confirm that you understand massage is not a substitute for medical care."},
                    {"id": "emailOptIn", "type": "boolean"},
                    {"id": "signature", "type": "signature", "required": True,
                     "message": "Please provide your digital signature."},
                ],
            },
        ],
    },
    "feedback": {
        "title": "Post-Session Feedback",
        "steps": [
            {
                "step": 1,
                "title": "Your Session",
                "fields": [
                    {"id": "fullName", "type": "text", "required": True, "max_length": 100,
                     "message": "Please enter your full name."},
                    {"id": "mobile", "type": "phone",
                     "format_message": "Please enter a valid phone number."},
                    {"id": "email", "type": "email",
                     "format_message": "Please enter a valid email address."},
                    {"id": "therapistName", "type": "single_choice", "required": True,
                     "message": "Please select your therapist."},
                    {"id": "feelingPre", "type": "scale", "min": 1, "max": 10},
                    {"id": "feelingPost", "type": "scale", "min": 1, "max": 10,
                     "message": "Please rate how you feel after your session."},
                    {"id": "wouldRecommend", "type": "single_choice", "required": True,
                     "options": ["Yes", "No", "Maybe"],
                     "message": "Please indicate if you would recommend us."},
                    {"id": "feedbackComments", "type": "long_text", "max_length": 2000},
                    {"id": "signature", "type": "signature"},
                ],
            },
        ],
    },
}

START_STEP = 1

PHONE_RE = re.compile(r"^\+?[\d\s()\-]{8,20}$")
DATE_RE = re.compile(r"^(\d{1,2})([/\-.])(\d{1,2})\2(\d{4})$")
ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
TRUTHY = {"true", "on", "yes", "1"}


# ---- helpers ----

def get_form(form_type: str) -> Dict[str, Any]:
    form = FORM_DEFINITIONS.get(form_type)
    if form is None:
        raise ApiError(400, "UNKNOWN_FORM", f"Unknown form type '{form_type}'.")
    return form


def total_steps(form_type: str) -> int:
    return len(get_form(form_type)["steps"])


def get_step(form_type: str, step_num: int) -> Dict[str, Any]:
    steps = get_form(form_type)["steps"]
    if not isinstance(step_num, int) or step_num < 1 or step_num > len(steps):
        raise ApiError(400, "INVALID_STEP", f"Step {step_num} does not exist for '{form_type}'.")
    return steps[step_num - 1]


def iter_fields(form_type: str):
    for step in get_form(form_type)["steps"]:
        for field in step["fields"]:
            yield step["step"], field


def _past_date(year: int, month: int, day: int) -> Optional[date]:
    if year < 1900:
        return None
    try:
        parsed = date(year, month, day)
    except ValueError:  # e.g. 31/02
        return None
    if parsed > date.today():
        return None
    return parsed


def parse_date_value(value: Any) -> Optional[date]:
    """DD/MM/YYYY (also '-', '.'), real calendar date between 1900 and today."""
    if not isinstance(value, str):
        return None
    match = DATE_RE.match(value.strip())
    if not match:
        return None
    return _past_date(int(match.group(4)), int(match.group(3)), int(match.group(1)))


def parse_iso_date(value: Any) -> Optional[date]:
    """YYYY-MM-DD with the same range rules as parse_date_value."""
    if not isinstance(value, str):
        return None
    match = ISO_DATE_RE.match(value.strip())
    if not match:
        return None
    return _past_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))


def is_valid_email(value: Any) -> bool:
    # same rules as EmailStr on the submit schemas
    if not isinstance(value, str) or len(value) > 254:
        return False
    try:
        validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def as_list(value: Any) -> List[str]:
    # checkbox groups may arrive as one string, a comma string, or a list
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY
    return bool(value)


def as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and re.fullmatch(r"\s*-?\d+\s*", value):
        return int(value)
    return None


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def rule_matches(rule: Optional[Dict[str, Any]], answers: Dict[str, Any]) -> bool:
    if not rule:
        return True
    value = answers.get(rule["field"])

    if "equals" in rule:
        return value == rule["equals"]
    if "in" in rule:
        return value in rule["in"]
    if "not_in" in rule:
        # an unanswered trigger keeps the dependent field hidden
        return not _is_blank(value) and value not in rule["not_in"]
    if "any_except" in rule:
        return any(item not in rule["any_except"] for item in as_list(value))
    return True


def is_visible(field: Dict[str, Any], answers: Dict[str, Any]) -> bool:
    return rule_matches(field.get("show_when"), answers)


def visible_fields(form_type: str, step_num: int, answers: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [f for f in get_step(form_type, step_num)["fields"] if is_visible(f, answers)]


def check_field(field: Dict[str, Any], value: Any) -> Optional[str]:
    """Return an error message for one field, or None when it passes."""
    ftype = field["type"]
    required = field.get("required", False)
    message = field.get("message") or f"Please complete {field['id']}."
    format_message = field.get("format_message") or message

    if ftype == "boolean":
        if required and not as_bool(value):
            return message
        return None

    if ftype == "multi_choice":
        items = as_list(value)
        if required and not items:
            return message
        options = field.get("options")
        if options and any(item not in options for item in items):
            return format_message
        return None

    if _is_blank(value):
        return message if required else None

    if ftype in ("text", "long_text", "signature"):
        if not isinstance(value, str):
            return format_message
        max_length = field.get("max_length")
        if max_length and len(value.strip()) > max_length:
            return f"{field['id']} must be at most {max_length} characters."
        return None

    if ftype == "email":
        return None if is_valid_email(value) else format_message

    if ftype == "phone":
        return None if isinstance(value, str) and PHONE_RE.match(value.strip()) else format_message

    if ftype == "date":
        return None if parse_date_value(value) else format_message

    if ftype == "single_choice":
        options = field.get("options")
        if not isinstance(value, str):
            return message
        if options and value not in options:
            return format_message
        return None

    if ftype == "scale":
        number = as_int(value)
        if number is None or number < field.get("min", 0) or number > field.get("max", 10):
            return message
        return None

    return f"Unsupported field type {ftype} on {field['id']}"


def validate_step(form_type: str, step_num: int, answers: Dict[str, Any]) -> ValidationState:
    state: ValidationState = {"valid": True, "message": "", "fields": []}

    for field in visible_fields(form_type, step_num, answers):  # hidden fields never block
        problem = check_field(field, answers.get(field["id"]))
        if problem:
            if state["valid"]:
                state["message"] = problem   # first failure wins the headline message
            state["valid"] = False
            state["fields"].append(field["id"])

    return state


def normalize_value(field: Dict[str, Any], value: Any) -> Any:
    ftype = field["type"]
    if ftype == "multi_choice":
        return as_list(value)
    if ftype == "boolean":
        return as_bool(value)
    if ftype == "scale":
        return as_int(value)
    if isinstance(value, str):
        return value.strip()
    return value


def assemble_payload(form_type: str, answers: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a finished run into a submit-form payload (hidden fields dropped)."""
    payload: Dict[str, Any] = {"formType": form_type}
    for _, field in iter_fields(form_type):
        if not is_visible(field, answers):
            continue
        value = answers.get(field["id"])
        if _is_blank(value) and field["type"] != "boolean":
            continue
        payload[field["id"]] = normalize_value(field, value)
    return payload


def describe_step(form_type: str, step_num: int, answers: Optional[Dict[str, Any]] = None) -> dict:
    answers = answers or {}
    step = get_step(form_type, step_num)
    fields = []
    for field in step["fields"]:
        item = {
            "id": field["id"],
            "type": field["type"],
            "required": field.get("required", False),
            "visible": is_visible(field, answers),
        }
        if "options" in field:
            item["options"] = list(field["options"])
        if "min" in field:
            item["min"], item["max"] = field["min"], field["max"]
        if "show_when" in field:
            item["show_when"] = dict(field["show_when"])
        fields.append(item)

    return {
        "step": step["step"],
        "total": total_steps(form_type),
        "title": step["title"],
        "fields": fields,
    }


def evaluate_answers(form_type: str, answers: Dict[str, Any]) -> dict:
    """Walk every step in order and stop at the first one that does not validate."""
    for step in get_form(form_type)["steps"]:
        state = validate_step(form_type, step["step"], answers)
        if not state["valid"]:
            return {"done": False, "step": step["step"], "validation": state}
    return {"done": True, "step": None, "payload": assemble_payload(form_type, answers)}


# ---- request models ----

class StepCheckRequest(BaseModel):
    form_type: str = "intake"
    step: int = START_STEP
    answers: Dict[str, Any] = Field(default_factory=dict)


class EvaluateRequest(BaseModel):
    form_type: str = "intake"
    answers: Dict[str, Any] = Field(default_factory=dict)


# ---- endpoints ----

@router.get("/wizard/forms/{form_type}")
def form_definition(form_type: str):
    form = get_form(form_type)
    return {
        "form_type": form_type,
        "title": form["title"],
        "total": len(form["steps"]),
        "steps": [describe_step(form_type, s["step"]) for s in form["steps"]],
        "meta": build_meta(),
    }


@router.post("/wizard/validate-step")
def validate_step_route(req: StepCheckRequest):
    state = validate_step(req.form_type, req.step, req.answers)
    return {
        "step": describe_step(req.form_type, req.step, req.answers),
        "validation": state,
        "meta": build_meta(),
    }


@router.post("/wizard/evaluate")
def evaluate_route(req: EvaluateRequest):
    result = evaluate_answers(req.form_type, req.answers)
    result["meta"] = build_meta()
    return result
