"""
Request schemas for form submission and SOAP generation, plus sanitation helpers.

Schemas drop unknown keys and treat empty strings as "not provided" so that
optional HTML inputs left blank do not trip type checks.
"""

import re
from typing import Any, Dict, List, Literal, Optional

import nh3
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from intake_api.api.wizard import as_list, parse_date_value, parse_iso_date

# keys carrying base64 images or JSON blobs; markup cleaning would only corrupt them
RAW_KEYS = {"signature", "muscleMapImage", "muscleMapMarks"}

_STRIP_CHARS = re.compile(r"[<>&\"'\\/]")


def sanitize_string(value: Any, max_length: int) -> str:
    if not value or not isinstance(value, str):
        return ""
    return _STRIP_CHARS.sub("", value).strip()[:max_length]


def sanitize_value(value: Any) -> Any:
    if isinstance(value, str):
        return nh3.clean(value, tags=set())
    if isinstance(value, list):
        return [sanitize_value(v) for v in value]
    if isinstance(value, dict):
        return sanitize_object(value)
    return value


def sanitize_object(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-clean every string so markup never reaches PDFs or metadata."""
    cleaned = {}
    for key, value in obj.items():
        cleaned[key] = value if key in RAW_KEYS else sanitize_value(value)
    return cleaned


class _FormBase(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_blank_strings(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if not (isinstance(v, str) and not v.strip())}
        return data


def _coerce_list(value: Any) -> List[str]:
    return as_list(value)


class IntakeForm(_FormBase):
    formType: str = Field(default="intake", max_length=30)  # intake, seated, table ...
    selectedBrand: Optional[Literal["flexion", "hemisphere"]] = None

    # Client details
    firstName: str = Field(min_length=1, max_length=50)
    lastName: str = Field(min_length=1, max_length=50)
    email: EmailStr
    mobile: Optional[str] = Field(default=None, min_length=8, max_length=20)
    dateOfBirth: Optional[str] = None
    preferredName: Optional[str] = Field(default=None, max_length=50)
    gender: Optional[str] = Field(default=None, max_length=50)
    pronouns: Optional[str] = Field(default=None, max_length=50)
    pronounsSelfDescribe: Optional[str] = Field(default=None, max_length=100)
    occupation: Optional[str] = Field(default=None, max_length=100)
    emergencyName: Optional[str] = Field(default=None, max_length=100)
    emergencyRelationship: Optional[str] = Field(default=None, max_length=50)
    emergencyPhone: Optional[str] = Field(default=None, max_length=20)

    # Visit
    visitGoals: List[str] = Field(default_factory=list, max_length=10)
    visitGoalOther: Optional[str] = Field(default=None, max_length=200)
    referralSource: Optional[str] = Field(default=None, max_length=100)
    referral_person: Optional[str] = Field(default=None, max_length=100)
    sleepQuality: Optional[int] = Field(default=None, ge=1, le=10)
    stressLevel: Optional[int] = Field(default=None, ge=1, le=10)
    exerciseFrequency: Optional[str] = Field(default=None, max_length=100)
    exerciseDetails: Optional[str] = Field(default=None, max_length=500)
    previousMassage: Optional[str] = Field(default=None, max_length=20)
    last_treatment_when: Optional[str] = Field(default=None, max_length=100)
    previousMassageDetails: Optional[str] = Field(default=None, max_length=500)
    feelingPre: Optional[int] = Field(default=None, ge=1, le=10)

    # Health history
    takingMedications: Optional[str] = Field(default=None, max_length=20)
    medicationsList: Optional[str] = Field(default=None, max_length=1000)
    hasAllergies: Optional[str] = Field(default=None, max_length=20)
    allergiesList: Optional[str] = Field(default=None, max_length=1000)
    hasRecentInjuries: Optional[str] = Field(default=None, max_length=20)
    medicalConditions: List[str] = Field(default_factory=list, max_length=50)
    conditionsDetails: Optional[str] = Field(default=None, max_length=1000)
    seenOtherProvider: Optional[str] = Field(default=None, max_length=20)
    pregnantBreastfeeding: Optional[str] = Field(default=None, max_length=20)
    pregnancy_weeks: Optional[str] = Field(default=None, max_length=10)
    additionalHealthInfo: Optional[str] = Field(default=None, max_length=2000)
    healthChecks: List[str] = Field(default_factory=list, max_length=50)
    reviewNote: Optional[str] = Field(default=None, max_length=2000)

    # Pain & signals
    painLevel: Optional[int] = Field(default=None, ge=0, le=10)
    painNotSure: bool = False
    painCause: Optional[str] = Field(default=None, max_length=200)
    painDescriptors: List[str] = Field(default_factory=list, max_length=30)
    painDescriptorOther: Optional[str] = Field(default=None, max_length=200)
    worseToday: Optional[str] = Field(default=None, max_length=20)
    pressurePreference: Optional[str] = Field(default=None, max_length=50)
    areasToAvoid: Optional[str] = Field(default=None, max_length=500)
    bodyAreas: List[str] = Field(default_factory=list, max_length=30)
    muscleMapMarks: Optional[str] = Field(default=None, max_length=10000)
    muscleMapImage: Optional[str] = Field(default=None, max_length=2_000_000)
    avoidNotes: Optional[str] = Field(default=None, max_length=500)
    otherHealthConcernText: Optional[str] = Field(default=None, max_length=500)

    # Consent (consentAll, or the legacy pair termsAccepted + treatmentConsent)
    consentAll: bool = False
    termsAccepted: bool = False
    treatmentConsent: bool = False
    medicalCareDisclaimer: bool = False
    emailOptIn: Optional[bool] = None
    signature: Optional[str] = Field(default=None, max_length=500_000)
    signedAt: Optional[str] = None
    submissionDate: Optional[str] = None

    @field_validator("visitGoals", "medicalConditions", "healthChecks", "painDescriptors", "bodyAreas",
                     mode="before")
    @classmethod
    def _lists(cls, value: Any) -> List[str]:
        return _coerce_list(value)

    @field_validator("formType")
    @classmethod
    def _not_feedback(cls, value: str) -> str:
        if value == "feedback":
            raise ValueError("feedback submissions use the feedback schema")
        return value

    @field_validator("dateOfBirth")
    @classmethod
    def _dob(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if parse_date_value(value) or parse_iso_date(value):
            return value
        raise ValueError("must be a date in DD/MM/YYYY format")

    def has_consent(self) -> bool:
        return self.consentAll or (self.termsAccepted and self.treatmentConsent)


class FeedbackForm(_FormBase):
    formType: Literal["feedback"] = "feedback"
    selectedBrand: Optional[Literal["flexion", "hemisphere"]] = None

    fullName: str = Field(min_length=1, max_length=100)
    mobile: Optional[str] = Field(default=None, max_length=20)
    email: Optional[EmailStr] = None
    therapistName: Optional[str] = Field(default=None, max_length=100)
    feelingPre: Optional[int] = Field(default=None, ge=1, le=10)
    feelingPost: Optional[int] = Field(default=None, ge=1, le=10)
    wouldRecommend: Optional[Literal["Yes", "No", "Maybe"]] = None
    feedbackComments: Optional[str] = Field(default=None, max_length=2000)
    signature: Optional[str] = Field(default=None, max_length=500_000)
    signedAt: Optional[str] = None
    submissionDate: Optional[str] = None

    @field_validator("wouldRecommend", mode="before")
    @classmethod
    def _recommend(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().capitalize()
        return value


def _short_list(max_items: int):
    return Field(default_factory=list, max_length=max_items)


class SoapRequest(_FormBase):
    clientName: str = Field(min_length=1, max_length=100)
    sessionDate: str = Field(min_length=1, max_length=40)
    sessionType: str = Field(min_length=1, max_length=100)
    sessionTypeOtherText: Optional[str] = Field(default=None, max_length=200)
    sessionDuration: str = Field(min_length=1, max_length=50)

    freeText: Optional[str] = Field(default=None, max_length=3000)
    subjectiveNotes: Optional[str] = Field(default=None, max_length=800)
    objectiveNotes: Optional[str] = Field(default=None, max_length=800)
    assessmentNotes: Optional[str] = Field(default=None, max_length=800)
    planNotes: Optional[str] = Field(default=None, max_length=800)

    painScale: Optional[int] = Field(default=None, ge=0, le=10)

    subjectiveSymptoms: List[str] = _short_list(20)
    aggravatingFactors: List[str] = _short_list(10)
    relievingFactors: List[str] = _short_list(10)
    objectiveFindings: List[str] = _short_list(20)
    assessmentImpression: List[str] = _short_list(10)
    treatmentProvided: List[str] = _short_list(20)
    homeCare: List[str] = _short_list(10)

    @field_validator("subjectiveSymptoms", "aggravatingFactors", "relievingFactors", "objectiveFindings",
                     "assessmentImpression", "treatmentProvided", "homeCare")
    @classmethod
    def _item_length(cls, value: List[str]) -> List[str]:
        if any(len(item) > 100 for item in value):
            raise ValueError("items must be at most 100 characters")
        return value


def schema_for(form_type: Optional[str]):
    return FeedbackForm if form_type == "feedback" else IntakeForm
