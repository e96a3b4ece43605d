import pytest
from pydantic import ValidationError

from intake_api.core.errors import ApiError
from intake_api.services.submissions import validate_form
from intake_api.services.validation import (
    FeedbackForm,
    IntakeForm,
    SoapRequest,
    sanitize_object,
    sanitize_string,
    schema_for,
)


def test_sanitize_string():
    assert sanitize_string("  <b>6</b> weeks ", 10) == "b6b weeks"
    assert sanitize_string(None, 10) == ""
    assert sanitize_string(42, 10) == ""
    assert sanitize_string("abcdefghijkl", 5) == "abcde"


def test_sanitize_object_strips_markup_but_keeps_raw_fields():
    cleaned = sanitize_object({
        "firstName": "<script>alert(1)</script>Sam",
        "bodyAreas": ["<i>Neck</i>", "Back"],
        "nested": {"note": "<b>bold</b>"},
        "signature": "data:image/png;base64,<abc>",
        "painLevel": 4,
    })
    assert cleaned["firstName"] == "Sam"
    assert cleaned["bodyAreas"] == ["Neck", "Back"]
    assert cleaned["nested"] == {"note": "bold"}
    assert cleaned["signature"] == "data:image/png;base64,<abc>"
    assert cleaned["painLevel"] == 4


def test_schema_selection():
    assert schema_for("feedback") is FeedbackForm
    assert schema_for("seated") is IntakeForm
    assert schema_for(None) is IntakeForm


def test_intake_form_coerces_and_drops_unknown(intake_payload):
    form = IntakeForm.model_validate(dict(
        intake_payload,
        bodyAreas="Neck, Back",
        sleepQuality="6",
        mobile="",
        hacker="ignored",
    ))
    assert form.bodyAreas == ["Neck", "Back"]
    assert form.sleepQuality == 6
    assert form.mobile is None
    assert not hasattr(form, "hacker")


def test_intake_form_rejects_bad_values(intake_payload):
    with pytest.raises(ValidationError):
        IntakeForm.model_validate(dict(intake_payload, painLevel=11))
    with pytest.raises(ValidationError):
        IntakeForm.model_validate(dict(intake_payload, mobile="123"))
    with pytest.raises(ValidationError):
        IntakeForm.model_validate(dict(intake_payload, dateOfBirth="31/02/1990"))
    with pytest.raises(ValidationError):
        IntakeForm.model_validate(dict(intake_payload, formType="feedback"))


def test_intake_date_of_birth_formats(intake_payload):
    assert IntakeForm.model_validate(dict(intake_payload, dateOfBirth="15/06/1990")).dateOfBirth == "15/06/1990"
    assert IntakeForm.model_validate(dict(intake_payload, dateOfBirth="1990-06-15")).dateOfBirth == "1990-06-15"
    for bad in ("2099-99-99 garbage", "2099-01-01", "1990-13-01", "15/061990"):
        with pytest.raises(ValidationError):
            IntakeForm.model_validate(dict(intake_payload, dateOfBirth=bad))


def test_consent_variants(intake_payload):
    assert IntakeForm.model_validate(intake_payload).has_consent()

    legacy = dict(intake_payload, consentAll=False, termsAccepted=True, treatmentConsent=True)
    assert IntakeForm.model_validate(legacy).has_consent()

    partial = dict(intake_payload, consentAll=False, termsAccepted=True)
    assert not IntakeForm.model_validate(partial).has_consent()


def test_feedback_recommend_is_case_folded():
    form = FeedbackForm.model_validate({"formType": "feedback", "fullName": "Jo", "wouldRecommend": "yes"})
    assert form.wouldRecommend == "Yes"

    with pytest.raises(ValidationError):
        FeedbackForm.model_validate({"formType": "feedback", "fullName": "Jo", "wouldRecommend": "Perhaps"})


def test_soap_request_limits():
    base = {"clientName": "Jo", "sessionDate": "2025-01-02", "sessionType": "Remedial", "sessionDuration": "60"}
    assert SoapRequest.model_validate(base).painScale is None

    with pytest.raises(ValidationError):
        SoapRequest.model_validate(dict(base, homeCare=["x" * 101]))
    with pytest.raises(ValidationError):
        SoapRequest.model_validate(dict(base, homeCare=["stretch"] * 11))
    with pytest.raises(ValidationError):
        SoapRequest.model_validate(dict(base, clientName=""))


def test_validate_form_builds_full_name(intake_payload):
    data = validate_form(dict(intake_payload, pregnancy_weeks="'12'"))
    assert data["fullName"] == "Test User"
    assert data["name"] == "Test User"
    assert data["pregnancy_weeks"] == "12"
    assert data["formType"] == "seated"


def test_validate_form_missing_email(intake_payload):
    payload = dict(intake_payload)
    del payload["email"]
    with pytest.raises(ApiError) as exc:
        validate_form(payload)
    assert exc.value.status_code == 400
    assert exc.value.code == "VALIDATION_FAILED"
    assert exc.value.message.startswith("Validation failed: email")
    assert exc.value.errors[0]["field"] == "email"


def test_validate_form_requires_consent(intake_payload):
    with pytest.raises(ApiError) as exc:
        validate_form(dict(intake_payload, consentAll=False))
    assert exc.value.code == "CONSENT_REQUIRED"
    assert exc.value.message == "Consent is required to proceed"


def test_validate_form_feedback_needs_no_consent():
    data = validate_form({"formType": "feedback", "fullName": "Jo Client", "feelingPost": "9"})
    assert data["formType"] == "feedback"
    assert data["feelingPost"] == 9
