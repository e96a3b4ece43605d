from datetime import date

import pytest

from intake_api.core.errors import ApiError
from intake_api.services.analytics import AnalyticsService, check_period, normalize_name
from intake_api.services.master_files import MasterFileManager
from intake_api.services.metadata_store import MetadataStore

TODAY = date(2025, 3, 13)

INTAKES = [
    {
        "filename": "i1.pdf",
        "formType": "intake",
        "clientName": "Ann Lee",
        "email": "ann@example.com",
        "feelingPre": 4,
        "submittedAt": "2025-03-10T01:00:00.000Z",
        "medicalConditions": ["Asthma", "None"],
        "pressurePreference": "Firm",
        "pregnantBreastfeeding": "Yes",
        "painLevel": 9,
        "reviewNote": "Check blood pressure",
        "avoidNotes": "No feet",
    },
    {
        "filename": "i2.pdf",
        "formType": "seated",
        "clientName": "Bo Diaz",
        "email": None,
        "mobile": "0400000000",
        "feelingPre": 6,
        # 10:30 on the 13th in Sydney
        "submittedAt": "2025-03-12T23:30:00.000Z",
        "medicalConditions": ["Asthma", "Diabetes"],
        "pressurePreference": "Light",
        "takingMedications": "No",
    },
]

FEEDBACK = [
    {
        "filename": "f1.pdf",
        "formType": "feedback",
        "clientName": "Ann Lee",
        "email": "ANN@example.com",
        "therapistName": "Sam",
        "feelingPost": 8,
        "wouldRecommend": "Yes",
        "hasComments": True,
        "submittedAt": "2025-03-11T02:00:00.000Z",
    },
    {
        "filename": "f2.pdf",
        "formType": "feedback",
        "clientName": "bo  diaz",
        "email": None,
        "therapistName": "Sam",
        "feelingPre": 5,
        "feelingPost": 7,
        "wouldRecommend": "No",
        "hasComments": False,
        "submittedAt": "2025-03-13T02:00:00.000Z",
    },
    {
        "filename": "f3.pdf",
        "formType": "feedback",
        "clientName": "Cy Unknown",
        "email": None,
        "therapistName": "Kim",
        "feelingPost": 9,
        "wouldRecommend": "Yes",
        "hasComments": False,
        "submittedAt": "2025-02-01T00:00:00.000Z",
    },
]


@pytest.fixture
def masters(tmp_path):
    manager = MasterFileManager(pdf_dir=tmp_path / "pdfs", metadata=MetadataStore(tmp_path / "metadata"))
    manager.write_master(manager.intakes_path, INTAKES)
    manager.write_master(manager.feedback_path, FEEDBACK)
    return manager


@pytest.fixture
def service(masters):
    return AnalyticsService(masters, tz_name="Australia/Sydney")


def test_check_period():
    assert check_period("7") == 7
    assert check_period("all") is None
    with pytest.raises(ApiError) as exc:
        check_period("14")
    assert exc.value.status_code == 400
    assert exc.value.code == "INVALID_PERIOD"


def test_normalize_name():
    assert normalize_name("  Bo   DIAZ ") == "bo diaz"
    assert normalize_name(None) == ""


def test_summary(service):
    summary = service.summary()
    assert summary["totalSubmissions"] == 5
    assert summary["totalIntakes"] == 2
    assert summary["totalFeedback"] == 3
    assert summary["avgImprovement"] == 3.0
    assert summary["recommendationRate"] == 66.7
    assert summary["topTherapist"] == "Sam"
    assert summary["topTherapistSessions"] == 2
    assert summary["matchedFeedbackRate"] == 66.7


def test_summary_when_empty(tmp_path):
    empty = AnalyticsService(MasterFileManager(pdf_dir=tmp_path / "none"), tz_name="Australia/Sydney")
    summary = empty.summary()
    assert summary["totalSubmissions"] == 0
    assert summary["avgImprovement"] == 0
    assert summary["recommendationRate"] == 0
    assert summary["topTherapist"] is None


def test_daily_trends(service):
    trends = service.trends("7", today=TODAY)
    assert trends["granularity"] == "daily"
    assert trends["labels"] == ["7/3", "8/3", "9/3", "10/3", "11/3", "12/3", "13/3"]
    assert trends["values"] == [0, 0, 0, 1, 1, 0, 2]
    assert trends["datasets"][0] == {"label": "Intakes", "data": [0, 0, 0, 1, 0, 0, 1]}
    assert trends["datasets"][1] == {"label": "Feedback", "data": [0, 0, 0, 0, 1, 0, 1]}


def test_weekly_trends(service):
    trends = service.trends("90", today=TODAY)
    assert trends["granularity"] == "weekly"
    assert len(trends["labels"]) == 13
    assert trends["labels"][0] == "Week of 14/12"
    assert sum(trends["values"]) == 5


def test_monthly_trends(service):
    trends = service.trends("all", today=TODAY)
    assert trends["granularity"] == "monthly"
    assert trends["labels"] == ["Feb 2025", "Mar 2025"]
    assert trends["values"] == [1, 4]


def test_health_issues(service):
    assert service.health_issues() == {"labels": ["Asthma", "Diabetes"], "data": [2, 1]}


def test_therapists(service):
    result = service.therapists()
    assert result["labels"] == ["Sam", "Kim"]
    sessions, feeling, recommend = (d["data"] for d in result["datasets"])
    assert sessions == [2, 1]
    assert feeling == [7.5, 9]
    assert recommend == [50.0, 100.0]


def test_pressure(service):
    result = service.pressure()
    assert result["labels"] == ["Light", "Firm"]
    assert result["data"] == [1, 1]
    assert len(result["backgroundColor"]) == 2


def test_feeling_scores(service):
    result = service.feeling_scores()
    assert result["summary"] == {"avgPre": 4.5, "avgPost": 7.5, "avgImprovement": 3.0, "pairs": 2}
    assert result["distribution"]["labels"][0] == "1"
    assert result["distribution"]["pre"][3] == 1   # score 4
    assert result["distribution"]["post"][8] == 1  # score 9


def test_health_notes(service):
    result = service.health_notes()
    assert len(result["attention"]) == 1
    flagged = result["attention"][0]
    assert flagged["clientName"] == "Ann Lee"
    assert flagged["reasons"] == ["Pregnant or breastfeeding", "High pain level (9/10)"]
    assert result["reviewNotes"] == ["Check blood pressure"]
    assert result["avoidNotes"] == ["No feet"]


def test_data_quality(service):
    result = service.data_quality()
    assert result["total"] == 5
    assert result["counts"] == {
        "missingEmail": 3,
        "missingName": 0,
        "missingDate": 0,
        "unparseableDates": 0,
        "duplicateFilenames": 0,
    }
    assert result["qualityMetrics"]["contactInfoComplete"] == 60.0
    assert result["qualityMetrics"]["commentsCapture"] == 33.3
    assert result["qualityMetrics"]["healthNotesCapture"] == 100.0


def test_data_quality_flags_bad_rows(masters):
    masters.write_master(masters.feedback_path, FEEDBACK + [
        {"filename": "f1.pdf", "formType": "feedback", "clientName": "", "submittedAt": "last tuesday"},
    ])
    result = AnalyticsService(masters, tz_name="Australia/Sydney").data_quality()
    assert result["counts"]["duplicateFilenames"] == 1
    assert result["counts"]["unparseableDates"] == 1
    assert result["counts"]["missingName"] == 1


def test_sessions(service):
    result = service.sessions("30", today=TODAY)
    assert [s["filename"] for s in result["sessions"]] == ["f2.pdf", "f1.pdf"]
    assert result["sessions"][0]["date"] == "2025-03-13"
    assert result["dates"] == ["11/3", "13/3"]
    assert result["counts"] == [1, 1]


def test_cache_until_invalidated(service, masters):
    assert service.summary()["totalFeedback"] == 3
    masters.write_master(masters.feedback_path, FEEDBACK[:1])
    assert service.summary()["totalFeedback"] == 3

    service.invalidate()
    assert service.summary()["totalFeedback"] == 1
