"""
Dashboard aggregates computed from the two master files.

The master arrays are read once and cached until a submission, sync or
rebuild invalidates them. All date bucketing happens in the clinic's local
timezone.
"""

import logging
import threading
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, timezone
from statistics import mean
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from intake_api.api.wizard import PRESSURE_PREFERENCES, as_int, as_list
from intake_api.core.config import settings
from intake_api.core.errors import ApiError
from intake_api.services.master_files import MasterFileError, MasterFileManager, master_files

logger = logging.getLogger(__name__)

PERIODS = {"7": 7, "30": 30, "90": 90, "all": None}
PALETTE = ["#9D4EDD", "#7B2CBF", "#AD63ED", "#C77DFF", "#5A189A", "#E0AAFF"]
HIGH_PAIN = 8

Entry = Dict[str, Any]


def parse_submitted(entry: Entry) -> Optional[datetime]:
    value = entry.get("submittedAt")
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def normalize_name(value: Any) -> str:
    return " ".join(str(value or "").lower().split())


def _pct(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0


def _avg(values: List[float]) -> float:
    return round(mean(values), 1) if values else 0


def _day_label(d: date) -> str:
    return f"{d.day}/{d.month}"


def check_period(period: str) -> Optional[int]:
    if period not in PERIODS:
        raise ApiError(400, "INVALID_PERIOD", "period must be one of 7, 30, 90, all")
    return PERIODS[period]


class AnalyticsService:
    def __init__(self, masters: MasterFileManager = master_files, tz_name: Optional[str] = None):
        self.masters = masters
        self.tz = ZoneInfo(tz_name or settings.ANALYTICS_TIMEZONE)
        self._cache: Optional[Tuple[List[Entry], List[Entry]]] = None
        self._lock = threading.Lock()

    # ---- cache ----

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None

    def _read(self, path) -> List[Entry]:
        try:
            return self.masters.read_master(path)
        except MasterFileError as exc:
            logger.error("Could not read master file for analytics", extra={"path": str(path), "error": str(exc)})
            return []

    def load(self) -> Tuple[List[Entry], List[Entry]]:
        """(intakes, feedback), cached until invalidate()."""
        with self._lock:
            if self._cache is None:
                self._cache = (self._read(self.masters.intakes_path), self._read(self.masters.feedback_path))
            return self._cache

    # ---- helpers ----

    def local_date(self, entry: Entry) -> Optional[date]:
        moment = parse_submitted(entry)
        return moment.astimezone(self.tz).date() if moment else None

    def today(self) -> date:
        return datetime.now(self.tz).date()

    def _intake_index(self, intakes: List[Entry]):
        """Latest intake per email and per normalized name."""
        by_email: Dict[str, Entry] = {}
        by_name: Dict[str, Entry] = {}
        ordered = sorted(intakes, key=lambda e: parse_submitted(e) or datetime.min.replace(tzinfo=timezone.utc))
        for entry in ordered:
            if entry.get("email"):
                by_email[str(entry["email"]).lower()] = entry
            if entry.get("clientName"):
                by_name[normalize_name(entry["clientName"])] = entry
        return by_email, by_name

    def _match_intake(self, fb: Entry, index) -> Optional[Entry]:
        by_email, by_name = index
        if fb.get("email") and str(fb["email"]).lower() in by_email:
            return by_email[str(fb["email"]).lower()]
        return by_name.get(normalize_name(fb.get("clientName")))

    def _feeling_pairs(self, intakes: List[Entry], feedback: List[Entry]) -> List[Tuple[int, int]]:
        index = self._intake_index(intakes)
        pairs = []
        for fb in feedback:
            post = as_int(fb.get("feelingPost"))
            pre = as_int(fb.get("feelingPre"))
            if pre is None:
                matched = self._match_intake(fb, index)
                pre = as_int(matched.get("feelingPre")) if matched else None
            if pre is not None and post is not None:
                pairs.append((pre, post))
        return pairs

    def _window(self, entries: List[Entry], days: Optional[int], today: date) -> List[Tuple[date, Entry]]:
        start = today - timedelta(days=days - 1) if days else None
        out = []
        for entry in entries:
            d = self.local_date(entry)
            if d is None or d > today or (start and d < start):
                continue
            out.append((d, entry))
        return out

    # ---- aggregates ----

    def summary(self) -> Dict[str, Any]:
        intakes, feedback = self.load()
        pairs = self._feeling_pairs(intakes, feedback)

        answered = [fb["wouldRecommend"] for fb in feedback if fb.get("wouldRecommend")]
        therapists = Counter(fb["therapistName"] for fb in feedback if fb.get("therapistName"))
        top = therapists.most_common(1)

        index = self._intake_index(intakes)
        matched = sum(1 for fb in feedback if self._match_intake(fb, index))

        return {
            "totalSubmissions": len(intakes) + len(feedback),
            "totalIntakes": len(intakes),
            "totalFeedback": len(feedback),
            "avgImprovement": _avg([post - pre for pre, post in pairs]),
            "recommendationRate": _pct(sum(1 for a in answered if a == "Yes"), len(answered)),
            "topTherapist": top[0][0] if top else None,
            "topTherapistSessions": top[0][1] if top else 0,
            "matchedFeedbackRate": _pct(matched, len(feedback)),
        }

    def trends(self, period: str = "30", today: Optional[date] = None) -> Dict[str, Any]:
        days = check_period(period)
        today = today or self.today()
        intakes, feedback = self.load()

        if days is None:
            granularity = "monthly"
            dated = [d for d in (self.local_date(e) for e in intakes + feedback) if d]
            first = min(dated) if dated else today
            months = []
            cursor = date(first.year, first.month, 1)
            while cursor <= today:
                months.append(cursor)
                cursor = date(cursor.year + cursor.month // 12, cursor.month % 12 + 1, 1)
            labels = [m.strftime("%b %Y") for m in months]
            slot = {(m.year, m.month): i for i, m in enumerate(months)}

            def bucket(d: date) -> Optional[int]:
                return slot.get((d.year, d.month))
        elif days == 90:
            granularity = "weekly"
            start = today - timedelta(days=days - 1)
            weeks = (days + 6) // 7
            labels = [f"Week of {_day_label(start + timedelta(weeks=i))}" for i in range(weeks)]

            def bucket(d: date) -> Optional[int]:
                return (d - start).days // 7
        else:
            granularity = "daily"
            start = today - timedelta(days=days - 1)
            labels = [_day_label(start + timedelta(days=i)) for i in range(days)]

            def bucket(d: date) -> Optional[int]:
                return (d - start).days

        series = {"intakes": [0] * len(labels), "feedback": [0] * len(labels)}
        for name, entries in (("intakes", intakes), ("feedback", feedback)):
            for d, _ in self._window(entries, days, today):
                i = bucket(d)
                if i is not None and 0 <= i < len(labels):
                    series[name][i] += 1

        return {
            "period": period,
            "granularity": granularity,
            "labels": labels,
            "values": [a + b for a, b in zip(series["intakes"], series["feedback"])],
            "datasets": [
                {"label": "Intakes", "data": series["intakes"]},
                {"label": "Feedback", "data": series["feedback"]},
            ],
        }

    def health_issues(self) -> Dict[str, Any]:
        intakes, _ = self.load()
        counts = Counter(
            condition
            for entry in intakes
            for condition in as_list(entry.get("medicalConditions"))
            if condition.lower() != "none"
        )
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return {"labels": [k for k, _ in ranked], "data": [v for _, v in ranked]}

    def therapists(self) -> Dict[str, Any]:
        _, feedback = self.load()
        grouped: Dict[str, List[Entry]] = defaultdict(list)
        for fb in feedback:
            if fb.get("therapistName"):
                grouped[fb["therapistName"]].append(fb)

        names = sorted(grouped, key=lambda n: (-len(grouped[n]), n))
        sessions, feelings, recommend = [], [], []
        for name in names:
            rows = grouped[name]
            sessions.append(len(rows))
            feelings.append(_avg([v for v in (as_int(r.get("feelingPost")) for r in rows) if v is not None]))
            answered = [r["wouldRecommend"] for r in rows if r.get("wouldRecommend")]
            recommend.append(_pct(sum(1 for a in answered if a == "Yes"), len(answered)))

        return {
            "labels": names,
            "datasets": [
                {"label": "Sessions", "data": sessions},
                {"label": "Avg Feeling Post", "data": feelings},
                {"label": "Recommend %", "data": recommend},
            ],
        }

    def pressure(self) -> Dict[str, Any]:
        intakes, _ = self.load()
        counts = Counter(e["pressurePreference"] for e in intakes if e.get("pressurePreference"))
        labels = [p for p in PRESSURE_PREFERENCES if p in counts]
        labels += sorted(p for p in counts if p not in PRESSURE_PREFERENCES)
        return {
            "labels": labels,
            "data": [counts[p] for p in labels],
            "backgroundColor": [PALETTE[i % len(PALETTE)] for i in range(len(labels))],
        }

    def feeling_scores(self) -> Dict[str, Any]:
        intakes, feedback = self.load()
        pairs = self._feeling_pairs(intakes, feedback)

        avg_pre = _avg([p for p, _ in pairs])
        avg_post = _avg([p for _, p in pairs])
        pre_counts = Counter(p for p, _ in pairs)
        post_counts = Counter(v for v in (as_int(fb.get("feelingPost")) for fb in feedback) if v is not None)
        scale = list(range(1, 11))

        return {
            "summary": {
                "avgPre": avg_pre,
                "avgPost": avg_post,
                "avgImprovement": _avg([post - pre for pre, post in pairs]),
                "pairs": len(pairs),
            },
            "distribution": {
                "labels": [str(s) for s in scale],
                "pre": [pre_counts[s] for s in scale],
                "post": [post_counts[s] for s in scale],
            },
        }

    def health_notes(self) -> Dict[str, Any]:
        intakes, _ = self.load()
        newest_first = sorted(
            intakes,
            key=lambda e: parse_submitted(e) or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )

        attention = []
        review_notes, avoid_notes = [], []
        for entry in newest_first:
            reasons = []
            if entry.get("pregnantBreastfeeding") == "Yes":
                reasons.append("Pregnant or breastfeeding")
            if entry.get("takingMedications") == "Yes":
                reasons.append("Taking medications")
            if entry.get("hasAllergies") == "Yes":
                reasons.append("Allergies")
            pain = as_int(entry.get("painLevel"))
            if pain is not None and pain >= HIGH_PAIN:
                reasons.append(f"High pain level ({pain}/10)")
            if entry.get("hasRecentInjuries") == "Yes":
                reasons.append("Recent accident, injury or surgery")

            if reasons:
                attention.append({
                    "clientName": entry.get("clientName"),
                    "filename": entry.get("filename"),
                    "submittedAt": entry.get("submittedAt"),
                    "reasons": reasons,
                })
            if entry.get("reviewNote"):
                review_notes.append(entry["reviewNote"])
            for key in ("avoidNotes", "areasToAvoid"):
                if entry.get(key):
                    avoid_notes.append(entry[key])

        return {"attention": attention, "reviewNotes": review_notes, "avoidNotes": avoid_notes}

    def data_quality(self) -> Dict[str, Any]:
        intakes, feedback = self.load()
        everything = intakes + feedback

        missing_email = sum(1 for e in everything if not e.get("email"))
        missing_name = sum(1 for e in everything if not e.get("clientName"))
        missing_date = sum(1 for e in everything if not e.get("submittedAt"))
        unparseable = sum(1 for e in everything if e.get("submittedAt") and parse_submitted(e) is None)
        filenames = [e.get("filename") for e in everything if e.get("filename")]

        with_contact = sum(1 for e in everything if e.get("email") or e.get("mobile"))
        with_comments = sum(1 for fb in feedback if fb.get("hasComments"))
        with_health = sum(
            1 for e in intakes
            if as_list(e.get("medicalConditions")) or e.get("takingMedications") or e.get("hasAllergies")
        )

        return {
            "total": len(everything),
            "counts": {
                "missingEmail": missing_email,
                "missingName": missing_name,
                "missingDate": missing_date,
                "unparseableDates": unparseable,
                "duplicateFilenames": len(filenames) - len(set(filenames)),
            },
            "qualityMetrics": {
                "submissionDatesAccuracy": _pct(len(everything) - missing_date - unparseable, len(everything)),
                "contactInfoComplete": _pct(with_contact, len(everything)),
                "commentsCapture": _pct(with_comments, len(feedback)),
                "healthNotesCapture": _pct(with_health, len(intakes)),
            },
        }

    def sessions(self, period: str = "30", today: Optional[date] = None) -> Dict[str, Any]:
        days = check_period(period)
        today = today or self.today()
        _, feedback = self.load()

        window = sorted(
            self._window(feedback, days, today),
            key=lambda pair: parse_submitted(pair[1]),
            reverse=True,
        )
        per_day = Counter(d for d, _ in window)
        calendar_days = sorted(per_day)

        return {
            "period": period,
            "dates": [_day_label(d) for d in calendar_days],
            "counts": [per_day[d] for d in calendar_days],
            "sessions": [
                {
                    "date": d.isoformat(),
                    "clientName": fb.get("clientName"),
                    "therapistName": fb.get("therapistName"),
                    "feelingPost": fb.get("feelingPost"),
                    "wouldRecommend": fb.get("wouldRecommend"),
                    "filename": fb.get("filename"),
                }
                for d, fb in window
            ],
        }


analytics = AnalyticsService()
