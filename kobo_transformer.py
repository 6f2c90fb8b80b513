"""
KoboToolbox Survey Transformer

Converts raw KoboToolbox submissions (one per student receiving a solar lamp)
into dashboard-ready entities:
- Students: one per submission answered by a student
- Schools: one per distinct school name, with averaged coordinates and
  poverty indicators
- Summary: totals, gender split, top career aspirations and household
  indicators across all students

The transformation is a single pass over an in-memory list. It holds no state
between calls and never raises for malformed input: bad fields fall back to
defaults and unusable records are skipped.
"""

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Any, Optional
from urllib.parse import urljoin

from config import KOBO_BASE_URL, PLACEHOLDER_PHOTO

logger = logging.getLogger(__name__)


# Categories counted as "has electricity" by the percent-without-electricity
# indicators. "None" is on this list; see DESIGN.md (open questions).
ELECTRICITY_BASED_SOURCES = ("Grid (unreliable)", "Generator (occasional)", "None")

NO_LIGHT_SOURCES = ("none", "candle", "firewood", "firewood flashlight")

DEFAULT_AGE = 12
DEFAULT_MEALS = 1
DEFAULT_SCHOOL_MEALS = 2.0
DEFAULT_PERCENT_WITHOUT_ELECTRICITY = 60.0
DEFAULT_PERCENT_WITH_SMARTPHONES = 30.0
DEFAULT_CAREER = "Undecided"
LAMP_SERIAL_YEAR = 2023
TOP_CAREER_COUNT = 5

MEAL_WORDS = {"one": 1, "two": 2, "three": 3}


# ==================== DATA MODELS ====================

@dataclass
class Coordinates:
    """Latitude/longitude pair. (0, 0) means unknown."""
    lat: float = 0.0
    lng: float = 0.0


@dataclass
class PovertyIndicators:
    """Per-school welfare metrics."""
    average_meals_per_day: float
    percent_without_electricity: float
    percent_with_smartphones: float


@dataclass
class School:
    """A school aggregated from the submissions that name it."""
    id: str
    name: str
    location: str
    total_students: int
    coordinates: Coordinates
    poverty_indicators: PovertyIndicators

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "School":
        return cls(
            id=data['id'],
            name=data['name'],
            location=data['location'],
            total_students=int(data['total_students']),
            coordinates=Coordinates(**data['coordinates']),
            poverty_indicators=PovertyIndicators(**data['poverty_indicators'])
        )


@dataclass
class HouseholdInfo:
    meals_per_day: int
    electricity_source: str
    has_smartphone: bool
    parent_income_source: str


@dataclass
class Student:
    """A student who received a lamp. `school` is shared with other students."""
    id: str
    name: str
    photo: str
    age: int
    gender: str               # "Male" | "Female" | "Other"
    grade: str
    school: School
    career_aspiration: str
    lamp_serial_number: str
    household_info: HouseholdInfo
    location: Coordinates     # Raw GPS reading of this submission


@dataclass
class GenderCount:
    gender: str
    count: int


@dataclass
class CareerAspiration:
    name: str
    count: int


@dataclass
class CareerAspirationByGender:
    """Male/Female tally for one aspiration. Students with gender Other are not counted."""
    name: str
    Male: int = 0
    Female: int = 0


@dataclass
class Summary:
    """Aggregate statistics across all students of one transformation pass."""
    schools: List[School] = field(default_factory=list)
    total_students: int = 0
    total_lamps: int = 0
    average_age: float = 0.0
    gender_distribution: List[GenderCount] = field(default_factory=list)
    career_aspirations: List[CareerAspiration] = field(default_factory=list)  # Top 5
    percent_with_smartphones: float = 0.0
    percent_without_electricity: float = 0.0
    average_meals_per_day: float = 0.0
    career_aspirations_by_gender: List[CareerAspirationByGender] = field(default_factory=list)


@dataclass
class DashboardData:
    """Output of one pass: students and their summary, plus provenance."""
    students: List[Student]
    summary: Summary
    source: str = "kobo"      # "kobo" | "cache" | "mock" | "upload"
    fetched_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DashboardData":
        """
        Rebuild entities from `to_dict()` output (e.g. the JSON cache).

        Students pointing at the same school id share one School instance again.
        """
        summary_data = data.get('summary') or {}
        schools = [School.from_dict(s) for s in summary_data.get('schools', [])]
        schools_by_id = {s.id: s for s in schools}

        students = []
        for s in data.get('students', []):
            school = schools_by_id.get(s['school']['id'])
            if school is None:
                # Sentinel schools are not part of the summary list
                school = School.from_dict(s['school'])
                schools_by_id[school.id] = school
            students.append(Student(
                id=s['id'],
                name=s['name'],
                photo=s['photo'],
                age=int(s['age']),
                gender=s['gender'],
                grade=s['grade'],
                school=school,
                career_aspiration=s['career_aspiration'],
                lamp_serial_number=s['lamp_serial_number'],
                household_info=HouseholdInfo(**s['household_info']),
                location=Coordinates(**s['location'])
            ))

        summary = Summary(
            schools=schools,
            total_students=int(summary_data.get('total_students', 0)),
            total_lamps=int(summary_data.get('total_lamps', 0)),
            average_age=float(summary_data.get('average_age', 0.0)),
            gender_distribution=[GenderCount(**g) for g in summary_data.get('gender_distribution', [])],
            career_aspirations=[CareerAspiration(**c) for c in summary_data.get('career_aspirations', [])],
            percent_with_smartphones=float(summary_data.get('percent_with_smartphones', 0.0)),
            percent_without_electricity=float(summary_data.get('percent_without_electricity', 0.0)),
            average_meals_per_day=float(summary_data.get('average_meals_per_day', 0.0)),
            career_aspirations_by_gender=[
                CareerAspirationByGender(**c)
                for c in summary_data.get('career_aspirations_by_gender', [])
            ]
        )

        return cls(
            students=students,
            summary=summary,
            source=data.get('source', 'cache'),
            fetched_at=data.get('fetched_at', ''),
            error=data.get('error')
        )


# ==================== RAW RECORD PARSING ====================

def _clean_value(value: Any) -> Optional[str]:
    """Coerce a raw form value to a stripped string, or None if blank/missing."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, float) and math.isnan(value):
        # Blank cells in uploaded spreadsheets arrive as NaN
        return None
    text = str(value).strip()
    return text or None


def _parse_submission_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    text = _clean_value(value)
    if text and text.isascii() and text.isdigit():
        return int(text)
    return None


@dataclass
class KoboRecord:
    """
    One raw submission with every field optional.

    All access to raw form data goes through `from_raw`, so the rest of the
    pipeline never touches the untyped mapping directly.
    """
    submission_id: Optional[int] = None
    role: Optional[str] = None
    school_name: Optional[str] = None
    student_name: Optional[str] = None
    grade: Optional[str] = None
    gender: Optional[str] = None
    age: Optional[str] = None
    career_aspiration: Optional[str] = None
    photo: Optional[str] = None
    lamp_serial_number: Optional[str] = None
    income_source: Optional[str] = None
    lighting: Optional[str] = None
    smartphone: Optional[str] = None
    meals: Optional[str] = None
    gps: Optional[str] = None
    attachments: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_raw(cls, entry: Dict[str, Any]) -> "KoboRecord":
        """Create a record from a KoboToolbox submission dict."""
        # Role is matched exactly, so it is not stripped
        role = entry.get('Are_you_a')
        raw_attachments = entry.get('_attachments')
        attachments = []
        if isinstance(raw_attachments, list):
            attachments = [a for a in raw_attachments if isinstance(a, dict)]

        return cls(
            submission_id=_parse_submission_id(entry.get('_id')),
            role=role if isinstance(role, str) else None,
            school_name=_clean_value(entry.get('School_Name')),
            student_name=_clean_value(entry.get('Name_of_the_Student')),
            grade=_clean_value(entry.get('What_Grade_is_the_Student')),
            gender=_clean_value(entry.get('Gender_of_the_Student')),
            age=_clean_value(entry.get('Age_of_the_Student')),
            career_aspiration=_clean_value(entry.get('What_do_you_hope_to_be_when_you_grow_up')),
            photo=_clean_value(entry.get('Photo_of_the_Student')),
            lamp_serial_number=_clean_value(entry.get('Record_the_device_serial_number')),
            income_source=_clean_value(entry.get('What_s_the_family_s_ain_source_of_income')),
            lighting=_clean_value(entry.get('What_do_you_currently_use_for_lighting')),
            smartphone=_clean_value(entry.get('Do_you_or_anyone_in_your_famil')),
            meals=_clean_value(entry.get('How_many_meals_do_yo_ically_have_in_a_day')),
            gps=_clean_value(entry.get('GPS_Reading')),
            attachments=attachments
        )

    @property
    def is_student(self) -> bool:
        return self.role == "student"


def parse_records(entries: List[Any]) -> List[KoboRecord]:
    """Parse raw entries, skipping anything that is not a mapping."""
    records = []
    skipped = 0
    for entry in entries:
        if isinstance(entry, dict):
            records.append(KoboRecord.from_raw(entry))
        else:
            skipped += 1
    if skipped:
        logger.warning("Skipped %d submissions that were not objects", skipped)
    return records


# ==================== FIELD MAPPERS ====================

# Longer digit runs are treated as unparseable
_LEADING_INT = re.compile(r'^\s*([+-]?\d{1,9})(?!\d)')


def _parse_leading_int(raw: Optional[str]) -> Optional[int]:
    """Parse the leading integer of a string ("13 years" -> 13), or None."""
    if raw is None:
        return None
    match = _LEADING_INT.match(str(raw))
    return int(match.group(1)) if match else None


def _parse_float(raw: Optional[str]) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def round_one(value: float) -> float:
    """
    Round to one decimal place, halves away from zero.

    Python's round() rounds halves to even (12.25 -> 12.2); the dashboard has
    always shown 12.3, so round on the exact decimal value instead.
    """
    return float(Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def meals_to_number(raw: Optional[str]) -> int:
    """
    Map the meals-per-day answer to an integer.

    Handles the word choices ("one", "two", "three") and free numbers;
    anything unreadable counts as 1 meal.
    """
    if not raw:
        return DEFAULT_MEALS
    word_value = MEAL_WORDS.get(raw.strip().lower())
    if word_value is not None:
        return word_value
    parsed = _parse_leading_int(raw)
    return parsed if parsed is not None else DEFAULT_MEALS


def map_gender(raw: Optional[str]) -> str:
    """
    Map the gender answer to "Male", "Female" or "Other".

    "female" is checked before "male" because it contains it.
    """
    if not raw:
        return "Other"
    normalized = raw.lower()
    if "girl" in normalized or "female" in normalized:
        return "Female"
    if "boy" in normalized or "male" in normalized:
        return "Male"
    return "Other"


def parse_gps(raw: Optional[str]) -> Coordinates:
    """
    Parse a Kobo geopoint ("<lat> <lng> <alt> <accuracy>").

    Each axis falls back to 0 on its own when it cannot be read.
    """
    if not raw:
        return Coordinates(0.0, 0.0)
    parts = str(raw).split()
    lat = _parse_float(parts[0]) if len(parts) > 0 else 0.0
    lng = _parse_float(parts[1]) if len(parts) > 1 else 0.0
    return Coordinates(lat, lng)


def electricity_source_category(raw: Optional[str]) -> str:
    """Map the lighting answer to a display category, passing unknown answers through."""
    if not raw or raw.strip().lower() in NO_LIGHT_SOURCES:
        return "None"
    normalized = raw.lower()
    if "solar" in normalized:
        return "Solar (small)"
    if "kerosene" in normalized:
        return "Kerosene Lamp"
    if "grid" in normalized:
        return "Grid (unreliable)"
    if "generator" in normalized:
        return "Generator (occasional)"
    return raw


def parse_age(raw: Optional[str]) -> int:
    parsed = _parse_leading_int(raw)
    return parsed if parsed is not None else DEFAULT_AGE


def has_smartphone(raw: Optional[str]) -> bool:
    return raw is not None and raw.strip().lower() == "yes"


def format_school_name(key: str) -> str:
    """
    Turn a Kobo choice name into a display name.

    E.g. "green_valley" -> "Green Valley"
    """
    return " ".join(token[:1].upper() + token[1:] for token in key.split("_"))


def school_location(display_name: str) -> str:
    return display_name.split(" ")[0] + " Village"


def resolve_photo_url(photo: Optional[str],
                      attachments: List[Dict[str, Any]],
                      base_url: str = KOBO_BASE_URL) -> str:
    """
    Find the download URL of the student photo among the submission attachments.

    Returns the placeholder image when there is no photo or no attachment
    whose filename contains the photo name.
    """
    if not photo:
        return PLACEHOLDER_PHOTO
    for attachment in attachments:
        filename = attachment.get('filename')
        download_url = attachment.get('download_url')
        if isinstance(filename, str) and photo in filename and download_url:
            return urljoin(base_url, str(download_url))
    return PLACEHOLDER_PHOTO


def unknown_school() -> School:
    """Sentinel school for students whose school is missing or unmatched."""
    return School(
        id="s0",
        name="Unknown School",
        location="Unknown",
        total_students=0,
        coordinates=Coordinates(0.0, 0.0),
        poverty_indicators=PovertyIndicators(
            average_meals_per_day=DEFAULT_SCHOOL_MEALS,
            percent_without_electricity=DEFAULT_PERCENT_WITHOUT_ELECTRICITY,
            percent_with_smartphones=DEFAULT_PERCENT_WITH_SMARTPHONES
        )
    )


# ==================== SCHOOL AGGREGATION ====================

@dataclass
class _SchoolAccumulator:
    """Values collected for one school during a pass."""
    count: int = 0
    coordinates: List[Coordinates] = field(default_factory=list)
    meals: List[int] = field(default_factory=list)
    electricity: List[str] = field(default_factory=list)
    smartphones: List[bool] = field(default_factory=list)

    def add(self, record: KoboRecord) -> None:
        self.count += 1
        if record.gps:
            coords = parse_gps(record.gps)
            if coords.lat != 0 and coords.lng != 0:
                self.coordinates.append(coords)
        self.meals.append(meals_to_number(record.meals))
        self.electricity.append(electricity_source_category(record.lighting))
        self.smartphones.append(has_smartphone(record.smartphone))


def _percent(part: int, total: int) -> float:
    return round_one(part / total * 100)


def _build_school(school_id: str, key: str, acc: _SchoolAccumulator) -> School:
    if acc.coordinates:
        avg_coords = Coordinates(
            lat=sum(c.lat for c in acc.coordinates) / len(acc.coordinates),
            lng=sum(c.lng for c in acc.coordinates) / len(acc.coordinates)
        )
    else:
        avg_coords = Coordinates(0.0, 0.0)

    avg_meals = sum(acc.meals) / len(acc.meals) if acc.meals else DEFAULT_SCHOOL_MEALS

    if acc.electricity:
        without = sum(1 for src in acc.electricity if src not in ELECTRICITY_BASED_SOURCES)
        pct_without = _percent(without, len(acc.electricity))
    else:
        pct_without = DEFAULT_PERCENT_WITHOUT_ELECTRICITY

    if acc.smartphones:
        pct_smartphones = _percent(sum(acc.smartphones), len(acc.smartphones))
    else:
        pct_smartphones = DEFAULT_PERCENT_WITH_SMARTPHONES

    display_name = format_school_name(key)
    return School(
        id=school_id,
        name=display_name,
        location=school_location(display_name),
        total_students=acc.count,
        coordinates=avg_coords,
        poverty_indicators=PovertyIndicators(
            average_meals_per_day=round_one(avg_meals),
            percent_without_electricity=pct_without,
            percent_with_smartphones=pct_smartphones
        )
    )


def aggregate_schools(records: List[KoboRecord]) -> Dict[str, School]:
    """
    Group student submissions by school name and build one School per group.

    Args:
        records: Parsed submissions (any role)

    Returns:
        Dict mapping the raw school key to its School, in first-seen order
        (ids "s1", "s2", ... follow the same order)
    """
    accumulators: Dict[str, _SchoolAccumulator] = {}
    for record in records:
        if not record.is_student or not record.school_name:
            continue
        accumulators.setdefault(record.school_name, _SchoolAccumulator()).add(record)

    schools = {
        key: _build_school(f"s{i}", key, acc)
        for i, (key, acc) in enumerate(accumulators.items(), 1)
    }
    logger.debug("Aggregated %d schools: %s",
                 len(schools), {k: s.total_students for k, s in schools.items()})
    return schools


# ==================== STUDENT MAPPING ====================

def map_students(records: List[KoboRecord], schools: Dict[str, School]) -> List[Student]:
    """
    Build one Student per student submission, linked to its aggregated School.

    Students whose school is missing from `schools` share a single
    "Unknown School" sentinel, so real schools never absorb them.
    """
    sentinel: Optional[School] = None
    students = []

    student_records = [r for r in records if r.is_student]
    for index, record in enumerate(student_records):
        school = schools.get(record.school_name) if record.school_name else None
        if school is None:
            if sentinel is None:
                sentinel = unknown_school()
            school = sentinel

        submission_id = record.submission_id if record.submission_id else index + 1

        students.append(Student(
            id=f"st{submission_id}",
            name=record.student_name or f"Student {index + 1}",
            photo=resolve_photo_url(record.photo, record.attachments),
            age=parse_age(record.age),
            gender=map_gender(record.gender),
            grade=f"Grade {record.grade or 'Unknown'}",
            school=school,
            career_aspiration=record.career_aspiration or DEFAULT_CAREER,
            lamp_serial_number=record.lamp_serial_number or f"SL-{LAMP_SERIAL_YEAR}-{1000 + index}",
            household_info=HouseholdInfo(
                meals_per_day=meals_to_number(record.meals),
                electricity_source=electricity_source_category(record.lighting),
                has_smartphone=has_smartphone(record.smartphone),
                parent_income_source=record.income_source or "Unknown"
            ),
            location=parse_gps(record.gps)
        ))

    if sentinel is not None:
        unmatched = sum(1 for s in students if s.school is sentinel)
        logger.info("%d students have no matching school; assigned to %s", unmatched, sentinel.name)

    return students


# ==================== SUMMARY ====================

def create_empty_summary() -> Summary:
    """Canonical summary for an empty or unusable batch."""
    return Summary()


def career_aspirations_by_gender(students: List[Student]) -> List[CareerAspirationByGender]:
    """
    Tally Male/Female students per aspiration, in first-seen aspiration order.

    Students with gender "Other" still create the aspiration row but are not
    added to either column.
    """
    rows: Dict[str, CareerAspirationByGender] = {}
    for student in students:
        aspiration = student.career_aspiration
        if not aspiration:
            continue
        row = rows.setdefault(aspiration, CareerAspirationByGender(name=aspiration))
        gender = student.gender.lower()
        if gender == "male":
            row.Male += 1
        elif gender == "female":
            row.Female += 1
    return list(rows.values())


def rank_career_aspirations(students: List[Student], limit: Optional[int] = TOP_CAREER_COUNT) -> List[CareerAspiration]:
    """
    Count aspirations and sort by count, descending.

    Ties keep first-seen order (Counter preserves insertion order and
    sorted() is stable).
    """
    counts = Counter(s.career_aspiration for s in students if s.career_aspiration)
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    if limit is not None:
        ranked = ranked[:limit]
    return [CareerAspiration(name=name, count=count) for name, count in ranked]


def calculate_summary(students: List[Student], schools: List[School]) -> Summary:
    """
    Calculate summary statistics across all students.

    Args:
        students: Mapped students
        schools: Aggregated schools (carried into the summary as-is)

    Returns:
        Summary; the empty summary when there are no students
    """
    if not students:
        return create_empty_summary()

    total = len(students)

    gender_counts = Counter(s.gender for s in students)
    gender_distribution = [GenderCount(gender=g, count=c) for g, c in gender_counts.items()]

    without_electricity = sum(
        1 for s in students
        if s.household_info.electricity_source not in ELECTRICITY_BASED_SOURCES
    )
    logger.debug("Electricity sources: %s",
                 dict(Counter(s.household_info.electricity_source for s in students)))

    with_smartphones = sum(1 for s in students if s.household_info.has_smartphone)

    return Summary(
        schools=list(schools),
        total_students=total,
        total_lamps=sum(1 for s in students if s.lamp_serial_number),
        average_age=round_one(sum(s.age for s in students) / total),
        gender_distribution=gender_distribution,
        career_aspirations=rank_career_aspirations(students),
        percent_with_smartphones=_percent(with_smartphones, total),
        percent_without_electricity=_percent(without_electricity, total),
        average_meals_per_day=round_one(sum(s.household_info.meals_per_day for s in students) / total),
        career_aspirations_by_gender=career_aspirations_by_gender(students)
    )


# ==================== ENTRY POINT ====================

def extract_submissions(kobo_data: Any) -> Optional[List[Any]]:
    """
    Return the submission list from a bare list or a paginated API response.

    Returns None when neither shape is present.
    """
    if isinstance(kobo_data, list):
        return kobo_data
    if isinstance(kobo_data, dict) and isinstance(kobo_data.get('results'), list):
        return kobo_data['results']
    return None


def transform_kobo_data(kobo_data: Any, source: str = "kobo") -> DashboardData:
    """
    Transform KoboToolbox data into dashboard entities.

    This is the main entry point of the pipeline.

    Args:
        kobo_data: A list of submissions, or an API response with a
            `results` list. Anything else yields an empty result.
        source: Provenance label stored on the result

    Returns:
        DashboardData with students and summary
    """
    entries = extract_submissions(kobo_data)
    if entries is None:
        logger.warning("Invalid Kobo data: expected a list or an object with a results list, got %s",
                       type(kobo_data).__name__)
        return DashboardData(students=[], summary=create_empty_summary(), source=source)

    records = parse_records(entries)
    logger.info("Transforming %d submissions (%d from students)",
                len(records), sum(1 for r in records if r.is_student))

    schools_map = aggregate_schools(records)
    schools = list(schools_map.values())
    students = map_students(records, schools_map)
    summary = calculate_summary(students, schools)

    return DashboardData(students=students, summary=summary, source=source)

