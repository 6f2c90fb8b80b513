"""
Static sample data shown when KoboToolbox cannot be reached.

Six schools and 30 students. Values cycle through fixed lists so the
dataset is identical on every load.
"""

from typing import List

from kobo_transformer import (
    Coordinates, DashboardData, HouseholdInfo, PovertyIndicators, School, Student,
    calculate_summary
)

# (id, name, location, total_students, lat, lng, meals, % without electricity, % smartphones)
_SCHOOL_ROWS = [
    ("s1", "Riverside Elementary", "Riverside Village", 78, -1.292066, 36.821945, 1.8, 68.0, 32.0),
    ("s2", "Hillside Secondary", "Hillside County", 124, -1.312066, 36.811945, 2.1, 59.0, 41.0),
    ("s3", "Valley Primary", "Green Valley", 62, -1.272066, 36.831945, 1.6, 76.0, 25.0),
    ("s4", "Mountain View High", "Mountain Region", 110, -1.292066, 36.801945, 2.3, 54.0, 48.0),
    ("s5", "Sunset High School", "Sunset Town", 95, -1.362066, 36.881945, 2.0, 60.0, 50.0),
    ("s6", "Lakeside Academy", "Lakeside City", 150, -1.342066, 36.861945, 2.4, 50.0, 55.0),
]

ASPIRATIONS = [
    "Doctor", "Teacher", "Engineer", "Pilot", "Nurse", "Entrepreneur",
    "Scientist", "Artist", "Farmer", "Police Officer", "Firefighter", "Driver"
]

ELECTRICITY_SOURCES = [
    "None", "Solar (small)", "Generator (occasional)",
    "Grid (unreliable)", "Charcoal", "Kerosene Lamp"
]

INCOME_SOURCES = [
    "Farming", "Small Business", "Daily Labor", "Crafts",
    "Teaching", "None", "Livestock Farmers"
]

GENDERS = ["Female", "Male", "Other"]

MOCK_STUDENT_COUNT = 30


def mock_schools() -> List[School]:
    return [
        School(
            id=sid,
            name=name,
            location=location,
            total_students=total,
            coordinates=Coordinates(lat, lng),
            poverty_indicators=PovertyIndicators(meals, without, smartphones)
        )
        for sid, name, location, total, lat, lng, meals, without, smartphones in _SCHOOL_ROWS
    ]


def mock_students(schools: List[School]) -> List[Student]:
    students = []
    for i in range(MOCK_STUDENT_COUNT):
        school = schools[i % len(schools)]
        # Spread students around their school without randomness
        offset = ((i * 7) % 21 - 10) / 1000
        students.append(Student(
            id=f"st{i + 1}",
            name=f"Student {i + 1}",
            photo=f"https://i.pravatar.cc/300?img={(i % 70) + 1}",
            age=10 + (i % 8),
            gender=GENDERS[i % 3],
            grade=f"Grade {1 + (i % 12)}",
            school=school,
            career_aspiration=ASPIRATIONS[i % len(ASPIRATIONS)],
            lamp_serial_number=f"SL-2023-{1000 + i}",
            household_info=HouseholdInfo(
                meals_per_day=1 + (i % 3),
                electricity_source=ELECTRICITY_SOURCES[i % len(ELECTRICITY_SOURCES)],
                has_smartphone=i % 3 == 0,
                parent_income_source=INCOME_SOURCES[i % len(INCOME_SOURCES)]
            ),
            location=Coordinates(school.coordinates.lat + offset, school.coordinates.lng - offset)
        ))
    return students


def build_mock_dashboard_data() -> DashboardData:
    """Fresh copy of the fallback dataset (callers may mutate it)."""
    schools = mock_schools()
    students = mock_students(schools)
    return DashboardData(
        students=students,
        summary=calculate_summary(students, schools),
        source="mock"
    )
