"""
Chart and table helpers for the dashboard.

Pure functions that reshape Student/School entities into lists and pandas
DataFrames. Kept free of Streamlit so they can be tested directly.
"""

from collections import Counter
from typing import Dict, List, Optional, Tuple, TypeVar

import numpy as np
import pandas as pd

from kobo_transformer import CareerAspiration, School, Student

T = TypeVar("T")

STUDENT_COLUMNS = [
    'ID', 'Name', 'Age', 'Gender', 'Grade', 'School', 'Career Aspiration',
    'Lamp Serial', 'Meals/Day', 'Electricity Source', 'Smartphone', 'Income Source'
]

SCHOOL_COLUMNS = [
    'ID', 'School', 'Location', 'Students', 'Lat', 'Lng',
    'Avg Meals/Day', 'Without Electricity %', 'With Smartphones %'
]


# ==================== LOOKUPS ====================

def get_student(students: List[Student], student_id: str) -> Optional[Student]:
    return next((s for s in students if s.id == student_id), None)


def get_school(schools: List[School], school_id: str) -> Optional[School]:
    return next((s for s in schools if s.id == school_id), None)


def get_students_by_school(students: List[Student], school_id: str) -> List[Student]:
    return [s for s in students if s.school.id == school_id]


def career_aspirations_by_school(students: List[Student], school_id: str) -> List[CareerAspiration]:
    """All aspirations of one school's students with counts, in first-seen order."""
    counts = Counter(s.career_aspiration for s in get_students_by_school(students, school_id))
    return [CareerAspiration(name=name, count=count) for name, count in counts.items()]


def electricity_source_distribution(students: List[Student]) -> Dict[str, int]:
    """Count of students per electricity category, in first-seen order."""
    return dict(Counter(s.household_info.electricity_source for s in students))


# ==================== FILTERING ====================

def filter_students(students: List[Student],
                    search: str = "",
                    gender: Optional[str] = None,
                    school_id: Optional[str] = None) -> List[Student]:
    """
    Filter students for the student table.

    Args:
        search: Case-insensitive substring of the student or school name
        gender: "Male", "Female" or "Other"; None or "All" keeps everyone
        school_id: Restrict to one school
    """
    needle = search.strip().lower()
    result = []
    for student in students:
        if needle and needle not in student.name.lower() and needle not in student.school.name.lower():
            continue
        if gender and gender != "All" and student.gender != gender:
            continue
        if school_id and student.school.id != school_id:
            continue
        result.append(student)
    return result


def paginate(items: List[T], page: int, page_size: int) -> Tuple[List[T], int]:
    """
    Return one page of items (1-indexed) and the total page count.

    Out-of-range pages are clamped to the first/last page.
    """
    total_pages = max(1, -(-len(items) // page_size))
    page = min(max(page, 1), total_pages)
    start = (page - 1) * page_size
    return items[start:start + page_size], total_pages


# ==================== DATAFRAMES ====================

def students_to_dataframe(students: List[Student]) -> pd.DataFrame:
    """Flatten students into one row each for display."""
    rows = [
        {
            'ID': s.id,
            'Name': s.name,
            'Age': s.age,
            'Gender': s.gender,
            'Grade': s.grade,
            'School': s.school.name,
            'Career Aspiration': s.career_aspiration,
            'Lamp Serial': s.lamp_serial_number,
            'Meals/Day': s.household_info.meals_per_day,
            'Electricity Source': s.household_info.electricity_source,
            'Smartphone': "Yes" if s.household_info.has_smartphone else "No",
            'Income Source': s.household_info.parent_income_source
        }
        for s in students
    ]
    return pd.DataFrame(rows, columns=STUDENT_COLUMNS)


def schools_to_dataframe(schools: List[School]) -> pd.DataFrame:
    rows = [
        {
            'ID': s.id,
            'School': s.name,
            'Location': s.location,
            'Students': s.total_students,
            'Lat': s.coordinates.lat,
            'Lng': s.coordinates.lng,
            'Avg Meals/Day': s.poverty_indicators.average_meals_per_day,
            'Without Electricity %': s.poverty_indicators.percent_without_electricity,
            'With Smartphones %': s.poverty_indicators.percent_with_smartphones
        }
        for s in schools
    ]
    return pd.DataFrame(rows, columns=SCHOOL_COLUMNS)


def map_points(students: List[Student], schools: List[School]) -> pd.DataFrame:
    """
    Points for the map: one per school and one per student with a GPS reading.

    Entries at (0, 0) are unknown locations and are left out.
    """
    rows = []
    for school in schools:
        if school.coordinates.lat != 0 and school.coordinates.lng != 0:
            rows.append({
                'kind': 'School',
                'name': school.name,
                'lat': school.coordinates.lat,
                'lng': school.coordinates.lng,
                'students': school.total_students
            })
    for student in students:
        if student.location.lat != 0 and student.location.lng != 0:
            rows.append({
                'kind': 'Student',
                'name': student.name,
                'lat': student.location.lat,
                'lng': student.location.lng,
                'students': 1
            })
    return pd.DataFrame(rows, columns=['kind', 'name', 'lat', 'lng', 'students'])


def map_center(points: pd.DataFrame, default: Tuple[float, float] = (-1.292066, 36.821945)) -> Tuple[float, float]:
    """Mean position of the map points, or `default` when there are none."""
    if points.empty:
        return default
    return float(np.mean(points['lat'])), float(np.mean(points['lng']))
