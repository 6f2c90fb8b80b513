"""
Tests for chart/table helpers and the mock fallback dataset.
"""

import pandas as pd
import pytest

from chart_data import (
    SCHOOL_COLUMNS, STUDENT_COLUMNS, career_aspirations_by_school,
    electricity_source_distribution, filter_students, get_school, get_student,
    get_students_by_school, map_center, map_points, paginate, schools_to_dataframe,
    students_to_dataframe
)
from kobo_transformer import transform_kobo_data
from mock_data import MOCK_STUDENT_COUNT, build_mock_dashboard_data


@pytest.fixture
def data(sample_submissions):
    return transform_kobo_data(sample_submissions)


class TestLookups:

    def test_get_student_and_school(self, data):
        assert get_student(data.students, "st102").name == "Brian Kamau"
        assert get_student(data.students, "missing") is None
        assert get_school(data.summary.schools, "s2").name == "Hill Top"
        assert get_school(data.summary.schools, "s9") is None

    def test_students_by_school(self, data):
        assert [s.id for s in get_students_by_school(data.students, "s1")] == ["st101", "st102"]
        assert [s.id for s in get_students_by_school(data.students, "s0")] == ["st4"]

    def test_career_aspirations_by_school(self, data):
        rows = career_aspirations_by_school(data.students, "s1")
        assert [(r.name, r.count) for r in rows] == [("Doctor", 2)]

    def test_electricity_source_distribution(self, data):
        assert electricity_source_distribution(data.students) == {
            "Kerosene Lamp": 1, "Grid (unreliable)": 1, "None": 2
        }


class TestFiltering:

    def test_search_matches_student_or_school_name(self, data):
        assert [s.id for s in filter_students(data.students, "amina")] == ["st101"]
        assert [s.id for s in filter_students(data.students, "HILL")] == ["st104"]

    def test_gender_and_school_filters(self, data):
        assert [s.id for s in filter_students(data.students, gender="Male")] == ["st102", "st4"]
        assert len(filter_students(data.students, gender="All")) == 4
        assert [s.id for s in filter_students(data.students, gender="Female", school_id="s1")] == ["st101"]

    def test_paginate(self):
        items = list(range(7))
        assert paginate(items, 1, 3) == ([0, 1, 2], 3)
        assert paginate(items, 3, 3) == ([6], 3)
        assert paginate(items, 99, 3) == ([6], 3)
        assert paginate(items, 0, 3) == ([0, 1, 2], 3)
        assert paginate([], 1, 3) == ([], 1)


class TestDataFrames:

    def test_students_to_dataframe(self, data):
        df = students_to_dataframe(data.students)
        assert list(df.columns) == STUDENT_COLUMNS
        assert len(df) == 4
        assert df.iloc[0]['School'] == "Green Valley"
        assert df.iloc[0]['Smartphone'] == "Yes"

    def test_empty_dataframes_keep_columns(self):
        assert list(students_to_dataframe([]).columns) == STUDENT_COLUMNS
        assert list(schools_to_dataframe([]).columns) == SCHOOL_COLUMNS

    def test_schools_to_dataframe(self, data):
        df = schools_to_dataframe(data.summary.schools)
        assert df['Students'].tolist() == [2, 1]
        assert df['Without Electricity %'].tolist() == [50.0, 0.0]

    def test_map_points_skip_unknown_locations(self, data):
        points = map_points(data.students, data.summary.schools)
        # Hill Top and two students have no GPS reading
        assert points['kind'].tolist() == ["School", "Student", "Student"]
        assert map_center(points) == pytest.approx((-1.3, 36.9))

    def test_map_center_default(self):
        empty = pd.DataFrame(columns=['kind', 'name', 'lat', 'lng', 'students'])
        assert map_center(empty, default=(1.0, 2.0)) == (1.0, 2.0)


class TestMockData:

    def test_mock_dataset(self):
        data = build_mock_dashboard_data()
        assert data.source == "mock"
        assert len(data.students) == MOCK_STUDENT_COUNT
        assert len(data.summary.schools) == 6
        assert data.summary.total_students == MOCK_STUDENT_COUNT
        assert data.summary.average_age == 13.3
        assert [g.gender for g in data.summary.gender_distribution] == ["Female", "Male", "Other"]

    def test_mock_dataset_is_deterministic(self):
        assert build_mock_dashboard_data().students == build_mock_dashboard_data().students
