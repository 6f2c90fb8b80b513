"""
Tests for the KoboToolbox transformer.

Run with: pytest test_kobo_transformer.py
"""

import pytest

from config import PLACEHOLDER_PHOTO
from kobo_transformer import (
    Coordinates, KoboRecord, aggregate_schools, calculate_summary,
    career_aspirations_by_gender, create_empty_summary, electricity_source_category,
    format_school_name, map_gender, map_students, meals_to_number, parse_age,
    parse_gps, parse_records, rank_career_aspirations, resolve_photo_url, round_one,
    transform_kobo_data
)


def _student(**overrides):
    entry = {"Are_you_a": "student", "School_Name": "green_valley"}
    entry.update(overrides)
    return entry


# ==================== FIELD MAPPERS ====================

class TestFieldMappers:

    @pytest.mark.parametrize("raw, expected", [
        ("one", 1), ("Two", 2), ("THREE", 3), ("4", 4), ("2 meals", 2),
        ("many", 1), ("", 1), (None, 1),
    ])
    def test_meals_to_number(self, raw, expected):
        assert meals_to_number(raw) == expected

    @pytest.mark.parametrize("raw, expected", [
        ("boy", "Male"), ("Male", "Male"), ("BOY", "Male"),
        ("girl", "Female"), ("Female", "Female"), ("FEMALE", "Female"),
        ("prefer not to say", "Other"), ("", "Other"), (None, "Other"),
    ])
    def test_map_gender(self, raw, expected):
        assert map_gender(raw) == expected

    def test_parse_gps(self):
        assert parse_gps("-1.29 36.82") == Coordinates(-1.29, 36.82)
        assert parse_gps("-1.29 36.82 1650.0 5.0") == Coordinates(-1.29, 36.82)

    @pytest.mark.parametrize("raw", [None, "", "abc", "nan nan"])
    def test_parse_gps_unreadable_is_origin(self, raw):
        assert parse_gps(raw) == Coordinates(0.0, 0.0)

    def test_parse_gps_zeroes_each_axis_independently(self):
        assert parse_gps("-1.29 abc") == Coordinates(-1.29, 0.0)
        assert parse_gps("abc 36.82") == Coordinates(0.0, 36.82)
        assert parse_gps("-1.29") == Coordinates(-1.29, 0.0)

    @pytest.mark.parametrize("raw, expected", [
        (None, "None"), ("none", "None"), ("Candle", "None"), ("firewood", "None"),
        ("firewood flashlight", "None"), ("solar_lamp", "Solar (small)"),
        ("Kerosene", "Kerosene Lamp"), ("national grid", "Grid (unreliable)"),
        ("generator", "Generator (occasional)"), ("charcoal", "charcoal"),
    ])
    def test_electricity_source_category(self, raw, expected):
        assert electricity_source_category(raw) == expected

    @pytest.mark.parametrize("raw, expected", [
        ("11", 11), ("13 years", 13), ("12.7", 12), ("abc", 12), (None, 12), ("", 12),
    ])
    def test_parse_age(self, raw, expected):
        assert parse_age(raw) == expected

    def test_format_school_name(self):
        assert format_school_name("green_valley") == "Green Valley"
        assert format_school_name("st_mary_s") == "St Mary S"
        assert format_school_name("Hilltop") == "Hilltop"

    def test_resolve_photo_url(self):
        attachments = [
            {"filename": "user/attachments/other.jpg", "download_url": "/media/other.jpg"},
            {"filename": "user/attachments/amina.jpg", "download_url": "/media/amina.jpg"},
        ]
        assert resolve_photo_url("amina.jpg", attachments, "https://kf.example.org/") == \
            "https://kf.example.org/media/amina.jpg"

    def test_resolve_photo_url_keeps_absolute_urls(self):
        attachments = [{"filename": "a/amina.jpg", "download_url": "https://cdn.example.org/amina.jpg"}]
        assert resolve_photo_url("amina.jpg", attachments) == "https://cdn.example.org/amina.jpg"

    def test_resolve_photo_url_falls_back_to_placeholder(self):
        assert resolve_photo_url(None, []) == PLACEHOLDER_PHOTO
        assert resolve_photo_url("amina.jpg", []) == PLACEHOLDER_PHOTO
        assert resolve_photo_url("amina.jpg", [{"filename": "b.jpg", "download_url": "/b"}]) == PLACEHOLDER_PHOTO

    def test_round_one_rounds_halves_up(self):
        assert round_one(12.25) == 12.3
        assert round_one(1.75) == 1.8
        assert round_one(33.333333) == 33.3


# ==================== RAW RECORDS ====================

class TestKoboRecord:

    def test_blank_values_become_none(self):
        record = KoboRecord.from_raw({"Are_you_a": "student", "School_Name": "  ", "GPS_Reading": ""})
        assert record.is_student
        assert record.school_name is None
        assert record.gps is None

    def test_numbers_are_coerced_to_strings(self):
        record = KoboRecord.from_raw({"_id": "55", "Age_of_the_Student": 14,
                                      "How_many_meals_do_yo_ically_have_in_a_day": 2.0})
        assert record.submission_id == 55
        assert record.age == "14"
        assert parse_age(record.age) == 14
        assert meals_to_number(record.meals) == 2

    def test_malformed_attachments_are_ignored(self):
        record = KoboRecord.from_raw({"_attachments": ["oops", {"filename": "a.jpg"}]})
        assert record.attachments == [{"filename": "a.jpg"}]
        assert KoboRecord.from_raw({"_attachments": "oops"}).attachments == []

    def test_parse_records_skips_non_objects(self):
        records = parse_records([_student(), None, "text", 3, _student()])
        assert len(records) == 2

    @pytest.mark.parametrize("role", [" student ", "Student", "student\n", 1])
    def test_role_must_be_exactly_student(self, role):
        assert not KoboRecord.from_raw({"Are_you_a": role}).is_student


# ==================== SCHOOL AGGREGATION ====================

class TestAggregateSchools:

    def test_groups_by_school_in_first_seen_order(self):
        records = parse_records([
            _student(School_Name="green_valley"),
            _student(School_Name="hill_top"),
            _student(School_Name="green_valley"),
        ])
        schools = aggregate_schools(records)

        assert list(schools.keys()) == ["green_valley", "hill_top"]
        first, second = schools.values()
        assert (first.id, first.name, first.total_students) == ("s1", "Green Valley", 2)
        assert (second.id, second.name, second.total_students) == ("s2", "Hill Top", 1)
        assert first.location == "Green Village"

    def test_skips_non_students_and_blank_school_names(self):
        records = parse_records([
            {"Are_you_a": "teacher", "School_Name": "green_valley"},
            _student(School_Name="   "),
            _student(School_Name=None),
        ])
        assert aggregate_schools(records) == {}

    def test_school_names_are_trimmed(self):
        records = parse_records([_student(School_Name="green_valley "), _student(School_Name="green_valley")])
        schools = aggregate_schools(records)
        assert list(schools.keys()) == ["green_valley"]
        assert schools["green_valley"].total_students == 2

    def test_averages_only_nonzero_coordinates(self):
        records = parse_records([
            _student(GPS_Reading="-1.0 36.0"),
            _student(GPS_Reading="-2.0 37.0"),
            _student(GPS_Reading="0 36.5"),
            _student(GPS_Reading="garbage"),
        ])
        school = aggregate_schools(records)["green_valley"]
        assert school.coordinates.lat == pytest.approx(-1.5)
        assert school.coordinates.lng == pytest.approx(36.5)
        assert school.total_students == 4

    def test_no_valid_coordinates_gives_origin(self):
        school = aggregate_schools(parse_records([_student()]))["green_valley"]
        assert school.coordinates == Coordinates(0.0, 0.0)

    def test_poverty_indicators(self):
        records = parse_records([
            _student(What_do_you_currently_use_for_lighting="solar",
                     Do_you_or_anyone_in_your_famil="yes",
                     How_many_meals_do_yo_ically_have_in_a_day="three"),
            _student(What_do_you_currently_use_for_lighting="grid",
                     Do_you_or_anyone_in_your_famil="no",
                     How_many_meals_do_yo_ically_have_in_a_day="one"),
            _student(What_do_you_currently_use_for_lighting="kerosene",
                     How_many_meals_do_yo_ically_have_in_a_day="one"),
        ])
        indicators = aggregate_schools(records)["green_valley"].poverty_indicators

        assert indicators.average_meals_per_day == pytest.approx(1.7)
        # Solar and kerosene are outside the electricity-based categories
        assert indicators.percent_without_electricity == pytest.approx(66.7)
        assert indicators.percent_with_smartphones == pytest.approx(33.3)


# ==================== STUDENT MAPPING ====================

class TestMapStudents:

    def test_links_students_to_shared_school(self):
        records = parse_records([_student(), _student()])
        schools = aggregate_schools(records)
        students = map_students(records, schools)

        assert students[0].school is students[1].school
        assert students[0].school is schools["green_valley"]

    def test_unmatched_school_uses_unknown_sentinel(self):
        records = parse_records([_student(School_Name="green_valley"),
                                 _student(School_Name=""),
                                 _student(School_Name=None)])
        schools = aggregate_schools(records)
        students = map_students(records, schools)

        assert students[0].school.id == "s1"
        assert students[1].school.id == "s0"
        assert students[1].school.name == "Unknown School"
        assert students[1].school is students[2].school
        # The real school keeps its own count
        assert schools["green_valley"].total_students == 1

    def test_unknown_sentinel_when_no_schools(self):
        students = map_students(parse_records([_student(School_Name=None)]), {})
        school = students[0].school
        assert school.id == "s0"
        assert school.total_students == 0
        assert school.poverty_indicators.average_meals_per_day == 2.0
        assert school.poverty_indicators.percent_without_electricity == 60.0
        assert school.poverty_indicators.percent_with_smartphones == 30.0

    def test_defaults_for_missing_fields(self):
        records = parse_records([{"Are_you_a": "teacher"}, _student(), _student()])
        students = map_students(records, aggregate_schools(records))

        second = students[1]
        assert second.id == "st2"
        assert second.name == "Student 2"
        assert second.age == 12
        assert second.gender == "Other"
        assert second.grade == "Grade Unknown"
        assert second.career_aspiration == "Undecided"
        assert second.lamp_serial_number == "SL-2023-1001"
        assert second.photo == PLACEHOLDER_PHOTO
        assert second.location == Coordinates(0.0, 0.0)
        assert second.household_info.meals_per_day == 1
        assert second.household_info.electricity_source == "None"
        assert second.household_info.has_smartphone is False
        assert second.household_info.parent_income_source == "Unknown"

    def test_uses_submission_id(self):
        records = parse_records([_student(_id=987)])
        assert map_students(records, aggregate_schools(records))[0].id == "st987"


# ==================== SUMMARY ====================

class TestSummary:

    def _students(self, aspirations, genders=None):
        genders = genders or ["boy"] * len(aspirations)
        records = parse_records([
            _student(What_do_you_hope_to_be_when_you_grow_up=a, Gender_of_the_Student=g)
            for a, g in zip(aspirations, genders)
        ])
        return map_students(records, aggregate_schools(records))

    def test_empty_students_gives_empty_summary(self):
        assert calculate_summary([], []) == create_empty_summary()

    def test_career_ranking_keeps_first_seen_order_on_ties(self):
        students = self._students(["Doctor", "Doctor", "Nurse", "Pilot"])
        ranked = calculate_summary(students, []).career_aspirations
        assert [(a.name, a.count) for a in ranked] == [("Doctor", 2), ("Nurse", 1), ("Pilot", 1)]

    def test_career_ranking_is_truncated_to_five(self):
        students = self._students(["A", "B", "C", "D", "E", "F", "F"])
        ranked = rank_career_aspirations(students)
        assert [a.name for a in ranked] == ["F", "A", "B", "C", "D"]

    def test_career_aspirations_by_gender_excludes_other(self):
        students = self._students(["Doctor", "Doctor", "Nurse", "Pilot"],
                                  ["boy", "girl", "other", "girl"])
        rows = career_aspirations_by_gender(students)
        assert [(r.name, r.Male, r.Female) for r in rows] == [
            ("Doctor", 1, 1), ("Nurse", 0, 0), ("Pilot", 0, 1)
        ]

    def test_gender_distribution_in_first_seen_order(self):
        students = self._students(["A", "B", "C"], ["girl", "boy", "girl"])
        distribution = calculate_summary(students, []).gender_distribution
        assert [(g.gender, g.count) for g in distribution] == [("Female", 2), ("Male", 1)]


# ==================== END TO END ====================

class TestTransform:

    @pytest.mark.parametrize("bad_input", [None, {}, [], "text", 42, {"results": "nope"}])
    def test_invalid_or_empty_input_gives_empty_summary(self, bad_input):
        result = transform_kobo_data(bad_input)
        assert result.students == []
        assert result.summary == create_empty_summary()

    def test_accepts_paginated_response(self, sample_submissions):
        bare = transform_kobo_data(sample_submissions)
        paginated = transform_kobo_data({"count": 5, "next": None, "results": sample_submissions})
        assert bare.students == paginated.students
        assert bare.summary == paginated.summary

    def test_sample_export(self, sample_submissions):
        result = transform_kobo_data(sample_submissions)
        students, summary = result.students, result.summary

        assert [s.id for s in students] == ["st101", "st102", "st104", "st4"]
        assert [s.school.id for s in students] == ["s1", "s1", "s2", "s0"]
        assert students[0].photo == "https://kf.kobotoolbox.org/api/v2/assets/akG/data/101/attachments/1/"
        assert students[2].age == 12
        assert students[2].lamp_serial_number == "SL-2023-1002"
        assert students[3].gender == "Male"

        assert [s.name for s in summary.schools] == ["Green Valley", "Hill Top"]
        green_valley = summary.schools[0]
        assert green_valley.coordinates.lat == pytest.approx(-1.3)
        assert green_valley.coordinates.lng == pytest.approx(36.9)
        assert green_valley.poverty_indicators.average_meals_per_day == 2.5
        assert green_valley.poverty_indicators.percent_without_electricity == 50.0
        assert green_valley.poverty_indicators.percent_with_smartphones == 50.0

        assert summary.total_students == 4
        assert summary.total_lamps == 4
        assert summary.average_age == 12.0
        assert summary.percent_with_smartphones == 25.0
        assert summary.percent_without_electricity == 25.0
        assert summary.average_meals_per_day == 1.8
        assert [(a.name, a.count) for a in summary.career_aspirations] == [
            ("Doctor", 2), ("Nurse", 1), ("Pilot", 1)
        ]

    def test_is_idempotent(self, sample_submissions):
        first = transform_kobo_data(sample_submissions)
        second = transform_kobo_data(sample_submissions)
        assert first.students == second.students
        assert first.summary == second.summary

    def test_does_not_mutate_input(self, sample_submissions):
        before = repr(sample_submissions)
        transform_kobo_data(sample_submissions)
        assert repr(sample_submissions) == before

    def test_dict_round_trip_restores_shared_schools(self, sample_submissions):
        result = transform_kobo_data(sample_submissions)
        restored = type(result).from_dict(result.to_dict())

        assert restored.students == result.students
        assert restored.summary == result.summary
        assert restored.students[0].school is restored.students[1].school
        assert restored.students[0].school is restored.summary.schools[0]

    def test_non_ascii_digit_id_falls_back_to_position(self):
        result = transform_kobo_data([_student(_id="²")])
        assert [s.id for s in result.students] == ["st1"]

    @pytest.mark.parametrize("digits", [400, 5000])
    def test_oversized_age_and_meals_use_defaults(self, digits):
        huge = "9" * digits
        result = transform_kobo_data([_student(Age_of_the_Student=huge,
                                               How_many_meals_do_yo_ically_have_in_a_day=huge)])
        student = result.students[0]
        assert student.age == 12
        assert student.household_info.meals_per_day == 1
        assert result.summary.average_age == 12.0
        assert result.summary.average_meals_per_day == 1.0
