"""Shared pytest fixtures: a small KoboToolbox export."""

import copy

import pytest

SAMPLE_SUBMISSIONS = [
    {
        "_id": 101,
        "Are_you_a": "student",
        "School_Name": "green_valley",
        "Name_of_the_Student": "Amina Otieno",
        "What_Grade_is_the_Student": "5",
        "Gender_of_the_Student": "girl",
        "Age_of_the_Student": "11",
        "What_do_you_hope_to_be_when_you_grow_up": "Doctor",
        "Photo_of_the_Student": "amina.jpg",
        "Record_the_device_serial_number": "SN-0001",
        "What_s_the_family_s_ain_source_of_income": "Farming",
        "What_do_you_currently_use_for_lighting": "kerosene",
        "Do_you_or_anyone_in_your_famil": "yes",
        "How_many_meals_do_yo_ically_have_in_a_day": "two",
        "GPS_Reading": "-1.2 36.8 1650 5",
        "_attachments": [
            {"filename": "user/attachments/abc/amina.jpg",
             "download_url": "/api/v2/assets/akG/data/101/attachments/1/"}
        ],
    },
    {
        "_id": 102,
        "Are_you_a": "student",
        "School_Name": "green_valley",
        "Name_of_the_Student": "Brian Kamau",
        "What_Grade_is_the_Student": "6",
        "Gender_of_the_Student": "boy",
        "Age_of_the_Student": "13",
        "What_do_you_hope_to_be_when_you_grow_up": "Doctor",
        "Record_the_device_serial_number": "SN-0002",
        "What_do_you_currently_use_for_lighting": "grid",
        "Do_you_or_anyone_in_your_famil": "no",
        "How_many_meals_do_yo_ically_have_in_a_day": "three",
        "GPS_Reading": "-1.4 37.0 1650 5",
    },
    {
        "_id": 103,
        "Are_you_a": "teacher",
        "School_Name": "green_valley",
        "Name_of_the_Student": "Not A Student",
    },
    {
        "_id": 104,
        "Are_you_a": "student",
        "School_Name": "hill_top",
        "Name_of_the_Student": "Chloe Wanjiru",
        "Gender_of_the_Student": "female",
        "Age_of_the_Student": "abc",
        "What_do_you_hope_to_be_when_you_grow_up": "Nurse",
        "What_do_you_currently_use_for_lighting": "candle",
        "How_many_meals_do_yo_ically_have_in_a_day": "one",
        "GPS_Reading": "abc",
    },
    {
        "Are_you_a": "student",
        "School_Name": "   ",
        "Name_of_the_Student": "Dan Mwangi",
        "Gender_of_the_Student": "male",
        "Age_of_the_Student": "12",
        "What_do_you_hope_to_be_when_you_grow_up": "Pilot",
    },
]


@pytest.fixture
def sample_submissions():
    return copy.deepcopy(SAMPLE_SUBMISSIONS)

