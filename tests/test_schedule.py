from datetime import date, datetime, timedelta

import pytest

from physiofit.config import DEFAULT_WEEKLY_TEMPLATE
from physiofit.services.schedule import course_id_for, generate_schedule

from conftest import MONDAY, TEMPLATE


def test_course_id_strips_non_alphanumerics():
    assert course_id_for(MONDAY, "08:45–09:30", "Fle.xx") == "2025-01-06_08450930_Flexx"
    assert course_id_for(MONDAY, "18:15–19:00", "Bauch, Beine, Po") == "2025-01-06_18151900_BauchBeinePo"


@pytest.mark.parametrize("offset", range(14))
def test_regeneration_is_stable_and_skips_weekends(offset):
    ref = MONDAY + timedelta(days=offset)
    first = generate_schedule(DEFAULT_WEEKLY_TEMPLATE, ref)
    second = generate_schedule(DEFAULT_WEEKLY_TEMPLATE, ref)

    assert [c.id for c in first] == [c.id for c in second]
    assert first == second
    assert all(c.date.weekday() < 5 for c in first)
    assert len({c.id for c in first}) == len(first)


def test_single_monday_session_slides_with_the_window():
    template = {"Mon": [{"time": "08:45–09:30", "name": "Fle.xx"}]}

    this_week = generate_schedule(template, MONDAY, window_days=7)
    assert len(this_week) == 1
    assert this_week[0].date == MONDAY

    next_week = generate_schedule(template, MONDAY + timedelta(days=7), window_days=7)
    assert len(next_week) == 1
    assert next_week[0].date == MONDAY + timedelta(days=7)
    assert next_week[0].id != this_week[0].id
    assert this_week[0].id not in {c.id for c in next_week}


def test_overlapping_windows_share_ids():
    week1 = generate_schedule(TEMPLATE, MONDAY)
    week2 = generate_schedule(TEMPLATE, MONDAY + timedelta(days=7))
    shared = {c.id for c in week1} & {c.id for c in week2}
    # three of the four weeks overlap, 3 sessions per week
    assert len(shared) == 9


def test_window_bounds_are_inclusive_of_reference_date():
    courses = generate_schedule(TEMPLATE, MONDAY, window_days=28)
    assert courses[0].date == MONDAY
    assert max(c.date for c in courses) <= MONDAY + timedelta(days=27)
    # 4 Mondays x 2 + 4 Tuesdays x 1
    assert len(courses) == 12


def test_template_order_kept_within_a_day():
    courses = [c for c in generate_schedule(TEMPLATE, MONDAY, window_days=1)]
    assert [c.time for c in courses] == ["08:45–09:30", "09:45–10:30"]


def test_weekend_template_entries_are_ignored():
    saturday = date(2025, 1, 11)
    assert generate_schedule(TEMPLATE, saturday, window_days=2) == []


def test_datetime_reference_is_truncated_to_the_day():
    late = datetime(2025, 1, 6, 23, 59)
    assert generate_schedule(TEMPLATE, late) == generate_schedule(TEMPLATE, MONDAY)


def test_german_display_fields():
    course = generate_schedule(TEMPLATE, MONDAY, window_days=1)[0]
    assert course.date_display == "Montag, 6. Januar 2025"
    assert course.day_of_week == "Montag"


def test_empty_window():
    assert generate_schedule(TEMPLATE, MONDAY, window_days=0) == []
