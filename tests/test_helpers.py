# tests/test_helpers.py
# Pure domain helpers: age buckets, BMI, household ordering, medicine
# grouping, calendar grid and stock status. "today" is always pinned.

from datetime import date

import pytest

from helpers import (
    BHW_TASKS,
    LIFE_STAGES,
    NOT_AVAILABLE,
    OUT_OF_STOCK,
    AVAILABLE,
    apply_stock_status,
    build_month_calendar,
    calculate_bmi,
    compare_household_numbers,
    construct_full_name,
    count_age_categories,
    derive_stock_status,
    get_age_based_status,
    get_age_category,
    get_age_display,
    get_age_in_months,
    get_health_status,
    get_week_end,
    get_week_start,
    group_conversations,
    group_medicines,
    group_releases_by_barangay,
    household_numeric_part,
    invalid_tasks,
    is_expired,
    is_valid_contact_number,
    is_valid_email,
    merge_age_tag,
    month_start,
    sort_households,
)

TODAY = date(2024, 6, 15)


# --- Age classifier ---

def test_age_in_months_counts_whole_months_only():
    assert get_age_in_months(date(2024, 4, 15), TODAY) == 2
    assert get_age_in_months(date(2024, 4, 16), TODAY) == 1
    assert get_age_in_months(date(2024, 6, 15), TODAY) == 0


@pytest.mark.parametrize("birth,expected", [
    (date(2024, 6, 1), "newborn"),
    (date(2024, 4, 15), "infant"),     # exactly 2 months
    (date(2023, 6, 16), "infant"),     # one day short of 12 months
    (date(2023, 6, 15), "toddler"),    # exactly 12 months
    (date(2020, 6, 15), "child"),      # exactly 4 years
    (date(2006, 6, 16), "child"),
    (date(2006, 6, 15), "adult"),      # exactly 18 years
    (date(1959, 6, 16), "adult"),
    (date(1959, 6, 15), "senior"),     # exactly 65 years
])
def test_age_category_boundaries(birth, expected):
    assert get_age_category(birth, TODAY) == expected


def test_age_category_accepts_iso_strings_and_missing_dates():
    assert get_age_category("1990-01-01", TODAY) == "adult"
    assert get_age_category(None, TODAY) is None
    assert get_age_category("", TODAY) is None


def test_age_category_is_monotonic_with_age():
    # Birth dates from newest to oldest; the stage index may only go up.
    births = [date(2024 - years, month, 1) for years in range(0, 90) for month in (1, 6, 12)]
    births = sorted(b for b in births if b <= TODAY)
    indices = [LIFE_STAGES.index(get_age_category(b, TODAY)) for b in reversed(births)]
    assert indices == sorted(indices)


@pytest.mark.parametrize("override", ["pwd", "pregnant"])
@pytest.mark.parametrize("birth", [date(2024, 6, 1), date(2010, 1, 1), date(1940, 1, 1), None])
def test_override_status_always_wins(override, birth):
    assert get_age_based_status(birth, override, TODAY) == override


def test_age_based_status_keeps_given_status_without_birth_date():
    assert get_age_based_status(None, "4ps", TODAY) == "4ps"
    assert get_age_based_status(date(1950, 1, 1), "4ps", TODAY) == "senior"


def test_age_display():
    assert get_age_display(date(2024, 1, 15), TODAY) == "5 mo"
    assert get_age_display(date(2000, 1, 15), TODAY) == "24 yr"
    assert get_age_display(None, TODAY) == "N/A"


def test_merge_age_tag_replaces_stale_stage_and_keeps_user_tags():
    groups = ["4ps", "child", "solo parent", "4ps"]
    assert merge_age_tag(groups, date(1990, 1, 1), TODAY) == ["4ps", "solo parent", "adult"]
    assert merge_age_tag(None, None, TODAY) == []


def test_count_age_categories():
    residents = [
        {"birth_date": "2024-06-01"},
        {"birth_date": "1990-01-01"},
        {"birth_date": "1991-01-01"},
        {"birth_date": None},
    ]
    counts = count_age_categories(residents, TODAY)
    assert counts["newborn"] == 1
    assert counts["adult"] == 2
    assert sum(counts.values()) == 3


# --- BMI ---

def test_bmi_reference_values():
    assert calculate_bmi(170, 70) == (24.22, "normal")
    assert calculate_bmi(160, 45) == (17.58, "underweight")
    assert calculate_bmi(170, 80).category == "overweight"
    assert calculate_bmi(160, 90).category == "obese"


@pytest.mark.parametrize("height,weight", [(None, 70), (170, None), (0, 70), (170, 0), (-170, 70)])
def test_bmi_missing_or_invalid_input_is_not_available(height, weight):
    result = calculate_bmi(height, weight)
    assert result.bmi is None
    assert result.category == NOT_AVAILABLE


def test_health_status_priority():
    assert get_health_status(["pregnant", "pwd"], 22) == "Special Care"
    assert get_health_status(["pregnant"], 22) == "Prenatal Care"
    assert get_health_status(["senior"], 35) == "Senior Care"
    assert get_health_status([], 17) == "Monitor"
    assert get_health_status([], 22) == "Good"
    assert get_health_status([], None) == "Good"


# --- Household number sorter ---

def test_household_numeric_part():
    assert household_numeric_part("BRGY7-16") == 16
    assert household_numeric_part("42") == 42
    assert household_numeric_part("12A") == 12
    assert household_numeric_part("Unlabeled") is None


def test_sort_households_numeric_then_text():
    numbers = ["BRGY7-2", "BRGY7-10", "BRGY7-1", "Unlabeled"]
    result = sort_households([{"household_number": n} for n in numbers])
    assert [h["household_number"] for h in result] == ["BRGY7-1", "BRGY7-2", "BRGY7-10", "Unlabeled"]


def test_sort_households_is_stable_for_equal_keys():
    rows = [{"household_number": "A-5", "tag": 1}, {"household_number": "B-5", "tag": 2}]
    assert [h["tag"] for h in sort_households(rows)] == [1, 2]


def test_compare_household_numbers():
    assert compare_household_numbers("BRGY7-2", "BRGY7-10") == -1
    assert compare_household_numbers("Zeta", "BRGY7-10") == 1
    assert compare_household_numbers("Alpha", "Beta") == -1
    assert compare_household_numbers("X-3", "Y-3") == 0


# --- Medicine grouper and stock status ---

def test_group_medicines_preserves_first_seen_order():
    batches = [
        {"id": "batch1", "med_code": "A", "name": "Amoxicillin"},
        {"id": "batch2", "med_code": "B", "name": "Biogesic"},
        {"id": "batch3", "med_code": "A", "name": "Amoxicillin"},
        {"id": "batch4", "med_code": "C", "name": "Cetirizine"},
        {"id": "batch5", "med_code": "B", "name": "Biogesic"},
    ]
    groups = group_medicines(batches)
    assert [g["med_code"] for g in groups] == ["A", "B", "C"]
    assert [m["id"] for m in groups[0]["medicines"]] == ["batch1", "batch3"]
    assert groups[2]["name"] == "Cetirizine"


def test_derive_stock_status():
    assert derive_stock_status(0) == OUT_OF_STOCK
    assert derive_stock_status(1) == AVAILABLE
    assert derive_stock_status(-3) == OUT_OF_STOCK
    assert derive_stock_status(7) == derive_stock_status(7)


def test_apply_stock_status_is_idempotent():
    doc = {"quantity": 0, "status": AVAILABLE}
    once = apply_stock_status(dict(doc))
    twice = apply_stock_status(dict(once))
    assert once["status"] == twice["status"] == OUT_OF_STOCK


def test_is_expired():
    assert is_expired("2024-06-15", TODAY)
    assert is_expired("2024-01-01", TODAY)
    assert not is_expired("2024-06-16", TODAY)
    assert not is_expired(None, TODAY)


def test_group_releases_by_barangay():
    records = [{"barangay": "Barangay 8"}, {"barangay": " "}, {"barangay": "Barangay 7"}, {}]
    grouped = group_releases_by_barangay(records)
    assert list(grouped) == ["Barangay 7", "Barangay 8", "Unspecified"]
    assert len(grouped["Unspecified"]) == 2


# --- Month calendar builder ---

@pytest.mark.parametrize("year,days", [(2024, 29), (2023, 28)])
def test_february_grid_day_count(year, days):
    weeks = build_month_calendar(year, 1)
    numbered = [d for week in weeks for d in week if d is not None]
    assert numbered == list(range(1, days + 1))
    assert all(len(week) == 7 for week in weeks)


def test_calendar_week_starts_on_sunday():
    # 1 October 2023 was a Sunday, 1 February 2024 a Thursday
    assert build_month_calendar(2023, 9)[0][0] == 1
    assert build_month_calendar(2024, 1)[0] == [None, None, None, None, 1, 2, 3]


def test_calendar_rejects_month_out_of_range():
    with pytest.raises(ValueError):
        build_month_calendar(2024, 12)
    with pytest.raises(ValueError):
        build_month_calendar(2024, -1)


# --- Reports and messages ---

def test_week_bounds():
    start = get_week_start(date(2024, 3, 14))
    assert start == date(2024, 3, 11)
    assert get_week_end(start) == date(2024, 3, 17)
    assert get_week_start(date(2024, 3, 11)) == date(2024, 3, 11)


def test_month_start():
    assert month_start("2024-03") == "2024-03-01"
    assert month_start(date(2024, 3, 20)) == "2024-03-01"


def test_invalid_tasks():
    assert invalid_tasks([BHW_TASKS[0], "Painted the barangay hall"]) == ["Painted the barangay hall"]


def test_group_conversations_latest_first_with_unread_counts():
    messages = [
        {"sender_id": "b", "sender_name": "B", "receiver_id": "me", "status": "unread", "created_at": "2024-06-01T08:00"},
        {"sender_id": "me", "receiver_id": "c", "receiver_name": "C", "status": "unread", "created_at": "2024-06-02T08:00"},
        {"sender_id": "b", "sender_name": "B", "receiver_id": "me", "status": "read", "created_at": "2024-06-03T08:00"},
    ]
    convos = group_conversations(messages, "me")
    assert [c["other_id"] for c in convos] == ["b", "c"]
    assert convos[0]["unread"] == 1
    assert convos[1]["unread"] == 0
    assert len(convos[0]["messages"]) == 2


# --- Forms ---

def test_construct_full_name_skips_blank_parts():
    assert construct_full_name("Ana", "", "Dela Cruz", None) == "Ana Dela Cruz"
    assert construct_full_name(" Jose ", "P.", "Rizal", "Jr.") == "Jose P. Rizal Jr."


@pytest.mark.parametrize("value,ok", [
    ("09171234567", True),
    ("+639171234567", True),
    ("0917 123 4567", True),
    ("12345", False),
    ("0917-123-4567", False),
])
def test_contact_number_format(value, ok):
    assert is_valid_contact_number(value) is ok


def test_email_format():
    assert is_valid_email("bhw@brgy.ph")
    assert not is_valid_email("not-an-email")
