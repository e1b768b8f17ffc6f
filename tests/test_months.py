from datetime import date

import pytest

from months import (
    generate_month_id,
    get_month_label,
    label_for_month_id,
    parse_month_id,
    redate_to_month,
)


def test_generate_month_id_zero_pads():
    assert generate_month_id(date(2025, 3, 1)) == "2025-03"
    assert generate_month_id(date(2025, 12, 31)) == "2025-12"
    assert generate_month_id(date(987, 1, 5)) == "0987-01"


def test_same_calendar_month_gives_same_id():
    ids = {generate_month_id(date(2024, 2, day)) for day in range(1, 30)}
    assert ids == {"2024-02"}


def test_lexicographic_order_is_chronological():
    dates = [
        date(2025, 1, 3),
        date(2023, 11, 30),
        date(2024, 12, 1),
        date(2024, 2, 29),
        date(2025, 10, 10),
        date(2024, 9, 9),
    ]
    by_id = sorted(dates, key=generate_month_id)
    assert by_id == sorted(dates)
    assert generate_month_id(date(2024, 12, 1)) < generate_month_id(date(2025, 1, 1))


def test_month_label_is_portuguese():
    assert get_month_label(date(2025, 3, 14)) == "Março 2025"
    assert get_month_label(date(2024, 1, 1)) == "Janeiro 2024"
    assert label_for_month_id("2024-12") == "Dezembro 2024"


def test_parse_month_id_rejects_bad_keys():
    assert parse_month_id("2025-07") == date(2025, 7, 1)
    for bad in ("2025-7", "2025-13", "2025-00", "25-01", "", "2025/01"):
        with pytest.raises(ValueError):
            parse_month_id(bad)


def test_redate_to_month_clamps_day():
    assert redate_to_month(date(2025, 1, 15), "2025-02") == date(2025, 2, 15)
    assert redate_to_month(date(2025, 1, 31), "2025-02") == date(2025, 2, 28)
    assert redate_to_month(date(2023, 12, 31), "2024-02") == date(2024, 2, 29)
