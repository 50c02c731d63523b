from datetime import date, datetime, timezone

import pytest

from billing_sync.services.mappers import cents, customer_to_fields, parse_upstream_datetime, plan_to_fields, to_date

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2025-03-01T10:20:30Z", datetime(2025, 3, 1, 10, 20, 30, tzinfo=timezone.utc)),
        ("2025-03-01T10:20:30", datetime(2025, 3, 1, 10, 20, 30, tzinfo=timezone.utc)),
        ("2025-03-01", datetime(2025, 3, 1, tzinfo=timezone.utc)),
        ("2025-03-01 10:20:00", datetime(2025, 3, 1, 10, 20, tzinfo=timezone.utc)),
        ("2025-01-03 10:20:00 -0300", datetime(2025, 1, 3, 13, 20, tzinfo=timezone.utc)),
        ("13/09/2025", datetime(2025, 9, 13, tzinfo=timezone.utc)),
        ("13/09/2025 10:20", datetime(2025, 9, 13, 10, 20, tzinfo=timezone.utc)),
        ("01/07, 13:02", datetime(2025, 7, 1, 13, 2, tzinfo=timezone.utc)),
        ("26 Feb 10:20 PM", datetime(2025, 2, 26, 22, 20, tzinfo=timezone.utc)),
        ("26 Fev 10:20 AM", datetime(2025, 2, 26, 10, 20, tzinfo=timezone.utc)),
        (1740824430, datetime(2025, 3, 1, 10, 20, 30, tzinfo=timezone.utc)),
        ("1740824430", datetime(2025, 3, 1, 10, 20, 30, tzinfo=timezone.utc)),
    ],
)
def test_parse_upstream_datetime_shapes(raw, expected):
    assert parse_upstream_datetime(raw, now=NOW) == expected


def test_offsets_are_preserved():
    parsed = parse_upstream_datetime("2025-03-01T10:00:00-03:00")
    assert parsed == datetime(2025, 3, 1, 13, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("raw", [None, "", "   ", "nonsense", "1899-01-01", "31/02/2025"])
def test_unusable_timestamps_become_none(raw):
    assert parse_upstream_datetime(raw) is None


def test_to_date():
    assert to_date("2025-04-10") == date(2025, 4, 10)
    assert to_date(None) is None


@pytest.mark.parametrize(
    "record, expected",
    [
        ({"total_cents": 1050}, 1050),
        ({"total_cents": "1050"}, 1050),
        ({"total_cents": 0, "total": "R$ 99,00"}, 0),
        ({"total": "R$ 10,50"}, 1050),
        ({"total": "1.234,56"}, 123456),
        ({"total": "1,234.56"}, 123456),
        ({"total": 10.005}, 1001),
        ({"total": "10.5"}, 1050),
        ({"total": "R$"}, None),
        ({}, None),
    ],
)
def test_cents(record, expected):
    assert cents(record, "total_cents", "total") == expected


def test_customer_mapping_keeps_raw_record():
    record = {"id": "c1", "email": "a@example.com", "name": "", "created_at": "2025-01-02T03:04:05Z"}

    fields = customer_to_fields(record)

    assert fields["email"] == "a@example.com"
    assert fields["name"] is None
    assert fields["created_at_iugu"] == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert fields["raw_json"] is record


def test_plan_value_falls_back_to_first_price():
    fields = plan_to_fields({"id": "p1", "prices": [{"currency": "BRL", "value_cents": 4990}]})
    assert fields["value_cents"] == 4990


@pytest.mark.parametrize("day", range(1, 13))
def test_year_first_dates_never_swap_day_and_month(day):
    parsed = parse_upstream_datetime(f"2025-11-{day:02d} 08:00:00")
    assert (parsed.month, parsed.day) == (11, day)


def test_plan_prices_not_a_list_is_ignored():
    fields = plan_to_fields({"id": "p1", "prices": {"value_cents": 4990}})
    assert fields["value_cents"] is None
