from datetime import date, datetime

import pytest

from peertable.timeseries import (
    FiscalPeriodLookup,
    IncomeStatement,
    aggregate_by_pitch,
    build_series_table,
    compute_valuation_series,
    to_date,
    ttm_net_income,
)


ANNUAL = [
    IncomeStatement(date(2025, 3, 31), net_income=400.0, total_revenue=4000.0),
    IncomeStatement(date(2024, 3, 31), net_income=300.0, total_revenue=3000.0),
    IncomeStatement(date(2023, 3, 31), net_income=-50.0, total_revenue=2500.0),
]

QUARTERLY = [
    IncomeStatement(date(2025, 6, 30), net_income=120.0),
    IncomeStatement(date(2025, 3, 31), net_income=100.0),
    IncomeStatement(date(2024, 12, 31), net_income=90.0),
    IncomeStatement(date(2024, 9, 30), net_income=None),
    IncomeStatement(date(2024, 6, 30), net_income=999.0),
]


def test_to_date_accepts_strings_and_datetimes():
    assert to_date("2024-05-01T00:00:00.000Z") == date(2024, 5, 1)
    assert to_date(datetime(2024, 5, 1, 9, 30)) == date(2024, 5, 1)
    assert to_date(date(2024, 5, 1)) == date(2024, 5, 1)


def test_ttm_net_income_sums_latest_four_quarters():
    assert ttm_net_income(QUARTERLY) == 310.0
    assert ttm_net_income(QUARTERLY[:3]) is None


def test_lookup_uses_ttm_for_latest_year_and_next_fiscal_year_before():
    lookup = FiscalPeriodLookup(ANNUAL, QUARTERLY, latest_revenue=4200.0)
    assert lookup.latest_fiscal_year == 2025
    assert lookup.net_income_for(date(2025, 8, 1)) == 310.0
    assert lookup.revenue_for(date(2026, 1, 5)) == 4200.0
    assert lookup.net_income_for(date(2023, 6, 1)) == 300.0
    assert lookup.revenue_for(date(2022, 6, 1)) == 2500.0
    assert lookup.net_income_for(date(2020, 6, 1)) is None


def test_lookup_defaults_latest_revenue_to_latest_annual():
    lookup = FiscalPeriodLookup(ANNUAL, QUARTERLY)
    assert lookup.latest_revenue == 4000.0


def test_lookup_fiscal_year_offset_is_configurable():
    lookup = FiscalPeriodLookup(ANNUAL, QUARTERLY, fiscal_year_offset=0)
    assert lookup.net_income_for(date(2024, 6, 1)) == 300.0


def test_lookup_without_annual_statements_uses_today():
    lookup = FiscalPeriodLookup([], QUARTERLY, latest_revenue=100.0, today=date(2025, 9, 1))
    assert lookup.latest_fiscal_year == 2025
    assert lookup.net_income_for(date(2024, 1, 1)) is None


def test_compute_valuation_series():
    lookup = FiscalPeriodLookup(ANNUAL, QUARTERLY, latest_revenue=4000.0)
    history = [
        {"date": "2022-06-01", "close": 10.0},
        {"date": "2023-06-01", "close": 12.0},
        {"date": "2025-07-01", "close": 15.5},
        {"date": "2025-07-08", "close": 0.0},
        {"date": "2021-06-01", "close": 8.0},
    ]
    series = compute_valuation_series(history, 100.0, lookup)

    assert [point["date"] for point in series] == [point["date"] for point in history]
    assert series[0]["market_cap"] == 1000.0
    assert series[0]["psr"] == pytest.approx(1000.0 / 2500.0)
    assert series[0]["per"] is None
    assert series[1]["per"] == pytest.approx(1200.0 / 300.0)
    assert series[2]["per"] == pytest.approx(1550.0 / 310.0)
    assert series[2]["psr"] == pytest.approx(1550.0 / 4000.0)
    assert series[3]["market_cap"] is None
    assert series[3]["psr"] is None
    assert series[4]["psr"] is None
    assert series[4]["per"] is None


def test_compute_valuation_series_without_shares():
    lookup = FiscalPeriodLookup(ANNUAL, QUARTERLY)
    series = compute_valuation_series([{"date": "2025-07-01", "close": 15.0}], None, lookup)
    assert series[0]["market_cap"] is None
    assert series[0]["per"] is None


def test_aggregate_by_pitch():
    dates = ["2024-01-05", "2024-01-26", "2024-02-02", "2024-04-05"]
    assert aggregate_by_pitch(dates, "weekly")[1] == {"key": "2024-01-26", "dates": ["2024-01-26"]}
    monthly = aggregate_by_pitch(dates, "monthly")
    assert [group["key"] for group in monthly] == ["2024/1", "2024/2", "2024/4"]
    assert monthly[0]["dates"] == ["2024-01-05", "2024-01-26"]
    quarterly = aggregate_by_pitch(dates, "quarterly")
    assert [group["key"] for group in quarterly] == ["2024/Q1", "2024/Q2"]
    assert aggregate_by_pitch(dates, "yearly") == [{"key": "2024", "dates": dates}]
    with pytest.raises(ValueError):
        aggregate_by_pitch(dates, "daily")


def test_build_series_table_uses_last_valid_value_per_group():
    histories = {
        "7203": [
            {"date": "2024-01-05", "psr": 1.0, "per": 10.0},
            {"date": "2024-01-26", "psr": None, "per": 11.0},
            {"date": "2024-02-02", "psr": 1.4, "per": None},
        ],
        "7267": [
            {"date": "2024-01-05", "psr": 2.0, "per": None},
            {"date": "2024-02-02", "psr": 2.2, "per": None},
        ],
        "6758": [{"date": "2024-01-05", "psr": None, "per": None}],
    }
    table = build_series_table(
        histories,
        metric="PSR",
        pitch="monthly",
        cases=[{"case_id": "c1", "case_name": "自動車", "company_codes": ["7203", "7267", "9999"]}],
    )
    assert table["periods"] == ["2024/1", "2024/2"]
    assert [row["code"] for row in table["rows"]] == ["7203", "7267"]
    assert table["rows"][0]["values"] == [1.0, 1.4]
    assert table["averages"] == [1.5, 1.8]
    assert table["case_averages"][0]["company_count"] == 2
    assert table["case_averages"][0]["values"] == [1.5, 1.8]

    per_table = build_series_table(histories, metric="PER", pitch="monthly")
    assert [row["code"] for row in per_table["rows"]] == ["7203"]
    assert per_table["averages"] == [None, None]
