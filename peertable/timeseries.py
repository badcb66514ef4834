"""Time-series valuation multiples and period aggregation."""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from .metrics import mean_of

PITCHES = ("weekly", "monthly", "quarterly", "yearly")
SERIES_METRICS = ("PSR", "PER")
TTM_QUARTERS = 4


@dataclass(frozen=True)
class IncomeStatement:
    end_date: date
    net_income: Optional[float] = None
    total_revenue: Optional[float] = None


def to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if hasattr(value, "to_pydatetime"):
        return value.to_pydatetime().date()
    return date.fromisoformat(str(value)[:10])


def ttm_net_income(quarterly: Sequence[IncomeStatement]) -> Optional[float]:
    """Sum of the four most recent quarterly net incomes; None with fewer quarters."""
    if len(quarterly) < TTM_QUARTERS:
        return None
    recent = sorted(quarterly, key=lambda stmt: stmt.end_date, reverse=True)[:TTM_QUARTERS]
    return sum(stmt.net_income or 0.0 for stmt in recent)


class FiscalPeriodLookup:
    """Net income and revenue applicable to a price date.

    Dates in or after the latest fiscal year use TTM net income and the latest
    revenue. Earlier calendar year Y reads fiscal year Y + offset, so a March
    year-end fiscal 2024 covers most of calendar 2023.
    """

    def __init__(
        self,
        annual: Sequence[IncomeStatement],
        quarterly: Sequence[IncomeStatement] = (),
        latest_revenue: Optional[float] = None,
        fiscal_year_offset: int = 1,
        today: Optional[date] = None,
    ) -> None:
        self.fiscal_year_offset = fiscal_year_offset
        self.ttm_net_income = ttm_net_income(quarterly)
        self.annual_net_income: Dict[int, float] = {}
        self.annual_revenue: Dict[int, float] = {}
        for stmt in annual:
            if stmt.net_income is not None:
                self.annual_net_income[stmt.end_date.year] = stmt.net_income
            if stmt.total_revenue is not None:
                self.annual_revenue[stmt.end_date.year] = stmt.total_revenue

        if annual:
            latest = max(annual, key=lambda stmt: stmt.end_date)
            self.latest_fiscal_year = latest.end_date.year
            if latest_revenue is None:
                latest_revenue = latest.total_revenue
        else:
            self.latest_fiscal_year = (today or date.today()).year
        self.latest_revenue = latest_revenue

    def net_income_for(self, when: date) -> Optional[float]:
        if when.year >= self.latest_fiscal_year:
            return self.ttm_net_income
        return self.annual_net_income.get(when.year + self.fiscal_year_offset)

    def revenue_for(self, when: date) -> Optional[float]:
        if when.year >= self.latest_fiscal_year:
            return self.latest_revenue
        return self.annual_revenue.get(when.year + self.fiscal_year_offset)


def _ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    if not numerator or denominator is None or denominator <= 0:
        return None
    return numerator / denominator


def compute_valuation_series(
    history: Sequence[Dict[str, Any]],
    shares_outstanding: Optional[float],
    lookup: FiscalPeriodLookup,
) -> List[Dict[str, Any]]:
    """Annotate each price point with market_cap, psr and per, keeping input order."""
    series: List[Dict[str, Any]] = []
    for point in history:
        close = point.get("close")
        market_cap = None
        if shares_outstanding and close is not None and close > 0:
            market_cap = close * shares_outstanding
        when = to_date(point["date"])
        annotated = dict(point)
        annotated["market_cap"] = market_cap
        annotated["psr"] = _ratio(market_cap, lookup.revenue_for(when))
        annotated["per"] = _ratio(market_cap, lookup.net_income_for(when))
        series.append(annotated)
    return series


def group_key(value: Any, pitch: str) -> str:
    when = to_date(value)
    if pitch == "monthly":
        return f"{when.year}/{when.month}"
    if pitch == "quarterly":
        return f"{when.year}/Q{(when.month - 1) // 3 + 1}"
    if pitch == "yearly":
        return f"{when.year}"
    return str(value)


def aggregate_by_pitch(dates: Sequence[str], pitch: str) -> List[Dict[str, Any]]:
    if pitch not in PITCHES:
        raise ValueError(f"Unsupported pitch: {pitch}")
    if pitch == "weekly":
        return [{"key": value, "dates": [value]} for value in dates]
    groups: Dict[str, List[str]] = {}
    for value in dates:
        groups.setdefault(group_key(value, pitch), []).append(value)
    return [{"key": key, "dates": sorted(values)} for key, values in groups.items()]


def _metric_value(point: Dict[str, Any], metric: str) -> Optional[float]:
    value = point.get("psr" if metric == "PSR" else "per")
    if value is None or value != value:
        return None
    return value


def _value_for_group(points: Sequence[Dict[str, Any]], dates: Sequence[str], metric: str) -> Optional[float]:
    by_date = {point["date"]: point for point in points}
    for value in reversed(dates):
        point = by_date.get(value)
        if point is None:
            continue
        found = _metric_value(point, metric)
        if found is not None:
            return found
    return None


def build_series_table(
    histories: Dict[str, Sequence[Dict[str, Any]]],
    metric: str = "PSR",
    pitch: str = "weekly",
    cases: Optional[Sequence[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Company-by-period table of a multiple, with average rows.

    Each cell is the last valid value inside the period group. Companies
    with no valid value for ``metric`` are left out.
    """
    if metric not in SERIES_METRICS:
        raise ValueError(f"Unsupported metric: {metric}")
    with_data = {
        code: points
        for code, points in histories.items()
        if any(_metric_value(point, metric) is not None for point in points)
    }
    all_dates = sorted({point["date"] for points in histories.values() for point in points})
    groups = aggregate_by_pitch(all_dates, pitch)

    rows = [
        {
            "code": code,
            "values": [_value_for_group(points, group["dates"], metric) for group in groups],
        }
        for code, points in with_data.items()
    ]
    averages = [
        mean_of(row["values"][index] for row in rows) for index in range(len(groups))
    ]

    case_rows = []
    for case in cases or []:
        codes = [code for code in case.get("company_codes", []) if histories.get(code)]
        values = [
            mean_of(_value_for_group(histories[code], group["dates"], metric) for code in codes)
            for group in groups
        ]
        case_rows.append(
            {
                "case_id": case.get("case_id"),
                "case_name": case.get("case_name"),
                "company_count": len(codes),
                "values": values,
            }
        )

    return {
        "periods": [group["key"] for group in groups],
        "rows": rows,
        "averages": averages,
        "case_averages": case_rows,
    }
