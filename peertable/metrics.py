"""Cross-sectional metrics built from parsed comparison tables."""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .schemas import ParsedTable, RESERVED_ROW_KEYS
from .table_parser import FREE_TEXT_HEADERS
from .values import parse_japanese_number

NA = "N/A"
MIN_AVERAGE_SAMPLES = 2

EV_HEADER = "企業価値"
SALES_HEADER = "売上"
MARKET_CAP_HEADER = "時価総額"

# Display summary fields with their header aliases, tried in order.
SUMMARY_FIELDS = [
    ("企業価値", ("企業価値",)),
    ("時価総額", ("時価総額",)),
    ("PSR", ()),
    ("PER (会)", ("PER (会)", "PER")),
    ("売上", ("売上",)),
    ("営利", ("営利",)),
    ("純利", ("純利",)),
    ("配当利予", ("配当利予", "配当利･予", "配当利回り")),
    ("ROE", ("ROE",)),
    ("自資本比", ("自資本比",)),
    ("特徴語", ("特徴語",)),
]

_OKU_VALUE = re.compile(r"([\d,]+\.?\d*)\s*億円")
_FIRST_NUMBER = re.compile(r"([\d,]+\.?\d*)")
_EXPLICIT_YEN_UNIT = re.compile(r"(兆円|億円|百万円|千円)")


@dataclass
class CompanyMetricsSnapshot:
    code: str
    name: str
    metrics: Dict[str, Optional[float]] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {"code": self.code, "name": self.name, "metrics": dict(self.metrics)}


def _to_float(text: str) -> Optional[float]:
    try:
        return float(text.replace(",", ""))
    except ValueError:
        return None


def parse_enterprise_value_oku(value: str) -> Optional[float]:
    """Enterprise value in 億円, read from the first number tagged with "億円"."""
    match = _OKU_VALUE.search(value or "")
    if not match:
        return None
    return _to_float(match.group(1))


def parse_sales_oku(value: str) -> Optional[float]:
    """Sales in 億円. Bare figures are 百万円 and are scaled by 0.01.

    A figure that carries its own yen unit is converted from that unit.
    """
    text = value or ""
    if _EXPLICIT_YEN_UNIT.search(text):
        yen = parse_japanese_number(text)
        return None if yen is None else yen / 1e8
    match = _FIRST_NUMBER.search(text)
    if not match:
        return None
    millions = _to_float(match.group(1))
    return None if millions is None else millions * 0.01


def calculate_psr(enterprise_value: str, sales: str) -> str:
    if not enterprise_value or not sales:
        return NA
    ev = parse_enterprise_value_oku(enterprise_value)
    sales_oku = parse_sales_oku(sales)
    if ev is None or sales_oku is None or sales_oku == 0:
        return NA
    return f"{ev / sales_oku:.2f}"


def calculate_psr_from_row(row: Dict[str, str]) -> str:
    return calculate_psr(row.get(EV_HEADER, ""), row.get(SALES_HEADER, ""))


def insert_psr_header(headers: Sequence[str]) -> List[str]:
    display = list(headers)
    if EV_HEADER not in display or SALES_HEADER not in display:
        return display
    for index, header in enumerate(display):
        if header.startswith("PER"):
            display.insert(index, "PSR")
            return display
    if MARKET_CAP_HEADER in display:
        display.insert(display.index(MARKET_CAP_HEADER) + 1, "PSR")
    return display


def find_company_row(
    table: ParsedTable, code: Optional[str] = None, name: Optional[str] = None
) -> Optional[Dict[str, str]]:
    if code:
        for row in table.rows:
            if str(row.get("code", "")) == str(code):
                return row
    if name:
        for row in table.rows:
            if row.get("name") == name:
                return row
    return None


def build_company_summary(row: Dict[str, str]) -> Dict[str, str]:
    summary: Dict[str, str] = {}
    for key, aliases in SUMMARY_FIELDS:
        if key == "PSR":
            summary[key] = calculate_psr_from_row(row)
            continue
        summary[key] = next((row[alias] for alias in aliases if row.get(alias)), "")
    return summary


def extract_metrics(
    table: ParsedTable, code: str = "", name: str = ""
) -> CompanyMetricsSnapshot:
    row = find_company_row(table, code, name)
    metrics: Dict[str, Optional[float]] = {}
    if row is None:
        return CompanyMetricsSnapshot(code=code, name=name, metrics=metrics)
    for header in table.headers:
        if header in RESERVED_ROW_KEYS or header in FREE_TEXT_HEADERS:
            continue
        if header not in row or not row[header]:
            continue
        metrics[header] = parse_japanese_number(row[header])
    return CompanyMetricsSnapshot(
        code=code or row.get("code", ""),
        name=name or row.get("name", ""),
        metrics=metrics,
    )


def _is_valid(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return not math.isnan(float(value))
    except (TypeError, ValueError):
        return False


def mean_of(values: Iterable[Optional[float]]) -> Optional[float]:
    """Mean of the valid values, rounded to 2 decimals; None with fewer than two."""
    valid = [float(value) for value in values if _is_valid(value)]
    if len(valid) < MIN_AVERAGE_SAMPLES:
        return None
    return round(sum(valid) / len(valid), 2)


def calculate_averages(companies: Sequence[CompanyMetricsSnapshot]) -> Dict[str, Optional[float]]:
    keys: List[str] = []
    for company in companies:
        for key in company.metrics:
            if key not in keys:
                keys.append(key)
    return {key: mean_of(company.metrics.get(key) for company in companies) for key in keys}


def compare_case_averages(cases: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Metric names across cases, plus second-minus-first differences for two cases."""
    metric_names: List[str] = []
    for case in cases:
        for key in (case.get("averages") or {}):
            if key not in metric_names:
                metric_names.append(key)

    differences: Optional[Dict[str, Optional[float]]] = None
    if len(cases) == 2:
        first = cases[0].get("averages") or {}
        second = cases[1].get("averages") or {}
        differences = {}
        for key in metric_names:
            left, right = first.get(key), second.get(key)
            if _is_valid(left) and _is_valid(right):
                differences[key] = round(float(right) - float(left), 2)
            else:
                differences[key] = None
    return {"metrics": metric_names, "differences": differences}


def to_tsv(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
    def cell(value: Any) -> str:
        if value is None or (isinstance(value, float) and math.isnan(value)):
            return NA
        return str(value)

    lines = ["\t".join(headers)]
    lines.extend("\t".join(cell(value) for value in row) for row in rows)
    return "\n".join(lines)
