"""Data models shared by the parsers and the HTTP surface."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .text_normalizer import IDENTIFIER_HEADERS

RESERVED_ROW_KEYS = ("code", "name")


class ParsedTable(BaseModel):
    """Headers in source column order plus one mapping per data row.

    Rows carry the reserved ``code``/``name`` keys next to header keys.
    A header missing from a row means the value was not observed.
    Headers never name an identifier column. Headers and rows are
    read-only once the table is built.
    """

    model_config = ConfigDict(frozen=True)

    headers: Tuple[str, ...] = Field(default_factory=tuple)
    rows: Tuple[Mapping[str, str], ...] = Field(default_factory=tuple)

    @field_validator("headers", mode="before")
    @classmethod
    def _coerce_headers(cls, value: Any) -> Any:
        if not isinstance(value, (list, tuple)):
            return value
        headers: List[str] = []
        for item in value:
            text = "" if item is None else str(item).strip()
            if not text or text in RESERVED_ROW_KEYS or text in IDENTIFIER_HEADERS:
                continue
            headers.append(text)
        return headers

    @field_validator("rows", mode="before")
    @classmethod
    def _coerce_rows(cls, value: Any) -> Any:
        if not isinstance(value, (list, tuple)):
            return value
        rows: List[Any] = []
        for row in value:
            if not isinstance(row, Mapping):
                rows.append(row)
                continue
            rows.append(
                {str(key): _cell_text(cell) for key, cell in row.items() if cell is not None}
            )
        return rows

    @field_validator("rows", mode="after")
    @classmethod
    def _freeze_rows(cls, value: Tuple[Mapping[str, str], ...]) -> Tuple[Mapping[str, str], ...]:
        return tuple(MappingProxyType(dict(row)) for row in value)

    def restricted_to_headers(self) -> "ParsedTable":
        allowed = set(self.headers) | set(RESERVED_ROW_KEYS)
        rows = [{key: cell for key, cell in row.items() if key in allowed} for row in self.rows]
        return ParsedTable(headers=list(self.headers), rows=rows)

    def to_payload(self) -> Dict[str, Any]:
        return {"headers": list(self.headers), "rows": [dict(row) for row in self.rows]}


def _cell_text(cell: Any) -> str:
    if isinstance(cell, bool):
        return str(cell).lower()
    if isinstance(cell, float) and cell.is_integer():
        return str(int(cell))
    return str(cell).strip()


class ParseRequest(BaseModel):
    text: Optional[str] = None


class SummaryRequest(BaseModel):
    text: Optional[str] = None
    code: Optional[str] = None
    name: Optional[str] = None


class CompanyMetricsPayload(BaseModel):
    code: str = ""
    name: str = ""
    metrics: Dict[str, Optional[float]] = Field(default_factory=dict)


class AveragesRequest(BaseModel):
    companies: List[CompanyMetricsPayload] = Field(default_factory=list)


class HistoricalRequest(BaseModel):
    symbols: List[str] = Field(default_factory=list)
    period: str = "6mo"
    interval: str = "1wk"


class SeriesPoint(BaseModel):
    model_config = ConfigDict(extra="allow")

    date: str
    psr: Optional[float] = None
    per: Optional[float] = None


class SeriesCase(BaseModel):
    case_id: str = ""
    case_name: str = ""
    company_codes: List[str] = Field(default_factory=list)


class SeriesRequest(BaseModel):
    histories: Dict[str, List[SeriesPoint]] = Field(default_factory=dict)
    metric: str = "PSR"
    pitch: str = "weekly"
    cases: List[SeriesCase] = Field(default_factory=list)


class CaseAveragesPayload(BaseModel):
    case_id: str = ""
    case_name: str = ""
    averages: Dict[str, Optional[float]] = Field(default_factory=dict)


class CaseCompareRequest(BaseModel):
    cases: List[CaseAveragesPayload] = Field(default_factory=list)


class TsvExportRequest(BaseModel):
    headers: List[str] = Field(default_factory=list)
    rows: List[List[Any]] = Field(default_factory=list)
