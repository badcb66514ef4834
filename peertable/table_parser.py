from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import re

from .schemas import ParsedTable
from .text_normalizer import is_numeric_like, tokenize_header, tokenize_row


HEADER_ANCHORS = ("PER", "PBR", "ROE", "時価総額", "企業価値")
FREE_TEXT_HEADERS = ("特徴語", "特徴ワード")

STRATEGY_NUMERIC_RUN = "numeric_run"
STRATEGY_POSITIONAL = "positional"
STRATEGY_SYNTHESIZED = "synthesized"

_HEADER_LINE = re.compile(
    r"[A-Za-z\u3040-\u30ff\u4e00-\u9faf].*(" + "|".join(HEADER_ANCHORS) + ")"
)
_CODE = re.compile(r"^\d{4,5}$")


@dataclass(frozen=True)
class RowParse:
    row: Dict[str, str]
    strategy: str


@dataclass(frozen=True)
class HeuristicParse:
    """Parsed table plus how each row was aligned.

    ``confident`` is True only when a header line was found and every row
    was aligned on a numeric run.
    """

    table: ParsedTable
    header_found: bool
    row_strategies: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def confident(self) -> bool:
        return self.header_found and all(
            strategy == STRATEGY_NUMERIC_RUN for strategy in self.row_strategies
        )


def split_lines(text: str) -> List[str]:
    normalized = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    return [line.strip() for line in normalized.split("\n") if line.strip()]


def find_header_index(lines: List[str]) -> int:
    for index, line in enumerate(lines):
        if _HEADER_LINE.search(line):
            return index
    return -1


def numeric_column_count(headers: List[str]) -> int:
    if headers and headers[-1] in FREE_TEXT_HEADERS:
        return len(headers) - 1
    return len(headers)


def find_numeric_run(tokens: List[str], count: int, start: int = 1) -> Optional[int]:
    """Leftmost offset >= start where ``count`` consecutive tokens are numeric-like."""
    if count <= 0:
        return None
    for offset in range(start, len(tokens) - count + 1):
        if all(is_numeric_like(token) for token in tokens[offset : offset + count]):
            return offset
    return None


def parse_row(tokens: List[str], headers: List[str]) -> RowParse:
    code: Optional[str] = None
    rest = tokens
    if _CODE.match(tokens[0]):
        code = tokens[0]
        rest = tokens[1:]
    name = rest[0] if rest else tokens[0]

    row: Dict[str, str] = {}
    if code is not None:
        row["code"] = code
    row["name"] = name

    if not headers:
        for index, value in enumerate(rest[1:], start=1):
            row[f"col_{index}"] = value
        return RowParse(row=row, strategy=STRATEGY_SYNTHESIZED)

    count = numeric_column_count(headers)
    offset = find_numeric_run(rest, count)
    if offset is None:
        for header, value in zip(headers, rest[1:]):
            row[header] = value
        return RowParse(row=row, strategy=STRATEGY_POSITIONAL)

    row["name"] = " ".join(rest[:offset])
    for header, value in zip(headers[:count], rest[offset : offset + count]):
        row[header] = value
    trailing = rest[offset + count :]
    if trailing and count < len(headers):
        row[headers[-1]] = " ".join(trailing)
    return RowParse(row=row, strategy=STRATEGY_NUMERIC_RUN)


def heuristic_parse(text: str) -> HeuristicParse:
    lines = split_lines(text)
    header_index = find_header_index(lines)
    headers: List[str] = []
    if header_index >= 0:
        headers = tokenize_header(lines[header_index])

    rows: List[Dict[str, str]] = []
    strategies: List[str] = []
    for line in lines[header_index + 1 :]:
        tokens = tokenize_row(line)
        if not tokens:
            continue
        parsed = parse_row(tokens, headers)
        rows.append(parsed.row)
        strategies.append(parsed.strategy)

    return HeuristicParse(
        table=ParsedTable(headers=headers, rows=rows),
        header_found=header_index >= 0,
        row_strategies=tuple(strategies),
    )
