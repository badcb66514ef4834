import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from .run_logger import STEP_PARSE
from .schemas import ParsedTable
from .table_parser import HeuristicParse, heuristic_parse
from .text_normalizer import normalize_units

logger = logging.getLogger(__name__)


VALIDATION_KEYWORDS = ("PER", "時価", "企業価値", "ROE", "売上")
MIN_HEADER_COUNT = 5

SOURCE_LLM = "llm"
SOURCE_HEURISTIC = "heuristic"

PARSE_SYSTEM_PROMPT = (
    "You convert messy pasted Japanese company comparison tables into a JSON table. "
    "Rules: keep every factual column exactly as written; do not drop, merge or rename columns; "
    "keep numbers joined to their units (e.g. 4,855億円, 8.5倍, 2.1%); "
    "do not list the company code or company name columns in headers, put them in each row "
    "under the keys \"code\" (4-5 digits) and \"name\" instead; "
    "convert full-width ％ to %; use \"N/A\" for unavailable cells; "
    "keep the original column order."
)

PARSE_USER_TEMPLATE = (
    "Text:\n{text}\n"
    "Return JSON only: {{\"headers\": string[], \"rows\": Array<Record<string, string>>}}"
)


class TableValidationError(ValueError):
    pass


@dataclass(frozen=True)
class ParseResult:
    table: ParsedTable
    source: str
    heuristic: Optional[HeuristicParse] = None


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the substring between the first "{" and the last "}"."""
    content = text or ""
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise ValueError("No JSON object in oracle reply")
    data = json.loads(content[start : end + 1])
    if not isinstance(data, dict):
        raise ValueError("Oracle reply is not a JSON object")
    return data


def validate_parsed_table(data: Dict[str, Any]) -> ParsedTable:
    """Accept an oracle table only if its cleaned headers and rows pass the checks.

    Blank and identifier headers are dropped before counting.
    """
    headers = data.get("headers")
    rows = data.get("rows")
    if not isinstance(headers, list):
        raise TableValidationError("headers must be a list")
    if not isinstance(rows, list):
        raise TableValidationError("rows must be a list")
    table = ParsedTable.model_validate({"headers": headers, "rows": rows}).restricted_to_headers()
    if len(table.headers) < MIN_HEADER_COUNT:
        raise TableValidationError(
            f"headers must have at least {MIN_HEADER_COUNT} entries, got {len(table.headers)}"
        )
    joined = "".join(table.headers)
    if not any(keyword in joined for keyword in VALIDATION_KEYWORDS):
        raise TableValidationError("headers contain no financial keyword")
    if not table.rows:
        raise TableValidationError("rows must be a non-empty list")
    return table


def _ask_oracle(oracle, system_prompt: str, user_prompt: str) -> str:
    # Accepts an LLMClient-like object or a plain (system, user) -> text callable.
    complete = getattr(oracle, "complete", None)
    if complete is None:
        complete = oracle
    return complete(system_prompt, user_prompt)


def parse_with_oracle(text: str, oracle) -> ParsedTable:
    reply = _ask_oracle(
        oracle,
        PARSE_SYSTEM_PROMPT,
        PARSE_USER_TEMPLATE.format(text=normalize_units(text)),
    )
    return validate_parsed_table(extract_json_object(reply))


def parse_table(text: str, oracle=None) -> ParseResult:
    """Parse pasted table text, trying the oracle first when one is given.

    Raises ValueError for empty input. Oracle failures of any kind are logged
    and answered with the heuristic parse.
    """
    if not text or not text.strip():
        raise ValueError("No text")

    if oracle is not None:
        try:
            return ParseResult(table=parse_with_oracle(text, oracle), source=SOURCE_LLM)
        except (TableValidationError, ValidationError) as exc:
            logger.warning("Oracle table rejected, falling back to heuristic parse: %s", exc)
        except Exception as exc:
            logger.warning("Oracle parse failed, falling back to heuristic parse: %s", exc)

    heuristic = heuristic_parse(text)
    return ParseResult(table=heuristic.table, source=SOURCE_HEURISTIC, heuristic=heuristic)


def describe_result(result: ParseResult) -> Tuple[str, Dict[str, Any]]:
    payload: Dict[str, Any] = {
        "source": result.source,
        "headers": len(result.table.headers),
        "rows": len(result.table.rows),
    }
    if result.heuristic is not None:
        payload["header_found"] = result.heuristic.header_found
        payload["row_strategies"] = list(result.heuristic.row_strategies)
        payload["confident"] = result.heuristic.confident
    return STEP_PARSE, payload
