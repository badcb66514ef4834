from typing import List
import re


NA_TOKEN = "N/A"

# Header labels for identifier columns. Codes and names surface through the
# reserved row keys instead of regular headers.
IDENTIFIER_HEADERS = {
    "コード",
    "銘柄コード",
    "証券コード",
    "code",
    "Code",
    "CODE",
    "銘柄",
    "銘柄名",
    "企業名",
    "会社名",
    "name",
    "Name",
    "NAME",
    "操作",
    "action",
    "Action",
}

DASH_MARKERS = {"-", "－", "−", "–", "—", "―", "‐"}

_NA_SPACED = re.compile(r"(?<!\S)n\s*/\s*a(?!\S)", flags=re.IGNORECASE)
_NA_EXACT = re.compile(r"^n\s*/\s*a$", flags=re.IGNORECASE)
_LARGE_UNIT_GAP = re.compile(r"(\d)\s*(兆|億)\s*円")
_SMALL_UNIT_GAP = re.compile(r"(\d)\s+(円|倍|%)")
_SPLIT = re.compile(r"[\s|\t]+")
_PARENTHESIZED = re.compile(r"^[\(（].+[\)）]$")
_NUMERIC = re.compile(
    r"^[+\-−]?\d[\d,]*(?:\.\d+)?(?:兆円|億円|百万円|千円|円|倍|%|％)?$"
)


def normalize_units(text: str) -> str:
    """Join numbers with their unit suffixes so each value becomes one token.

    "4,855 億円" -> "4,855億円", "8.5 倍" -> "8.5倍", "n / a" -> "N/A".
    Applying it twice gives the same result as applying it once.
    """
    if not text:
        return text or ""
    text = text.replace("％", "%")
    text = _NA_SPACED.sub(NA_TOKEN, text)
    text = _LARGE_UNIT_GAP.sub(r"\1\2円", text)
    return _SMALL_UNIT_GAP.sub(r"\1\2", text)


def split_tokens(line: str) -> List[str]:
    if not line:
        return []
    return [token.strip() for token in _SPLIT.split(line) if token.strip()]


def tokenize_header(line: str) -> List[str]:
    merged: List[str] = []
    for token in split_tokens(line):
        if merged and _PARENTHESIZED.match(token):
            merged[-1] = f"{merged[-1]} {token}"
            continue
        merged.append(token)
    return [token for token in merged if token not in IDENTIFIER_HEADERS]


def tokenize_row(line: str) -> List[str]:
    normalized = re.sub(r"\s+", " ", normalize_units(line or ""))
    return split_tokens(normalized)


def is_missing_marker(token: str) -> bool:
    cleaned = (token or "").strip()
    if not cleaned:
        return False
    return cleaned in DASH_MARKERS or bool(_NA_EXACT.match(cleaned))


def is_numeric_like(token: str) -> bool:
    """True for missing-value markers and fully numeric, optionally unit-suffixed tokens.

    Partial matches such as "3M" or "7203号" are text.
    """
    cleaned = (token or "").strip()
    if not cleaned:
        return False
    if is_missing_marker(cleaned):
        return True
    return bool(_NUMERIC.match(cleaned))
