import math
import re
from typing import List, Optional, Pattern, Tuple

from .text_normalizer import is_missing_marker


# Longest units first: "億円" must be consumed before the bare "円" rule can
# strip its trailing character and lose the 10^8 scale.
UNIT_SCALES: List[Tuple[Pattern[str], float]] = [
    (re.compile(r"兆円?"), 1e12),
    (re.compile(r"億円?"), 1e8),
    (re.compile(r"百万円?"), 1e6),
    (re.compile(r"千円?"), 1e3),
    (re.compile(r"円"), 1.0),
    (re.compile(r"倍"), 1.0),
    (re.compile(r"[%％]"), 1.0),
]

_NUMBER = re.compile(r"^[+\-]?\d+(?:\.\d+)?$")


def parse_japanese_number(value) -> Optional[float]:
    """Convert "4,855億円", "8.5倍", "2.1%" or "8,500百万円" to a float.

    Returns None for empty strings, dash markers, N/A spellings and anything
    that does not reduce to a plain number.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
        return number if math.isfinite(number) else None
    cleaned = str(value).strip()
    if not cleaned or is_missing_marker(cleaned):
        return None

    scale = 1.0
    for pattern, factor in UNIT_SCALES:
        if pattern.search(cleaned):
            cleaned = pattern.sub("", cleaned, count=1)
            scale = factor
            break
    cleaned = cleaned.replace(",", "").replace("−", "-").strip()
    if not _NUMBER.match(cleaned):
        return None
    number = float(cleaned) * scale
    return number if math.isfinite(number) else None


def _group_digits(value: float, decimals: int = 3) -> str:
    text = f"{value:,.{decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_japanese_number(value: Optional[float], unit: Optional[str] = None) -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "-"

    if not unit:
        if value >= 1e12:
            return f"{value / 1e12:.2f}兆円"
        if value >= 1e8:
            return f"{value / 1e8:.0f}億円"
        if value >= 1e6:
            return f"{value / 1e6:.0f}百万円"
        return _group_digits(value)

    if "兆" in unit:
        return f"{value / 1e12:.2f}兆円"
    if "億" in unit:
        return f"{value / 1e8:.0f}億円"
    if "百万" in unit:
        return f"{value / 1e6:.0f}百万円"
    if "千" in unit:
        return f"{value / 1e3:.0f}千円"
    if "倍" in unit:
        return f"{value:.2f}倍"
    if "%" in unit or "％" in unit:
        return f"{value:.2f}%"
    if "円" in unit:
        return f"{_group_digits(value, 0)}円"
    return _group_digits(value)
