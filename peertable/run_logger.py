"""JSON-lines audit trail for parse and market-data requests."""

import json
import time
from pathlib import Path
from typing import Any, Dict

RUN_LOG_NAME = "run.log"

STEP_PARSE = "parse"
STEP_HISTORICAL = "historical"
STEP_SERIES = "series"
KNOWN_STEPS = (STEP_PARSE, STEP_HISTORICAL, STEP_SERIES)


def log_step(
    output_dir: Path,
    step: str,
    payload: Dict[str, Any],
    filename: str = RUN_LOG_NAME,
) -> Path:
    """Append one ``{"ts", "step", "payload"}`` line and return the log path."""
    if step not in KNOWN_STEPS:
        raise ValueError(f"Unknown log step: {step}")
    output_dir.mkdir(parents=True, exist_ok=True)
    log_path = output_dir / (filename or RUN_LOG_NAME)
    entry = {"ts": time.time(), "step": step, "payload": payload}
    with open(log_path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False) + "\n")
    return log_path
