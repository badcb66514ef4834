import os
from dataclasses import dataclass
from dotenv import load_dotenv

from .run_logger import RUN_LOG_NAME


SUPPORTED_PROVIDERS = ("openai", "deepseek")


@dataclass
class AppConfig:
    llm_provider: str
    llm_model_name: str
    llm_api_key: str
    llm_base_url: str
    llm_timeout_seconds: int
    llm_parse_enabled: bool
    market_symbol_suffix: str
    fiscal_year_offset: int
    parse_log_dir: str
    log_level: str
    parse_log_file: str = RUN_LOG_NAME

    @property
    def llm_enabled(self) -> bool:
        return self.llm_parse_enabled and bool(self.llm_api_key)


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def load_config() -> AppConfig:
    load_dotenv()
    provider = os.getenv("LLM_PROVIDER", "openai").strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        provider = "openai"

    timeout = max(1, _int_env("LLM_TIMEOUT_SECONDS", 30))

    return AppConfig(
        llm_provider=provider,
        llm_model_name=os.getenv("LLM_MODEL_NAME", "gpt-4o-mini"),
        llm_api_key=os.getenv("LLM_API_KEY", "") or os.getenv("OPENAI_API_KEY", ""),
        llm_base_url=os.getenv("LLM_BASE_URL", "https://api.openai.com"),
        llm_timeout_seconds=timeout,
        llm_parse_enabled=os.getenv("LLM_PARSE_ENABLED", "true").lower() != "false",
        market_symbol_suffix=os.getenv("MARKET_SYMBOL_SUFFIX", ".T"),
        fiscal_year_offset=_int_env("FISCAL_YEAR_OFFSET", 1),
        parse_log_dir=os.getenv("PARSE_LOG_DIR", "").strip(),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        parse_log_file=os.getenv("PARSE_LOG_FILE", "").strip() or RUN_LOG_NAME,
    )
