from pathlib import Path
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import AppConfig, load_config
from .llm_client import LLMClient
from .llm_parser import describe_result, parse_table
from .market_data import MarketDataClient
from .metrics import (
    CompanyMetricsSnapshot,
    build_company_summary,
    calculate_averages,
    compare_case_averages,
    extract_metrics,
    find_company_row,
    insert_psr_header,
    to_tsv,
)
from .run_logger import STEP_HISTORICAL, STEP_SERIES, log_step
from .schemas import (
    AveragesRequest,
    CaseCompareRequest,
    HistoricalRequest,
    ParseRequest,
    SeriesRequest,
    SummaryRequest,
    TsvExportRequest,
)
from .timeseries import build_series_table


def _default_oracle_factory(config: AppConfig):
    if not config.llm_enabled:
        return None
    return LLMClient(
        provider=config.llm_provider,
        model=config.llm_model_name,
        api_key=config.llm_api_key,
        base_url=config.llm_base_url,
        timeout=config.llm_timeout_seconds,
    )


def create_app(
    oracle_factory: Optional[Callable[[AppConfig], Any]] = None,
    market_data_client: Optional[Any] = None,
    config: Optional[AppConfig] = None,
) -> FastAPI:
    app = FastAPI(title="peertable")

    config = config or load_config()
    oracle_factory = oracle_factory or _default_oracle_factory
    market_data = market_data_client or MarketDataClient(
        symbol_suffix=config.market_symbol_suffix,
        fiscal_year_offset=config.fiscal_year_offset,
    )

    def run_parse(text: Optional[str]):
        try:
            result = parse_table(text or "", oracle=oracle_factory(config))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        if config.parse_log_dir:
            step, payload = describe_result(result)
            log_step(Path(config.parse_log_dir), step, payload, config.parse_log_file)
        return result

    @app.get("/api/health")
    def health():
        return {"status": "ok", "llm_enabled": config.llm_enabled}

    @app.post("/api/parse")
    def parse(payload: ParseRequest):
        result = run_parse(payload.text)
        return JSONResponse(result.table.to_payload())

    @app.post("/api/summary")
    def summary(payload: SummaryRequest):
        result = run_parse(payload.text)
        table = result.table
        row = find_company_row(table, payload.code, payload.name)
        response: Dict[str, Any] = {
            "headers": list(table.headers),
            "display_headers": insert_psr_header(table.headers),
            "rows": [dict(r) for r in table.rows],
            "summary": None,
            "metrics": None,
        }
        if row is not None:
            response["summary"] = build_company_summary(row)
            response["metrics"] = extract_metrics(
                table, payload.code or "", payload.name or ""
            ).to_payload()
        return JSONResponse(response)

    @app.post("/api/averages")
    def averages(payload: AveragesRequest):
        companies = [
            CompanyMetricsSnapshot(code=c.code, name=c.name, metrics=dict(c.metrics))
            for c in payload.companies
        ]
        return JSONResponse({"averages": calculate_averages(companies)})

    @app.post("/api/historical")
    def historical(payload: HistoricalRequest):
        try:
            result = market_data.fetch(payload.symbols, payload.period, payload.interval)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        if config.parse_log_dir:
            log_step(
                Path(config.parse_log_dir),
                STEP_HISTORICAL,
                {"symbols": list(payload.symbols), "period": payload.period},
                config.parse_log_file,
            )
        return JSONResponse(result)

    @app.post("/api/series")
    def series(payload: SeriesRequest):
        histories = {
            code: [point.model_dump() for point in points]
            for code, points in payload.histories.items()
        }
        try:
            table = build_series_table(
                histories,
                metric=payload.metric,
                pitch=payload.pitch,
                cases=[case.model_dump() for case in payload.cases],
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        if config.parse_log_dir:
            log_step(
                Path(config.parse_log_dir),
                STEP_SERIES,
                {"companies": len(histories), "metric": payload.metric, "pitch": payload.pitch},
                config.parse_log_file,
            )
        return JSONResponse(table)

    @app.post("/api/cases/compare")
    def compare_cases(payload: CaseCompareRequest):
        return JSONResponse(compare_case_averages([case.model_dump() for case in payload.cases]))

    @app.post("/api/export/tsv")
    def export_tsv(payload: TsvExportRequest):
        return PlainTextResponse(
            to_tsv(payload.headers, payload.rows),
            media_type="text/tab-separated-values; charset=utf-8",
        )

    return app
