import logging
import math
import re
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

import pandas as pd
import yfinance as yf

from .timeseries import FiscalPeriodLookup, IncomeStatement, compute_valuation_series, ttm_net_income

logger = logging.getLogger(__name__)


PERIOD_MONTHS = {"1mo": 1, "3mo": 3, "6mo": 6, "1y": 12, "2y": 24, "5y": 60}
INTERVALS = ("1d", "1wk", "1mo")

NET_INCOME_ROWS = ("Net Income", "Net Income Common Stockholders", "Net Income From Continuing Operation Net Minority Interest")
REVENUE_ROWS = ("Total Revenue", "Operating Revenue")


def to_market_symbol(symbol: str, suffix: str = ".T") -> str:
    symbol = symbol.strip()
    if suffix and symbol.endswith(suffix):
        return symbol
    if re.fullmatch(r"\d+", symbol):
        return f"{symbol}{suffix}"
    return symbol


def from_market_symbol(symbol: str, suffix: str = ".T") -> str:
    if suffix and symbol.endswith(suffix):
        return symbol[: -len(suffix)]
    return symbol


def period_start_date(period: str, today: Optional[date] = None) -> date:
    if period not in PERIOD_MONTHS:
        raise ValueError(f"Unsupported period: {period}")
    anchor = pd.Timestamp(today or date.today())
    return (anchor - pd.DateOffset(months=PERIOD_MONTHS[period])).date()


def _clean_number(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _first_row_value(frame: pd.DataFrame, labels: Sequence[str], column: Any) -> Optional[float]:
    for label in labels:
        if label in frame.index:
            value = _clean_number(frame.at[label, column])
            if value is not None:
                return value
    return None


def statements_from_frame(frame: Optional[pd.DataFrame]) -> List[IncomeStatement]:
    """Income statements from a yfinance frame (line items as rows, period ends as columns), newest first."""
    if frame is None or frame.empty:
        return []
    statements: List[IncomeStatement] = []
    for column in frame.columns:
        statements.append(
            IncomeStatement(
                end_date=pd.Timestamp(column).date(),
                net_income=_first_row_value(frame, NET_INCOME_ROWS, column),
                total_revenue=_first_row_value(frame, REVENUE_ROWS, column),
            )
        )
    return sorted(statements, key=lambda stmt: stmt.end_date, reverse=True)


def history_points(frame: Optional[pd.DataFrame]) -> List[Dict[str, Any]]:
    if frame is None or frame.empty:
        return []
    points: List[Dict[str, Any]] = []
    for index, row in frame.iterrows():
        close = _clean_number(row.get("Close"))
        if close is None:
            continue
        points.append(
            {
                "date": pd.Timestamp(index).date().isoformat(),
                "close": close,
                "high": _clean_number(row.get("High")) or 0.0,
                "low": _clean_number(row.get("Low")) or 0.0,
                "open": _clean_number(row.get("Open")) or 0.0,
                "volume": _clean_number(row.get("Volume")) or 0.0,
            }
        )
    return points


def current_metrics(info: Dict[str, Any], ttm_income: Optional[float]) -> Dict[str, Optional[float]]:
    market_cap = _clean_number(info.get("marketCap"))
    revenue = _clean_number(info.get("totalRevenue"))
    per = None
    if market_cap and ttm_income and ttm_income > 0:
        per = market_cap / ttm_income
    if per is None:
        per = _clean_number(info.get("trailingPE"))
    roe = _clean_number(info.get("returnOnEquity"))
    return {
        "per": per,
        "psr": market_cap / revenue if market_cap and revenue else None,
        "roe": roe * 100 if roe is not None else None,
        "market_cap": market_cap,
        "revenue": revenue,
        "dividend_yield": _clean_number(info.get("dividendYield")),
        "price_to_book": _clean_number(info.get("priceToBook")),
    }


class MarketDataClient:
    """Price history and fundamentals per identifier, backed by yfinance."""

    def __init__(
        self,
        symbol_suffix: str = ".T",
        fiscal_year_offset: int = 1,
        ticker_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.symbol_suffix = symbol_suffix
        self.fiscal_year_offset = fiscal_year_offset
        self._ticker = ticker_factory or yf.Ticker

    def fetch(
        self,
        symbols: Sequence[str],
        period: str = "6mo",
        interval: str = "1wk",
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        if not symbols:
            raise ValueError("No symbols given")
        if interval not in INTERVALS:
            raise ValueError(f"Unsupported interval: {interval}")
        start = period_start_date(period, today)

        results: Dict[str, Any] = {}
        for symbol in symbols:
            market_symbol = to_market_symbol(symbol, self.symbol_suffix)
            original = from_market_symbol(market_symbol, self.symbol_suffix)
            try:
                results[original] = self._fetch_symbol(market_symbol, start, interval, today)
                results[original]["symbol"] = original
            except Exception as exc:
                logger.warning("Market data fetch failed for %s: %s", market_symbol, exc)
                results[original] = {"symbol": original, "error": str(exc)}

        return {"success": True, "period": period, "interval": interval, "data": results}

    def _fetch_symbol(
        self, market_symbol: str, start: date, interval: str, today: Optional[date]
    ) -> Dict[str, Any]:
        ticker = self._ticker(market_symbol)
        prices = history_points(ticker.history(start=start.isoformat(), interval=interval))
        info = ticker.info or {}
        annual = statements_from_frame(ticker.income_stmt)
        quarterly = statements_from_frame(ticker.quarterly_income_stmt)

        metrics = current_metrics(info, ttm_net_income(quarterly))
        lookup = FiscalPeriodLookup(
            annual,
            quarterly,
            latest_revenue=metrics["revenue"],
            fiscal_year_offset=self.fiscal_year_offset,
            today=today,
        )
        history = compute_valuation_series(
            prices, _clean_number(info.get("sharesOutstanding")), lookup
        )
        return {
            "market_symbol": market_symbol,
            "history": history,
            "current_metrics": metrics,
        }
