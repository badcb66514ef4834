import json
import logging

import pytest
import requests

from peertable.llm_parser import (
    SOURCE_HEURISTIC,
    SOURCE_LLM,
    TableValidationError,
    extract_json_object,
    parse_table,
    validate_parsed_table,
)
from tests.helpers.fake_llm import FakeOracle


TEXT = (
    "コード 銘柄名 企業価値 時価総額 PER (会) 売上 特徴語\n"
    "7203 トヨタ自動車 124,976 億円 35兆円 8.5倍 45,095億円 好調\n"
)

VALID_TABLE = {
    "headers": ["企業価値", "時価総額", "PER (会)", "売上", "ROE", "特徴語"],
    "rows": [
        {
            "code": "7203",
            "name": "トヨタ 自動車",
            "企業価値": "124,976億円",
            "時価総額": "35兆円",
            "PER (会)": "8.5倍",
            "売上": "45,095億円",
            "ROE": 12.5,
            "特徴語": None,
            "unexpected": "x",
        }
    ],
}


def test_extract_json_object_ignores_surrounding_commentary():
    reply = "Sure! Here is the table:\n```json\n{\"headers\": [\"PER\"], \"rows\": [{\"a\": \"{b}\"}]}\n```\nDone."
    data = extract_json_object(reply)
    assert data["headers"] == ["PER"]
    assert data["rows"][0]["a"] == "{b}"


def test_extract_json_object_rejects_reply_without_object():
    with pytest.raises(ValueError):
        extract_json_object("no json here")
    with pytest.raises(json.JSONDecodeError):
        extract_json_object("{not json}")


def test_validate_parsed_table_cleans_rows():
    table = validate_parsed_table(VALID_TABLE)
    row = table.rows[0]
    assert list(table.headers) == VALID_TABLE["headers"]
    assert row["ROE"] == "12.5"
    assert row["name"] == "トヨタ 自動車"
    assert "特徴語" not in row
    assert "unexpected" not in row


@pytest.mark.parametrize(
    "data",
    [
        {"headers": ["企業価値", "時価総額", "PER", "売上"], "rows": [{"name": "x"}]},
        {"headers": ["a", "b", "c", "d", "e"], "rows": [{"name": "x"}]},
        {"headers": ["企業価値", "時価総額", "PER", "売上", "ROE"], "rows": []},
        {"headers": ["企業価値", "時価総額", "PER", "売上", "ROE"]},
        {"headers": "企業価値 時価総額 PER 売上 ROE", "rows": [{"name": "x"}]},
        {"headers": ["", " ", None, "PER", "ROE"], "rows": [{"name": "x"}]},
        {"headers": ["code", "name", "企業価値", "時価総額", "PER"], "rows": [{"name": "x"}]},
        {"headers": ["コード", "銘柄名", "企業価値", "時価総額", "PER"], "rows": [{"name": "x"}]},
    ],
)
def test_validate_parsed_table_rejects_weak_results(data):
    with pytest.raises(TableValidationError):
        validate_parsed_table(data)


def test_parse_table_rejects_empty_input():
    with pytest.raises(ValueError, match="No text"):
        parse_table("   \n ")


def test_parse_table_uses_valid_oracle_reply():
    oracle = FakeOracle(["```json\n" + json.dumps(VALID_TABLE, ensure_ascii=False) + "\n```"])
    result = parse_table(TEXT, oracle=oracle)
    assert result.source == SOURCE_LLM
    assert result.table.rows[0]["name"] == "トヨタ 自動車"
    assert "124,976億円" in oracle.calls[0]


def test_parse_table_falls_back_when_rows_missing(caplog):
    reply = json.dumps({"headers": VALID_TABLE["headers"]}, ensure_ascii=False)
    oracle = FakeOracle([reply])
    with caplog.at_level(logging.WARNING):
        result = parse_table(TEXT, oracle=oracle)
    assert result.source == SOURCE_HEURISTIC
    assert result.table.rows[0]["name"] == "トヨタ自動車"
    assert result.table.rows[0]["特徴語"] == "好調"
    assert "falling back" in caplog.text


def test_parse_table_falls_back_on_too_few_headers():
    reply = json.dumps({"headers": ["PER", "ROE"], "rows": [{"name": "x"}]})
    result = parse_table(TEXT, oracle=FakeOracle([reply]))
    assert result.source == SOURCE_HEURISTIC
    assert result.heuristic is not None
    assert result.heuristic.confident


@pytest.mark.parametrize(
    "reply",
    [
        "I could not parse this table.",
        "{\"headers\": [oops]}",
        requests.exceptions.ConnectionError("down"),
        RuntimeError("boom"),
    ],
)
def test_parse_table_falls_back_on_oracle_failures(reply):
    oracle = FakeOracle([reply])
    result = parse_table(TEXT, oracle=oracle)
    assert result.source == SOURCE_HEURISTIC
    assert list(result.table.headers) == ["企業価値", "時価総額", "PER (会)", "売上", "特徴語"]
    assert len(oracle.calls) == 1


def test_parse_table_accepts_plain_callable_oracle():
    def oracle(system_prompt, user_prompt):
        return json.dumps(VALID_TABLE, ensure_ascii=False)

    assert parse_table(TEXT, oracle=oracle).source == SOURCE_LLM


def test_parse_table_without_oracle_is_heuristic():
    result = parse_table(TEXT)
    assert result.source == SOURCE_HEURISTIC
    assert result.table.rows[0]["code"] == "7203"


def test_validate_parsed_table_drops_identifier_headers():
    data = {
        "headers": ["code", "name", "企業価値", "時価総額", "PER", "売上", "ROE"],
        "rows": [{"code": "7203", "name": "トヨタ", "企業価値": "1億円"}],
    }
    table = validate_parsed_table(data)
    assert list(table.headers) == ["企業価値", "時価総額", "PER", "売上", "ROE"]
    assert table.rows[0]["code"] == "7203"
    assert table.rows[0]["name"] == "トヨタ"


def test_parse_table_falls_back_when_reserved_headers_pad_the_count():
    reply = json.dumps(
        {
            "headers": ["code", "name", "企業価値", "時価総額", "PER"],
            "rows": [{"code": "7203", "name": "トヨタ"}],
        },
        ensure_ascii=False,
    )
    result = parse_table(TEXT, oracle=FakeOracle([reply]))
    assert result.source == SOURCE_HEURISTIC
    assert "code" not in result.table.headers
    assert "name" not in result.table.headers


def test_parse_table_falls_back_when_blank_headers_pad_the_count():
    reply = json.dumps({"headers": ["", " ", "", "PER", "ROE"], "rows": [{"name": "x"}]})
    result = parse_table(TEXT, oracle=FakeOracle([reply]))
    assert result.source == SOURCE_HEURISTIC
    assert len(result.table.headers) == 5
