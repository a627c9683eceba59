"""Tests for wastesort_core.config."""
from pathlib import Path

import pytest

from wastesort_core.config import ConfigError, LedgerConfig


def test_defaults_from_empty_env() -> None:
    config = LedgerConfig.from_env({})
    assert config == LedgerConfig()
    assert config.index_retries == 3
    assert config.decrypt_latency == 1.5


def test_values_from_env() -> None:
    config = LedgerConfig.from_env(
        {
            "WASTESORT_LEDGER_PATH": "/tmp/l.jsonl",
            "WASTESORT_INDEX_RETRIES": "7",
            "WASTESORT_DISCLOSE_TIMEOUT": "2.5",
            "WASTESORT_CHAIN_ID": "1",
            "WASTESORT_LOG_LEVEL": "debug",
            "WASTESORT_LOG_JSON": "no",
        }
    )
    assert config.ledger_path == Path("/tmp/l.jsonl")
    assert config.index_retries == 7
    assert config.disclose_timeout == 2.5
    assert config.chain_id == 1
    assert config.log_level == "DEBUG"
    assert config.log_json is False


@pytest.mark.parametrize(
    "env",
    [
        {"WASTESORT_INDEX_RETRIES": "three"},
        {"WASTESORT_INDEX_RETRIES": "0"},
        {"WASTESORT_DECRYPT_LATENCY": "-1"},
        {"WASTESORT_SUBMIT_TIMEOUT": "soon"},
        {"WASTESORT_LOG_JSON": "ture"},
        {"WASTESORT_LOG_LEVEL": "verbose"},
    ],
)
def test_malformed_env_raises(env: dict) -> None:
    with pytest.raises(ConfigError):
        LedgerConfig.from_env(env)


@pytest.mark.parametrize("raw, expected", [("1", True), ("TRUE", True), ("off", False), ("0", False)])
def test_boolean_spellings(raw: str, expected: bool) -> None:
    assert LedgerConfig.from_env({"WASTESORT_LOG_JSON": raw}).log_json is expected
