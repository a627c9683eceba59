"""Runtime configuration, read from ``WASTESORT_*`` environment variables.

========================================  ===============================
Variable                                  Default
========================================  ===============================
``WASTESORT_LEDGER_PATH``                 ``var/ledger.jsonl``
``WASTESORT_AUDIT_DB``                    ``var/audit.db``
``WASTESORT_INDEX_RETRIES``               ``3``
``WASTESORT_RECONCILE_LIMIT``             ``256``
``WASTESORT_SUBMIT_TIMEOUT``              ``60`` (seconds)
``WASTESORT_DISCLOSE_TIMEOUT``            ``30`` (seconds)
``WASTESORT_DECRYPT_LATENCY``             ``1.5`` (seconds)
``WASTESORT_CHAIN_ID``                    ``11155111``
``WASTESORT_CONTRACT_ADDRESS``            ``0x0000000000000000000000000000000000000000``
``WASTESORT_LOG_LEVEL``                   ``INFO``
``WASTESORT_LOG_JSON``                    ``1``
========================================  ===============================
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""


def _get_int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{name} must be >= 0, got {value}")
    return value


_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be one of {_TRUE + _FALSE}, got {raw!r}")


def _get_log_level(env: Mapping[str, str], name: str, default: str) -> str:
    value = (env.get(name) or default).strip().upper()
    if value not in _LOG_LEVELS:
        raise ConfigError(f"{name} must be one of {_LOG_LEVELS}, got {value!r}")
    return value


@dataclass(frozen=True)
class LedgerConfig:
    ledger_path: Path = Path("var/ledger.jsonl")
    audit_db: Path = Path("var/audit.db")
    index_retries: int = 3
    reconcile_limit: int = 256
    submit_timeout: float = 60.0
    disclose_timeout: float = 30.0
    decrypt_latency: float = 1.5
    chain_id: int = 11155111
    contract_address: str = "0x0000000000000000000000000000000000000000"
    log_level: str = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "LedgerConfig":
        """Build a config from *env* (defaults to ``os.environ``).

        Raises
        ------
        ConfigError
            If a variable is present but malformed.
        """
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            ledger_path=Path(env.get("WASTESORT_LEDGER_PATH") or defaults.ledger_path),
            audit_db=Path(env.get("WASTESORT_AUDIT_DB") or defaults.audit_db),
            index_retries=_get_int(env, "WASTESORT_INDEX_RETRIES", defaults.index_retries, minimum=1),
            reconcile_limit=_get_int(env, "WASTESORT_RECONCILE_LIMIT", defaults.reconcile_limit, minimum=1),
            submit_timeout=_get_float(env, "WASTESORT_SUBMIT_TIMEOUT", defaults.submit_timeout),
            disclose_timeout=_get_float(env, "WASTESORT_DISCLOSE_TIMEOUT", defaults.disclose_timeout),
            decrypt_latency=_get_float(env, "WASTESORT_DECRYPT_LATENCY", defaults.decrypt_latency),
            chain_id=_get_int(env, "WASTESORT_CHAIN_ID", defaults.chain_id),
            contract_address=env.get("WASTESORT_CONTRACT_ADDRESS") or defaults.contract_address,
            log_level=_get_log_level(env, "WASTESORT_LOG_LEVEL", defaults.log_level),
            log_json=_get_bool(env, "WASTESORT_LOG_JSON", defaults.log_json),
        )
