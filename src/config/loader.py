"""
Config loader: YAML file -> frozen dataclass tree.

The admin key is resolved from the environment (MARKET_ADMIN_KEY); the config
file holds only non-secret values.
"""

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

ADMIN_KEY_ENV = "MARKET_ADMIN_KEY"


@dataclass(frozen=True)
class StoreConfig:
    path: str = "data/market.db"


@dataclass(frozen=True)
class SessionsConfig:
    window_minutes: float = 10.0
    enforce_window: bool = False


@dataclass(frozen=True)
class ExecutionConfig:
    margin_ratio: float = 0.5
    commit_retries: int = 3
    retry_backoff_s: float = 0.05


@dataclass(frozen=True)
class JournalConfig:
    path: str = "data/journal.jsonl"
    echo_stdout: bool = False


@dataclass(frozen=True)
class AlertingConfig:
    structured_logs: bool = True
    webhook_url: str = ""


@dataclass(frozen=True)
class AppConfig:
    store: StoreConfig
    sessions: SessionsConfig
    execution: ExecutionConfig
    journal: JournalConfig
    alerting: AlertingConfig = AlertingConfig()
    roster_path: str = ""
    admin_key: str = ""


def load_config(path: str | Path = "config.yaml") -> AppConfig:
    """
    Load configuration from a YAML file.

    The admin key is read from the MARKET_ADMIN_KEY environment variable.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    st_raw = raw.get("store") or {}
    st_cfg = StoreConfig(path=str(st_raw.get("path", "data/market.db")))

    se_raw = raw.get("sessions") or {}
    se_cfg = SessionsConfig(
        window_minutes=float(se_raw.get("window_minutes", 10)),
        enforce_window=bool(se_raw.get("enforce_window", False)),
    )
    if se_cfg.window_minutes <= 0:
        raise ValueError(f"sessions.window_minutes must be positive, got {se_cfg.window_minutes}")

    ex_raw = raw.get("execution") or {}
    ex_cfg = ExecutionConfig(
        margin_ratio=float(ex_raw.get("margin_ratio", 0.5)),
        commit_retries=int(ex_raw.get("commit_retries", 3)),
        retry_backoff_s=float(ex_raw.get("retry_backoff_s", 0.05)),
    )
    if not 0 <= ex_cfg.margin_ratio <= 1:
        raise ValueError(f"execution.margin_ratio must be within [0, 1], got {ex_cfg.margin_ratio}")

    j_raw = raw.get("journal") or {}
    j_cfg = JournalConfig(
        path=str(j_raw.get("path", "data/journal.jsonl")),
        echo_stdout=bool(j_raw.get("echo_stdout", False)),
    )

    a_raw = raw.get("alerting") or {}
    a_cfg = AlertingConfig(
        structured_logs=bool(a_raw.get("structured_logs", True)),
        webhook_url=str(a_raw.get("webhook_url", "")),
    )

    return AppConfig(
        store=st_cfg,
        sessions=se_cfg,
        execution=ex_cfg,
        journal=j_cfg,
        alerting=a_cfg,
        roster_path=str(raw.get("roster", "") or ""),
        admin_key=os.environ.get(ADMIN_KEY_ENV, ""),
    )
