"""
Configuration loaders.

App config:  reads config.yaml, resolves the admin key from the environment.
Roster:      reads roster.default.json (or override), validates against JSON Schema.
"""

from config.loader import (
    AlertingConfig,
    AppConfig,
    ExecutionConfig,
    JournalConfig,
    SessionsConfig,
    StoreConfig,
    load_config,
)
from config.roster import Roster, RosterError, load_roster

__all__ = [
    # App config (YAML)
    "AlertingConfig",
    "AppConfig",
    "ExecutionConfig",
    "JournalConfig",
    "SessionsConfig",
    "StoreConfig",
    "load_config",
    # Roster (JSON + schema)
    "Roster",
    "RosterError",
    "load_roster",
]
