from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..validation.rules import DomainRules, get_rules, with_overrides

"""Config loader.

Responsibilities:
- Load YAML (``config/ingest.yml`` by default)
- Validate against the bundled ``config_schema.json``
- Apply defaults (no database section -> connect from environment only,
  error logs under ``./logs``)
- Apply per-domain overrides (header policy / scan limit) to the rule table
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "DatabaseConfig",
    "DomainOverrides",
    "IngestConfig",
    "SCHEMA_PATH",
    "load_config",
    "rules_for",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/ingest.yml")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class DomainOverrides:
    header_policy: str | None = None
    header_scan_limit: int | None = None


@dataclass(frozen=True)
class IngestConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    domains: dict[str, DomainOverrides] = field(default_factory=dict)
    error_log_dir: str = "logs"

    @staticmethod
    def default() -> IngestConfig:
        return IngestConfig()


def _validate_config_schema(data: Any) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing / not JSON, or the data violates it
            (unknown keys, wrong types, bad header policy, ...).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path) -> IngestConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    _validate_config_schema(data)

    db_raw = data.get("database", {})
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    domains = {
        name: DomainOverrides(
            header_policy=raw.get("header_policy"),
            header_scan_limit=raw.get("header_scan_limit"),
        )
        for name, raw in data.get("domains", {}).items()
    }
    return IngestConfig(
        database=db,
        domains=domains,
        error_log_dir=data.get("error_log_dir", "logs"),
    )


def rules_for(cfg: IngestConfig, name: str) -> DomainRules:
    """Rule table for ``name`` with the config overrides applied."""
    rules = get_rules(name)
    overrides = cfg.domains.get(rules.name)
    if overrides is None:
        return rules
    return with_overrides(
        rules,
        header_policy=overrides.header_policy,
        header_scan_limit=overrides.header_scan_limit,
    )
