"""Configuration management for doit.

Handles:
- .doit/config.yaml parsing
- Environment variable overrides
- .doit/ directory discovery
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Any

import yaml

from doit.id_gen import DEFAULT_PREFIX
from doit.utils import parse_duration

logger = logging.getLogger(__name__)

CONFIG_YAML = "config.yaml"
DOIT_DIR = ".doit"
DEFAULT_DB_NAME = "doit.db"
DEFAULT_TENANT = "default"
DEFAULT_QUERY_TIMEOUT = "10s"
DEFAULT_MAX_LIMIT = 200
DEFAULT_LOG_LEVEL = "warning"


@dataclass
class DoitConfig:
    """User-facing config from config.yaml."""
    id_prefix: str = DEFAULT_PREFIX
    db: str = ""
    tenant: str = DEFAULT_TENANT
    api_key: str = ""
    actor: str = ""
    query_timeout: str = DEFAULT_QUERY_TIMEOUT
    max_limit: int = DEFAULT_MAX_LIMIT
    log_level: str = DEFAULT_LOG_LEVEL
    json_output: bool = False

    @classmethod
    def load(cls, doit_dir: str | None) -> DoitConfig:
        """Load config.yaml from the doit directory, then apply env overrides."""
        cfg = cls()
        if doit_dir:
            config_path = os.path.join(doit_dir, CONFIG_YAML)
            if os.path.exists(config_path):
                with open(config_path) as f:
                    data = yaml.safe_load(f) or {}
                cfg.id_prefix = data.get("id-prefix", DEFAULT_PREFIX)
                cfg.db = data.get("db", "")
                cfg.tenant = data.get("tenant", DEFAULT_TENANT)
                cfg.api_key = data.get("api-key", "")
                cfg.actor = data.get("actor", "")
                cfg.query_timeout = str(data.get("query-timeout", DEFAULT_QUERY_TIMEOUT))
                cfg.max_limit = int(data.get("max-limit", DEFAULT_MAX_LIMIT))
                cfg.log_level = data.get("log-level", DEFAULT_LOG_LEVEL)
                cfg.json_output = bool(data.get("json", False))

        # Environment variable overrides
        if os.environ.get("DOIT_ID_PREFIX"):
            cfg.id_prefix = os.environ["DOIT_ID_PREFIX"]
        if os.environ.get("DOIT_DB"):
            cfg.db = os.environ["DOIT_DB"]
        if os.environ.get("DOIT_TENANT"):
            cfg.tenant = os.environ["DOIT_TENANT"]
        if os.environ.get("DOIT_API_KEY"):
            cfg.api_key = os.environ["DOIT_API_KEY"]
        if os.environ.get("DOIT_ACTOR"):
            cfg.actor = os.environ["DOIT_ACTOR"]
        if os.environ.get("DOIT_QUERY_TIMEOUT"):
            cfg.query_timeout = os.environ["DOIT_QUERY_TIMEOUT"]
        if os.environ.get("DOIT_MAX_LIMIT"):
            try:
                cfg.max_limit = int(os.environ["DOIT_MAX_LIMIT"])
            except ValueError:
                logger.warning("ignoring non-integer DOIT_MAX_LIMIT=%r",
                               os.environ["DOIT_MAX_LIMIT"])
        if os.environ.get("DOIT_LOG_LEVEL"):
            cfg.log_level = os.environ["DOIT_LOG_LEVEL"]
        if os.environ.get("DOIT_JSON"):
            cfg.json_output = os.environ["DOIT_JSON"].lower() in ("1", "true", "yes")

        return cfg

    def save(self, doit_dir: str) -> None:
        """Save config to config.yaml. Secrets are never written."""
        config_path = os.path.join(doit_dir, CONFIG_YAML)
        data: dict[str, Any] = {"id-prefix": self.id_prefix, "tenant": self.tenant}
        if self.db:
            data["db"] = self.db
        if self.actor:
            data["actor"] = self.actor
        if self.query_timeout != DEFAULT_QUERY_TIMEOUT:
            data["query-timeout"] = self.query_timeout
        if self.max_limit != DEFAULT_MAX_LIMIT:
            data["max-limit"] = self.max_limit
        if self.log_level != DEFAULT_LOG_LEVEL:
            data["log-level"] = self.log_level
        if self.json_output:
            data["json"] = self.json_output

        with open(config_path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False)

    def query_timeout_seconds(self) -> float:
        delta = parse_duration(self.query_timeout)
        if delta is None or delta.total_seconds() <= 0:
            logger.warning("invalid query timeout %r, using %s",
                           self.query_timeout, DEFAULT_QUERY_TIMEOUT)
            delta = parse_duration(DEFAULT_QUERY_TIMEOUT)
        return delta.total_seconds()

    def clamp_limit(self, limit: int) -> int:
        """Bound a requested page size by max_limit (0 means 'as many as allowed')."""
        if self.max_limit <= 0:
            return limit
        if limit <= 0:
            return self.max_limit
        return min(limit, self.max_limit)


def find_doit_dir(start: str | None = None) -> str | None:
    """Walk up from start directory to find .doit/ directory.

    Returns absolute path to .doit/ directory, or None if not found.
    """
    if start is None:
        start = os.getcwd()
    current = os.path.abspath(start)
    while True:
        candidate = os.path.join(current, DOIT_DIR)
        if os.path.isdir(candidate):
            return candidate
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def get_db_path(doit_dir: str, config: DoitConfig | None = None) -> str:
    """Get the full path to the SQLite database."""
    if config and config.db:
        if os.path.isabs(config.db) or config.db == ":memory:":
            return config.db
        return os.path.join(doit_dir, config.db)
    return os.path.join(doit_dir, DEFAULT_DB_NAME)


def get_actor(config: DoitConfig | None = None) -> str:
    """Get the actor name for audit trails."""
    if config and config.actor:
        return config.actor
    try:
        result = subprocess.run(
            ["git", "config", "user.email"],
            capture_output=True, text=True, timeout=5
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass
    return os.environ.get("USER", "unknown")
