"""
Configuration loaders for ralph.

Database settings come from the environment (DB_FILE_NAME, DB_DISABLE_WAL).
Agent and draft settings come from an optional ralph.yaml. If no config
file exists, defaults match the built-in behavior.

Example ralph.yaml:

    agent:
      command: claude
      model: sonnet
      max_budget_usd: 1.5
      permission_mode: acceptEdits
      max_turns:
        generate: 10
        feedback: 10
        patch: 3
    draft:
      debounce_ms: 500
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "ralph.yaml"
DEFAULT_HOME = Path.home() / ".ralph"

# Agent runs, in wizard order
DEFAULT_MAX_TURNS = {
    "generate": 10,
    "feedback": 10,
    "patch": 3,
}

DEFAULT_DEBOUNCE_MS = 500


class ConfigError(Exception):
    """Configuration value has the wrong type or is out of range."""
    pass


@dataclass
class AgentConfig:
    """Agent CLI settings from the `agent` section of ralph.yaml."""
    command: str = "claude"
    model: Optional[str] = None
    max_budget_usd: Optional[float] = None
    permission_mode: str = "acceptEdits"
    max_turns: dict[str, int] = field(default_factory=lambda: DEFAULT_MAX_TURNS.copy())


@dataclass
class RalphConfig:
    db_file: Path
    disable_wal: bool = False
    agent: AgentConfig = field(default_factory=AgentConfig)
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    log_file: Path = DEFAULT_HOME / "ralph.log"

    @property
    def db_url(self) -> str:
        if str(self.db_file) == ":memory:":
            return "sqlite://"
        return f"sqlite:///{self.db_file}"


def find_config_file(cwd: Optional[Path] = None) -> Optional[Path]:
    """Locate ralph.yaml: $RALPH_CONFIG, then ./ralph.yaml, then ~/.ralph/ralph.yaml."""
    explicit = os.environ.get("RALPH_CONFIG")
    if explicit:
        return Path(explicit)

    local = (cwd or Path.cwd()) / CONFIG_FILE_NAME
    if local.exists():
        return local

    home = DEFAULT_HOME / CONFIG_FILE_NAME
    if home.exists():
        return home
    return None


def _load_yaml(config_path: Optional[Path]) -> dict:
    if config_path is None or not config_path.exists():
        return {}
    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {config_path}: top level must be a mapping")
        return {}
    return data


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _load_agent_config(data: dict) -> AgentConfig:
    if not isinstance(data, dict):
        raise ConfigError("'agent' must be a mapping")

    max_turns = DEFAULT_MAX_TURNS.copy()
    overrides = data.get("max_turns") or {}
    if not isinstance(overrides, dict):
        raise ConfigError("'agent.max_turns' must be a mapping of run name to turns")
    for run, turns in overrides.items():
        if run not in DEFAULT_MAX_TURNS:
            logger.warning(f"Unknown agent run '{run}' in max_turns, ignoring")
            continue
        if not isinstance(turns, int) or turns < 1:
            raise ConfigError(f"'agent.max_turns.{run}' must be a positive integer, got {turns!r}")
        max_turns[run] = turns

    budget = data.get("max_budget_usd")
    if budget is not None and (not isinstance(budget, (int, float)) or budget <= 0):
        raise ConfigError(f"'agent.max_budget_usd' must be a positive number, got {budget!r}")

    return AgentConfig(
        command=str(data.get("command", "claude")),
        model=data.get("model"),
        max_budget_usd=float(budget) if budget is not None else None,
        permission_mode=str(data.get("permission_mode", "acceptEdits")),
        max_turns=max_turns,
    )


def load_config(config_path: Optional[Path] = None) -> RalphConfig:
    """Load configuration from the environment and ralph.yaml.

    Raises:
        ConfigError: If a value in ralph.yaml has the wrong type.
    """
    if config_path is None:
        config_path = find_config_file()
    data = _load_yaml(config_path)

    agent = _load_agent_config(data.get("agent") or {})

    draft = data.get("draft") or {}
    debounce_ms = draft.get("debounce_ms", DEFAULT_DEBOUNCE_MS) if isinstance(draft, dict) else DEFAULT_DEBOUNCE_MS
    if not isinstance(debounce_ms, int) or debounce_ms < 0:
        raise ConfigError(f"'draft.debounce_ms' must be a non-negative integer, got {debounce_ms!r}")

    db_file = os.environ.get("DB_FILE_NAME")
    log_file = os.environ.get("RALPH_LOG_FILE")

    return RalphConfig(
        db_file=Path(db_file).expanduser() if db_file else DEFAULT_HOME / "ralph.db",
        disable_wal=_parse_bool(os.environ.get("DB_DISABLE_WAL", "false")),
        agent=agent,
        debounce_ms=debounce_ms,
        log_file=Path(log_file).expanduser() if log_file else DEFAULT_HOME / "ralph.log",
    )
