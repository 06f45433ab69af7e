# src/checktree/core/config.py
"""
Configuration schema and loading for checktree.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from checktree.contracts.enums import MIXED, CheckedState


class ModelSettings(BaseModel):
    """Checked-state behaviour of the tree model.

    Example YAML:
        model:
          strict: true
          multi_state: true
          create_for_all: true
          default_state: false
          root_participates: false
          checked_attr: checked
          query:
            type: continent
    """

    model_config = {"frozen": True}

    strict: bool = Field(
        default=True,
        description="Maintain the parent/child state invariant automatically",
    )
    multi_state: bool = Field(
        default=True,
        description="Allow the 'mixed' state in addition to true/false",
    )
    create_for_all: bool = Field(
        default=True,
        description="Give every item a state even when the store has none",
    )
    default_state: bool | CheckedState = Field(
        default=False,
        description="State synthesized for items without a stored state",
    )
    root_participates: bool = Field(
        default=False,
        description="Give the fabricated root item a checked state",
    )
    checked_attr: str = Field(
        default="checked",
        min_length=1,
        description="Store attribute holding the checked state",
    )
    root_id: str = Field(default="$root$", min_length=1, description="Identity of the fabricated root item")
    root_label: str = Field(default="ROOT", description="Label of the fabricated root item")
    query: dict[str, Any] | None = Field(
        default=None,
        description="Attribute/value pairs selecting the children of the root",
    )
    children_attrs: list[str] = Field(
        default_factory=lambda: ["children"],
        description="Store attributes that hold child references",
    )

    @field_validator("children_attrs")
    @classmethod
    def validate_children_attrs_not_empty(cls, v: list[str]) -> list[str]:
        """At least one children attribute is required."""
        if not v:
            raise ValueError("children_attrs must name at least one attribute")
        return v

    @model_validator(mode="after")
    def validate_default_state(self) -> "ModelSettings":
        """A mixed default is only meaningful in multi-state mode."""
        if self.default_state == MIXED and not self.multi_state:
            raise ValueError("default_state 'mixed' requires multi_state to be enabled")
        return self

    @property
    def query_attrs(self) -> frozenset[str]:
        """Attribute names used by the top-level query."""
        return frozenset(self.query) if self.query else frozenset()


class StoreSettings(BaseModel):
    """Backing store configuration.

    Example YAML:
        store:
          backend: sqlite
          url: sqlite:///./tree.db
          data_file: ./countries.json
    """

    model_config = {"frozen": True}

    backend: Literal["memory", "sqlite"] = Field(
        default="memory",
        description="Store adapter: in-memory item file or SQLAlchemy database",
    )
    # NOTE: str instead of Path - Path mangles URLs like "postgresql://host/db"
    url: str = Field(
        default="sqlite:///:memory:",
        description="SQLAlchemy database URL (sqlite backend only)",
    )
    data_file: Path | None = Field(
        default=None,
        description="JSON or YAML item file to load at startup",
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    model_config = {"frozen": True}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="WARNING", description="Log level")
    json_output: bool = Field(default=False, description="Emit JSON log lines instead of console output")


class CheckTreeSettings(BaseModel):
    """Top-level checktree configuration.

    All sections are optional; an empty settings file yields the defaults.
    """

    model_config = {"frozen": True}

    model: ModelSettings = Field(default_factory=ModelSettings, description="Tree model behaviour")
    store: StoreSettings = Field(default_factory=StoreSettings, description="Backing store")
    logging: LoggingSettings = Field(default_factory=LoggingSettings, description="Logging")


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Unset variables without a default are left as-is so validation reports them.
    """

    def replacer(match: re.Match[str]) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        if match.group(2) is not None:
            return match.group(2)
        return match.group(0)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _ENV_VAR_PATTERN.sub(replacer, value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_section_keys(section: Any) -> Any:
    """Lowercase the keys of one settings section.

    Only one level deep: query values are user data and keep their case.
    """
    if isinstance(section, dict):
        return {str(k).lower(): v for k, v in section.items()}
    return section


def load_settings(config_path: Path) -> CheckTreeSettings:
    """Load settings from a YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (CHECKTREE_*) - highest priority
    2. Config file
    3. Defaults from the Pydantic schema - lowest priority

    Environment variable format: CHECKTREE_MODEL__STRICT=false for nested keys.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated CheckTreeSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="CHECKTREE",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = {k: _lower_section_keys(v) for k, v in raw_config.items()}
    raw_config = _expand_env_vars(raw_config)

    return CheckTreeSettings(**raw_config)


def resolve_config(settings: CheckTreeSettings) -> dict[str, Any]:
    """Convert validated settings to a JSON-safe dict (explicit + defaults)."""
    return settings.model_dump(mode="json")
