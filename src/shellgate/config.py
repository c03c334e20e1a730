"""Configuration for shellgate.

Settings Loading Priority (highest to lowest):
    1. Constructor arguments (CLI flags, ``--config`` file)
    2. Environment variables (SHELLGATE_* prefix)
    3. Project config (./.shellgate/settings.json)
    4. User config (~/.shellgate/settings.json)
    5. .env file
    6. Default values

User pattern rules can be given inline (``extra_rules``) or in a YAML file
(``rules_file``) with a top-level ``rules:`` list.
"""

import re
from pathlib import Path
from typing import Any, Literal, Tuple, Type

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from shellgate.errors import ConfigurationError
from shellgate.gate.models import (
    MatcherKind,
    MatchScope,
    PatternRule,
    RuleCategory,
    SafetyMode,
    Severity,
)

APP_NAME = "shellgate"


class RuleSpec(BaseModel):
    """User-defined pattern rule as written in settings or a rules file."""

    id: str = Field(min_length=1)
    pattern: str = Field(min_length=1)
    category: RuleCategory
    severity: Severity
    matcher: MatcherKind = MatcherKind.REGEX
    scope: MatchScope = MatchScope.SEGMENT
    container_only: bool = False
    description: str = ""

    @model_validator(mode="after")
    def _check_regex(self) -> "RuleSpec":
        if self.matcher == MatcherKind.REGEX:
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"rule {self.id!r}: invalid regex: {e}") from e
        return self

    def to_rule(self) -> PatternRule:
        return PatternRule(
            id=self.id,
            pattern=self.pattern,
            category=self.category,
            severity=self.severity,
            matcher=self.matcher,
            scope=self.scope,
            container_only=self.container_only,
            description=self.description,
        )


class _RulesFile(BaseModel):
    rules: list[RuleSpec] = Field(default_factory=list)


def load_rules_file(path: str | Path) -> list[RuleSpec]:
    """Load rule specs from a YAML file with a top-level ``rules:`` list.

    Raises:
        ConfigurationError: If the file is unreadable or invalid.
    """
    path = Path(path).expanduser()
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read rules file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in rules file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Rules file {path} must be a mapping with a 'rules' list")
    try:
        return _RulesFile.model_validate(data).rules
    except ValidationError as e:
        raise ConfigurationError(f"Invalid rules file {path}:\n{e}") from e


def _get_json_config_source(
    settings_cls: Type[BaseSettings],
    json_file: Path,
) -> PydanticBaseSettingsSource | None:
    """Create a JSON config source if the file exists."""
    if not json_file.exists():
        return None
    return JsonConfigSettingsSource(settings_cls, json_file=json_file)


class GateSettings(BaseSettings):
    """Settings for the command safety gate."""

    model_config = SettingsConfigDict(
        env_prefix="SHELLGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Policy
    safety_mode: SafetyMode = Field(
        default=SafetyMode.CONFIRM,
        title="Safety Mode",
        description="confirm, safe_yolo (-y), root_yolo (-yy) or full_yolo (-yyy)",
    )
    dry_run: bool = Field(
        default=False,
        description="Evaluate commands without executing them",
    )

    # Execution target (at most one)
    distrobox: str | None = Field(default=None, description="Run inside this distrobox")
    docker: str | None = Field(default=None, description="Run inside this docker container")
    podman: str | None = Field(default=None, description="Run inside this podman container")

    # Host execution
    shell: str | None = Field(
        default=None,
        description="Host shell executable (default: $SHELL, then /bin/sh)",
    )
    save_shell_history: bool = Field(
        default=False,
        description="Append successful host commands to the shell's history file",
    )
    timeout_seconds: float | None = Field(default=None, gt=0)
    max_output_bytes: int = Field(default=1_000_000, gt=0)

    # Pattern catalog
    extra_rules: list[RuleSpec] = Field(default_factory=list)
    disabled_rules: list[str] = Field(default_factory=list)
    rules_file: Path | None = Field(
        default=None,
        description="YAML file with additional rules under a top-level 'rules:' key",
    )

    # Audit
    audit_enabled: bool = True
    audit_dir: str = "~/.local/share/shellgate/audit"
    audit_retention_days: int = Field(default=30, ge=1)

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="warning",
        title="Log Level",
    )
    log_format: Literal["console", "json"] = Field(
        default="console",
        title="Log Format",
    )

    @field_validator("distrobox", "docker", "podman", "shell", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _single_target(self) -> "GateSettings":
        selected = [name for name in ("distrobox", "docker", "podman") if getattr(self, name)]
        if len(selected) > 1:
            raise ValueError(f"only one execution target may be set, got: {', '.join(selected)}")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Layer JSON configuration files between env vars and .env.

        JSON sources are only included if the files exist.
        """
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
        ]

        project_json = _get_json_config_source(
            settings_cls,
            Path.cwd() / f".{APP_NAME}" / "settings.json",
        )
        if project_json:
            sources.append(project_json)

        user_json = _get_json_config_source(
            settings_cls,
            Path.home() / f".{APP_NAME}" / "settings.json",
        )
        if user_json:
            sources.append(user_json)

        sources.append(dotenv_settings)
        return tuple(sources)

    def rule_specs(self) -> list[RuleSpec]:
        """Inline rules followed by rules from ``rules_file``."""
        specs = list(self.extra_rules)
        if self.rules_file is not None:
            specs.extend(load_rules_file(self.rules_file))
        return specs


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML (or JSON) settings file given with ``--config``."""
    path = Path(path).expanduser()
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def load_settings(config_file: str | Path | None = None, **overrides: Any) -> GateSettings:
    """Build settings from all sources plus explicit overrides.

    Overrides set to None are ignored so unset CLI flags do not mask
    lower-priority sources.

    Raises:
        ConfigurationError: If any value fails validation.
    """
    values: dict[str, Any] = load_config_file(config_file) if config_file else {}
    values.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return GateSettings(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings:\n{e}") from e
