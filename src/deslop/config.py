from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from deslop.errors import ConfigError

logger = logging.getLogger(__name__)

AgentBackendName = Literal["cursor", "claude"]

CONFIG_FILE_NAME = "deslop.toml"
GLOBAL_DIR_NAME = ".deslop"
DEFAULT_MODEL = "claude-4.5-opus-high"
AGENT_BACKENDS: tuple[str, ...] = ("cursor", "claude")

MODEL_OPTIONS: tuple[tuple[str, str], ...] = (
    ("claude-4.5-opus-high", "Opus High (default, most capable)"),
    ("claude-4.5-sonnet-high", "Sonnet High (fast and capable)"),
    ("claude-4.5-haiku", "Haiku (fastest, cheapest)"),
)


@dataclass(slots=True)
class ModelsConfig:
    planning: str = DEFAULT_MODEL
    executing: str = DEFAULT_MODEL
    verification: str = DEFAULT_MODEL


@dataclass(slots=True)
class VerificationConfig:
    max_retries: int = 3
    timeout: int = 300


@dataclass(slots=True)
class ExecutionConfig:
    max_concurrent_files: int = 0


@dataclass(slots=True)
class AgentConfig:
    backend: AgentBackendName = "cursor"
    binary: str | None = None


@dataclass(slots=True)
class DeslopConfig:
    models: ModelsConfig = field(default_factory=ModelsConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)

    @classmethod
    def default(cls) -> DeslopConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeslopConfig:
        models = _section(data, "models")
        verification = _section(data, "verification")
        execution = _section(data, "execution")
        agent = _section(data, "agent")
        defaults = cls()
        config = cls(
            models=ModelsConfig(
                planning=str(models.get("planning", defaults.models.planning)),
                executing=str(models.get("executing", defaults.models.executing)),
                verification=str(models.get("verification", defaults.models.verification)),
            ),
            verification=VerificationConfig(
                max_retries=verification.get("maxRetries", defaults.verification.max_retries),
                timeout=verification.get("timeout", defaults.verification.timeout),
            ),
            execution=ExecutionConfig(
                max_concurrent_files=execution.get(
                    "maxConcurrentFiles", defaults.execution.max_concurrent_files
                ),
            ),
            agent=AgentConfig(
                backend=agent.get("backend", defaults.agent.backend),
                binary=agent.get("binary") or None,
            ),
        )
        config.validate()
        return config

    def validate(self) -> None:
        for name in ("planning", "executing", "verification"):
            if not getattr(self.models, name).strip():
                raise ConfigError(f"models.{name} must be a non-empty model name.")
        if not _is_int(self.verification.max_retries) or self.verification.max_retries < 1:
            raise ConfigError("verification.maxRetries must be an integer >= 1.")
        if not _is_int(self.verification.timeout) or self.verification.timeout <= 0:
            raise ConfigError("verification.timeout must be an integer number of seconds > 0.")
        if (
            not _is_int(self.execution.max_concurrent_files)
            or self.execution.max_concurrent_files < 0
        ):
            raise ConfigError("execution.maxConcurrentFiles must be an integer >= 0.")
        if self.agent.backend not in AGENT_BACKENDS:
            raise ConfigError(
                f"agent.backend must be one of {', '.join(AGENT_BACKENDS)}, "
                f"got {self.agent.backend!r}."
            )

    def to_dict(self) -> dict[str, dict[str, Any]]:
        agent: dict[str, Any] = {"backend": self.agent.backend}
        if self.agent.binary:
            agent["binary"] = self.agent.binary
        return {
            "models": {
                "planning": self.models.planning,
                "executing": self.models.executing,
                "verification": self.models.verification,
            },
            "verification": {
                "maxRetries": self.verification.max_retries,
                "timeout": self.verification.timeout,
            },
            "execution": {
                "maxConcurrentFiles": self.execution.max_concurrent_files,
            },
            "agent": agent,
        }


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table.")
    return section


@dataclass(slots=True, frozen=True)
class ConfigPaths:
    """Where configuration is looked up; project file first, then global."""

    global_dir: Path

    @classmethod
    def default(cls) -> ConfigPaths:
        return cls(global_dir=Path.home() / GLOBAL_DIR_NAME)

    @property
    def global_file(self) -> Path:
        return self.global_dir / CONFIG_FILE_NAME

    def project_file(self, directory: Path) -> Path:
        return directory / CONFIG_FILE_NAME


SECTION_COMMENTS = {
    "models": [
        "# Model used by each phase:",
        "#   planning      scans the codebase and reviews the applied fixes",
        "#   executing     fixes individual findings",
        "#   verification  repairs code when a verification command fails",
    ],
    "verification": [
        "# maxRetries: verification attempts before asking what to do (>= 1)",
        "# timeout: seconds before a verification command is killed",
    ],
    "execution": [
        "# maxConcurrentFiles: files fixed in parallel, 0 for no limit",
    ],
    "agent": [
        '# backend: "cursor" (cursor-agent) or "claude" (Claude Code CLI)',
    ],
}


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: DeslopConfig) -> str:
    data = config.to_dict()
    lines = ["# deslop configuration", ""]
    for section in ("models", "verification", "execution", "agent"):
        lines.extend(SECTION_COMMENTS[section])
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def _read_file(path: Path) -> DeslopConfig | None:
    if not path.is_file():
        return None
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return None
    try:
        return DeslopConfig.from_dict(data)
    except ConfigError as exc:
        raise ConfigError(f"{path}: {exc}") from exc


def load_config(directory: Path, paths: ConfigPaths) -> DeslopConfig:
    for candidate in (paths.project_file(directory), paths.global_file):
        config = _read_file(candidate)
        if config is not None:
            logger.debug("Loaded configuration from %s", candidate)
            return config
    return DeslopConfig.default()


def load_global_config(paths: ConfigPaths) -> DeslopConfig:
    return _read_file(paths.global_file) or DeslopConfig.default()


def save_config(path: Path, config: DeslopConfig) -> None:
    config.validate()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps_toml(config), encoding="utf-8")


def save_global_config(paths: ConfigPaths, config: DeslopConfig) -> Path:
    save_config(paths.global_file, config)
    return paths.global_file


def create_project_config(directory: Path, paths: ConfigPaths) -> Path:
    path = paths.project_file(directory)
    if path.exists():
        raise ConfigError(f"Config already exists: {path}")
    save_config(path, load_config(directory, paths))
    return path
