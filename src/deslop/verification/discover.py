from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from deslop.models import CommandType, VerificationCommand

logger = logging.getLogger(__name__)

TYPE_PRIORITY: dict[str, int] = {"build": 0, "typecheck": 1, "test": 2, "lint": 3}
OPTIONAL_TYPES = {"typecheck", "lint"}
MAKE_TARGET_PATTERN = re.compile(r"^([A-Za-z_][A-Za-z0-9_-]*):", re.MULTILINE)


@dataclass(slots=True)
class DiscoveryResult:
    commands: list[VerificationCommand] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)


def create_command(command_id: str, command: str, command_type: CommandType) -> VerificationCommand:
    return VerificationCommand(
        id=command_id,
        name=command_id.replace("-", " "),
        command=command,
        type=command_type,
        optional=command_type in OPTIONAL_TYPES,
    )


def _ordered(commands: list[VerificationCommand]) -> list[VerificationCommand]:
    return sorted(commands, key=lambda command: TYPE_PRIORITY[command.type])


def _from_package_json(directory: Path) -> list[VerificationCommand]:
    path = directory / "package.json"
    if not path.is_file():
        return []
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable package.json: %s", exc)
        return []
    scripts = payload.get("scripts") if isinstance(payload, dict) else None
    if not isinstance(scripts, dict):
        return []

    commands: list[VerificationCommand] = []
    if scripts.get("build"):
        commands.append(create_command("build", "npm run build", "build"))
    if scripts.get("typecheck"):
        commands.append(create_command("typecheck", "npm run typecheck", "typecheck"))
    elif scripts.get("type-check"):
        commands.append(create_command("typecheck", "npm run type-check", "typecheck"))
    if scripts.get("test"):
        commands.append(create_command("test", "npm run test", "test"))
    if scripts.get("lint"):
        commands.append(create_command("lint", "npm run lint", "lint"))
    return commands


def _from_cargo(directory: Path) -> list[VerificationCommand]:
    if not (directory / "Cargo.toml").is_file():
        return []
    return [
        create_command("cargo-build", "cargo build", "build"),
        create_command("cargo-test", "cargo test", "test"),
        create_command("cargo-clippy", "cargo clippy -- -D warnings", "lint"),
    ]


def _from_pyproject(directory: Path) -> list[VerificationCommand]:
    path = directory / "pyproject.toml"
    if not path.is_file():
        return []
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable pyproject.toml: %s", exc)
        return []

    commands: list[VerificationCommand] = []
    if "[tool.mypy]" in content or "mypy" in content:
        commands.append(create_command("mypy", "mypy .", "typecheck"))
    if "[tool.pytest" in content or "pytest" in content:
        commands.append(create_command("pytest", "pytest", "test"))
    if "[tool.ruff]" in content or "ruff" in content:
        commands.append(create_command("ruff", "ruff check .", "lint"))
    return commands


def _from_go_mod(directory: Path) -> list[VerificationCommand]:
    if not (directory / "go.mod").is_file():
        return []
    return [
        create_command("go-build", "go build ./...", "build"),
        create_command("go-test", "go test ./...", "test"),
        create_command("go-vet", "go vet ./...", "lint"),
    ]


def make_targets(content: str) -> list[str]:
    return MAKE_TARGET_PATTERN.findall(content)


def _from_makefile(directory: Path) -> list[VerificationCommand]:
    path = directory / "Makefile"
    if not path.is_file():
        return []
    try:
        targets = set(make_targets(path.read_text(encoding="utf-8")))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable Makefile: %s", exc)
        return []

    commands: list[VerificationCommand] = []
    if "build" in targets:
        commands.append(create_command("make-build", "make build", "build"))
    if "test" in targets:
        commands.append(create_command("make-test", "make test", "test"))
    if "lint" in targets:
        commands.append(create_command("make-lint", "make lint", "lint"))
    if "typecheck" in targets:
        commands.append(create_command("make-typecheck", "make typecheck", "typecheck"))
    elif "type-check" in targets:
        commands.append(create_command("make-typecheck", "make type-check", "typecheck"))
    return commands


ECOSYSTEM_PROBES: list[tuple[str, Callable[[Path], list[VerificationCommand]]]] = [
    ("package.json", _from_package_json),
    ("Cargo.toml", _from_cargo),
    ("pyproject.toml", _from_pyproject),
    ("go.mod", _from_go_mod),
    ("Makefile", _from_makefile),
]


def discover_verification_commands(directory: Path) -> DiscoveryResult:
    """Commands of the first ecosystem that yields any, in build/typecheck/test/lint order."""
    for source, probe in ECOSYSTEM_PROBES:
        commands = probe(directory)
        if commands:
            logger.debug("Discovered %d verification commands from %s", len(commands), source)
            return DiscoveryResult(commands=_ordered(commands), sources=[source])
    return DiscoveryResult()
