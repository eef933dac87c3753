from __future__ import annotations

import re
from dataclasses import dataclass


class DeslopError(RuntimeError):
    """Base class for errors raised by deslop."""


class ConfigError(DeslopError):
    """Raised when a configuration value is out of range."""


class CredentialError(DeslopError):
    """Raised when no API key can be resolved."""


class InvalidTransitionError(DeslopError):
    """Raised when an operation is invoked in a phase that does not allow it."""


class PublishError(DeslopError):
    """Raised when a git or gh step of pull-request creation fails."""


class AgentExecutionError(DeslopError):
    """Raised when an agent process or its event stream fails."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.exit_code = exit_code


class AgentProcessError(AgentExecutionError):
    """Raised when the agent executable cannot be started."""


@dataclass(slots=True)
class ParsedError:
    title: str
    message: str
    hint: str | None = None


_NOISE_PATTERN = re.compile(r"\[unknown\]\s*|ConnectError:\s*", re.IGNORECASE)
_QUOTED_PATTERN = re.compile(r'"([^"]+)"')


def parse_error(exc: BaseException | str) -> ParsedError:
    raw = str(exc)
    lowered = raw.lower()

    if "invalid api key" in lowered:
        return ParsedError(
            title="Invalid API Key",
            message="The provided Cursor API key is invalid.",
            hint=(
                "Get your API key from: https://cursor.com/settings/api\n"
                "Set it with: export CURSOR_API_KEY=your_key_here"
            ),
        )
    if "enotfound" in lowered or "econnrefused" in lowered or "connection refused" in lowered:
        return ParsedError(
            title="Connection Failed",
            message="Could not connect to the agent API.",
            hint="Check your internet connection and try again.",
        )
    if "timeout" in lowered or "timed out" in lowered or "etimedout" in lowered:
        return ParsedError(
            title="Request Timeout",
            message="The request to the agent API timed out.",
            hint="Try again later or check your connection.",
        )
    if "rate limit" in lowered or "429" in raw:
        return ParsedError(
            title="Rate Limited",
            message="Too many requests. Please wait before trying again.",
            hint="Wait a few minutes and try again.",
        )
    if "model" in lowered and ("not found" in lowered or "not valid" in lowered or "invalid" in lowered):
        match = _QUOTED_PATTERN.search(raw)
        model_name = match.group(1) if match else "unknown"
        return ParsedError(
            title="Invalid Model",
            message=f'Model "{model_name}" is not valid.',
            hint=(
                "Check ~/.deslop/deslop.toml or the project deslop.toml for valid model names.\n"
                "Run `deslop config` to pick a model."
            ),
        )

    cleaned = _NOISE_PATTERN.sub("", raw).strip()
    return ParsedError(title="Error", message=cleaned or "An unknown error occurred.")
