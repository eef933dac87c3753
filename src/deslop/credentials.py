from __future__ import annotations

import base64
import binascii
import logging
import os
import shutil
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

API_KEY_ENV_VAR = "CURSOR_API_KEY"


@dataclass(slots=True, frozen=True)
class CredentialStore:
    """Where the agent API key lives outside the environment.

    The platform secret store is tried first (macOS keychain via
    ``security``, Linux Secret Service via ``secret-tool``); the base64
    file under ``file_path`` is the fallback everywhere else.
    """

    file_path: Path
    service: str = "deslop"
    account: str = "api-key"
    platform: str = sys.platform

    @classmethod
    def default(cls) -> CredentialStore:
        return cls(file_path=Path.home() / ".deslop" / ".credentials")

    def _run(
        self, args: list[str], input_text: str | None = None
    ) -> subprocess.CompletedProcess[str] | None:
        if shutil.which(args[0]) is None:
            return None
        try:
            return subprocess.run(
                args,
                text=True,
                capture_output=True,
                input=input_text,
                check=False,
            )
        except OSError as exc:
            logger.debug("Secret store command %s failed: %s", args[0], exc)
            return None

    def _keychain_args(self, action: str) -> list[str]:
        return ["security", action, "-a", self.account, "-s", self.service]

    def _secret_tool_attrs(self) -> list[str]:
        return ["service", self.service, "username", self.account]

    def _native_store(self, key: str) -> bool:
        if self.platform == "darwin":
            self._run(self._keychain_args("delete-generic-password"))
            proc = self._run([*self._keychain_args("add-generic-password"), "-w", key])
            return proc is not None and proc.returncode == 0
        if self.platform.startswith("linux"):
            proc = self._run(
                ["secret-tool", "store", f"--label={self.service} API key", *self._secret_tool_attrs()],
                input_text=key,
            )
            return proc is not None and proc.returncode == 0
        return False

    def _native_get(self) -> str | None:
        if self.platform == "darwin":
            proc = self._run([*self._keychain_args("find-generic-password"), "-w"])
        elif self.platform.startswith("linux"):
            proc = self._run(["secret-tool", "lookup", *self._secret_tool_attrs()])
        else:
            return None
        if proc is None or proc.returncode != 0:
            return None
        return proc.stdout.strip() or None

    def _native_delete(self) -> None:
        if self.platform == "darwin":
            self._run(self._keychain_args("delete-generic-password"))
        elif self.platform.startswith("linux"):
            self._run(["secret-tool", "clear", *self._secret_tool_attrs()])

    def _file_store(self, key: str) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        encoded = base64.b64encode(key.encode("utf-8")).decode("ascii")
        self.file_path.write_text(encoded, encoding="utf-8")
        os.chmod(self.file_path, 0o600)

    def _file_get(self) -> str | None:
        if not self.file_path.is_file():
            return None
        try:
            encoded = self.file_path.read_text(encoding="utf-8").strip()
            return base64.b64decode(encoded, validate=True).decode("utf-8") or None
        except (OSError, binascii.Error, UnicodeDecodeError) as exc:
            logger.warning("Ignoring unreadable credentials file %s: %s", self.file_path, exc)
            return None

    def store_api_key(self, key: str) -> None:
        if self._native_store(key):
            logger.debug("Stored API key in the %s secret store", self.platform)
            return
        self._file_store(key)
        logger.debug("Stored API key in %s", self.file_path)

    def get_api_key(self) -> str | None:
        return self._native_get() or self._file_get()

    def delete_api_key(self) -> None:
        self._native_delete()
        try:
            self.file_path.unlink()
        except FileNotFoundError:
            pass


def resolve_api_key(store: CredentialStore, env: Mapping[str, str] | None = None) -> str | None:
    """Environment first, then the secret store, then the credentials file."""
    environ = os.environ if env is None else env
    from_env = environ.get(API_KEY_ENV_VAR, "").strip()
    if from_env:
        return from_env
    return store.get_api_key()
