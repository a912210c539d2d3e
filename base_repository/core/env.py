from __future__ import annotations

import os
from pathlib import Path


def load_env(path: Path | None = None) -> None:
    """
    Load key=value pairs from .env file(s) into os.environ.

    Loads ``.env`` first and then ``.env.local`` (only when no explicit path is
    given). ``.env.local`` may override ``.env``; variables already present in
    the process environment always win.
    """
    original_env_keys = set(os.environ.keys())

    env_path = path or _default_env_path()
    if env_path.exists():
        _load_env_file(env_path, allow_override=False)

    if path is None:
        local_env_path = env_path.parent / ".env.local"
        if local_env_path.exists():
            _load_env_file(local_env_path, allow_override=True, protected_keys=original_env_keys)


def _load_env_file(
    env_path: Path,
    allow_override: bool = False,
    protected_keys: set[str] | None = None,
) -> None:
    protected = protected_keys or set()

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        key, value = line.split("=", 1)
        key = key.strip()
        if not key or key in protected:
            continue
        if not allow_override and key in os.environ:
            continue
        os.environ[key] = _strip_quotes(value.strip())


def _default_env_path() -> Path:
    return Path.cwd() / ".env"


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


__all__ = ["load_env"]
