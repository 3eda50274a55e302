from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _find_repo_root(start: Path) -> Optional[Path]:
    """
    Walk upward until we find pyproject.toml or .git.
    """
    start = start.resolve()
    for p in (start, *start.parents):
        if (p / "pyproject.toml").exists() or (p / ".git").exists():
            return p
    return None


@lru_cache(maxsize=1)
def repo_root() -> Path:
    """Best-effort repository root discovery.

    Order of precedence:
      1) RELPOP_REPO_ROOT (explicit override)
      2) walk upward from current working directory
      3) walk upward from this module file's directory
    """
    explicit = os.getenv("RELPOP_REPO_ROOT")
    if explicit:
        p = Path(explicit).expanduser().resolve()
        if not p.exists() or not p.is_dir():
            raise RuntimeError(f"RELPOP_REPO_ROOT does not exist or is not a directory: {p}")
        return p

    cwd = Path.cwd().resolve()
    root = _find_repo_root(cwd)
    if root:
        return root

    here_dir = Path(__file__).resolve().parent
    root = _find_repo_root(here_dir)
    if root:
        return root

    # Fallback: typical layout (repo/src/relpop_config/settings.py)
    if len(here_dir.parents) >= 2:
        return here_dir.parents[1]

    return cwd


@lru_cache(maxsize=1)
def load_env_once() -> Optional[Path]:
    """
    Load dotenv exactly once. Precedence:
      1) RELPOP_ENV_FILE (explicit path)
      2) repo-root/.env
      3) repo-root/config/.env
    """
    explicit = os.getenv("RELPOP_ENV_FILE")
    candidates = []

    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.append(repo_root() / ".env")
    candidates.append(repo_root() / "config" / ".env")

    for p in candidates:
        p = p.resolve()
        if p.exists() and p.is_file():
            # Do NOT override already-set environment variables
            load_dotenv(dotenv_path=str(p), override=False)
            return p

    return None


def config_dir() -> Path:
    """
    Canonical config folder containing collections.json and users.json.
    Override with RELPOP_CONFIG_DIR.
    """
    p = os.getenv("RELPOP_CONFIG_DIR")
    if p:
        return Path(p).expanduser().resolve()
    return (repo_root() / "config").resolve()


def collections_path() -> Path:
    p = os.getenv("RELPOP_COLLECTIONS_PATH")
    if p:
        return Path(p).expanduser().resolve()
    return (config_dir() / "collections.json").resolve()


def users_path() -> Path:
    p = os.getenv("RELPOP_USERS_PATH")
    if p:
        return Path(p).expanduser().resolve()
    return (config_dir() / "users.json").resolve()


def store_path() -> Path:
    """
    SQLite document store location. Relative values are taken from the repo root.
    """
    p = os.getenv("RELPOP_STORE_PATH")
    if p:
        path = Path(p).expanduser()
        return path if path.is_absolute() else (repo_root() / path).resolve()
    return (repo_root() / "data" / "relpop.sqlite").resolve()


def telemetry_dir() -> Path:
    p = os.getenv("RELPOP_TELEMETRY_DIR")
    if p:
        return Path(p).expanduser().resolve()
    return (repo_root() / "artifacts" / "telemetry").resolve()


def telemetry_disabled() -> bool:
    return (os.getenv("RELPOP_DISABLE_TELEMETRY", "0") or "").strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-integer %s=%r", name, raw)
        return default


def default_depth() -> int:
    """Depth used when a read does not ask for one. 0 means ids only."""
    return max(_int_env("RELPOP_DEFAULT_DEPTH", 0), 0)


def max_depth() -> int:
    """Upper bound applied to every requested depth."""
    return max(_int_env("RELPOP_MAX_DEPTH", 10), 0)


def populate_timeout() -> Optional[float]:
    """Seconds allowed for one population call; unset or <= 0 disables the limit."""
    raw = (os.getenv("RELPOP_POPULATE_TIMEOUT") or "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-numeric RELPOP_POPULATE_TIMEOUT=%r", raw)
        return None
    return value if value > 0 else None


def configure_logging() -> None:
    """
    Configure logging explicitly. No import-time side effects.
    Idempotent: if logging is already configured, do nothing.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    level_name = os.getenv("RELPOP_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = os.getenv(
        "RELPOP_LOG_FORMAT",
        "%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logging.basicConfig(level=level, format=fmt)


def init_runtime(*, configure_logs: bool = True, load_env: bool = True) -> None:
    """
    Call this from entrypoints only (servers, scripts).
    """
    if load_env:
        load_env_once()
    if configure_logs:
        configure_logging()
