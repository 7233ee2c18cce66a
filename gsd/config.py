"""Environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

STORAGE_DIR_NAME = ".gsd"

PROJECT_ROOT_ENV = "GSD_PROJECT_ROOT"
VERIFY_TIMEOUT_ENV = "GSD_VERIFY_TIMEOUT"
OUTPUT_CAP_ENV = "GSD_OUTPUT_CAP"
GIT_AUTHOR_NAME_ENV = "GSD_GIT_AUTHOR_NAME"
GIT_AUTHOR_EMAIL_ENV = "GSD_GIT_AUTHOR_EMAIL"
LOG_LEVEL_ENV = "GSD_LOG_LEVEL"
LOG_FILE_ENV = "GSD_LOG_FILE"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got '{raw}'.")
    if value <= 0:
        raise ValueError(f"Environment variable {name} must be positive, got '{raw}'.")
    return value


@dataclass(frozen=True)
class Settings:
    """Runtime configuration shared by the stores and the orchestrator."""

    project_root: Optional[Path] = None
    verify_timeout: float = 120.0
    output_cap: int = 4000
    git_author_name: str = "GSD"
    git_author_email: str = "gsd@localhost"
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "Settings":
        root = os.getenv(PROJECT_ROOT_ENV)
        log_file = os.getenv(LOG_FILE_ENV)
        return cls(
            project_root=Path(root).expanduser() if root else None,
            verify_timeout=_env_float(VERIFY_TIMEOUT_ENV, cls.verify_timeout),
            output_cap=int(_env_float(OUTPUT_CAP_ENV, cls.output_cap)),
            git_author_name=os.getenv(GIT_AUTHOR_NAME_ENV) or cls.git_author_name,
            git_author_email=os.getenv(GIT_AUTHOR_EMAIL_ENV) or cls.git_author_email,
            log_level=(os.getenv(LOG_LEVEL_ENV) or cls.log_level).upper(),
            log_file=Path(log_file).expanduser() if log_file else None,
        )


def find_project_root(start: Path) -> Optional[Path]:
    """Return the nearest directory at or above ``start`` holding a ``.gsd/`` directory."""
    start = start.resolve()
    for base in (start, *start.parents):
        if (base / STORAGE_DIR_NAME).is_dir():
            return base
    return None


def resolve_root(working_directory: Optional[str], settings: Optional[Settings] = None) -> Path:
    """Resolve the project root for a tool call.

    Order: explicit ``working_directory``, ``GSD_PROJECT_ROOT``, the nearest
    ancestor of the current directory containing ``.gsd/``, the current
    directory.
    """
    settings = settings or Settings.from_env()

    if working_directory:
        resolved = Path(working_directory).expanduser().resolve()
        if not resolved.is_dir():
            raise ValueError(f"Provided working directory '{working_directory}' does not exist.")
        return resolved

    if settings.project_root:
        env_path = settings.project_root.resolve()
        if not env_path.is_dir():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{settings.project_root}', which does not exist."
            )
        return env_path

    cwd = Path.cwd()
    return find_project_root(cwd) or cwd.resolve()
