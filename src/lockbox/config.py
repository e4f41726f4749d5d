"""Tool configuration and default project paths."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class ToolConfig:
    """Names or paths of the external tools lockbox shells out to.

    Passed explicitly to every backend so nothing relies on mutating the
    process environment.
    """

    age: str = "age"
    age_keygen: str = "age-keygen"
    sops: str = "sops"
    sops_config: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ToolConfig":
        """Build a config from LOCKBOX_* environment variables."""
        return cls(
            age=os.environ.get("LOCKBOX_AGE", "age"),
            age_keygen=os.environ.get("LOCKBOX_AGE_KEYGEN", "age-keygen"),
            sops=os.environ.get("LOCKBOX_SOPS", "sops"),
            sops_config=os.environ.get("LOCKBOX_SOPS_CONFIG") or None,
        )


def get_project_root(project: Optional[str] = None) -> Path:
    """Get the project root directory.

    Args:
        project: Optional subdirectory name relative to current working directory

    Returns:
        Path to project root (either cwd or cwd/project)
    """
    base = Path.cwd()
    if project:
        return base / project
    return base


def get_secrets_dir(project: Optional[str] = None) -> Path:
    return get_project_root(project) / "secrets"


def get_age_key_path(project: Optional[str] = None) -> Path:
    """Default identity file: secrets/age-key.txt."""
    return get_secrets_dir(project) / "age-key.txt"


def get_secrets_path(project: Optional[str] = None) -> Path:
    """Default envelope file: secrets/lockbox.yaml."""
    return get_secrets_dir(project) / "lockbox.yaml"
