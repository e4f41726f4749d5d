"""Subprocess plumbing shared by the age and sops backends."""

import subprocess
from typing import Mapping, Optional, Sequence

from lockbox.exceptions import BackendUnavailableError

INSTALL_HINTS = {
    "age": "https://github.com/FiloSottile/age",
    "sops": "https://github.com/getsops/sops",
}


def run_tool(
    cmd: Sequence[str],
    backend: str,
    input: Optional[bytes] = None,
    env: Optional[Mapping[str, str]] = None,
) -> subprocess.CompletedProcess:
    """Run an external tool and capture its output as bytes.

    The exit status is not checked here; callers classify failures
    themselves because the meaning of stderr differs per tool.

    Raises:
        BackendUnavailableError: If the executable cannot be found
    """
    try:
        return subprocess.run(
            list(cmd),
            input=input,
            env=dict(env) if env is not None else None,
            capture_output=True,
            check=False,
        )
    except FileNotFoundError as e:
        hint = INSTALL_HINTS.get(backend, "")
        message = f"{cmd[0]} not found. Please install {backend}."
        if hint:
            message += f" See {hint}"
        raise BackendUnavailableError(message, backend=backend) from e


def stderr_text(result: subprocess.CompletedProcess) -> str:
    if not result.stderr:
        return ""
    return result.stderr.decode("utf-8", errors="replace").strip()
