"""Subprocess wrapper — the single mock seam for every git call."""

import os
import subprocess
from dataclasses import dataclass


@dataclass
class Result:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run(
    args: list[str],
    env: dict[str, str] | None = None,
    cwd: str | None = None,
    input: str | None = None,
) -> Result:
    """Run a command, feeding `input` on stdin. Never raises on non-zero exit."""
    proc = subprocess.run(
        args,
        capture_output=True,
        text=True,
        env={**os.environ, **env} if env is not None else None,
        cwd=cwd,
        input=input,
    )
    return Result(returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
