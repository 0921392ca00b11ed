"""Timestamped output + GitHub Actions annotations and step outputs."""

import os
import sys
from datetime import datetime

_to_stderr = False


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _is_github_actions() -> bool:
    return os.environ.get("GITHUB_ACTIONS") == "true"


def _stream():
    return sys.stderr if _to_stderr else sys.stdout


def use_stderr(enabled: bool = True) -> None:
    """Send progress lines to stderr, leaving stdout for machine-readable output."""
    global _to_stderr
    _to_stderr = enabled


def _emit(line: str) -> None:
    print(line, file=_stream(), flush=True)


def info(msg: str) -> None:
    _emit(f"[{_timestamp()}] {msg}")


def debug(msg: str) -> None:
    if os.environ.get("RELEASE_TAGS_DEBUG"):
        info(f"  · {msg}")


def header(title: str) -> None:
    line = f"── {title} " + "─" * max(0, 45 - len(title))
    if _is_github_actions():
        _emit(f"::group::{title}")
    info(line)


def footer(title: str) -> None:
    line = f"── {title} " + "─" * max(0, 45 - len(title))
    info(line)
    if _is_github_actions():
        _emit("::endgroup::")


def step(msg: str) -> None:
    info(f"  {msg}")


def success(msg: str) -> None:
    info(f"  ✓ {msg}")


def warn(msg: str) -> None:
    if _is_github_actions():
        _emit(f"::warning::{msg}")
    info(f"  ! {msg}")


def failure(msg: str) -> None:
    if _is_github_actions():
        _emit(f"::error::{msg}")
    info(f"  ✗ {msg}")


def error(msg: str) -> None:
    if _is_github_actions():
        _emit(f"::error::{msg}")
    print(f"[{_timestamp()}] ERROR: {msg}", file=sys.stderr, flush=True)


def output(key: str, value) -> None:
    """Append a step output for the orchestrator (no-op outside GitHub Actions)."""
    path = os.environ.get("GITHUB_OUTPUT")
    if not path:
        return
    if value is None:
        value = ""
    elif isinstance(value, bool):
        value = "true" if value else "false"
    with open(path, "a") as f:
        f.write(f"{key}={value}\n")
