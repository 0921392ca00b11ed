"""Load .release-tags.yml and environment overrides into a Config."""

import os
from dataclasses import dataclass, field

import yaml

from release_tags.classify import DEFAULT_ENVIRONMENTS, valid_environment_name
from release_tags.errors import ConfigError

CONFIG_FILE = ".release-tags.yml"


@dataclass
class RetryPolicy:
    attempts: int = 5
    base_delay: float = 0.2
    max_delay: float = 5.0


@dataclass
class LockPolicy:
    timeout: float = 30.0
    poll: float = 0.1
    dir: str = ".release-tags-locks"


@dataclass
class RollbackPolicy:
    prefer_stable: bool = True
    older_only: bool = True
    exclude_unstable: bool = False


@dataclass
class Config:
    environments: tuple[str, ...] = DEFAULT_ENVIRONMENTS
    remote: str | None = None
    record_history: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    lock: LockPolicy = field(default_factory=LockPolicy)
    rollback: RollbackPolicy = field(default_factory=RollbackPolicy)


def _section(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return value


def _number(section: str, key: str, value, cast, minimum):
    try:
        number = cast(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}") from None
    if number < minimum:
        raise ConfigError(f"{section}.{key} must be >= {minimum}, got {number}")
    return number


def _flag(section: str, key: str, value) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{section}.{key} must be true or false, got {value!r}")
    return value


def _environments(extra) -> tuple[str, ...]:
    if isinstance(extra, str):
        extra = [e.strip() for e in extra.split(",") if e.strip()]
    if not isinstance(extra, list):
        raise ConfigError("'environments' must be a list of names")
    names = list(DEFAULT_ENVIRONMENTS)
    for name in extra:
        if not isinstance(name, str) or not valid_environment_name(name):
            raise ConfigError(f"invalid environment name: {name!r}")
        if name not in names:
            names.append(name)
    return tuple(names)


def _env_overrides(environ) -> dict:
    """Read RELEASE_TAGS_* overrides into the same shape as the YAML file."""
    overrides: dict = {}
    if environ.get("RELEASE_TAGS_REMOTE"):
        overrides["remote"] = environ["RELEASE_TAGS_REMOTE"]
    if environ.get("RELEASE_TAGS_ENVIRONMENTS"):
        overrides["environments"] = environ["RELEASE_TAGS_ENVIRONMENTS"]
    if environ.get("RELEASE_TAGS_RETRY_ATTEMPTS"):
        overrides.setdefault("retry", {})["attempts"] = environ["RELEASE_TAGS_RETRY_ATTEMPTS"]
    if environ.get("RELEASE_TAGS_LOCK_TIMEOUT"):
        overrides.setdefault("lock", {})["timeout"] = environ["RELEASE_TAGS_LOCK_TIMEOUT"]
    return overrides


def parse_config(data: dict | None, environ=None) -> Config:
    """Build a Config from parsed YAML, applying RELEASE_TAGS_* overrides on top.

    Custom environments are added to the defaults, never replace them.
    """
    if data is not None and not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping")
    data = data or {}

    overrides = _env_overrides(os.environ if environ is None else environ)
    extra_envs = data.get("environments") or []
    if "environments" in overrides:
        if isinstance(extra_envs, str):
            extra_envs = [extra_envs]
        extra_envs = list(extra_envs) + [
            e.strip() for e in overrides["environments"].split(",") if e.strip()
        ]

    retry = {**_section(data, "retry"), **overrides.get("retry", {})}
    lock = {**_section(data, "lock"), **overrides.get("lock", {})}
    rollback = _section(data, "rollback")

    remote = overrides.get("remote", data.get("remote"))
    if remote is not None and not isinstance(remote, str):
        raise ConfigError(f"remote must be a string, got {remote!r}")

    defaults = Config()
    return Config(
        environments=_environments(extra_envs),
        remote=remote or None,
        record_history=_flag("", "record_history", data.get("record_history", True)),
        retry=RetryPolicy(
            attempts=_number("retry", "attempts", retry.get("attempts", defaults.retry.attempts), int, 1),
            base_delay=_number("retry", "base_delay", retry.get("base_delay", defaults.retry.base_delay), float, 0),
            max_delay=_number("retry", "max_delay", retry.get("max_delay", defaults.retry.max_delay), float, 0),
        ),
        lock=LockPolicy(
            timeout=_number("lock", "timeout", lock.get("timeout", defaults.lock.timeout), float, 0),
            poll=_number("lock", "poll", lock.get("poll", defaults.lock.poll), float, 0.001),
            dir=str(lock.get("dir", defaults.lock.dir)),
        ),
        rollback=RollbackPolicy(
            prefer_stable=_flag("rollback", "prefer_stable", rollback.get("prefer_stable", True)),
            older_only=_flag("rollback", "older_only", rollback.get("older_only", True)),
            exclude_unstable=_flag("rollback", "exclude_unstable", rollback.get("exclude_unstable", False)),
        ),
    )


def load_config(path: str | None = None, environ=None) -> Config:
    """Read the YAML config file (optional unless a path is given explicitly)."""
    target = path or CONFIG_FILE
    if not os.path.exists(target):
        if path is not None:
            raise ConfigError(f"config file not found: {path}")
        return parse_config({}, environ)
    try:
        with open(target) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse {target}: {e}") from None
    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"{target} must contain a mapping")
    return parse_config(data, environ)
