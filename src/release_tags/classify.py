"""Classify tag names into version, environment and state tags.

Order matters: a ``-stable``/``-unstable``/``-deprecated`` suffix wins even
though the prefix parses as a version, then configured environment names,
then bare semver. Anything else is Unrecognized and ignored downstream.
"""

import re
from dataclasses import dataclass

from release_tags import version as semver
from release_tags.version import Version

DEFAULT_ENVIRONMENTS = ("production", "staging", "canary", "sandbox", "performance")
STATES = ("stable", "unstable", "deprecated")

_STATE_RE = re.compile(
    rf"^(?:(?P<sub_path>{semver.SUB_PATH})/)?(?P<semver>{semver.SEMVER})-(?P<state>{'|'.join(STATES)})$"
)
_ENVIRONMENT_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_SUB_PATH_RE = re.compile(rf"^{semver.SUB_PATH}$")


@dataclass(frozen=True)
class VersionTag:
    name: str
    sub_path: str
    version: Version

    is_movable = False


@dataclass(frozen=True)
class EnvironmentTag:
    name: str
    sub_path: str
    environment: str

    is_movable = True


@dataclass(frozen=True)
class StateTag:
    name: str
    sub_path: str
    version: Version
    state: str

    is_movable = False


@dataclass(frozen=True)
class Unrecognized:
    name: str
    sub_path: str = ""

    is_movable = False


TagKind = VersionTag | EnvironmentTag | StateTag | Unrecognized


def valid_environment_name(name: str) -> bool:
    """Environment names are single path segments that never look like versions."""
    return bool(_ENVIRONMENT_NAME_RE.match(name)) and not semver.is_version(name)


def classify(name: str, environments=DEFAULT_ENVIRONMENTS) -> TagKind:
    m = _STATE_RE.match(name)
    if m:
        sub_path = m.group("sub_path") or ""
        return StateTag(
            name=name,
            sub_path=sub_path,
            version=semver.parse(semver.tag_name(sub_path, m.group("semver"))),
            state=m.group("state"),
        )

    sub_path, sep, leaf = name.rpartition("/")
    if leaf in environments and (not sep or _SUB_PATH_RE.match(sub_path)):
        return EnvironmentTag(name=name, sub_path=sub_path, environment=leaf)

    if semver.is_version(name):
        parsed = semver.parse(name)
        return VersionTag(name=name, sub_path=parsed.sub_path, version=parsed)

    return Unrecognized(name=name)


def environment_tag_name(sub_path: str, environment: str) -> str:
    return semver.tag_name(sub_path, environment)


def state_tag_name(version: Version, state: str) -> str:
    return f"{version.full_version}-{state}"
