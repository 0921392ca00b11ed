"""Semantic version tags: parsing, precedence and bumping.

A version tag name is ``(<sub_path>/)?v<major>.<minor>.<patch>(-<prerelease>)?``.
The sub-path is the monorepo component the version belongs to; an empty
string means the repository root.
"""

import re
from dataclasses import dataclass

from release_tags.errors import ParseError

SEGMENT = r"[A-Za-z0-9._-]+"
SUB_PATH = rf"{SEGMENT}(?:/{SEGMENT})*"
_IDENTIFIER = r"[0-9A-Za-z-]+"
PRERELEASE = rf"{_IDENTIFIER}(?:\.{_IDENTIFIER})*"
SEMVER = rf"v(?P<major>[0-9]+)\.(?P<minor>[0-9]+)\.(?P<patch>[0-9]+)(?:-(?P<prerelease>{PRERELEASE}))?"

_VERSION_RE = re.compile(rf"^(?:(?P<sub_path>{SUB_PATH})/)?(?P<semver>{SEMVER})$")
_SUB_PATH_RE = re.compile(rf"^{SUB_PATH}$")

BUMPS = ("major", "minor", "patch")


def _identifier_key(identifier: str) -> tuple:
    # Numeric identifiers sort before alphanumeric ones.
    if identifier.isdigit():
        return (0, int(identifier))
    return (1, identifier)


@dataclass(frozen=True)
class Version:
    full_version: str
    sub_path: str
    semver: str
    major: int
    minor: int
    patch: int
    prerelease: str | None = None

    @property
    def precedence(self) -> tuple:
        """Sort key following semantic-versioning precedence."""
        if self.prerelease is None:
            pre = (1,)
        else:
            pre = (0, *(_identifier_key(p) for p in self.prerelease.split(".")))
        return (self.major, self.minor, self.patch, pre)

    @property
    def is_prerelease(self) -> bool:
        return self.prerelease is not None

    def bump(self, kind: str) -> "Version":
        """Next version for a major/minor/patch bump.

        A pre-release bumps to its own release when the bump does not
        reach past it (``v1.3.0-rc.1`` minor -> ``v1.3.0``).
        """
        major, minor, patch = self.major, self.minor, self.patch
        if kind == "major":
            if not (self.is_prerelease and minor == 0 and patch == 0):
                major, minor, patch = major + 1, 0, 0
        elif kind == "minor":
            if not (self.is_prerelease and patch == 0):
                minor, patch = minor + 1, 0
        elif kind == "patch":
            if not self.is_prerelease:
                patch += 1
        else:
            raise ParseError(f"unknown bump kind: {kind}", detail=f"expected one of {', '.join(BUMPS)}")
        return make(self.sub_path, major, minor, patch)

    def with_prerelease(self, prerelease: str | None) -> "Version":
        if prerelease is None:
            return make(self.sub_path, self.major, self.minor, self.patch)
        if not re.fullmatch(PRERELEASE, prerelease):
            raise ParseError(f"invalid pre-release: {prerelease!r}")
        return make(self.sub_path, self.major, self.minor, self.patch, prerelease)

    def __str__(self) -> str:
        return self.full_version


def tag_name(sub_path: str, leaf: str) -> str:
    """Join a sub-path and a leaf tag name."""
    return f"{sub_path}/{leaf}" if sub_path else leaf


def normalize_sub_path(sub_path: str | None) -> str:
    """Strip surrounding separators and validate the segments."""
    if not sub_path:
        return ""
    cleaned = sub_path.strip("/")
    if cleaned and not _SUB_PATH_RE.match(cleaned):
        raise ParseError(f"invalid sub-path: {sub_path!r}", detail="segments may contain A-Z a-z 0-9 . _ -")
    return cleaned


def make(sub_path: str, major: int, minor: int, patch: int, prerelease: str | None = None) -> Version:
    semver = f"v{major}.{minor}.{patch}"
    if prerelease:
        semver += f"-{prerelease}"
    return Version(
        full_version=tag_name(sub_path, semver),
        sub_path=sub_path,
        semver=semver,
        major=major,
        minor=minor,
        patch=patch,
        prerelease=prerelease or None,
    )


def parse(raw: str) -> Version:
    """Parse a version tag name. Raises ParseError if it is not one."""
    m = _VERSION_RE.match(raw or "")
    if m is None:
        raise ParseError(
            f"invalid version tag: {raw!r}",
            tag=raw,
            detail="expected (<sub_path>/)?vMAJOR.MINOR.PATCH(-PRERELEASE)",
        )
    return Version(
        full_version=raw,
        sub_path=m.group("sub_path") or "",
        semver=m.group("semver"),
        major=int(m.group("major")),
        minor=int(m.group("minor")),
        patch=int(m.group("patch")),
        prerelease=m.group("prerelease"),
    )


def parse_for(sub_path: str, raw: str) -> Version:
    """Parse a bare version (``1.2.0`` or ``v1.2.0``) within a sub-path."""
    sub_path = normalize_sub_path(sub_path)
    leaf = raw if raw.startswith("v") else f"v{raw}"
    return parse(tag_name(sub_path, leaf))


def is_version(raw: str) -> bool:
    return _VERSION_RE.match(raw or "") is not None


def compare(a: Version, b: Version) -> int:
    """Return -1, 0 or 1 by precedence, ignoring sub-paths."""
    ka, kb = a.precedence, b.precedence
    return (ka > kb) - (ka < kb)


def latest(versions: list[Version], include_prereleases: bool = True) -> Version | None:
    pool = [v for v in versions if include_prereleases or not v.is_prerelease]
    if not pool:
        return None
    return max(pool, key=lambda v: v.precedence)
