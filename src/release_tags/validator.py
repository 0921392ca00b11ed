"""Cross-tag invariants, checked before and re-checked after every write."""

from dataclasses import dataclass

from release_tags.classify import EnvironmentTag, StateTag, VersionTag
from release_tags.errors import AlreadyExists, InvalidReferent, NotFound, TagStoreError
from release_tags.registry import Tag, TagRegistry
from release_tags.version import Version


@dataclass(frozen=True)
class Finding:
    level: str
    tag: str
    message: str

    def to_dict(self) -> dict:
        return {"level": self.level, "tag": self.tag, "message": self.message}


def versions_at(tags: list[Tag], sub_path: str, commit: str) -> list[Version]:
    """Version tags of `sub_path` on `commit`, highest precedence last."""
    found = [
        t.kind.version
        for t in tags
        if isinstance(t.kind, VersionTag) and t.kind.sub_path == sub_path and t.commit == commit
    ]
    return sorted(found, key=lambda v: v.precedence)


class ConsistencyValidator:
    def __init__(self, registry: TagRegistry):
        self.registry = registry

    def check_unique(self, name: str, commit: str) -> str | None:
        """Refuse to clobber an immutable tag.

        Returns the commit when the tag already exists on exactly this commit
        (a repeated request); raises AlreadyExists when it exists elsewhere.
        """
        if self.registry.read(name) is None:
            return None
        existing = self.registry.resolve(name)
        if existing != commit:
            raise AlreadyExists(
                f"tag {name} already exists on {existing[:12]}",
                tag=name,
                commit=existing,
                detail=f"requested {commit[:12]}; version and state tags never move",
            )
        return existing

    def check_create_version(self, version: Version, commit: str) -> str | None:
        return self.check_unique(version.full_version, commit)

    def check_assign_state(self, version: Version, commit: str | None = None) -> str:
        """A state tag needs its version tag; returns the commit it must point at."""
        try:
            version_commit = self.registry.resolve(version.full_version)
        except NotFound:
            raise InvalidReferent(
                f"version tag {version.full_version} does not exist",
                tag=version.full_version,
                commit=commit,
                detail="create the version tag before assigning a state",
            ) from None
        if commit is not None and commit != version_commit:
            raise InvalidReferent(
                f"{version.full_version} is on {version_commit[:12]}, not {commit[:12]}",
                tag=version.full_version,
                commit=commit,
                detail="a state tag must annotate the commit of its version",
            )
        return version_commit

    def check_move_environment(self, sub_path: str, environment: str, commit: str) -> list[Version]:
        """The deployed commit must carry a version tag for the sub-path."""
        found = versions_at(self.registry.list(sub_path or None), sub_path, commit)
        if not found:
            raise InvalidReferent(
                f"commit {commit[:12]} has no version tag{' for ' + sub_path if sub_path else ''}",
                tag=environment,
                commit=commit,
                detail="tag a release before deploying it",
            )
        return found

    def confirm(self, name: str, commit: str) -> None:
        """Re-read an immutable tag after writing it."""
        try:
            actual = self.registry.resolve(name)
        except NotFound:
            raise TagStoreError(f"tag {name} missing after write", tag=name, commit=commit) from None
        if actual != commit:
            raise TagStoreError(
                f"tag {name} points at {actual[:12]} after write, expected {commit[:12]}",
                tag=name,
                commit=commit,
            )

    def confirm_environment(self, sub_path: str, environment: str, name: str) -> str:
        """Re-read an environment tag after a move: it must exist and sit on a released commit."""
        try:
            commit = self.registry.resolve(name)
        except NotFound:
            raise TagStoreError(f"tag {name} missing after move", tag=name) from None
        self.check_move_environment(sub_path, environment, commit)
        return commit

    def audit(self, sub_path: str | None = None) -> list[Finding]:
        """Check every tag in the store (or one sub-path) against the invariants."""
        tags = self.registry.list()
        if sub_path is not None:
            tags = [t for t in tags if t.kind.sub_path == sub_path]

        versions = {t.name: t for t in tags if isinstance(t.kind, VersionTag)}
        released = {(t.kind.sub_path, t.commit) for t in versions.values()}
        states: dict[str, set[str]] = {}
        findings = []

        for t in tags:
            if isinstance(t.kind, EnvironmentTag):
                if (t.kind.sub_path, t.commit) not in released:
                    findings.append(Finding("error", t.name, f"points at {t.commit[:12]} which has no version tag"))
            elif isinstance(t.kind, StateTag):
                version_tag = versions.get(t.kind.version.full_version)
                states.setdefault(t.kind.version.full_version, set()).add(t.kind.state)
                if version_tag is None:
                    findings.append(Finding("error", t.name, f"no version tag {t.kind.version.full_version}"))
                elif version_tag.commit != t.commit:
                    findings.append(
                        Finding(
                            "error",
                            t.name,
                            f"on {t.commit[:12]} but {version_tag.name} is on {version_tag.commit[:12]}",
                        )
                    )

        for name, marked in sorted(states.items()):
            if {"stable", "deprecated"} <= marked:
                findings.append(Finding("warning", name, "marked both stable and deprecated"))
        return findings
