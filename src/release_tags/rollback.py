"""Rollback target selection.

Given what an environment runs now, pick the version to go back to:
drop the current version(s) and anything deprecated, then take the highest
stable version, falling back to the highest of the rest. Every rejected
candidate is reported with its reason so the decision can be audited.
"""

from dataclasses import dataclass, field

from release_tags.classify import EnvironmentTag, StateTag, VersionTag, environment_tag_name
from release_tags.config import RollbackPolicy
from release_tags.errors import NoCurrentVersion, NoRollbackTarget
from release_tags.registry import TagRegistry
from release_tags.validator import versions_at
from release_tags.version import Version

DEPRECATED = "deprecated"
IS_CURRENT = "is_current"
NEWER_THAN_CURRENT = "newer_than_current"
UNSTABLE = "unstable"


@dataclass(frozen=True)
class Candidate:
    version: Version
    commit: str
    stable: bool = False

    def to_dict(self) -> dict:
        return {"version": self.version.full_version, "commit": self.commit, "stable": self.stable}


@dataclass(frozen=True)
class Rejection:
    version: Version
    reason: str

    def to_dict(self) -> dict:
        return {"version": self.version.full_version, "reason": self.reason}


@dataclass(frozen=True)
class RollbackTarget:
    sub_path: str
    environment: str
    current_version: Version
    current_commit: str
    target_version: Version
    target_commit: str
    candidates: list[Candidate] = field(default_factory=list)
    rejected: list[Rejection] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sub_path": self.sub_path,
            "environment": self.environment,
            "current_version": self.current_version.full_version,
            "current_commit": self.current_commit,
            "target_version": self.target_version.full_version,
            "target_commit": self.target_commit,
            "candidates": [c.to_dict() for c in self.candidates],
            "rejected": [r.to_dict() for r in self.rejected],
        }


def _descending(candidates: list[Candidate]) -> list[Candidate]:
    return sorted(candidates, key=lambda c: (c.version.precedence, c.version.full_version), reverse=True)


class RollbackSelector:
    def __init__(self, registry: TagRegistry, policy: RollbackPolicy | None = None):
        self.registry = registry
        self.policy = policy or RollbackPolicy()

    def select(self, sub_path: str, environment: str) -> RollbackTarget:
        """Recompute the rollback target from the tag store. Raises NoCurrentVersion / NoRollbackTarget."""
        tags = self.registry.list(sub_path or None)
        env_name = environment_tag_name(sub_path, environment)

        env_tag = next((t for t in tags if t.name == env_name and isinstance(t.kind, EnvironmentTag)), None)
        if env_tag is None:
            raise NoCurrentVersion(f"nothing is deployed to {env_name}", tag=env_name)

        current = versions_at(tags, sub_path, env_tag.commit)
        if not current:
            raise NoCurrentVersion(
                f"{env_name} is on {env_tag.commit[:12]} which has no version tag",
                tag=env_name,
                commit=env_tag.commit,
            )
        current_version = current[-1]

        states: dict[str, set[str]] = {}
        for t in tags:
            if isinstance(t.kind, StateTag) and t.kind.sub_path == sub_path:
                states.setdefault(t.kind.version.semver, set()).add(t.kind.state)

        candidates: list[Candidate] = []
        rejected: list[Rejection] = []
        for t in tags:
            if not isinstance(t.kind, VersionTag) or t.kind.sub_path != sub_path:
                continue
            v = t.kind.version
            marked = states.get(v.semver, set())
            if t.commit == env_tag.commit:
                rejected.append(Rejection(v, IS_CURRENT))
            elif DEPRECATED in marked:
                rejected.append(Rejection(v, DEPRECATED))
            elif self.policy.older_only and v.precedence > current_version.precedence:
                rejected.append(Rejection(v, NEWER_THAN_CURRENT))
            elif self.policy.exclude_unstable and UNSTABLE in marked and "stable" not in marked:
                rejected.append(Rejection(v, UNSTABLE))
            else:
                candidates.append(Candidate(v, t.commit, stable="stable" in marked))

        if self.policy.prefer_stable:
            ordered = _descending([c for c in candidates if c.stable]) + _descending(
                [c for c in candidates if not c.stable]
            )
        else:
            ordered = _descending(candidates)

        if not ordered:
            raise NoRollbackTarget(
                f"no version of {sub_path or 'the repository'} to roll {environment} back to",
                tag=env_name,
                commit=env_tag.commit,
                detail=", ".join(f"{r.version.semver}: {r.reason}" for r in rejected) or "no other versions",
            )

        rejected.sort(key=lambda r: r.version.precedence, reverse=True)
        return RollbackTarget(
            sub_path=sub_path,
            environment=environment,
            current_version=current_version,
            current_commit=env_tag.commit,
            target_version=ordered[0].version,
            target_commit=ordered[0].commit,
            candidates=ordered,
            rejected=rejected,
        )
