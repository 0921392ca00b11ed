"""Entry points for the orchestrator: one call per pipeline step.

Every call reads the tag store afresh (fetching first when a remote is
configured) and returns a structured result, or raises a TagError.
"""

from dataclasses import dataclass, field
from datetime import datetime

from release_tags import log
from release_tags import version as semver
from release_tags.classify import (
    STATES,
    EnvironmentTag,
    StateTag,
    VersionTag,
    state_tag_name,
)
from release_tags.config import Config
from release_tags.errors import InvalidReferent, NotFound, ParseError
from release_tags.mover import AtomicTagMover, history_prefix
from release_tags.registry import TagRegistry
from release_tags.rollback import RollbackSelector, RollbackTarget
from release_tags.validator import ConsistencyValidator, Finding, versions_at


@dataclass(frozen=True)
class MutationResult:
    tag_name: str
    previous_commit: str | None
    new_commit: str
    kind: str

    @property
    def changed(self) -> bool:
        return self.previous_commit != self.new_commit

    def to_dict(self) -> dict:
        return {
            "tag_name": self.tag_name,
            "previous_commit": self.previous_commit,
            "new_commit": self.new_commit,
            "kind": self.kind,
            "changed": self.changed,
        }


@dataclass(frozen=True)
class EnvironmentStatus:
    sub_path: str
    environment: str
    tag_name: str
    commit: str
    versions: list[str] = field(default_factory=list)
    states: list[str] = field(default_factory=list)
    updated_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "sub_path": self.sub_path,
            "environment": self.environment,
            "tag_name": self.tag_name,
            "commit": self.commit,
            "versions": self.versions,
            "states": self.states,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class HistoryEntry:
    tag_name: str
    commit: str
    versions: list[str] = field(default_factory=list)
    deployed_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "tag_name": self.tag_name,
            "commit": self.commit,
            "versions": self.versions,
            "deployed_at": self.deployed_at.isoformat() if self.deployed_at else None,
        }


def open_registry(config: Config, cwd: str | None = None) -> TagRegistry:
    return TagRegistry(cwd=cwd, remote=config.remote, environments=config.environments)


def _prepare(config: Config | None, registry: TagRegistry | None) -> tuple[Config, TagRegistry]:
    config = config or Config()
    registry = registry or open_registry(config)
    registry.sync()
    return config, registry


def _check_environment(config: Config, environment: str) -> None:
    if environment not in config.environments:
        raise ParseError(
            f"unknown environment: {environment!r}",
            tag=environment,
            detail=f"configured environments: {', '.join(config.environments)}",
        )


def create_version(
    sub_path: str,
    version: str,
    commit: str = "HEAD",
    message: str | None = None,
    config: Config | None = None,
    registry: TagRegistry | None = None,
) -> MutationResult:
    """Cut a release: create the immutable version tag on `commit`."""
    config, registry = _prepare(config, registry)
    parsed = semver.parse_for(sub_path, version)
    if not isinstance(registry.classify(parsed.full_version), VersionTag):
        raise ParseError(
            f"{parsed.full_version} is not a version tag name",
            tag=parsed.full_version,
            detail="pre-releases named stable/unstable/deprecated are reserved for state tags",
        )
    commit = registry.verify_commit(commit)
    validator = ConsistencyValidator(registry)

    existing = validator.check_create_version(parsed, commit)
    if existing is not None:
        log.step(f"{parsed.full_version} already on {commit[:12]}")
        return MutationResult(parsed.full_version, existing, existing, "version")

    registry.create(parsed.full_version, commit, message or f"Release {parsed.full_version}")
    validator.confirm(parsed.full_version, commit)
    log.success(f"created {parsed.full_version} on {commit[:12]}")
    return MutationResult(parsed.full_version, None, commit, "version")


def assign_state(
    sub_path: str,
    version: str,
    state: str,
    commit: str | None = None,
    config: Config | None = None,
    registry: TagRegistry | None = None,
) -> MutationResult:
    """Certify a version stable, unstable or deprecated with a new immutable tag."""
    config, registry = _prepare(config, registry)
    if state not in STATES:
        raise ParseError(f"unknown state: {state!r}", detail=f"expected one of {', '.join(STATES)}")
    parsed = semver.parse_for(sub_path, version)
    if commit is not None:
        commit = registry.verify_commit(commit)

    validator = ConsistencyValidator(registry)
    target = validator.check_assign_state(parsed, commit)
    name = state_tag_name(parsed, state)

    existing = validator.check_unique(name, target)
    if existing is not None:
        log.step(f"{name} already on {target[:12]}")
        return MutationResult(name, existing, existing, "state")

    registry.create(name, target, f"{parsed.full_version} marked {state}")
    validator.confirm(name, target)
    log.success(f"created {name} on {target[:12]}")
    return MutationResult(name, None, target, "state")


def move_environment(
    sub_path: str,
    environment: str,
    commit: str | None = None,
    version: str | None = None,
    config: Config | None = None,
    registry: TagRegistry | None = None,
) -> MutationResult:
    """Record a deployment: move the environment tag to a released commit.

    Give either `commit` or `version` (or both, which must agree).
    """
    config, registry = _prepare(config, registry)
    sub_path = semver.normalize_sub_path(sub_path)
    _check_environment(config, environment)
    if commit is None and version is None:
        raise ParseError("move_environment needs a commit or a version")

    if version is not None:
        parsed = semver.parse_for(sub_path, version)
        try:
            version_commit = registry.resolve(parsed.full_version)
        except NotFound:
            raise InvalidReferent(
                f"version tag {parsed.full_version} does not exist", tag=parsed.full_version
            ) from None
        if commit is not None and registry.verify_commit(commit) != version_commit:
            raise InvalidReferent(
                f"{parsed.full_version} is on {version_commit[:12]}, not {commit[:12]}",
                tag=parsed.full_version,
                commit=commit,
            )
        commit = version_commit
    else:
        commit = registry.verify_commit(commit)

    validator = ConsistencyValidator(registry)
    released = validator.check_move_environment(sub_path, environment, commit)

    result = AtomicTagMover(registry, config).move(
        sub_path,
        environment,
        commit,
        message=f"Deploy {released[-1].full_version} to {environment}",
    )
    validator.confirm_environment(sub_path, environment, result.tag_name)
    return MutationResult(result.tag_name, result.previous_commit, result.new_commit, "environment")


def select_rollback_target(
    sub_path: str,
    environment: str,
    config: Config | None = None,
    registry: TagRegistry | None = None,
) -> RollbackTarget:
    config, registry = _prepare(config, registry)
    sub_path = semver.normalize_sub_path(sub_path)
    _check_environment(config, environment)
    return RollbackSelector(registry, config.rollback).select(sub_path, environment)


def rollback(
    sub_path: str,
    environment: str,
    config: Config | None = None,
    registry: TagRegistry | None = None,
) -> tuple[RollbackTarget, MutationResult]:
    """Select the rollback target and move the environment tag to it."""
    config = config or Config()
    registry = registry or open_registry(config)
    target = select_rollback_target(sub_path, environment, config=config, registry=registry)
    log.info(f"rolling {environment} back: {target.current_version} → {target.target_version}")
    result = move_environment(
        target.sub_path, environment, commit=target.target_commit, config=config, registry=registry
    )
    return target, result


def status(
    sub_path: str | None = None,
    config: Config | None = None,
    registry: TagRegistry | None = None,
) -> list[EnvironmentStatus]:
    """What is deployed where."""
    config, registry = _prepare(config, registry)
    if sub_path is not None:
        sub_path = semver.normalize_sub_path(sub_path)
    tags = registry.list(sub_path or None)

    states: dict[str, list[str]] = {}
    for t in tags:
        if isinstance(t.kind, StateTag):
            states.setdefault(t.kind.version.full_version, []).append(t.kind.state)

    rows = []
    for t in tags:
        if not isinstance(t.kind, EnvironmentTag):
            continue
        if sub_path is not None and t.kind.sub_path != sub_path:
            continue
        versions = versions_at(tags, t.kind.sub_path, t.commit)
        rows.append(
            EnvironmentStatus(
                sub_path=t.kind.sub_path,
                environment=t.kind.environment,
                tag_name=t.name,
                commit=t.commit,
                versions=[v.full_version for v in versions],
                states=sorted({s for v in versions for s in states.get(v.full_version, [])}),
                updated_at=t.updated_at,
            )
        )
    rows.sort(key=lambda r: (r.sub_path, r.environment))
    return rows


def history(
    sub_path: str,
    environment: str,
    limit: int = 10,
    config: Config | None = None,
    registry: TagRegistry | None = None,
) -> list[HistoryEntry]:
    """Past deployments to an environment, newest first, from deployment record tags."""
    config, registry = _prepare(config, registry)
    sub_path = semver.normalize_sub_path(sub_path)
    _check_environment(config, environment)

    prefix = history_prefix(sub_path, environment)
    records = sorted(registry.list(prefix), key=lambda t: t.name, reverse=True)[:limit]
    tags = registry.list(sub_path or None) if records else []
    return [
        HistoryEntry(
            tag_name=r.name,
            commit=r.commit,
            versions=[v.full_version for v in versions_at(tags, sub_path, r.commit)],
            deployed_at=r.updated_at,
        )
        for r in records
    ]


def next_version(
    sub_path: str,
    bump: str = "patch",
    prerelease: str | None = None,
    config: Config | None = None,
    registry: TagRegistry | None = None,
) -> semver.Version:
    """The version that follows the highest existing version of `sub_path`."""
    config, registry = _prepare(config, registry)
    sub_path = semver.normalize_sub_path(sub_path)
    existing = [
        t.kind.version
        for t in registry.list(sub_path or None)
        if isinstance(t.kind, VersionTag) and t.kind.sub_path == sub_path
    ]
    base = semver.latest(existing) or semver.make(sub_path, 0, 0, 0)
    return base.bump(bump).with_prerelease(prerelease)


def audit(
    sub_path: str | None = None,
    config: Config | None = None,
    registry: TagRegistry | None = None,
) -> list[Finding]:
    config, registry = _prepare(config, registry)
    if sub_path is not None:
        sub_path = semver.normalize_sub_path(sub_path)
    return ConsistencyValidator(registry).audit(sub_path)

