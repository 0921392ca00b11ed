"""Shared test fixtures."""

import fnmatch
import itertools
import os
import shutil
import subprocess
from datetime import datetime, timezone

import pytest

from release_tags.classify import DEFAULT_ENVIRONMENTS, classify
from release_tags.config import Config, LockPolicy, RetryPolicy
from release_tags.errors import AlreadyExists, Conflict, ImmutableTag, NotFound
from release_tags.registry import RefUpdate, Tag


@pytest.fixture
def mock_process(monkeypatch):
    """Mock process.run for tests."""
    from release_tags import process

    calls = []
    responses = []

    def fake_run(args, env=None, cwd=None, input=None):
        calls.append(("run", args, env, cwd, input))
        if responses:
            return responses.pop(0)
        return process.Result(returncode=0, stdout="", stderr="")

    monkeypatch.setattr(process, "run", fake_run)

    return type("MockProcess", (), {"calls": calls, "responses": responses})()


class FakeRegistry:
    """In-memory tag store with the TagRegistry interface.

    Each `before_apply` hook runs just before one apply or confirmation lands,
    letting a test play a concurrent writer that sneaks in between read and
    compare-and-swap.
    """

    def __init__(self, environments=DEFAULT_ENVIRONMENTS, cwd=None):
        self.environments = tuple(environments)
        self.cwd = cwd
        self.remote = None
        self.commits: set[str] = set()
        self.tags: dict[str, tuple[str, str]] = {}
        self.before_apply: list = []
        self.applied: list[list[RefUpdate]] = []
        self.confirmed: list[str] = []
        self.syncs = 0
        self._counter = itertools.count(1)
        self._objects: dict[str, str] = {}

    def add_commit(self, *commits: str) -> None:
        self.commits.update(commits)

    def put(self, name: str, commit: str) -> str:
        """Write a tag directly, bypassing every guard."""
        self.commits.add(commit)
        ref = f"tagobj-{next(self._counter)}"
        self._objects[ref] = commit
        self.tags[name] = (commit, ref)
        return ref

    def classify(self, name):
        return classify(name, self.environments)

    def sync(self):
        self.syncs += 1

    def list(self, pattern=None):
        result = []
        for name, (commit, ref) in sorted(self.tags.items()):
            if pattern:
                if any(ch in pattern for ch in "*?["):
                    if not fnmatch.fnmatch(name, pattern):
                        continue
                elif name != pattern and not name.startswith(pattern + "/"):
                    continue
            result.append(
                Tag(name=name, commit=commit, ref=ref, kind=self.classify(name), updated_at=datetime.now(timezone.utc))
            )
        return result

    def read(self, name):
        entry = self.tags.get(name)
        return entry[1] if entry else None

    def resolve(self, name):
        if name not in self.tags:
            raise NotFound(f"tag {name} does not exist", tag=name)
        return self.tags[name][0]

    def verify_commit(self, rev):
        if rev in self._objects:
            return self._objects[rev]
        if rev in self.commits:
            return rev
        matches = [c for c in self.commits if c.startswith(rev)]
        if len(matches) == 1:
            return matches[0]
        raise NotFound(f"commit {rev} does not exist", commit=rev)

    def create(self, name, commit, message=None):
        if name in self.tags:
            raise AlreadyExists(f"tag {name} already exists", tag=name)
        self.apply([RefUpdate(name, commit, None, message)])
        commit, ref = self.tags[name]
        return Tag(name=name, commit=commit, ref=ref, kind=self.classify(name))

    def force_move(self, name, commit, expected=None, message=None):
        if not self.classify(name).is_movable:
            raise ImmutableTag(f"tag {name} is immutable", tag=name)
        current = self.read(name)
        previous = self.tags[name][0] if current else None
        self.apply([RefUpdate(name, commit, current, message)])
        return previous

    def confirm_unchanged(self, name, ref):
        if self.before_apply:
            self.before_apply.pop(0)(self)
        self.confirmed.append(name)
        if self.read(name) != ref:
            raise Conflict(f"{name} changed concurrently", tag=name, detail=f"expected {ref}")

    def apply(self, updates):
        for u in updates:
            if u.expected is not None and not self.classify(u.name).is_movable:
                raise ImmutableTag(f"tag {u.name} is immutable", tag=u.name)
        if self.before_apply:
            self.before_apply.pop(0)(self)
        for u in updates:
            if self.read(u.name) != u.expected:
                raise Conflict(f"{u.name} changed concurrently", tag=u.name, detail="is at X but expected Y")
        refs = {}
        for u in updates:
            refs[u.name] = self.put(u.name, u.commit)
        self.applied.append(list(updates))
        return refs


@pytest.fixture
def store(tmp_path):
    registry = FakeRegistry(cwd=str(tmp_path))
    registry.add_commit("a" * 40, "b" * 40, "c" * 40, "d" * 40, "e" * 40)
    return registry


@pytest.fixture
def fast_config(tmp_path):
    """Config with instant retries and a private lock directory."""
    return Config(
        retry=RetryPolicy(attempts=3, base_delay=0.0, max_delay=0.0),
        lock=LockPolicy(timeout=1.0, poll=0.01, dir=str(tmp_path / "locks")),
    )


def _git(cwd, *args):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)


@pytest.fixture
def git_env(tmp_path, monkeypatch):
    """Isolate git from the user's configuration and give it an identity."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)
    for var in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(var, "Release Bot")
    for var in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(var, "release-bot@example.com")
    return tmp_path


@pytest.fixture
def git_repo(git_env):
    """A repository with three empty commits; returns (path, [c1, c2, c3])."""
    repo = git_env / "repo"
    repo.mkdir()
    _git(repo, "init", "--quiet")
    commits = []
    for i in range(1, 4):
        _git(repo, "commit", "--quiet", "--allow-empty", "-m", f"commit {i}")
        out = subprocess.run(
            ["git", "rev-parse", "HEAD"], cwd=repo, check=True, capture_output=True, text=True
        )
        commits.append(out.stdout.strip())
    return str(repo), commits
