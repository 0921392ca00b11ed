"""Git-backed tag store: list, resolve, create, and all-or-nothing ref updates.

Tags are annotated tag objects under ``refs/tags/``; the tagger date is the
moment the tag was (re)pointed. Every update is a compare-and-swap on the raw
ref value: locally through one ``git update-ref --stdin`` transaction, or,
when a remote is configured, through ``git push --atomic`` with a
``--force-with-lease`` per ref, mirrored locally afterwards.

Nothing is cached: every call reads the repository again.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

from release_tags import log, process
from release_tags.classify import DEFAULT_ENVIRONMENTS, TagKind, classify
from release_tags.errors import AlreadyExists, Conflict, ImmutableTag, NotFound, TagStoreError

_FORMAT = "%(refname:strip=2)%09%(objectname)%09%(*objectname)%09%(creatordate:iso-strict)"

# git's wording when a ref was not what we expected, or a concurrent writer holds it.
_CONFLICT_RE = re.compile(
    r"cannot lock ref|but expected|already exists|stale info|fetch first|"
    r"atomic push failed|File exists"
)

_UNSET = object()


@dataclass(frozen=True)
class Tag:
    name: str
    commit: str
    ref: str
    kind: TagKind
    updated_at: datetime | None = None

    @property
    def is_movable(self) -> bool:
        return self.kind.is_movable


@dataclass(frozen=True)
class RefUpdate:
    """Point tag `name` at `commit` if it currently holds `expected` (None: must not exist)."""

    name: str
    commit: str
    expected: str | None = None
    message: str | None = None


def _parse_date(value: str) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class TagRegistry:
    def __init__(self, cwd: str | None = None, remote: str | None = None, environments=DEFAULT_ENVIRONMENTS):
        self.cwd = cwd
        self.remote = remote
        self.environments = tuple(environments)

    def _git(self, *args: str, input: str | None = None) -> process.Result:
        return process.run(["git", *args], cwd=self.cwd, input=input)

    def classify(self, name: str) -> TagKind:
        return classify(name, self.environments)

    # ── reads ──────────────────────────────────────────────────────────

    def sync(self) -> None:
        """Force-fetch every tag from the remote so moved tags are seen as moved."""
        if not self.remote:
            return
        result = self._git("fetch", "--quiet", "--no-tags", self.remote, "+refs/tags/*:refs/tags/*")
        if not result.ok:
            raise TagStoreError(f"fetching tags from {self.remote} failed", detail=result.stderr.strip())

    def list(self, pattern: str | None = None) -> list[Tag]:
        """List tags matching a for-each-ref pattern (a glob, or a prefix ending at '/')."""
        ref_pattern = f"refs/tags/{pattern}" if pattern else "refs/tags"
        result = self._git("for-each-ref", f"--format={_FORMAT}", ref_pattern)
        if not result.ok:
            raise TagStoreError("listing tags failed", detail=result.stderr.strip())

        tags = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            name, obj, peeled, date = (line.split("\t") + ["", "", ""])[:4]
            tags.append(
                Tag(
                    name=name,
                    commit=peeled or obj,
                    ref=obj,
                    kind=self.classify(name),
                    updated_at=_parse_date(date),
                )
            )
        return tags

    def read(self, name: str) -> str | None:
        """Raw ref value (the compare-and-swap token), or None if the tag is absent."""
        result = self._git("rev-parse", "--verify", "--quiet", f"refs/tags/{name}")
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def resolve(self, name: str) -> str:
        """Commit the tag points at. Raises NotFound."""
        result = self._git("rev-parse", "--verify", "--quiet", f"refs/tags/{name}^{{commit}}")
        if not result.ok or not result.stdout.strip():
            raise NotFound(f"tag {name} does not exist", tag=name)
        return result.stdout.strip()

    def verify_commit(self, rev: str) -> str:
        """Full commit id for any revision (sha, tag object, HEAD...). Raises NotFound."""
        result = self._git("rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}")
        if not result.ok or not result.stdout.strip():
            raise NotFound(f"commit {rev} does not exist", commit=rev)
        return result.stdout.strip()

    # ── writes ─────────────────────────────────────────────────────────

    def create(self, name: str, commit: str, message: str | None = None) -> Tag:
        """Create a tag; never clobbers. Raises AlreadyExists."""
        if self.read(name) is not None:
            raise AlreadyExists(f"tag {name} already exists", tag=name, commit=self.resolve(name))
        try:
            refs = self.apply([RefUpdate(name, commit, None, message)])
        except Conflict as e:
            raise AlreadyExists(f"tag {name} already exists", tag=name, detail=e.detail) from e
        return Tag(
            name=name,
            commit=commit,
            ref=refs[name],
            kind=self.classify(name),
            updated_at=datetime.now(timezone.utc),
        )

    def force_move(self, name: str, commit: str, expected=_UNSET, message: str | None = None) -> str | None:
        """Move an environment tag; returns the commit it pointed at before (None if new).

        `expected` defaults to the current ref value; pass a value read earlier to
        make the move conditional on nothing having changed since.
        """
        if not self.classify(name).is_movable:
            raise ImmutableTag(f"tag {name} is not an environment tag and cannot be moved", tag=name, commit=commit)
        current = self.read(name) if expected is _UNSET else expected
        previous = self.verify_commit(current) if current else None
        self.apply([RefUpdate(name, commit, current, message)])
        return previous

    def confirm_unchanged(self, name: str, ref: str) -> None:
        """Check that the store still holds `ref` for `name`. Raises Conflict otherwise.

        With a remote this pushes the unchanged value under a lease, so the
        answer comes from the remote rather than from the last fetch.
        """
        if self.remote:
            self._push_atomic([RefUpdate(name, ref, ref)], {name: ref})
            return
        if self.read(name) != ref:
            raise Conflict(f"{name} changed concurrently", tag=name, detail=f"expected {ref}")

    def apply(self, updates: list[RefUpdate]) -> dict[str, str]:
        """Apply every update or none. Returns tag name -> new ref value.

        Raises Conflict if any ref changed since `expected` was read, and
        ImmutableTag if an update would repoint an existing non-environment tag.
        """
        if not updates:
            return {}
        for update in updates:
            if update.expected is not None and not self.classify(update.name).is_movable:
                raise ImmutableTag(
                    f"tag {update.name} is immutable", tag=update.name, commit=update.commit
                )

        objects = {
            u.name: self._tag_object(u.name, u.commit, u.message or f"{u.name} -> {u.commit}")
            for u in updates
        }
        if self.remote:
            self._push_atomic(updates, objects)
            self._update_local(updates, objects, check_old=False)
        else:
            self._update_local(updates, objects, check_old=True)
        for u in updates:
            log.debug(f"{u.name} -> {u.commit[:12]}")
        return objects

    def _tag_object(self, name: str, commit: str, message: str) -> str:
        ident = self._git("var", "GIT_COMMITTER_IDENT")
        if not ident.ok:
            raise TagStoreError("cannot determine tagger identity", tag=name, detail=ident.stderr.strip())
        body = (
            f"object {commit}\n"
            "type commit\n"
            f"tag {name}\n"
            f"tagger {ident.stdout.strip()}\n"
            "\n"
            f"{message}\n"
        )
        result = self._git("mktag", input=body)
        if not result.ok:
            raise TagStoreError(f"creating tag object for {name} failed", tag=name, commit=commit, detail=result.stderr.strip())
        return result.stdout.strip()

    def _update_local(self, updates: list[RefUpdate], objects: dict[str, str], check_old: bool) -> None:
        lines = []
        for u in updates:
            ref = f"refs/tags/{u.name}"
            if not check_old:
                lines.append(f"update {ref} {objects[u.name]}")
            elif u.expected is None:
                lines.append(f"create {ref} {objects[u.name]}")
            else:
                lines.append(f"update {ref} {objects[u.name]} {u.expected}")
        result = self._git("update-ref", "--stdin", input="\n".join(lines) + "\n")
        if result.ok:
            return
        names = ", ".join(u.name for u in updates)
        if _CONFLICT_RE.search(result.stderr):
            raise Conflict(f"{names} changed concurrently", tag=updates[0].name, detail=result.stderr.strip())
        raise TagStoreError(f"updating {names} failed", tag=updates[0].name, detail=result.stderr.strip())

    def _push_atomic(self, updates: list[RefUpdate], objects: dict[str, str]) -> None:
        args = ["push", "--atomic", "--porcelain"]
        for u in updates:
            args.append(f"--force-with-lease=refs/tags/{u.name}:{u.expected or ''}")
        args.append(self.remote)
        args.extend(f"{objects[u.name]}:refs/tags/{u.name}" for u in updates)
        result = self._git(*args)
        if result.ok:
            return
        names = ", ".join(u.name for u in updates)
        output = f"{result.stdout}\n{result.stderr}".strip()
        if _CONFLICT_RE.search(output) or "[rejected]" in output:
            raise Conflict(f"{names} changed on {self.remote} concurrently", tag=updates[0].name, detail=output)
        raise TagStoreError(f"pushing {names} to {self.remote} failed", tag=updates[0].name, detail=output)
