"""Environment tag moves: local lock, compare-and-swap, bounded jittered retry.

1. take the advisory lock for (sub_path, environment)
2. fetch, then read the tag's current value
3. apply the move (plus any companion tags) as one atomic update, or confirm
   the value still holds when the tag is already at the target
4. on Conflict re-read and retry, up to `retry.attempts` tries in total
5. release the lock, always
"""

import os
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from release_tags import lock, log
from release_tags.classify import environment_tag_name
from release_tags.config import Config
from release_tags.errors import Conflict
from release_tags.registry import RefUpdate, TagRegistry
from release_tags.version import tag_name

HISTORY_PREFIX = "deployments"


@dataclass(frozen=True)
class MoveResult:
    tag_name: str
    previous_commit: str | None
    new_commit: str
    attempts: int
    record: str | None = None

    @property
    def changed(self) -> bool:
        return self.previous_commit != self.new_commit


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Full-jitter exponential backoff before retry number `attempt` (1-based)."""
    return random.uniform(0, min(cap, base * 2 ** (attempt - 1)))


def history_prefix(sub_path: str, environment: str) -> str:
    return tag_name(sub_path, f"{HISTORY_PREFIX}/{environment}")


def record_tag_name(sub_path: str, environment: str, when: datetime) -> str:
    """Immutable marker of one deployment, sortable by name."""
    return f"{history_prefix(sub_path, environment)}/{when.strftime('%Y%m%dT%H%M%S%fZ')}"


class AtomicTagMover:
    def __init__(self, registry: TagRegistry, config: Config | None = None, sleep=time.sleep):
        self.registry = registry
        self.config = config or Config()
        self._sleep = sleep

    def _lock_dir(self) -> str:
        return os.path.join(self.registry.cwd or ".", self.config.lock.dir)

    def move(
        self,
        sub_path: str,
        environment: str,
        commit: str,
        companions: tuple[RefUpdate, ...] = (),
        message: str | None = None,
    ) -> MoveResult:
        """Point the environment tag at `commit`. Raises Conflict or LockTimeout."""
        name = environment_tag_name(sub_path, environment)
        with lock.held(
            lock.key(sub_path, environment),
            timeout=self.config.lock.timeout,
            poll=self.config.lock.poll,
            directory=self._lock_dir(),
        ):
            return self._move_locked(sub_path, environment, name, commit, tuple(companions), message)

    def _move_locked(self, sub_path, environment, name, commit, companions, message) -> MoveResult:
        retry = self.config.retry
        for attempt in range(1, retry.attempts + 1):
            # Fetch under the lock; a read taken before it may already be stale.
            self.registry.sync()
            current = self.registry.read(name)
            previous = self.registry.verify_commit(current) if current else None

            updates = list(companions)
            record = None
            if previous != commit:
                updates.insert(0, RefUpdate(name, commit, current, message))
                if self.config.record_history:
                    record = record_tag_name(sub_path, environment, datetime.now(timezone.utc))
                    updates.append(RefUpdate(record, commit, None, f"{name} {previous or '-'} -> {commit}"))

            try:
                if updates:
                    self.registry.apply(updates)
                else:
                    self.registry.confirm_unchanged(name, current)
            except Conflict as e:
                if attempt >= retry.attempts:
                    raise Conflict(
                        f"{name} kept changing concurrently; gave up after {attempt} attempts",
                        tag=name,
                        commit=commit,
                        detail=e.detail,
                    ) from e
                delay = backoff_delay(attempt, retry.base_delay, retry.max_delay)
                log.warn(f"{name} changed concurrently (attempt {attempt}/{retry.attempts}), retrying in {delay:.2f}s")
                self._sleep(delay)
                continue

            if previous == commit:
                log.step(f"{name} already at {commit[:12]}")
            else:
                log.success(f"{name}: {previous[:12] if previous else '(new)'} → {commit[:12]}")
            return MoveResult(name, previous, commit, attempt, record)

        raise AssertionError("retry loop exited without result")
