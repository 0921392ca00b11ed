"""Deployment lifecycle and per-(sub_path, environment) FIFO admission.

The orchestrator owns scheduling. What it must guarantee: requests for the
same key enter the critical section (read + atomic move) one at a time, in
arrival order, and requests for different keys never wait on each other.
`concurrency_group` gives the key in a form CI concurrency settings accept;
`DeploymentQueue` is an in-process implementation of the same contract.
The mover's compare-and-swap retry remains the safety net if the
orchestrator ever admits two requests at once.
"""

import re
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass

from release_tags import lock
from release_tags.errors import Cancelled, InvalidTransition, LockTimeout

QUEUED = "queued"
IN_PROGRESS = "in_progress"
SUCCEEDED = "succeeded"
FAILED = "failed"
CANCELLED = "cancelled"

_TRANSITIONS = {
    QUEUED: {IN_PROGRESS, CANCELLED},
    IN_PROGRESS: {SUCCEEDED, FAILED, CANCELLED},
    SUCCEEDED: set(),
    FAILED: set(),
    CANCELLED: set(),
}


def queue_key(sub_path: str, environment: str) -> str:
    return lock.key(sub_path, environment)


def concurrency_group(sub_path: str, environment: str, prefix: str = "deploy") -> str:
    """Key as a CI concurrency group name, e.g. ``deploy-api-production``."""
    slug = re.sub(r"[^A-Za-z0-9_.-]+", "-", queue_key(sub_path, environment))
    return f"{prefix}-{slug}"


@dataclass(eq=False)
class Deployment:
    sub_path: str
    environment: str
    commit: str
    version: str | None = None
    will_move_env_tag: bool = True
    status: str = QUEUED

    @property
    def key(self) -> str:
        return queue_key(self.sub_path, self.environment)

    @property
    def finished(self) -> bool:
        return self.status in (SUCCEEDED, FAILED, CANCELLED)

    def transition(self, status: str) -> None:
        if status not in _TRANSITIONS.get(self.status, set()):
            raise InvalidTransition(
                f"deployment {self.key}@{self.commit[:12]} cannot go from {self.status} to {status}",
                tag=self.key,
                commit=self.commit,
            )
        self.status = status


class DeploymentQueue:
    def __init__(self):
        self._cond = threading.Condition()
        self._waiting: dict[str, deque] = {}
        self._active: dict[str, Deployment] = {}

    def submit(self, deployment: Deployment) -> None:
        with self._cond:
            self._waiting.setdefault(deployment.key, deque()).append(deployment)

    def pending(self, key: str) -> list[Deployment]:
        with self._cond:
            return list(self._waiting.get(key, ()))

    def active(self, key: str) -> Deployment | None:
        with self._cond:
            return self._active.get(key)

    def cancel(self, deployment: Deployment) -> bool:
        """Withdraw a request that has not been admitted. Returns False once it has started."""
        with self._cond:
            waiting = self._waiting.get(deployment.key)
            if deployment.status != QUEUED or not waiting or deployment not in waiting:
                return False
            waiting.remove(deployment)
            deployment.transition(CANCELLED)
            self._cond.notify_all()
            return True

    def _is_next(self, deployment: Deployment) -> bool:
        waiting = self._waiting.get(deployment.key)
        return deployment.key not in self._active and bool(waiting) and waiting[0] is deployment

    @contextmanager
    def admitted(self, deployment: Deployment, timeout: float | None = None):
        """Block until `deployment` is first in line for its key, then hold the key."""
        with self._cond:
            if deployment.status == QUEUED and deployment not in self._waiting.get(deployment.key, ()):
                self._waiting.setdefault(deployment.key, deque()).append(deployment)
            admitted = self._cond.wait_for(
                lambda: deployment.status == CANCELLED or self._is_next(deployment), timeout
            )
            if deployment.status == CANCELLED:
                raise Cancelled(f"deployment {deployment.key} was cancelled before it started", tag=deployment.key)
            if not admitted:
                self._waiting[deployment.key].remove(deployment)
                deployment.transition(CANCELLED)
                self._cond.notify_all()
                raise LockTimeout(
                    f"deployment {deployment.key} not admitted within {timeout:g}s", tag=deployment.key
                )
            self._waiting[deployment.key].popleft()
            self._active[deployment.key] = deployment
            deployment.transition(IN_PROGRESS)
        try:
            yield deployment
        finally:
            with self._cond:
                self._active.pop(deployment.key, None)
                self._cond.notify_all()


@contextmanager
def _unqueued(deployment: Deployment):
    deployment.transition(IN_PROGRESS)
    yield deployment


def run_deployment(deployment: Deployment, move, queue: DeploymentQueue | None = None):
    """Drive a deployment through its lifecycle.

    `move(deployment)` moves the environment tag and runs inside the
    critical section; its return value is passed back. A raised error marks
    the deployment failed and propagates.
    """
    gate = queue.admitted(deployment) if queue is not None else _unqueued(deployment)
    with gate:
        try:
            result = move(deployment) if deployment.will_move_env_tag else None
        except BaseException:
            deployment.transition(FAILED)
            raise
        deployment.transition(SUCCEEDED)
        return result
