"""Tests for queue.py — deployment lifecycle and per-key FIFO admission."""

import threading

import pytest

from release_tags.errors import Cancelled, InvalidTransition, LockTimeout
from release_tags.queue import (
    CANCELLED,
    FAILED,
    IN_PROGRESS,
    QUEUED,
    SUCCEEDED,
    Deployment,
    DeploymentQueue,
    concurrency_group,
    queue_key,
    run_deployment,
)

A, B, C = "a" * 40, "b" * 40, "c" * 40


def test_queue_key_and_group():
    assert queue_key("", "production") == "production"
    assert queue_key("services/api", "production") == "services/api/production"
    assert concurrency_group("services/api", "production") == "deploy-services-api-production"
    assert concurrency_group("", "staging", prefix="release") == "release-staging"


def test_lifecycle():
    d = Deployment("api", "production", A)
    assert d.status == QUEUED
    assert not d.finished
    d.transition(IN_PROGRESS)
    d.transition(SUCCEEDED)
    assert d.finished


@pytest.mark.parametrize(
    "path",
    [
        [SUCCEEDED],
        [FAILED],
        [IN_PROGRESS, QUEUED],
        [IN_PROGRESS, SUCCEEDED, FAILED],
        [CANCELLED, IN_PROGRESS],
    ],
)
def test_invalid_transitions(path):
    d = Deployment("", "production", A)
    with pytest.raises(InvalidTransition):
        for status in path:
            d.transition(status)


def test_run_deployment_success():
    d = Deployment("", "production", A)
    assert run_deployment(d, lambda dep: dep.commit) == A
    assert d.status == SUCCEEDED


def test_run_deployment_failure_propagates():
    d = Deployment("", "production", A)

    def boom(dep):
        raise RuntimeError("deploy step failed")

    with pytest.raises(RuntimeError):
        run_deployment(d, boom)
    assert d.status == FAILED


def test_run_deployment_interrupted_is_failed():
    q = DeploymentQueue()
    d = Deployment("", "production", A)
    follower = Deployment("", "production", B)

    def interrupted(dep):
        raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        run_deployment(d, interrupted, queue=q)
    assert d.status == FAILED
    assert d.finished
    assert q.active(d.key) is None
    assert run_deployment(follower, lambda dep: dep.commit, queue=q) == B


def test_run_deployment_exit_is_failed():
    d = Deployment("", "production", A)

    def exits(dep):
        raise SystemExit(130)

    with pytest.raises(SystemExit):
        run_deployment(d, exits)
    assert d.status == FAILED


def test_run_deployment_without_env_move():
    d = Deployment("", "production", A, will_move_env_tag=False)
    called = []
    assert run_deployment(d, called.append) is None
    assert called == []
    assert d.status == SUCCEEDED


def test_run_deployment_through_queue():
    q = DeploymentQueue()
    d = Deployment("api", "production", A)
    seen = []
    run_deployment(d, lambda dep: seen.append(q.active(dep.key)), queue=q)
    assert seen == [d]
    assert q.active(d.key) is None
    assert d.status == SUCCEEDED


def test_same_key_admitted_in_arrival_order():
    q = DeploymentQueue()
    deployments = [Deployment("api", "production", c) for c in (A, B, C)]
    for d in deployments:
        q.submit(d)
    order = []

    def worker(d):
        with q.admitted(d, timeout=5):
            order.append(d.commit)

    threads = [threading.Thread(target=worker, args=(d,)) for d in reversed(deployments)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert order == [A, B, C]
    assert all(d.status == IN_PROGRESS for d in deployments)
    assert q.pending("api/production") == []


def test_different_keys_do_not_wait():
    q = DeploymentQueue()
    prod = Deployment("api", "production", A)
    staging = Deployment("api", "staging", B)
    other = Deployment("web", "production", C)
    with q.admitted(prod):
        with q.admitted(staging, timeout=0.5):
            with q.admitted(other, timeout=0.5):
                assert q.active("api/production") is prod
                assert q.active("api/staging") is staging
                assert q.active("web/production") is other


def test_same_key_times_out_while_held():
    q = DeploymentQueue()
    first = Deployment("", "production", A)
    second = Deployment("", "production", B)
    with q.admitted(first):
        with pytest.raises(LockTimeout):
            with q.admitted(second, timeout=0.05):
                pass
    assert second.status == CANCELLED
    assert q.pending("production") == []


def test_cancel_queued():
    q = DeploymentQueue()
    first = Deployment("", "production", A)
    second = Deployment("", "production", B)
    q.submit(first)
    q.submit(second)

    assert q.cancel(second) is True
    assert second.status == CANCELLED
    assert q.pending("production") == [first]
    with pytest.raises(Cancelled):
        with q.admitted(second):
            pass


def test_cancel_after_start_refused():
    q = DeploymentQueue()
    d = Deployment("", "production", A)
    with q.admitted(d):
        assert q.cancel(d) is False
    assert d.status == IN_PROGRESS


def test_cancelled_head_unblocks_next():
    q = DeploymentQueue()
    first = Deployment("", "production", A)
    second = Deployment("", "production", B)
    q.submit(first)
    q.submit(second)
    q.cancel(first)
    with q.admitted(second, timeout=0.5):
        assert q.active("production") is second
