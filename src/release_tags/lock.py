"""Advisory lock files keyed by (sub_path, environment), with stale recovery."""

import json
import os
import threading
import time
from contextlib import contextmanager
from urllib.parse import quote

from release_tags.errors import LockTimeout

LOCK_DIR = ".release-tags-locks"

# A lock file younger than this may still be mid-write by its owner.
_WRITE_GRACE = 1.0


def key(sub_path: str, environment: str) -> str:
    return f"{sub_path}/{environment}" if sub_path else environment


def _lock_path(name: str, directory: str = LOCK_DIR) -> str:
    return os.path.join(directory, quote(name, safe="") + ".lock")


def _is_pid_running(pid) -> bool:
    """Check if a process is running via kill(pid, 0)."""
    if not isinstance(pid, int) or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except PermissionError:
        return True
    except OSError:
        return False


def _write_exclusive(path: str, name: str) -> bool:
    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return False
    with os.fdopen(fd, "w") as f:
        json.dump({"pid": os.getpid(), "timestamp": time.time(), "key": name}, f)
    return True


def _inspect(path: str):
    """(inode, mtime, contents) of the lock file, or None if it is gone.

    Contents are None when the file is empty or not a JSON object.
    """
    try:
        with open(path, "rb") as f:
            st = os.fstat(f.fileno())
            raw = f.read()
    except FileNotFoundError:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        data = None
    return st.st_ino, st.st_mtime, data if isinstance(data, dict) else None


def _break(path: str, inode: int) -> None:
    """Remove the lock file judged stale, unless someone replaced it since.

    The file is renamed aside first, so the inode check looks at exactly the
    file that was taken away. A replacement is linked back into place.
    """
    aside = f"{path}.{os.getpid()}-{threading.get_ident()}.stale"
    try:
        os.rename(path, aside)
    except FileNotFoundError:
        return
    try:
        if os.stat(aside).st_ino != inode:
            try:
                os.link(aside, path)
            except FileExistsError:
                pass
    finally:
        os.remove(aside)


def acquire(name: str, directory: str = LOCK_DIR) -> bool:
    """Try once to take the lock. Returns True if acquired, False if held by a live process.

    Automatically breaks stale locks (holding PID no longer running) and
    corrupt lock files.
    """
    os.makedirs(directory, exist_ok=True)
    path = _lock_path(name, directory)
    if _write_exclusive(path, name):
        return True

    info = _inspect(path)
    if info is not None:
        inode, mtime, data = info
        if data is None:
            if time.time() - mtime < _WRITE_GRACE:
                return False
        elif _is_pid_running(data.get("pid")):
            return False
        # Stale or corrupt: break it, then race for it like everyone else
        _break(path, inode)
    return _write_exclusive(path, name)


def release(name: str, directory: str = LOCK_DIR) -> None:
    """Release the lock if this process holds it."""
    data = read_lock(name, directory)
    if data is not None and data.get("pid") != os.getpid():
        return
    try:
        os.remove(_lock_path(name, directory))
    except FileNotFoundError:
        pass


def read_lock(name: str, directory: str = LOCK_DIR) -> dict | None:
    """Read current lock info, or None if not locked (or unreadable)."""
    path = _lock_path(name, directory)
    try:
        with open(path) as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


@contextmanager
def held(name: str, timeout: float = 30.0, poll: float = 0.1, directory: str = LOCK_DIR):
    """Hold the lock for the duration of the block; LockTimeout if not acquired in time."""
    deadline = time.monotonic() + timeout
    while not acquire(name, directory):
        if time.monotonic() >= deadline:
            data = read_lock(name, directory) or {}
            raise LockTimeout(
                f"lock for {name} held by PID {data.get('pid', 'unknown')}",
                tag=name,
                detail=f"not acquired within {timeout:g}s",
            )
        time.sleep(poll)
    try:
        yield
    finally:
        release(name, directory)
