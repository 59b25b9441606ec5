"""Test helpers shared across modules."""

import threading
import time

from gox.models import ServerDescriptor

# Fake engine that checks its invocation, then stays up.
RUNNING_ENGINE = """#!/bin/sh
[ "$1" = "-config" ] || exit 9
[ -f "$2" ] || exit 8
exec sleep 30
"""


def make_server(**overrides) -> ServerDescriptor:
    values = {
        "id": "srv-1",
        "name": "tokyo",
        "protocol": "vmess",
        "address": "1.2.3.4",
        "port": 443,
        "uuid": "U",
    }
    values.update(overrides)
    return ServerDescriptor(**values)


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll `predicate` until it is true or `timeout` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def watcher_threads() -> list[threading.Thread]:
    """Engine watcher threads that are still alive."""
    return [t for t in threading.enumerate() if t.name.startswith("engine-watcher-")]


def join_watchers(threads=None, timeout: float = 5.0) -> bool:
    """Join the given watcher threads (all live ones by default); True once all have finished."""
    if threads is None:
        threads = watcher_threads()
    for thread in threads:
        thread.join(timeout)
    return not any(t.is_alive() for t in threads)
