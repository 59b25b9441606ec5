"""
Resource usage of the running engine process.

Takes a point-in-time CPU and memory snapshot of the engine (and any child
processes it spawned) for the status endpoint.
"""

import logging
from datetime import datetime

import psutil

logger = logging.getLogger(__name__)


def get_engine_metrics(pid: int | None, started_at: datetime = None) -> dict | None:
    """Get current resource usage for the engine, or None if it is not alive."""
    if pid is None:
        return None

    try:
        proc = psutil.Process(pid)
        cpu_percent = proc.cpu_percent(interval=0.1)
        memory_mb = proc.memory_info().rss / 1024 / 1024

        try:
            for child in proc.children(recursive=True):
                cpu_percent += child.cpu_percent(interval=0.1)
                memory_mb += child.memory_info().rss / 1024 / 1024
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    except psutil.NoSuchProcess:
        logger.warning(f"Engine process {pid} no longer exists")
        return None
    except psutil.AccessDenied:
        logger.warning(f"Access denied reading metrics for engine process {pid}")
        return None

    return {
        "pid": pid,
        "cpu_percent": round(cpu_percent, 1),
        "memory_mb": round(memory_mb, 1),
        "uptime_seconds": (datetime.now() - started_at).total_seconds() if started_at else 0,
    }
