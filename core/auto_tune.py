from __future__ import annotations

"""
Upload worker auto-tuning.

The seeding step uploads many small objects, so the pool is bounded by how
many in-flight requests the machine can sustain rather than by bandwidth.
These helpers pick a worker count from CPU count and available memory.
"""

import os
from dataclasses import dataclass

import psutil

# Per-request overhead of a boto3 upload (buffers, connection, thread stack)
PER_WORKER_OVERHEAD_BYTES = 8 * 1024 * 1024


@dataclass
class SystemSnapshot:
    cpu_count_logical: int
    total_memory_bytes: int | None
    available_memory_bytes: int | None


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def snapshot_system() -> SystemSnapshot:
    mem = psutil.virtual_memory()
    return SystemSnapshot(
        cpu_count_logical=psutil.cpu_count(logical=True) or os.cpu_count() or 1,
        total_memory_bytes=int(mem.total),
        available_memory_bytes=int(mem.available),
    )


def estimate_upload_workers(
    object_size_bytes: int,
    system: SystemSnapshot,
    hard_cap: int = 64,
) -> int:
    """Estimate number of concurrent upload workers.

    Heuristics:
    - Network bound: up to 4x logical cores
    - Memory bound: at most ~25% of available memory, assuming each worker
      holds one object plus fixed per-request overhead
    - Hard cap so the storage API is not flooded
    """
    cpu = max(1, int(system.cpu_count_logical or 1))
    available_bytes = system.available_memory_bytes or 0
    per_worker_bytes = max(0, int(object_size_bytes)) + PER_WORKER_OVERHEAD_BYTES
    if available_bytes <= 0:
        max_by_mem = 1
    else:
        max_by_mem = max(1, int((available_bytes * 0.25) // per_worker_bytes))

    max_by_cpu = max(1, cpu * 4)

    estimate = min(hard_cap, max_by_cpu, max_by_mem)
    return clamp(int(estimate), 1, hard_cap)


def resolve_upload_workers(requested: int, object_size_bytes: int) -> int:
    """Return `requested` if positive, otherwise an estimate for this machine."""
    if requested and requested > 0:
        return int(requested)
    return estimate_upload_workers(object_size_bytes, snapshot_system())
