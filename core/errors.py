from __future__ import annotations

from typing import TYPE_CHECKING, List, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from core.cli_runner import CommandResult
    from core.upload_pipeline import UploadResult


class HarnessError(Exception):
    """Base exception for image sync harness errors."""
    pass


class SpecError(HarnessError):
    """Raised when a sync spec or spec file is invalid."""
    pass


class ProvisioningError(HarnessError):
    """Raised when a service instance or bucket cannot be created."""
    pass


class UploadCancelled(HarnessError):
    """Raised for tasks skipped because the batch was cancelled."""
    pass


class UploadError(HarnessError):
    """Raised when at least one upload in a batch failed."""

    def __init__(self, bucket: str, failed: Sequence["UploadResult"]):
        self.bucket = bucket
        self.failed: List["UploadResult"] = list(failed)
        names = ", ".join(r.task.object_name for r in self.failed[:5])
        more = len(self.failed) - 5
        if more > 0:
            names += f" (+{more} more)"
        super().__init__(
            f"upload failed: {len(self.failed)} object(s) to bucket {bucket}: {names}"
        )


class ObjectNotFoundError(HarnessError):
    """Raised when an expected object is missing from a bucket."""

    def __init__(self, bucket: str, object_name: str):
        self.bucket = bucket
        self.object_name = object_name
        super().__init__(f"Object {object_name} not found in the bucket {bucket}")


class SyncCommandError(HarnessError):
    """Raised when the sync command exits with a non-zero status."""

    def __init__(self, result: "CommandResult"):
        self.result = result
        stderr = (result.stderr or "").strip()
        msg = f"sync command exited with status {result.status}"
        if stderr:
            msg += f": {stderr.splitlines()[-1]}"
        super().__init__(msg)
