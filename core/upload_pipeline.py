from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from core.errors import UploadCancelled, UploadError

DEFAULT_UPLOAD_WORKERS = 20

# Put on the work queue once per worker after the last task
_CLOSED = object()


@dataclass(frozen=True)
class UploadTask:
    local_path: Path
    bucket: str

    @property
    def object_name(self) -> str:
        return self.local_path.name


@dataclass(frozen=True)
class UploadResult:
    task: UploadTask
    success: bool
    error: Optional[BaseException] = None


@dataclass
class BatchReport:
    bucket: str
    results: List[UploadResult] = field(default_factory=list)

    @property
    def failed(self) -> List[UploadResult]:
        return [r for r in self.results if not r.success]

    @property
    def succeeded(self) -> List[UploadResult]:
        return [r for r in self.results if r.success]

    @property
    def ok(self) -> bool:
        return not self.failed


class UploadPipeline:
    """Uploads a batch of local files to one bucket with a fixed worker pool.

    Workers share a bounded work queue and a result queue. Every task yields
    exactly one UploadResult; a failed upload never stops the others, and the
    aggregator always drains all results before judging the batch.

    `uploader` is anything with `upload_object(local_path, object_name, bucket)`.
    """

    def __init__(
        self,
        uploader,
        workers: int = DEFAULT_UPLOAD_WORKERS,
        cancel_event: Optional[threading.Event] = None,
        logger: logging.Logger | None = None,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.uploader = uploader
        self.workers = workers
        self.cancel_event = cancel_event or threading.Event()
        self._logger = logger or logging.getLogger("image-sync.upload")

    def cancel(self) -> None:
        self.cancel_event.set()

    def run(self, paths: Iterable[str | Path], bucket: str) -> BatchReport:
        tasks = [UploadTask(local_path=Path(p), bucket=bucket) for p in paths]
        report = BatchReport(bucket=bucket)
        if not tasks:
            return report

        n_workers = min(self.workers, len(tasks))
        # Room for every task plus one close marker per worker, so puts never block
        work: queue.Queue = queue.Queue(maxsize=len(tasks) + n_workers)
        results: queue.Queue = queue.Queue(maxsize=len(tasks))

        with ThreadPoolExecutor(max_workers=n_workers, thread_name_prefix="upload") as ex:
            for _ in range(n_workers):
                ex.submit(self._worker, work, results)
            try:
                for task in tasks:
                    work.put(task)
                for _ in range(len(tasks)):
                    report.results.append(results.get())
            except BaseException:
                # Interrupted: queued tasks finish as cancelled so the pool can shut down
                self.cancel_event.set()
                self._logger.warning("Upload batch to bucket %s interrupted", bucket)
                raise
            finally:
                for _ in range(n_workers):
                    work.put(_CLOSED)

        if report.failed:
            self._logger.error(
                "%d of %d uploads to bucket %s failed", len(report.failed), len(tasks), bucket
            )
        else:
            self._logger.info("Uploaded %d objects to bucket %s", len(tasks), bucket)
        return report

    def upload(self, paths: Iterable[str | Path], bucket: str) -> BatchReport:
        """Like run(), but raise UploadError if any upload failed."""
        report = self.run(paths, bucket)
        if not report.ok:
            raise UploadError(bucket, report.failed)
        return report

    def _worker(self, work: queue.Queue, results: queue.Queue) -> None:
        while True:
            task = work.get()
            if task is _CLOSED:
                return
            results.put(self._upload_one(task))

    def _upload_one(self, task: UploadTask) -> UploadResult:
        if self.cancel_event.is_set():
            return UploadResult(task, False, UploadCancelled(f"upload of {task.local_path} cancelled"))
        try:
            self.uploader.upload_object(task.local_path, task.object_name, task.bucket)
        except Exception as e:
            self._logger.error("ERROR: %s, File %s upload failed", e, task.local_path)
            return UploadResult(task, False, e)
        return UploadResult(task, True)
