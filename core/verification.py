from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from core.errors import ObjectNotFoundError


@dataclass
class RetryPolicy:
    """How often to re-list a bucket before declaring an object missing.

    The default of one attempt is a single pass with no waiting.
    """
    max_attempts: int = 1
    delay_base: float = 2.0
    delay_max: float = 30.0
    jitter: float = 0.1

    def delay_for(self, attempt: int) -> float:
        delay = min(self.delay_base * (2 ** attempt), self.delay_max)
        return delay + random.uniform(0, self.jitter * delay)


class VerificationScanner:
    """Checks that every expected object name is listed in a bucket.

    `lister` is anything with `select_objects(bucket, pattern) -> list of keys`.
    """

    def __init__(
        self,
        lister,
        retry_policy: Optional[RetryPolicy] = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.lister = lister
        self.retry_policy = retry_policy or RetryPolicy()
        self._logger = logger or logging.getLogger("image-sync.verify")
        self._sleep = sleep

    @staticmethod
    def _first_missing(expected: List[str], listed: set) -> Optional[str]:
        for name in expected:
            if name not in listed:
                return name
        return None

    def verify(self, bucket: str, expected: Iterable[str | Path], pattern: str = "") -> None:
        """Raise ObjectNotFoundError naming the first expected object not in bucket."""
        names = [Path(e).name for e in expected]
        attempts = max(1, self.retry_policy.max_attempts)
        self._logger.info("Verify objects in Bucket %s", bucket)
        for attempt in range(attempts):
            listed = set(self.lister.select_objects(bucket, pattern))
            missing = self._first_missing(names, listed)
            if missing is None:
                self._logger.info("All %d objects present in bucket %s", len(names), bucket)
                return
            if attempt == attempts - 1:
                self._logger.error("ERROR: Object %s not found in the bucket %s", missing, bucket)
                raise ObjectNotFoundError(bucket, missing)
            delay = self.retry_policy.delay_for(attempt)
            self._logger.warning(
                "Object %s not yet in bucket %s, re-listing in %.1fs (attempt %d/%d)",
                missing, bucket, delay, attempt + 1, attempts,
            )
            self._sleep(delay)
