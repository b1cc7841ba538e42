from __future__ import annotations

import random
import string
import tempfile
from pathlib import Path
from typing import List, Optional

OBJECT_PREFIX = "image-sync-"
OBJECT_SUFFIX = ".txt"


def random_content(length: int, rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return "".join(rng.choices(string.ascii_letters, k=length))


def generate_objects(
    count: int,
    size: int,
    parent_dir: str | Path = ".",
    rng: Optional[random.Random] = None,
) -> Path:
    """Create `count` files of `size` random ASCII letters in a fresh directory.

    Returns the directory. Partial output is left behind on failure; the
    caller removes the whole directory during cleanup.
    """
    directory = Path(tempfile.mkdtemp(prefix="objects", dir=str(parent_dir)))
    for _ in range(count):
        fd, name = tempfile.mkstemp(prefix=OBJECT_PREFIX, suffix=OBJECT_SUFFIX, dir=str(directory))
        with open(fd, "w", encoding="ascii") as f:
            f.write(random_content(size, rng))
    return directory


def list_object_files(directory: str | Path) -> List[Path]:
    return sorted(p for p in Path(directory).iterdir() if p.is_file())
