from __future__ import annotations

"""
Replication spec model handed to the `image sync` command.

A run is a list of SyncSpec entries. Each entry names one source bucket (and
the COS instance that owns it) plus the buckets it must be copied to. The
YAML layout matches what the sync command reads:

    - source:
        bucket: image-sync-abcdef
        cos: cos-image-sync-test-ghijkl
        object: ""
        plan: smart
        region: us-east
      target:
        - bucket: image-sync-mnopqr
          plan: cold
          region: eu-de
"""

import random
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import yaml

from core.errors import SpecError

PLANS = ["smart", "standard", "vault", "cold"]
REGIONS = ["us-east", "jp-tok", "us-south", "au-syd", "eu-de", "ca-tor"]

BUCKET_PREFIX = "image-sync-"
INSTANCE_PREFIX = "cos-image-sync-test-"
NAME_SUFFIX_LENGTH = 6


@dataclass
class Source:
    bucket: str
    cos: str
    object: str = ""
    plan: str = "standard"
    region: str = "us-east"


@dataclass
class TargetItem:
    bucket: str
    plan: str = "standard"
    region: str = "us-east"


@dataclass
class SyncSpec:
    source: Source
    target: List[TargetItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"source": asdict(self.source), "target": [asdict(t) for t in self.target]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncSpec":
        try:
            src = data["source"]
            source = Source(
                bucket=src["bucket"],
                cos=src["cos"],
                object=src.get("object") or "",
                plan=src["plan"],
                region=src["region"],
            )
            targets = [
                TargetItem(bucket=t["bucket"], plan=t["plan"], region=t["region"])
                for t in (data.get("target") or [])
            ]
        except (KeyError, TypeError) as e:
            raise SpecError(f"Malformed spec entry: missing {e}") from e
        return cls(source=source, target=targets)


def random_name(length: int = NAME_SUFFIX_LENGTH, rng: Optional[random.Random] = None) -> str:
    """Random lowercase string, safe for bucket and instance names."""
    rng = rng or random
    return "".join(chr(rng.randrange(ord("a"), ord("z") + 1)) for _ in range(length))


def generate_spec(
    targets_per_source: int,
    plans: Sequence[str] = PLANS,
    regions: Sequence[str] = REGIONS,
    rng: Optional[random.Random] = None,
) -> SyncSpec:
    rng = rng or random
    source = Source(
        bucket=BUCKET_PREFIX + random_name(rng=rng),
        cos=INSTANCE_PREFIX + random_name(rng=rng),
        object="",
        plan=rng.choice(list(plans)),
        region=rng.choice(list(regions)),
    )
    targets = [
        TargetItem(
            bucket=BUCKET_PREFIX + random_name(rng=rng),
            plan=rng.choice(list(plans)),
            region=rng.choice(list(regions)),
        )
        for _ in range(targets_per_source)
    ]
    return SyncSpec(source=source, target=targets)


def generate_specs(
    no_of_sources: int,
    targets_per_source: int,
    plans: Sequence[str] = PLANS,
    regions: Sequence[str] = REGIONS,
    rng: Optional[random.Random] = None,
) -> List[SyncSpec]:
    return [generate_spec(targets_per_source, plans, regions, rng) for _ in range(no_of_sources)]


def validate_specs(
    specs: Iterable[SyncSpec],
    plans: Sequence[str] = PLANS,
    regions: Sequence[str] = REGIONS,
) -> None:
    """Raise SpecError on unknown regions/plans or duplicate bucket names."""
    seen = set()

    def check(bucket: str, plan: str, region: str) -> None:
        if not bucket:
            raise SpecError("Bucket name must not be empty")
        if bucket in seen:
            raise SpecError(f"Duplicate bucket name: {bucket}")
        seen.add(bucket)
        if plan not in plans:
            raise SpecError(f"Invalid plan {plan!r} for bucket {bucket}; expected one of {list(plans)}")
        if region not in regions:
            raise SpecError(f"Invalid region {region!r} for bucket {bucket}; expected one of {list(regions)}")

    for spec in specs:
        if not spec.source.cos:
            raise SpecError(f"Source bucket {spec.source.bucket} has no COS instance")
        check(spec.source.bucket, spec.source.plan, spec.source.region)
        for tgt in spec.target:
            check(tgt.bucket, tgt.plan, tgt.region)


def dump_specs(specs: Iterable[SyncSpec]) -> str:
    return yaml.safe_dump([s.to_dict() for s in specs], sort_keys=False, default_flow_style=False)


def write_spec_file(specs: Sequence[SyncSpec], parent_dir: str | Path = ".") -> Path:
    """Write specs to `spec<random>/spec.<random>.yaml` under parent_dir."""
    directory = Path(tempfile.mkdtemp(prefix="spec", dir=str(parent_dir)))
    fd, name = tempfile.mkstemp(prefix="spec.", suffix=".yaml", dir=str(directory))
    with open(fd, "w", encoding="utf-8") as f:
        f.write(dump_specs(specs))
    return Path(name)


def load_spec_file(path: str | Path) -> List[SyncSpec]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise SpecError(f"Invalid YAML in spec file {path}: {e}") from e
    if not isinstance(data, list):
        raise SpecError(f"Spec file {path} must contain a list of entries")
    return [SyncSpec.from_dict(entry) for entry in data]
