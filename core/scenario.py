from __future__ import annotations

"""
End-to-end image sync scenario.

One run walks a fixed sequence of stages:

    init -> provision -> seed -> trigger -> verify -> cleanup

The first failing stage stops the sequence; the remaining stages are marked
skipped. Cleanup always runs, and its own errors are collected separately so
they never replace the failure that is being reported.
"""

import logging
import random
import shutil
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from core.cli_runner import DEFAULT_TOOL, CommandResult, sync_with_spec_file
from core.errors import ProvisioningError, SyncCommandError, UploadError
from core.objects import generate_objects, list_object_files
from core.sync_spec import PLANS, REGIONS, SyncSpec, generate_specs, validate_specs, write_spec_file
from core.upload_pipeline import DEFAULT_UPLOAD_WORKERS, BatchReport, UploadPipeline
from core.verification import RetryPolicy, VerificationScanner

# Resource plan id of the COS "standard" plan in the global catalog
COS_STANDARD_PLAN_ID = "744bfc56-d12c-4866-88d5-dac9139e0e5d"


class Stage(str, Enum):
    INIT = "init"
    PROVISION = "provision"
    SEED = "seed"
    TRIGGER = "trigger"
    VERIFY = "verify"
    CLEANUP = "cleanup"


STAGE_OK = "ok"
STAGE_FAILED = "failed"
STAGE_SKIPPED = "skipped"


@dataclass
class ScenarioSettings:
    no_of_sources: int = 2
    targets_per_source: int = 2
    no_of_objects: int = 200
    object_size: int = 200
    upload_workers: int = DEFAULT_UPLOAD_WORKERS
    plans: List[str] = field(default_factory=lambda: list(PLANS))
    regions: List[str] = field(default_factory=lambda: list(REGIONS))
    service_plan_id: str = COS_STANDARD_PLAN_ID
    resource_group_target: str = "global"
    recursive_delete: bool = False
    verify_policy: RetryPolicy = field(default_factory=RetryPolicy)
    work_dir: Path = Path(".")
    tool: str = DEFAULT_TOOL
    command_timeout: Optional[float] = None


@dataclass
class ScenarioContext:
    """State of one run, threaded through every stage."""
    specs: List[SyncSpec] = field(default_factory=list)
    spec_file: Optional[Path] = None
    objects_dir: Optional[Path] = None
    object_files: List[Path] = field(default_factory=list)
    instances: List[str] = field(default_factory=list)
    command: Optional[CommandResult] = None


@dataclass
class ScenarioReport:
    stages: Dict[Stage, str] = field(default_factory=dict)
    failed_stage: Optional[Stage] = None
    error: Optional[BaseException] = None
    command: Optional[CommandResult] = None
    uploads: List[BatchReport] = field(default_factory=list)
    verified: List[str] = field(default_factory=list)
    cleanup_errors: List[BaseException] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error


class ScenarioOrchestrator:
    """Runs the image sync scenario against injected collaborators.

    resources: list_resource_groups(), create_service_instance(name, plan_id,
        resource_group_id, target), delete_instances_by_name(name, recursive)
    storage_factory: (instance_name, region) -> client with create_bucket,
        upload_object and select_objects
    runner: (spec_file) -> CommandResult; defaults to `<tool> image sync --spec-file`
    """

    def __init__(
        self,
        settings: ScenarioSettings,
        resources,
        storage_factory: Callable,
        runner: Optional[Callable[[Path], CommandResult]] = None,
        logger: logging.Logger | None = None,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.resources = resources
        self.storage_factory = storage_factory
        self.runner = runner or self._default_runner
        self._logger = logger or logging.getLogger("image-sync.scenario")
        self._rng = rng or random.Random()
        self._cancel = threading.Event()

    def _default_runner(self, spec_file: Path) -> CommandResult:
        return sync_with_spec_file(spec_file, tool=self.settings.tool, timeout=self.settings.command_timeout)

    def cancel(self) -> None:
        """Stop queued uploads of the current run; in-flight calls finish on their own deadlines."""
        self._cancel.set()

    def run(self) -> ScenarioReport:
        self._cancel = threading.Event()
        ctx = ScenarioContext()
        report = ScenarioReport()
        steps = [
            (Stage.INIT, self.init),
            (Stage.PROVISION, self.provision),
            (Stage.SEED, self.seed),
            (Stage.TRIGGER, self.trigger),
            (Stage.VERIFY, self.verify),
        ]
        try:
            for stage, step in steps:
                if report.failed_stage is not None:
                    report.stages[stage] = STAGE_SKIPPED
                    continue
                self._logger.info("STEP: %s", stage.value)
                try:
                    step(ctx, report)
                except Exception as e:
                    self._logger.error("ERROR: %s stage failed: %s", stage.value, e)
                    report.stages[stage] = STAGE_FAILED
                    report.failed_stage = stage
                    report.error = e
                else:
                    report.stages[stage] = STAGE_OK
        except BaseException:
            self._cancel.set()
            raise
        finally:
            self.cleanup(ctx, report)
        return report

    def init(self, ctx: ScenarioContext, report: ScenarioReport) -> None:
        s = self.settings
        ctx.specs = generate_specs(s.no_of_sources, s.targets_per_source, s.plans, s.regions, self._rng)
        validate_specs(ctx.specs, s.plans, s.regions)
        ctx.spec_file = write_spec_file(ctx.specs, s.work_dir)
        self._logger.info("Spec file written to %s", ctx.spec_file)

    def provision(self, ctx: ScenarioContext, report: ScenarioReport) -> None:
        groups = self.resources.list_resource_groups()
        if not groups:
            raise ProvisioningError("No resource groups found in account")
        self._logger.info("Resource Group names: %s", [g.name for g in groups])
        for spec in ctx.specs:
            src = spec.source
            # Recorded before the call so cleanup also covers half-created instances
            ctx.instances.append(src.cos)
            self.resources.create_service_instance(
                src.cos, self.settings.service_plan_id, groups[0].id, self.settings.resource_group_target
            )
            self.storage_factory(src.cos, src.region).create_bucket(src.bucket, src.plan)
            for tgt in spec.target:
                self.storage_factory(src.cos, tgt.region).create_bucket(tgt.bucket, tgt.plan)

    def seed(self, ctx: ScenarioContext, report: ScenarioReport) -> None:
        s = self.settings
        ctx.objects_dir = generate_objects(s.no_of_objects, s.object_size, s.work_dir, self._rng)
        ctx.object_files = list_object_files(ctx.objects_dir)
        for spec in ctx.specs:
            src = spec.source
            self._logger.info("Upload Objects to source Bucket %s", src.bucket)
            pipeline = UploadPipeline(
                self.storage_factory(src.cos, src.region),
                workers=s.upload_workers,
                cancel_event=self._cancel,
                logger=self._logger,
            )
            batch = pipeline.run(ctx.object_files, src.bucket)
            report.uploads.append(batch)
            if not batch.ok:
                raise UploadError(src.bucket, batch.failed)

    def trigger(self, ctx: ScenarioContext, report: ScenarioReport) -> None:
        ctx.command = self.runner(ctx.spec_file)
        report.command = ctx.command
        if ctx.command.status != 0:
            raise SyncCommandError(ctx.command)

    def verify(self, ctx: ScenarioContext, report: ScenarioReport) -> None:
        for spec in ctx.specs:
            src = spec.source
            for tgt in spec.target:
                scanner = VerificationScanner(
                    self.storage_factory(src.cos, tgt.region),
                    retry_policy=self.settings.verify_policy,
                    logger=self._logger,
                )
                scanner.verify(tgt.bucket, ctx.object_files, src.object)
                report.verified.append(tgt.bucket)

    def cleanup(self, ctx: ScenarioContext, report: ScenarioReport) -> None:
        self._logger.info("STEP: %s", Stage.CLEANUP.value)
        for name in ctx.instances:
            try:
                self.resources.delete_instances_by_name(name, recursive=self.settings.recursive_delete)
            except Exception as e:
                self._logger.error("ERROR: deleting service instance %s: %s", name, e)
                report.cleanup_errors.append(e)

        scratch = []
        if ctx.spec_file is not None:
            scratch.append(ctx.spec_file.parent)
        if ctx.objects_dir is not None:
            scratch.append(ctx.objects_dir)
        for path in scratch:
            try:
                shutil.rmtree(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                self._logger.error("ERROR: removing %s: %s", path, e)
                report.cleanup_errors.append(e)

        report.stages[Stage.CLEANUP] = STAGE_FAILED if report.cleanup_errors else STAGE_OK
