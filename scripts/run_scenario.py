#!/usr/bin/env python3
"""
Image Sync E2E Scenario Runner

Runs the cross-region `image sync` scenario end to end: generate a spec,
provision COS instances and buckets, seed source buckets, run the sync
command, verify every target bucket and clean up.

Usage:
    python scripts/run_scenario.py
    python scripts/run_scenario.py --sources 1 --targets 3 --objects 50
    python scripts/run_scenario.py --check-cli
    python scripts/run_scenario.py --config config/e2e-config.json --verify-attempts 5
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from rich.console import Console

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.append(str(project_root))

from config.config_manager import ConfigError, ConfigManager
from core.auto_tune import resolve_upload_workers
from core.cli_runner import check_cli_contract
from core.cos_client import COSClientFactory
from core.errors import HarnessError, ObjectNotFoundError
from core.resource_controller import IAMAuthenticator, ResourceController
from core.scenario import ScenarioOrchestrator, ScenarioReport, ScenarioSettings
from core.verification import RetryPolicy
from scripts.logger import HarnessLogger
from tui.report import render_report


def build_settings(config: Dict[str, Any]) -> ScenarioSettings:
    scenario = config["scenario"]
    ibm = config["ibmcloud"]
    verification = config.get("verification", {})
    return ScenarioSettings(
        no_of_sources=scenario["no_of_sources"],
        targets_per_source=scenario["targets_per_source"],
        no_of_objects=scenario["no_of_objects"],
        object_size=scenario["object_size"],
        upload_workers=resolve_upload_workers(scenario.get("upload_workers", 0), scenario["object_size"]),
        plans=list(scenario["plans"]),
        regions=list(scenario["regions"]),
        service_plan_id=ibm["service_plan_id"],
        resource_group_target=ibm["resource_group_target"],
        recursive_delete=ibm.get("recursive_delete", False),
        verify_policy=RetryPolicy(
            max_attempts=verification.get("attempts", 1),
            delay_base=verification.get("delay_base", 2.0),
            delay_max=verification.get("delay_max", 30.0),
        ),
        work_dir=Path(scenario.get("work_dir", ".")),
        tool=config["cli"]["tool"],
        command_timeout=config["cli"].get("timeout"),
    )


def build_orchestrator(config: Dict[str, Any], api_key: str, logger) -> ScenarioOrchestrator:
    storage = config.get("storage", {})
    auth = IAMAuthenticator(api_key)
    resources = ResourceController(auth)
    factory = COSClientFactory(
        auth,
        resources,
        connect_timeout=storage.get("connect_timeout", 30),
        read_timeout=storage.get("read_timeout", 60),
    )
    return ScenarioOrchestrator(build_settings(config), resources, factory, logger=logger)


def apply_overrides(config: Dict[str, Any], args: argparse.Namespace) -> None:
    scenario = config["scenario"]
    if args.sources is not None:
        scenario["no_of_sources"] = args.sources
    if args.targets is not None:
        scenario["targets_per_source"] = args.targets
    if args.objects is not None:
        scenario["no_of_objects"] = args.objects
    if args.object_size is not None:
        scenario["object_size"] = args.object_size
    if args.upload_workers is not None:
        scenario["upload_workers"] = args.upload_workers
    if args.verify_attempts is not None:
        config.setdefault("verification", {})["attempts"] = args.verify_attempts
    if args.tool:
        config["cli"]["tool"] = args.tool


def log_report(logger: HarnessLogger, report: ScenarioReport) -> None:
    """Log upload batches, verified buckets and the overall outcome"""
    for batch in report.uploads:
        logger.log_upload_batch(batch)
    for bucket in report.verified:
        logger.log_verification_result(bucket, True)
    if isinstance(report.error, ObjectNotFoundError):
        logger.log_verification_result(report.error.bucket, False, details=str(report.error))
    logger.log_scenario_complete(report)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Run the image sync end-to-end scenario",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--config', help='Path to JSON configuration file (default: config/e2e-config.json)')
    parser.add_argument('--tool', help='Executable providing `image sync` (default: from config or IMAGE_SYNC_CLI)')
    parser.add_argument('--sources', type=int, help='Number of source buckets')
    parser.add_argument('--targets', type=int, help='Number of target buckets per source')
    parser.add_argument('--objects', type=int, help='Number of objects to upload to each source')
    parser.add_argument('--object-size', type=int, help='Size of each object in bytes')
    parser.add_argument('--upload-workers', type=int, help='0 = auto-tune based on system')
    parser.add_argument('--verify-attempts', type=int, help='Listing attempts per target bucket before failing')
    parser.add_argument('--check-cli', action='store_true', help='Only check the argument handling of the sync command')
    args = parser.parse_args(argv)

    console = Console()
    try:
        config_manager = ConfigManager(args.config)
        config = config_manager.load_config()
        apply_overrides(config, args)
        errors = config_manager.validate_config(config)
        if errors:
            raise ConfigError("; ".join(errors))
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/] {e}")
        return 2

    level = config.get("logging", {}).get("level", "INFO")
    logger = HarnessLogger("image-sync-e2e", config, console_level=getattr(logging, level))
    logger.attach_core_loggers()
    try:
        if args.check_cli:
            logger.log_step("Check sync command arguments")
            try:
                problems = check_cli_contract(config["cli"]["tool"], timeout=config["cli"].get("timeout"))
            except HarnessError as e:
                logger.log_error(e, "check-cli")
                return 2
            for problem in problems:
                logger.log_warning(problem)
            if problems:
                console.print(f"[bold red]{len(problems)} CLI check(s) failed[/]")
                return 1
            logger.log_info("CLI checks passed", {"tool": config["cli"]["tool"]})
            console.print("[bold green]CLI checks passed[/]")
            return 0

        try:
            api_key = config_manager.require_api_key(config)
            orchestrator = build_orchestrator(config, api_key, logger.logger)
        except (ConfigError, HarnessError) as e:
            logger.log_error(e, "setup")
            return 2

        logger.log_step("Run scenario")
        try:
            report = orchestrator.run()
        except KeyboardInterrupt:
            logger.log_warning("Interrupted; resources were cleaned up")
            return 130
        log_report(logger, report)
        render_report(report, console)
        return 0 if report.success else 1
    finally:
        logger.close()


if __name__ == "__main__":
    sys.exit(main())
