#!/usr/bin/env python3
"""
Structured Logging Module for Image Sync E2E Runs

Every scenario run logs to three places:
- console (INFO and above, human readable)
- <log_dir>/<operation>.log (DEBUG and above, one JSON object per line)
- <log_dir>/<operation>-errors.log (ERROR only, JSON)

Core components log through the standard `image-sync.*` loggers; attaching
this logger's handlers to that hierarchy puts their records in the same
files.

Usage:
    from scripts.logger import HarnessLogger
    logger = HarnessLogger('image-sync-e2e')
    logger.log_step('Generating Spec')
    logger.log_upload_batch(report)
    logger.log_scenario_complete(scenario_report)
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

CORE_LOGGER_NAME = "image-sync"


class JSONFormatter(logging.Formatter):
    def __init__(self, operation_name, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.operation_name = operation_name

    def format(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'operation': self.operation_name
        }

        # Add extra fields if present
        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HarnessLogger:
    """Structured logger for e2e scenario runs"""

    def __init__(self, operation_name: str, config: Dict[str, Any] = None,
                 log_dir: Optional[Path] = None, console_level: int = logging.INFO):
        """Initialize harness logger with configuration"""
        self.operation_name = operation_name
        self.config = config or {}
        self.project_root = Path(__file__).parent.parent
        configured_dir = self.config.get('logging', {}).get('log_dir')
        if log_dir is not None:
            self.log_dir = Path(log_dir)
        elif configured_dir:
            self.log_dir = Path(configured_dir)
            if not self.log_dir.is_absolute():
                self.log_dir = self.project_root / self.log_dir
        else:
            self.log_dir = self.project_root / "logs"
        self.console_level = console_level

        self.start_time = None
        self.errors = []

        self._setup_logging()

    def _setup_logging(self):
        """Setup console and rotating JSON file handlers"""
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger(f"e2e.{self.operation_name}")
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

        # Clear existing handlers
        self.logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.console_level)
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

        file_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.operation_name}.log",
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter(self.operation_name))

        error_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.operation_name}-errors.log",
            maxBytes=5*1024*1024,  # 5MB
            backupCount=3
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(JSONFormatter(self.operation_name))

        self.handlers = [console_handler, file_handler, error_handler]
        for handler in self.handlers:
            self.logger.addHandler(handler)

    def attach_core_loggers(self, level: int = logging.DEBUG):
        """Route `image-sync.*` component loggers to this logger's handlers"""
        core = logging.getLogger(CORE_LOGGER_NAME)
        core.setLevel(level)
        for handler in self.handlers:
            if handler not in core.handlers:
                core.addHandler(handler)
        return core

    def detach_core_loggers(self):
        core = logging.getLogger(CORE_LOGGER_NAME)
        for handler in self.handlers:
            if handler in core.handlers:
                core.removeHandler(handler)

    def close(self):
        self.detach_core_loggers()
        for handler in self.handlers:
            handler.close()
        self.logger.handlers.clear()

    def log_step(self, step: str, extra_fields: Dict[str, Any] = None):
        """Log the start of a scenario step"""
        if self.start_time is None:
            self.start_time = datetime.now()
        extra_fields = dict(extra_fields or {})
        extra_fields['event_type'] = 'step'
        extra_fields['step'] = step
        self.logger.info(f"STEP: {step}", extra={'extra_fields': extra_fields})

    def log_upload_batch(self, report):
        """Log the outcome of one upload batch (a BatchReport)"""
        failed = report.failed
        extra_fields = {
            'event_type': 'upload_batch',
            'bucket': report.bucket,
            'objects_total': len(report.results),
            'objects_uploaded': len(report.succeeded),
            'objects_failed': len(failed),
            'failed_objects': [r.task.object_name for r in failed],
        }
        if failed:
            message = f"Upload to {report.bucket}: {len(failed)}/{len(report.results)} failed"
            self.logger.error(message, extra={'extra_fields': extra_fields})
        else:
            message = f"Uploaded {len(report.results)} objects to {report.bucket}"
            self.logger.info(message, extra={'extra_fields': extra_fields})

    def log_verification_result(self, bucket: str, passed: bool, details: str = None):
        """Log bucket verification results - only failures at error level"""
        extra_fields = {
            'event_type': 'verification_result',
            'bucket': bucket,
            'verification_passed': passed,
            'details': details
        }
        if passed:
            self.logger.debug(f"Verified bucket {bucket}", extra={'extra_fields': extra_fields})
        else:
            message = f"Verification failed: {bucket}"
            if details:
                message += f" - {details}"
            self.logger.error(message, extra={'extra_fields': extra_fields})

    def log_scenario_complete(self, report):
        """Log scenario completion with a per-stage summary"""
        end_time = datetime.now()
        duration = end_time - self.start_time if self.start_time else timedelta(0)
        extra_fields = {
            'event_type': 'scenario_complete',
            'success': report.success,
            'failed_stage': report.failed_stage.value if report.failed_stage else None,
            'stages': {stage.value: status for stage, status in report.stages.items()},
            'error': str(report.error) if report.error else None,
            'cleanup_errors': [str(e) for e in report.cleanup_errors],
            'duration_seconds': duration.total_seconds(),
            'end_time': end_time.isoformat()
        }
        if report.success:
            self.logger.info(f"Scenario completed in {duration}", extra={'extra_fields': extra_fields})
        else:
            self.logger.error(
                f"Scenario failed at {report.failed_stage.value if report.failed_stage else 'unknown'}"
                f" after {duration}: {report.error}",
                extra={'extra_fields': extra_fields}
            )

    def log_error(self, error: Exception, context: str = None):
        """Log error with context"""
        message = f"ERROR in {context or 'scenario'}: {str(error)}"
        self.errors.append(str(error))
        extra_fields = {
            'event_type': 'error',
            'error_type': type(error).__name__,
            'error_message': str(error),
            'context': context
        }
        self.logger.error(message, extra={'extra_fields': extra_fields})

    def log_warning(self, message: str, extra_fields: Dict[str, Any] = None):
        """Log warning message"""
        extra_fields = dict(extra_fields or {})
        extra_fields['event_type'] = 'warning'
        self.logger.warning(message, extra={'extra_fields': extra_fields})

    def log_info(self, message: str, extra_fields: Dict[str, Any] = None):
        """Log info message"""
        extra_fields = dict(extra_fields or {})
        extra_fields['event_type'] = 'info'
        self.logger.info(message, extra={'extra_fields': extra_fields})

