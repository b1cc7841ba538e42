"""
Pytest configuration for the image sync harness tests

This file contains shared fixtures and in-memory fakes for the storage
and resource-controller collaborators.
"""

import random
import threading
from pathlib import Path

import pytest

from core.resource_controller import ResourceGroup


class FakeStorage:
    """In-memory stand-in for COSClient, shared by every (instance, region)"""

    def __init__(self):
        self.buckets = {}
        self.fail_uploads = set()
        self.fail_create = set()
        self.upload_calls = []
        self.list_calls = []
        self.created = []
        self._lock = threading.Lock()

    def create_bucket(self, bucket, plan):
        if bucket in self.fail_create:
            from core.errors import ProvisioningError
            raise ProvisioningError(f"Failed to create bucket {bucket}")
        self.buckets.setdefault(bucket, set())
        self.created.append((bucket, plan))

    def upload_object(self, local_path, object_name, bucket):
        with self._lock:
            self.upload_calls.append((Path(local_path), object_name, bucket))
        if object_name in self.fail_uploads:
            raise IOError(f"connection reset uploading {object_name}")
        with self._lock:
            self.buckets.setdefault(bucket, set()).add(object_name)

    def select_objects(self, bucket, pattern=""):
        import re
        self.list_calls.append((bucket, pattern))
        keys = sorted(self.buckets.get(bucket, set()))
        if not pattern:
            return keys
        return [k for k in keys if re.search(pattern, k)]

    def replicate(self, source, target):
        self.buckets.setdefault(target, set()).update(self.buckets.get(source, set()))


class FakeResources:
    """In-memory stand-in for ResourceController"""

    def __init__(self, groups=None):
        self.groups = groups if groups is not None else [ResourceGroup(id="rg-1", name="Default")]
        self.instances = []
        self.deleted = []
        self.fail_create = set()
        self.fail_delete = set()

    def list_resource_groups(self):
        return list(self.groups)

    def create_service_instance(self, name, plan_id, resource_group_id, target="global"):
        from core.errors import ProvisioningError
        if name in self.fail_create:
            raise ProvisioningError(f"POST /v2/resource_instances returned 500 for {name}")
        self.instances.append((name, plan_id, resource_group_id, target))

    def delete_instances_by_name(self, name, recursive=False):
        from core.errors import ProvisioningError
        if name in self.fail_delete:
            raise ProvisioningError(f"DELETE failed for {name}")
        self.deleted.append(name)
        return 1


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def fake_resources():
    return FakeResources()


@pytest.fixture
def storage_factory(fake_storage):
    """Factory that records which (instance, region) pairs were requested"""
    calls = []

    def factory(instance_name, region):
        calls.append((instance_name, region))
        return fake_storage

    factory.calls = calls
    return factory


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def object_files(tmp_path):
    """A handful of small local objects"""
    files = []
    for i in range(12):
        p = tmp_path / f"image-sync-{i:03d}.txt"
        p.write_text("x" * 16)
        files.append(p)
    return files


@pytest.fixture
def sample_harness_config():
    """Configuration file contents for testing"""
    return {
        "ibmcloud": {
            "service_plan_id": "plan-123",
            "resource_group_target": "global",
        },
        "scenario": {
            "no_of_sources": 1,
            "targets_per_source": 3,
            "no_of_objects": 10,
            "object_size": 64,
            "upload_workers": 4,
        },
        "cli": {
            "tool": "/usr/local/bin/pvsadm",
        },
        "verification": {
            "attempts": 3,
            "delay_base": 0.5,
            "delay_max": 5,
        },
    }
