from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional

import boto3
from botocore import UNSIGNED
from botocore.config import Config
from botocore.exceptions import ClientError, WaiterError

from core.errors import ProvisioningError

ENDPOINT_TEMPLATE = "https://s3.{region}.cloud-object-storage.appdomain.cloud"


def endpoint_for_region(region: str) -> str:
    return ENDPOINT_TEMPLATE.format(region=region)


def location_constraint(region: str, plan: str) -> str:
    return f"{region}-{plan}"


class COSClient:
    """S3 client bound to one COS service instance and one region.

    Requests are not SigV4 signed; each carries the IAM bearer token and the
    service instance id instead.
    """

    def __init__(
        self,
        authenticator,
        instance_id: str,
        region: str,
        connect_timeout: int = 30,
        read_timeout: int = 60,
        endpoint_url: Optional[str] = None,
        s3_client=None,
        logger: logging.Logger | None = None,
    ):
        self.auth = authenticator
        self.instance_id = instance_id
        self.region = region
        self.endpoint_url = endpoint_url or endpoint_for_region(region)
        self._logger = logger or logging.getLogger("image-sync.cos")
        if s3_client is None:
            cfg = Config(
                signature_version=UNSIGNED,
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"max_attempts": 3, "mode": "standard"},
            )
            s3_client = boto3.session.Session().client(
                "s3", endpoint_url=self.endpoint_url, region_name=region, config=cfg
            )
            s3_client.meta.events.register("before-sign.s3", self._add_auth_headers)
        self.s3_client = s3_client

    def _add_auth_headers(self, request, **kwargs) -> None:
        request.headers["Authorization"] = f"Bearer {self.auth.token()}"
        request.headers["ibm-service-instance-id"] = self.instance_id

    def create_bucket(self, bucket: str, plan: str) -> None:
        """Create bucket in this client's region with the given storage plan and wait for it."""
        self._logger.info("Creating bucket %s in region %s with plan %s", bucket, self.region, plan)
        try:
            self.s3_client.create_bucket(
                Bucket=bucket,
                CreateBucketConfiguration={"LocationConstraint": location_constraint(self.region, plan)},
            )
            self.s3_client.get_waiter("bucket_exists").wait(Bucket=bucket)
        except (ClientError, WaiterError) as e:
            raise ProvisioningError(f"Failed to create bucket {bucket}: {e}") from e

    def upload_object(self, local_path: str | Path, object_name: str, bucket: str) -> None:
        self.s3_client.upload_file(str(local_path), bucket, object_name)

    def select_objects(self, bucket: str, pattern: str = "") -> List[str]:
        """Keys in bucket whose name matches `pattern` (searched, not anchored)."""
        regex = re.compile(pattern) if pattern else None
        keys: List[str] = []
        paginator = self.s3_client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket):
            for item in page.get("Contents", []):
                key = item["Key"]
                if regex is None or regex.search(key):
                    keys.append(key)
        return keys


class COSClientFactory:
    """Builds COSClient instances for a COS instance name + region."""

    def __init__(self, authenticator, resource_controller, connect_timeout: int = 30,
                 read_timeout: int = 60):
        self.auth = authenticator
        self.resources = resource_controller
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self._instance_ids = {}

    def __call__(self, instance_name: str, region: str) -> COSClient:
        instance_id = self._instance_ids.get(instance_name)
        if instance_id is None:
            inst = self.resources.find_instance(instance_name)
            instance_id = inst.guid or inst.id
            self._instance_ids[instance_name] = instance_id
        return COSClient(
            self.auth,
            instance_id,
            region,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
        )
