from __future__ import annotations

"""
IBM Cloud IAM and resource-controller client.

Covers only what the harness needs: exchanging an API key for a bearer
token, listing resource groups, and creating, finding and deleting COS
service instances.
"""

import base64
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import requests

from core.errors import ProvisioningError

IAM_TOKEN_URL = "https://iam.cloud.ibm.com/identity/token"
RESOURCE_CONTROLLER_URL = "https://resource-controller.cloud.ibm.com"
APIKEY_GRANT_TYPE = "urn:ibm:params:oauth:grant-type:apikey"

# Refresh tokens a little before IAM expires them
TOKEN_EXPIRY_MARGIN_SECONDS = 60


@dataclass
class ResourceGroup:
    id: str
    name: str


@dataclass
class ServiceInstance:
    id: str
    guid: str
    name: str
    crn: str = ""
    state: str = ""


class IAMAuthenticator:
    """Exchanges an API key for IAM bearer tokens and caches them until expiry."""

    def __init__(self, api_key: str, token_url: str = IAM_TOKEN_URL, timeout: int = 30,
                 session: Optional[requests.Session] = None):
        if not api_key:
            raise ProvisioningError("IBM Cloud API key is not set")
        self.api_key = api_key
        self.token_url = token_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    def token(self) -> str:
        with self._lock:
            if self._token and time.time() < self._expires_at - TOKEN_EXPIRY_MARGIN_SECONDS:
                return self._token
            try:
                r = self.session.post(
                    self.token_url,
                    data={"grant_type": APIKEY_GRANT_TYPE, "apikey": self.api_key},
                    headers={"Accept": "application/json"},
                    timeout=self.timeout,
                )
                r.raise_for_status()
                payload = r.json()
            except (requests.RequestException, ValueError) as e:
                raise ProvisioningError(f"IAM token request failed: {e}") from e
            self._token = payload["access_token"]
            self._expires_at = time.time() + float(payload.get("expires_in", 3600))
            return self._token

    def account_id(self) -> str:
        """Account id (`account.bss`) from the token's JWT claims."""
        parts = self.token().split(".")
        if len(parts) < 2:
            raise ProvisioningError("IAM token is not a JWT")
        body = parts[1] + "=" * (-len(parts[1]) % 4)
        try:
            claims = json.loads(base64.urlsafe_b64decode(body.encode("ascii")))
            return claims["account"]["bss"]
        except (ValueError, KeyError, TypeError) as e:
            raise ProvisioningError(f"Could not read account id from IAM token: {e}") from e


class ResourceController:
    """Thin REST client for the resource controller v2 API."""

    def __init__(self, authenticator: IAMAuthenticator, base_url: str = RESOURCE_CONTROLLER_URL,
                 timeout: int = 30, logger: logging.Logger | None = None):
        self.auth = authenticator
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = authenticator.session
        self._logger = logger or logging.getLogger("image-sync.resource-controller")

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.auth.token()}",
            "Accept": "application/json",
        }
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            r = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ProvisioningError(f"{method} {url} failed: {e}") from e
        if r.status_code >= 400:
            raise ProvisioningError(f"{method} {url} returned {r.status_code}: {r.text[:200]}")
        if not r.content:
            return {}
        try:
            return r.json()
        except ValueError:
            return {}

    def _list(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        params = dict(params)
        while True:
            page = self._request("GET", path, params=params)
            items.extend(page.get("resources") or [])
            token = page.get("next_url") and _start_token(page["next_url"])
            if not token:
                return items
            params["start"] = token

    def list_resource_groups(self, account_id: Optional[str] = None) -> List[ResourceGroup]:
        account_id = account_id or self.auth.account_id()
        page = self._request("GET", "/v2/resource_groups", params={"account_id": account_id})
        return [ResourceGroup(id=g["id"], name=g["name"]) for g in page.get("resources") or []]

    def create_service_instance(self, name: str, plan_id: str, resource_group_id: str,
                                target: str = "global") -> ServiceInstance:
        self._logger.info("Creating service instance %s", name)
        body = {
            "name": name,
            "target": target,
            "resource_group": resource_group_id,
            "resource_plan_id": plan_id,
        }
        data = self._request("POST", "/v2/resource_instances", json=body)
        return _instance(data)

    def list_instances(self, name: str, instance_type: str = "service_instance") -> List[ServiceInstance]:
        rows = self._list("/v2/resource_instances", {"name": name, "type": instance_type})
        return [_instance(r) for r in rows]

    def find_instance(self, name: str) -> ServiceInstance:
        for inst in self.list_instances(name):
            if inst.name == name:
                return inst
        raise ProvisioningError(f"Service instance {name} not found")

    def delete_instance(self, instance_id: str, recursive: bool = False) -> None:
        self._request(
            "DELETE",
            f"/v2/resource_instances/{instance_id}",
            params={"recursive": str(recursive).lower()},
        )

    def delete_instances_by_name(self, name: str, recursive: bool = False) -> int:
        """Delete every instance with exactly this name. Returns how many were deleted."""
        deleted = 0
        for inst in self.list_instances(name):
            if inst.name != name:
                continue
            self.delete_instance(inst.id, recursive=recursive)
            self._logger.info("Service Instance Deleted: %s", inst.name)
            deleted += 1
        return deleted


def _instance(data: Dict[str, Any]) -> ServiceInstance:
    return ServiceInstance(
        id=data.get("id", ""),
        guid=data.get("guid", ""),
        name=data.get("name", ""),
        crn=data.get("crn", ""),
        state=data.get("state", ""),
    )


def _start_token(next_url: str) -> Optional[str]:
    values = parse_qs(urlparse(next_url).query).get("start")
    return values[0] if values else None
