"""
Tests for the IAM authenticator and resource-controller client
"""

import base64
import json

import pytest
import responses
from responses import matchers

from core.errors import ProvisioningError
from core.resource_controller import (
    IAM_TOKEN_URL,
    RESOURCE_CONTROLLER_URL,
    IAMAuthenticator,
    ResourceController,
)


def make_jwt(claims):
    body = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    return f"eyJhbGciOiJub25lIn0.{body}.sig"


TOKEN = make_jwt({"account": {"bss": "acct-42"}})


def add_token(expires_in=3600):
    responses.add(
        responses.POST,
        IAM_TOKEN_URL,
        json={"access_token": TOKEN, "expires_in": expires_in},
        status=200,
    )


@pytest.fixture
def controller():
    return ResourceController(IAMAuthenticator("my-api-key"))


def test_requires_api_key():
    with pytest.raises(ProvisioningError, match="API key"):
        IAMAuthenticator("")


@responses.activate
def test_token_is_cached():
    add_token()
    auth = IAMAuthenticator("my-api-key")
    assert auth.token() == TOKEN
    assert auth.token() == TOKEN
    assert len(responses.calls) == 1
    assert "apikey=my-api-key" in responses.calls[0].request.body


@responses.activate
def test_expired_token_is_refreshed():
    add_token(expires_in=0)
    add_token()
    auth = IAMAuthenticator("k")
    auth.token()
    auth.token()
    assert len(responses.calls) == 2


@responses.activate
def test_token_failure_raises_provisioning_error():
    responses.add(responses.POST, IAM_TOKEN_URL, json={"errorMessage": "bad key"}, status=400)
    with pytest.raises(ProvisioningError, match="IAM token request failed"):
        IAMAuthenticator("k").token()


@responses.activate
def test_account_id_from_token():
    add_token()
    assert IAMAuthenticator("k").account_id() == "acct-42"


@responses.activate
def test_list_resource_groups(controller):
    add_token()
    responses.add(
        responses.GET,
        f"{RESOURCE_CONTROLLER_URL}/v2/resource_groups",
        json={"resources": [{"id": "rg-1", "name": "Default"}, {"id": "rg-2", "name": "ci"}]},
        match=[matchers.query_param_matcher({"account_id": "acct-42"})],
    )
    groups = controller.list_resource_groups()
    assert [g.name for g in groups] == ["Default", "ci"]
    assert responses.calls[-1].request.headers["Authorization"] == f"Bearer {TOKEN}"


@responses.activate
def test_create_service_instance(controller):
    add_token()
    responses.add(
        responses.POST,
        f"{RESOURCE_CONTROLLER_URL}/v2/resource_instances",
        json={"id": "crn:v1:abc", "guid": "abc", "name": "cos-x", "state": "active"},
        status=201,
        match=[matchers.json_params_matcher({
            "name": "cos-x",
            "target": "global",
            "resource_group": "rg-1",
            "resource_plan_id": "plan-1",
        })],
    )
    inst = controller.create_service_instance("cos-x", "plan-1", "rg-1")
    assert inst.guid == "abc"
    assert inst.state == "active"


@responses.activate
def test_create_service_instance_error(controller):
    add_token()
    responses.add(
        responses.POST,
        f"{RESOURCE_CONTROLLER_URL}/v2/resource_instances",
        json={"message": "quota exceeded"},
        status=400,
    )
    with pytest.raises(ProvisioningError, match="400"):
        controller.create_service_instance("cos-x", "plan-1", "rg-1")


@responses.activate
def test_list_instances_follows_pages(controller):
    add_token()
    url = f"{RESOURCE_CONTROLLER_URL}/v2/resource_instances"
    responses.add(
        responses.GET, url,
        json={"resources": [{"id": "1", "name": "cos-x"}],
              "next_url": "/v2/resource_instances?name=cos-x&start=tok2"},
        match=[matchers.query_param_matcher({"name": "cos-x", "type": "service_instance"})],
    )
    responses.add(
        responses.GET, url,
        json={"resources": [{"id": "2", "name": "cos-x"}], "next_url": None},
        match=[matchers.query_param_matcher({"name": "cos-x", "type": "service_instance", "start": "tok2"})],
    )
    assert [i.id for i in controller.list_instances("cos-x")] == ["1", "2"]


@responses.activate
def test_find_instance_requires_exact_name(controller):
    add_token()
    responses.add(
        responses.GET,
        f"{RESOURCE_CONTROLLER_URL}/v2/resource_instances",
        json={"resources": [{"id": "1", "name": "cos-x-old"}]},
    )
    with pytest.raises(ProvisioningError, match="not found"):
        controller.find_instance("cos-x")


@responses.activate
def test_delete_instances_by_name(controller):
    add_token()
    responses.add(
        responses.GET,
        f"{RESOURCE_CONTROLLER_URL}/v2/resource_instances",
        json={"resources": [{"id": "1", "name": "cos-x"}, {"id": "2", "name": "cos-x-2"}]},
    )
    responses.add(
        responses.DELETE,
        f"{RESOURCE_CONTROLLER_URL}/v2/resource_instances/1",
        status=202,
        match=[matchers.query_param_matcher({"recursive": "false"})],
    )
    assert controller.delete_instances_by_name("cos-x") == 1
    assert responses.calls[-1].request.method == "DELETE"
