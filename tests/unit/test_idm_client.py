"""Tests for the IDM HTTP client, config service and managed-object service."""
import pytest
import requests

from scim_gateway.core.idm import (
    IdmAPIError,
    IdmClient,
    IdmConfigService,
    ManagedObjectNotFoundError,
    ManagedObjectService,
)
from scim_gateway.core.idm import client as client_module

from tests.conftest import StubResponse, managed_config


class _Recorder:
    """Records GET calls and answers from a route → response table."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def __call__(self, url, params=None, headers=None, timeout=None, **kwargs):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        response = self.routes.get((url, (params or {}).get("_countOnly")))
        if response is None:
            response = self.routes.get(url)
        if response is None:
            raise AssertionError(f"Unexpected GET {url}")
        return response


@pytest.fixture()
def idm_client():
    client = IdmClient("http://idm.test/")
    client.set_static_token("service-token")
    return client


def test_base_url_trailing_slash_is_stripped():
    assert IdmClient("http://idm.test/").base_url == "http://idm.test"


def test_every_request_sends_api_version_and_service_token(monkeypatch, idm_client):
    recorder = _Recorder({"http://idm.test/openidm/config/managed": StubResponse({"objects": []})})
    monkeypatch.setattr(requests, "get", recorder)

    idm_client.get("/openidm/config/managed")

    headers = recorder.calls[0]["headers"]
    assert headers["Accept-API-Version"] == "resource=1.0"
    assert headers["Authorization"] == "Bearer service-token"
    assert recorder.calls[0]["timeout"] == client_module.REQUEST_TIMEOUT


def test_explicit_token_overrides_service_token(monkeypatch):
    recorder = _Recorder({"http://idm.test/x": StubResponse({})})
    monkeypatch.setattr(requests, "get", recorder)

    # No service account at all: the caller's token is enough
    IdmClient("http://idm.test").get("/x", token="caller-token")
    assert recorder.calls[0]["headers"]["Authorization"] == "Bearer caller-token"


def test_unauthenticated_client_without_token_fails():
    with pytest.raises(IdmAPIError) as exc_info:
        IdmClient("http://idm.test").get("/x")
    assert exc_info.value.status_code == 401


def test_error_status_raises_idm_api_error(monkeypatch, idm_client):
    monkeypatch.setattr(requests, "get", _Recorder({"http://idm.test/x": StubResponse({"code": 500}, 500)}))
    with pytest.raises(IdmAPIError) as exc_info:
        idm_client.get("/x")
    assert exc_info.value.status_code == 500


def test_transport_failure_becomes_status_zero(monkeypatch, idm_client):
    def _boom(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "get", _boom)
    with pytest.raises(IdmAPIError) as exc_info:
        idm_client.get("/x")
    assert exc_info.value.status_code == 0


def test_service_account_authentication(monkeypatch):
    posted = {}

    def _post(url, data=None, timeout=None, **kwargs):
        posted.update(url=url, data=data)
        return StubResponse({"access_token": "svc", "expires_in": 300})

    monkeypatch.setattr(requests, "post", _post)
    client = IdmClient("http://idm.test")
    token = client.authenticate_service_account("http://am.test/token", "scim-gateway", "secret")

    assert token == "svc"
    assert client.is_authenticated is True
    assert posted["data"]["grant_type"] == "client_credentials"
    assert posted["data"]["client_id"] == "scim-gateway"


def test_failed_service_authentication_is_retried_on_next_call(monkeypatch):
    attempts = []

    def _post(url, data=None, timeout=None, **kwargs):
        attempts.append(url)
        if len(attempts) == 1:
            return StubResponse({"error": "unavailable"}, 503)
        return StubResponse({"access_token": "svc", "expires_in": 300})

    monkeypatch.setattr(requests, "post", _post)
    recorder = _Recorder({"http://idm.test/x": StubResponse({})})
    monkeypatch.setattr(requests, "get", recorder)

    client = IdmClient("http://idm.test")
    with pytest.raises(IdmAPIError):
        client.authenticate_service_account("http://am.test/token", "scim-gateway", "secret")

    client.get("/x")
    assert len(attempts) == 2
    assert recorder.calls[0]["headers"]["Authorization"] == "Bearer svc"


# ─────────────────────────────────────────────────────────────────────────────
# IdmConfigService
# ─────────────────────────────────────────────────────────────────────────────

def test_get_managed_object_config(monkeypatch, idm_client):
    monkeypatch.setattr(requests, "get", _Recorder({
        "http://idm.test/openidm/config/managed": StubResponse(managed_config()),
    }))
    service = IdmConfigService(idm_client)

    user_config = service.get_managed_object_config("alpha_user")
    assert user_config["name"] == "alpha_user"
    assert service.get_managed_object_config("alpha_device") is None

    properties = service.get_properties_definition(user_config)
    assert "costCenter" in properties
    assert properties["isContractor"] == {"type": "boolean", "title": "Contractor"}


def test_properties_fall_back_to_top_level_layout():
    config = {"name": "alpha_user", "properties": {"a": {"type": "string"}}}
    assert IdmConfigService.get_properties_definition(config) == {"a": {"type": "string"}}
    assert IdmConfigService.get_properties_definition({"name": "x"}) is None
    assert IdmConfigService.get_properties_definition(None) is None


def test_managed_config_404_means_absent(monkeypatch, idm_client):
    monkeypatch.setattr(requests, "get", _Recorder({
        "http://idm.test/openidm/config/managed": StubResponse({"code": 404}, 404),
    }))
    service = IdmConfigService(idm_client)
    assert service.get_managed_config() is None
    assert service.get_managed_object_config("alpha_user") is None


def test_managed_config_server_error_propagates(monkeypatch, idm_client):
    monkeypatch.setattr(requests, "get", _Recorder({
        "http://idm.test/openidm/config/managed": StubResponse({"code": 500}, 500),
    }))
    with pytest.raises(IdmAPIError):
        IdmConfigService(idm_client).get_managed_object_config("alpha_user")


def test_managed_config_without_objects_array(monkeypatch, idm_client):
    monkeypatch.setattr(requests, "get", _Recorder({
        "http://idm.test/openidm/config/managed": StubResponse({"_id": "managed"}),
    }))
    assert IdmConfigService(idm_client).get_managed_object_config("alpha_user") is None


# ─────────────────────────────────────────────────────────────────────────────
# ManagedObjectService
# ─────────────────────────────────────────────────────────────────────────────

USERS_URL = "http://idm.test/openidm/managed/alpha_user"


def test_query_counts_then_pages(monkeypatch, idm_client):
    recorder = _Recorder({
        (USERS_URL, "true"): StubResponse({"result": [], "resultCount": 0, "totalPagedResults": 7}),
        USERS_URL: StubResponse({"result": [{"_id": "u3"}, {"_id": "u4"}], "totalPagedResults": 7}),
    })
    monkeypatch.setattr(requests, "get", recorder)

    result = ManagedObjectService(idm_client).query("alpha_user", 'sn eq "x"', start_index=3, count=2,
                                                    token="caller")

    assert result.total == 7
    assert [r["_id"] for r in result.results] == ["u3", "u4"]
    count_call, page_call = recorder.calls
    assert count_call["params"]["_countOnly"] == "true"
    assert count_call["params"]["_totalPagedResultsPolicy"] == "EXACT"
    assert page_call["params"]["_queryFilter"] == 'sn eq "x"'
    assert page_call["params"]["_pagedResultsOffset"] == 2
    assert page_call["params"]["_pageSize"] == 2
    assert page_call["headers"]["Authorization"] == "Bearer caller"


def test_query_with_zero_count_returns_total_only(monkeypatch, idm_client):
    recorder = _Recorder({(USERS_URL, "true"): StubResponse({"resultCount": 4})})
    monkeypatch.setattr(requests, "get", recorder)

    result = ManagedObjectService(idm_client).query("alpha_user", "true", count=0)

    assert result.total == 4
    assert result.results == []
    assert len(recorder.calls) == 1


def test_query_unknown_total_falls_back_to_page_size(monkeypatch, idm_client):
    recorder = _Recorder({
        (USERS_URL, "true"): StubResponse({"totalPagedResults": -1}),
        USERS_URL: StubResponse({"result": [{"_id": "u1"}]}),
    })
    monkeypatch.setattr(requests, "get", recorder)

    result = ManagedObjectService(idm_client).query("alpha_user", "true")
    assert result.total == 1


def test_get_missing_object_raises_not_found(monkeypatch, idm_client):
    monkeypatch.setattr(requests, "get", _Recorder({f"{USERS_URL}/nope": StubResponse({"code": 404}, 404)}))
    with pytest.raises(ManagedObjectNotFoundError):
        ManagedObjectService(idm_client).get("alpha_user", "nope")


def test_get_object(monkeypatch, idm_client):
    monkeypatch.setattr(requests, "get", _Recorder({f"{USERS_URL}/u1": StubResponse({"_id": "u1"})}))
    assert ManagedObjectService(idm_client).get("alpha_user", "u1") == {"_id": "u1"}


class _WriteRecorder:
    """Records one write call and answers with a fixed response."""

    def __init__(self, response):
        self.response = response
        self.calls = []

    def __call__(self, url, **kwargs):
        self.calls.append(dict(kwargs, url=url))
        return self.response


def test_create_posts_create_action(monkeypatch, idm_client):
    recorder = _WriteRecorder(StubResponse({"_id": "u9", "userName": "dana"}, 201))
    monkeypatch.setattr(requests, "post", recorder)

    created = ManagedObjectService(idm_client).create("alpha_user", {"userName": "dana"}, token="caller")

    assert created["_id"] == "u9"
    call = recorder.calls[0]
    assert call["url"] == USERS_URL
    assert call["params"] == {"_action": "create"}
    assert call["json"] == {"userName": "dana"}
    assert call["headers"]["Authorization"] == "Bearer caller"


def test_replace_sends_if_match(monkeypatch, idm_client):
    recorder = _WriteRecorder(StubResponse({"_id": "u1", "_rev": "4"}))
    monkeypatch.setattr(requests, "put", recorder)
    service = ManagedObjectService(idm_client)

    service.replace("alpha_user", "u1", {"userName": "a"}, revision="3")
    service.replace("alpha_user", "u1", {"userName": "a"})

    assert recorder.calls[0]["url"] == f"{USERS_URL}/u1"
    assert recorder.calls[0]["headers"]["If-Match"] == "3"
    assert recorder.calls[1]["headers"]["If-Match"] == "*"


def test_patch_sends_operation_list(monkeypatch, idm_client):
    recorder = _WriteRecorder(StubResponse({"_id": "u1"}))
    monkeypatch.setattr(requests, "patch", recorder)
    operations = [{"operation": "replace", "field": "/accountStatus", "value": "inactive"}]

    ManagedObjectService(idm_client).patch("alpha_user", "u1", operations)

    assert recorder.calls[0]["json"] == operations
    assert "If-Match" not in recorder.calls[0]["headers"]


@pytest.mark.parametrize("method", ["put", "patch", "delete"])
def test_writes_on_missing_object_raise_not_found(monkeypatch, idm_client, method):
    monkeypatch.setattr(requests, method, _WriteRecorder(StubResponse({"code": 404}, 404)))
    service = ManagedObjectService(idm_client)
    with pytest.raises(ManagedObjectNotFoundError):
        if method == "put":
            service.replace("alpha_user", "nope", {})
        elif method == "patch":
            service.patch("alpha_user", "nope", [])
        else:
            service.delete("alpha_user", "nope")


def test_delete_conflict_propagates(monkeypatch, idm_client):
    recorder = _WriteRecorder(StubResponse({"code": 412}, 412))
    monkeypatch.setattr(requests, "delete", recorder)
    with pytest.raises(IdmAPIError) as exc_info:
        ManagedObjectService(idm_client).delete("alpha_user", "u1", revision="2")
    assert exc_info.value.status_code == 412
    assert recorder.calls[0]["headers"]["If-Match"] == "2"


def test_write_transport_failure_becomes_status_zero(monkeypatch, idm_client):
    def _refuse(url, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "put", _refuse)
    with pytest.raises(IdmAPIError) as exc_info:
        idm_client.put("/openidm/managed/alpha_user/u1", json={})
    assert exc_info.value.status_code == 0
