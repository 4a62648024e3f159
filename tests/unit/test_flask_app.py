"""Tests for the application factory wiring."""
import requests

from scim_gateway import flask_app
from scim_gateway.core.idm import IdmClient

from tests.conftest import StubResponse, make_config


def test_factory_registers_blueprints_and_collaborators(app):
    assert {"health", "admin", "scim"} <= set(app.blueprints)
    assert app.config["SCHEMA_CACHE"].is_initialized() is True
    assert app.config["SCIM_SERVICE"] is not None
    assert app.config["TRUSTED_PROXY_NETWORKS"]


def test_invalid_proxy_networks_are_ignored():
    networks = flask_app._parse_networks("10.0.0.0/8, not-a-network, ,::1/128")
    assert [str(n) for n in networks] == ["10.0.0.0/8", "::1/128"]


def test_idm_client_without_token_url_stays_unauthenticated():
    client = flask_app._build_idm_client(make_config(idm_token_url=""))
    assert isinstance(client, IdmClient)
    assert client.is_authenticated is False


def test_idm_client_authentication_failure_does_not_abort_startup(monkeypatch):
    def _token_down(url, data=None, timeout=None, **kwargs):
        return StubResponse({"error": "unavailable"}, 503)

    monkeypatch.setattr(requests, "post", _token_down)
    client = flask_app._build_idm_client(make_config(idm_token_url="http://am.test/token"))
    assert client.is_authenticated is False


def test_idm_client_authenticates_service_account(monkeypatch):
    def _token(url, data=None, timeout=None, **kwargs):
        return StubResponse({"access_token": "svc"})

    monkeypatch.setattr(requests, "post", _token)
    client = flask_app._build_idm_client(make_config(idm_token_url="http://am.test/token"))
    assert client.is_authenticated is True


def test_unreachable_idm_at_startup_still_serves(monkeypatch):
    def _refused(url, *args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "get", _refused)
    app = flask_app.create_app(make_config(idm_base_url="http://idm.test"))
    assert app.config["SCHEMA_CACHE"].is_initialized() is False
    with app.test_client() as client:
        assert client.get("/health").status_code == 200
        assert client.get("/ready").status_code == 503


def test_proxy_headers_from_trusted_proxy_are_accepted(client):
    response = client.get("/health", headers={"X-Forwarded-For": "203.0.113.7"})
    assert response.status_code == 200


def test_proxy_headers_from_untrusted_peer_are_rejected(client):
    response = client.get("/health", headers={"X-Forwarded-For": "203.0.113.7"},
                          environ_base={"REMOTE_ADDR": "198.51.100.1"})
    assert response.status_code == 400
