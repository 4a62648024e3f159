"""Pytest shared fixtures: fake IDM collaborators, app factory and JWT helpers."""
import json
import os
import pathlib
import sys
import time
from typing import Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any app imports
os.environ.setdefault("DEMO_MODE", "true")

import jwt
import pytest
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from scim_gateway.config.settings import AppConfig
from scim_gateway.core.attribute_mappings import CustomAttributeMappingConfig
from scim_gateway.core.idm import IdmAPIError, IdmConfigService, ManagedObjectNotFoundError, QueryResult
from scim_gateway.flask_app import create_app


# ─────────────────────────────────────────────────────────────────────────────
# Sample IDM configuration
# ─────────────────────────────────────────────────────────────────────────────
USER_PROPERTIES = {
    "_id": {"type": "string", "viewable": False},
    "userName": {"type": "string", "title": "Username", "required": True},
    "givenName": {"type": "string", "title": "First Name"},
    "sn": {"type": "string", "title": "Last Name"},
    "mail": {"type": "string", "title": "Email Address"},
    "accountStatus": {"type": "string", "title": "Status"},
    "effectiveRoles": {"type": "array", "items": {"type": "object"}},
    "costCenter": {"type": "string", "description": "Cost center code"},
    "isContractor": {"type": "boolean", "title": "Contractor"},
    "loginCount": {"type": "integer"},
    "tags": {"type": "array", "items": {"type": "string"}},
    "secretAnswer": {"type": "string", "viewable": False},
}

ROLE_PROPERTIES = {
    "name": {"type": "string", "title": "Name"},
    "description": {"type": "string"},
    "members": {"type": "array", "items": {"type": "relationship"}},
    "roleOwner": {"type": "relationship", "title": "Owner"},
}


def managed_config(user_properties=None, role_properties=None, nested_schema=True) -> dict:
    """A ``/openidm/config/managed`` document for alpha_user and alpha_role."""
    user_properties = USER_PROPERTIES if user_properties is None else user_properties
    role_properties = ROLE_PROPERTIES if role_properties is None else role_properties
    user_entry = {"name": "alpha_user"}
    if nested_schema:
        user_entry["schema"] = {"properties": user_properties}
    else:
        user_entry["properties"] = user_properties
    return {
        "_id": "managed",
        "objects": [
            user_entry,
            {"name": "alpha_role", "schema": {"properties": role_properties}},
            {"name": "alpha_assignment", "schema": {"properties": {"name": {"type": "string"}}}},
        ],
    }


# ─────────────────────────────────────────────────────────────────────────────
# Fake collaborators
# ─────────────────────────────────────────────────────────────────────────────
class FakeConfigSource:
    """In-memory stand-in for IdmConfigService."""

    def __init__(self, document: Optional[dict] = None):
        self.document = managed_config() if document is None else document
        self.error: Optional[Exception] = None
        self.calls = 0

    def get_managed_object_config(self, object_name: str):
        self.calls += 1
        if self.error is not None:
            raise self.error
        for entry in self.document.get("objects", []):
            if entry.get("name") == object_name:
                return entry
        return None

    get_properties_definition = staticmethod(IdmConfigService.get_properties_definition)


class FakeObjectService:
    """In-memory stand-in for ManagedObjectService recording every call."""

    def __init__(self, objects: Optional[dict] = None):
        self.objects = objects if objects is not None else {"alpha_user": [], "alpha_role": []}
        self.error: Optional[Exception] = None
        self.calls = []

    def query(self, object_name, query_filter, start_index=1, count=100, fields=None, token=None):
        self.calls.append(("query", object_name, query_filter, start_index, count, token))
        if self.error is not None:
            raise self.error
        items = self.objects.get(object_name, [])
        if count == 0:
            return QueryResult(total=len(items))
        offset = start_index - 1
        return QueryResult(total=len(items), results=items[offset:offset + count])

    def get(self, object_name, object_id, fields=None, token=None):
        self.calls.append(("get", object_name, object_id, token))
        if self.error is not None:
            raise self.error
        return self._find(object_name, object_id)

    def _find(self, object_name, object_id):
        for item in self.objects.get(object_name, []):
            if item.get("_id") == object_id:
                return item
        raise ManagedObjectNotFoundError(object_name, object_id)

    def create(self, object_name, body, token=None):
        self.calls.append(("create", object_name, body, token))
        if self.error is not None:
            raise self.error
        items = self.objects.setdefault(object_name, [])
        created = dict(body, _id=f"new-{len(items) + 1}", _rev="1")
        items.append(created)
        return created

    def replace(self, object_name, object_id, body, revision=None, token=None):
        self.calls.append(("replace", object_name, object_id, body, revision, token))
        if self.error is not None:
            raise self.error
        item = self._find(object_name, object_id)
        rev = str(int(item.get("_rev", "0")) + 1)
        item.clear()
        item.update(body, _id=object_id, _rev=rev)
        return item

    def patch(self, object_name, object_id, operations, revision=None, token=None):
        self.calls.append(("patch", object_name, object_id, operations, revision, token))
        if self.error is not None:
            raise self.error
        item = self._find(object_name, object_id)
        for operation in operations:
            field = operation["field"].strip("/")
            if field == "members/-":
                item.setdefault("members", []).append(operation["value"])
            elif operation["operation"] == "remove" and "value" in operation:
                item["members"] = [m for m in item.get("members", []) if m != operation["value"]]
            elif operation["operation"] == "remove":
                item.pop(field, None)
            else:
                item[field] = operation["value"]
        return item

    def delete(self, object_name, object_id, revision=None, token=None):
        self.calls.append(("delete", object_name, object_id, revision, token))
        if self.error is not None:
            raise self.error
        item = self._find(object_name, object_id)
        self.objects[object_name].remove(item)


def make_config(**overrides) -> AppConfig:
    base = dict(
        demo_mode=True,
        trusted_proxy_ips="127.0.0.1/32",
        log_level="INFO",
        idm_base_url="http://idm.test",
        idm_managed_user_object="alpha_user",
        idm_managed_role_object="alpha_role",
        idm_token_url="",
        idm_service_client_id="scim-gateway",
        idm_service_client_secret="",
        scim_server_base_url="https://gateway.test/scim/v2",
        oauth_issuer="",
        oauth_jwks_url="",
        schema_admin_token="admin-token",
        custom_attribute_mappings="",
        custom_attribute_mappings_file="",
    )
    base.update(overrides)
    return AppConfig(**base)


class StubResponse:
    def __init__(self, payload, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code
        self.text = json.dumps(payload)

    def json(self):
        return self._payload


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from reaching a live IDM or token endpoint.

    Integration tests are explicitly marked with @pytest.mark.integration and
    are allowed to perform real HTTP calls by skipping this fixture.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _stub_post(url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP POST in unit test: {url}")

    def _stub_get(url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP GET in unit test: {url}")

    def _stub_for(method):
        def _stub(url, *args, **kwargs):
            raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")
        return _stub

    monkeypatch.setattr(requests, "post", _stub_post)
    monkeypatch.setattr(requests, "get", _stub_get)
    for method in ("put", "patch", "delete"):
        monkeypatch.setattr(requests, method, _stub_for(method.upper()))


# ─────────────────────────────────────────────────────────────────────────────
# Flask Test Client
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def config_source():
    return FakeConfigSource()


@pytest.fixture()
def object_service():
    return FakeObjectService()


@pytest.fixture()
def app_factory(config_source, object_service):
    """Build an app around the fake collaborators; overrides go to AppConfig."""

    def _factory(mapping_config=None, **overrides):
        flask_app = create_app(
            make_config(**overrides),
            config_source=config_source,
            object_service=object_service,
            mapping_config=mapping_config or CustomAttributeMappingConfig(),
        )
        flask_app.config.update(TESTING=True)
        return flask_app

    return _factory


@pytest.fixture()
def app(app_factory):
    return app_factory()


@pytest.fixture()
def client(app):
    with app.test_client() as client:
        yield client


# ─────────────────────────────────────────────────────────────────────────────
# RSA Key Pair for JWT Testing
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(scope="session")
def rsa_key_pair():
    """Generate RSA key pair for JWT signing in tests."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return {
        "private_key": private_key,
        "private_pem": private_pem,
        "public_key": private_key.public_key(),
    }


def create_valid_jwt(
    rsa_key_pair: dict,
    issuer: str = "https://idp.test/realms/demo",
    client_id: str = "scim-client",
    exp_offset: int = 3600,
    kid: str = "default-key-id",
) -> str:
    """Create an RS256-signed JWT for testing."""
    now = int(time.time())
    payload = {
        "iss": issuer,
        "sub": "service-account-scim-client",
        "azp": client_id,
        "iat": now,
        "exp": now + exp_offset,
    }
    return jwt.encode(payload, rsa_key_pair["private_pem"], algorithm="RS256", headers={"kid": kid})


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires running stack)"
    )
