"""SCIM 2.0 API endpoints (RFC 7644).

Discovery endpoints are public; resource endpoints need a bearer token that
is forwarded to the IDM backend. Writes honour an optional If-Match revision.

Architecture:
    SCIM API (/scim/v2/*) -> scim_gateway/core/scim_service.py -> IDM
    /Schemas              -> scim_gateway/core/schema_cache.py (no backend call)
"""

from __future__ import annotations
import logging
from typing import Optional

from flask import Blueprint, Response, current_app, g, jsonify, request

from scim_gateway.core import schema_urns
from scim_gateway.core.scim_service import ScimError, list_response
from scim_gateway.api.decorators import require_bearer_token

bp = Blueprint("scim", __name__, url_prefix="/scim/v2")

SCIM_CONTENT_TYPE = "application/scim+json"

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def scim_error(status: int, detail: str, scim_type: str = None) -> tuple[Response, int]:
    """Create SCIM error response tuple for route handlers."""
    error = ScimError(status, detail, scim_type)
    return jsonify(error.to_dict()), status


def scim_base_url() -> str:
    """Public base URL of this SCIM service, used in meta.location."""
    cfg = current_app.config["APP_CONFIG"]
    if cfg.scim_server_base_url:
        return cfg.scim_server_base_url
    return f"{request.url_root.rstrip('/')}{bp.url_prefix}"


def _schema_cache():
    return current_app.config["SCHEMA_CACHE"]


def _scim_service():
    return current_app.config["SCIM_SERVICE"]


def _page_params(source) -> tuple[int, int | None]:
    try:
        start_index = max(1, int(source.get("startIndex") or 1))
        raw_count = source.get("count")
        count = None if raw_count in (None, "") else max(0, int(raw_count))
    except (TypeError, ValueError):
        raise ScimError(400, "startIndex and count must be integers", "invalidValue")
    return start_index, count


def _paged_list(resources: list, source) -> dict:
    start_index, count = _page_params(source)
    offset = start_index - 1
    page = resources[offset:] if count is None else resources[offset:offset + count]
    return list_response(page, len(resources), start_index)


@bp.errorhandler(ScimError)
def handle_scim_error(error: ScimError):
    """Render ScimError as a SCIM error body."""
    return jsonify(error.to_dict()), error.status


@bp.after_request
def add_scim_headers(response):
    """SCIM content type and correlation-id echo."""
    if response.mimetype == "application/json":
        response.mimetype = SCIM_CONTENT_TYPE
    correlation_id = request.headers.get("X-Correlation-Id")
    if correlation_id:
        response.headers["X-Correlation-Id"] = correlation_id
    return response


# ─────────────────────────────────────────────────────────────────────────────
# SCIM Discovery Endpoints (public)
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/ServiceProviderConfig", methods=["GET"])
def service_provider_config():
    """Return SCIM ServiceProviderConfig (RFC 7643 Section 5)."""
    return jsonify({
        "schemas": [schema_urns.SERVICE_PROVIDER_CONFIG],
        "patch": {"supported": True},
        "bulk": {"supported": False, "maxOperations": 0, "maxPayloadSize": 0},
        "filter": {"supported": True, "maxResults": 200},
        "changePassword": {"supported": False},
        "sort": {"supported": False},
        "etag": {"supported": False},
        "authenticationSchemes": [{
            "type": "oauthbearertoken",
            "name": "OAuth Bearer Token",
            "description": "Authentication scheme using the OAuth Bearer Token Standard",
            "specUri": "https://www.rfc-editor.org/info/rfc6750",
            "primary": True,
        }],
        "meta": {
            "resourceType": "ServiceProviderConfig",
            "location": f"{scim_base_url()}/ServiceProviderConfig",
        },
    })


def _resource_types() -> list[dict]:
    base = scim_base_url()
    user = {
        "schemas": [schema_urns.RESOURCE_TYPE],
        "id": "User",
        "name": "User",
        "endpoint": "/Users",
        "description": "User Account",
        "schema": schema_urns.CORE_USER,
        "meta": {"resourceType": "ResourceType", "location": f"{base}/ResourceTypes/User"},
    }
    if _schema_cache().has_enterprise_extension:
        user["schemaExtensions"] = [{"schema": schema_urns.ENTERPRISE_USER, "required": False}]
    group = {
        "schemas": [schema_urns.RESOURCE_TYPE],
        "id": "Group",
        "name": "Group",
        "endpoint": "/Groups",
        "description": "Group",
        "schema": schema_urns.CORE_GROUP,
        "meta": {"resourceType": "ResourceType", "location": f"{base}/ResourceTypes/Group"},
    }
    return [user, group]


@bp.route("/ResourceTypes", methods=["GET"])
def list_resource_types():
    return jsonify(_paged_list(_resource_types(), request.args))


@bp.route("/ResourceTypes/<name>", methods=["GET"])
def get_resource_type(name: str):
    for resource_type in _resource_types():
        if resource_type["id"].lower() == name.lower():
            return jsonify(resource_type)
    return scim_error(404, f"ResourceType {name} not found")


@bp.route("/Schemas", methods=["GET"])
def list_schemas():
    """List cached SCIM schemas (RFC 7643 Section 7)."""
    cache = _schema_cache()
    if not cache.is_initialized():
        return scim_error(503, "Schemas are not available yet")

    base = scim_base_url()
    documents = [document.to_dict(base) for document in cache.get_all_schemas()]
    return jsonify(_paged_list(documents, request.args))


@bp.route("/Schemas/<path:schema_id>", methods=["GET"])
def get_schema(schema_id: str):
    cache = _schema_cache()
    if not cache.is_initialized():
        return scim_error(503, "Schemas are not available yet")

    urn = schema_urns.normalize_schema_id(schema_id)
    document = cache.get_schema(urn)
    if document is None:
        return scim_error(404, f"Schema {schema_id} not found")
    return jsonify(document.to_dict(scim_base_url()))


# ─────────────────────────────────────────────────────────────────────────────
# Users and Groups (bearer token required)
# ─────────────────────────────────────────────────────────────────────────────

def _search_body() -> dict:
    payload = request.get_json(silent=True, force=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ScimError(400, "Search request body must be a JSON object", "invalidSyntax")
    schemas = payload.get("schemas")
    if schemas is not None and (not isinstance(schemas, list) or schema_urns.SEARCH_REQUEST not in schemas):
        raise ScimError(400, f"schemas must include {schema_urns.SEARCH_REQUEST}", "invalidSyntax")
    return payload


def _resource_body():
    """Parsed JSON body; shape checks happen in the service layer."""
    payload = request.get_json(silent=True, force=True)
    if payload is None:
        raise ScimError(400, "Request body is not valid JSON", "invalidSyntax")
    return payload


def _if_match_revision() -> Optional[str]:
    """Revision from If-Match, without quotes or a weak-validator prefix."""
    raw = (request.headers.get("If-Match") or "").strip()
    if raw.startswith("W/"):
        raw = raw[2:]
    return raw.strip('"') or None


def _created(resource: dict) -> Response:
    response = jsonify(resource)
    response.status_code = 201
    response.headers["Location"] = resource["meta"]["location"]
    return response


def _list(resource_type: str, query) -> Response:
    result = _scim_service().list_resources(resource_type, query, token=g.access_token, base_url=scim_base_url())
    return jsonify(result)


@bp.route("/Users", methods=["GET"])
@require_bearer_token
def list_users():
    return _list(schema_urns.USER_RESOURCE, request.args)


@bp.route("/Users/.search", methods=["POST"])
@require_bearer_token
def search_users():
    return _list(schema_urns.USER_RESOURCE, _search_body())


@bp.route("/Users/<user_id>", methods=["GET"])
@require_bearer_token
def get_user(user_id: str):
    return jsonify(_scim_service().get_resource(schema_urns.USER_RESOURCE, user_id,
                                                token=g.access_token, base_url=scim_base_url()))


@bp.route("/Groups", methods=["GET"])
@require_bearer_token
def list_groups():
    return _list(schema_urns.GROUP_RESOURCE, request.args)


@bp.route("/Groups/.search", methods=["POST"])
@require_bearer_token
def search_groups():
    return _list(schema_urns.GROUP_RESOURCE, _search_body())


@bp.route("/Groups/<group_id>", methods=["GET"])
@require_bearer_token
def get_group(group_id: str):
    return jsonify(_scim_service().get_resource(schema_urns.GROUP_RESOURCE, group_id,
                                                token=g.access_token, base_url=scim_base_url()))


def _create(resource_type: str) -> Response:
    resource = _scim_service().create_resource(resource_type, _resource_body(), token=g.access_token,
                                               base_url=scim_base_url())
    return _created(resource)


def _replace(resource_type: str, resource_id: str) -> Response:
    return jsonify(_scim_service().replace_resource(resource_type, resource_id, _resource_body(),
                                                    token=g.access_token, base_url=scim_base_url(),
                                                    revision=_if_match_revision()))


def _patch(resource_type: str, resource_id: str) -> Response:
    return jsonify(_scim_service().patch_resource(resource_type, resource_id, _resource_body(),
                                                  token=g.access_token, base_url=scim_base_url(),
                                                  revision=_if_match_revision()))


def _delete(resource_type: str, resource_id: str):
    _scim_service().delete_resource(resource_type, resource_id, token=g.access_token,
                                    revision=_if_match_revision())
    return '', 204


@bp.route("/Users", methods=["POST"])
@require_bearer_token
def create_user():
    """Create a User (RFC 7644 §3.3); 201 with a Location header."""
    return _create(schema_urns.USER_RESOURCE)


@bp.route("/Users/<user_id>", methods=["PUT"])
@require_bearer_token
def replace_user(user_id: str):
    return _replace(schema_urns.USER_RESOURCE, user_id)


@bp.route("/Users/<user_id>", methods=["PATCH"])
@require_bearer_token
def patch_user(user_id: str):
    """Apply a PatchOp to a User (RFC 7644 §3.5.2)."""
    return _patch(schema_urns.USER_RESOURCE, user_id)


@bp.route("/Users/<user_id>", methods=["DELETE"])
@require_bearer_token
def delete_user(user_id: str):
    return _delete(schema_urns.USER_RESOURCE, user_id)


@bp.route("/Groups", methods=["POST"])
@require_bearer_token
def create_group():
    return _create(schema_urns.GROUP_RESOURCE)


@bp.route("/Groups/<group_id>", methods=["PUT"])
@require_bearer_token
def replace_group(group_id: str):
    return _replace(schema_urns.GROUP_RESOURCE, group_id)


@bp.route("/Groups/<group_id>", methods=["PATCH"])
@require_bearer_token
def patch_group(group_id: str):
    return _patch(schema_urns.GROUP_RESOURCE, group_id)


@bp.route("/Groups/<group_id>", methods=["DELETE"])
@require_bearer_token
def delete_group(group_id: str):
    return _delete(schema_urns.GROUP_RESOURCE, group_id)
