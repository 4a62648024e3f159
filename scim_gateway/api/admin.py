"""Operational endpoints for the schema cache.

    POST /admin/schemas/refresh   re-read IDM configuration and republish schemas
    GET  /admin/schemas           cache status

Both require ``Authorization: Bearer <SCHEMA_ADMIN_TOKEN>`` and are disabled
(404) when no admin token is configured.
"""
from __future__ import annotations
import hmac
import logging

from flask import Blueprint, abort, current_app, jsonify, request

from scim_gateway.api.decorators import token_fingerprint
from scim_gateway.core.schema_cache import SchemaRefreshError

bp = Blueprint("admin", __name__, url_prefix="/admin")

logger = logging.getLogger(__name__)


@bp.before_request
def require_admin_token():
    """Constant-time check of the static ops token."""
    cfg = current_app.config["APP_CONFIG"]
    if not cfg.schema_admin_token:
        abort(404)

    auth_header = request.headers.get("Authorization", "")
    scheme, _, provided = auth_header.partition(" ")
    provided = provided.strip()
    if scheme.lower() != "bearer" or not provided:
        abort(401)
    if not hmac.compare_digest(provided.encode(), cfg.schema_admin_token.encode()):
        logger.warning("Rejected admin token | token_hash=%s | path=%s", token_fingerprint(provided), request.path)
        abort(403)
    return None


def _status_payload(cache) -> dict:
    snapshot = cache.snapshot()
    return {
        "initialized": snapshot.initialized,
        "count": len(snapshot.schemas),
        "schemas": list(snapshot.schemas),
    }


@bp.route("/schemas", methods=["GET"])
def schema_status():
    return jsonify(_status_payload(current_app.config["SCHEMA_CACHE"]))


@bp.route("/schemas/refresh", methods=["POST"])
def refresh_schemas():
    cache = current_app.config["SCHEMA_CACHE"]
    try:
        cache.refresh_schemas()
    except SchemaRefreshError as exc:
        logger.error("Schema refresh failed, keeping previous schemas: %s", exc)
        payload = _status_payload(cache)
        payload.update({"refreshed": False, "error": str(exc)})
        return jsonify(payload), 503

    payload = _status_payload(cache)
    payload["refreshed"] = True
    return jsonify(payload)
