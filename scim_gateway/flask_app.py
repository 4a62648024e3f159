"""Flask application factory and bootstrap.

This module provides the create_app() factory that wires the IDM client,
the schema cache and the SCIM blueprints together. Gunicorn calls
``scim_gateway.flask_app:create_app()``.
"""
from __future__ import annotations
import ipaddress
import logging
from typing import Optional

from flask import Flask, abort, request
from werkzeug.middleware.proxy_fix import ProxyFix

from scim_gateway.config import AppConfig, load_settings
from scim_gateway.core.attribute_mappings import CustomAttributeMappingConfig
from scim_gateway.core.idm import IdmAPIError, IdmClient, IdmConfigService, ManagedObjectService
from scim_gateway.core.schema_cache import ConfigSource, SchemaCache, SchemaRefreshError
from scim_gateway.core.scim_service import ScimService

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(
    cfg: Optional[AppConfig] = None,
    config_source: Optional[ConfigSource] = None,
    object_service: Optional[ManagedObjectService] = None,
    mapping_config: Optional[CustomAttributeMappingConfig] = None,
) -> Flask:
    """Create and configure the Flask application.

    Collaborators default to real IDM-backed implementations built from
    ``cfg``; tests inject fakes instead.
    """
    cfg = cfg or load_settings()
    _configure_logging(cfg.log_level)

    app = Flask(__name__)
    app.config["APP_CONFIG"] = cfg
    app.config["JSON_SORT_KEYS"] = False

    # Trust X-Forwarded-* headers from proxy (nginx)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    trusted_proxy_networks = _parse_networks(cfg.trusted_proxy_ips)
    app.config["TRUSTED_PROXY_NETWORKS"] = trusted_proxy_networks

    if mapping_config is None:
        mapping_config = cfg.load_mapping_config()

    if config_source is None or object_service is None:
        client = _build_idm_client(cfg)
        config_source = config_source or IdmConfigService(client)
        object_service = object_service or ManagedObjectService(client)

    schema_cache = SchemaCache(config_source, cfg.managed_objects, mapping_config)
    app.config["SCHEMA_CACHE"] = schema_cache
    app.config["SCIM_SERVICE"] = ScimService(object_service, cfg.managed_objects, mapping_config)

    # Startup build; failures leave /ready at 503 until a refresh succeeds
    try:
        schema_cache.rebuild()
    except SchemaRefreshError as exc:
        logger.error("Initial schema build failed; serving without schemas: %s", exc)

    from scim_gateway.api import admin, errors, health, scim

    app.register_blueprint(health.bp)
    app.register_blueprint(admin.bp)
    app.register_blueprint(scim.bp)
    errors.register_error_handlers(app)
    _register_middleware(app, trusted_proxy_networks)

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    print(f"[flask_app] Mode={mode_label}")
    print(f"[flask_app] SCIM 2.0 API registered at /scim/v2 ({schema_cache.count()} schemas)")
    if cfg.demo_mode:
        print("[flask_app] WARNING: Demo mode active - do not deploy with demo credentials")

    return app


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)


def _parse_networks(value: str) -> list:
    networks = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("Ignoring invalid TRUSTED_PROXY_IPS entry: %s", entry)
    return networks


def _build_idm_client(cfg: AppConfig) -> IdmClient:
    client = IdmClient(cfg.idm_base_url)
    if cfg.idm_token_url:
        try:
            client.authenticate_service_account(
                cfg.idm_token_url,
                cfg.idm_service_client_id,
                cfg.idm_service_client_secret,
            )
        except IdmAPIError as exc:
            # Retried on the next service call
            logger.error("Service account authentication failed: %s", exc)
    else:
        logger.warning("IDM_TOKEN_URL not set; schema rebuilds will fail until a service token is available")
    return client


def _register_middleware(app: Flask, trusted_proxy_networks: list):
    """Register before_request middleware."""

    @app.before_request
    def enforce_proxy_headers() -> None:
        """Accept proxy headers from trusted sources only."""
        if not request.headers.get("X-Forwarded-For"):
            return
        original = request.environ.get("werkzeug.proxy_fix.orig") or {}
        original_remote = original.get("REMOTE_ADDR")
        if original_remote:
            try:
                address = ipaddress.ip_address(original_remote)
            except ValueError:
                abort(400, description="Invalid proxy address")
            if not any(address in network for network in trusted_proxy_networks):
                abort(400, description="Untrusted proxy")

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for and "," in forwarded_for:
            abort(400, description="Multiple forwarded clients not permitted")


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000, debug=True)
