"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from scim_gateway.core.attribute_mappings import (
    MAPPINGS_ENV_VAR,
    MAPPINGS_FILE_ENV_VAR,
    CustomAttributeMappingConfig,
)
from scim_gateway.core.schema_compiler import ResourceKind

SECRETS_DIR = "/run/secrets"


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Returns:
        Secret value or None if not found
    """
    secret_file = Path(SECRETS_DIR) / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            print(f"[settings] ✓ Loaded {env_var} from environment (fallback)")
            return secret_value

    return None


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() == "true"


@dataclass
class AppConfig:
    """Application configuration container."""
    demo_mode: bool

    # Flask / proxy
    trusted_proxy_ips: str = "127.0.0.1/32,::1/128"
    log_level: str = "INFO"

    # IDM backend
    idm_base_url: str = ""
    idm_managed_user_object: str = "alpha_user"
    idm_managed_role_object: str = "alpha_role"

    # Service account (configuration reads during schema rebuilds)
    idm_token_url: str = ""
    idm_service_client_id: str = "scim-gateway"
    idm_service_client_secret: str = ""

    # Public SCIM base URL for meta.location (derived from the request when empty)
    scim_server_base_url: str = ""

    # Optional local JWT validation of SCIM bearer tokens
    oauth_issuer: str = ""
    oauth_jwks_url: str = ""

    # Operational endpoints (/admin/schemas); disabled when empty
    schema_admin_token: str = ""

    # Custom attribute mappings (inline JSON wins over the file)
    custom_attribute_mappings: str = ""
    custom_attribute_mappings_file: str = ""

    @property
    def managed_objects(self) -> dict[ResourceKind, str]:
        return {
            ResourceKind.USER: self.idm_managed_user_object,
            ResourceKind.GROUP: self.idm_managed_role_object,
        }

    @property
    def jwt_validation_enabled(self) -> bool:
        return bool(self.oauth_issuer)

    @property
    def resolved_jwks_url(self) -> str:
        if self.oauth_jwks_url:
            return self.oauth_jwks_url
        return f"{self.oauth_issuer.rstrip('/')}/protocol/openid-connect/certs"

    def load_mapping_config(self) -> CustomAttributeMappingConfig:
        """Parse the configured custom attribute mappings.

        Raises:
            MappingConfigError: If the configured document is not valid
        """
        return CustomAttributeMappingConfig.load({
            MAPPINGS_ENV_VAR: self.custom_attribute_mappings,
            MAPPINGS_FILE_ENV_VAR: self.custom_attribute_mappings_file,
        })


def _get_or_default(var_name: str, demo_default: Optional[str] = None, required: bool = True,
                    demo_mode: bool = False) -> str:
    """Get environment variable or fall back to the demo default."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        print(f"[demo-mode] Using default for {var_name}")
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = _env_flag("DEMO_MODE")

    idm_base_url = _get_or_default(
        "IDM_BASE_URL",
        demo_default="http://localhost:8080",
        demo_mode=demo_mode,
    ).rstrip("/")

    trusted_proxy_ips = os.environ.get("TRUSTED_PROXY_IPS")
    if not trusted_proxy_ips:
        is_testing = os.environ.get("PYTEST_CURRENT_TEST") is not None
        if demo_mode or is_testing:
            trusted_proxy_ips = "127.0.0.1/32,::1/128"
        else:
            raise RuntimeError("TRUSTED_PROXY_IPS is required when DEMO_MODE is false.")

    idm_service_client_secret = _load_secret_from_file(
        "idm_service_client_secret",
        "IDM_SERVICE_CLIENT_SECRET",
    ) or ""
    if not idm_service_client_secret and demo_mode:
        idm_service_client_secret = "demo-service-secret"

    schema_admin_token = _load_secret_from_file("schema_admin_token", "SCHEMA_ADMIN_TOKEN") or ""

    cfg = AppConfig(
        demo_mode=demo_mode,
        trusted_proxy_ips=trusted_proxy_ips,
        log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        idm_base_url=idm_base_url,
        idm_managed_user_object=os.environ.get("IDM_MANAGED_USER_OBJECT", "alpha_user").strip() or "alpha_user",
        idm_managed_role_object=os.environ.get("IDM_MANAGED_ROLE_OBJECT", "alpha_role").strip() or "alpha_role",
        idm_token_url=os.environ.get("IDM_TOKEN_URL", "").strip(),
        idm_service_client_id=os.environ.get("IDM_SERVICE_CLIENT_ID", "scim-gateway").strip(),
        idm_service_client_secret=idm_service_client_secret,
        scim_server_base_url=os.environ.get("SCIM_SERVER_BASE_URL", "").strip().rstrip("/"),
        oauth_issuer=os.environ.get("OAUTH_ISSUER", "").strip(),
        oauth_jwks_url=os.environ.get("OAUTH_JWKS_URL", "").strip(),
        schema_admin_token=schema_admin_token,
        custom_attribute_mappings=os.environ.get(MAPPINGS_ENV_VAR, ""),
        custom_attribute_mappings_file=os.environ.get(MAPPINGS_FILE_ENV_VAR, ""),
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(f"[settings] Mode={mode_label}; idm={cfg.idm_base_url}; "
          f"objects={cfg.idm_managed_user_object},{cfg.idm_managed_role_object}")
    if demo_mode:
        print("[settings] WARNING: Demo credentials in use. Do not deploy with these defaults.")

    return cfg
