"""
Flask decorators for SCIM bearer-token handling.

Every protected SCIM route needs an ``Authorization: Bearer <token>`` header.
The token is forwarded to the IDM backend as-is, passed explicitly down the
call chain (``g.access_token`` is only read by the route handler).

When OAUTH_ISSUER is configured the token is also validated locally:
- RSA-SHA256 signature verification via JWKS (RFC 7517)
- Expiration, not-before and issuer checks (RFC 7519)
"""

import hashlib
import logging
from functools import wraps
from typing import Dict, Optional

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)
from flask import current_app, g, request

from scim_gateway.core.scim_service import ScimError

logger = logging.getLogger(__name__)

# Cached JWKS client, rebuilt when the configured URL changes
_jwks_client: Optional[PyJWKClient] = None
_jwks_url: Optional[str] = None


class TokenValidationError(Exception):
    """Exception raised when JWT token validation fails."""
    pass


def token_fingerprint(token: str) -> str:
    """Short SHA-256 prefix for logging; never log the token itself."""
    return hashlib.sha256(token.encode()).hexdigest()[:12]


def get_jwks_client() -> PyJWKClient:
    """Return the cached JWKS client for the configured issuer."""
    global _jwks_client, _jwks_url

    cfg = current_app.config["APP_CONFIG"]
    jwks_url = cfg.resolved_jwks_url
    if _jwks_client is None or _jwks_url != jwks_url:
        logger.info("Initializing JWKS client for: %s", jwks_url)
        _jwks_client = PyJWKClient(
            jwks_url,
            cache_keys=True,
            max_cached_keys=16,
            lifespan=3600,
            headers={"User-Agent": "scim-gateway/1.0"},
        )
        _jwks_url = jwks_url
    return _jwks_client


def validate_jwt_token(token: str) -> Dict[str, object]:
    """
    Validate a JWT bearer token against the configured issuer.

    Args:
        token: JWT token string (without "Bearer " prefix)

    Returns:
        dict: Validated token claims

    Raises:
        TokenValidationError: If any validation fails
    """
    cfg = current_app.config["APP_CONFIG"]

    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            issuer=cfg.oauth_issuer,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_nbf": True,
                "verify_iss": True,
                "verify_aud": False,
                "require": ["exp", "iat"],
            },
            leeway=5,
        )
    except ExpiredSignatureError:
        raise TokenValidationError("Token expired (exp claim)")
    except InvalidIssuerError as e:
        raise TokenValidationError(f"Invalid issuer: {e}")
    except InvalidSignatureError:
        raise TokenValidationError("Invalid signature (token tampered or wrong key)")
    except DecodeError as e:
        raise TokenValidationError(f"Token decode error (malformed JWT): {e}")
    except (InvalidTokenError, PyJWKClientError) as e:
        raise TokenValidationError(f"Token validation failed: {e}")

    client_id = claims.get("azp") or claims.get("client_id", "unknown")
    logger.debug("JWT validated for client: %s", client_id)
    return claims


def extract_bearer_token() -> str:
    """Return the bearer token from the Authorization header.

    Raises:
        ScimError: 401 when the header is missing, malformed or empty
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        raise ScimError(401, "Authorization header missing. Provide 'Authorization: Bearer <token>'.",
                        "unauthorized")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        raise ScimError(401, "Authorization header must use Bearer token scheme.", "unauthorized")
    token = token.strip()
    if not token:
        raise ScimError(401, "Bearer token is empty.", "unauthorized")
    return token


def require_bearer_token(fn):
    """Require a bearer token; validate it locally when an issuer is configured.

    Sets ``g.access_token`` (and ``g.oauth_claims`` when validated).
    """

    @wraps(fn)
    def wrapper(*args, **kwargs):
        token = extract_bearer_token()
        cfg = current_app.config["APP_CONFIG"]

        g.oauth_claims = None
        if cfg.jwt_validation_enabled:
            try:
                g.oauth_claims = validate_jwt_token(token)
            except TokenValidationError as e:
                logger.warning("SCIM JWT validation failed | token_hash=%s | %s", token_fingerprint(token), e)
                raise ScimError(401, str(e), "unauthorized")

        g.access_token = token
        logger.debug("SCIM bearer accepted | token_hash=%s | path=%s", token_fingerprint(token), request.path)
        return fn(*args, **kwargs)

    return wrapper
