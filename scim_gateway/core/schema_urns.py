"""SCIM 2.0 schema and message URNs (RFC 7643 / RFC 7644)."""

CORE_USER = "urn:ietf:params:scim:schemas:core:2.0:User"
CORE_GROUP = "urn:ietf:params:scim:schemas:core:2.0:Group"
ENTERPRISE_USER = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"

SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Schema"
RESOURCE_TYPE = "urn:ietf:params:scim:schemas:core:2.0:ResourceType"
SERVICE_PROVIDER_CONFIG = "urn:ietf:params:scim:schemas:core:2.0:ServiceProviderConfig"

LIST_RESPONSE = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
SEARCH_REQUEST = "urn:ietf:params:scim:api:messages:2.0:SearchRequest"
PATCH_OP = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
ERROR = "urn:ietf:params:scim:api:messages:2.0:Error"

# Resource type names used as attribute-cache keys
USER_RESOURCE = "User"
GROUP_RESOURCE = "Group"
ENTERPRISE_USER_RESOURCE = "EnterpriseUser"

# Short names accepted on /Schemas/<id>
SHORT_NAMES = {
    "user": CORE_USER,
    "group": CORE_GROUP,
    "enterpriseuser": ENTERPRISE_USER,
}


def normalize_schema_id(schema_id: str) -> str:
    """Resolve a short name or a URN missing its ``urn:`` prefix."""
    candidate = (schema_id or "").strip()
    short = SHORT_NAMES.get(candidate.lower())
    if short:
        return short
    if candidate and not candidate.lower().startswith("urn:"):
        return f"urn:{candidate}"
    return candidate
