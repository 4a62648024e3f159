"""
SCIM Service Layer

Shared by the SCIM API and the CLI. Turns SCIM list/get/create/replace/
patch/delete requests into IDM managed-object calls and shapes the results
as SCIM resources.

Architecture:
    SCIM API (/scim/v2/*) ──> scim_service.py ──> FilterTranslator
                                              ├──> PatchConverter
                                              └──> scim_gateway.core.idm ──> IDM

Features:
    - SCIM filter → IDM _queryFilter translation with per-type rewrite tables
    - SCIM PatchOp → IDM patch operations, group members as _ref entries
    - startIndex/count paging with exact totals (count=0 → total only)
    - IDM errors mapped to ScimError with a sensible HTTP status
    - Caller bearer token passed explicitly down to every IDM call
"""

from __future__ import annotations
import logging
from typing import Any, Mapping, Optional

from scim_gateway.core import schema_urns
from scim_gateway.core.attribute_mappings import CustomAttributeMappingConfig, build_filter_rewrite_table
from scim_gateway.core.filter_translator import FilterTranslationError, FilterTranslator
from scim_gateway.core.idm import IdmAPIError, ManagedObjectNotFoundError, ManagedObjectService
from scim_gateway.core.patch_converter import PatchConversionError, PatchConverter
from scim_gateway.core.schema_compiler import ResourceKind
from scim_gateway.core.schema_cache import DEFAULT_MANAGED_OBJECTS
from scim_gateway.core.scim_transformer import ScimTransformer

logger = logging.getLogger(__name__)

DEFAULT_COUNT = 100
MAX_COUNT = 200

_KIND_BY_RESOURCE = {
    schema_urns.USER_RESOURCE: ResourceKind.USER,
    schema_urns.GROUP_RESOURCE: ResourceKind.GROUP,
}

_CORE_SCHEMA = {
    schema_urns.USER_RESOURCE: schema_urns.CORE_USER,
    schema_urns.GROUP_RESOURCE: schema_urns.CORE_GROUP,
}

_REQUIRED_ATTRIBUTE = {
    schema_urns.USER_RESOURCE: "userName",
    schema_urns.GROUP_RESOURCE: "displayName",
}


class ScimError(Exception):
    """SCIM protocol error with HTTP status and optional scimType."""

    def __init__(self, status: int, detail: str, scim_type: Optional[str] = None):
        self.status = status
        self.detail = detail
        self.scim_type = scim_type
        super().__init__(detail)

    def to_dict(self) -> dict:
        """Convert to SCIM error response format."""
        error_dict = {
            "schemas": [schema_urns.ERROR],
            "status": str(self.status),
            "detail": self.detail,
        }
        if self.scim_type:
            error_dict["scimType"] = self.scim_type
        return error_dict


def _int_param(query: Mapping[str, Any], name: str, default: int) -> int:
    raw = query.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ScimError(400, f"{name} must be an integer", "invalidValue")


def parse_paging(query: Mapping[str, Any]) -> tuple[int, int]:
    """Return (startIndex, count) per RFC 7644 §3.4.2.4."""
    start_index = max(1, _int_param(query, "startIndex", 1))
    count = min(MAX_COUNT, max(0, _int_param(query, "count", DEFAULT_COUNT)))
    return start_index, count


def idm_error_to_scim(exc: IdmAPIError, action: str) -> ScimError:
    """404 stays 404, other 4xx pass through (409 as uniqueness), the rest is 502."""
    if exc.status_code == 404:
        return ScimError(404, f"{action}: resource not found")
    if exc.status_code == 409:
        return ScimError(409, f"{action}: resource already exists", "uniqueness")
    if 400 <= exc.status_code < 500:
        return ScimError(exc.status_code, f"{action}: IDM rejected the request ({exc.status_code})")
    return ScimError(502, f"{action}: IDM backend error ({exc.status_code or 'no response'})")


def list_response(resources: list, total: int, start_index: int) -> dict:
    return {
        "schemas": [schema_urns.LIST_RESPONSE],
        "totalResults": total,
        "startIndex": start_index,
        "itemsPerPage": len(resources),
        "Resources": resources,
    }


class ScimService:
    """Users/Groups against the IDM backend."""

    def __init__(
        self,
        object_service: ManagedObjectService,
        managed_objects: Optional[Mapping[ResourceKind, str]] = None,
        mapping_config: Optional[CustomAttributeMappingConfig] = None,
    ):
        self.object_service = object_service
        self.managed_objects = dict(managed_objects or DEFAULT_MANAGED_OBJECTS)
        self.mapping_config = mapping_config
        self.translators = {
            resource_type: FilterTranslator(build_filter_rewrite_table(resource_type, mapping_config))
            for resource_type in _KIND_BY_RESOURCE
        }
        user_object = self.managed_objects[ResourceKind.USER]
        role_object = self.managed_objects[ResourceKind.GROUP]
        self.patch_converters = {
            resource_type: PatchConverter(resource_type, self.translators[resource_type].rewrite_table,
                                          user_object, role_object, mapping_config)
            for resource_type in _KIND_BY_RESOURCE
        }

    def translate_filter(self, resource_type: str, filter_string: Optional[str]) -> str:
        """Translate a SCIM filter, raising ScimError(400, invalidFilter) on syntax errors."""
        if filter_string is not None and not isinstance(filter_string, str):
            raise ScimError(400, "filter must be a string", "invalidFilter")
        try:
            return self.translators[resource_type].translate(filter_string)
        except FilterTranslationError as exc:
            logger.info("Rejected SCIM filter for %s: %s", resource_type, exc)
            raise ScimError(400, f"Invalid filter: {exc.reason} near '{exc.fragment}'", "invalidFilter")

    def _to_scim(self, resource_type: str, idm_object: dict, base_url: str) -> dict:
        if resource_type == schema_urns.GROUP_RESOURCE:
            return ScimTransformer.idm_role_to_scim(idm_object, base_url)
        return ScimTransformer.idm_user_to_scim(idm_object, base_url, self.mapping_config)

    def list_resources(self, resource_type: str, query: Optional[Mapping[str, Any]], token: str,
                       base_url: str) -> dict:
        """List Users or Groups.

        Args:
            resource_type: "User" or "Group"
            query: Dict with optional startIndex, count, filter
            token: Caller bearer token, forwarded to IDM
            base_url: Public SCIM base URL for meta.location

        Returns:
            SCIM ListResponse
        """
        query = query or {}
        start_index, count = parse_paging(query)
        query_filter = self.translate_filter(resource_type, query.get("filter"))
        object_name = self._object_name(resource_type)

        logger.info("SCIM list %s: filter=%r -> _queryFilter=%s", resource_type, query.get("filter"), query_filter)
        try:
            result = self.object_service.query(object_name, query_filter, start_index, count, token=token)
        except IdmAPIError as exc:
            raise idm_error_to_scim(exc, f"Failed to list {resource_type}s")

        resources = [self._to_scim(resource_type, obj, base_url) for obj in result.results]
        return list_response(resources, result.total, start_index)

    def get_resource(self, resource_type: str, resource_id: str, token: str, base_url: str) -> dict:
        """Fetch one User or Group by id."""
        object_name = self._object_name(resource_type)
        try:
            idm_object = self.object_service.get(object_name, resource_id, token=token)
        except ManagedObjectNotFoundError:
            raise ScimError(404, f"{resource_type} {resource_id} not found")
        except IdmAPIError as exc:
            raise idm_error_to_scim(exc, f"Failed to get {resource_type}")
        return self._to_scim(resource_type, idm_object, base_url)

    # ─────────────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────────────

    def _object_name(self, resource_type: str) -> str:
        return self.managed_objects[_KIND_BY_RESOURCE[resource_type]]

    def _to_idm(self, resource_type: str, resource: Any) -> dict:
        """Validate a full SCIM resource and convert it to IDM attributes."""
        if not isinstance(resource, dict):
            raise ScimError(400, "Request body must be a JSON object", "invalidSyntax")
        core_schema = _CORE_SCHEMA[resource_type]
        schemas = resource.get("schemas")
        if not isinstance(schemas, list) or core_schema not in schemas:
            raise ScimError(400, f"schemas must include {core_schema}", "invalidSyntax")
        required = _REQUIRED_ATTRIBUTE[resource_type]
        if not isinstance(resource.get(required), str) or not resource[required].strip():
            raise ScimError(400, f"{required} is required", "invalidValue")

        if resource_type == schema_urns.GROUP_RESOURCE:
            return ScimTransformer.scim_group_to_idm(resource, self.managed_objects[ResourceKind.USER],
                                                     self.managed_objects[ResourceKind.GROUP])
        return ScimTransformer.scim_user_to_idm(resource, self.mapping_config)

    def create_resource(self, resource_type: str, resource: Any, token: str, base_url: str) -> dict:
        """Create a User or Group; returns the stored resource."""
        body = self._to_idm(resource_type, resource)
        try:
            created = self.object_service.create(self._object_name(resource_type), body, token=token)
        except IdmAPIError as exc:
            raise idm_error_to_scim(exc, f"Failed to create {resource_type}")
        logger.info("SCIM create %s: id=%s", resource_type, created.get("_id"))
        return self._to_scim(resource_type, created, base_url)

    def replace_resource(self, resource_type: str, resource_id: str, resource: Any, token: str,
                         base_url: str, revision: Optional[str] = None) -> dict:
        """Replace a User or Group (PUT)."""
        body = self._to_idm(resource_type, resource)
        try:
            updated = self.object_service.replace(self._object_name(resource_type), resource_id, body,
                                                  revision=revision, token=token)
        except ManagedObjectNotFoundError:
            raise ScimError(404, f"{resource_type} {resource_id} not found")
        except IdmAPIError as exc:
            raise idm_error_to_scim(exc, f"Failed to replace {resource_type}")
        logger.info("SCIM replace %s: id=%s", resource_type, resource_id)
        return self._to_scim(resource_type, updated, base_url)

    def patch_resource(self, resource_type: str, resource_id: str, patch_request: Any, token: str,
                       base_url: str, revision: Optional[str] = None) -> dict:
        """Apply a SCIM PatchOp to a User or Group."""
        try:
            operations = self.patch_converters[resource_type].convert(patch_request)
        except PatchConversionError as exc:
            logger.info("Rejected SCIM patch for %s %s: %s", resource_type, resource_id, exc)
            raise ScimError(400, exc.detail, exc.scim_type)

        if not operations:
            return self.get_resource(resource_type, resource_id, token=token, base_url=base_url)

        logger.info("SCIM patch %s %s: %d IDM operations", resource_type, resource_id, len(operations))
        try:
            patched = self.object_service.patch(self._object_name(resource_type), resource_id, operations,
                                                revision=revision, token=token)
        except ManagedObjectNotFoundError:
            raise ScimError(404, f"{resource_type} {resource_id} not found")
        except IdmAPIError as exc:
            raise idm_error_to_scim(exc, f"Failed to patch {resource_type}")
        return self._to_scim(resource_type, patched, base_url)

    def delete_resource(self, resource_type: str, resource_id: str, token: str,
                        revision: Optional[str] = None) -> None:
        try:
            self.object_service.delete(self._object_name(resource_type), resource_id, revision=revision, token=token)
        except ManagedObjectNotFoundError:
            raise ScimError(404, f"{resource_type} {resource_id} not found")
        except IdmAPIError as exc:
            raise idm_error_to_scim(exc, f"Failed to delete {resource_type}")
        logger.info("SCIM delete %s: id=%s", resource_type, resource_id)
