"""SCIM PatchOp (RFC 7644 §3.5.2) → IDM patch operations.

IDM takes a JSON list of ``{"operation", "field", "value"}`` entries where
``field`` is a JSON pointer into the managed object. Group membership is a
relationship list, so member changes become ``_ref`` additions/removals:

    add members [{"value": "u1"}]          → add /members/- {"_ref": "managed/alpha_user/u1"}
    remove members[value eq "u1"]          → remove /members {"_ref": "managed/alpha_user/u1"}
    remove members (no value)              → replace /members []

Usage:
    converter = PatchConverter("User", rewrite_table, "alpha_user", "alpha_role", mapping_config)
    operations = converter.convert(request_body)
"""
from __future__ import annotations
import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from scim_gateway.core import schema_urns
from scim_gateway.core.attribute_mappings import CustomAttributeMappingConfig
from scim_gateway.core.scim_transformer import PASSTHROUGH_USER_ATTRIBUTES, ScimTransformer, set_path

logger = logging.getLogger(__name__)

SUPPORTED_OPERATIONS = ("add", "replace", "remove")

_VALUE_FILTER_RE = re.compile(r"""\[\s*value\s+eq\s+(?:"([^"]*)"|'([^']*)')\s*\]""", re.IGNORECASE)
_BRACKET_RE = re.compile(r"\[[^\]]*\]")


class PatchConversionError(ValueError):
    """PatchOp request that cannot be expressed as IDM operations."""

    def __init__(self, detail: str, scim_type: str = "invalidValue"):
        self.detail = detail
        self.scim_type = scim_type
        super().__init__(detail)


def _operation(operation: str, field: str, value: Any = None, with_value: bool = True) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"operation": operation, "field": field}
    if with_value:
        entry["value"] = value
    return entry


class PatchConverter:
    """Converts PatchOp bodies for one resource type."""

    def __init__(
        self,
        resource_type: str,
        path_table: Mapping[str, str],
        user_object: str = "alpha_user",
        role_object: str = "alpha_role",
        mapping_config: Optional[CustomAttributeMappingConfig] = None,
    ):
        self.resource_type = resource_type
        self.user_object = user_object
        self.role_object = role_object
        self.mapping_config = mapping_config
        table = dict(path_table)
        if resource_type == schema_urns.USER_RESOURCE:
            for attribute in PASSTHROUGH_USER_ATTRIBUTES + ("password",):
                table.setdefault(attribute, attribute)
        self.path_table = table

    @property
    def is_group(self) -> bool:
        return self.resource_type == schema_urns.GROUP_RESOURCE

    # ─────────────────────────────────────────────────────────────────────────
    # Request validation
    # ─────────────────────────────────────────────────────────────────────────

    def convert(self, request: Any) -> List[Dict[str, Any]]:
        """Validate a PatchOp body and return the IDM operation list.

        Raises:
            PatchConversionError: With scimType invalidSyntax, invalidPath,
                invalidFilter, invalidValue or noTarget
        """
        if not isinstance(request, dict):
            raise PatchConversionError("PatchOp request must be a JSON object", "invalidSyntax")
        schemas = request.get("schemas")
        if not isinstance(schemas, list) or schema_urns.PATCH_OP not in schemas:
            raise PatchConversionError(f"schemas must include {schema_urns.PATCH_OP}", "invalidSyntax")
        operations = request.get("Operations")
        if not isinstance(operations, list) or not operations:
            raise PatchConversionError("Operations must be a non-empty list", "invalidSyntax")

        converted: List[Dict[str, Any]] = []
        for operation in operations:
            if not isinstance(operation, dict):
                raise PatchConversionError("Each operation must be an object", "invalidSyntax")
            op = str(operation.get("op") or "").lower()
            if op not in SUPPORTED_OPERATIONS:
                raise PatchConversionError(f"Unsupported patch operation '{operation.get('op')}'", "invalidSyntax")
            path = operation.get("path")
            if path is not None and not isinstance(path, str):
                raise PatchConversionError("path must be a string", "invalidPath")
            path = (path or "").strip().lstrip("/")
            converted.extend(self._convert_one(op, path, operation.get("value"), "value" in operation))

        logger.debug("Converted %d SCIM patch operations into %d IDM operations for %s",
                     len(operations), len(converted), self.resource_type)
        return converted

    def _convert_one(self, op: str, path: str, value: Any, has_value: bool) -> List[Dict[str, Any]]:
        if op == "remove":
            if not path:
                raise PatchConversionError("remove requires a path", "noTarget")
            if self.is_group and self._is_members_path(path):
                return self._members_remove(path, value if has_value else None)
            return [_operation("remove", f"/{field}", with_value=False) for field in self._fields_for(path)]

        if not has_value or value is None:
            raise PatchConversionError(f"{op} requires a value", "invalidValue")
        if not path:
            if not isinstance(value, dict):
                raise PatchConversionError(f"{op} without a path requires an object value", "invalidValue")
            return self._object_value(op, value)
        if self.is_group and self._is_members_path(path):
            return self._members_add(value) if op == "add" else self._members_replace(value)
        return self._attribute_value(op, path, value)

    # ─────────────────────────────────────────────────────────────────────────
    # Attributes
    # ─────────────────────────────────────────────────────────────────────────

    def _split_schema(self, path: str) -> tuple[Optional[str], str]:
        for urn in (schema_urns.ENTERPRISE_USER, schema_urns.CORE_USER, schema_urns.CORE_GROUP):
            if path.startswith(urn + ":"):
                return urn, path[len(urn) + 1:]
            if path == urn:
                return urn, ""
        return None, path

    def _fields_for(self, path: str) -> List[str]:
        """IDM fields covered by a SCIM path; a complex path covers all of its sub-attributes."""
        urn, attribute_path = self._split_schema(path)
        plain = _BRACKET_RE.sub("", attribute_path)
        fields: List[str] = []
        if urn == schema_urns.ENTERPRISE_USER and not plain:
            fields = [m.idm_attribute for m in (self.mapping_config or ()) if m.is_enterprise_extension]
            candidates = []
        elif urn == schema_urns.ENTERPRISE_USER:
            candidates = [f"{urn}:{plain}", plain]
        else:
            candidates = [plain]

        for candidate in candidates:
            if fields:
                break
            for scim_path, idm_field in self.path_table.items():
                if scim_path == candidate or scim_path.startswith(candidate + "."):
                    if idm_field not in fields:
                        fields.append(idm_field)
        if fields:
            return fields
        raise PatchConversionError(f"Unsupported attribute path '{path}'", "invalidPath")

    def _to_idm(self, value: Dict[str, Any]) -> Dict[str, Any]:
        if self.is_group:
            attributes = ScimTransformer.scim_group_to_idm(value, self.user_object, self.role_object)
            attributes.pop("members", None)
            return attributes
        return ScimTransformer.scim_user_to_idm(value, self.mapping_config)

    def _attribute_value(self, op: str, path: str, value: Any) -> List[Dict[str, Any]]:
        urn, attribute_path = self._split_schema(path)
        plain = _BRACKET_RE.sub("", attribute_path)
        if not plain:
            if not isinstance(value, dict):
                raise PatchConversionError(f"{op} on a schema requires an object value", "invalidValue")
            document = {urn: value} if urn == schema_urns.ENTERPRISE_USER else dict(value)
        else:
            document = {}
            target = document.setdefault(urn, {}) if urn == schema_urns.ENTERPRISE_USER else document
            set_path(target, plain, value)

        fields = self._to_idm(document)
        if not fields:
            raise PatchConversionError(f"Unsupported attribute path '{path}'", "invalidPath")
        return [_operation(op, f"/{field}", field_value) for field, field_value in fields.items()]

    def _object_value(self, op: str, value: Dict[str, Any]) -> List[Dict[str, Any]]:
        operations = [_operation(op, f"/{field}", field_value) for field, field_value in self._to_idm(value).items()]
        if self.is_group and "members" in value:
            members = value["members"]
            operations.extend(self._members_add(members) if op == "add" else self._members_replace(members))
        return operations

    # ─────────────────────────────────────────────────────────────────────────
    # Group members
    # ─────────────────────────────────────────────────────────────────────────

    def _is_members_path(self, path: str) -> bool:
        _, attribute_path = self._split_schema(path)
        name = attribute_path.lower()
        return name == "members" or name.startswith("members.") or name.startswith("members[")

    def _refs(self, value: Any) -> List[Dict[str, str]]:
        if not isinstance(value, (list, dict, str)):
            raise PatchConversionError("members value must be a list or an object", "invalidValue")
        return ScimTransformer.scim_members_to_idm(value, self.user_object, self.role_object)

    def _members_add(self, value: Any) -> List[Dict[str, Any]]:
        return [_operation("add", "/members/-", ref) for ref in self._refs(value)]

    def _members_replace(self, value: Any) -> List[Dict[str, Any]]:
        return [_operation("replace", "/members", self._refs(value))]

    def _members_remove(self, path: str, value: Any) -> List[Dict[str, Any]]:
        if "[" in path:
            match = _VALUE_FILTER_RE.search(path)
            if match is None:
                raise PatchConversionError(f"Unsupported members filter in '{path}'", "invalidFilter")
            member_id = match.group(1) if match.group(1) is not None else match.group(2)
            return [_operation("remove", "/members", ref) for ref in self._refs({"value": member_id})]
        if value is None:
            return [_operation("replace", "/members", [])]
        return [_operation("remove", "/members", ref) for ref in self._refs(value)]
