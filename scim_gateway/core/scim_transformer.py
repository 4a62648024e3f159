"""Transformations between IDM managed objects and SCIM 2.0 resources.

Usage:
    scim_user = ScimTransformer.idm_user_to_scim(idm_user, base_url="https://gw/scim/v2")
    scim_group = ScimTransformer.idm_role_to_scim(idm_role, base_url="https://gw/scim/v2")
    idm_user = ScimTransformer.scim_user_to_idm(scim_user, mapping_config)
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional

from scim_gateway.core import schema_urns
from scim_gateway.core.attribute_mappings import CustomAttributeMappingConfig

# SCIM attribute → IDM attribute copied verbatim when present
PASSTHROUGH_USER_ATTRIBUTES = (
    "nickName",
    "userType",
    "title",
    "preferredLanguage",
    "locale",
    "timezone",
    "profileUrl",
)

# IDM attribute → name sub-attribute
_NAME_ATTRIBUTES = (
    ("givenName", "givenName"),
    ("sn", "familyName"),
    ("cn", "formatted"),
    ("middleName", "middleName"),
)


def _meta(idm_object: Dict[str, Any], resource_type: str, location: str) -> Dict[str, Any]:
    meta = {"resourceType": resource_type, "location": location}
    if idm_object.get("_rev") is not None:
        meta["version"] = str(idm_object["_rev"])
    idm_meta = idm_object.get("_meta")
    if isinstance(idm_meta, dict):
        for key in ("created", "lastModified"):
            if idm_meta.get(key):
                meta[key] = idm_meta[key]
    return meta


def set_path(resource: Dict[str, Any], path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    target = resource
    for part in parents:
        target = target.setdefault(part, {})
        if not isinstance(target, dict):
            return
    target[leaf] = value


def _get_path(resource: Any, path: str) -> Any:
    value = resource
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _primary_value(entries: Any) -> Any:
    """Value of the primary entry of a multi-valued attribute, else the first."""
    if isinstance(entries, dict):
        entries = [entries]
    if not isinstance(entries, list) or not entries:
        return None
    chosen = next((e for e in entries if isinstance(e, dict) and _as_bool(e.get("primary"))), entries[0])
    return chosen.get("value") if isinstance(chosen, dict) else chosen


def member_ref(member: Any, user_object: str, role_object: str) -> Optional[str]:
    """IDM relationship reference for one SCIM member entry or bare id."""
    if isinstance(member, dict):
        member_id = member.get("value")
        member_type = member.get("type")
    else:
        member_id, member_type = member, None
    if member_id is None or str(member_id) == "":
        return None
    collection = role_object if str(member_type or "").lower() == "group" else user_object
    return f"managed/{collection}/{member_id}"


class ScimTransformer:
    """Builds SCIM User and Group resources from IDM objects."""

    @staticmethod
    def idm_user_to_scim(
        idm_user: Dict[str, Any],
        base_url: str = "/scim/v2",
        mapping_config: Optional[CustomAttributeMappingConfig] = None,
    ) -> Dict[str, Any]:
        """Convert an IDM user to a SCIM 2.0 User resource.

        Example:
            >>> ScimTransformer.idm_user_to_scim({"_id": "abc", "userName": "alice",
            ...                                   "accountStatus": "active"})["active"]
            True
        """
        user_id = idm_user.get("_id", "")
        base = base_url.rstrip("/")
        schemas: List[str] = [schema_urns.CORE_USER]
        resource: Dict[str, Any] = {"schemas": schemas, "id": user_id}

        if idm_user.get("userName") is not None:
            resource["userName"] = idm_user["userName"]
        if idm_user.get("displayName") is not None:
            resource["displayName"] = idm_user["displayName"]
        if "accountStatus" in idm_user:
            resource["active"] = str(idm_user.get("accountStatus") or "").lower() == "active"

        name = {}
        for idm_key, scim_key in _NAME_ATTRIBUTES:
            if idm_user.get(idm_key):
                name[scim_key] = idm_user[idm_key]
        if name:
            resource["name"] = name

        if idm_user.get("mail"):
            resource["emails"] = [{"value": idm_user["mail"], "primary": True, "type": "work"}]
        if idm_user.get("telephoneNumber"):
            resource["phoneNumbers"] = [{"value": idm_user["telephoneNumber"], "primary": True, "type": "work"}]

        for attribute in PASSTHROUGH_USER_ATTRIBUTES:
            if idm_user.get(attribute) is not None:
                resource[attribute] = idm_user[attribute]

        for mapping in mapping_config or ():
            value = idm_user.get(mapping.idm_attribute)
            if value is None:
                continue
            if mapping.is_enterprise_extension:
                extension = resource.setdefault(schema_urns.ENTERPRISE_USER, {})
                set_path(extension, mapping.scim_path, value)
                if schema_urns.ENTERPRISE_USER not in schemas:
                    schemas.append(schema_urns.ENTERPRISE_USER)
            else:
                set_path(resource, mapping.scim_path, value)

        resource["meta"] = _meta(idm_user, "User", f"{base}/Users/{user_id}")
        return resource

    @staticmethod
    def idm_role_to_scim(idm_role: Dict[str, Any], base_url: str = "/scim/v2") -> Dict[str, Any]:
        """Convert an IDM role to a SCIM 2.0 Group resource."""
        group_id = idm_role.get("_id", "")
        base = base_url.rstrip("/")
        resource: Dict[str, Any] = {"schemas": [schema_urns.CORE_GROUP], "id": group_id}

        if idm_role.get("name") is not None:
            resource["displayName"] = idm_role["name"]
        if idm_role.get("description") is not None:
            resource["description"] = idm_role["description"]

        members = ScimTransformer.idm_members_to_scim(idm_role.get("members"), base)
        if members:
            resource["members"] = members

        resource["meta"] = _meta(idm_role, "Group", f"{base}/Groups/{group_id}")
        return resource

    @staticmethod
    def idm_members_to_scim(idm_members: Any, base_url: str) -> List[Dict[str, Any]]:
        """Convert IDM relationship references into SCIM member entries.

        A reference is either ``{"_refResourceId": ...}`` or
        ``{"_ref": "managed/alpha_user/<id>"}``; collections ending in
        ``_role`` are Groups, everything else a User.
        """
        if not isinstance(idm_members, list):
            return []

        members = []
        for member in idm_members:
            if not isinstance(member, dict):
                continue
            member_id = None
            member_type = "User"
            ref = member.get("_ref")
            if isinstance(ref, str):
                parts = ref.split("/")
                if len(parts) >= 3:
                    member_id = parts[-1]
                    if parts[-2].endswith("_role"):
                        member_type = "Group"
            if member.get("_refResourceId"):
                member_id = member["_refResourceId"]
                collection = member.get("_refResourceCollection") or ""
                if collection.endswith("_role"):
                    member_type = "Group"
            if not member_id:
                continue
            collection_path = "Users" if member_type == "User" else "Groups"
            members.append({
                "value": member_id,
                "type": member_type,
                "$ref": f"{base_url}/{collection_path}/{member_id}",
            })
        return members

    # ─────────────────────────────────────────────────────────────────────────
    # SCIM → IDM
    # ─────────────────────────────────────────────────────────────────────────

    @staticmethod
    def scim_user_to_idm(
        scim_user: Dict[str, Any],
        mapping_config: Optional[CustomAttributeMappingConfig] = None,
    ) -> Dict[str, Any]:
        """Convert a SCIM User (or a partial one) into IDM user attributes.

        Only attributes present in ``scim_user`` are emitted, so the result
        also serves as the field set of a PATCH value.

        Example:
            >>> ScimTransformer.scim_user_to_idm({"userName": "alice", "active": False})
            {'userName': 'alice', 'accountStatus': 'inactive'}
        """
        idm_user: Dict[str, Any] = {}
        for attribute in ("userName", "displayName", "password"):
            if scim_user.get(attribute) is not None:
                idm_user[attribute] = scim_user[attribute]
        if scim_user.get("active") is not None:
            idm_user["accountStatus"] = "active" if _as_bool(scim_user["active"]) else "inactive"

        name = scim_user.get("name")
        if isinstance(name, dict):
            for idm_key, scim_key in _NAME_ATTRIBUTES:
                if name.get(scim_key) is not None:
                    idm_user[idm_key] = name[scim_key]

        for scim_key, idm_key in (("emails", "mail"), ("phoneNumbers", "telephoneNumber")):
            value = _primary_value(scim_user.get(scim_key))
            if value is not None:
                idm_user[idm_key] = value

        for attribute in PASSTHROUGH_USER_ATTRIBUTES:
            # A custom mapping for the same path takes precedence
            if mapping_config is not None and mapping_config.by_scim_path(attribute) is not None:
                continue
            if scim_user.get(attribute) is not None:
                idm_user[attribute] = scim_user[attribute]

        extension = scim_user.get(schema_urns.ENTERPRISE_USER)
        for mapping in mapping_config or ():
            source = extension if mapping.is_enterprise_extension else scim_user
            value = _get_path(source, mapping.scim_path)
            if value is not None:
                idm_user[mapping.idm_attribute] = value
        return idm_user

    @staticmethod
    def scim_group_to_idm(scim_group: Dict[str, Any], user_object: str, role_object: str) -> Dict[str, Any]:
        """Convert a SCIM Group into IDM role attributes."""
        idm_role: Dict[str, Any] = {}
        if scim_group.get("displayName") is not None:
            idm_role["name"] = scim_group["displayName"]
        if scim_group.get("description") is not None:
            idm_role["description"] = scim_group["description"]
        if isinstance(scim_group.get("members"), list):
            idm_role["members"] = ScimTransformer.scim_members_to_idm(scim_group["members"], user_object, role_object)
        return idm_role

    @staticmethod
    def scim_members_to_idm(members: Any, user_object: str, role_object: str) -> List[Dict[str, str]]:
        """SCIM member entries → IDM ``_ref`` objects; entries without a value are dropped."""
        if isinstance(members, (dict, str)):
            members = [members]
        if not isinstance(members, list):
            return []
        refs = []
        for member in members:
            ref = member_ref(member, user_object, role_object)
            if ref is not None:
                refs.append({"_ref": ref})
        return refs
