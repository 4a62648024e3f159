"""Compile IDM managed-object property definitions into SCIM schemas.

``compile_schema`` is pure: the same kind, properties and mappings always
produce an equal SchemaDocument. It never fails on backend input; unknown
types become strings and non-object definitions are skipped.

Usage:
    properties = config_service.get_properties_definition(user_config)
    document = compile_schema(ResourceKind.USER, properties, mapping_config)
"""
from __future__ import annotations
import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from scim_gateway.core import schema_urns
from scim_gateway.core.attribute_mappings import CustomAttributeMapping, CustomAttributeMappingConfig
from scim_gateway.core.schema_types import (
    AttributeDefinition,
    Mutability,
    Returned,
    SchemaDocument,
    ScimType,
    Uniqueness,
    classify,
    to_scim_type,
)

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    USER = "user"
    GROUP = "group"


# Properties already exposed through the core attribute set (SCIM names and
# the IDM attributes they are mapped from)
CORE_ATTRIBUTE_NAMES = frozenset({
    "id", "userName", "name", "displayName", "emails", "phoneNumbers",
    "active", "password", "title", "preferredLanguage", "locale", "timezone",
    "profileUrl", "meta", "schemas",
    "givenName", "sn", "cn", "mail", "telephoneNumber", "members", "description",
})

INTERNAL_ATTRIBUTE_NAMES = frozenset({
    "effectiveRoles",
    "effectiveAssignments",
    "authzRoles",
    "kbaInfo",
    "preferences",
})


def is_internal_attribute(name: str) -> bool:
    return name.startswith("_") or name in INTERNAL_ATTRIBUTE_NAMES


# ─────────────────────────────────────────────────────────────────────────────
# Core attribute sets
# ─────────────────────────────────────────────────────────────────────────────

def _string(name: str, description: str, **kwargs) -> AttributeDefinition:
    return AttributeDefinition(name=name, type=ScimType.STRING, description=description, **kwargs)


def _multi_valued_contact(name: str, description: str) -> AttributeDefinition:
    return AttributeDefinition(
        name=name,
        type=ScimType.COMPLEX,
        multi_valued=True,
        description=description,
        sub_attributes=(
            _string("value", f"The {name} value"),
            _string("display", "A human-readable name, primarily used for display purposes"),
            _string("type", "A label indicating the attribute's function, e.g. 'work' or 'home'",
                    canonical_values=("work", "home", "other")),
            AttributeDefinition(name="primary", type=ScimType.BOOLEAN,
                                description="Indicates the preferred value for this attribute"),
        ),
    )


def _id_attribute() -> AttributeDefinition:
    return AttributeDefinition(
        name="id",
        type=ScimType.STRING,
        mutability=Mutability.READ_ONLY,
        returned=Returned.ALWAYS,
        case_exact=True,
        uniqueness=Uniqueness.SERVER,
        description="Unique identifier for the SCIM resource as defined by the service provider",
    )


def _meta_attribute() -> AttributeDefinition:
    read_only = {"mutability": Mutability.READ_ONLY}
    return AttributeDefinition(
        name="meta",
        type=ScimType.COMPLEX,
        mutability=Mutability.READ_ONLY,
        description="A complex attribute containing resource metadata",
        sub_attributes=(
            _string("resourceType", "The name of the resource type of the resource", case_exact=True, **read_only),
            AttributeDefinition(name="created", type=ScimType.DATE_TIME,
                                description="The DateTime that the resource was added to the service provider",
                                **read_only),
            AttributeDefinition(name="lastModified", type=ScimType.DATE_TIME,
                                description="The most recent DateTime that the details of this resource were updated",
                                **read_only),
            AttributeDefinition(name="location", type=ScimType.REFERENCE,
                                description="The URI of the resource being returned",
                                reference_types=("uri",), case_exact=True, **read_only),
            _string("version", "The version of the resource being returned", case_exact=True, **read_only),
        ),
    )


def core_user_attributes() -> Tuple[AttributeDefinition, ...]:
    name_parts = (
        ("formatted", "The full name, including all middle names, titles, and suffixes"),
        ("familyName", "The family name of the User"),
        ("givenName", "The given name of the User"),
        ("middleName", "The middle name(s) of the User"),
        ("honorificPrefix", "The honorific prefix(es) of the User"),
        ("honorificSuffix", "The honorific suffix(es) of the User"),
    )
    return (
        _id_attribute(),
        _string("userName", "Unique identifier for the User, typically used to authenticate",
                required=True, uniqueness=Uniqueness.SERVER),
        AttributeDefinition(
            name="name",
            type=ScimType.COMPLEX,
            description="The components of the user's real name",
            sub_attributes=tuple(_string(part, text) for part, text in name_parts),
        ),
        _string("displayName", "The name of the User, suitable for display to end-users"),
        _multi_valued_contact("emails", "Email addresses for the user"),
        _multi_valued_contact("phoneNumbers", "Phone numbers for the User"),
        AttributeDefinition(name="active", type=ScimType.BOOLEAN,
                            description="A Boolean value indicating the User's administrative status"),
        _string("password", "The User's cleartext password, used to set or replace it",
                mutability=Mutability.WRITE_ONLY, returned=Returned.NEVER),
        _string("title", "The user's title, such as 'Vice President'"),
        _string("preferredLanguage", "Indicates the User's preferred written or spoken language"),
        _string("locale", "Used to indicate the User's default location for localization purposes"),
        _string("timezone", "The User's time zone in the 'Olson' time zone database format"),
        AttributeDefinition(name="profileUrl", type=ScimType.REFERENCE, reference_types=("external",),
                            description="A fully qualified URL pointing to a page representing the User's online profile"),
        _meta_attribute(),
    )


def core_group_attributes() -> Tuple[AttributeDefinition, ...]:
    return (
        _id_attribute(),
        _string("displayName", "A human-readable name for the Group", required=True),
        AttributeDefinition(
            name="members",
            type=ScimType.COMPLEX,
            multi_valued=True,
            description="A list of members of the Group",
            sub_attributes=(
                _string("value", "Identifier of the member of this Group", mutability=Mutability.IMMUTABLE),
                AttributeDefinition(name="$ref", type=ScimType.REFERENCE, reference_types=("User", "Group"),
                                    mutability=Mutability.IMMUTABLE,
                                    description="The URI corresponding to a SCIM resource that is a member of this Group"),
                _string("type", "A label indicating the type of resource, e.g. 'User' or 'Group'",
                        mutability=Mutability.IMMUTABLE, canonical_values=("User", "Group")),
            ),
        ),
        _string("description", "A description of the Group"),
        _meta_attribute(),
    )


_DOCUMENTS = {
    ResourceKind.USER: (schema_urns.CORE_USER, "User", "User Account", core_user_attributes),
    ResourceKind.GROUP: (schema_urns.CORE_GROUP, "Group", "Group", core_group_attributes),
}


# ─────────────────────────────────────────────────────────────────────────────
# Custom attributes
# ─────────────────────────────────────────────────────────────────────────────

def custom_attribute(name: str, definition: Mapping[str, Any]) -> AttributeDefinition:
    """Derive an attribute definition from one IDM property definition."""
    scim_type, multi_valued = to_scim_type(classify(definition))
    description = definition.get("description")
    returned = Returned.NEVER if definition.get("viewable") is False else Returned.DEFAULT
    return AttributeDefinition(
        name=name,
        type=scim_type,
        multi_valued=multi_valued,
        required=bool(definition.get("required", False)),
        mutability=Mutability.READ_WRITE,
        returned=returned,
        case_exact=False,
        uniqueness=Uniqueness.NONE,
        description=description if isinstance(description, str) else None,
    )


def _custom_attributes(properties: Optional[Mapping[str, Any]]) -> List[AttributeDefinition]:
    attributes = []
    for name, definition in (properties or {}).items():
        if not isinstance(name, str) or name in CORE_ATTRIBUTE_NAMES or is_internal_attribute(name):
            continue
        if not isinstance(definition, Mapping):
            logger.debug("Skipping non-object property definition: %s", name)
            continue
        attributes.append(custom_attribute(name, definition))
    return attributes


def _merge_mappings(
    attributes: List[AttributeDefinition],
    mappings: List[CustomAttributeMapping],
    create_parents: bool = False,
) -> List[AttributeDefinition]:
    """Add mapped attributes; dotted paths extend the parent's sub-attributes.

    With ``create_parents`` a missing one-level parent (``manager`` for
    ``manager.value``) is added as a complex attribute holding the leaf.
    """
    merged = list(attributes)
    index = {attribute.name: position for position, attribute in enumerate(merged)}

    for mapping in (m for m in mappings if not m.is_nested):
        if mapping.scim_path in index:
            logger.debug("Mapped attribute %s already defined, skipping", mapping.scim_path)
            continue
        index[mapping.scim_path] = len(merged)
        merged.append(mapping.to_attribute_definition())

    for mapping in (m for m in mappings if m.is_nested):
        position = index.get(mapping.parent_path)
        if position is None and create_parents and "." not in mapping.parent_path:
            index[mapping.parent_path] = len(merged)
            merged.append(AttributeDefinition(
                name=mapping.parent_path,
                type=ScimType.COMPLEX,
                description=f"Complex attribute for mapped {mapping.parent_path} sub-attributes",
                sub_attributes=(mapping.to_attribute_definition(),),
            ))
            continue
        if position is None:
            logger.warning("Parent attribute %s not found for mapping %s", mapping.parent_path, mapping.scim_path)
            continue
        parent = merged[position]
        if parent.type is not ScimType.COMPLEX:
            logger.warning("Parent attribute %s is not complex, skipping mapping %s", parent.name, mapping.scim_path)
            continue
        if parent.sub_attribute(mapping.leaf_name) is not None:
            logger.debug("Sub-attribute %s already defined, skipping", mapping.scim_path)
            continue
        merged[position] = replace(parent, sub_attributes=parent.sub_attributes + (mapping.to_attribute_definition(),))
    return merged


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────

def compile_schema(
    kind: Union[ResourceKind, str],
    properties: Optional[Mapping[str, Any]],
    mappings: Optional[CustomAttributeMappingConfig] = None,
) -> SchemaDocument:
    """Build the core schema for ``kind`` plus its discovered custom attributes.

    Args:
        kind: "user" or "group"
        properties: IDM property map (may be None or empty)
        mappings: Optional custom mappings; core-User mappings are merged in

    Returns:
        SchemaDocument

    Raises:
        ValueError: If ``kind`` is not a known resource kind
    """
    kind = ResourceKind(kind)
    urn, name, description, core = _DOCUMENTS[kind]

    attributes = list(core())
    custom = _custom_attributes(properties)
    attributes.extend(custom)

    if kind is ResourceKind.USER and mappings is not None:
        attributes = _merge_mappings(attributes, mappings.core_user_mappings())

    logger.debug("Compiled %s schema: %d core, %d custom attributes", name, len(core()), len(custom))
    return SchemaDocument(id=urn, name=name, description=description, attributes=tuple(attributes))


def compile_extension_schema(mappings: Optional[CustomAttributeMappingConfig]) -> Optional[SchemaDocument]:
    """Build the enterprise User extension from its mappings, or None if there are none."""
    if mappings is None or not mappings.has_enterprise_mappings:
        return None
    attributes = _merge_mappings([], mappings.enterprise_mappings(), create_parents=True)
    if not attributes:
        return None
    return SchemaDocument(
        id=schema_urns.ENTERPRISE_USER,
        name="EnterpriseUser",
        description="Enterprise User Extension",
        attributes=tuple(attributes),
    )


def compile_all(
    properties_by_kind: Mapping[ResourceKind, Optional[Mapping[str, Any]]],
    mappings: Optional[CustomAttributeMappingConfig] = None,
) -> Dict[str, SchemaDocument]:
    """Compile every kind plus the extension, keyed by resource type name."""
    documents: Dict[str, SchemaDocument] = {}
    user_properties = properties_by_kind.get(ResourceKind.USER)
    documents[schema_urns.USER_RESOURCE] = compile_schema(ResourceKind.USER, user_properties, mappings)

    extension = compile_extension_schema(mappings)
    if extension is not None:
        documents[schema_urns.ENTERPRISE_USER_RESOURCE] = extension

    group_properties = properties_by_kind.get(ResourceKind.GROUP)
    documents[schema_urns.GROUP_RESOURCE] = compile_schema(ResourceKind.GROUP, group_properties, mappings)
    return documents
