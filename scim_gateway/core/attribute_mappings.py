"""Custom SCIM ↔ IDM attribute mappings and filter rewrite tables.

Deployments declare extra attributes (for the core User schema or the
enterprise extension) in a JSON or YAML document:

    {"customAttributeMappings": [
        {"scimPath": "employeeNumber",
         "scimSchema": "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User",
         "pingIdmAttribute": "frIndexedString1"}
    ]}

The document is read from ``SCIM_CUSTOM_ATTRIBUTE_MAPPINGS`` (inline JSON)
or ``SCIM_CUSTOM_ATTRIBUTE_MAPPINGS_FILE`` (path). A bare list is accepted
too. Entries missing a path, schema or backend attribute are dropped.
"""
from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import yaml

from scim_gateway.core import schema_urns
from scim_gateway.core.schema_types import (
    AttributeDefinition,
    Mutability,
    Returned,
    ScimType,
    Uniqueness,
)

logger = logging.getLogger(__name__)

MAPPINGS_ENV_VAR = "SCIM_CUSTOM_ATTRIBUTE_MAPPINGS"
MAPPINGS_FILE_ENV_VAR = "SCIM_CUSTOM_ATTRIBUTE_MAPPINGS_FILE"


class MappingConfigError(ValueError):
    """Mapping document could not be parsed."""
    pass


def _enum_or_default(enum_cls, raw, default):
    try:
        return enum_cls(raw)
    except ValueError:
        logger.warning("Unknown %s '%s', using '%s'", enum_cls.__name__, raw, default.value)
        return default


@dataclass(frozen=True)
class CustomAttributeMapping:
    """One SCIM attribute backed by one IDM property."""
    scim_path: str
    scim_schema: str
    idm_attribute: str
    type: str = "string"
    reference_types: Tuple[str, ...] = ()
    description: Optional[str] = None
    multi_valued: bool = False
    required: bool = False
    case_exact: bool = False
    mutability: str = "readWrite"
    returned: str = "default"
    uniqueness: str = "none"
    canonical_values: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CustomAttributeMapping":
        return cls(
            scim_path=str(data.get("scimPath") or "").strip(),
            scim_schema=str(data.get("scimSchema") or "").strip(),
            idm_attribute=str(data.get("pingIdmAttribute") or data.get("idmAttribute") or "").strip(),
            type=data.get("type") or "string",
            reference_types=tuple(data.get("referenceTypes") or ()),
            description=data.get("description"),
            multi_valued=bool(data.get("multiValued", False)),
            required=bool(data.get("required", False)),
            case_exact=bool(data.get("caseExact", False)),
            mutability=data.get("mutability") or "readWrite",
            returned=data.get("returned") or "default",
            uniqueness=data.get("uniqueness") or "none",
            canonical_values=tuple(data.get("canonicalValues") or ()),
        )

    @property
    def is_enterprise_extension(self) -> bool:
        return "extension:enterprise:2.0:User" in self.scim_schema

    @property
    def is_core_user_attribute(self) -> bool:
        return self.scim_schema == schema_urns.CORE_USER

    @property
    def is_nested(self) -> bool:
        return "." in self.scim_path

    @property
    def parent_path(self) -> Optional[str]:
        return self.scim_path.rsplit(".", 1)[0] if self.is_nested else None

    @property
    def leaf_name(self) -> str:
        return self.scim_path.rsplit(".", 1)[-1]

    @property
    def full_scim_path(self) -> str:
        if self.is_enterprise_extension:
            return f"{self.scim_schema}:{self.scim_path}"
        return self.scim_path

    @property
    def is_valid(self) -> bool:
        return bool(self.scim_path and self.scim_schema and self.idm_attribute)

    def to_attribute_definition(self) -> AttributeDefinition:
        """Attribute definition for the leaf of this mapping's path."""
        return AttributeDefinition(
            name=self.leaf_name,
            type=_enum_or_default(ScimType, self.type, ScimType.STRING),
            multi_valued=self.multi_valued,
            required=self.required,
            mutability=_enum_or_default(Mutability, self.mutability, Mutability.READ_WRITE),
            returned=_enum_or_default(Returned, self.returned, Returned.DEFAULT),
            case_exact=self.case_exact,
            uniqueness=_enum_or_default(Uniqueness, self.uniqueness, Uniqueness.NONE),
            description=self.description or f"Custom mapped attribute from IDM: {self.idm_attribute}",
            reference_types=self.reference_types,
            canonical_values=self.canonical_values,
        )


class CustomAttributeMappingConfig:
    """Immutable, validated collection of custom attribute mappings."""

    def __init__(self, mappings: Iterable[CustomAttributeMapping] = ()):
        valid = []
        for mapping in mappings:
            if mapping.is_valid:
                valid.append(mapping)
            else:
                logger.warning("Ignoring invalid custom attribute mapping: %s", mapping)
        self._mappings: Tuple[CustomAttributeMapping, ...] = tuple(valid)

    def __iter__(self) -> Iterator[CustomAttributeMapping]:
        return iter(self._mappings)

    def __len__(self) -> int:
        return len(self._mappings)

    @property
    def mappings(self) -> Tuple[CustomAttributeMapping, ...]:
        return self._mappings

    def enterprise_mappings(self) -> List[CustomAttributeMapping]:
        return [m for m in self._mappings if m.is_enterprise_extension]

    def core_user_mappings(self) -> List[CustomAttributeMapping]:
        return [m for m in self._mappings if m.is_core_user_attribute]

    @property
    def has_enterprise_mappings(self) -> bool:
        return any(m.is_enterprise_extension for m in self._mappings)

    def by_scim_path(self, path: str) -> Optional[CustomAttributeMapping]:
        for mapping in self._mappings:
            if path in (mapping.scim_path, mapping.full_scim_path):
                return mapping
        return None

    # ─────────────────────────────────────────────────────────────────────────
    # Loading
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    def from_document(cls, document: Any) -> "CustomAttributeMappingConfig":
        """Build from a parsed document (bare list or wrapped form)."""
        if document is None:
            return cls()
        if isinstance(document, Mapping):
            document = document.get("customAttributeMappings", [])
        if not isinstance(document, list):
            raise MappingConfigError("customAttributeMappings must be a list")

        entries = []
        for entry in document:
            if not isinstance(entry, Mapping):
                logger.warning("Ignoring non-object custom attribute mapping entry: %r", entry)
                continue
            entries.append(CustomAttributeMapping.from_dict(entry))
        return cls(entries)

    @classmethod
    def from_file(cls, path: str | Path) -> "CustomAttributeMappingConfig":
        """Load a JSON or YAML mapping file. A missing file yields no mappings."""
        file_path = Path(path)
        if not file_path.is_file():
            logger.warning("Custom attribute mapping file not found: %s", file_path)
            return cls()

        text = file_path.read_text(encoding="utf-8")
        try:
            if file_path.suffix.lower() in (".yaml", ".yml"):
                document = yaml.safe_load(text)
            else:
                document = json.loads(text)
        except (ValueError, yaml.YAMLError) as exc:
            raise MappingConfigError(f"Invalid mapping file {file_path}: {exc}") from exc
        return cls.from_document(document)

    @classmethod
    def load(cls, environ: Optional[Mapping[str, str]] = None) -> "CustomAttributeMappingConfig":
        """Load from the environment. Inline JSON wins over the file path."""
        env = os.environ if environ is None else environ

        inline = (env.get(MAPPINGS_ENV_VAR) or "").strip()
        if inline:
            try:
                document = json.loads(inline)
            except ValueError as exc:
                raise MappingConfigError(f"{MAPPINGS_ENV_VAR} is not valid JSON: {exc}") from exc
            config = cls.from_document(document)
        else:
            file_path = (env.get(MAPPINGS_FILE_ENV_VAR) or "").strip()
            config = cls.from_file(file_path) if file_path else cls()

        if len(config):
            logger.info("Loaded %d custom attribute mappings (%d enterprise)",
                        len(config), len(config.enterprise_mappings()))
        return config


# ─────────────────────────────────────────────────────────────────────────────
# Filter rewrite tables
# ─────────────────────────────────────────────────────────────────────────────

DEFAULT_USER_FILTER_MAPPINGS: Mapping[str, str] = MappingProxyType({
    "userName": "userName",
    "displayName": "displayName",
    "active": "accountStatus",
    "name.givenName": "givenName",
    "name.familyName": "sn",
    "name.formatted": "cn",
    "name.middleName": "middleName",
    "emails.value": "mail",
    "phoneNumbers.value": "telephoneNumber",
    "title": "title",
    "preferredLanguage": "preferredLanguage",
    "locale": "locale",
})

DEFAULT_GROUP_FILTER_MAPPINGS: Mapping[str, str] = MappingProxyType({
    "displayName": "name",
    "description": "description",
    "members.value": "members",
})


def build_filter_rewrite_table(
    resource_type: str,
    config: Optional[CustomAttributeMappingConfig] = None,
) -> Mapping[str, str]:
    """Read-only SCIM path → IDM attribute table for one resource type."""
    if resource_type == schema_urns.GROUP_RESOURCE:
        return DEFAULT_GROUP_FILTER_MAPPINGS

    table: Dict[str, str] = dict(DEFAULT_USER_FILTER_MAPPINGS)
    for mapping in config or ():
        table[mapping.scim_path] = mapping.idm_attribute
        table[mapping.full_scim_path] = mapping.idm_attribute
    return MappingProxyType(table)
