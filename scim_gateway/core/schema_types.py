"""SCIM schema model (RFC 7643 Section 7) and backend type classification.

Backend property types form a closed set of variants; ``to_scim_type``
dispatches over all of them and anything the backend invents is classified
as a plain string.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from scim_gateway.core import schema_urns


class ScimType(str, Enum):
    STRING = "string"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    DECIMAL = "decimal"
    DATE_TIME = "dateTime"
    COMPLEX = "complex"
    REFERENCE = "reference"


class Mutability(str, Enum):
    READ_ONLY = "readOnly"
    READ_WRITE = "readWrite"
    WRITE_ONLY = "writeOnly"
    IMMUTABLE = "immutable"


class Returned(str, Enum):
    ALWAYS = "always"
    NEVER = "never"
    DEFAULT = "default"
    REQUEST = "request"


class Uniqueness(str, Enum):
    NONE = "none"
    SERVER = "server"
    GLOBAL = "global"


# ─────────────────────────────────────────────────────────────────────────────
# Backend type variants
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StringType:
    pass


@dataclass(frozen=True)
class BooleanType:
    pass


@dataclass(frozen=True)
class NumberType:
    integral: bool = False


@dataclass(frozen=True)
class ComplexType:
    pass


@dataclass(frozen=True)
class ReferenceType:
    pass


@dataclass(frozen=True)
class ArrayType:
    inner: "BackendType" = field(default_factory=StringType)


BackendType = Union[StringType, BooleanType, NumberType, ComplexType, ReferenceType, ArrayType]


def _type_name(raw: Any) -> Optional[str]:
    # IDM allows nullable types written as ["string", "null"]
    if isinstance(raw, (list, tuple)):
        names = [item for item in raw if isinstance(item, str) and item != "null"]
        return names[0] if names else None
    return raw if isinstance(raw, str) else None


def classify(definition: Mapping[str, Any]) -> BackendType:
    """Classify a backend property definition. Never raises."""
    if not isinstance(definition, Mapping):
        return StringType()

    name = (_type_name(definition.get("type")) or "").lower()
    if name == "boolean":
        return BooleanType()
    if name == "integer":
        return NumberType(integral=True)
    if name == "number":
        return NumberType(integral=False)
    if name == "object":
        return ComplexType()
    if name == "relationship":
        return ReferenceType()
    if name == "array":
        items = definition.get("items")
        return ArrayType(inner=classify(items) if isinstance(items, Mapping) else StringType())
    return StringType()


def to_scim_type(backend_type: BackendType) -> Tuple[ScimType, bool]:
    """Map a backend type to ``(scim type, multi_valued)``.

    Arrays are exposed as multi-valued strings whatever their item type.
    """
    if isinstance(backend_type, StringType):
        return ScimType.STRING, False
    if isinstance(backend_type, BooleanType):
        return ScimType.BOOLEAN, False
    if isinstance(backend_type, NumberType):
        return (ScimType.INTEGER if backend_type.integral else ScimType.DECIMAL), False
    if isinstance(backend_type, ComplexType):
        return ScimType.COMPLEX, False
    if isinstance(backend_type, ReferenceType):
        return ScimType.REFERENCE, False
    if isinstance(backend_type, ArrayType):
        return ScimType.STRING, True
    raise TypeError(f"Unknown backend type variant: {backend_type!r}")


# ─────────────────────────────────────────────────────────────────────────────
# Schema documents
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AttributeDefinition:
    """One SCIM attribute definition, possibly with sub-attributes."""
    name: str
    type: ScimType = ScimType.STRING
    multi_valued: bool = False
    required: bool = False
    mutability: Mutability = Mutability.READ_WRITE
    returned: Returned = Returned.DEFAULT
    case_exact: bool = False
    uniqueness: Uniqueness = Uniqueness.NONE
    description: Optional[str] = None
    sub_attributes: Tuple["AttributeDefinition", ...] = ()
    reference_types: Tuple[str, ...] = ()
    canonical_values: Tuple[str, ...] = ()

    def sub_attribute(self, name: str) -> Optional["AttributeDefinition"]:
        for sub in self.sub_attributes:
            if sub.name == name:
                return sub
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
            "multiValued": self.multi_valued,
        }
        if self.description:
            data["description"] = self.description
        data.update({
            "required": self.required,
            "caseExact": self.case_exact,
            "mutability": self.mutability.value,
            "returned": self.returned.value,
            "uniqueness": self.uniqueness.value,
        })
        if self.canonical_values:
            data["canonicalValues"] = list(self.canonical_values)
        if self.reference_types:
            data["referenceTypes"] = list(self.reference_types)
        if self.sub_attributes:
            data["subAttributes"] = [sub.to_dict() for sub in self.sub_attributes]
        return data


@dataclass(frozen=True)
class SchemaDocument:
    """A SCIM schema resource. Attribute names are unique within a document."""
    id: str
    name: str
    description: str
    attributes: Tuple[AttributeDefinition, ...] = ()

    def __post_init__(self):
        seen = set()
        for attribute in self.attributes:
            if attribute.name in seen:
                raise ValueError(f"Duplicate attribute '{attribute.name}' in schema {self.id}")
            seen.add(attribute.name)

    @property
    def attribute_names(self) -> Tuple[str, ...]:
        return tuple(attribute.name for attribute in self.attributes)

    def attribute(self, name: str) -> Optional[AttributeDefinition]:
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None

    def to_dict(self, base_url: str = "") -> Dict[str, Any]:
        return {
            "schemas": [schema_urns.SCHEMA],
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "attributes": [attribute.to_dict() for attribute in self.attributes],
            "meta": {
                "resourceType": "Schema",
                "location": f"{base_url.rstrip('/')}/Schemas/{self.id}",
            },
        }
