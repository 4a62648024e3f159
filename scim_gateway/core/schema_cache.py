"""Cache of compiled SCIM schemas with atomic refresh.

Readers never lock: every read goes through the current SchemaCacheSnapshot,
which is immutable and replaced by a single attribute assignment once a
rebuild has fully succeeded. A ``threading.Lock`` keeps at most one rebuild
in flight. The lock is held across the backend calls, so a hung backend
blocks the next refresh until the HTTP client's own timeouts fire.

Usage:
    cache = SchemaCache(config_service, {ResourceKind.USER: "alpha_user",
                                         ResourceKind.GROUP: "alpha_role"})
    try:
        cache.rebuild()
    except SchemaRefreshError as exc:
        logger.error("Schema build failed: %s", exc)
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from scim_gateway.core import schema_urns
from scim_gateway.core.attribute_mappings import CustomAttributeMappingConfig
from scim_gateway.core.schema_compiler import ResourceKind, compile_all
from scim_gateway.core.schema_types import AttributeDefinition, SchemaDocument

logger = logging.getLogger(__name__)

DEFAULT_MANAGED_OBJECTS = MappingProxyType({
    ResourceKind.USER: "alpha_user",
    ResourceKind.GROUP: "alpha_role",
})


class ConfigSource(Protocol):
    def get_managed_object_config(self, object_name: str) -> Optional[Dict[str, Any]]: ...

    def get_properties_definition(self, object_config: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]: ...


class SchemaRefreshError(RuntimeError):
    """A rebuild was aborted; the previous snapshot is still current."""

    def __init__(self, object_name: str, cause: BaseException):
        self.object_name = object_name
        self.cause = cause
        super().__init__(f"Failed to load managed object '{object_name}': {cause}")


@dataclass(frozen=True)
class SchemaCacheSnapshot:
    schemas: Mapping[str, SchemaDocument] = field(default_factory=lambda: MappingProxyType({}))
    attributes: Mapping[str, Tuple[AttributeDefinition, ...]] = field(default_factory=lambda: MappingProxyType({}))
    initialized: bool = False

    @classmethod
    def build(cls, documents: Mapping[str, SchemaDocument]) -> "SchemaCacheSnapshot":
        """Snapshot from resource type name → document."""
        schemas = {}
        attributes = {}
        for resource_type, document in documents.items():
            if document.id in schemas:
                raise ValueError(f"Duplicate schema URN {document.id}")
            schemas[document.id] = document
            attributes[resource_type] = document.attributes
        return cls(MappingProxyType(schemas), MappingProxyType(attributes), True)


EMPTY_SNAPSHOT = SchemaCacheSnapshot()


class SchemaCache:
    """Single-writer, lock-free-reader cache of SCIM schema documents."""

    def __init__(
        self,
        config_source: ConfigSource,
        managed_objects: Optional[Mapping[ResourceKind, str]] = None,
        mapping_config: Optional[CustomAttributeMappingConfig] = None,
    ):
        self.config_source = config_source
        self.managed_objects = dict(managed_objects or DEFAULT_MANAGED_OBJECTS)
        self.mapping_config = mapping_config
        self._snapshot: SchemaCacheSnapshot = EMPTY_SNAPSHOT
        self._write_lock = threading.Lock()

    # ─────────────────────────────────────────────────────────────────────────
    # Writers
    # ─────────────────────────────────────────────────────────────────────────

    def _load_properties(self, kind: ResourceKind) -> Optional[Dict[str, Any]]:
        object_name = self.managed_objects[kind]
        try:
            object_config = self.config_source.get_managed_object_config(object_name)
            if object_config is None:
                logger.warning("No configuration for managed object '%s'; using core attributes only", object_name)
                return None
            properties = self.config_source.get_properties_definition(object_config)
        except Exception as exc:
            raise SchemaRefreshError(object_name, exc) from exc

        if properties is None:
            logger.warning("Managed object '%s' has no property definitions", object_name)
        return properties

    def rebuild(self) -> SchemaCacheSnapshot:
        """Fetch, compile and publish a new snapshot.

        Raises:
            SchemaRefreshError: If any configuration fetch fails. Nothing is
                published in that case.
        """
        with self._write_lock:
            properties = {kind: self._load_properties(kind) for kind in self.managed_objects}
            snapshot = SchemaCacheSnapshot.build(compile_all(properties, self.mapping_config))
            self._snapshot = snapshot

        logger.info("Schema cache published %d schemas: %s", len(snapshot.schemas), ", ".join(snapshot.schemas))
        return snapshot

    def refresh(self) -> SchemaCacheSnapshot:
        """Re-read backend configuration without restarting. Same semantics as rebuild()."""
        logger.info("Refreshing SCIM schemas from IDM configuration")
        return self.rebuild()

    # ─────────────────────────────────────────────────────────────────────────
    # Readers (no locking, one snapshot per call)
    # ─────────────────────────────────────────────────────────────────────────

    def snapshot(self) -> SchemaCacheSnapshot:
        return self._snapshot

    def is_initialized(self) -> bool:
        return self._snapshot.initialized

    def get(self, urn: str) -> Optional[SchemaDocument]:
        return self._snapshot.schemas.get(urn)

    def list(self) -> List[SchemaDocument]:
        return list(self._snapshot.schemas.values())

    def has(self, urn: str) -> bool:
        return urn in self._snapshot.schemas

    def attributes_for(self, resource_type: str) -> List[AttributeDefinition]:
        return list(self._snapshot.attributes.get(resource_type, ()))

    def count(self) -> int:
        return len(self._snapshot.schemas)

    def urns(self) -> List[str]:
        return list(self._snapshot.schemas)

    # Names used by the request layer
    get_schema = get
    get_all_schemas = list
    has_schema = has
    get_attribute_definitions = attributes_for
    refresh_schemas = refresh

    @property
    def has_enterprise_extension(self) -> bool:
        return schema_urns.ENTERPRISE_USER in self._snapshot.schemas
