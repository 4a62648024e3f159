"""Read access to the IDM managed-object configuration.

The backend describes every managed object type (``alpha_user``,
``alpha_role``, ...) in a single ``/openidm/config/managed`` document. This
service extracts one object's entry and its property-definition map.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from .client import IdmClient
from .exceptions import IdmAPIError

logger = logging.getLogger(__name__)

MANAGED_CONFIG_PATH = "/openidm/config/managed"


class IdmConfigService:
    """Fetches managed-object configuration with the service account."""

    def __init__(self, client: IdmClient):
        self.client = client

    def get_managed_config(self) -> Optional[Dict[str, Any]]:
        """Fetch the whole managed config document.

        Returns:
            Parsed config, or None if the backend has no managed config

        Raises:
            IdmAPIError: On any other HTTP or transport failure
        """
        logger.info("Fetching IDM managed object configuration")
        try:
            resp = self.client.get(MANAGED_CONFIG_PATH)
        except IdmAPIError as exc:
            if exc.status_code == 404:
                logger.warning("IDM returned 404 for %s", MANAGED_CONFIG_PATH)
                return None
            raise
        payload = resp.json()
        return payload if isinstance(payload, dict) else None

    def get_managed_object_config(self, object_name: str) -> Optional[Dict[str, Any]]:
        """Return the config entry for one managed object, or None if absent."""
        managed = self.get_managed_config()
        if managed is None:
            return None

        objects = managed.get("objects")
        if not isinstance(objects, list):
            logger.warning("Managed config does not contain an 'objects' array")
            return None

        for entry in objects:
            if isinstance(entry, dict) and entry.get("name") == object_name:
                return entry

        logger.warning("Configuration not found for managed object: %s", object_name)
        return None

    @staticmethod
    def get_properties_definition(object_config: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Extract the property map (``schema.properties``, then ``properties``)."""
        if not isinstance(object_config, dict):
            return None

        schema = object_config.get("schema")
        if isinstance(schema, dict) and isinstance(schema.get("properties"), dict):
            return schema["properties"]

        properties = object_config.get("properties")
        if isinstance(properties, dict):
            return properties
        return None
