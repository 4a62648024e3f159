"""IDM backend access: REST client, configuration reads, managed objects."""
from .client import IdmClient
from .config_service import IdmConfigService
from .exceptions import IdmAPIError, IdmError, ManagedObjectNotFoundError
from .objects import ManagedObjectService, QueryResult

__all__ = [
    "IdmClient",
    "IdmConfigService",
    "IdmAPIError",
    "IdmError",
    "ManagedObjectNotFoundError",
    "ManagedObjectService",
    "QueryResult",
]
