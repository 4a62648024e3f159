"""IDM backend exceptions."""


class IdmError(Exception):
    """Base exception for all IDM backend operations."""
    pass


class IdmAPIError(IdmError):
    """HTTP error from the IDM REST API.

    Attributes:
        status_code: HTTP status code (0 when no response was received)
        message: Error message from response
        endpoint: API endpoint that failed
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class ManagedObjectNotFoundError(IdmError):
    """Managed object (user, role) does not exist."""

    def __init__(self, object_type: str, object_id: str):
        self.object_type = object_type
        self.object_id = object_id
        super().__init__(f"managed/{object_type}/{object_id} not found")
