from typing import Dict, Optional


class StorageGatewayError(Exception):
    pass


class ConfigError(StorageGatewayError):
    pass


class InvalidConfig(StorageGatewayError):
    """Rejected authorization policy update. Surfaced to the caller of update_config only."""
    pass


class RequestError(StorageGatewayError):
    """
    Error raised while handling a request. The application renders it as
    {"error": message} with status_code and any extra headers.
    """
    status_code = 500

    def __init__(self, message: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.headers = headers or {}


class MalformedPath(RequestError):
    status_code = 400


class MalformedFilename(RequestError):
    status_code = 400


class InvalidTimestamp(RequestError):
    status_code = 400


class Unauthorized(RequestError):
    status_code = 401

    def __init__(self, message: str = "not authorized", realm: Optional[str] = None):
        challenge = f'Basic realm="{realm}"' if realm else "Basic"
        super().__init__(message, headers={"WWW-Authenticate": challenge})


class NotFound(RequestError):
    status_code = 404


class BackendError(RequestError):
    status_code = 500
