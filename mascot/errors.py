from typing import Optional


class MascotError(Exception):
    """Base error carrying the HTTP status the endpoint should answer with."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class RequestValidationError(MascotError):
    status_code = 400


class ConfigurationError(MascotError):
    status_code = 500


class RemoteServiceError(MascotError):
    """Non-success response (or transport failure) from the assistants API."""

    status_code = 500

    def __init__(self, url: str, upstream_status: int, body: str = "", reason: str = ""):
        snippet = (body or "")[:200]
        label = f"{upstream_status} {reason}".strip()
        super().__init__(f"Fetch {url} failed: {label} — {snippet}")
        self.url = url
        self.upstream_status = upstream_status
        self.body = snippet


class ProtocolError(MascotError):
    status_code = 500


class RunFailedError(MascotError):
    status_code = 502


class RunTimeoutError(MascotError):
    status_code = 504


class UnsupportedRunStateError(MascotError):
    status_code = 501


class RegistryLoadError(Exception):
    """Registry could not be fetched and no earlier snapshot exists."""
