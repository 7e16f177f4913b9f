from typing import Any, Optional


class ConnectorError(Exception):
    """Base class for every error raised by the connector."""


class ConfigError(ConnectorError):
    """Configuration could not be resolved, fetched or parsed."""


class _ResponseError(ConnectorError):
    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.args[0]!r}, status={self.status!r})"


class AuthError(_ResponseError):
    """Bad credentials, rejected token, or a protected call made while logged out."""


class RequestError(_ResponseError):
    """Any other non-2xx response from the remote API."""


class RenewalFailure(_ResponseError):
    """Token renewal failed. Handled internally by logging the session out."""
