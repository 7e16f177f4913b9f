"""
Client-side session manager for the remote authentication API.

Logs in, keeps the bearer token renewed while the user is active, and logs
out on request, on renewal failure, or after inactivity.
"""

from connector.errors import AuthError, ConfigError, ConnectorError, RenewalFailure, RequestError
from connector.session.manager import SessionManager
from connector.storage.token_store import MemoryTokenStore, RedisTokenStore, TokenStore
from connector.types import EnvironmentConfig, HttpConfig, InitResult, Session

__version__ = "0.1.0"

__all__ = [
    "SessionManager",
    "TokenStore",
    "MemoryTokenStore",
    "RedisTokenStore",
    "HttpConfig",
    "EnvironmentConfig",
    "InitResult",
    "Session",
    "ConnectorError",
    "ConfigError",
    "AuthError",
    "RequestError",
    "RenewalFailure",
]
