from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Optional


class HttpConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    base_url: str = Field(..., alias="baseUrl")
    headers: Dict[str, str] = Field(default_factory=dict)
    environment: Optional[str] = None


class EnvironmentConfig(BaseModel):
    """Resolved once by ``SessionManager.init`` and never mutated afterwards."""
    model_config = ConfigDict(frozen=True)

    base_url: str
    environment: str              # DEV, STAGING, PROD, ...
    headers: Dict[str, str] = Field(default_factory=dict)


class Session(BaseModel):
    token: Optional[str] = None
    token_expires_at: Optional[float] = None   # epoch seconds

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None


class InitResult(BaseModel):
    base_url: str
    environment: str
    headers: Dict[str, str] = Field(default_factory=dict)
    restored: bool = False
