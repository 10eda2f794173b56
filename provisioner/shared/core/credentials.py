"""
Typed Credential Classes
Keeps backends decoupled from settings and environment parsing.
"""
from pydantic import BaseModel, SecretStr
from typing import Optional


class CloudCredentials(BaseModel):
    """Base class for all cloud credentials."""
    pass


class AzureCredentials(CloudCredentials):
    """Azure Service Principal Credentials."""
    tenant_id: str
    client_id: str
    subscription_id: str
    client_secret: Optional[SecretStr] = None
