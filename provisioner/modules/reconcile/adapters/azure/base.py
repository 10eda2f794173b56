from contextlib import contextmanager
from typing import Iterator, Optional

import structlog
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.identity.aio import ClientSecretCredential

from provisioner.modules.reconcile.domain.backend import ResourceBackend
from provisioner.modules.reconcile.domain.identity import ResourceIdentity
from provisioner.shared.core.credentials import AzureCredentials
from provisioner.shared.core.exceptions import BackendNotFoundError, ConfigurationError

logger = structlog.get_logger()


def is_not_found(exc: BaseException) -> bool:
    if isinstance(exc, ResourceNotFoundError):
        return True
    return isinstance(exc, HttpResponseError) and getattr(exc, "status_code", None) == 404


@contextmanager
def translate_not_found(identity: ResourceIdentity) -> Iterator[None]:
    """Re-raise Azure 404s as BackendNotFoundError; every other error passes through."""
    try:
        yield
    except HttpResponseError as exc:
        if not is_not_found(exc):
            raise
        raise BackendNotFoundError(
            f"{identity.KIND} {str(identity)!r} was not found",
            details=identity.describe(),
        ) from exc


class BaseAzureBackend(ResourceBackend):
    """
    Base class for Azure management API backends.
    Holds the service principal credential shared by the SDK clients.
    """

    def __init__(self, credentials: AzureCredentials) -> None:
        self.credentials = credentials
        self.subscription_id = credentials.subscription_id
        self._credential: Optional[ClientSecretCredential] = None

    def _get_credentials(self) -> ClientSecretCredential:
        if not self._credential:
            if not self.credentials.client_secret:
                raise ConfigurationError(
                    "Azure client_secret is required for client secret auth"
                )
            self._credential = ClientSecretCredential(
                tenant_id=self.credentials.tenant_id,
                client_id=self.credentials.client_id,
                client_secret=self.credentials.client_secret.get_secret_value(),
            )
        return self._credential

    async def _close_client(self) -> None:
        return None

    async def close(self) -> None:
        await self._close_client()
        if self._credential is not None:
            await self._credential.close()
            self._credential = None
