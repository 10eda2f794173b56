from typing import Optional

import structlog
from azure.mgmt.datafactory.aio import DataFactoryManagementClient

from provisioner.modules.reconcile.adapters.azure.base import BaseAzureBackend, translate_not_found
from provisioner.modules.reconcile.domain.backend import BackendObject
from provisioner.modules.reconcile.domain.identity import ResourceIdentity
from provisioner.shared.core.credentials import AzureCredentials

logger = structlog.get_logger()


class AzureDataFactoryLinkedServiceBackend(BaseAzureBackend):
    """Linked services of an Azure Data Factory, via the Data Factory management API."""

    def __init__(self, credentials: AzureCredentials) -> None:
        super().__init__(credentials)
        self._client: Optional[DataFactoryManagementClient] = None

    def _get_client(self) -> DataFactoryManagementClient:
        if not self._client:
            self._client = DataFactoryManagementClient(
                credential=self._get_credentials(),
                subscription_id=self.subscription_id,
            )
        return self._client

    async def get(self, identity: ResourceIdentity) -> BackendObject:
        client = self._get_client()
        with translate_not_found(identity):
            resource = await client.linked_services.get(
                identity.resource_group, identity.parent_name, identity.name
            )
        return BackendObject(
            kind=str(resource.properties.type), model=resource, id=resource.id
        )

    async def create_or_update(self, identity: ResourceIdentity, obj: BackendObject) -> None:
        client = self._get_client()
        await client.linked_services.create_or_update(
            identity.resource_group, identity.parent_name, identity.name, obj.model
        )
        logger.debug("azure_linked_service_written", resource_id=str(identity), kind=obj.kind)

    async def delete(self, identity: ResourceIdentity) -> None:
        client = self._get_client()
        with translate_not_found(identity):
            await client.linked_services.delete(
                identity.resource_group, identity.parent_name, identity.name
            )

    async def _close_client(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
