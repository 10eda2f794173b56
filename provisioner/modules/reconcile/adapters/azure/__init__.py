from typing import Dict, Type

from provisioner.modules.reconcile.adapters.azure.base import BaseAzureBackend
from provisioner.modules.reconcile.adapters.azure.datafactory import AzureDataFactoryLinkedServiceBackend
from provisioner.modules.reconcile.adapters.azure.iothub import AzureIotHubEndpointBackend
from provisioner.modules.reconcile.domain.kinds.datafactory import COSMOSDB_MONGOAPI_TYPE_NAME
from provisioner.modules.reconcile.domain.kinds.iothub import STORAGE_CONTAINER_ENDPOINT_TYPE_NAME
from provisioner.shared.core.credentials import AzureCredentials
from provisioner.shared.core.exceptions import ConfigurationError

AZURE_BACKENDS: Dict[str, Type[BaseAzureBackend]] = {
    COSMOSDB_MONGOAPI_TYPE_NAME: AzureDataFactoryLinkedServiceBackend,
    STORAGE_CONTAINER_ENDPOINT_TYPE_NAME: AzureIotHubEndpointBackend,
}


def build_azure_backend(type_name: str, credentials: AzureCredentials) -> BaseAzureBackend:
    """Returns the Azure backend serving the given resource kind."""
    backend_cls = AZURE_BACKENDS.get(str(type_name or "").strip().lower())
    if backend_cls is None:
        raise ConfigurationError(
            f"No Azure backend for resource kind {type_name!r}",
            details={"available": sorted(AZURE_BACKENDS)},
        )
    return backend_cls(credentials)


__all__ = [
    "AZURE_BACKENDS",
    "AzureDataFactoryLinkedServiceBackend",
    "AzureIotHubEndpointBackend",
    "BaseAzureBackend",
    "build_azure_backend",
]
