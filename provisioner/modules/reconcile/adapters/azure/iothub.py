"""
IoT Hub routing endpoints.

Endpoints are stored inside their hub, so every write is a read-modify-write
of the whole hub description. Writes to the same hub from this process are
serialised so sibling endpoints do not overwrite each other. Hub locks are
held weakly, so the map only holds hubs with a write in flight.
"""
import asyncio
import copy
import weakref
from typing import Any, Optional

import structlog
from azure.mgmt.iothub.aio import IotHubClient
from azure.mgmt.iothub.models import RoutingEndpoints, RoutingProperties

from provisioner.modules.reconcile.adapters.azure.base import BaseAzureBackend, translate_not_found
from provisioner.modules.reconcile.domain.backend import BackendObject
from provisioner.modules.reconcile.domain.identity import ResourceIdentity
from provisioner.modules.reconcile.domain.kinds.iothub import ENDPOINT_COLLECTIONS
from provisioner.shared.core.credentials import AzureCredentials
from provisioner.shared.core.exceptions import BackendNotFoundError, TypeMismatchError

logger = structlog.get_logger()

_COLLECTION_BY_KIND = {kind: collection for collection, kind in ENDPOINT_COLLECTIONS.items()}


def _endpoints(hub: Any) -> Optional[RoutingEndpoints]:
    properties = getattr(hub, "properties", None)
    routing = getattr(properties, "routing", None)
    return getattr(routing, "endpoints", None)


def _same_name(left: Optional[str], right: str) -> bool:
    return left is not None and left.lower() == right.lower()


def _not_found(identity: ResourceIdentity) -> BackendNotFoundError:
    return BackendNotFoundError(
        f"{identity.KIND} {str(identity)!r} was not found",
        details=identity.describe(),
    )


class AzureIotHubEndpointBackend(BaseAzureBackend):
    """Routing endpoints of an IoT Hub, via the IoT Hub resource API."""

    def __init__(self, credentials: AzureCredentials) -> None:
        super().__init__(credentials)
        self._client: Optional[IotHubClient] = None
        self._hub_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _get_client(self) -> IotHubClient:
        if not self._client:
            self._client = IotHubClient(
                credential=self._get_credentials(),
                subscription_id=self.subscription_id,
            )
        return self._client

    def _hub_lock(self, identity: ResourceIdentity) -> asyncio.Lock:
        key = f"{identity.resource_group}/{identity.parent_name}".lower()
        lock = self._hub_locks.get(key)
        if lock is None:
            lock = self._hub_locks[key] = asyncio.Lock()
        return lock

    async def _get_hub(self, identity: ResourceIdentity) -> Any:
        client = self._get_client()
        with translate_not_found(identity):
            return await client.iot_hub_resource.get(identity.resource_group, identity.parent_name)

    async def _put_hub(self, identity: ResourceIdentity, hub: Any) -> None:
        client = self._get_client()
        poller = await client.iot_hub_resource.begin_create_or_update(
            identity.resource_group, identity.parent_name, hub
        )
        await poller.result()

    async def get(self, identity: ResourceIdentity) -> BackendObject:
        hub = await self._get_hub(identity)
        endpoints = _endpoints(hub)
        if endpoints is not None:
            for collection, kind in ENDPOINT_COLLECTIONS.items():
                for endpoint in getattr(endpoints, collection, None) or []:
                    if _same_name(endpoint.name, identity.name):
                        return BackendObject(kind=kind, model=endpoint)
        raise _not_found(identity)

    async def create_or_update(self, identity: ResourceIdentity, obj: BackendObject) -> None:
        collection = _COLLECTION_BY_KIND.get(obj.kind)
        if collection is None:
            raise ValueError(f"Unsupported IoT Hub endpoint kind: {obj.kind}")

        endpoint = copy.deepcopy(obj.model)
        endpoint.name = identity.name

        async with self._hub_lock(identity):
            hub = await self._get_hub(identity)
            if hub.properties.routing is None:
                hub.properties.routing = RoutingProperties()
            if hub.properties.routing.endpoints is None:
                hub.properties.routing.endpoints = RoutingEndpoints()

            endpoints = hub.properties.routing.endpoints
            # Endpoint names are unique across all routing collections of a hub.
            for other, other_kind in ENDPOINT_COLLECTIONS.items():
                if other == collection:
                    continue
                if any(_same_name(e.name, identity.name) for e in getattr(endpoints, other, None) or []):
                    raise TypeMismatchError(obj.kind, other_kind, details=identity.describe())

            existing = [
                e for e in (getattr(endpoints, collection, None) or [])
                if not _same_name(e.name, identity.name)
            ]
            existing.append(endpoint)
            setattr(endpoints, collection, existing)

            await self._put_hub(identity, hub)
        logger.debug("azure_iothub_endpoint_written", resource_id=str(identity), kind=obj.kind)

    async def delete(self, identity: ResourceIdentity) -> None:
        async with self._hub_lock(identity):
            hub = await self._get_hub(identity)
            endpoints = _endpoints(hub)
            if endpoints is None:
                raise _not_found(identity)

            removed = False
            for collection in ENDPOINT_COLLECTIONS:
                current = getattr(endpoints, collection, None) or []
                remaining = [e for e in current if not _same_name(e.name, identity.name)]
                if len(remaining) != len(current):
                    setattr(endpoints, collection, remaining)
                    removed = True
            if not removed:
                raise _not_found(identity)

            await self._put_hub(identity, hub)

    async def _close_client(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
