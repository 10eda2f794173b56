import copy
from typing import Dict

import structlog

from provisioner.modules.reconcile.domain.backend import BackendObject, ResourceBackend
from provisioner.modules.reconcile.domain.identity import ResourceIdentity
from provisioner.shared.core.exceptions import BackendNotFoundError

logger = structlog.get_logger()


class InMemoryBackend(ResourceBackend):
    """
    Backend that stores objects verbatim, keyed by canonical identity.

    It performs no server-side defaulting or masking, so a write followed by a
    read returns exactly what was written. Objects are deep-copied in both
    directions so callers never share state with the store.
    """

    def __init__(self, subscription_id: str = "00000000-0000-0000-0000-000000000000"):
        self.subscription_id = subscription_id
        self._objects: Dict[str, BackendObject] = {}

    async def get(self, identity: ResourceIdentity) -> BackendObject:
        key = str(identity)
        obj = self._objects.get(key)
        if obj is None:
            raise BackendNotFoundError(f"{identity.KIND} {key!r} was not found")
        return copy.deepcopy(obj)

    async def create_or_update(self, identity: ResourceIdentity, obj: BackendObject) -> None:
        key = str(identity)
        self._objects[key] = BackendObject(kind=obj.kind, model=copy.deepcopy(obj.model), id=key)
        logger.debug("memory_backend_stored", resource_id=key, kind=obj.kind)

    async def delete(self, identity: ResourceIdentity) -> None:
        key = str(identity)
        if self._objects.pop(key, None) is None:
            raise BackendNotFoundError(f"{identity.KIND} {key!r} was not found")

    def __len__(self) -> int:
        return len(self._objects)
